from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..progress import (
	FAILED_QUESTIONS_KEY,
	FailedQuestion,
	TopicProgress,
	is_guided_mode,
	is_topic_locked,
	load_failed_questions,
	load_progress,
	set_guided_mode,
)
from ..store import KeyValueStore, get_store
from ..topics import TOPICS, Topic, get_topic, topic_index


router = APIRouter(prefix="/topics", tags=["topics"])


class TopicCard(BaseModel):
	topic: Topic
	locked: bool
	progress: Optional[TopicProgress] = None


class TopicListResponse(BaseModel):
	guided_mode: bool
	topics: List[TopicCard]


class GuidedModeRequest(BaseModel):
	enabled: Optional[bool] = None  # omitted -> toggle


def require_topic(topic_id: str) -> Topic:
	topic = get_topic(topic_id)
	if topic is None:
		raise HTTPException(status_code=404, detail=f"unknown topic {topic_id}")
	return topic


def require_unlocked(topic: Topic, store: KeyValueStore) -> None:
	locked = is_topic_locked(topic_index(topic.id), is_guided_mode(store), load_progress(store))
	if locked:
		raise HTTPException(status_code=403, detail="topic is locked until the previous topic is passed")


@router.get("", response_model=TopicListResponse)
def list_topics(store: KeyValueStore = Depends(get_store)):
	guided = is_guided_mode(store)
	progress = load_progress(store)
	cards = [
		TopicCard(topic=t, locked=is_topic_locked(i, guided, progress), progress=progress.get(t.id))
		for i, t in enumerate(TOPICS)
	]
	return TopicListResponse(guided_mode=guided, topics=cards)


@router.put("/guided-mode")
def update_guided_mode(req: GuidedModeRequest, store: KeyValueStore = Depends(get_store)):
	enabled = (not is_guided_mode(store)) if req.enabled is None else req.enabled
	return {"guided_mode": set_guided_mode(store, enabled)}


@router.get("/progress")
def get_progress(store: KeyValueStore = Depends(get_store)):
	return {k: v.model_dump() for k, v in load_progress(store).items()}


@router.get("/failed-questions", response_model=List[FailedQuestion])
def get_failed_questions(store: KeyValueStore = Depends(get_store)):
	return load_failed_questions(store)


@router.delete("/failed-questions")
def clear_failed_questions(store: KeyValueStore = Depends(get_store)):
	store.delete(FAILED_QUESTIONS_KEY)
	return {"ok": True}


@router.get("/{topic_id}", response_model=TopicCard)
def get_topic_card(topic_id: str, store: KeyValueStore = Depends(get_store)):
	topic = require_topic(topic_id)
	progress = load_progress(store)
	return TopicCard(
		topic=topic,
		locked=is_topic_locked(topic_index(topic_id), is_guided_mode(store), progress),
		progress=progress.get(topic_id),
	)
