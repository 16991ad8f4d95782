from __future__ import annotations
import time
from typing import Dict, List, Optional

from pydantic import BaseModel

from .settings import settings
from .store import KeyValueStore
from .topics import TOPICS


PROGRESS_KEY = "topic_progress"
FAILED_QUESTIONS_KEY = "failed_questions"
GUIDED_MODE_KEY = "guided_mode"


class TopicProgress(BaseModel):
	topic_id: str
	is_passed: bool = False
	best_score: int = 0  # percentage 0-100
	last_attempt: int = 0  # epoch milliseconds


class FailedQuestion(BaseModel):
	topic_title: str
	question: str
	user_answer: str
	correct_answer: str
	explanation: str = ""
	date: int


def now_ms() -> int:
	return int(time.time() * 1000)


def score_percentage(score: int, total: int) -> int:
	if total <= 0:
		return 0
	# half rounds up
	return int(score * 100 / total + 0.5)


def load_progress(store: KeyValueStore) -> Dict[str, TopicProgress]:
	raw = store.get(PROGRESS_KEY, {}) or {}
	out: Dict[str, TopicProgress] = {}
	for topic_id, value in raw.items():
		try:
			out[topic_id] = TopicProgress(**value)
		except (TypeError, ValueError):
			continue
	return out


def record_result(store: KeyValueStore, topic_id: str, score: int, total: int) -> TopicProgress:
	"""Store a finished quiz. Passing is sticky and the best score never drops."""
	percentage = score_percentage(score, total)
	passed = percentage >= settings.pass_mark_percent
	progress = load_progress(store)
	previous = progress.get(topic_id)
	entry = TopicProgress(
		topic_id=topic_id,
		is_passed=passed or (previous.is_passed if previous else False),
		best_score=max(previous.best_score if previous else 0, percentage),
		last_attempt=now_ms(),
	)
	progress[topic_id] = entry
	store.set(PROGRESS_KEY, {k: v.model_dump() for k, v in progress.items()})
	return entry


def load_failed_questions(store: KeyValueStore) -> List[FailedQuestion]:
	raw = store.get(FAILED_QUESTIONS_KEY, []) or []
	out: List[FailedQuestion] = []
	for item in raw:
		try:
			out.append(FailedQuestion(**item))
		except (TypeError, ValueError):
			continue
	return out


def append_failed_questions(store: KeyValueStore, mistakes: List[FailedQuestion]) -> List[FailedQuestion]:
	if not mistakes:
		return load_failed_questions(store)
	combined = load_failed_questions(store) + list(mistakes)
	combined = combined[-settings.failed_questions_limit:]
	store.set(FAILED_QUESTIONS_KEY, [m.model_dump() for m in combined])
	return combined


def is_guided_mode(store: KeyValueStore) -> bool:
	return bool(store.get(GUIDED_MODE_KEY, False))


def set_guided_mode(store: KeyValueStore, enabled: bool) -> bool:
	store.set(GUIDED_MODE_KEY, bool(enabled))
	return bool(enabled)


def is_topic_locked(index: int, guided: bool, progress: Dict[str, TopicProgress]) -> bool:
	# In guided mode a topic opens once the previous one is passed
	if not guided or index <= 0:
		return False
	if index >= len(TOPICS):
		return True
	previous: Optional[TopicProgress] = progress.get(TOPICS[index - 1].id)
	return not (previous and previous.is_passed)
