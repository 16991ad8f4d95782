from __future__ import annotations
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .. import generation
from ..db import get_db
from ..models import ChatMessage
from ..progress import FAILED_QUESTIONS_KEY, load_failed_questions
from ..settings import settings
from ..store import KeyValueStore, get_store
from .auth import User, get_current_user


router = APIRouter(prefix="/chat", tags=["chat"])


WELCOME_TEXT = (
	"¡Hola! Soy tu asistente legal. Pregúntame cualquier duda sobre la Constitución Española "
	"o sobre cómo preparar tus oposiciones. También puedo ayudarte a repasar tus fallos en los test."
)
NO_MISTAKES_TEXT = "No tienes fallos registrados todavía. Realiza algunos test primero para que pueda ayudarte a repasar."
ALL_CLEAR_TEXT = "¡Enhorabuena! No tienes fallos pendientes de repasar."


class MessageOut(BaseModel):
	id: str
	role: str
	text: str
	timestamp: int


class SendRequest(BaseModel):
	text: str


def _to_out(row: ChatMessage) -> MessageOut:
	return MessageOut(
		id=str(row.id),
		role=row.role,
		text=row.text,
		timestamp=int(row.created_at.timestamp() * 1000),
	)


def _add(db: Session, username: str, role: str, text: str) -> ChatMessage:
	row = ChatMessage(username=username, role=role, text=text, created_at=datetime.utcnow())
	db.add(row)
	db.commit()
	db.refresh(row)
	return row


def _transcript(db: Session, username: str) -> List[ChatMessage]:
	rows = (
		db.query(ChatMessage)
		.filter(ChatMessage.username == username)
		.order_by(ChatMessage.created_at, ChatMessage.id)
		.all()
	)
	if not rows:
		rows = [_add(db, username, "model", WELCOME_TEXT)]
	return rows


async def _send(db: Session, username: str, text: str) -> List[MessageOut]:
	history = [{"role": r.role, "text": r.text} for r in _transcript(db, username)]
	# Nothing is stored unless the tutor answers, so turns stay paired
	reply = await generation.chat_with_tutor(text, history)
	user_row = _add(db, username, "user", text)
	model_row = _add(db, username, "model", reply)
	return [_to_out(user_row), _to_out(model_row)]


def build_review_prompt(mistakes) -> str:
	lines = []
	for i, m in enumerate(mistakes, start=1):
		lines.append(
			f"{i}. Tema: {m.topic_title}\n   Pregunta: {m.question}\n   Mi respuesta: {m.user_answer}\n   Correcta: {m.correct_answer}\n"
		)
	return (
		"Hola tutor, he fallado estas preguntas en mis últimos test. Por favor, explícamelas de forma sencilla "
		"y dame alguna regla mnemotécnica para no volver a fallarlas:\n\n" + "\n".join(lines)
	)


@router.get("", response_model=List[MessageOut])
def get_transcript(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return [_to_out(r) for r in _transcript(db, user.username)]


@router.post("/messages", response_model=List[MessageOut])
async def send_message(req: SendRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	text = (req.text or "").strip()
	if not text:
		raise HTTPException(status_code=400, detail="text is required")
	return await _send(db, user.username, text)


@router.post("/review-mistakes", response_model=List[MessageOut])
async def review_mistakes(
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	store: KeyValueStore = Depends(get_store),
):
	_transcript(db, user.username)
	if store.get(FAILED_QUESTIONS_KEY) is None:
		return [_to_out(_add(db, user.username, "model", NO_MISTAKES_TEXT))]
	mistakes = load_failed_questions(store)
	if not mistakes:
		return [_to_out(_add(db, user.username, "model", ALL_CLEAR_TEXT))]
	recent = mistakes[-settings.review_mistakes_count:]
	return await _send(db, user.username, build_review_prompt(recent))


@router.delete("")
def clear_transcript(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	removed = db.query(ChatMessage).filter(ChatMessage.username == user.username).delete()
	db.commit()
	return {"removed": removed}
