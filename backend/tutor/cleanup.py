from __future__ import annotations
from datetime import datetime, timedelta
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession, ChatMessage
from .settings import settings


def purge_stale_chat(db: Session, days: int | None = None) -> int:
	"""Drop chat messages and idle sessions older than the retention window."""
	threshold = datetime.utcnow() - timedelta(days=days if days is not None else settings.chat_retention_days)
	removed = 0

	res = db.execute(delete(ChatMessage).where(ChatMessage.created_at < threshold))
	removed += res.rowcount or 0

	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < threshold))
	removed += res.rowcount or 0

	db.commit()
	return removed
