"""Per-user key-value storage.

Study material, progress and the failed-question log are kept under the same
keys the study client reads (``study_text_<topic>``, ``topic_progress``,
``failed_questions``...). Values are JSON documents.
"""
from __future__ import annotations
import json
from typing import Any, Dict, List, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from .db import get_db
from .models import KeyValueEntry
from .routers.auth import User, get_current_user


class KeyValueStore:
	def __init__(self, db: Session, username: str) -> None:
		self.db = db
		self.username = username

	def _row(self, key: str) -> Optional[KeyValueEntry]:
		return self.db.get(KeyValueEntry, (self.username, key))

	def get(self, key: str, default: Any = None) -> Any:
		row = self._row(key)
		if row is None:
			return default
		try:
			return json.loads(row.value)
		except ValueError:
			return default

	def set(self, key: str, value: Any) -> None:
		row = self._row(key)
		payload = json.dumps(value, ensure_ascii=False)
		if row is None:
			row = KeyValueEntry(username=self.username, key=key, value=payload)
		else:
			row.value = payload
		self.db.add(row)
		self.db.commit()

	def delete(self, key: str) -> bool:
		row = self._row(key)
		if row is None:
			return False
		self.db.delete(row)
		self.db.commit()
		return True

	def keys(self, prefix: str = "") -> List[str]:
		query = self.db.query(KeyValueEntry.key).filter(KeyValueEntry.username == self.username)
		if prefix:
			query = query.filter(KeyValueEntry.key.startswith(prefix, autoescape=True))
		return [k for (k,) in query.order_by(KeyValueEntry.key).all()]

	def items(self, prefix: str = "") -> Dict[str, Any]:
		return {k: self.get(k) for k in self.keys(prefix)}


def get_store(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> KeyValueStore:
	return KeyValueStore(db, user.username)
