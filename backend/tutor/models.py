from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text, Index
from .db import Base


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=True)


class KeyValueEntry(Base):
	__tablename__ = "kv_entries"
	# One namespace per username; keys mirror the study/progress slots of the client
	username = Column(String(128), primary_key=True)
	key = Column(String(256), primary_key=True)
	value = Column(Text, nullable=False)  # JSON string
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ChatMessage(Base):
	__tablename__ = "chat_messages"
	id = Column(Integer, primary_key=True, autoincrement=True)
	username = Column(String(128), nullable=False)
	role = Column(String(16), nullable=False)  # "user" | "model"
	text = Column(Text, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (Index("ix_chat_messages_username_created", "username", "created_at"),)
