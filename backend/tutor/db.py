from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterator

from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./tutor.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()

# Columns added after the first release; older SQLite files get them on startup
_COLUMN_UPGRADES: Dict[str, Dict[str, str]] = {
	"auth_users": {"email": "VARCHAR(256)"},
	"auth_sessions": {"last_activity_at": "DATETIME"},
	"kv_entries": {
		"created_at": "DATETIME DEFAULT '1970-01-01 00:00:00' NOT NULL",
		"updated_at": "DATETIME DEFAULT '1970-01-01 00:00:00' NOT NULL",
	},
}


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
	"""Session for work outside a request (startup, background tasks)."""
	db = SessionLocal()
	try:
		yield db
	except Exception:
		db.rollback()
		raise
	finally:
		db.close()


def ensure_schema() -> list[str]:
	"""Add missing columns to existing tables. Returns the columns added."""
	inspector = inspect(engine)
	tables = set(inspector.get_table_names())
	added: list[str] = []
	for table, columns in _COLUMN_UPGRADES.items():
		if table not in tables:
			continue
		existing = {c["name"] for c in inspector.get_columns(table)}
		missing = [(name, ddl) for name, ddl in columns.items() if name not in existing]
		if not missing:
			continue
		with engine.begin() as conn:
			for name, ddl in missing:
				conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
				added.append(f"{table}.{name}")
	return added
