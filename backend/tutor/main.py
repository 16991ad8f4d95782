import asyncio
import logging

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from .db import Base, engine, ensure_schema, session_scope
from .cleanup import purge_stale_chat
from .settings import settings
from .routers import auth, chat, quiz, study, topics

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Oposiciones Tutor API")
app.include_router(auth.router)
app.include_router(topics.router)
app.include_router(study.router)
app.include_router(quiz.router)
app.include_router(chat.router)


@app.get("/", include_in_schema=False)
async def redirect_root_to_docs():
	return RedirectResponse(url="/docs")

@app.get("/info")
def root():
	return {"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}


def _run_cleanup() -> None:
	try:
		with session_scope() as db:
			removed = purge_stale_chat(db)
	except Exception:
		logger.exception("Chat cleanup failed")
		return
	if removed:
		logger.info("Purged %d stale chat rows", removed)

async def _cleanup_watcher():
	while True:
		await asyncio.sleep(24 * 60 * 60)
		_run_cleanup()

_watcher_task: asyncio.Task | None = None

@app.on_event("startup")
async def startup_event():
	global _watcher_task
	Base.metadata.create_all(bind=engine)
	try:
		added = ensure_schema()
	except Exception:
		logger.exception("Schema upgrade failed")
	else:
		if added:
			logger.info("Added columns: %s", ", ".join(added))
	_run_cleanup()
	_watcher_task = asyncio.create_task(_cleanup_watcher())

@app.on_event("shutdown")
async def shutdown_event():
	if _watcher_task is not None:
		_watcher_task.cancel()
