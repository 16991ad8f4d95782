import json
import os
import tempfile

_tmpdir = tempfile.mkdtemp(prefix="tutor-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ.setdefault("GEMINI_API_KEY", "test-key")

import pytest
from fastapi.testclient import TestClient

from tutor import generation
from tutor.db import Base, SessionLocal, engine
from tutor.main import app
from tutor.routers import quiz as quiz_router
from tutor.store import KeyValueStore


DIAGRAM_PAYLOAD = {
    "mermaidCode": (
        'graph LR\\nN1[\\"TEMA 1 La Constitución\\"]:::main\\n'
        'N1 --> N2[\\"Objetivos del Tema\\"]:::sub\\n'
        'N1 --> N3[\\"Derechos (Arts. 14-29)\\"]:::sub\\n'
        'N3 --> N4[\\"Suspensión\\"]:::detail'
        'classDef main fill:#AA151B,stroke:#F1BF00;'
    ),
    "nodeDetails": {"N1": "Norma suprema", "N3": "Derechos fundamentales"},
}

OUTLINE = "# Guía de Estudio: TEMA 1\n\n## 🎯 Objetivos del Tema\nSaber la estructura.\n\n## ⚠️ Puntos Críticos de Examen\nPlazos."

QUIZ_PAYLOAD = [
    {
        "question": f"Pregunta {i}",
        "options": ["A", "B", "C", "D"],
        "correctAnswerIndex": i % 4,
        "explanation": f"Explicación {i}",
    }
    for i in range(5)
]


class FakeGeminiClient:
    outline = OUTLINE
    diagram = json.dumps(DIAGRAM_PAYLOAD)
    quiz = json.dumps(QUIZ_PAYLOAD)
    chat_reply = "Respuesta del tutor"
    fail = False

    def __init__(self, *args, **kwargs):
        pass

    async def generate(self, prompt, *, response_mime_type=None, response_schema=None):
        type(self).prompts.append(prompt)
        if self.fail:
            raise RuntimeError("upstream down")
        if "MAPA MENTAL" in prompt:
            return self.diagram
        if "examen tipo test" in prompt:
            return self.quiz
        return self.outline

    async def chat(self, message, history, *, system_instruction=None):
        type(self).chats.append({"message": message, "history": history, "system": system_instruction})
        if self.fail:
            raise RuntimeError("upstream down")
        return self.chat_reply

    async def aclose(self):
        pass


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    quiz_router._sessions.clear()
    quiz_router._results.clear()
    yield


@pytest.fixture
def fake_gemini(monkeypatch):
    fake = type("Fake", (FakeGeminiClient,), {"prompts": [], "chats": []})
    monkeypatch.setattr(generation, "GeminiClient", fake)
    return fake


@pytest.fixture
def client():
    return TestClient(app)


def login(client, username="guest", password="x"):
    r = client.post("/auth/token", data={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def auth_headers(client):
    return login(client)


@pytest.fixture
def store():
    db = SessionLocal()
    try:
        yield KeyValueStore(db, "guest")
    finally:
        db.close()
