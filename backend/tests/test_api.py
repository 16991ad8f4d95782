from conftest import login

from tutor.progress import FAILED_QUESTIONS_KEY
from tutor.routers import quiz as quiz_router
from tutor.routers.chat import ALL_CLEAR_TEXT, NO_MISTAKES_TEXT, WELCOME_TEXT


TEMA_1 = "tema_1_constitucion"
TEMA_2 = "tema_2_corona_cortes"


def _generate(client, headers, topic_id=TEMA_1, **body):
    return client.post(f"/study/{topic_id}/generate", json=body, headers=headers)


def _run_quiz(client, headers, topic_id, answers, mode="REAL"):
    r = client.post(f"/quiz/{topic_id}/start", json={"mode": mode}, headers=headers)
    assert r.status_code == 200, r.text
    session_id = r.json()["session_id"]
    result = None
    for option in answers:
        assert client.post(f"/quiz/sessions/{session_id}/answer", json={"option_index": option}, headers=headers).status_code == 200
        result = client.post(f"/quiz/sessions/{session_id}/next", headers=headers).json()["result"]
    return session_id, result


def test_requires_authentication(client):
    assert client.get("/topics").status_code == 401


def test_logout_revokes_token(client, auth_headers):
    assert client.get("/auth/me", headers=auth_headers).json()["username"] == "guest"
    client.post("/auth/logout", headers=auth_headers)
    assert client.get("/auth/me", headers=auth_headers).status_code == 401


def test_list_topics(client, auth_headers):
    body = client.get("/topics", headers=auth_headers).json()
    assert body["guided_mode"] is False
    assert body["topics"][0]["topic"]["id"] == TEMA_1
    assert not any(card["locked"] for card in body["topics"])
    assert client.get("/topics/nope", headers=auth_headers).status_code == 404


def test_guided_mode_locks_following_topics(client, auth_headers, fake_gemini):
    assert client.put("/topics/guided-mode", json={}, headers=auth_headers).json() == {"guided_mode": True}
    cards = client.get("/topics", headers=auth_headers).json()["topics"]
    assert [c["locked"] for c in cards[:2]] == [False, True]
    assert _generate(client, auth_headers, TEMA_2).status_code == 403
    assert client.post(f"/quiz/{TEMA_2}/start", json={}, headers=auth_headers).status_code == 403

    _, result = _run_quiz(client, auth_headers, TEMA_1, [0, 1, 2, 3, 0])
    assert result["passed"] is True
    cards = client.get("/topics", headers=auth_headers).json()["topics"]
    assert [c["locked"] for c in cards[:3]] == [False, False, True]
    assert _generate(client, auth_headers, TEMA_2).status_code == 200


def test_generate_study_material(client, auth_headers, fake_gemini):
    r = _generate(client, auth_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["saved"] is True
    assert body["outline"].startswith("# Guía de Estudio")
    diagram = body["diagram"]
    assert diagram["code"].split("\n")[0] == "graph LR"
    assert diagram["nodes"] == ["N1", "N2", "N3", "N4"]
    assert diagram["children"] == {"N1": ["N2", "N3"], "N3": ["N4"]}
    assert diagram["parents"]["N4"] == ["N3"]
    assert '["Derechos Arts. 14-29"]' in diagram["code"]
    assert "classDef main" in diagram["code"].split("\n")[-1]


def test_regenerate_requires_confirmation(client, auth_headers, fake_gemini):
    assert _generate(client, auth_headers).status_code == 200
    client.put(f"/study/{TEMA_1}/scroll", json={"position": 120}, headers=auth_headers)
    assert client.get(f"/study/{TEMA_1}", headers=auth_headers).json()["scroll"] == 120

    assert _generate(client, auth_headers).status_code == 409
    r = _generate(client, auth_headers, confirm=True)
    assert r.status_code == 200
    assert r.json()["scroll"] == 0


def test_negative_scroll_is_rejected(client, auth_headers):
    assert client.put(f"/study/{TEMA_1}/scroll", json={"position": -1}, headers=auth_headers).status_code == 422


def test_outline_survives_diagram_failure(client, auth_headers, fake_gemini):
    fake_gemini.diagram = "esto no es json"
    body = _generate(client, auth_headers).json()
    assert body["outline"]
    assert body["diagram"] is None
    assert client.get(f"/study/{TEMA_1}/diagram", headers=auth_headers).status_code == 404


def test_upstream_failure_is_bad_gateway(client, auth_headers, fake_gemini):
    fake_gemini.fail = True
    assert _generate(client, auth_headers).status_code == 502
    assert client.get(f"/study/{TEMA_1}", headers=auth_headers).json()["saved"] is False


def test_select_node(client, auth_headers, fake_gemini):
    _generate(client, auth_headers)
    body = client.get(f"/study/{TEMA_1}/diagram/nodes/N2", headers=auth_headers).json()
    assert body["label"] == "Objetivos del Tema"
    assert body["relatives"] == ["N1"]
    assert body["others"] == ["N3", "N4"]
    assert body["anchor"] == "objetivos-del-tema"
    assert body["anchor_in_outline"] is True

    body = client.get(f"/study/{TEMA_1}/diagram/nodes/flowchart-N3-5", headers=auth_headers).json()
    assert body["node_id"] == "N3"
    assert body["detail"] == "Derechos fundamentales"
    assert body["relatives"] == ["N4", "N1"]
    assert body["anchor_in_outline"] is False


def test_render_error_and_export(client, auth_headers, fake_gemini):
    _generate(client, auth_headers)
    body = client.post(f"/study/{TEMA_1}/diagram/render-error", json={"message": "Parse error"}, headers=auth_headers).json()
    assert body["regenerate"] is True
    assert body["code"].startswith("graph LR\n")

    r = client.get(f"/study/{TEMA_1}/export", headers=auth_headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/html")
    assert f'filename="{TEMA_1}.html"' in r.headers["content-disposition"]
    assert 'class="mermaid"' in r.text
    assert "La Constitución Española de 1978" in r.text


def test_ask_question(client, auth_headers, fake_gemini):
    r = client.post(f"/study/{TEMA_1}/ask", json={"question": "¿Qué es la reforma agravada?"}, headers=auth_headers)
    assert r.status_code == 200
    assert "reforma agravada" in fake_gemini.prompts[-1]
    assert client.post(f"/study/{TEMA_1}/ask", json={"question": "  "}, headers=auth_headers).status_code == 400


def test_review_quiz_gives_feedback(client, auth_headers, fake_gemini):
    session_id = client.post(f"/quiz/{TEMA_1}/start", json={"mode": "REVIEW"}, headers=auth_headers).json()["session_id"]
    body = client.post(f"/quiz/sessions/{session_id}/answer", json={"option_index": 1}, headers=auth_headers).json()
    assert body == {"recorded": True, "correct": False, "correct_answer_index": 0, "explanation": "Explicación 0"}
    assert client.post(f"/quiz/sessions/{session_id}/answer", json={"option_index": 0}, headers=auth_headers).status_code == 409
    assert client.post(f"/quiz/sessions/{session_id}/answer", json={"option_index": 9}, headers=auth_headers).status_code == 400


def test_real_quiz_records_progress_and_mistakes(client, auth_headers, fake_gemini):
    session_id, result = _run_quiz(client, auth_headers, TEMA_1, [3, 3, 3, 3, 3])
    assert result["score"] == 1
    assert result["percentage"] == 20
    assert result["passed"] is False
    assert result["verdict"] == "Necesitas repasar este título."
    assert len(result["review"]) == 5

    failed = client.get("/topics/failed-questions", headers=auth_headers).json()
    assert len(failed) == 4
    assert failed[0]["user_answer"] == "D"

    again = client.post(f"/quiz/sessions/{session_id}/finish", headers=auth_headers).json()
    assert again == result
    assert len(client.get("/topics/failed-questions", headers=auth_headers).json()) == 4

    progress = client.get("/topics/progress", headers=auth_headers).json()
    assert progress[TEMA_1]["best_score"] == 20


def test_finished_quizzes_release_their_session(client, auth_headers, fake_gemini, monkeypatch):
    monkeypatch.setattr(quiz_router, "MAX_CACHED_RESULTS", 2)
    finished = []
    for _ in range(3):
        r = client.post(f"/quiz/{TEMA_1}/start", json={}, headers=auth_headers)
        session_id = r.json()["session_id"]
        assert client.post(f"/quiz/sessions/{session_id}/finish", headers=auth_headers).status_code == 200
        finished.append(session_id)

    assert quiz_router._sessions == {}
    assert list(quiz_router._results) == finished[1:]
    assert client.get(f"/quiz/sessions/{finished[-1]}", headers=auth_headers).status_code == 404
    assert client.post(f"/quiz/sessions/{finished[0]}/finish", headers=auth_headers).status_code == 404


def test_new_quiz_replaces_open_one(client, auth_headers, fake_gemini):
    first = client.post(f"/quiz/{TEMA_1}/start", json={}, headers=auth_headers).json()["session_id"]
    second = client.post(f"/quiz/{TEMA_1}/start", json={}, headers=auth_headers).json()["session_id"]
    assert list(quiz_router._sessions) == [second]
    assert client.get(f"/quiz/sessions/{first}", headers=auth_headers).status_code == 404


def test_quiz_sessions_are_per_user(client, auth_headers, fake_gemini):
    session_id = client.post(f"/quiz/{TEMA_1}/start", json={}, headers=auth_headers).json()["session_id"]
    other = login(client, "invitado")
    assert client.get(f"/quiz/sessions/{session_id}", headers=other).status_code == 404


def test_chat_transcript(client, auth_headers, fake_gemini):
    transcript = client.get("/chat", headers=auth_headers).json()
    assert [m["text"] for m in transcript] == [WELCOME_TEXT]

    r = client.post("/chat/messages", json={"text": "¿Qué es el Defensor del Pueblo?"}, headers=auth_headers)
    assert [m["role"] for m in r.json()] == ["user", "model"]
    assert fake_gemini.chats[0]["history"] == [{"role": "model", "text": WELCOME_TEXT}]
    assert fake_gemini.chats[0]["system"]

    assert client.post("/chat/messages", json={"text": " "}, headers=auth_headers).status_code == 400
    assert client.delete("/chat", headers=auth_headers).json() == {"removed": 3}


def test_failed_reply_leaves_transcript_untouched(client, auth_headers, fake_gemini):
    fake_gemini.fail = True
    assert client.post("/chat/messages", json={"text": "hola"}, headers=auth_headers).status_code == 502
    transcript = client.get("/chat", headers=auth_headers).json()
    assert [(m["role"], m["text"]) for m in transcript] == [("model", WELCOME_TEXT)]

    fake_gemini.fail = False
    client.post("/chat/messages", json={"text": "hola otra vez"}, headers=auth_headers)
    assert fake_gemini.chats[-1]["history"] == [{"role": "model", "text": WELCOME_TEXT}]
    assert [m["role"] for m in client.get("/chat", headers=auth_headers).json()] == ["model", "user", "model"]


def test_review_mistakes(client, auth_headers, fake_gemini, store):
    r = client.post("/chat/review-mistakes", headers=auth_headers)
    assert r.json()[-1]["text"] == NO_MISTAKES_TEXT

    store.set(FAILED_QUESTIONS_KEY, [])
    r = client.post("/chat/review-mistakes", headers=auth_headers)
    assert r.json()[-1]["text"] == ALL_CLEAR_TEXT

    _run_quiz(client, auth_headers, TEMA_1, [3, 3, 3, 3, 3])
    r = client.post("/chat/review-mistakes", headers=auth_headers)
    assert [m["role"] for m in r.json()] == ["user", "model"]
    prompt = fake_gemini.chats[-1]["message"]
    assert "Pregunta 0" in prompt
    assert "Mi respuesta: D" in prompt


def test_register_and_login(client):
    r = client.post("/auth/register", json={"username": "opositora", "password": "secreto"})
    assert r.status_code == 201
    assert client.post("/auth/register", json={"username": "opositora", "password": "x"}).status_code == 409
    assert client.post("/auth/register", json={"username": "Invitado", "password": "x"}).status_code == 400

    headers = login(client, "opositora", "secreto")
    assert client.get("/auth/me", headers=headers).json() == {"username": "opositora"}
    assert client.post("/auth/token", data={"username": "opositora", "password": "mal"}).status_code == 401
