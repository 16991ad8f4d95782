from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .. import generation
from ..progress import TopicProgress, append_failed_questions, record_result, score_percentage
from ..quiz import InvalidOptionError, QuizError, QuizMode, QuizState, verdict
from ..settings import settings
from ..store import KeyValueStore, get_store
from .auth import User, get_current_user
from .topics import require_topic, require_unlocked


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quiz", tags=["quiz"])


class StartRequest(BaseModel):
    mode: QuizMode = QuizMode.REVIEW


class AnswerRequest(BaseModel):
    option_index: int


class QuestionView(BaseModel):
    number: int
    question: str
    options: List[str]


class QuizView(BaseModel):
    session_id: str
    topic_id: str
    mode: QuizMode
    current_question_index: int
    total: int
    user_answers: List[int]
    is_finished: bool
    question: Optional[QuestionView] = None


class AnswerResponse(BaseModel):
    recorded: bool = True
    # Only filled in REVIEW mode
    correct: Optional[bool] = None
    correct_answer_index: Optional[int] = None
    explanation: Optional[str] = None


class ReviewItem(BaseModel):
    question: str
    options: List[str]
    user_answer_index: int
    correct_answer_index: int
    explanation: str


class QuizResult(BaseModel):
    session_id: str
    score: int
    total: int
    percentage: int
    passed: bool
    verdict: str
    progress: TopicProgress
    review: List[ReviewItem]


MAX_CACHED_RESULTS = 200

# Open quizzes only; a finished quiz moves to _results, keyed by session id with its owner
_sessions: Dict[str, QuizState] = {}
_results: "OrderedDict[str, Tuple[str, QuizResult]]" = OrderedDict()


def _view(state: QuizState) -> QuizView:
    question = None
    current = state.current_question
    if current is not None and not state.is_finished:
        question = QuestionView(
            number=state.current_question_index + 1,
            question=current.question,
            options=current.options,
        )
    return QuizView(
        session_id=state.session_id,
        topic_id=state.topic_id,
        mode=state.mode,
        current_question_index=state.current_question_index,
        total=len(state.questions),
        user_answers=state.user_answers,
        is_finished=state.is_finished,
        question=question,
    )


def _get_session(session_id: str, user: User) -> QuizState:
    state = _sessions.get(session_id)
    if state is None or state.username != user.username:
        raise HTTPException(status_code=404, detail="quiz session not found")
    return state


def _cached_result(session_id: str, user: User) -> Optional[QuizResult]:
    cached = _results.get(session_id)
    if cached is None or cached[0] != user.username:
        return None
    return cached[1]


def _finish(state: QuizState, store: KeyValueStore) -> QuizResult:
    score = state.finish()
    total = len(state.questions)
    append_failed_questions(store, state.mistakes())
    progress = record_result(store, state.topic_id, score, total)
    percentage = score_percentage(score, total)
    result = QuizResult(
        session_id=state.session_id,
        score=score,
        total=total,
        percentage=percentage,
        passed=percentage >= settings.pass_mark_percent,
        verdict=verdict(score, total),
        progress=progress,
        review=[
            ReviewItem(
                question=q.question,
                options=q.options,
                user_answer_index=a,
                correct_answer_index=q.correct_answer_index,
                explanation=q.explanation,
            )
            for q, a in zip(state.questions, state.user_answers)
        ],
    )
    _sessions.pop(state.session_id, None)
    _results[state.session_id] = (state.username, result)
    while len(_results) > MAX_CACHED_RESULTS:
        _results.popitem(last=False)
    logger.info("Quiz %s on %s finished: %d/%d", state.session_id, state.topic_id, score, total)
    return result


@router.post("/{topic_id}/start", response_model=QuizView)
async def start_quiz(
    topic_id: str,
    req: StartRequest,
    user: User = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
):
    topic = require_topic(topic_id)
    require_unlocked(topic, store)
    questions = await generation.generate_quiz_questions(topic.title, settings.quiz_question_count)
    # One open quiz per user; starting another abandons the previous one
    for sid in [sid for sid, s in _sessions.items() if s.username == user.username]:
        del _sessions[sid]
    state = QuizState(user.username, topic.id, topic.title, questions, req.mode)
    _sessions[state.session_id] = state
    return _view(state)


@router.get("/sessions/{session_id}", response_model=QuizView)
def get_quiz(session_id: str, user: User = Depends(get_current_user)):
    return _view(_get_session(session_id, user))


@router.post("/sessions/{session_id}/answer", response_model=AnswerResponse)
def answer_question(session_id: str, req: AnswerRequest, user: User = Depends(get_current_user)):
    state = _get_session(session_id, user)
    try:
        correct = state.answer(req.option_index)
    except InvalidOptionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except QuizError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if state.mode == QuizMode.REAL:
        return AnswerResponse()
    question = state.current_question
    return AnswerResponse(
        correct=correct,
        correct_answer_index=question.correct_answer_index,
        explanation=question.explanation,
    )


@router.post("/sessions/{session_id}/next")
def next_question(
    session_id: str,
    user: User = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
):
    state = _get_session(session_id, user)
    if state.next():
        return {"quiz": _view(state), "result": _finish(state, store)}
    return {"quiz": _view(state), "result": None}


@router.post("/sessions/{session_id}/finish", response_model=QuizResult)
def finish_quiz(
    session_id: str,
    user: User = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
):
    cached = _cached_result(session_id, user)
    if cached is not None:
        return cached
    return _finish(_get_session(session_id, user), store)
