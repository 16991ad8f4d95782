from __future__ import annotations
import uuid
from enum import Enum
from typing import List, Optional

from .generation import QuizQuestion
from .progress import FailedQuestion, now_ms


UNANSWERED = -1


class QuizMode(str, Enum):
	REAL = "REAL"  # exam mode: no feedback until the end
	REVIEW = "REVIEW"  # immediate feedback and explanations


class QuizError(ValueError):
	pass


class InvalidOptionError(QuizError):
	pass


class QuizState:
	def __init__(self, username: str, topic_id: str, topic_title: str, questions: List[QuizQuestion], mode: QuizMode) -> None:
		self.session_id: str = uuid.uuid4().hex
		self.username = username
		self.topic_id = topic_id
		self.topic_title = topic_title
		self.questions = list(questions)
		self.user_answers: List[int] = [UNANSWERED] * len(self.questions)
		self.current_question_index = 0
		self.is_finished = False
		self.score = 0
		self.mode = mode

	@property
	def current_question(self) -> Optional[QuizQuestion]:
		if not self.questions:
			return None
		return self.questions[self.current_question_index]

	def answer(self, option_index: int) -> bool:
		"""Record an answer for the current question and return whether it is correct."""
		if self.is_finished:
			raise QuizError("quiz already finished")
		question = self.current_question
		if question is None:
			raise QuizError("quiz has no questions")
		if not (0 <= option_index < len(question.options)):
			raise InvalidOptionError(f"option_index must be between 0 and {len(question.options) - 1}")
		idx = self.current_question_index
		if self.mode == QuizMode.REVIEW and self.user_answers[idx] != UNANSWERED:
			raise QuizError("question already answered")
		self.user_answers[idx] = option_index
		return option_index == question.correct_answer_index

	def next(self) -> bool:
		"""Advance to the next question; finishes on the last one. Returns True when finished."""
		if self.is_finished:
			return True
		if self.current_question_index < len(self.questions) - 1:
			self.current_question_index += 1
			return False
		self.finish()
		return True

	def finish(self) -> int:
		self.score = sum(
			1 for q, a in zip(self.questions, self.user_answers) if a == q.correct_answer_index
		)
		self.is_finished = True
		return self.score

	def mistakes(self) -> List[FailedQuestion]:
		"""Answered questions that were wrong; skipped questions are not mistakes."""
		out: List[FailedQuestion] = []
		stamp = now_ms()
		for q, a in zip(self.questions, self.user_answers):
			if a == UNANSWERED or a == q.correct_answer_index:
				continue
			out.append(FailedQuestion(
				topic_title=self.topic_title,
				question=q.question,
				user_answer=q.options[a],
				correct_answer=q.options[q.correct_answer_index],
				explanation=q.explanation,
				date=stamp,
			))
		return out


def verdict(score: int, total: int) -> str:
	if total > 0 and score == total:
		return "¡Excelente! Dominas este tema."
	if score >= total / 2:
		return "Bien hecho, pero hay margen de mejora."
	return "Necesitas repasar este título."
