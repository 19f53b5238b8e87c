"""Answer checking, attempt recording and learner progress."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from db import StoreError
from engines.difficulty import BOOTSTRAP_MIN_ANSWERS, DifficultyEngine
from schemas import Question, User

logger = logging.getLogger(__name__)

GENERIC_WEAKNESS_TAG = "general_concept"


class StaleQuestionError(LookupError):
    """The referenced question no longer resolves; the caller's state is stale."""

    def __init__(self, question_id: Optional[str]):
        super().__init__(f"question {question_id!r} not found")
        self.question_id = question_id


def normalize_letter(value: Any) -> str:
    return str(value or "").strip().upper()


@dataclass(frozen=True)
class Evaluation:
    question: Question
    is_correct: bool
    correct_letter: str
    submitted_letter: str


@dataclass(frozen=True)
class LearnerProgress:
    skill_rate: float
    streak_count: int
    previous_streak: int
    total_answered: int
    total_correct: int
    band: str
    store_band: bool

    @property
    def accuracy_percent(self) -> int:
        if not self.total_answered:
            return 0
        return int(round(100 * self.total_correct / self.total_answered))

    def as_user_updates(self) -> Dict[str, Any]:
        updates: Dict[str, Any] = {
            "skill_rate": self.skill_rate,
            "streak_count": self.streak_count,
            "total_answered": self.total_answered,
            "total_correct": self.total_correct,
        }
        if self.store_band:
            updates["difficulty_band"] = self.band
        return updates


class ResponseEvaluator:
    def __init__(self, store, difficulty: Optional[DifficultyEngine] = None) -> None:
        self.store = store
        self.difficulty = difficulty or DifficultyEngine()

    def evaluate(self, question_id: Optional[str], submitted_letter: Any) -> Evaluation:
        """Compare the submitted letter with the stored answer.

        Raises :class:`StaleQuestionError` when ``question_id`` is empty or
        unknown.
        """
        if not question_id:
            raise StaleQuestionError(question_id)
        question = self.store.get_question(question_id)
        if question is None:
            raise StaleQuestionError(question_id)
        correct = normalize_letter(question.correct_choice)
        submitted = normalize_letter(submitted_letter)
        return Evaluation(
            question=question,
            is_correct=bool(submitted) and submitted == correct,
            correct_letter=correct,
            submitted_letter=submitted,
        )

    def resolve_weakness_tag(self, question: Question, letter: str) -> str:
        choice = question.choice(letter)
        tag = (choice.weakness_tag or "").strip() if choice else ""
        return tag or GENERIC_WEAKNESS_TAG

    def record(
        self,
        user_id: str,
        question: Question,
        letter: str,
        is_correct: bool,
        now: datetime,
        session_id: Optional[int] = None,
    ) -> bool:
        """Append the attempt and update stats; failures are logged, not raised."""
        submitted = normalize_letter(letter)
        try:
            with self.store.savepoint():
                self.store.insert_response(
                    user_id=user_id,
                    question_id=question.id,
                    submitted_choice=submitted,
                    is_correct=is_correct,
                    answered_at=now,
                    session_id=session_id,
                )
                self.store.record_question_result(question.id, is_correct)
        except (sqlite3.Error, StoreError) as exc:
            logger.warning("Recording response for %s/%s failed: %s", user_id, question.id, exc)
            return False

        if is_correct:
            return True

        tag = self.resolve_weakness_tag(question, submitted)
        try:
            with self.store.savepoint():
                self.store.upsert_weakness(user_id, tag, now)
        except (sqlite3.Error, StoreError) as exc:
            logger.warning("Weakness logging for %s (%s) failed: %s", user_id, tag, exc)
            return False
        return True

    def progress(self, user: User, is_correct: bool) -> LearnerProgress:
        """Learner statistics after one more answer."""
        total_answered = user.total_answered + 1
        total_correct = user.total_correct + (1 if is_correct else 0)
        skill_rate = self.difficulty.update_rate(user.skill_rate, is_correct)
        band = self.difficulty.current_band(
            skill_rate, user.difficulty_band, total_answered, total_correct
        )
        return LearnerProgress(
            skill_rate=skill_rate,
            streak_count=user.streak_count + 1 if is_correct else 0,
            previous_streak=user.streak_count,
            total_answered=total_answered,
            total_correct=total_correct,
            band=band,
            store_band=total_answered >= BOOTSTRAP_MIN_ANSWERS,
        )
