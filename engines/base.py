"""Shared machinery for the guided conversation flows.

A flow is a small state machine over :class:`schemas.SessionState`. Each
turn hands it a :class:`Turn` and it answers with a :class:`FlowResult`;
the orchestrator persists the result. Flows never write the session row
themselves; they may serve questions and record attempts, which join the
turn's transaction.
"""
from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type

import messages
from db import StoreError
from engines.difficulty import DifficultyEngine
from engines.question_selector import QuestionSelector
from engines.response_evaluator import (
    Evaluation,
    LearnerProgress,
    ResponseEvaluator,
    StaleQuestionError,
)
from env_validation import get_env_int
from schemas import Question, QuestionRun, Session, User
from tutor import TextGenerator

logger = logging.getLogger(__name__)

REMINDER_HOUR_UTC = 19

_CHOICE_RE = re.compile(r"^\s*(\d{1,2})\s*[.)]?\s*$")
_ANSWER_RE = re.compile(r"^\s*\(?([a-dA-D])\s*[.)]?\s*$")

YES_WORDS = frozenset({"1", "yes", "y", "yeah", "yep", "sure", "ok", "okay"})
NO_WORDS = frozenset({"2", "no", "n", "nope", "nah", "not now"})


def parse_choice(text: str, low: int, high: int) -> Optional[int]:
    """Menu number in ``[low, high]`` or ``None``."""
    match = _CHOICE_RE.match(text or "")
    if not match:
        return None
    value = int(match.group(1))
    return value if low <= value <= high else None


def parse_answer(text: str) -> Optional[str]:
    """Answer letter A-D, upper-cased, or ``None``."""
    match = _ANSWER_RE.match(text or "")
    return match.group(1).upper() if match else None


def parse_yes_no(text: str) -> Optional[bool]:
    cleaned = (text or "").strip().lower().rstrip("!.")
    if cleaned in YES_WORDS:
        return True
    if cleaned in NO_WORDS:
        return False
    return None


def tonight_at_19_utc(now: datetime) -> datetime:
    """19:00 UTC today, or tomorrow when that has already passed."""
    target = now.replace(hour=REMINDER_HOUR_UTC, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return target


@dataclass(frozen=True)
class Turn:
    user: User
    session: Session
    text: str
    now: datetime
    # computed by FlowEngine.prepare before the turn's transaction opened
    prepared: Mapping[str, Any] = field(default_factory=dict)

    @property
    def normalized(self) -> str:
        return self.text.strip().lower()


@dataclass
class FlowResult:
    session: Session
    reply: str
    user_updates: Dict[str, Any] = field(default_factory=dict)
    served_question_id: Optional[str] = None


@dataclass
class FlowServices:
    """Collaborators every flow shares."""

    store: Any
    selector: QuestionSelector
    evaluator: ResponseEvaluator
    difficulty: DifficultyEngine
    generator: Optional[TextGenerator] = None
    practice_set_size: int = 5

    @classmethod
    def build(
        cls,
        store: Any,
        *,
        difficulty: Optional[DifficultyEngine] = None,
        generator: Optional[TextGenerator] = None,
        practice_set_size: Optional[int] = None,
    ) -> "FlowServices":
        difficulty = difficulty or DifficultyEngine.from_env()
        return cls(
            store=store,
            selector=QuestionSelector(store),
            evaluator=ResponseEvaluator(store, difficulty),
            difficulty=difficulty,
            generator=generator,
            practice_set_size=practice_set_size or get_env_int("PRACTICE_SET_SIZE", 5),
        )


@dataclass(frozen=True)
class Graded:
    evaluation: Evaluation
    progress: LearnerProgress
    user_updates: Dict[str, Any]


Handler = Callable[[Turn], FlowResult]


class FlowEngine:
    """Base class for one flow family.

    Subclasses set ``flow_type``, implement :meth:`start` and return their
    per-state handlers from :meth:`handlers`.
    """

    flow_type: str = ""
    # steps that take any text as their answer, flow keywords included
    free_text_steps: frozenset = frozenset()

    def __init__(self, services: FlowServices) -> None:
        self.services = services
        self.store = services.store
        self._handlers: Mapping[Type, Handler] = self.handlers()

    def handlers(self) -> Mapping[Type, Handler]:
        raise NotImplementedError

    def start(self, turn: Turn) -> FlowResult:
        raise NotImplementedError

    def prepare(self, turn: Turn) -> Dict[str, Any]:
        """Slow read-only work for ``turn``, run outside the store transaction.

        The result reaches the handler as ``Turn.prepared``. Nothing here may
        write to the store.
        """
        return {}

    def takes_free_text(self, session: Session) -> bool:
        return session.state.step in self.free_text_steps

    def handle(self, turn: Turn) -> FlowResult:
        state = turn.session.state
        handler = self._handlers.get(type(state))
        if handler is None:
            logger.warning(
                "Session %s (%s) in unexpected state %r; restarting",
                turn.session.id,
                self.flow_type,
                getattr(state, "unknown_step", None) or state.step,
            )
            return self.restart(turn, messages.FLOW_RESET)
        try:
            return handler(turn)
        except StaleQuestionError as exc:
            logger.warning(
                "Stale question %r for user %s in %s; restarting flow",
                exc.question_id,
                turn.user.id,
                self.flow_type,
            )
            cleared = replace(turn, user=turn.user.model_copy(update={"current_question_id": None}))
            result = self.restart(cleared, messages.QUESTION_EXPIRED)
            result.user_updates.setdefault("current_question_id", None)
            return result

    def restart(self, turn: Turn, notice: str) -> FlowResult:
        result = self.start(turn)
        result.reply = messages.join(notice, result.reply)
        return result

    # ------------------------------------------------------------------
    # helpers for subclasses
    # ------------------------------------------------------------------
    def stay(self, turn: Turn, reply: str) -> FlowResult:
        return FlowResult(session=turn.session, reply=reply)

    def current_band(self, user: User) -> str:
        return self.services.difficulty.current_band(
            user.skill_rate, user.difficulty_band, user.total_answered, user.total_correct
        )

    def serve(
        self,
        turn: Turn,
        run: QuestionRun,
        topic: Optional[str],
        difficulty: str,
    ) -> Optional[Tuple[Question, QuestionRun]]:
        """Pick and serve the next question of ``run``; ``None`` when nothing is left."""
        question = self.services.selector.next(
            topic,
            difficulty,
            exclude_ids=run.used_question_ids,
            user_id=turn.user.id,
            now=turn.now,
        )
        if question is None:
            return None
        self.services.selector.serve(turn.user.id, question, turn.now)
        return question, run.with_served(question.id)

    def grade(self, turn: Turn, letter: str) -> Graded:
        """Evaluate the pending question, record the attempt and derive user updates.

        Raises :class:`StaleQuestionError` when the user has no resolvable
        pending question.
        """
        evaluator = self.services.evaluator
        evaluation = evaluator.evaluate(turn.user.current_question_id, letter)
        evaluator.record(
            turn.user.id,
            evaluation.question,
            evaluation.submitted_letter,
            evaluation.is_correct,
            turn.now,
            session_id=turn.session.id,
        )
        progress = evaluator.progress(turn.user, evaluation.is_correct)
        updates = progress.as_user_updates()
        updates["current_question_id"] = None
        return Graded(evaluation=evaluation, progress=progress, user_updates=updates)

    def end(
        self,
        turn: Turn,
        reply: str,
        session: Optional[Session] = None,
        user_updates: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> FlowResult:
        """Close the session; the user drops back to the main menu."""
        base = session or turn.session
        closed = base.model_copy(update={"ended_at": turn.now, **fields})
        updates = dict(user_updates or {})
        updates.update({"active_session_id": None, "current_question_id": None})
        return FlowResult(session=closed, reply=reply, user_updates=updates)

    def schedule_reminder(
        self,
        turn: Turn,
        kind: str,
        when: datetime,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        try:
            with self.store.savepoint():
                self.store.create_reminder(
                    turn.user.id,
                    kind,
                    when,
                    turn.now,
                    metadata={"session_id": turn.session.id, **dict(metadata or {})},
                )
        except (sqlite3.Error, StoreError) as exc:
            logger.warning("Could not schedule %s reminder for %s: %s", kind, turn.user.id, exc)
            return False
        return True
