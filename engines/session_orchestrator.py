"""Turn handling: parse the message, route it to a flow, persist the result once."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import messages
from clock import Clock, SystemClock
from db import SessionConflictError, StoreError
from engines.base import FlowEngine, FlowResult, FlowServices, Turn, parse_answer, parse_choice
from engines.confidence_flow import ConfidenceFlow
from engines.exam_prep_flow import ExamPrepFlow
from engines.panic_flow import PanicFlow
from engines.practice_flow import PracticeFlow
from engines.stress_flow import StressFlow
from schemas import FLOW_TYPES, NeedsReset, Session, User

logger = logging.getLogger(__name__)

WELCOME_MENU = "welcome"

MENU_COMMANDS = frozenset({"menu", "home"})
CANCEL_COMMANDS = frozenset({"cancel", "stop", "quit"})
HELP_COMMANDS = frozenset({"help"})
REPORT_COMMANDS = frozenset({"report", "stats", "progress"})
COMMANDS = MENU_COMMANDS | CANCEL_COMMANDS | HELP_COMMANDS | REPORT_COMMANDS

FLOW_KEYWORDS: Dict[str, str] = {
    "panic": "panic",
    "sos": "panic",
    "stressed": "stress",
    "stress": "stress",
    "exam": "exam_prep",
    "test": "exam_prep",
    "boost": "confidence",
    "confidence": "confidence",
    "therapy": "confidence",
    "practice": "practice",
    "next": "practice",
    "question": "practice",
    "q": "practice",
}

MAIN_MENU_FLOWS: Dict[int, str] = {
    1: "exam_prep",
    2: "stress",
    3: "panic",
    4: "confidence",
    5: "practice",
}


_LEFT_FLOW: Mapping[str, Any] = {
    "active_session_id": None,
    "current_question_id": None,
    "current_menu": WELCOME_MENU,
}


class InboundValidationError(ValueError):
    """The inbound message lacks a user identity or text."""


@dataclass(frozen=True)
class TurnReply:
    text: str
    status: str = "ok"


def default_flows(services: FlowServices) -> Dict[str, FlowEngine]:
    engines: Iterable[FlowEngine] = (
        PanicFlow(services),
        StressFlow(services),
        ExamPrepFlow(services),
        ConfidenceFlow(services),
        PracticeFlow(services),
    )
    return {engine.flow_type: engine for engine in engines}


def normalize_command(text: str) -> str:
    return " ".join(text.lower().split())


def menu_tag(session: Optional[Session]) -> str:
    if session is None or not session.active:
        return WELCOME_MENU
    return f"{session.flow_type}:{session.state.step}"


class SessionOrchestrator:
    """Entry point for one inbound message.

    Every turn runs inside a single store transaction: the session is
    written once with a version check, user fields are applied, and any
    failure rolls back everything the turn did, question serves included.
    Slow read-only work (text generation) runs before that transaction
    opens through :meth:`FlowEngine.prepare`, so no write lock is held
    while it waits.
    """

    def __init__(
        self,
        store: Any,
        *,
        services: Optional[FlowServices] = None,
        clock: Optional[Clock] = None,
        flows: Optional[Mapping[str, FlowEngine]] = None,
    ) -> None:
        self.store = store
        self.services = services or FlowServices.build(store)
        self.clock = clock or SystemClock()
        self.flows: Dict[str, FlowEngine] = dict(flows or default_flows(self.services))

    @staticmethod
    def validate(user_identity: Any, message: Any) -> Tuple[str, str]:
        if not isinstance(user_identity, str) or not user_identity.strip():
            raise InboundValidationError("user_identity is required")
        if not isinstance(message, str) or not message.strip():
            raise InboundValidationError("message is required")
        return user_identity.strip(), message.strip()

    def handle_message(self, user_identity: Any, message: Any) -> TurnReply:
        user_id, text = self.validate(user_identity, message)
        now = self.clock.now()
        try:
            prepared = self._prepare(user_id, text, now)
            with self.store.transaction():
                reply = self._turn(user_id, text, now, prepared)
        except SessionConflictError as exc:
            logger.warning("Session conflict for %s, turn dropped: %s", user_id, exc)
            return TurnReply(text=messages.BUSY, status="error")
        except (StoreError, sqlite3.Error):
            logger.exception("Store failure while handling message for %s", user_id)
            return TurnReply(text=messages.GENERIC_ERROR, status="error")
        except Exception:
            logger.exception("Unexpected error while handling message for %s", user_id)
            return TurnReply(text=messages.GENERIC_ERROR, status="error")
        logger.debug("turn_handled user=%s", user_id)
        return TurnReply(text=reply)

    # ------------------------------------------------------------------
    # routing
    # ------------------------------------------------------------------
    def _prepare(self, user_id: str, text: str, now: datetime) -> Dict[str, Any]:
        user = self.store.get_user(user_id)
        if user is None:
            return {}
        active = self._active_session(user)
        if active is None or not self._active_flow_takes(normalize_command(text), active):
            return {}
        flow = self.flows[active.flow_type]
        return flow.prepare(Turn(user=user, session=active, text=text, now=now))

    def _active_flow_takes(self, command: str, active: Optional[Session]) -> bool:
        """Whether the active session, rather than a command or keyword, handles ``command``."""
        if active is None or command in COMMANDS:
            return False
        if command in FLOW_KEYWORDS:
            return self.flows[active.flow_type].takes_free_text(active)
        return True

    def _turn(self, user_id: str, text: str, now: datetime, prepared: Mapping[str, Any]) -> str:
        user = self.store.get_or_create_user(user_id, now)
        command = normalize_command(text)
        active = self._active_session(user)

        if command in MENU_COMMANDS:
            self._end_sessions(user, now)
            self._touch(user, now, _LEFT_FLOW)
            return messages.MAIN_MENU

        if command in CANCEL_COMMANDS:
            self._end_sessions(user, now)
            self._touch(user, now, _LEFT_FLOW)
            return messages.CANCELLED

        if command in HELP_COMMANDS:
            self._touch(user, now)
            return messages.HELP

        if command in REPORT_COMMANDS:
            self._touch(user, now)
            return self._report(user)

        if self._active_flow_takes(command, active):
            flow = self.flows[active.flow_type]
            turn = Turn(user=user, session=active, text=text, now=now, prepared=prepared)
            return self._apply(user, flow.handle(turn), now)

        if command in FLOW_KEYWORDS:
            return self._start_flow(user, FLOW_KEYWORDS[command], text, now)

        choice = parse_choice(text, 1, len(MAIN_MENU_FLOWS))
        if choice is not None:
            return self._start_flow(user, MAIN_MENU_FLOWS[choice], text, now)

        if parse_answer(text) is not None:
            self._touch(user, now, {"current_question_id": None, "current_menu": WELCOME_MENU})
            return messages.NO_QUESTION_ACTIVE

        if command.isdigit():
            self._touch(user, now, {"current_menu": WELCOME_MENU})
            return messages.join(messages.INVALID_MENU_OPTION, messages.MAIN_MENU)

        self._touch(user, now, {"current_menu": WELCOME_MENU})
        return messages.MAIN_MENU

    def _active_session(self, user: User) -> Optional[Session]:
        if user.active_session_id is None:
            return None
        session = self.store.get_session(user.active_session_id)
        if session is None or not session.active or session.user_id != user.id:
            return None
        if session.flow_type not in self.flows:
            logger.warning("Session %s has unknown flow %r", session.id, session.flow_type)
            return None
        return session

    def _end_sessions(self, user: User, now: datetime, keep: Optional[str] = None) -> None:
        for flow_type in FLOW_TYPES:
            if flow_type == keep:
                continue
            session = self.store.get_active_session(user.id, flow_type)
            if session is not None:
                self.store.end_session(session, now)

    def _start_flow(self, user: User, flow_type: str, text: str, now: datetime) -> str:
        self._end_sessions(user, now, keep=flow_type)
        session = self.store.get_active_session(user.id, flow_type)
        if session is None:
            session = self.store.create_session(user.id, flow_type, NeedsReset(), now)
        # a question pending from an earlier flow no longer applies
        cleared = user.model_copy(update={"current_question_id": None})
        result = self.flows[flow_type].start(Turn(user=cleared, session=session, text=text, now=now))
        result.user_updates.setdefault("current_question_id", None)
        return self._apply(user, result, now)

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def _apply(self, user: User, result: FlowResult, now: datetime) -> str:
        updates: Dict[str, Any] = dict(result.user_updates)
        if result.served_question_id:
            updates["current_question_id"] = result.served_question_id
        session = self.store.save_session(result.session, now)
        updates["active_session_id"] = session.id if session.active else None
        updates["current_menu"] = menu_tag(session)
        self._touch(user, now, updates)
        return result.reply

    def _touch(self, user: User, now: datetime, updates: Optional[Mapping[str, Any]] = None) -> None:
        fields = dict(updates or {})
        fields["last_active_at"] = now
        self.store.update_user(user.id, fields)

    def _report(self, user: User) -> str:
        band = self.services.difficulty.current_band(
            user.skill_rate, user.difficulty_band, user.total_answered, user.total_correct
        )
        return messages.report(
            total_answered=user.total_answered,
            total_correct=user.total_correct,
            streak=user.streak_count,
            band=band,
            weaknesses=self.store.list_weaknesses(user.id, limit=3),
        )
