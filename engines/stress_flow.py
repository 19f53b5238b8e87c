"""Stress triage: check in, pick a subject, plan around the exam, ease in gently."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

import messages
from date_parser import format_exam_date
from engines.base import FlowResult, Turn, parse_choice
from engines.difficulty import EASY
from engines.plan_flow import PlanFlow
from schemas import AskStressLevel, AskSubject, Session

HIGH_STRESS_MAX = 2


class StressFlow(PlanFlow):
    flow_type = "stress"

    reminder_kind = "stress_followup"
    practice_start = messages.STRESS_PRACTICE_START
    correct_feedback = messages.STRESS_CORRECT
    incorrect_feedback = messages.STRESS_INCORRECT
    set_done = messages.STRESS_SET_DONE
    plan_cancel = messages.STRESS_PLAN_CANCEL
    lesson_cancel = messages.STRESS_LESSON_CANCEL
    break_message = messages.STRESS_BREAK
    reminder_message = messages.STRESS_REMINDER

    def extra_handlers(self):
        return {
            AskStressLevel: self._ask_stress_level,
            AskSubject: self._ask_subject,
        }

    def after_grade(self, turn: Turn, session: Session, prefix: Optional[str] = None) -> FlowResult:
        return FlowResult(
            session=session.moved(AskStressLevel()),
            reply=messages.join(prefix, messages.STRESS_LEVEL_PROMPT),
        )

    def practice_difficulty(self, band: str) -> str:
        return EASY

    def short_plan(self, session: Session, now: datetime) -> str:
        return messages.stress_short_plan(session.topic)

    def long_plan(self, session: Session) -> str:
        label = format_exam_date(session.exam_date) if session.exam_date else "your exam"
        return messages.stress_long_plan(session.topic, label, session.preferred_time or "19:00")

    def _ask_stress_level(self, turn: Turn) -> FlowResult:
        level = parse_choice(turn.text, 1, 4)
        if level is None:
            return self.stay(turn, messages.STRESS_LEVEL_RETRY)
        validation = messages.VALIDATION_HIGH if level <= HIGH_STRESS_MAX else messages.VALIDATION_LOW
        return FlowResult(
            session=turn.session.moved(AskSubject(), stress_level=level),
            reply=messages.join(validation, messages.SUBJECT_PROMPT),
        )

    def _ask_subject(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 4)
        if choice is None:
            return self.stay(turn, messages.SUBJECT_RETRY)
        session = turn.session.model_copy(
            update={"requested_subject": messages.SUBJECT_NAMES[choice]}
        )
        return self.ask_exam_date(session, messages.subject_ack(choice, exam=False))
