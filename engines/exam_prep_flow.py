"""Exam preparation: what worries you, when is it, then focused practice at your level."""
from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

import messages
from date_parser import format_exam_date
from engines.base import FlowResult, Turn, parse_choice
from engines.plan_flow import PlanFlow
from schemas import AskProblemDetails, AskSubject, Session

PROBLEM_DETAILS_MAX_CHARS = 500

_TOPIC_HINTS = (
    ("calculus", re.compile(r"deriv|differentia|calculus|limit|first principles|gradient|tangent")),
    ("trigonometry", re.compile(r"\btrig|\b(?:sin|cos|tan)\b|\bangle|\bidentit")),
    ("algebra", re.compile(r"algebra|factor|equation|expand|simplif|exponent|inequalit|quadratic")),
)


def topic_from_details(text: str) -> Optional[str]:
    """Best guess of the maths topic named in free text, if any."""
    lowered = (text or "").lower()
    for topic, pattern in _TOPIC_HINTS:
        if pattern.search(lowered):
            return topic
    return None


class ExamPrepFlow(PlanFlow):
    flow_type = "exam_prep"
    free_text_steps = frozenset({"ask_problem_details"})

    practice_size = 5
    reminder_kind = "exam_prep_followup"
    intro = messages.EXAM_VALIDATION
    practice_start = messages.EXAM_PRACTICE_START
    correct_feedback = messages.EXAM_CORRECT
    incorrect_feedback = messages.EXAM_INCORRECT
    set_done = messages.EXAM_SET_DONE
    plan_cancel = messages.EXAM_PLAN_CANCEL
    lesson_cancel = messages.EXAM_LESSON_CANCEL
    break_message = messages.EXAM_BREAK
    reminder_message = messages.EXAM_REMINDER

    def extra_handlers(self):
        return {
            AskSubject: self._ask_subject,
            AskProblemDetails: self._ask_problem_details,
        }

    def after_grade(self, turn: Turn, session: Session, prefix: Optional[str] = None) -> FlowResult:
        return FlowResult(
            session=session.moved(AskSubject()),
            reply=messages.join(prefix, messages.SUBJECT_PROMPT),
        )

    def practice_difficulty(self, band: str) -> str:
        return band

    def short_plan(self, session: Session, now: datetime) -> str:
        hours_away = None
        if session.exam_date is not None:
            hours_away = max(0.0, (session.exam_date - now).total_seconds() / 3600.0)
        return messages.exam_short_plan(hours_away)

    def long_plan(self, session: Session) -> str:
        label = format_exam_date(session.exam_date) if session.exam_date else "your exam"
        return messages.exam_long_plan(label, session.preferred_time or "19:00")

    def plan_cancel_option(self, turn: Turn) -> FlowResult:
        return self.end(turn, messages.MAIN_MENU, next_action="main_menu")

    def _ask_subject(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 4)
        if choice is None:
            return self.stay(turn, messages.SUBJECT_RETRY)
        session = turn.session.moved(
            AskProblemDetails(), requested_subject=messages.SUBJECT_NAMES[choice]
        )
        return FlowResult(
            session=session,
            reply=messages.join(messages.subject_ack(choice, exam=True), messages.PROBLEM_DETAILS_PROMPT),
        )

    def _ask_problem_details(self, turn: Turn) -> FlowResult:
        details = turn.text.strip()
        if not details:
            return self.stay(turn, messages.PROBLEM_DETAILS_RETRY)
        topic = topic_from_details(details) or turn.session.topic
        session = turn.session.model_copy(
            update={"problem_details": details[:PROBLEM_DETAILS_MAX_CHARS], "topic": topic}
        )
        return self.ask_exam_date(session, messages.PROBLEM_DETAILS_ACK)
