"""Shared steps of the stress and exam-prep flows.

Both walk grade -> subject -> exam date -> plan -> lesson -> practice run
-> continue menu. Subclasses fill in the flow-specific copy, the steps
between grade and exam date, and the practice difficulty.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Type

import messages
from date_parser import format_exam_date, parse_exam_date, parse_preferred_time
from engines.base import (
    FlowEngine,
    FlowResult,
    Turn,
    parse_answer,
    parse_choice,
    parse_yes_no,
    tonight_at_19_utc,
)
from schemas import (
    AskExamDate,
    AskGrade,
    AskPreferredTime,
    Lesson,
    PlanAction,
    PlanDecision,
    Practice,
    PracticeContinue,
    Session,
)

logger = logging.getLogger(__name__)

LONG_PLAN_MIN_HOURS = 3
MAX_PLAN_REMINDERS = 14
DEFAULT_TOPIC = "calculus"

_GRADES = {
    "10": "10",
    "grade 10": "10",
    "gr10": "10",
    "11": "11",
    "grade 11": "11",
    "gr11": "11",
    "varsity": "varsity",
    "university": "varsity",
    "uni": "varsity",
}


def parse_grade(text: str) -> Optional[str]:
    return _GRADES.get(" ".join((text or "").strip().lower().split()))


def switched_topic(topic: Optional[str]) -> str:
    return "trigonometry" if (topic or DEFAULT_TOPIC) == "calculus" else "calculus"


def daily_reminder_times(now: datetime, exam_date: datetime, preferred_time: str) -> List[datetime]:
    """One reminder per day at ``preferred_time`` from now until the exam."""
    hour, minute = (int(part) for part in preferred_time.split(":"))
    first = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if first <= now:
        first += timedelta(days=1)
    times: List[datetime] = []
    current = first
    while current < exam_date and len(times) < MAX_PLAN_REMINDERS:
        times.append(current)
        current += timedelta(days=1)
    return times


class PlanFlow(FlowEngine):
    """Grade, exam date, plan, lesson and practice steps."""

    practice_size = 3
    reminder_kind = ""
    intro = ""
    practice_start = ""
    correct_feedback = ""
    incorrect_feedback = ""
    set_done = ""
    plan_cancel = ""
    lesson_cancel = ""
    break_message = ""
    reminder_message = ""

    def handlers(self):
        handlers: Dict[Type, object] = {
            AskGrade: self._ask_grade,
            AskExamDate: self._ask_exam_date,
            PlanDecision: self._plan_decision,
            AskPreferredTime: self._ask_preferred_time,
            PlanAction: self._plan_action,
            Lesson: self._lesson,
            Practice: self._practice,
            PracticeContinue: self._practice_continue,
        }
        handlers.update(self.extra_handlers())
        return handlers

    # hooks -------------------------------------------------------------
    def extra_handlers(self) -> Dict[Type, object]:
        return {}

    def after_grade(self, turn: Turn, session: Session, prefix: Optional[str] = None) -> FlowResult:
        raise NotImplementedError

    def practice_difficulty(self, band: str) -> str:
        """Difficulty of practice questions given the learner's current band."""
        raise NotImplementedError

    def short_plan(self, session: Session, now: datetime) -> str:
        raise NotImplementedError

    def long_plan(self, session: Session) -> str:
        raise NotImplementedError

    def plan_cancel_option(self, turn: Turn) -> FlowResult:
        return self.end(turn, self.plan_cancel, next_action="cancel")

    # entry -------------------------------------------------------------
    def start(self, turn: Turn) -> FlowResult:
        session = turn.session.moved(
            AskGrade(),
            topic=DEFAULT_TOPIC,
            stress_level=None,
            exam_date=None,
            preferred_time=None,
            requested_subject=None,
            problem_details=None,
            next_action=None,
            plan_opt_in=None,
        )
        if turn.user.grade is None:
            return FlowResult(
                session=session, reply=messages.join(self.intro, messages.GRADE_PROMPT)
            )
        return self.after_grade(turn, session, prefix=self.intro)

    def _ask_grade(self, turn: Turn) -> FlowResult:
        grade = parse_grade(turn.text)
        if grade is None:
            return self.stay(turn, messages.GRADE_RETRY)
        result = self.after_grade(turn, turn.session)
        result.user_updates["grade"] = grade
        return result

    # exam date and plan ------------------------------------------------
    def ask_exam_date(self, session: Session, prefix: Optional[str]) -> FlowResult:
        return FlowResult(
            session=session.moved(AskExamDate()),
            reply=messages.join(prefix, messages.EXAM_DATE_PROMPT),
        )

    def _ask_exam_date(self, turn: Turn) -> FlowResult:
        parsed = parse_exam_date(turn.text, turn.now)
        if parsed is None:
            return self.stay(turn, messages.EXAM_DATE_RETRY)
        if parsed.skipped:
            return self._show_short_plan(turn, turn.session.model_copy(update={"exam_date": None}))

        hours_away = parsed.hours_until(turn.now) or 0.0
        session = turn.session.moved(PlanDecision(hours_away=hours_away), exam_date=parsed.when)
        offer = messages.PLAN_OFFER_LONG if hours_away > LONG_PLAN_MIN_HOURS else messages.PLAN_OFFER_SHORT
        return FlowResult(
            session=session,
            reply=messages.join(f"Got it: {format_exam_date(parsed.when)}. 📅", offer),
        )

    def _plan_decision(self, turn: Turn) -> FlowResult:
        state: PlanDecision = turn.session.state
        answer = parse_yes_no(turn.text)
        if answer is None:
            return self.stay(turn, messages.PLAN_DECISION_RETRY)
        if answer and state.hours_away > LONG_PLAN_MIN_HOURS:
            session = turn.session.moved(AskPreferredTime(hours_away=state.hours_away))
            return FlowResult(session=session, reply=messages.TIME_PROMPT)
        return self._show_short_plan(turn, turn.session.model_copy(update={"plan_opt_in": answer}))

    def _ask_preferred_time(self, turn: Turn) -> FlowResult:
        preferred = parse_preferred_time(turn.text)
        if preferred is None:
            return self.stay(turn, messages.TIME_RETRY)
        session = turn.session.moved(
            PlanAction(plan="long"), preferred_time=preferred, plan_opt_in=True, reminder_opt_in=True
        )
        if session.exam_date is not None:
            times = daily_reminder_times(turn.now, session.exam_date, preferred)
            for when in times:
                self.schedule_reminder(
                    turn, "study_plan", when, {"flow": self.flow_type, "topic": session.topic}
                )
            logger.info("Scheduled %s study plan reminders for %s", len(times), turn.user.id)
        return FlowResult(session=session, reply=self.long_plan(session))

    def _show_short_plan(self, turn: Turn, session: Session) -> FlowResult:
        session = session.moved(PlanAction(plan="short"))
        return FlowResult(session=session, reply=self.short_plan(session, turn.now))

    def _plan_action(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 3)
        if choice == 1:
            return self._show_lesson(turn.session, turn.session.topic)
        if choice == 2:
            return self._show_lesson(turn.session, switched_topic(turn.session.topic))
        if choice == 3:
            return self.plan_cancel_option(turn)
        return self.stay(turn, messages.PLAN_ACTION_RETRY)

    # lesson and practice -----------------------------------------------
    def _show_lesson(self, session: Session, topic: Optional[str]) -> FlowResult:
        topic = topic or DEFAULT_TOPIC
        return FlowResult(session=session.moved(Lesson(), topic=topic), reply=messages.lesson(topic))

    def _lesson(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 3)
        if choice == 1:
            return self._start_practice(turn, turn.session, self.practice_start)
        if choice == 2:
            return self.stay(turn, messages.extra_example(turn.session.topic))
        if choice == 3:
            return self.end(turn, self.lesson_cancel, next_action="cancel")
        return self.stay(turn, messages.LESSON_RETRY)

    def _start_practice(self, turn: Turn, session: Session, prefix: Optional[str]) -> FlowResult:
        difficulty = self.practice_difficulty(self.current_band(turn.user))
        served = self.serve(turn, Practice(size=self.practice_size), session.topic, difficulty)
        if served is None:
            return FlowResult(
                session=session.moved(PracticeContinue()),
                reply=messages.join(prefix, messages.NO_CONTENT),
            )
        question, run = served
        return FlowResult(
            session=session.moved(run),
            reply=messages.join(
                prefix,
                messages.format_question(question, messages.question_counter(0, run.size)),
            ),
            served_question_id=question.id,
        )

    def _practice(self, turn: Turn) -> FlowResult:
        state: Practice = turn.session.state
        letter = parse_answer(turn.text)
        if letter is None:
            return self.stay(turn, messages.ANSWER_WITH_LETTER)

        graded = self.grade(turn, letter)
        evaluation = graded.evaluation
        feedback = (
            self.correct_feedback
            if evaluation.is_correct
            else self.incorrect_feedback.format(letter=evaluation.correct_letter)
        )
        run = state.answered(evaluation.is_correct)

        if run.finished:
            return FlowResult(
                session=turn.session.moved(PracticeContinue()),
                reply=messages.join(
                    feedback, self.set_done, messages.PRACTICE_CONTINUE_MENU
                ),
                user_updates=graded.user_updates,
            )

        # the band already reflects this answer
        served = self.serve(turn, run, turn.session.topic, self.practice_difficulty(graded.progress.band))
        if served is None:
            return FlowResult(
                session=turn.session.moved(PracticeContinue()),
                reply=messages.join(feedback, messages.PRACTICE_CONTINUE_MENU),
                user_updates=graded.user_updates,
            )
        question, run = served
        return FlowResult(
            session=turn.session.moved(run),
            reply=messages.join(
                feedback,
                messages.format_question(question, messages.question_counter(run.burst_index, run.size)),
            ),
            user_updates=graded.user_updates,
            served_question_id=question.id,
        )

    def _practice_continue(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 4)
        session = turn.session
        if choice == 1:
            return self._start_practice(turn, session.model_copy(update={"next_action": "continue"}), None)
        if choice == 2:
            topic = switched_topic(session.topic)
            return self._start_practice(
                turn,
                session.model_copy(update={"topic": topic, "next_action": "switch_topic"}),
                messages.practice_switched(topic),
            )
        if choice == 3:
            return self.end(turn, self.break_message, next_action="break")
        if choice == 4:
            self.schedule_reminder(
                turn, self.reminder_kind, tonight_at_19_utc(turn.now), {"topic": session.topic}
            )
            return self.end(turn, self.reminder_message, next_action="reminder", reminder_opt_in=True)
        return self.stay(turn, messages.CONTINUE_RETRY)
