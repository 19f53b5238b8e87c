"""Open practice: questions at the learner's level with detailed feedback."""
from __future__ import annotations

from typing import Optional

import messages
from engines.base import FlowEngine, FlowResult, Turn, parse_answer, parse_choice, tonight_at_19_utc
from schemas import Practice, PracticeContinue, Session

TOPIC_CYCLE = ("algebra", "calculus", "trigonometry")


def next_topic(topic: Optional[str]) -> str:
    """Cycle algebra -> calculus -> trigonometry; mixed practice starts at algebra."""
    if topic not in TOPIC_CYCLE:
        return TOPIC_CYCLE[0]
    return TOPIC_CYCLE[(TOPIC_CYCLE.index(topic) + 1) % len(TOPIC_CYCLE)]


class PracticeFlow(FlowEngine):
    flow_type = "practice"

    def handlers(self):
        return {
            Practice: self._answer,
            PracticeContinue: self._continue_menu,
        }

    @property
    def set_size(self) -> int:
        return max(1, int(self.services.practice_set_size))

    def start(self, turn: Turn) -> FlowResult:
        return self._start_set(turn, turn.session, band=self.current_band(turn.user))

    def _start_set(self, turn: Turn, session: Session, band: str, prefix: Optional[str] = None) -> FlowResult:
        served = self.serve(turn, Practice(size=self.set_size), session.topic, band)
        if served is None:
            return self.end(turn, messages.join(prefix, messages.PRACTICE_EMPTY), session=session)
        question, run = served
        return FlowResult(
            session=session.moved(run),
            reply=messages.join(
                prefix,
                messages.format_question(question, messages.practice_header(session.topic, question.difficulty)),
            ),
            served_question_id=question.id,
        )

    def _answer(self, turn: Turn) -> FlowResult:
        state: Practice = turn.session.state
        letter = parse_answer(turn.text)
        if letter is None:
            return self.stay(turn, messages.ANSWER_WITH_LETTER)

        graded = self.grade(turn, letter)
        evaluation, progress = graded.evaluation, graded.progress
        feedback = messages.practice_feedback(
            is_correct=evaluation.is_correct,
            correct_letter=evaluation.correct_letter,
            topic=evaluation.question.topic,
            streak=progress.streak_count,
            previous_streak=progress.previous_streak,
            accuracy_percent=progress.accuracy_percent,
            total_answered=progress.total_answered,
            explanation=evaluation.question.explanation,
        )
        run = state.answered(evaluation.is_correct)

        if run.finished:
            return FlowResult(
                session=turn.session.moved(PracticeContinue()),
                reply=messages.join(
                    feedback,
                    messages.practice_set_done(run.correct_count, run.size),
                    messages.PRACTICE_CONTINUE_MENU,
                ),
                user_updates=graded.user_updates,
            )

        served = self.serve(turn, run, turn.session.topic, progress.band)
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
                messages.format_question(
                    question, messages.practice_header(turn.session.topic, question.difficulty)
                ),
            ),
            user_updates=graded.user_updates,
            served_question_id=question.id,
        )

    def _continue_menu(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 4)
        session = turn.session
        band = self.current_band(turn.user)
        if choice == 1:
            return self._start_set(turn, session.model_copy(update={"next_action": "continue"}), band)
        if choice == 2:
            topic = next_topic(session.topic)
            return self._start_set(
                turn,
                session.model_copy(update={"topic": topic, "next_action": "switch_topic"}),
                band,
                prefix=messages.practice_switched(topic),
            )
        if choice == 3:
            return self.end(turn, messages.PRACTICE_BREAK, next_action="break")
        if choice == 4:
            self.schedule_reminder(
                turn, "practice_reminder", tonight_at_19_utc(turn.now), {"topic": session.topic}
            )
            return self.end(turn, messages.PRACTICE_REMINDER, next_action="reminder", reminder_opt_in=True)
        return self.stay(turn, messages.CONTINUE_RETRY)
