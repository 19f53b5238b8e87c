"""Panic mode: calm the learner, one micro-lesson, then a three-question burst."""
from __future__ import annotations

import logging
from typing import Optional

import messages
from engines.base import FlowEngine, FlowResult, Turn, parse_answer, parse_choice, tonight_at_19_utc
from engines.difficulty import EASY
from schemas import AskLevel, AskTopic, Burst, MicroModule, MomentumMenu, PanicPlan, Session

logger = logging.getLogger(__name__)

BURST_SIZE = 3
NOT_SURE = "unknown"

_TOPIC_CHOICES = {1: "calculus", 2: "trigonometry", 3: NOT_SURE}


def selection_topic(topic: Optional[str]) -> Optional[str]:
    """Topic filter for the selector; "not sure" draws from every topic."""
    return None if topic in (None, NOT_SURE) else topic


def switched_topic(topic: Optional[str]) -> str:
    return "calculus" if topic == "trigonometry" else "trigonometry"


class PanicFlow(FlowEngine):
    flow_type = "panic"

    def handlers(self):
        return {
            AskLevel: self._ask_level,
            AskTopic: self._ask_topic,
            PanicPlan: self._plan,
            MicroModule: self._micro_module,
            Burst: self._burst,
            MomentumMenu: self._momentum_menu,
        }

    def start(self, turn: Turn) -> FlowResult:
        session = turn.session.moved(
            AskLevel(), topic=None, panic_level=None, burst_score=None, next_action=None
        )
        return FlowResult(session=session, reply=messages.PANIC_INTRO)

    def _ask_level(self, turn: Turn) -> FlowResult:
        level = parse_choice(turn.text, 1, 5)
        if level is None:
            return self.stay(turn, messages.PANIC_LEVEL_RETRY)
        session = turn.session.moved(AskTopic(), panic_level=level)
        return FlowResult(session=session, reply=messages.panic_topic_prompt(level))

    def _ask_topic(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 3)
        if choice is None:
            return self.stay(turn, messages.PANIC_TOPIC_RETRY)
        topic = _TOPIC_CHOICES[choice]
        session = turn.session.moved(PanicPlan(), topic=topic)
        return FlowResult(session=session, reply=messages.panic_plan(topic))

    def _plan(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 3)
        if choice == 1:
            session = turn.session.moved(MicroModule())
            return FlowResult(session=session, reply=messages.micro_module(turn.session.topic))
        if choice == 2:
            session = turn.session.moved(AskTopic())
            return FlowResult(
                session=session,
                reply=messages.panic_topic_prompt(turn.session.panic_level or 3),
            )
        if choice == 3:
            return self.end(turn, messages.PANIC_PLAN_CANCEL, next_action="cancel")
        return self.stay(turn, messages.PANIC_PLAN_RETRY)

    def _micro_module(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 3)
        if choice == 1:
            return self._start_burst(turn, turn.session, turn.session.topic)
        if choice == 2:
            return self.stay(turn, messages.micro_module_extra(turn.session.topic))
        if choice == 3:
            return self.end(turn, messages.MICRO_CANCEL, next_action="cancel")
        return self.stay(turn, messages.MICRO_RETRY)

    def _start_burst(
        self,
        turn: Turn,
        session: Session,
        topic: Optional[str],
        prefix: Optional[str] = None,
    ) -> FlowResult:
        served = self.serve(turn, Burst(size=BURST_SIZE), selection_topic(topic), EASY)
        if served is None:
            logger.info("No burst question for user %s topic=%s", turn.user.id, topic)
            empty = session.moved(MomentumMenu(last_score=None), topic=topic)
            return FlowResult(session=empty, reply=messages.join(prefix, messages.BURST_EMPTY))
        question, run = served
        return FlowResult(
            session=session.moved(run, topic=topic),
            reply=messages.join(
                prefix, messages.format_question(question, messages.burst_header(0, run.size))
            ),
            served_question_id=question.id,
        )

    def _burst(self, turn: Turn) -> FlowResult:
        state: Burst = turn.session.state
        letter = parse_answer(turn.text)
        if letter is None:
            return self.stay(turn, messages.ANSWER_WITH_LETTER)

        graded = self.grade(turn, letter)
        evaluation = graded.evaluation
        run = state.answered(evaluation.is_correct)
        feedback = (
            messages.BURST_CORRECT
            if evaluation.is_correct
            else messages.burst_incorrect(evaluation.correct_letter)
        )

        if run.finished:
            score = run.correct_count
            burst_score = turn.session.burst_score if turn.session.burst_score is not None else score
            session = turn.session.moved(MomentumMenu(last_score=score), burst_score=burst_score)
            return FlowResult(
                session=session,
                reply=messages.join(feedback, messages.momentum_menu(score, run.size)),
                user_updates=graded.user_updates,
            )

        served = self.serve(turn, run, selection_topic(turn.session.topic), EASY)
        if served is None:
            session = turn.session.moved(MomentumMenu(last_score=run.correct_count))
            return FlowResult(
                session=session,
                reply=messages.join(feedback, messages.BURST_EMPTY),
                user_updates=graded.user_updates,
            )
        question, run = served
        return FlowResult(
            session=turn.session.moved(run),
            reply=messages.join(
                feedback, messages.format_question(question, messages.burst_header(run.burst_index, run.size))
            ),
            user_updates=graded.user_updates,
            served_question_id=question.id,
        )

    def _momentum_menu(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 4)
        session = turn.session
        if choice == 1:
            return self._start_burst(turn, session.model_copy(update={"next_action": "continue"}), session.topic)
        if choice == 2:
            topic = switched_topic(session.topic)
            return self._start_burst(
                turn,
                session.model_copy(update={"next_action": "switch_topic"}),
                topic,
                prefix=f"Switched to {messages.topic_name(topic)}. 🔄",
            )
        if choice == 3:
            return self.end(turn, messages.PANIC_BREAK, next_action="break")
        if choice == 4:
            self.schedule_reminder(
                turn,
                "panic_evening",
                tonight_at_19_utc(turn.now),
                {"topic": session.topic, "burst_score": session.burst_score},
            )
            return self.end(turn, messages.PANIC_REMINDER, next_action="reminder", reminder_opt_in=True)
        return self.stay(turn, messages.MOMENTUM_RETRY)
