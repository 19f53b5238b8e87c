"""Confidence boost: name the worry, rate it, one small step, rate it again."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import messages
from engines.base import FlowEngine, FlowResult, Turn, parse_answer, parse_choice
from engines.difficulty import EASY, MEDIUM
from schemas import (
    AskPostConfidence,
    AskPreConfidence,
    AskReason,
    Complete,
    EasyLadder,
    GenerateSupport,
    MediumLadder,
    Session,
    ShowLadder,
)
from tutor import SUPPORT_MAX_TOKENS

logger = logging.getLogger(__name__)

NEUTRAL_CONFIDENCE = 3
EASY_LADDER_SIZE = 3


def classify_confidence_delta(pre: Optional[int], post: Optional[int]) -> Tuple[int, str]:
    """``post - pre`` (missing ratings count as 3) and its direction."""
    before = pre if pre is not None else NEUTRAL_CONFIDENCE
    after = post if post is not None else NEUTRAL_CONFIDENCE
    delta = after - before
    if delta > 0:
        return delta, "improved"
    if delta < 0:
        return delta, "worsened"
    return 0, "unchanged"


def support_context(user_id: str, session: Session) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "reason": session.reason,
        "pre_confidence": session.pre_confidence,
    }


class ConfidenceFlow(FlowEngine):
    flow_type = "confidence"

    def handlers(self):
        return {
            AskReason: self._ask_reason,
            AskPreConfidence: self._ask_pre_confidence,
            GenerateSupport: self._generate_support,
            ShowLadder: self._show_ladder,
            EasyLadder: self._easy_ladder,
            MediumLadder: self._medium_ladder,
            AskPostConfidence: self._ask_post_confidence,
        }

    def start(self, turn: Turn) -> FlowResult:
        session = turn.session.moved(
            AskReason(),
            reason=None,
            pre_confidence=None,
            post_confidence=None,
            ladder_action=None,
        )
        return FlowResult(session=session, reply=messages.REASON_PROMPT)

    def _ask_reason(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, len(messages.REASONS))
        if choice is None:
            return self.stay(turn, messages.REASON_RETRY)
        session = turn.session.moved(AskPreConfidence(), reason=messages.REASONS[choice - 1])
        return FlowResult(session=session, reply=messages.PRE_CONFIDENCE_PROMPT)

    def prepare(self, turn: Turn) -> Dict[str, Any]:
        """Generate the support line for a turn that will need it.

        The generator may take seconds; it runs here so the turn's write
        transaction never waits on it.
        """
        session = turn.session
        if isinstance(session.state, AskPreConfidence):
            level = parse_choice(turn.text, 1, 5)
            if level is None:
                return {}
            session = session.model_copy(update={"pre_confidence": level})
        elif not isinstance(session.state, GenerateSupport):
            return {}
        context = support_context(turn.user.id, session)
        generator = self.services.generator
        if generator is None:
            return {"support": (context, messages.SUPPORT_FALLBACK)}
        text = generator.generate(
            context, fallback=messages.SUPPORT_FALLBACK, max_tokens=SUPPORT_MAX_TOKENS
        )
        return {"support": (context, text)}

    def _ask_pre_confidence(self, turn: Turn) -> FlowResult:
        level = parse_choice(turn.text, 1, 5)
        if level is None:
            return self.stay(turn, messages.PRE_CONFIDENCE_RETRY)
        session = turn.session.moved(GenerateSupport(), pre_confidence=level)
        return self._support(turn, session)

    def _generate_support(self, turn: Turn) -> FlowResult:
        return self._support(turn, turn.session)

    def _support(self, turn: Turn, session: Session) -> FlowResult:
        context, text = turn.prepared.get("support", (None, None))
        if text is None or context != support_context(turn.user.id, session):
            logger.warning("No support text prepared for %s; using fallback", turn.user.id)
            text = messages.SUPPORT_FALLBACK
        return FlowResult(
            session=session.moved(ShowLadder(support_message=text)),
            reply=messages.support_message(text),
        )

    def _show_ladder(self, turn: Turn) -> FlowResult:
        choice = parse_choice(turn.text, 1, 4)
        session = turn.session
        if choice == 1:
            return self._start_easy_ladder(turn, session.model_copy(update={"ladder_action": "r1_easy"}))
        if choice == 2:
            return FlowResult(
                session=session.moved(AskPostConfidence(), ladder_action="r2_reflect"),
                reply=messages.REFLECTION_PROMPT,
            )
        if choice == 3:
            return self._start_medium(turn, session.model_copy(update={"ladder_action": "r3_medium"}))
        if choice == 4:
            return FlowResult(
                session=session.moved(AskPostConfidence(), ladder_action="skip"),
                reply=messages.join(messages.LADDER_SKIP, messages.POST_CONFIDENCE_PROMPT),
            )
        return self.stay(turn, messages.LADDER_RETRY)

    def _start_easy_ladder(self, turn: Turn, session: Session) -> FlowResult:
        served = self.serve(turn, EasyLadder(size=EASY_LADDER_SIZE), None, EASY)
        if served is None:
            return FlowResult(
                session=session.moved(AskPostConfidence()),
                reply=messages.join(messages.EASY_LADDER_EMPTY, messages.POST_CONFIDENCE_PROMPT),
            )
        question, run = served
        return FlowResult(
            session=session.moved(run),
            reply=messages.join(messages.EASY_LADDER_INTRO, messages.format_question(question)),
            served_question_id=question.id,
        )

    def _start_medium(self, turn: Turn, session: Session) -> FlowResult:
        question = self.services.selector.next(None, MEDIUM, user_id=turn.user.id, now=turn.now)
        if question is None:
            return FlowResult(
                session=session.moved(AskPostConfidence()),
                reply=messages.join(messages.MEDIUM_LADDER_EMPTY, messages.POST_CONFIDENCE_PROMPT),
            )
        self.services.selector.serve(turn.user.id, question, turn.now)
        return FlowResult(
            session=session.moved(MediumLadder()),
            reply=messages.join(messages.MEDIUM_LADDER_INTRO, messages.format_question(question)),
            served_question_id=question.id,
        )

    def _easy_ladder(self, turn: Turn) -> FlowResult:
        state: EasyLadder = turn.session.state
        letter = parse_answer(turn.text)
        if letter is None:
            return self.stay(turn, messages.ANSWER_WITH_LETTER)

        graded = self.grade(turn, letter)
        feedback = (
            messages.EASY_LADDER_CORRECT if graded.evaluation.is_correct else messages.EASY_LADDER_INCORRECT
        )
        run = state.answered(graded.evaluation.is_correct)
        if run.finished:
            return FlowResult(
                session=turn.session.moved(AskPostConfidence()),
                reply=messages.join(
                    feedback,
                    messages.easy_ladder_done(run.correct_count, run.size),
                    messages.POST_CONFIDENCE_PROMPT,
                ),
                user_updates=graded.user_updates,
            )

        served = self.serve(turn, run, None, EASY)
        if served is None:
            return FlowResult(
                session=turn.session.moved(AskPostConfidence()),
                reply=messages.join(feedback, messages.POST_CONFIDENCE_PROMPT),
                user_updates=graded.user_updates,
            )
        question, run = served
        return FlowResult(
            session=turn.session.moved(run),
            reply=messages.join(feedback, messages.format_question(question)),
            user_updates=graded.user_updates,
            served_question_id=question.id,
        )

    def _medium_ladder(self, turn: Turn) -> FlowResult:
        letter = parse_answer(turn.text)
        if letter is None:
            return self.stay(turn, messages.ANSWER_WITH_LETTER)
        graded = self.grade(turn, letter)
        if graded.evaluation.is_correct:
            feedback = messages.MEDIUM_LADDER_CORRECT
        else:
            feedback = messages.MEDIUM_LADDER_INCORRECT.format(letter=graded.evaluation.correct_letter)
        return FlowResult(
            session=turn.session.moved(AskPostConfidence()),
            reply=messages.join(feedback, messages.POST_CONFIDENCE_PROMPT),
            user_updates=graded.user_updates,
        )

    def _ask_post_confidence(self, turn: Turn) -> FlowResult:
        level = parse_choice(turn.text, 1, 5)
        if level is None:
            return self.stay(turn, messages.POST_CONFIDENCE_RETRY)
        pre = turn.session.pre_confidence
        delta, outcome = classify_confidence_delta(pre, level)
        logger.debug("Confidence %s -> %s (%s) for %s", pre, level, outcome, turn.user.id)
        session = turn.session.moved(Complete(delta=delta, outcome=outcome), post_confidence=level)
        return self.end(
            turn,
            messages.confidence_complete(
                pre if pre is not None else NEUTRAL_CONFIDENCE, level, delta, outcome
            ),
            session=session,
        )
