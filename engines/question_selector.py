"""Next-question selection with least-recently-served rotation and fallbacks."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple

from engines.difficulty import EASY, HARD, MEDIUM
from schemas import Question

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "math"

# a question answered this recently is not offered again while others remain
RECENT_ANSWERS = 10
RECENT_DAYS = 7

FALLBACK_BANDS: Dict[str, Tuple[str, ...]] = {
    EASY: (MEDIUM, HARD),
    MEDIUM: (EASY, HARD),
    HARD: (MEDIUM, EASY),
}


class QuestionSelector:
    """Pick questions for a (topic, difficulty) pair from the content store.

    ``next`` never raises for empty content; ``None`` means nothing is
    available even after every fallback and callers render a retry-later
    message.
    """

    def __init__(self, store) -> None:
        self.store = store

    def recently_answered(self, user_id: Optional[str], now: Optional[datetime]) -> Tuple[str, ...]:
        if user_id is None:
            return ()
        since = now - timedelta(days=RECENT_DAYS) if now is not None else None
        return tuple(self.store.recent_question_ids(user_id, last=RECENT_ANSWERS, since=since))

    def next(
        self,
        topic: Optional[str],
        difficulty: str,
        exclude_ids: Iterable[str] = (),
        subject: str = DEFAULT_SUBJECT,
        *,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Question]:
        """Next question for ``user_id``.

        Order of preference: the topic and band, avoiding ``exclude_ids``
        and the user's recent answers; the topic and band again, accepting
        a repeat; the neighbouring bands in any topic; any question at all.
        """
        in_run = tuple(dict.fromkeys(exclude_ids))
        exclude = tuple(dict.fromkeys(in_run + self.recently_answered(user_id, now)))

        question = self.store.find_question(
            subject=subject, topic=topic, difficulty=difficulty, exclude_ids=exclude
        )
        if question is not None:
            return question

        # repeat rather than block progress, preferring one not yet seen in this run
        if exclude:
            for avoid in dict.fromkeys((in_run, ())):
                question = self.store.find_question(
                    subject=subject, topic=topic, difficulty=difficulty, exclude_ids=avoid
                )
                if question is not None:
                    logger.debug(
                        "Repeating question %s for topic=%s difficulty=%s", question.id, topic, difficulty
                    )
                    return question

        for band in FALLBACK_BANDS.get(difficulty, ()):
            question = self.store.find_question(subject=subject, difficulty=band, exclude_ids=exclude)
            if question is not None:
                logger.info(
                    "No %s question for topic=%s; falling back to %s (%s)",
                    difficulty,
                    topic,
                    band,
                    question.id,
                )
                return question

        question = self.store.find_question(subject=subject, exclude_ids=exclude)
        if question is None and exclude:
            question = self.store.find_question(subject=subject)
        if question is None:
            logger.warning("Question bank exhausted for subject=%s topic=%s difficulty=%s", subject, topic, difficulty)
        return question

    def serve(self, user_id: str, question: Question, now: datetime) -> None:
        """Mark ``question`` served and make it the user's pending question.

        Both writes join the caller's transaction, so a turn that fails to
        commit leaves neither behind.
        """
        self.store.mark_question_served(question.id, user_id, now)
