import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from clock import FrozenClock  # noqa: E402
from db import ContentStore  # noqa: E402
from engines.base import FlowServices  # noqa: E402
from engines.difficulty import DifficultyEngine  # noqa: E402
from engines.session_orchestrator import SessionOrchestrator  # noqa: E402
from question_bank import QuestionBank  # noqa: E402
from schemas import Choice, Question  # noqa: E402

SEED_PATH = ROOT / "data" / "questions.json"
SUPPORT_TEXT = "You showed up today, and that already counts."


class StubGenerator:
    """Records prompt contexts and returns a fixed line (or the fallback)."""

    def __init__(self, text=SUPPORT_TEXT):
        self.text = text
        self.calls = []

    def generate(self, prompt_context, *, fallback, max_tokens=None):
        self.calls.append(dict(prompt_context))
        return self.text or fallback


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store(tmp_path):
    content_store = ContentStore(str(tmp_path / "study_buddy.db"), max_connections=4, timeout=2.0)
    content_store.init()
    yield content_store
    content_store.close()


@pytest.fixture
def seeded_store(store, clock):
    QuestionBank(SEED_PATH).sync(store, clock.now())
    return store


@pytest.fixture
def generator():
    return StubGenerator()


@pytest.fixture
def services(seeded_store, generator):
    return FlowServices.build(
        seeded_store,
        difficulty=DifficultyEngine(),
        generator=generator,
        practice_set_size=5,
    )


@pytest.fixture
def orchestrator(seeded_store, services, clock):
    return SessionOrchestrator(seeded_store, services=services, clock=clock)


@pytest.fixture
def bare_orchestrator(store, clock):
    """Orchestrator over a store with no questions loaded."""
    services = FlowServices.build(store, difficulty=DifficultyEngine(), practice_set_size=5)
    return SessionOrchestrator(store, services=services, clock=clock)


@pytest.fixture
def make_question():
    def _make(
        question_id,
        *,
        topic="calculus",
        difficulty="easy",
        correct="A",
        tags=None,
        subject="math",
        is_active=True,
    ):
        tags = tags or {}
        choices = tuple(
            Choice(letter=letter, text=f"option {letter}", weakness_tag=tags.get(letter))
            for letter in "ABCD"
        )
        return Question(
            id=question_id,
            subject=subject,
            topic=topic,
            difficulty=difficulty,
            question_text=f"Question {question_id}?",
            choices=choices,
            correct_choice=correct,
            explanation=f"Because {correct}.",
            is_active=is_active,
        )

    return _make


def pending_question(store, user_id):
    user = store.get_user(user_id)
    assert user is not None and user.current_question_id, "expected a pending question"
    return store.get_question(user.current_question_id)


def correct_letter(store, user_id):
    return pending_question(store, user_id).correct_choice


def wrong_letter(store, user_id):
    question = pending_question(store, user_id)
    return next(c.letter for c in question.choices if c.letter != question.correct_choice)
