import logging
import sqlite3

import pytest

from engines.difficulty import DifficultyEngine
from engines.response_evaluator import GENERIC_WEAKNESS_TAG, ResponseEvaluator, StaleQuestionError
from schemas import User


@pytest.fixture
def evaluator(store):
    return ResponseEvaluator(store, DifficultyEngine())


@pytest.fixture
def question(store, clock, make_question):
    q = make_question("q1", correct="C", tags={"A": "chain_rule", "B": "  "})
    store.upsert_question(q, clock.now())
    store.get_or_create_user("u1", clock.now())
    return store.get_question("q1")


def test_evaluate_normalises_letters(evaluator, question):
    result = evaluator.evaluate("q1", " c ")
    assert result.is_correct
    assert result.correct_letter == "C"
    assert result.submitted_letter == "C"
    assert not evaluator.evaluate("q1", "a").is_correct


@pytest.mark.parametrize("question_id", [None, "", "missing"])
def test_evaluate_raises_for_stale_question(evaluator, question, question_id):
    with pytest.raises(StaleQuestionError):
        evaluator.evaluate(question_id, "A")


def test_record_wrong_answer_logs_weakness(store, clock, evaluator, question):
    assert evaluator.record("u1", question, "a", False, clock.now())
    assert evaluator.record("u1", question, "A", False, clock.now())

    responses = store.list_responses("u1")
    assert [r["submitted_choice"] for r in responses] == ["A", "A"]
    weaknesses = store.list_weaknesses("u1")
    assert weaknesses == [
        {
            "weakness_tag": "chain_rule",
            "occurrence_count": 2,
            "first_logged_at": weaknesses[0]["first_logged_at"],
            "last_logged_at": weaknesses[0]["last_logged_at"],
        }
    ]
    stats = store.get_question("q1")
    assert stats.times_answered == 2
    assert stats.accuracy_rate == 0.0


def test_untagged_distractor_uses_generic_tag(store, clock, evaluator, question):
    evaluator.record("u1", question, "B", False, clock.now())
    evaluator.record("u1", question, "D", False, clock.now())
    weaknesses = store.list_weaknesses("u1")
    assert weaknesses[0]["weakness_tag"] == GENERIC_WEAKNESS_TAG
    assert weaknesses[0]["occurrence_count"] == 2


def test_correct_answer_logs_no_weakness(store, clock, evaluator, question):
    evaluator.record("u1", question, "C", True, clock.now())
    assert store.list_weaknesses("u1") == []
    assert store.get_question("q1").times_correct == 1


def test_record_failure_is_logged_not_raised(store, clock, evaluator, question, monkeypatch, caplog):
    def broken(**_):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "insert_response", broken)
    with caplog.at_level(logging.WARNING, logger="engines.response_evaluator"):
        assert evaluator.record("u1", question, "A", False, clock.now()) is False
    assert "Recording response" in caplog.text
    assert store.list_weaknesses("u1") == []


def test_progress_tracks_streaks_and_totals(evaluator):
    user = User(id="u1", streak_count=3, total_answered=3, total_correct=3)
    correct = evaluator.progress(user, True)
    assert correct.streak_count == 4
    assert correct.previous_streak == 3
    assert correct.total_answered == 4
    assert correct.skill_rate == pytest.approx(0.6)
    assert correct.accuracy_percent == 100
    assert "difficulty_band" not in correct.as_user_updates()

    wrong = evaluator.progress(user.model_copy(update={"total_answered": 4}), False)
    assert wrong.streak_count == 0
    assert wrong.total_answered == 5
    assert wrong.as_user_updates()["difficulty_band"] == wrong.band
