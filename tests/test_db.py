from datetime import timedelta

import pytest

from db import SessionConflictError
from schemas import AskLevel, AskTopic, NeedsReset


def test_get_or_create_user_is_idempotent(store, clock):
    first = store.get_or_create_user("whatsapp:+27820000001", clock.now())
    clock.advance(minutes=5)
    second = store.get_or_create_user("whatsapp:+27820000001", clock.now())
    assert first.id == second.id
    assert second.skill_rate == 0.5
    assert second.current_menu == "welcome"
    assert second.created_at == first.created_at


def test_update_user_rejects_unknown_fields(store, clock):
    store.get_or_create_user("u1", clock.now())
    with pytest.raises(ValueError):
        store.update_user("u1", {"favourite_colour": "teal"})


def test_update_user_round_trip(store, clock):
    store.get_or_create_user("u1", clock.now())
    store.update_user("u1", {"grade": "11", "skill_rate": 0.62, "difficulty_band": "medium"})
    user = store.get_user("u1")
    assert user.grade == "11"
    assert user.skill_rate == pytest.approx(0.62)
    assert user.difficulty_band == "medium"


def test_save_session_bumps_version(store, clock):
    store.get_or_create_user("u1", clock.now())
    session = store.create_session("u1", "panic", NeedsReset(), clock.now())
    assert session.version == 0

    saved = store.save_session(session.moved(AskLevel(), topic="calculus"), clock.now())
    assert saved.version == 1

    reloaded = store.get_session(session.id)
    assert reloaded.version == 1
    assert reloaded.state == AskLevel()
    assert reloaded.topic == "calculus"


def test_save_session_detects_concurrent_write(store, clock):
    store.get_or_create_user("u1", clock.now())
    session = store.create_session("u1", "panic", NeedsReset(), clock.now())
    store.save_session(session.moved(AskLevel()), clock.now())

    with pytest.raises(SessionConflictError):
        store.save_session(session.moved(AskTopic()), clock.now())
    assert store.get_session(session.id).state == AskLevel()


def test_transaction_rolls_back_everything(store, clock):
    store.get_or_create_user("u1", clock.now())
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.update_user("u1", {"streak_count": 4})
            store.create_reminder("u1", "study_plan", clock.now(), clock.now())
            raise RuntimeError("boom")
    assert store.get_user("u1").streak_count == 0
    assert store.list_reminders("u1") == []


def test_savepoint_failure_keeps_outer_transaction(store, clock):
    store.get_or_create_user("u1", clock.now())
    with store.transaction():
        store.update_user("u1", {"streak_count": 2})
        with pytest.raises(RuntimeError):
            with store.savepoint():
                store.update_user("u1", {"total_answered": 9})
                raise RuntimeError("inner")
    user = store.get_user("u1")
    assert user.streak_count == 2
    assert user.total_answered == 0


def test_get_active_session_prefers_most_recent(store, clock):
    store.get_or_create_user("u1", clock.now())
    older = store.create_session("u1", "stress", NeedsReset(), clock.now())
    clock.advance(minutes=1)
    newer = store.create_session("u1", "stress", NeedsReset(), clock.now())
    assert store.get_active_session("u1", "stress").id == newer.id

    store.end_session(store.get_session(newer.id), clock.now())
    assert store.get_active_session("u1", "stress").id == older.id
    assert store.get_active_session("u1", "panic") is None


def test_upsert_question_keeps_serve_statistics(store, clock, make_question):
    store.get_or_create_user("u1", clock.now())
    question = make_question("q1")
    store.upsert_question(question, clock.now())
    store.mark_question_served("q1", "u1", clock.now())

    store.upsert_question(question.model_copy(update={"question_text": "Reworded?"}), clock.now())
    stored = store.get_question("q1")
    assert stored.question_text == "Reworded?"
    assert stored.times_served == 1
    assert stored.last_served_at == clock.now()
    assert store.get_user("u1").current_question_id == "q1"


def test_record_question_result_tracks_accuracy(store, clock, make_question):
    store.upsert_question(make_question("q1"), clock.now())
    store.record_question_result("q1", True)
    store.record_question_result("q1", False)
    stored = store.get_question("q1")
    assert stored.times_answered == 2
    assert stored.times_correct == 1
    assert stored.accuracy_rate == pytest.approx(0.5)


def test_weaknesses_accumulate(store, clock):
    store.upsert_weakness("u1", "chain_rule", clock.now())
    store.upsert_weakness("u1", "unit_circle", clock.now())
    clock.advance(hours=1)
    store.upsert_weakness("u1", "chain_rule", clock.now())
    weaknesses = store.list_weaknesses("u1")
    assert [w["weakness_tag"] for w in weaknesses] == ["chain_rule", "unit_circle"]
    assert weaknesses[0]["occurrence_count"] == 2


def test_reminders_keep_metadata(store, clock):
    later = clock.now() + timedelta(hours=10)
    store.create_reminder("u1", "panic_evening", later, clock.now(), metadata={"topic": "calculus"})
    reminders = store.list_reminders("u1")
    assert len(reminders) == 1
    assert reminders[0]["kind"] == "panic_evening"
    assert reminders[0]["metadata"] == {"topic": "calculus"}
    assert reminders[0]["scheduled_for"].startswith("2025-08-18T19:00:00")


def test_recent_question_ids_cover_last_answers_and_recent_days(store, clock):
    now = clock.now()

    def answer(question_id, when):
        store.insert_response(
            user_id="u1", question_id=question_id, submitted_choice="A", is_correct=False, answered_at=when
        )

    answer("ancient", now - timedelta(days=30))
    answer("this-week", now - timedelta(days=3))
    for i in range(10):
        answer(f"q{i}", now - timedelta(days=1) + timedelta(minutes=i))

    last_ten = store.recent_question_ids("u1", last=10)
    assert sorted(last_ten) == sorted(f"q{i}" for i in range(10))

    recent = store.recent_question_ids("u1", last=10, since=now - timedelta(days=7))
    assert "this-week" in recent
    assert "ancient" not in recent
    assert store.recent_question_ids("u2", last=10, since=now - timedelta(days=7)) == []
