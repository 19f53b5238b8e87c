from datetime import datetime, timezone

import pytest

import messages
from conftest import correct_letter, pending_question, wrong_letter
from engines.plan_flow import daily_reminder_times, parse_grade, switched_topic

USER = "whatsapp:+27820000002"


@pytest.fixture
def send(orchestrator):
    def _send(text):
        reply = orchestrator.handle_message(USER, text)
        assert reply.status == "ok", reply.text
        return reply.text

    return _send


def session_of(store):
    return store.get_active_session(USER, "stress")


def walk_to_exam_date(send):
    assert send("stressed") == messages.GRADE_PROMPT
    assert send("11") == messages.STRESS_LEVEL_PROMPT
    assert send("1") == messages.join(messages.VALIDATION_HIGH, messages.SUBJECT_PROMPT)
    reply = send("2")
    assert reply.startswith("I hear you about Physics.")
    assert reply.endswith(messages.EXAM_DATE_PROMPT)


def test_long_plan_schedules_daily_reminders_and_practice(seeded_store, send):
    walk_to_exam_date(send)
    session = session_of(seeded_store)
    assert session.stress_level == 1
    assert session.requested_subject == "Physics"
    assert seeded_store.get_user(USER).grade == "11"

    reply = send("22 Aug 7pm")
    assert reply == messages.join("Got it: Friday 22 Aug at 7pm. 📅", messages.PLAN_OFFER_LONG)
    assert session_of(seeded_store).exam_date == datetime(2025, 8, 22, 19, 0, tzinfo=timezone.utc)

    assert send("yes") == messages.TIME_PROMPT
    reply = send("7pm")
    assert "STUDY PLAN (Until Friday 22 Aug at 7pm)" in reply
    assert "Daily at 19:00" in reply

    session = session_of(seeded_store)
    assert session.state.step == "plan_action"
    assert session.state.plan == "long"
    assert session.preferred_time == "19:00"
    assert session.plan_opt_in is True
    assert session.reminder_opt_in is True

    reminders = seeded_store.list_reminders(USER)
    assert [r["kind"] for r in reminders] == ["study_plan"] * 4
    assert [r["scheduled_for"][:16] for r in reminders] == [
        "2025-08-18T19:00",
        "2025-08-19T19:00",
        "2025-08-20T19:00",
        "2025-08-21T19:00",
    ]

    assert send("1") == messages.lesson("calculus")
    reply = send("1")
    assert reply.startswith(messages.STRESS_PRACTICE_START)
    assert "Question 1 of 3:" in reply
    question = pending_question(seeded_store, USER)
    assert (question.topic, question.difficulty) == ("calculus", "easy")

    assert send(correct_letter(seeded_store, USER)).startswith(messages.STRESS_CORRECT)
    letter = correct_letter(seeded_store, USER)
    reply = send(wrong_letter(seeded_store, USER))
    assert reply.startswith(messages.STRESS_INCORRECT.format(letter=letter))
    reply = send(correct_letter(seeded_store, USER))
    assert reply == messages.join(
        messages.STRESS_CORRECT, messages.STRESS_SET_DONE, messages.PRACTICE_CONTINUE_MENU
    )

    assert send("4") == messages.STRESS_REMINDER
    kinds = [r["kind"] for r in seeded_store.list_reminders(USER)]
    assert kinds.count("stress_followup") == 1
    assert session_of(seeded_store) is None


def test_skip_exam_date_gives_gentle_plan(seeded_store, send):
    walk_to_exam_date(send)
    reply = send("skip")
    assert reply == messages.stress_short_plan("calculus")
    session = session_of(seeded_store)
    assert session.state.plan == "short"
    assert session.exam_date is None

    assert send("2") == messages.lesson("trigonometry")
    assert send("2") == messages.extra_example("trigonometry")
    assert send("3") == messages.STRESS_LESSON_CANCEL
    assert session_of(seeded_store) is None


def test_declining_plan_shows_short_plan(seeded_store, send):
    walk_to_exam_date(send)
    send("in 3 days")
    reply = send("no")
    assert "GENTLE PLAN" in reply
    session = session_of(seeded_store)
    assert session.plan_opt_in is False
    assert seeded_store.list_reminders(USER) == []


def test_exam_soon_skips_time_question(seeded_store, send):
    walk_to_exam_date(send)
    reply = send("today 11am")
    assert reply.endswith(messages.PLAN_OFFER_SHORT)
    assert "GENTLE PLAN" in send("yes")


def test_known_grade_skips_grade_question(seeded_store, clock, send):
    seeded_store.get_or_create_user(USER, clock.now())
    seeded_store.update_user(USER, {"grade": "varsity"})
    assert send("stress") == messages.STRESS_LEVEL_PROMPT


def test_bad_inputs_reprompt(seeded_store, send):
    send("stressed")
    assert send("grade 12") == messages.GRADE_RETRY
    send("10")
    assert send("7") == messages.STRESS_LEVEL_RETRY
    send("4")
    assert send("0") == messages.SUBJECT_RETRY
    send("1")
    assert send("whenever") == messages.EXAM_DATE_RETRY
    send("22 Aug")
    assert send("perhaps") == messages.PLAN_DECISION_RETRY
    send("yes")
    assert send("soon") == messages.TIME_RETRY
    assert session_of(seeded_store).state.step == "ask_preferred_time"


def test_plan_helpers():
    assert parse_grade(" Grade  10 ") == "10"
    assert parse_grade("uni") == "varsity"
    assert parse_grade("12") is None
    assert switched_topic("calculus") == "trigonometry"
    assert switched_topic("algebra") == "calculus"

    now = datetime(2025, 8, 18, 20, 0, tzinfo=timezone.utc)
    exam = datetime(2025, 8, 20, 9, 0, tzinfo=timezone.utc)
    assert daily_reminder_times(now, exam, "19:00") == [datetime(2025, 8, 19, 19, 0, tzinfo=timezone.utc)]
    far = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert len(daily_reminder_times(now, far, "07:30")) == 14


def test_happy_path_to_short_plan(seeded_store, send):
    assert send("stressed") == messages.GRADE_PROMPT
    assert send("11") == messages.STRESS_LEVEL_PROMPT
    assert send("2") == messages.join(messages.VALIDATION_HIGH, messages.SUBJECT_PROMPT)
    assert send("1") == messages.join(messages.subject_ack(1, exam=False), messages.EXAM_DATE_PROMPT)
    reply = send("skip")
    assert "1️⃣" in reply and "2️⃣" in reply and "3️⃣" in reply
    assert session_of(seeded_store).state.step == "plan_action"


def test_practice_on_empty_bank_renders_no_content(store, bare_orchestrator):
    def send_bare(text):
        reply = bare_orchestrator.handle_message(USER, text)
        assert reply.status == "ok", reply.text
        return reply.text

    walk_to_exam_date(send_bare)
    send_bare("skip")
    assert send_bare("1") == messages.lesson("calculus")
    assert send_bare("1") == messages.join(messages.STRESS_PRACTICE_START, messages.NO_CONTENT)
    assert session_of(store).state.step == "practice_continue"


def test_exam_exactly_three_hours_away_gets_short_plan(seeded_store, send):
    walk_to_exam_date(send)
    assert send("today 12pm").endswith(messages.PLAN_OFFER_SHORT)
    assert session_of(seeded_store).state.hours_away == 3.0
    assert "GENTLE PLAN" in send("yes")
    assert seeded_store.list_reminders(USER) == []


def test_exam_just_over_three_hours_away_offers_long_plan(seeded_store, send):
    walk_to_exam_date(send)
    assert send("today 12:01pm").endswith(messages.PLAN_OFFER_LONG)
    assert send("yes") == messages.TIME_PROMPT
    assert session_of(seeded_store).state.step == "ask_preferred_time"
