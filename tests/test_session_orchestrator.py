import logging
import sqlite3

import pytest

import messages
from conftest import correct_letter, pending_question, wrong_letter
from db import SessionConflictError
from engines.session_orchestrator import InboundValidationError, menu_tag

USER = "whatsapp:+27820000006"


@pytest.fixture
def send(orchestrator):
    def _send(text, user=USER):
        reply = orchestrator.handle_message(user, text)
        assert reply.status == "ok", reply.text
        return reply.text

    return _send


def active_sessions(store, user=USER):
    rows = store._query(
        "SELECT flow_type FROM sessions WHERE user_id = ? AND ended_at IS NULL", [user]
    )
    return sorted(row["flow_type"] for row in rows)


@pytest.mark.parametrize(
    "identity,text",
    [("", "hi"), ("   ", "hi"), (None, "hi"), (USER, ""), (USER, "  \n "), (USER, None)],
)
def test_blank_inbound_is_rejected_before_any_write(orchestrator, seeded_store, identity, text):
    with pytest.raises(InboundValidationError):
        orchestrator.handle_message(identity, text)
    assert seeded_store.get_user(USER) is None


def test_unknown_text_shows_main_menu(seeded_store, send):
    assert send("hello there") == messages.MAIN_MENU
    user = seeded_store.get_user(USER)
    assert user.current_menu == "welcome"
    assert user.last_active_at is not None


def test_identity_is_trimmed(seeded_store, send):
    send("hi", user=f"  {USER} ")
    assert seeded_store.get_user(USER) is not None


@pytest.mark.parametrize(
    "digit,flow_type,reply",
    [
        ("2", "stress", messages.GRADE_PROMPT),
        ("3", "panic", messages.PANIC_INTRO),
        ("4", "confidence", messages.REASON_PROMPT),
    ],
)
def test_main_menu_digits_start_flows(seeded_store, send, digit, flow_type, reply):
    assert send(digit) == reply
    assert active_sessions(seeded_store) == [flow_type]
    assert seeded_store.get_user(USER).current_menu.startswith(f"{flow_type}:")


def test_out_of_range_digit_is_invalid_option(send):
    assert send("9") == messages.join(messages.INVALID_MENU_OPTION, messages.MAIN_MENU)


def test_letter_without_question_clears_pending_question(seeded_store, clock, send):
    seeded_store.get_or_create_user(USER, clock.now())
    seeded_store.update_user(USER, {"current_question_id": "calc_easy_01"})
    assert send("B") == messages.NO_QUESTION_ACTIVE
    assert seeded_store.get_user(USER).current_question_id is None
    assert seeded_store.list_responses(USER) == []


def test_help_and_menu_commands(seeded_store, send):
    send("panic")
    assert send("HELP") == messages.HELP
    assert active_sessions(seeded_store) == ["panic"]
    assert send("Menu") == messages.MAIN_MENU
    assert active_sessions(seeded_store) == []
    assert seeded_store.get_user(USER).active_session_id is None


def test_cancel_mid_question(seeded_store, send):
    send("practice")
    assert send("cancel") == messages.CANCELLED
    user = seeded_store.get_user(USER)
    assert user.current_question_id is None
    assert active_sessions(seeded_store) == []


def test_starting_a_flow_ends_the_others(seeded_store, send):
    send("panic")
    send("practice")
    assert pending_question(seeded_store, USER) is not None
    send("boost")
    assert active_sessions(seeded_store) == ["confidence"]
    # the practice question no longer counts as pending
    assert seeded_store.get_user(USER).current_question_id is None


def test_keyword_restarts_current_flow(seeded_store, send):
    send("panic")
    send("4")
    assert send("panic") == messages.PANIC_INTRO
    session = seeded_store.get_active_session(USER, "panic")
    assert session.state.step == "ask_level"
    assert session.panic_level is None


def test_report_lists_progress_and_weaknesses(seeded_store, send):
    assert send("report").startswith("No answers yet.")
    send("practice")
    send(correct_letter(seeded_store, USER))
    question = pending_question(seeded_store, USER)
    letter = wrong_letter(seeded_store, USER)
    tag = question.choice(letter).weakness_tag or "general_concept"
    send(letter)

    reply = send("report")
    assert "Questions answered: 2" in reply
    assert "Correct: 1 (50%)" in reply
    assert "Level: medium" in reply
    assert tag.replace("_", " ") in reply
    # report does not disturb the running practice set
    assert seeded_store.get_active_session(USER, "practice").state.step == "practice"


def test_session_conflict_rolls_back_the_whole_turn(orchestrator, seeded_store, monkeypatch, caplog):
    def conflict(session, now=None):
        raise SessionConflictError("changed underneath")

    monkeypatch.setattr(seeded_store, "save_session", conflict)
    with caplog.at_level(logging.WARNING):
        reply = orchestrator.handle_message(USER, "practice")

    assert reply.status == "error"
    assert reply.text == messages.BUSY
    assert "Session conflict" in caplog.text
    assert seeded_store.get_user(USER) is None
    served = seeded_store._query("SELECT SUM(times_served) AS n FROM questions")[0]["n"]
    assert served == 0


def test_store_failure_returns_generic_error(orchestrator, seeded_store, monkeypatch, caplog):
    def broken(user_id, now):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(seeded_store, "get_or_create_user", broken)
    with caplog.at_level(logging.ERROR):
        reply = orchestrator.handle_message(USER, "practice")
    assert reply.status == "error"
    assert reply.text == messages.GENERIC_ERROR
    assert "Store failure" in caplog.text


def test_unexpected_flow_error_returns_generic_error(orchestrator, seeded_store, send, monkeypatch):
    send("panic")

    def explode(turn):
        raise RuntimeError("bug")

    monkeypatch.setattr(orchestrator.flows["panic"], "handle", explode)
    reply = orchestrator.handle_message(USER, "2")
    assert reply.status == "error"
    assert reply.text == messages.GENERIC_ERROR
    assert seeded_store.get_active_session(USER, "panic").state.step == "ask_level"


def test_vanished_question_restarts_flow(seeded_store, send):
    send("practice")
    stale_id = pending_question(seeded_store, USER).id
    with seeded_store.transaction():
        seeded_store._exec("DELETE FROM questions WHERE id = ?", [stale_id])

    reply = send("A")
    assert reply.startswith(messages.QUESTION_EXPIRED)
    fresh = pending_question(seeded_store, USER)
    assert fresh.id != stale_id
    assert seeded_store.list_responses(USER) == []


def test_unreadable_state_restarts_flow(seeded_store, send):
    send("panic")
    session = seeded_store.get_active_session(USER, "panic")
    with seeded_store.transaction():
        seeded_store._exec(
            "UPDATE sessions SET state = ? WHERE id = ?", ['{"step": "levitate"}', session.id]
        )

    reply = send("2")
    assert reply == messages.join(messages.FLOW_RESET, messages.PANIC_INTRO)
    assert seeded_store.get_active_session(USER, "panic").state.step == "ask_level"


def test_menu_tag():
    assert menu_tag(None) == "welcome"
