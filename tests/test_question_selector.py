import pytest

from engines.question_selector import QuestionSelector


@pytest.fixture
def selector(store):
    return QuestionSelector(store)


def seed(store, clock, questions):
    for question in questions:
        store.upsert_question(question, clock.now())


def test_next_rotates_least_recently_served(store, clock, selector, make_question):
    store.get_or_create_user("u1", clock.now())
    seed(store, clock, [make_question(qid) for qid in ("q1", "q2", "q3")])

    assert selector.next("calculus", "easy").id == "q1"
    selector.serve("u1", store.get_question("q1"), clock.now())
    clock.advance(minutes=1)
    selector.serve("u1", store.get_question("q2"), clock.now())
    clock.advance(minutes=1)

    # never-served questions come first
    assert selector.next("calculus", "easy").id == "q3"
    selector.serve("u1", store.get_question("q3"), clock.now())

    assert selector.next("calculus", "easy").id == "q1"


def test_next_honours_exclusions(store, clock, selector, make_question):
    seed(store, clock, [make_question(qid) for qid in ("q1", "q2")])
    assert selector.next("calculus", "easy", exclude_ids=["q1"]).id == "q2"


def test_next_repeats_within_band_when_everything_is_excluded(store, clock, selector, make_question):
    seed(store, clock, [make_question("q1"), make_question("m1", difficulty="medium")])
    assert selector.next("calculus", "easy", exclude_ids=["q1"]).id == "q1"


def test_next_falls_back_to_neighbouring_band(store, clock, selector, make_question):
    seed(
        store,
        clock,
        [
            make_question("e1", topic="algebra", difficulty="easy"),
            make_question("m1", topic="trigonometry", difficulty="medium"),
        ],
    )
    # easy -> medium -> hard, medium -> easy -> hard, hard -> medium -> easy
    assert selector.next("calculus", "hard").id == "m1"
    assert selector.next("calculus", "easy").id == "m1"
    assert selector.next("calculus", "medium").id == "e1"


def test_next_skips_inactive_and_other_subjects(store, clock, selector, make_question):
    seed(
        store,
        clock,
        [
            make_question("retired", is_active=False),
            make_question("phys1", subject="physics"),
        ],
    )
    assert selector.next("calculus", "easy") is None
    assert selector.next("calculus", "easy", subject="physics").id == "phys1"


def test_next_on_empty_bank_returns_none(selector):
    assert selector.next(None, "medium") is None


def test_serve_sets_pending_question_and_stats(store, clock, selector, make_question):
    store.get_or_create_user("u1", clock.now())
    seed(store, clock, [make_question("q1")])
    selector.serve("u1", store.get_question("q1"), clock.now())

    assert store.get_user("u1").current_question_id == "q1"
    question = store.get_question("q1")
    assert question.times_served == 1
    assert question.last_served_at == clock.now()


def test_serve_is_undone_when_the_turn_fails(store, clock, selector, make_question):
    store.get_or_create_user("u1", clock.now())
    seed(store, clock, [make_question("q1")])

    with pytest.raises(RuntimeError):
        with store.transaction():
            selector.serve("u1", store.get_question("q1"), clock.now())
            raise RuntimeError("turn failed")

    assert store.get_user("u1").current_question_id is None
    assert store.get_question("q1").times_served == 0
    assert store.get_question("q1").last_served_at is None


def answer(store, user_id, question_id, when):
    store.insert_response(
        user_id=user_id,
        question_id=question_id,
        submitted_choice="A",
        is_correct=True,
        answered_at=when,
    )


def test_next_skips_questions_the_user_answered_recently(store, clock, selector, make_question):
    seed(store, clock, [make_question(qid) for qid in ("q1", "q2")])
    answer(store, "u1", "q1", clock.now())

    assert selector.next("calculus", "easy").id == "q1"
    assert selector.next("calculus", "easy", user_id="u1", now=clock.now()).id == "q2"
    # other learners are unaffected
    assert selector.next("calculus", "easy", user_id="u2", now=clock.now()).id == "q1"


def test_recent_answer_is_repeated_before_a_question_from_this_run(store, clock, selector, make_question):
    seed(store, clock, [make_question(qid) for qid in ("q1", "q2")])
    answer(store, "u1", "q2", clock.now())

    picked = selector.next("calculus", "easy", exclude_ids=["q1"], user_id="u1", now=clock.now())
    assert picked.id == "q2"


def test_recent_answers_skip_neighbouring_bands_too(store, clock, selector, make_question):
    seed(
        store,
        clock,
        [make_question("m1", difficulty="medium"), make_question("m2", difficulty="medium")],
    )
    answer(store, "u1", "m1", clock.now())
    assert selector.next("calculus", "easy", user_id="u1", now=clock.now()).id == "m2"
