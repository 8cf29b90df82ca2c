import random

import pytest
from sqlmodel import select

from exam_portal.errors import InsufficientBank
from exam_portal.models import AttemptQuestion, ExamAttempt, Question
from exam_portal.services.sampler import (
    draw_for_exam,
    label_mapping,
    question_pool,
    sample_questions,
)


def test_draws_requested_number_of_distinct_questions(bank, rng):
    sampled = sample_questions(bank, 4, rng=rng)

    ids = [s.question.id for s in sampled]
    assert len(ids) == 4
    assert len(set(ids)) == 4
    assert set(ids) <= {q.id for q in bank}
    assert [s.order for s in sampled] == [1, 2, 3, 4]


def test_without_shuffle_keeps_bank_order(bank, rng):
    sampled = sample_questions(bank, 5, rng=rng)
    ids = [s.question.id for s in sampled]
    assert ids == sorted(ids)
    for s in sampled:
        assert s.option_order == [0, 1, 2, 3]
        assert s.display_options() == s.question.option_list()


def test_whole_bank_drawn_when_count_equals_pool(bank, rng):
    sampled = sample_questions(bank, len(bank), shuffle_questions=True, rng=rng)
    assert {s.question.id for s in sampled} == {q.id for q in bank}


def test_shuffle_answers_is_a_permutation(bank):
    sampled = sample_questions(bank, 6, shuffle_answers=True, rng=random.Random(7))

    for s in sampled:
        assert sorted(s.option_order) == [0, 1, 2, 3]
        assert sorted(s.display_options()) == sorted(s.question.option_list())
    # Six independent permutations of four options are not all the identity
    assert any(s.option_order != [0, 1, 2, 3] for s in sampled)


def test_bank_options_are_not_touched_by_shuffling(bank):
    before = [q.options for q in bank]
    sample_questions(bank, 6, shuffle_answers=True, rng=random.Random(3))
    assert [q.options for q in bank] == before


def test_label_mapping_points_display_labels_at_original_labels():
    assert label_mapping([2, 0, 1]) == {"A": "C", "B": "A", "C": "B"}


def test_insufficient_bank_raises_and_writes_nothing(session, make_exam, rng):
    exam = make_exam(question_count=7)

    with pytest.raises(InsufficientBank) as exc:
        draw_for_exam(session, exam, rng)

    assert exc.value.data == {"available": 6, "required": 7}
    assert session.exec(select(ExamAttempt)).all() == []
    assert session.exec(select(AttemptQuestion)).all() == []


def test_pool_is_filtered_by_category(session, bank, make_exam, rng):
    for i in range(2):
        session.add(
            Question(
                content=f"Forklift {i}?",
                options='["yes", "no"]',
                correct_answers='["A"]',
                category="forklift",
            )
        )
    session.commit()

    assert len(question_pool(session, "forklift")) == 2
    assert len(question_pool(session)) == 8

    exam = make_exam(question_count=2, category="forklift")
    drawn = draw_for_exam(session, exam, rng)
    assert {s.question.category for s in drawn} == {"forklift"}

    exam = make_exam(question_count=3, category="forklift")
    with pytest.raises(InsufficientBank):
        draw_for_exam(session, exam, rng)
