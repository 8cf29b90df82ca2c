import pytest

from exam_portal.errors import AttemptLimitReached
from exam_portal.services.ledger import (
    LedgerKeys,
    count_attempts,
    count_matching,
    enforce_attempt_limit,
)


def test_matches_by_user_id(session, make_exam, add_result, alice):
    exam = make_exam()
    add_result(exam, student_id=str(alice.user_id))
    assert count_attempts(session, alice, exam.id) == 1


def test_matches_by_username(session, make_exam, add_result, alice):
    exam = make_exam()
    add_result(exam, student_id="alice")
    assert count_attempts(session, alice, exam.id) == 1


def test_matches_by_full_name_only(session, make_exam, add_result, alice):
    exam = make_exam()
    add_result(exam, student_name="Alice Nguyen")
    assert count_attempts(session, alice, exam.id) == 1


def test_any_key_matching_counts_each_row_once(session, make_exam, add_result, alice):
    exam = make_exam()
    add_result(exam, student_id=str(alice.user_id), student_name="Alice Nguyen")
    add_result(exam, student_id="alice", student_name="Someone Else")
    add_result(exam, student_id="bob", student_name="Bob")
    assert count_attempts(session, alice, exam.id) == 2


def test_other_exams_are_ignored(session, make_exam, add_result, alice):
    exam = make_exam()
    other = make_exam(title="Other")
    add_result(other, student_id="alice")
    assert count_attempts(session, alice, exam.id) == 0


def test_anonymous_counts_zero(session, make_exam, add_result):
    exam = make_exam(is_public=True)
    add_result(exam, student_name="Walk-in")
    assert count_attempts(session, None, exam.id) == 0


def test_blank_keys_match_nothing(session, make_exam, add_result):
    exam = make_exam(is_public=True)
    add_result(exam, student_id=None, student_name=None)

    keys = LedgerKeys.build(None, student_id="  ", student_name="")
    assert keys.empty
    assert count_matching(session, exam.id, keys) == 0


def test_claimed_name_matches_anonymous_rows(session, make_exam, add_result):
    exam = make_exam(is_public=True)
    add_result(exam, student_name="Walk-in")
    assert count_matching(session, exam.id, LedgerKeys.build(None, student_name="Walk-in")) == 1


def test_enforce_attempt_limit():
    enforce_attempt_limit(1, 2)
    with pytest.raises(AttemptLimitReached) as exc:
        enforce_attempt_limit(2, 2)
    assert exc.value.data == {"count": 2, "ceiling": 2}
