"""Exam catalog administration and the question bank."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from exam_portal.errors import ExamNotFound, InsufficientBank, InvalidInput
from exam_portal.models import (
    AttemptQuestion,
    Exam,
    ExamAssignment,
    ExamAttempt,
    ExamResult,
    Question,
)
from exam_portal.services import exams as exam_service
from exam_portal.services.attempts import start_attempt, submit_attempt
from exam_portal.services.questions import (
    add_question,
    delete_question,
    update_question,
    validate_question,
)
from exam_portal.utils import as_utc

from conftest import NOW


def _exam_data(**overrides):
    data = {
        "title": "Fire Drill",
        "description": "Yearly refresher",
        "question_count": 3,
        "time_limit": 20,
        "start_date": "2025-11-25T00:00:00Z",
        "end_date": "2025-11-27T00:00:00Z",
        "max_attempts": 2,
        "shuffle_questions": "on",
        "is_public": False,
    }
    data.update(overrides)
    return data


def test_create_exam(session, bank, admin):
    exam = exam_service.create_exam(session, _exam_data(), created_by=admin)

    assert exam.id is not None
    assert exam.shuffle_questions is True
    assert exam.shuffle_answers is False
    assert exam.created_by == admin.user_id
    assert as_utc(exam.start_date) == datetime(2025, 11, 25, tzinfo=timezone.utc)


def test_create_exam_reports_every_invalid_field(session, bank):
    data = _exam_data(title="", time_limit=0, end_date="2025-11-24T00:00:00Z")
    with pytest.raises(InvalidInput) as exc:
        exam_service.create_exam(session, data)
    assert set(exc.value.errors) == {"title", "time_limit", "end_date"}


def test_max_attempts_defaults_only_when_missing(session, bank):
    exam = exam_service.create_exam(session, _exam_data(max_attempts=None))
    assert exam.max_attempts == 1

    with pytest.raises(InvalidInput) as exc:
        exam_service.create_exam(session, _exam_data(max_attempts=0))
    assert set(exc.value.errors) == {"max_attempts"}


def test_exam_and_result_timestamps_survive_reload(session, make_exam, add_result):
    exam = make_exam(start_date=NOW, end_date=NOW + timedelta(hours=2))
    result = add_result(exam, student_id="x")
    exam_id, result_id = exam.id, result.id
    session.expire_all()

    stored = session.get(Exam, exam_id)
    assert as_utc(stored.start_date) == NOW
    assert as_utc(stored.end_date) == NOW + timedelta(hours=2)
    assert as_utc(stored.created_at) <= datetime.now(timezone.utc)

    recorded = session.get(ExamResult, result_id)
    assert as_utc(recorded.completed_at).tzinfo == timezone.utc
    assert as_utc(recorded.completed_at) >= as_utc(stored.created_at)


def test_create_exam_needs_enough_questions(session, bank):
    with pytest.raises(InsufficientBank):
        exam_service.create_exam(session, _exam_data(question_count=7))


def test_update_exam(session, make_exam):
    exam = make_exam()
    updated = exam_service.update_exam(session, exam.id, _exam_data(title="Renamed"))
    assert updated.title == "Renamed"
    assert updated.max_attempts == 2


def test_get_exam_missing(session):
    with pytest.raises(ExamNotFound):
        exam_service.get_exam(session, 42)


def test_toggles(session, make_exam):
    exam = make_exam()
    assert exam_service.toggle_active(session, exam.id).is_active is False
    assert exam_service.toggle_public(session, exam.id).is_public is True


def test_delete_exam_removes_dependants(session, make_exam, admin, rng):
    exam = make_exam(max_attempts=2)
    started = start_attempt(session, admin, exam.id, NOW, rng=rng)
    submit_attempt(session, admin, exam.id, {}, NOW, attempt_id=started.attempt_id)
    session.add(ExamAssignment(exam_id=exam.id, user_id=admin.user_id))
    session.commit()

    exam_service.delete_exam(session, exam.id)
    session.expire_all()

    for model in (ExamResult, AttemptQuestion, ExamAttempt, ExamAssignment):
        assert session.exec(select(model)).all() == []


def test_list_exams_with_result_counts(session, make_exam, add_result):
    first = make_exam(title="First")
    second = make_exam(title="Second")
    add_result(second, student_id="x")
    add_result(second, student_id="y")

    counts = {exam.title: count for exam, count in exam_service.list_exams(session)}
    assert counts == {"First": 0, "Second": 2}
    assert first.id != second.id


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


def test_assign_skips_existing(session, make_exam, alice, leader):
    exam = make_exam()
    assert exam_service.assign_exam(session, exam.id, [alice.user_id], assigned_by="admin") == 1
    assert exam_service.assign_exam(session, exam.id, [alice.user_id, leader.user_id]) == 1

    assignments = exam_service.list_assignments(session, exam.id)
    assert sorted(a["username"] for a in assignments) == ["alice", "lead"]


def test_assign_unknown_user(session, make_exam):
    exam = make_exam()
    with pytest.raises(InvalidInput):
        exam_service.assign_exam(session, exam.id, [999])


def test_unassign(session, make_exam, alice):
    exam = make_exam()
    exam_service.assign_exam(session, exam.id, [alice.user_id])
    exam_service.unassign_exam(session, exam.id, alice.user_id)
    assert exam_service.list_assignments(session, exam.id) == []


def test_my_exams_only_active_and_open(session, make_exam, alice):
    open_exam = make_exam(title="Open")
    disabled = make_exam(title="Disabled", is_active=False)
    future = make_exam(
        title="Future",
        start_date=NOW + timedelta(days=2),
        end_date=NOW + timedelta(days=3),
    )
    make_exam(title="Not mine")
    for exam in (open_exam, disabled, future):
        exam_service.assign_exam(session, exam.id, [alice.user_id])

    assert [e.title for e in exam_service.my_exams(session, alice, NOW)] == ["Open"]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def test_result_detail_follows_served_order(session, make_exam, admin, rng):
    exam = make_exam(shuffle_questions=True)
    started = start_attempt(session, admin, exam.id, NOW, rng=rng)
    first = started.questions[0]["id"]
    submitted = submit_attempt(
        session, admin, exam.id, {first: "A"}, NOW, attempt_id=started.attempt_id
    )

    result = exam_service.get_result(session, exam.id, submitted.result_id)
    detail = exam_service.result_detail(session, result)

    assert [d["id"] for d in detail] == [q["id"] for q in started.questions]
    assert detail[0]["is_correct"] is True
    assert [d["is_correct"] for d in detail[1:]] == [False, False]


def test_get_result_for_wrong_exam(session, make_exam, add_result):
    exam = make_exam()
    other = make_exam(title="Other")
    result = add_result(exam, student_id="x")
    assert exam_service.get_result(session, other.id, result.id) is None


# ---------------------------------------------------------------------------
# Question bank
# ---------------------------------------------------------------------------


def test_add_question_sanitizes_content(session):
    q = add_question(
        session,
        content="<b>Exit</b> route?<script>alert(1)</script>",
        options=["Left", "Right"],
        correct_answers=["b"],
        category="fire",
    )
    assert "<script>" not in q.content
    assert "<b>Exit</b>" in q.content
    assert q.correct_labels() == ["B"]
    assert q.category == "fire"


@pytest.mark.parametrize(
    "options, correct, type_, field",
    [
        (["Only one"], ["A"], "single", "options"),
        (["Same", "same"], ["A"], "single", "options"),
        (["Yes", "No"], ["C"], "single", "correct_answers"),
        (["Yes", "No"], ["A", "B"], "single", "correct_answers"),
        (["Yes", "No"], ["A"], "essay", "type"),
    ],
)
def test_validate_question_rejects(options, correct, type_, field):
    with pytest.raises(InvalidInput) as exc:
        validate_question("Question?", type_, options, correct)
    assert field in exc.value.errors


def test_multiple_choice_allows_several_correct():
    fields = validate_question("Pick two", "multiple", ["a", "b", "c"], ["C", "A"])
    assert fields["correct_answers"] == '["A", "C"]'


def test_delete_missing_question(session):
    with pytest.raises(ValueError):
        delete_question(session, 12345)


def test_update_question_replaces_fields(session, bank):
    q = update_question(
        session,
        bank[0].id,
        content="Where is the <i>nearest</i> extinguisher?",
        options=["Hallway", "Kitchen", "Lobby"],
        correct_answers=["c"],
        category="fire",
    )
    session.expire_all()

    stored = session.get(Question, q.id)
    assert stored.content == "Where is the <i>nearest</i> extinguisher?"
    assert stored.option_list() == ["Hallway", "Kitchen", "Lobby"]
    assert stored.correct_labels() == ["C"]
    assert stored.category == "fire"


def test_update_question_validates_like_add(session, bank):
    with pytest.raises(InvalidInput) as exc:
        update_question(session, bank[0].id, content="", options=["Yes"], correct_answers=["A"])
    assert {"content", "options"} <= set(exc.value.errors)

    session.expire_all()
    assert session.get(Question, bank[0].id).content == "Question 1?"


def test_update_missing_question(session):
    with pytest.raises(ValueError):
        update_question(session, 12345, content="Q?", options=["a", "b"], correct_answers=["A"])


def test_question_in_open_attempt_cannot_be_deleted(session, make_exam, admin, rng):
    exam = make_exam(question_count=3)
    started = start_attempt(session, admin, exam.id, NOW, rng=rng)
    served = started.questions[0]["id"]

    with pytest.raises(InvalidInput) as exc:
        delete_question(session, served)
    assert "question" in exc.value.errors
    assert session.get(Question, served) is not None

    answers = {str(q["id"]): ["A"] for q in started.questions}
    submitted = submit_attempt(
        session, admin, exam.id, answers, NOW, attempt_id=started.attempt_id
    )
    assert submitted.score == 10
    assert submitted.total_questions == 3


def test_delete_question_after_submission_keeps_result(session, make_exam, admin, rng):
    exam = make_exam(question_count=3)
    started = start_attempt(session, admin, exam.id, NOW, rng=rng)
    answers = {str(q["id"]): ["A"] for q in started.questions}
    submitted = submit_attempt(
        session, admin, exam.id, answers, NOW, attempt_id=started.attempt_id
    )
    served = started.questions[0]["id"]

    delete_question(session, served)
    session.expire_all()

    assert session.get(Question, served) is None
    rows = session.exec(
        select(AttemptQuestion).where(AttemptQuestion.question_id == served)
    ).all()
    assert rows == []
    result = session.get(ExamResult, submitted.result_id)
    assert result.score == 10
    assert [d["id"] for d in exam_service.result_detail(session, result)] == [
        q["id"] for q in started.questions[1:]
    ]
