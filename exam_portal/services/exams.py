"""Exam catalog operations: create, edit, delete, toggle and assign."""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func
from sqlmodel import Session, select

from exam_portal.errors import ExamNotFound, InvalidInput
from exam_portal.identity import Identity
from exam_portal.models import (
    AttemptQuestion,
    Exam,
    ExamAssignment,
    ExamAttempt,
    ExamResult,
    Question,
    User,
)
from exam_portal.services.access import is_open
from exam_portal.services.sampler import ensure_pool_size, question_pool
from exam_portal.utils import parse_datetime, sanitize_plain, to_storage, utcnow

logger = logging.getLogger(__name__)

EXAM_TITLE_MAX_LENGTH = 200
EXAM_DESCRIPTION_MAX_LENGTH = 2000
EXAM_TIME_LIMIT_MAX_MINUTES = 600
EXAM_MAX_ATTEMPTS_LIMIT = 100


def get_exam(session: Session, exam_id: int) -> Exam:
    exam = session.get(Exam, exam_id)
    if exam is None:
        raise ExamNotFound(exam_id)
    return exam


def _parse_positive_int(
    errors: dict[str, str], field: str, value: Any, label: str, maximum: Optional[int] = None
) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors[field] = f"{label} must be a whole number."
        return None
    if number < 1:
        errors[field] = f"{label} must be at least 1."
        return None
    if maximum is not None and number > maximum:
        errors[field] = f"{label} cannot exceed {maximum}."
        return None
    return number


def _as_bool(value: Any) -> bool:
    # Accepts "on"/"true"/"1" strings as well as real booleans
    return value is True or str(value).lower() in ("true", "1", "on", "yes")


def _parse_when(errors: dict[str, str], field: str, value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    try:
        parsed = parse_datetime(value)
    except (TypeError, ValueError):
        errors[field] = "Invalid date/time."
        return None
    if parsed is None:
        errors[field] = "This field is required."
    return parsed


def validate_exam_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Validate and clean exam fields. Raises InvalidInput with per-field messages."""
    errors: dict[str, str] = {}

    title = sanitize_plain(data.get("title") or "")
    if not title:
        errors["title"] = "Title is required."
    elif len(title) > EXAM_TITLE_MAX_LENGTH:
        errors["title"] = f"Title must be at most {EXAM_TITLE_MAX_LENGTH} characters."

    description = sanitize_plain(data.get("description") or "") or None
    if description and len(description) > EXAM_DESCRIPTION_MAX_LENGTH:
        errors["description"] = (
            f"Description must be at most {EXAM_DESCRIPTION_MAX_LENGTH} characters."
        )

    question_count = _parse_positive_int(
        errors, "question_count", data.get("question_count"), "Question count"
    )
    time_limit = _parse_positive_int(
        errors, "time_limit", data.get("time_limit"), "Time limit", EXAM_TIME_LIMIT_MAX_MINUTES
    )
    max_attempts = _parse_positive_int(
        errors,
        "max_attempts",
        1 if data.get("max_attempts") is None else data.get("max_attempts"),
        "Max attempts",
        EXAM_MAX_ATTEMPTS_LIMIT,
    )

    start_date = _parse_when(errors, "start_date", data.get("start_date"))
    end_date = _parse_when(errors, "end_date", data.get("end_date"))
    if start_date and end_date and end_date <= start_date:
        errors["end_date"] = "End time must be after start time."

    if errors:
        raise InvalidInput(errors)

    return {
        "title": title,
        "description": description,
        "question_count": question_count,
        "time_limit": time_limit,
        "max_attempts": max_attempts,
        "start_date": to_storage(start_date),
        "end_date": to_storage(end_date),
        "shuffle_questions": _as_bool(data.get("shuffle_questions")),
        "shuffle_answers": _as_bool(data.get("shuffle_answers")),
        "require_all_questions": _as_bool(data.get("require_all_questions")),
        "category": (data.get("category") or "").strip() or None,
    }


def create_exam(session: Session, data: dict[str, Any], created_by: Optional[Identity] = None) -> Exam:
    """Create an exam after checking its sampling pool can satisfy question_count."""
    fields = validate_exam_fields(data)
    ensure_pool_size(len(question_pool(session, fields["category"])), fields["question_count"])

    exam = Exam(
        **fields,
        is_public=_as_bool(data.get("is_public")),
        created_by=created_by.user_id if created_by else None,
    )
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Created exam %s (%s)", exam.id, exam.title)
    return exam


def update_exam(session: Session, exam_id: int, data: dict[str, Any]) -> Exam:
    exam = get_exam(session, exam_id)
    fields = validate_exam_fields(data)
    ensure_pool_size(len(question_pool(session, fields["category"])), fields["question_count"])

    for name, value in fields.items():
        setattr(exam, name, value)
    exam.updated_at = utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def delete_exam(session: Session, exam_id: int) -> None:
    """Delete an exam together with its results, attempts and assignments."""
    get_exam(session, exam_id)

    attempt_ids = select(ExamAttempt.id).where(ExamAttempt.exam_id == exam_id)
    session.execute(delete(ExamResult).where(ExamResult.exam_id == exam_id))
    session.execute(delete(AttemptQuestion).where(AttemptQuestion.attempt_id.in_(attempt_ids)))
    session.execute(delete(ExamAttempt).where(ExamAttempt.exam_id == exam_id))
    session.execute(delete(ExamAssignment).where(ExamAssignment.exam_id == exam_id))
    session.execute(delete(Exam).where(Exam.id == exam_id))
    session.commit()
    logger.info("Deleted exam %s", exam_id)


def toggle_active(session: Session, exam_id: int) -> Exam:
    exam = get_exam(session, exam_id)
    exam.is_active = not exam.is_active
    exam.updated_at = utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def toggle_public(session: Session, exam_id: int) -> Exam:
    exam = get_exam(session, exam_id)
    exam.is_public = not exam.is_public
    exam.updated_at = utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def list_exams(session: Session) -> list[tuple[Exam, int]]:
    """All exams, newest first, with their result counts."""
    counts = dict(
        session.exec(
            select(ExamResult.exam_id, func.count(ExamResult.id)).group_by(ExamResult.exam_id)
        ).all()
    )
    exams = session.exec(select(Exam).order_by(Exam.created_at.desc(), Exam.id.desc())).all()
    return [(exam, counts.get(exam.id, 0)) for exam in exams]


# ===================== ASSIGNMENTS =====================


def assign_exam(
    session: Session,
    exam_id: int,
    user_ids: list[int],
    max_attempts: Optional[int] = None,
    assigned_by: Optional[str] = None,
) -> int:
    """Assign the exam to users. Existing assignments are skipped; returns how many were created."""
    get_exam(session, exam_id)
    if not user_ids:
        raise InvalidInput({"user_ids": "Select at least one user."})
    if max_attempts is not None and max_attempts < 1:
        raise InvalidInput({"max_attempts": "Max attempts must be at least 1."})

    unique_ids = list(dict.fromkeys(user_ids))
    found = session.exec(select(User.id).where(User.id.in_(unique_ids))).all()
    if len(found) != len(unique_ids):
        raise InvalidInput({"user_ids": "Some users do not exist."})

    already = set(
        session.exec(
            select(ExamAssignment.user_id).where(
                ExamAssignment.exam_id == exam_id,
                ExamAssignment.user_id.in_(unique_ids),
            )
        ).all()
    )
    created = 0
    for user_id in unique_ids:
        if user_id in already:
            continue
        session.add(
            ExamAssignment(
                exam_id=exam_id,
                user_id=user_id,
                max_attempts=max_attempts,
                assigned_by=assigned_by,
            )
        )
        created += 1
    session.commit()
    logger.info("Assigned exam %s to %d user(s)", exam_id, created)
    return created


def unassign_exam(session: Session, exam_id: int, user_id: int) -> None:
    session.execute(
        delete(ExamAssignment).where(
            ExamAssignment.exam_id == exam_id,
            ExamAssignment.user_id == user_id,
        )
    )
    session.commit()


def list_assignments(session: Session, exam_id: int) -> list[dict[str, Any]]:
    get_exam(session, exam_id)
    rows = session.exec(
        select(ExamAssignment, User)
        .join(User, ExamAssignment.user_id == User.id)
        .where(ExamAssignment.exam_id == exam_id)
        .order_by(ExamAssignment.assigned_at.desc())
    ).all()
    return [
        {
            "id": assignment.id,
            "user_id": user.id,
            "username": user.username,
            "full_name": user.full_name,
            "email": user.email,
            "max_attempts": assignment.max_attempts,
            "assigned_at": assignment.assigned_at,
        }
        for assignment, user in rows
    ]


def my_exams(session: Session, identity: Identity, now: datetime) -> list[Exam]:
    """Exams assigned to the caller that are active and currently open."""
    exams = session.exec(
        select(Exam)
        .join(ExamAssignment, ExamAssignment.exam_id == Exam.id)
        .where(ExamAssignment.user_id == identity.user_id)
        .order_by(ExamAssignment.assigned_at.desc())
    ).all()
    return [exam for exam in exams if exam.is_active and is_open(exam, now)]


# ===================== RESULTS =====================


def list_results(session: Session, exam_id: int) -> list[ExamResult]:
    get_exam(session, exam_id)
    return list(
        session.exec(
            select(ExamResult)
            .where(ExamResult.exam_id == exam_id)
            .order_by(ExamResult.completed_at.desc())
        ).all()
    )


def get_result(session: Session, exam_id: int, result_id: int) -> Optional[ExamResult]:
    result = session.get(ExamResult, result_id)
    if result is None or result.exam_id != exam_id:
        return None
    return result


def result_detail(session: Session, result: ExamResult) -> list[dict[str, Any]]:
    """Per-question review of a stored result, in the order the questions were served."""
    question_ids = json.loads(result.question_ids or "[]")
    answers = json.loads(result.answers or "{}")
    questions = {
        q.id: q
        for q in session.exec(select(Question).where(Question.id.in_(question_ids))).all()
    }

    detail = []
    for order, qid in enumerate(question_ids, start=1):
        question = questions.get(qid)
        if question is None:
            continue
        selected = answers.get(str(qid), [])
        correct = question.correct_labels()
        detail.append(
            {
                "id": question.id,
                "order": order,
                "content": question.content,
                "type": question.type,
                "options": question.option_list(),
                "correct_answers": correct,
                "user_answers": selected,
                "is_correct": sorted(set(selected)) == sorted(set(correct)),
            }
        )
    return detail
