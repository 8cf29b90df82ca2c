"""Exam management and exam-taking routes."""

import random
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import (
    get_clock,
    get_current_identity,
    get_permission_cache,
    get_rng,
    require_login,
    require_permission,
)
from exam_portal.errors import PermissionDenied
from exam_portal.identity import Identity
from exam_portal.schemas import AssignSchema, ExamSchema, SubmitSchema
from exam_portal.services import exams as exam_service
from exam_portal.services.attempts import start_attempt, submit_attempt
from exam_portal.services.permissions import (
    PERMISSIONS,
    RolePermissionCache,
    resolve_permission,
)

router = APIRouter()


# ===================== ADMINISTRATION =====================


@router.get("")
def list_exams(
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.VIEW_EXAMS)),
):
    return [
        {**exam.model_dump(), "result_count": count}
        for exam, count in exam_service.list_exams(session)
    ]


@router.post("", status_code=201)
def create_exam(
    payload: ExamSchema,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.CREATE_EXAMS)),
):
    exam = exam_service.create_exam(session, payload.model_dump(), created_by=current_user)
    return exam


@router.get("/my-exams")
def my_exams(
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_login),
    now: datetime = Depends(get_clock),
):
    """Assigned exams that are active and open right now."""
    return exam_service.my_exams(session, current_user, now)


@router.get("/{exam_id}")
def get_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.VIEW_EXAMS)),
):
    return exam_service.get_exam(session, exam_id)


@router.put("/{exam_id}")
def update_exam(
    exam_id: int,
    payload: ExamSchema,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.EDIT_EXAMS)),
):
    exam = exam_service.update_exam(session, exam_id, payload.model_dump())
    return {"success": True, "exam": exam}


@router.delete("/{exam_id}")
def delete_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.DELETE_EXAMS)),
):
    exam_service.delete_exam(session, exam_id)
    return {"success": True}


@router.post("/{exam_id}/toggle")
def toggle_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.TOGGLE_EXAM_STATUS)),
):
    exam = exam_service.toggle_active(session, exam_id)
    message = "Exam enabled" if exam.is_active else "Exam disabled"
    return {"success": True, "exam": exam, "message": message}


@router.post("/{exam_id}/toggle-public")
def toggle_exam_public(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.TOGGLE_EXAM_STATUS)),
):
    exam = exam_service.toggle_public(session, exam_id)
    message = (
        "Exam is public (anyone with the link can take it)"
        if exam.is_public
        else "Exam is private (assigned users only)"
    )
    return {"success": True, "exam": exam, "message": message}


@router.get("/{exam_id}/assign")
def list_assignments(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.ASSIGN_EXAMS)),
):
    return {"success": True, "assignments": exam_service.list_assignments(session, exam_id)}


@router.post("/{exam_id}/assign")
def assign_exam(
    exam_id: int,
    payload: AssignSchema,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.ASSIGN_EXAMS)),
):
    count = exam_service.assign_exam(
        session,
        exam_id,
        payload.user_ids,
        max_attempts=payload.max_attempts,
        assigned_by=current_user.username,
    )
    return {"success": True, "count": count, "message": f"Assigned exam to {count} user(s)"}


@router.delete("/{exam_id}/assign")
def unassign_exam(
    exam_id: int,
    user_id: int = Query(...),
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.ASSIGN_EXAMS)),
):
    exam_service.unassign_exam(session, exam_id, user_id)
    return {"success": True}


@router.get("/{exam_id}/results")
def list_results(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.VIEW_EXAM_RESULTS)),
):
    return exam_service.list_results(session, exam_id)


@router.get("/{exam_id}/results/{result_id}")
def result_detail(
    exam_id: int,
    result_id: int,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_login),
    cache: RolePermissionCache = Depends(get_permission_cache),
):
    """A taker may review their own result; reviewers need view_exam_results."""
    result = exam_service.get_result(session, exam_id, result_id)
    own = result is not None and result.student_id in (
        str(current_user.user_id),
        current_user.username,
    )
    if not own and not resolve_permission(
        session, current_user, PERMISSIONS.VIEW_EXAM_RESULTS, cache
    ):
        raise PermissionDenied(PERMISSIONS.VIEW_EXAM_RESULTS)
    if result is None:
        raise HTTPException(status_code=404, detail="Result not found")

    exam = exam_service.get_exam(session, exam_id)
    return {
        "result": result,
        "exam": {"id": exam.id, "title": exam.title, "max_attempts": exam.max_attempts},
        "questions": exam_service.result_detail(session, result),
    }


# ===================== TAKING AN EXAM =====================


@router.post("/{exam_id}/start")
def start_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    identity: Optional[Identity] = Depends(get_current_identity),
    now: datetime = Depends(get_clock),
    rng: random.Random = Depends(get_rng),
):
    started = start_attempt(session, identity, exam_id, now, rng=rng)
    exam = started.exam
    return {
        "attempt_id": started.attempt_id,
        "exam": {
            "id": exam.id,
            "title": exam.title,
            "description": exam.description,
            "time_limit": exam.time_limit,
            "question_count": exam.question_count,
            "require_all_questions": exam.require_all_questions,
        },
        "questions": started.questions,
        "attempt_number": started.attempt_number,
        "max_attempts": started.max_attempts,
    }


@router.post("/{exam_id}/submit")
def submit_exam(
    exam_id: int,
    payload: SubmitSchema,
    session: Session = Depends(get_session),
    identity: Optional[Identity] = Depends(get_current_identity),
    now: datetime = Depends(get_clock),
):
    submitted = submit_attempt(
        session,
        identity,
        exam_id,
        payload.answers,
        now,
        student_id=payload.student_id,
        student_name=payload.student_name,
        attempt_id=payload.attempt_id,
        answer_mappings=payload.answer_mappings,
        time_spent=payload.time_spent,
    )
    return {
        "success": True,
        "result": {
            "id": submitted.result_id,
            "score": submitted.score,
            "total_questions": submitted.total_questions,
            "correct_answers": submitted.correct_count,
            "attempt_number": submitted.attempt_number,
        },
    }
