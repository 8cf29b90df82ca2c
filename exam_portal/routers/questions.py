from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.deps import require_permission
from exam_portal.identity import Identity
from exam_portal.schemas import QuestionSchema
from exam_portal.services.permissions import PERMISSIONS
from exam_portal.services.questions import (
    add_question,
    delete_question,
    list_questions,
    update_question,
)

router = APIRouter()


def _serialize(question):
    return {
        "id": question.id,
        "content": question.content,
        "type": question.type,
        "options": question.option_list(),
        "correct_answers": question.correct_labels(),
        "category": question.category,
    }


@router.get("")
def get_questions(
    category: Optional[str] = Query(None),
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.VIEW_QUESTIONS)),
):
    return [_serialize(q) for q in list_questions(session, category)]


@router.post("", status_code=201)
def create_question(
    payload: QuestionSchema,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.CREATE_QUESTIONS)),
):
    question = add_question(
        session,
        content=payload.content,
        options=payload.options,
        correct_answers=payload.correct_answers,
        type=payload.type,
        category=payload.category,
    )
    return _serialize(question)


@router.put("/{question_id}")
def edit_question(
    question_id: int,
    payload: QuestionSchema,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.EDIT_QUESTIONS)),
):
    try:
        question = update_question(
            session,
            question_id,
            content=payload.content,
            options=payload.options,
            correct_answers=payload.correct_answers,
            type=payload.type,
            category=payload.category,
        )
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _serialize(question)


@router.delete("/{question_id}")
def remove_question(
    question_id: int,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_permission(PERMISSIONS.DELETE_QUESTIONS)),
):
    try:
        delete_question(session, question_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True}
