import json
import logging
from typing import Any, List, Optional

from sqlalchemy import delete
from sqlmodel import Session, select

from exam_portal.errors import InvalidInput
from exam_portal.models import (
    ATTEMPT_IN_PROGRESS,
    QUESTION_TYPES,
    AttemptQuestion,
    ExamAttempt,
    Question,
)
from exam_portal.services.sampler import LABELS, question_pool
from exam_portal.utils import sanitize_plain, sanitize_question_text

logger = logging.getLogger(__name__)

QUESTION_MAX_LENGTH = 5000
OPTION_MAX_LENGTH = 1000
MIN_OPTIONS = 2
MAX_OPTIONS = 10


def validate_question(
    content: str,
    type: str,
    options: List[str],
    correct_answers: List[str],
) -> dict[str, Any]:
    """Validate and clean a bank question. Raises InvalidInput on any error."""
    errors: dict[str, str] = {}

    content_clean = sanitize_question_text(content or "")
    if not content_clean:
        errors["content"] = "Question text is required."
    elif len(content_clean) > QUESTION_MAX_LENGTH:
        errors["content"] = f"Question text must be at most {QUESTION_MAX_LENGTH} characters."

    type_clean = (type or "single").strip().lower()
    if type_clean not in QUESTION_TYPES:
        errors["type"] = "Type must be 'single' or 'multiple'."

    options_clean = [sanitize_plain(o or "") for o in options or []]
    if len(options_clean) < MIN_OPTIONS or len(options_clean) > MAX_OPTIONS:
        errors["options"] = f"A question needs between {MIN_OPTIONS} and {MAX_OPTIONS} options."
    elif any(not o for o in options_clean):
        errors["options"] = "All options must be provided and non-empty."
    elif any(len(o) > OPTION_MAX_LENGTH for o in options_clean):
        errors["options"] = f"Options must be at most {OPTION_MAX_LENGTH} characters."
    elif len({o.lower() for o in options_clean}) != len(options_clean):
        errors["options"] = "All options must be unique."

    correct_clean = sorted({(c or "").strip().upper() for c in correct_answers or []} - {""})
    valid_labels = set(LABELS[: len(options_clean)])
    if not correct_clean:
        errors["correct_answers"] = "At least one correct answer must be specified."
    elif not set(correct_clean) <= valid_labels:
        errors["correct_answers"] = "Correct answers must refer to existing options."
    elif type_clean == "single" and len(correct_clean) != 1:
        errors["correct_answers"] = "A single-choice question has exactly one correct answer."

    if errors:
        raise InvalidInput(errors)

    return {
        "content": content_clean,
        "type": type_clean,
        "options": json.dumps(options_clean),
        "correct_answers": json.dumps(correct_clean),
    }


def add_question(
    session: Session,
    content: str,
    options: List[str],
    correct_answers: List[str],
    type: str = "single",
    category: Optional[str] = None,
) -> Question:
    fields = validate_question(content, type, options, correct_answers)
    q = Question(**fields, category=(category or "").strip() or None)
    session.add(q)
    session.commit()
    session.refresh(q)
    return q


def list_questions(session: Session, category: Optional[str] = None) -> List[Question]:
    return question_pool(session, category)


def _get_question(session: Session, question_id: int) -> Question:
    question = session.get(Question, question_id)
    if not question:
        raise ValueError(f"Question with id={question_id} does not exist")
    return question


def update_question(
    session: Session,
    question_id: int,
    content: str,
    options: List[str],
    correct_answers: List[str],
    type: str = "single",
    category: Optional[str] = None,
) -> Question:
    """Replace a bank question's text, options and key.

    Raises:
        ValueError: If question doesn't exist
        InvalidInput: If the new fields fail validation
    """
    question = _get_question(session, question_id)
    fields = validate_question(content, type, options, correct_answers)
    for key, value in fields.items():
        setattr(question, key, value)
    question.category = (category or "").strip() or None
    session.add(question)
    session.commit()
    session.refresh(question)
    return question


def delete_question(session: Session, question_id: int) -> None:
    """Delete a bank question.

    A question drawn into an attempt that is still in progress cannot be
    removed. Draw rows of submitted attempts go with it; their results keep
    the score recorded at submission.

    Raises:
        ValueError: If question doesn't exist
        InvalidInput: If an open attempt was served the question
    """
    question = _get_question(session, question_id)

    in_use = session.exec(
        select(AttemptQuestion.id)
        .join(ExamAttempt, ExamAttempt.id == AttemptQuestion.attempt_id)
        .where(
            AttemptQuestion.question_id == question_id,
            ExamAttempt.status == ATTEMPT_IN_PROGRESS,
        )
    ).first()
    if in_use is not None:
        raise InvalidInput({"question": "Question is part of an attempt in progress."})

    session.execute(delete(AttemptQuestion).where(AttemptQuestion.question_id == question_id))
    session.delete(question)
    session.commit()
    logger.info("Deleted question %s", question_id)
