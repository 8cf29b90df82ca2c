"""Attempt orchestration: starting and submitting exam attempts."""

import json
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy import or_
from sqlmodel import Session, select

from exam_portal.errors import (
    AttemptAlreadySubmitted,
    AttemptNotFound,
    EmptySubmission,
    ExamNotFound,
    IncompleteSubmission,
)
from exam_portal.identity import Identity
from exam_portal.models import (
    ATTEMPT_IN_PROGRESS,
    ATTEMPT_SUBMITTED,
    AttemptQuestion,
    Exam,
    ExamAttempt,
    ExamResult,
    Question,
    User,
)
from exam_portal.services.access import (
    can_access_exam,
    check_window,
    effective_ceiling,
    get_assignment,
)
from exam_portal.services.ledger import (
    LedgerKeys,
    count_attempts,
    count_matching,
    enforce_attempt_limit,
)
from exam_portal.services.sampler import draw_for_exam, label_mapping
from exam_portal.utils import to_storage

logger = logging.getLogger(__name__)

MAX_SCORE = 10

AnswerMap = dict[Union[int, str], Union[list[str], str]]


@dataclass
class StartedAttempt:
    attempt_id: int
    exam: Exam
    questions: list[dict[str, Any]]
    attempt_number: int
    max_attempts: int


@dataclass
class SubmittedAttempt:
    result_id: int
    score: float
    correct_count: int
    total_questions: int
    attempt_number: int


def start_attempt(
    session: Session,
    identity: Optional[Identity],
    exam_id: int,
    now: datetime,
    rng: Optional[random.Random] = None,
    display_tz: Optional[str] = None,
) -> StartedAttempt:
    """Run the gates in order, then draw and persist a question set for this attempt.

    Gate order: visibility/assignment, time window, attempt limit, sampling.
    Each failure raises its own ExamFlowError subclass; nothing is retried.
    """
    access = can_access_exam(session, identity, exam_id)
    exam = access.exam
    check_window(exam, now, display_tz)

    count = count_attempts(session, identity, exam_id)
    enforce_attempt_limit(count, access.effective_max_attempts)

    # Raises InsufficientBank before anything is written
    sampled = draw_for_exam(session, exam, rng)

    attempt = ExamAttempt(
        exam_id=exam_id,
        user_id=identity.user_id if identity else None,
        attempt_number=count + 1,
        started_at=to_storage(now),
        status=ATTEMPT_IN_PROGRESS,
    )
    session.add(attempt)
    session.flush()

    for item in sampled:
        session.add(
            AttemptQuestion(
                attempt_id=attempt.id,
                question_id=item.question.id,
                order=item.order,
                option_order=json.dumps(item.option_order),
            )
        )
    session.commit()
    session.refresh(attempt)

    logger.info(
        "Started attempt %s (#%s) on exam %s for %s",
        attempt.id,
        attempt.attempt_number,
        exam_id,
        identity.username if identity else "anonymous",
    )

    questions = [
        {
            "id": item.question.id,
            "order": item.order,
            "content": item.question.content,
            "type": item.question.type,
            "options": item.display_options(),
            "answer_mapping": item.label_mapping() if exam.shuffle_answers else None,
        }
        for item in sampled
    ]
    return StartedAttempt(
        attempt_id=attempt.id,
        exam=exam,
        questions=questions,
        attempt_number=attempt.attempt_number,
        max_attempts=access.effective_max_attempts,
    )


def _normalize_answers(answers: Optional[AnswerMap]) -> dict[int, list[str]]:
    normalized: dict[int, list[str]] = {}
    for key, value in (answers or {}).items():
        try:
            qid = int(key)
        except (TypeError, ValueError):
            continue
        if isinstance(value, str):
            value = [value]
        labels = [str(v).strip().upper() for v in value or [] if str(v).strip()]
        normalized[qid] = labels
    return normalized


def _find_user_for_claim(session: Session, student_id: Optional[str]) -> Optional[User]:
    if not student_id:
        return None
    clauses = [User.username == student_id]
    if student_id.isdigit():
        clauses.append(User.id == int(student_id))
    return session.exec(select(User).where(or_(*clauses))).first()


def _is_correct(selected: list[str], correct: list[str]) -> bool:
    return sorted(set(selected)) == sorted(set(correct))


def submit_attempt(
    session: Session,
    identity: Optional[Identity],
    exam_id: int,
    answers: Optional[AnswerMap],
    now: datetime,
    student_id: Optional[str] = None,
    student_name: Optional[str] = None,
    attempt_id: Optional[int] = None,
    answer_mappings: Optional[dict[Union[int, str], dict[str, str]]] = None,
    time_spent: Optional[int] = None,
) -> SubmittedAttempt:
    """Score a submission and record it in the attempt ledger.

    When ``attempt_id`` is given the attempt's own question set and option
    order are authoritative. Otherwise only the answered questions are scored
    and ``answer_mappings`` (display label -> original label) are applied.
    """
    exam = session.get(Exam, exam_id)
    if exam is None:
        raise ExamNotFound(exam_id)

    selected = _normalize_answers(answers)

    # Claimed student fields only identify anonymous callers
    if identity is not None:
        student_id = str(identity.user_id)
        student_name = identity.full_name or identity.username

    attempt = None
    mappings: dict[int, dict[str, str]] = {}
    if attempt_id is not None:
        attempt = session.get(ExamAttempt, attempt_id)
        if attempt is None or attempt.exam_id != exam_id:
            raise AttemptNotFound(attempt_id)
        owner = identity.user_id if identity is not None else None
        if attempt.user_id != owner:
            raise AttemptNotFound(attempt_id)
        if attempt.status == ATTEMPT_SUBMITTED:
            raise AttemptAlreadySubmitted(attempt_id)

        snapshot = session.exec(
            select(AttemptQuestion)
            .where(AttemptQuestion.attempt_id == attempt_id)
            .order_by(AttemptQuestion.order)
        ).all()
        question_ids = [row.question_id for row in snapshot]
        mappings = {row.question_id: label_mapping(json.loads(row.option_order)) for row in snapshot}

        if exam.require_all_questions:
            missing = [qid for qid in question_ids if not selected.get(qid)]
            if missing:
                raise IncompleteSubmission(missing)
    else:
        question_ids = list(selected.keys())
        if not question_ids:
            raise EmptySubmission()
        for key, mapping in (answer_mappings or {}).items():
            try:
                mappings[int(key)] = {str(k).upper(): str(v).upper() for k, v in mapping.items()}
            except (TypeError, ValueError):
                continue

    # Reconcile the ledger with the same OR-matching rule used at start
    keys = LedgerKeys.build(identity, student_id, student_name)
    count = count_matching(session, exam_id, keys)

    user_id = identity.user_id if identity else None
    if user_id is None:
        claimed_user = _find_user_for_claim(session, student_id)
        user_id = claimed_user.id if claimed_user else None
    assignment = get_assignment(session, exam_id, user_id) if user_id is not None else None
    enforce_attempt_limit(count, effective_ceiling(exam, assignment))

    questions = {
        q.id: q
        for q in session.exec(select(Question).where(Question.id.in_(question_ids))).all()
    }

    # Answers are stored under original labels so later review needs no mapping
    recorded: dict[str, list[str]] = {}
    correct_count = 0
    for qid in question_ids:
        mapping = mappings.get(qid, {})
        original = [mapping.get(label, label) for label in selected.get(qid, [])]
        recorded[str(qid)] = original
        question = questions.get(qid)
        if question is not None and _is_correct(original, question.correct_labels()):
            correct_count += 1

    total = len(question_ids)
    score = round(correct_count / total * MAX_SCORE, 2) if total else 0.0
    attempt_number = count + 1

    result = ExamResult(
        exam_id=exam_id,
        attempt_id=attempt.id if attempt else None,
        student_id=student_id,
        student_name=student_name,
        score=score,
        total_questions=total,
        correct_answers=correct_count,
        answers=json.dumps(recorded),
        question_ids=json.dumps(question_ids),
        time_spent=time_spent,
        attempt_number=attempt_number,
        completed_at=to_storage(now),
    )
    session.add(result)
    if attempt is not None:
        attempt.status = ATTEMPT_SUBMITTED
        attempt.submitted_at = to_storage(now)
        session.add(attempt)
    session.commit()
    session.refresh(result)

    logger.info(
        "Recorded result %s on exam %s for %s: %s/%s correct (attempt #%s)",
        result.id,
        exam_id,
        student_id or student_name or "anonymous",
        correct_count,
        total,
        attempt_number,
    )
    return SubmittedAttempt(
        result_id=result.id,
        score=score,
        correct_count=correct_count,
        total_questions=total,
        attempt_number=attempt_number,
    )
