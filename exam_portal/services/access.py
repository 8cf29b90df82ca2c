"""Visibility & assignment gate and the exam time-window gate."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from exam_portal.config import settings
from exam_portal.errors import (
    AuthenticationRequired,
    Closed,
    ExamDisabled,
    ExamNotFound,
    NotAssigned,
    NotYetOpen,
)
from exam_portal.identity import Identity
from exam_portal.models import Exam, ExamAssignment
from exam_portal.utils import as_utc, format_display_time

logger = logging.getLogger(__name__)


@dataclass
class ExamAccess:
    exam: Exam
    effective_max_attempts: int
    assignment: Optional[ExamAssignment] = None


def get_assignment(
    session: Session, exam_id: int, user_id: int
) -> Optional[ExamAssignment]:
    return session.exec(
        select(ExamAssignment).where(
            ExamAssignment.exam_id == exam_id,
            ExamAssignment.user_id == user_id,
        )
    ).first()


def effective_ceiling(exam: Exam, assignment: Optional[ExamAssignment]) -> int:
    """The assignment's own ceiling replaces the exam default when present."""
    if assignment is not None and assignment.max_attempts is not None:
        return assignment.max_attempts
    return exam.max_attempts


def can_access_exam(
    session: Session, identity: Optional[Identity], exam_id: int
) -> ExamAccess:
    """Decide whether ``identity`` may act on the exam.

    Checks run in order and stop at the first failure:

    1. the exam exists and is active (admins cannot bypass a disabled exam)
    2. admins are always allowed
    3. public exams are open to anyone, including anonymous callers
    4. private exams need a signed-in identity with an assignment row

    Returns the exam and the attempt ceiling that applies to this identity.
    Raises ExamNotFound, ExamDisabled, AuthenticationRequired or NotAssigned.
    """
    exam = session.get(Exam, exam_id)
    if exam is None:
        raise ExamNotFound(exam_id)
    if not exam.is_active:
        raise ExamDisabled(exam_id)

    assignment = None
    if identity is not None:
        assignment = get_assignment(session, exam_id, identity.user_id)

    if identity is not None and identity.is_admin:
        return ExamAccess(exam, effective_ceiling(exam, assignment), assignment)

    if exam.is_public:
        return ExamAccess(exam, effective_ceiling(exam, assignment), assignment)

    if identity is None:
        raise AuthenticationRequired(exam_id)
    if assignment is None:
        logger.info("User %s is not assigned to exam %s", identity.username, exam_id)
        raise NotAssigned(exam_id)

    return ExamAccess(exam, effective_ceiling(exam, assignment), assignment)


def is_open(exam: Exam, now: datetime) -> bool:
    now = as_utc(now)
    return as_utc(exam.start_date) <= now <= as_utc(exam.end_date)


def check_window(exam: Exam, now: datetime, display_tz: Optional[str] = None) -> None:
    """Reject when ``now`` falls outside ``[start_date, end_date]``.

    The comparison is between instants; the timezone only affects the message.
    """
    tz_name = display_tz or settings.EXAM_DISPLAY_TIMEZONE
    now = as_utc(now)
    start = as_utc(exam.start_date)
    end = as_utc(exam.end_date)

    if now < start:
        raise NotYetOpen(
            "The exam is not open yet.\n"
            f"Current time: {format_display_time(now, tz_name)}\n"
            f"Opens at: {format_display_time(start, tz_name)}",
            current_time=now.isoformat(),
            start_time=start.isoformat(),
        )
    if now > end:
        raise Closed(
            "The exam is closed.\n"
            f"Current time: {format_display_time(now, tz_name)}\n"
            f"Closed at: {format_display_time(end, tz_name)}",
            current_time=now.isoformat(),
            end_time=end.isoformat(),
        )
