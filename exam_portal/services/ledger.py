"""Attempt ledger: counting completed attempts under weak identity keys.

Takers are recorded inconsistently: signed-in users by id or username,
anonymous takers of public exams by free-text name only. A result counts
toward an identity when ANY of its keys match. This over-matches people who
share a display name.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, or_
from sqlmodel import Session, select

from exam_portal.errors import AttemptLimitReached
from exam_portal.identity import Identity
from exam_portal.models import ExamResult


@dataclass(frozen=True)
class LedgerKeys:
    student_ids: frozenset[str]
    student_names: frozenset[str]

    @classmethod
    def build(
        cls,
        identity: Optional[Identity] = None,
        student_id: Optional[str] = None,
        student_name: Optional[str] = None,
    ) -> "LedgerKeys":
        ids = set()
        names = set()
        if identity is not None:
            ids.add(str(identity.user_id))
            ids.add(identity.username)
            if identity.full_name:
                names.add(identity.full_name)
        if student_id:
            ids.add(str(student_id))
        if student_name:
            names.add(student_name)
        # Blank keys would match every anonymous row
        return cls(
            student_ids=frozenset(i.strip() for i in ids if i and i.strip()),
            student_names=frozenset(n.strip() for n in names if n and n.strip()),
        )

    @property
    def empty(self) -> bool:
        return not self.student_ids and not self.student_names


def ledger_match(exam_id: int, keys: LedgerKeys):
    """The single OR-matching rule used by both start and submit."""
    clauses = []
    if keys.student_ids:
        clauses.append(ExamResult.student_id.in_(sorted(keys.student_ids)))
    if keys.student_names:
        clauses.append(ExamResult.student_name.in_(sorted(keys.student_names)))
    return (ExamResult.exam_id == exam_id) & or_(*clauses)


def count_matching(session: Session, exam_id: int, keys: LedgerKeys) -> int:
    if keys.empty:
        return 0
    stmt = select(func.count(ExamResult.id)).where(ledger_match(exam_id, keys))
    return session.exec(stmt).one()


def count_attempts(session: Session, identity: Optional[Identity], exam_id: int) -> int:
    """Completed attempts for ``identity``. Anonymous callers count as 0 at start."""
    if identity is None:
        return 0
    return count_matching(session, exam_id, LedgerKeys.build(identity))


def enforce_attempt_limit(count: int, ceiling: int) -> None:
    if count >= ceiling:
        raise AttemptLimitReached(count=count, ceiling=ceiling)
