"""SQLModel models for the Exam Portal."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from exam_portal.utils import utcnow

ROLE_ADMIN = "admin"
ROLE_LEADER = "leader"
ROLE_USER = "user"

QUESTION_TYPES = {"single", "multiple"}

OVERRIDE_GRANT = "grant"
OVERRIDE_DENY = "deny"

ATTEMPT_IN_PROGRESS = "in_progress"
ATTEMPT_SUBMITTED = "submitted"


class User(SQLModel, table=True):
    """Portal account. Managed by the user CRUD; the engine only reads it."""

    __table_args__ = (UniqueConstraint("username", name="uq_user_username"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    password_hash: str
    role: str = Field(default=ROLE_USER)  # "admin", "leader", "user"
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)


class Question(SQLModel, table=True):
    """Question bank entry. Referenced by attempts, never owned by an exam."""

    id: Optional[int] = Field(default=None, primary_key=True)
    content: str
    type: str = Field(default="single")  # single | multiple
    # JSON list of option strings, labelled A, B, C... by position
    options: str = Field(default="[]")
    # JSON list of correct labels, e.g. ["A", "C"]
    correct_answers: str = Field(default="[]")
    category: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow)

    def option_list(self) -> list[str]:
        return json.loads(self.options or "[]")

    def correct_labels(self) -> list[str]:
        return json.loads(self.correct_answers or "[]")


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    question_count: int
    time_limit: int  # minutes, enforced client-side
    # Written as aware UTC; read back through utils.as_utc
    start_date: datetime
    end_date: datetime
    shuffle_questions: bool = Field(default=False)
    shuffle_answers: bool = Field(default=False)
    require_all_questions: bool = Field(default=False)
    max_attempts: int = Field(default=1)
    is_active: bool = Field(default=True)
    is_public: bool = Field(default=False)
    # Restricts the sampling pool to one question category when set
    category: Optional[str] = None
    created_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExamAssignment(SQLModel, table=True):
    """Permits one user to take one private exam, optionally with its own ceiling."""

    __table_args__ = (
        UniqueConstraint("exam_id", "user_id", name="uq_exam_assignment"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    user_id: int = Field(foreign_key="user.id")
    max_attempts: Optional[int] = None
    assigned_by: Optional[str] = None
    assigned_at: datetime = Field(default_factory=utcnow)


class ExamAttempt(SQLModel, table=True):
    """One started attempt. Owns its own sampled question set."""

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    attempt_number: int
    started_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    status: str = Field(default=ATTEMPT_IN_PROGRESS)  # in_progress | submitted


class AttemptQuestion(SQLModel, table=True):
    """A question drawn for a single attempt, in display order."""

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_attempt_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key="examattempt.id", index=True)
    question_id: int = Field(foreign_key="question.id")
    order: int
    # JSON list of original option indices in display order
    option_order: str = Field(default="[]")


class ExamResult(SQLModel, table=True):
    """A completed attempt. Also serves as the attempt ledger.

    student_id and student_name are free text, not foreign keys: anonymous
    takers of public exams are recorded by name only.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    attempt_id: Optional[int] = Field(default=None, foreign_key="examattempt.id")
    student_id: Optional[str] = Field(default=None, index=True)
    student_name: Optional[str] = None
    score: float
    total_questions: int
    correct_answers: int
    answers: str = Field(default="{}")  # JSON {question_id: [labels]}
    question_ids: str = Field(default="[]")  # JSON list
    time_spent: Optional[int] = None  # seconds
    attempt_number: int
    completed_at: datetime = Field(default_factory=utcnow)


# ===================== PERMISSION MODELS =====================


class Permission(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("code", name="uq_permission_code"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str
    name: str
    category: str
    description: Optional[str] = None


class RolePermission(SQLModel, table=True):
    """Default policy: a role is granted a permission."""

    __table_args__ = (
        UniqueConstraint("role", "permission_id", name="uq_role_permission"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    role: str = Field(index=True)
    permission_id: int = Field(foreign_key="permission.id")


class UserPermission(SQLModel, table=True):
    """Per-user override layered on top of the role default."""

    __table_args__ = (
        UniqueConstraint("user_id", "permission_id", name="uq_user_permission"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    permission_id: int = Field(foreign_key="permission.id")
    type: str  # grant | deny
    reason: Optional[str] = None
    granted_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
