"""Request bodies for the JSON API."""

from typing import Optional, Union

from pydantic import BaseModel, Field


class LoginSchema(BaseModel):
    username: str
    password: str


class ExamSchema(BaseModel):
    title: str
    description: Optional[str] = None
    question_count: int
    time_limit: int
    start_date: str
    end_date: str
    shuffle_questions: bool = False
    shuffle_answers: bool = False
    require_all_questions: bool = False
    max_attempts: int = 1
    is_public: bool = False
    category: Optional[str] = None


class AssignSchema(BaseModel):
    user_ids: list[int]
    max_attempts: Optional[int] = None


class SubmitSchema(BaseModel):
    # {question_id: ["A", "C"]}
    answers: dict[str, Union[list[str], str]] = Field(default_factory=dict)
    attempt_id: Optional[int] = None
    # {question_id: {display_label: original_label}}, only for submissions without attempt_id
    answer_mappings: Optional[dict[str, dict[str, str]]] = None
    time_spent: Optional[int] = None
    student_id: Optional[str] = None
    student_name: Optional[str] = None


class QuestionSchema(BaseModel):
    content: str
    type: str = "single"
    options: list[str]
    correct_answers: list[str]
    category: Optional[str] = None


class RolePermissionsSchema(BaseModel):
    permission_codes: list[str]


class UserOverridesSchema(BaseModel):
    grants: list[str] = Field(default_factory=list)
    denies: list[str] = Field(default_factory=list)
    reason: Optional[str] = None
