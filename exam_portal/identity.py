"""The caller's principal as seen by the exam engine."""

from dataclasses import dataclass
from typing import Optional

from exam_portal.models import ROLE_ADMIN, User


@dataclass(frozen=True)
class Identity:
    """Authenticated caller. Anonymous callers are represented by ``None``."""

    user_id: int
    username: str
    role: str
    full_name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(
            user_id=user.id,
            username=user.username,
            role=user.role,
            full_name=user.full_name,
        )
