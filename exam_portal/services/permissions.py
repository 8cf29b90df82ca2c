"""Permission store, role-policy cache and the effective-permission resolver.

Precedence for a non-admin identity: user deny > user grant > role default >
fail closed. The ``admin`` role short-circuits before any lookup, so it is
allowed even for codes that do not exist in the catalog.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from sqlalchemy import delete
from sqlmodel import Session, select

from exam_portal.errors import InvalidInput
from exam_portal.identity import Identity
from exam_portal.models import (
    OVERRIDE_DENY,
    OVERRIDE_GRANT,
    ROLE_ADMIN,
    ROLE_LEADER,
    ROLE_USER,
    Permission,
    RolePermission,
    UserPermission,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 5 * 60


class PERMISSIONS:
    # Exams
    VIEW_EXAMS = "view_exams"
    CREATE_EXAMS = "create_exams"
    EDIT_EXAMS = "edit_exams"
    DELETE_EXAMS = "delete_exams"
    EXPORT_EXAM_RESULTS = "export_exam_results"
    ASSIGN_EXAMS = "assign_exams"
    TOGGLE_EXAM_STATUS = "toggle_exam_status"
    VIEW_EXAM_RESULTS = "view_exam_results"

    # Tasks
    VIEW_TASKS = "view_tasks"
    CREATE_TASKS = "create_tasks"
    EDIT_TASKS = "edit_tasks"
    DELETE_TASKS = "delete_tasks"
    VIEW_TASK_RESULTS = "view_task_results"
    EXPORT_TASK_RESULTS = "export_task_results"
    ASSIGN_TASKS = "assign_tasks"
    UPLOAD_TASK_DATA = "upload_task_data"
    VIEW_TASK_CUSTOMERS = "view_task_customers"

    # Questions
    VIEW_QUESTIONS = "view_questions"
    CREATE_QUESTIONS = "create_questions"
    EDIT_QUESTIONS = "edit_questions"
    DELETE_QUESTIONS = "delete_questions"
    IMPORT_QUESTIONS = "import_questions"

    # Users
    VIEW_USERS = "view_users"
    CREATE_USERS = "create_users"
    EDIT_USERS = "edit_users"
    DELETE_USERS = "delete_users"

    # Videos
    VIEW_VIDEOS = "view_videos"
    CREATE_VIDEOS = "create_videos"
    EDIT_VIDEOS = "edit_videos"
    DELETE_VIDEOS = "delete_videos"

    # Documents
    VIEW_DOCUMENTS = "view_documents"
    CREATE_DOCUMENTS = "create_documents"
    EDIT_DOCUMENTS = "edit_documents"
    DELETE_DOCUMENTS = "delete_documents"

    # System
    MANAGE_CATEGORIES = "manage_categories"
    MANAGE_GROUPS = "manage_groups"
    MANAGE_SETTINGS = "manage_settings"
    MANAGE_PERMISSIONS = "manage_permissions"


# (code, display name, category)
PERMISSION_CATALOG = [
    (PERMISSIONS.VIEW_EXAMS, "View exams", "exams"),
    (PERMISSIONS.CREATE_EXAMS, "Create exams", "exams"),
    (PERMISSIONS.EDIT_EXAMS, "Edit exams", "exams"),
    (PERMISSIONS.DELETE_EXAMS, "Delete exams", "exams"),
    (PERMISSIONS.EXPORT_EXAM_RESULTS, "Export exam results", "exams"),
    (PERMISSIONS.ASSIGN_EXAMS, "Assign exams", "exams"),
    (PERMISSIONS.TOGGLE_EXAM_STATUS, "Enable/disable exams", "exams"),
    (PERMISSIONS.VIEW_EXAM_RESULTS, "View exam results", "exams"),
    (PERMISSIONS.VIEW_TASKS, "View tasks", "tasks"),
    (PERMISSIONS.CREATE_TASKS, "Create tasks", "tasks"),
    (PERMISSIONS.EDIT_TASKS, "Edit tasks", "tasks"),
    (PERMISSIONS.DELETE_TASKS, "Delete tasks", "tasks"),
    (PERMISSIONS.VIEW_TASK_RESULTS, "View task results", "tasks"),
    (PERMISSIONS.EXPORT_TASK_RESULTS, "Export task results", "tasks"),
    (PERMISSIONS.ASSIGN_TASKS, "Assign tasks", "tasks"),
    (PERMISSIONS.UPLOAD_TASK_DATA, "Upload task data", "tasks"),
    (PERMISSIONS.VIEW_TASK_CUSTOMERS, "View task customers", "tasks"),
    (PERMISSIONS.VIEW_QUESTIONS, "View question bank", "questions"),
    (PERMISSIONS.CREATE_QUESTIONS, "Create questions", "questions"),
    (PERMISSIONS.EDIT_QUESTIONS, "Edit questions", "questions"),
    (PERMISSIONS.DELETE_QUESTIONS, "Delete questions", "questions"),
    (PERMISSIONS.IMPORT_QUESTIONS, "Import questions", "questions"),
    (PERMISSIONS.VIEW_USERS, "View users", "users"),
    (PERMISSIONS.CREATE_USERS, "Create users", "users"),
    (PERMISSIONS.EDIT_USERS, "Edit users", "users"),
    (PERMISSIONS.DELETE_USERS, "Delete users", "users"),
    (PERMISSIONS.VIEW_VIDEOS, "View videos", "videos"),
    (PERMISSIONS.CREATE_VIDEOS, "Create videos", "videos"),
    (PERMISSIONS.EDIT_VIDEOS, "Edit videos", "videos"),
    (PERMISSIONS.DELETE_VIDEOS, "Delete videos", "videos"),
    (PERMISSIONS.VIEW_DOCUMENTS, "View documents", "documents"),
    (PERMISSIONS.CREATE_DOCUMENTS, "Create documents", "documents"),
    (PERMISSIONS.EDIT_DOCUMENTS, "Edit documents", "documents"),
    (PERMISSIONS.DELETE_DOCUMENTS, "Delete documents", "documents"),
    (PERMISSIONS.MANAGE_CATEGORIES, "Manage categories", "system"),
    (PERMISSIONS.MANAGE_GROUPS, "Manage groups", "system"),
    (PERMISSIONS.MANAGE_SETTINGS, "Manage settings", "system"),
    (PERMISSIONS.MANAGE_PERMISSIONS, "Manage permissions", "system"),
]

DEFAULT_ROLE_POLICY = {
    ROLE_ADMIN: [code for code, _, _ in PERMISSION_CATALOG],
    # Leaders can look and export, never mutate
    ROLE_LEADER: [
        PERMISSIONS.VIEW_EXAMS,
        PERMISSIONS.VIEW_EXAM_RESULTS,
        PERMISSIONS.EXPORT_EXAM_RESULTS,
        PERMISSIONS.VIEW_TASKS,
        PERMISSIONS.VIEW_TASK_CUSTOMERS,
        PERMISSIONS.VIEW_TASK_RESULTS,
        PERMISSIONS.EXPORT_TASK_RESULTS,
        PERMISSIONS.VIEW_QUESTIONS,
        PERMISSIONS.VIEW_USERS,
        PERMISSIONS.VIEW_VIDEOS,
        PERMISSIONS.VIEW_DOCUMENTS,
    ],
    ROLE_USER: [
        PERMISSIONS.VIEW_VIDEOS,
        PERMISSIONS.VIEW_DOCUMENTS,
    ],
}


# ===================== ROLE POLICY CACHE =====================


def load_role_codes(session: Session, role: str) -> frozenset[str]:
    """Read the permission codes granted to ``role`` straight from the store."""
    rows = session.exec(
        select(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role == role)
    ).all()
    return frozenset(rows)


class RolePermissionCache:
    """Process-wide read-through cache of role -> permission codes.

    Entries expire after ``ttl_seconds`` and are rebuilt lazily on the next
    read. ``invalidate`` is called by administrative policy edits. Per-user
    overrides are never cached.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, frozenset[str]]] = {}
        self._lock = threading.Lock()

    def codes_for(self, session: Session, role: str) -> frozenset[str]:
        now = self._clock()
        entry = self._entries.get(role)
        if entry is not None and now - entry[0] < self.ttl_seconds:
            return entry[1]

        # Store reads happen outside the lock
        codes = load_role_codes(session, role)
        with self._lock:
            self._entries[role] = (now, codes)
        logger.debug("Rebuilt permission cache for role %s (%d codes)", role, len(codes))
        return codes

    def invalidate(self, role: Optional[str] = None) -> None:
        with self._lock:
            if role is None:
                self._entries.clear()
            else:
                self._entries.pop(role, None)
        logger.debug("Invalidated permission cache (role=%s)", role or "*")


# ===================== RESOLVER =====================


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: str


def _decide(
    override_type: Optional[str], role_grants: bool
) -> PermissionDecision:
    if override_type == OVERRIDE_DENY:
        return PermissionDecision(False, "user_denied")
    if override_type == OVERRIDE_GRANT:
        return PermissionDecision(True, "user_granted")
    if role_grants:
        return PermissionDecision(True, "role_granted")
    return PermissionDecision(False, "no_permission")


def get_permission_by_code(session: Session, code: str) -> Optional[Permission]:
    return session.exec(select(Permission).where(Permission.code == code)).first()


def get_user_override(
    session: Session, user_id: int, permission_id: int
) -> Optional[UserPermission]:
    return session.exec(
        select(UserPermission).where(
            UserPermission.user_id == user_id,
            UserPermission.permission_id == permission_id,
        )
    ).first()


def check_permission(
    session: Session,
    identity: Optional[Identity],
    code: str,
    cache: RolePermissionCache,
) -> PermissionDecision:
    """Compute the effective decision and the reason behind it."""
    if identity is not None and identity.is_admin:
        return PermissionDecision(True, "admin")
    if identity is None:
        return PermissionDecision(False, "anonymous")

    permission = get_permission_by_code(session, code)
    if permission is None:
        return PermissionDecision(False, "unknown_permission")

    override = get_user_override(session, identity.user_id, permission.id)
    role_grants = code in cache.codes_for(session, identity.role)
    return _decide(override.type if override else None, role_grants)


def resolve_permission(
    session: Session,
    identity: Optional[Identity],
    code: str,
    cache: RolePermissionCache,
) -> bool:
    decision = check_permission(session, identity, code, cache)
    if not decision.allowed:
        logger.debug(
            "Permission %s denied for %s: %s",
            code,
            identity.username if identity else "anonymous",
            decision.reason,
        )
    return decision.allowed


def has_any_permission(
    session: Session,
    identity: Optional[Identity],
    codes: Iterable[str],
    cache: RolePermissionCache,
) -> bool:
    return any(resolve_permission(session, identity, code, cache) for code in codes)


def effective_permissions(
    session: Session, identity: Optional[Identity], cache: RolePermissionCache
) -> list[str]:
    """Every catalog code the identity may use, after overrides."""
    if identity is None:
        return []
    catalog = session.exec(select(Permission).order_by(Permission.id)).all()
    if identity.is_admin:
        return [p.code for p in catalog]

    overrides = {
        up.permission_id: up.type
        for up in session.exec(
            select(UserPermission).where(UserPermission.user_id == identity.user_id)
        ).all()
    }
    role_codes = cache.codes_for(session, identity.role)
    return [
        p.code
        for p in catalog
        if _decide(overrides.get(p.id), p.code in role_codes).allowed
    ]


# ===================== STORE ADMINISTRATION =====================


def role_permission_codes(session: Session, role: str) -> list[str]:
    return sorted(load_role_codes(session, role))


def _permissions_for_codes(session: Session, codes: list[str]) -> list[Permission]:
    unique = list(dict.fromkeys(codes))
    if not unique:
        return []
    found = session.exec(select(Permission).where(Permission.code.in_(unique))).all()
    if len(found) != len(unique):
        known = {p.code for p in found}
        unknown = [c for c in unique if c not in known]
        raise InvalidInput({"permission_codes": f"Unknown permission codes: {', '.join(unknown)}"})
    return found


def set_role_permissions(
    session: Session, role: str, codes: list[str], cache: RolePermissionCache
) -> list[str]:
    """Replace the role's default policy with exactly ``codes``."""
    permissions = _permissions_for_codes(session, codes)

    session.execute(delete(RolePermission).where(RolePermission.role == role))
    for perm in permissions:
        session.add(RolePermission(role=role, permission_id=perm.id))
    session.commit()

    cache.invalidate(role)
    logger.info("Updated role policy for %s: %d permissions", role, len(permissions))
    return sorted(p.code for p in permissions)


def list_user_overrides(session: Session, user_id: int) -> list[dict]:
    rows = session.exec(
        select(UserPermission, Permission)
        .join(Permission, UserPermission.permission_id == Permission.id)
        .where(UserPermission.user_id == user_id)
        .order_by(UserPermission.created_at.desc())
    ).all()
    return [
        {
            "code": perm.code,
            "name": perm.name,
            "category": perm.category,
            "type": up.type,
            "reason": up.reason,
            "granted_by": up.granted_by,
            "created_at": up.created_at,
        }
        for up, perm in rows
    ]


def set_user_overrides(
    session: Session,
    user_id: int,
    grants: list[str],
    denies: list[str],
    reason: Optional[str] = None,
    granted_by: Optional[str] = None,
) -> None:
    """Replace all overrides for a user. A code may not be both granted and denied."""
    conflict = set(grants) & set(denies)
    if conflict:
        raise InvalidInput(
            {"permission_codes": f"Codes both granted and denied: {', '.join(sorted(conflict))}"}
        )
    grant_perms = _permissions_for_codes(session, grants)
    deny_perms = _permissions_for_codes(session, denies)

    session.execute(delete(UserPermission).where(UserPermission.user_id == user_id))
    for override_type, perms in ((OVERRIDE_GRANT, grant_perms), (OVERRIDE_DENY, deny_perms)):
        for perm in perms:
            session.add(
                UserPermission(
                    user_id=user_id,
                    permission_id=perm.id,
                    type=override_type,
                    reason=reason,
                    granted_by=granted_by,
                )
            )
    session.commit()
    logger.info(
        "Updated overrides for user %s: %d grant(s), %d deny(s)",
        user_id,
        len(grant_perms),
        len(deny_perms),
    )


def clear_user_overrides(session: Session, user_id: int) -> None:
    """Drop every override so the user falls back to the role default."""
    session.execute(delete(UserPermission).where(UserPermission.user_id == user_id))
    session.commit()


def seed_permission_catalog(session: Session, cache: Optional[RolePermissionCache] = None) -> None:
    """Upsert the permission catalog and install default role policies for empty roles."""
    existing = {p.code: p for p in session.exec(select(Permission)).all()}
    for code, name, category in PERMISSION_CATALOG:
        perm = existing.get(code)
        if perm is None:
            session.add(Permission(code=code, name=name, category=category))
        else:
            perm.name = name
            perm.category = category
            session.add(perm)
    session.commit()

    for role, codes in DEFAULT_ROLE_POLICY.items():
        has_policy = session.exec(
            select(RolePermission).where(RolePermission.role == role)
        ).first()
        if has_policy is None:
            for perm in _permissions_for_codes(session, codes):
                session.add(RolePermission(role=role, permission_id=perm.id))
    session.commit()

    if cache is not None:
        cache.invalidate()
