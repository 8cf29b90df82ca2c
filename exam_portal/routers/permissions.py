"""Administration of the permission catalog, role policies and user overrides."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from exam_portal.database import get_session
from exam_portal.deps import get_permission_cache, require_login, require_permission
from exam_portal.identity import Identity
from exam_portal.models import ROLE_ADMIN, ROLE_LEADER, ROLE_USER, Permission, User
from exam_portal.schemas import RolePermissionsSchema, UserOverridesSchema
from exam_portal.services.permissions import (
    PERMISSIONS,
    RolePermissionCache,
    check_permission,
    clear_user_overrides,
    list_user_overrides,
    role_permission_codes,
    set_role_permissions,
    set_user_overrides,
)

router = APIRouter()

ROLES = (ROLE_ADMIN, ROLE_LEADER, ROLE_USER)
manage_permissions = require_permission(PERMISSIONS.MANAGE_PERMISSIONS)


def _check_role(role: str) -> str:
    if role not in ROLES:
        raise HTTPException(status_code=404, detail="Unknown role")
    return role


def _get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("")
def list_catalog(
    session: Session = Depends(get_session),
    current_user: Identity = Depends(manage_permissions),
):
    """The whole catalog grouped by category."""
    grouped: dict[str, list[dict]] = {}
    for perm in session.exec(select(Permission).order_by(Permission.id)).all():
        grouped.setdefault(perm.category, []).append(
            {"code": perm.code, "name": perm.name, "description": perm.description}
        )
    return grouped


@router.get("/check/{code}")
def check(
    code: str,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(require_login),
    cache: RolePermissionCache = Depends(get_permission_cache),
):
    decision = check_permission(session, current_user, code, cache)
    return {"code": code, "allowed": decision.allowed, "reason": decision.reason}


@router.get("/roles/{role}")
def get_role_policy(
    role: str,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(manage_permissions),
):
    _check_role(role)
    return {"role": role, "permission_codes": role_permission_codes(session, role)}


@router.put("/roles/{role}")
def put_role_policy(
    role: str,
    payload: RolePermissionsSchema,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(manage_permissions),
    cache: RolePermissionCache = Depends(get_permission_cache),
):
    _check_role(role)
    codes = set_role_permissions(session, role, payload.permission_codes, cache)
    return {"success": True, "role": role, "permission_codes": codes}


@router.get("/users/{user_id}")
def get_user_overrides(
    user_id: int,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(manage_permissions),
):
    user = _get_user(session, user_id)
    return {
        "user_id": user.id,
        "role": user.role,
        "overrides": list_user_overrides(session, user_id),
    }


@router.put("/users/{user_id}")
def put_user_overrides(
    user_id: int,
    payload: UserOverridesSchema,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(manage_permissions),
):
    _get_user(session, user_id)
    set_user_overrides(
        session,
        user_id,
        grants=payload.grants,
        denies=payload.denies,
        reason=payload.reason,
        granted_by=current_user.username,
    )
    return {"success": True, "overrides": list_user_overrides(session, user_id)}


@router.delete("/users/{user_id}")
def delete_user_overrides(
    user_id: int,
    session: Session = Depends(get_session),
    current_user: Identity = Depends(manage_permissions),
):
    _get_user(session, user_id)
    clear_user_overrides(session, user_id)
    return {"success": True}
