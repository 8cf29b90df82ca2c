"""Minimal cookie-session login. Account management lives elsewhere."""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session, select

from exam_portal.auth_utils import hash_password, needs_rehash, verify_password
from exam_portal.database import get_session
from exam_portal.deps import get_current_identity, get_permission_cache
from exam_portal.identity import Identity
from exam_portal.models import User
from exam_portal.schemas import LoginSchema
from exam_portal.services.permissions import RolePermissionCache, effective_permissions

router = APIRouter()


@router.post("/login")
def login(
    payload: LoginSchema,
    request: Request,
    session: Session = Depends(get_session),
):
    user = session.exec(
        select(User).where(User.username == payload.username.strip())
    ).first()
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid username or password")

    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(payload.password)
        session.add(user)
        session.commit()
        session.refresh(user)

    request.session.clear()
    request.session["user_id"] = user.id
    return {"success": True, "user": asdict(Identity.from_user(user))}


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"success": True}


@router.get("/me")
def me(
    session: Session = Depends(get_session),
    identity: Optional[Identity] = Depends(get_current_identity),
    cache: RolePermissionCache = Depends(get_permission_cache),
):
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return {
        "user": asdict(identity),
        "permissions": effective_permissions(session, identity, cache),
    }
