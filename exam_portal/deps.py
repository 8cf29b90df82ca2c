"""Shared FastAPI dependencies for database access, identity and permissions."""

import random
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from exam_portal.database import get_session
from exam_portal.errors import PermissionDenied
from exam_portal.identity import Identity
from exam_portal.models import User
from exam_portal.services.permissions import RolePermissionCache, resolve_permission


def get_current_identity(
    request: Request, session: Session = Depends(get_session)
) -> Optional[Identity]:
    """Return the signed-in identity based on the session cookie, if any."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Clear any stale session
        request.session.clear()
        return None
    return Identity.from_user(user)


def require_login(
    identity: Optional[Identity] = Depends(get_current_identity),
) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return identity


def get_permission_cache(request: Request) -> RolePermissionCache:
    """The process-wide role policy cache, created at application startup."""
    return request.app.state.permission_cache


def get_clock() -> datetime:
    return datetime.now(timezone.utc)


def get_rng() -> random.Random:
    return random.Random()


def require_permission(code: str):
    """Dependency factory that enforces one effective permission."""

    def wrapper(
        identity: Identity = Depends(require_login),
        session: Session = Depends(get_session),
        cache: RolePermissionCache = Depends(get_permission_cache),
    ) -> Identity:
        if not resolve_permission(session, identity, code, cache):
            raise PermissionDenied(code)
        return identity

    return wrapper
