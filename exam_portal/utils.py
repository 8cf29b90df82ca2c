"""Utility functions for sanitization and time handling."""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import bleach


def sanitize_question_text(text: str) -> str:
    """Sanitize question content to prevent XSS attacks.

    Allows basic formatting tags but removes script/dangerous content.
    """
    allowed_tags = ['b', 'i', 'u', 'em', 'strong', 'p', 'br', 'code', 'pre', 'ul', 'ol', 'li']
    allowed_attributes = {}

    sanitized = bleach.clean(text, tags=allowed_tags, attributes=allowed_attributes, strip=True)
    return sanitized.strip()


def sanitize_plain(text: str) -> str:
    """Strip all HTML, leaving plain text (used for option strings and titles)."""
    return bleach.clean(text, tags=[], strip=True).strip()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage(value: datetime) -> datetime:
    """Normalize to the aware UTC form written to the database.

    SQLite hands values back without tzinfo, so reads go through ``as_utc``.
    """
    return as_utc(value)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string; a trailing ``Z`` is accepted as UTC."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))


def format_display_time(value: datetime, tz_name: str) -> str:
    """Render an instant in the display timezone, e.g. ``26/11/2025 14:20:00``."""
    return as_utc(value).astimezone(ZoneInfo(tz_name)).strftime("%d/%m/%Y %H:%M:%S")
