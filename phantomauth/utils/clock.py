"""
Clock Utilities
===============

UTC timestamps and their storage encoding.

All timestamps are timezone-aware UTC and stored as ISO-8601 text,
which keeps lexical and chronological order identical in SQL.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize an aware datetime as a UTC ISO-8601 string."""
    if value is None:
        return None
    if value.tzinfo is None:
        raise ValueError("Timestamps must be timezone-aware")
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
