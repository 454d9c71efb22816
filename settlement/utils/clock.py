"""Timestamp helpers.  Every instant the engine compares is UTC-aware."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

__all__ = ["ensure_utc", "ensure_utc_optional", "utc_now"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime.

    Naive values are taken to be UTC already; aware values are converted.
    """
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_utc_optional(value: Optional[datetime]) -> Optional[datetime]:
    return None if value is None else ensure_utc(value)
