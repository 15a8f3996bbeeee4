"""Timestamp utilities for consistent time handling across storage backends."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    Naive datetimes come back from SQLite and MySQL columns; they are always
    written as UTC, so the zone is attached rather than converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    """Return a naive UTC datetime suitable for binding to DATETIME columns."""
    return ensure_utc(value).replace(tzinfo=None)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 string (or pass through a datetime) into aware UTC.

    Args:
        value: ISO-8601 text, a datetime, or None

    Returns:
        Aware UTC datetime, or None when ``value`` is None or empty

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"expected an ISO-8601 string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        return None
    # Python < 3.11 does not accept the "Z" suffix in fromisoformat
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_timestamp(value: datetime | None) -> str | None:
    """Render an aware UTC ISO-8601 string for persistence."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


def to_display(value: datetime | None, tz_name: str = "UTC") -> str:
    """Render ``value`` for operators in the configured time zone.

    Unknown zone names fall back to UTC.
    """
    if value is None:
        return "unknown"
    zone: tzinfo
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = timezone.utc
    return ensure_utc(value).astimezone(zone).strftime(DISPLAY_FORMAT)


__all__ = [
    "DISPLAY_FORMAT",
    "utcnow",
    "ensure_utc",
    "to_naive_utc",
    "parse_timestamp",
    "format_timestamp",
    "to_display",
]
