"""
UTC time helpers

All pipeline timestamps are timezone-aware UTC. Stores without timezone
support (SQLite) hand back naive values, which are treated as UTC.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_z(value: datetime | None) -> str | None:
    """
    Millisecond ISO-8601 with a Z suffix, e.g. 2026-03-01T01:00:00.000Z

    Used for canonical keys and API payloads.
    """
    value = as_utc(value)
    if value is None:
        return None
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
