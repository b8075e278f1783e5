"""Canonical UTC time helpers.

Every timestamp that enters the system is normalized to an aware UTC
``datetime`` so that notes written on machines in different zones compare
correctly.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC.

    Naive values are taken to already be UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp into aware UTC.

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp.
    """
    return to_utc(datetime.fromisoformat(raw.strip()))


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO-8601 in UTC with microsecond precision."""
    return to_utc(value).isoformat(timespec="microseconds")
