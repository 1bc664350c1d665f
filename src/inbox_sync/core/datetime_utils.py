"""Datetime helpers shared across the application."""

from __future__ import annotations

from datetime import UTC, datetime

__all__ = [
    "utcnow",
    "ensure_utc",
    "serialize_datetime",
    "parse_datetime",
    "display_datetime",
    "imap_date",
]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` in UTC, treating naive values as already UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def serialize_datetime(value: datetime | None) -> str | None:
    """Serialise ``value`` to a sortable UTC ISO 8601 string."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string into an aware ``datetime``."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def display_datetime(value: datetime) -> str:
    """Return a user-friendly representation of ``value`` for notifications."""
    return ensure_utc(value).strftime("%b %d, %Y %I:%M %p UTC")


def imap_date(value: datetime) -> str:
    """Format ``value`` as an RFC 3501 search date (``17-Oct-2026``)."""
    return value.strftime("%d-%b-%Y")
