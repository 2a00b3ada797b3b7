"""Timestamp helpers shared by the resolver and promoter."""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime | None = None) -> str:
    """Format an RFC3339 UTC timestamp with millisecond precision and trailing 'Z'."""
    base = (dt or utcnow()).astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return base.replace("+00:00", "Z")


def normalize_timestamp(value: object) -> str | None:
    """Render a stored timestamp (datetime on PostgreSQL, text on SQLite) as RFC3339."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return format_timestamp(value)
    return str(value)


__all__ = ["utcnow", "format_timestamp", "normalize_timestamp"]
