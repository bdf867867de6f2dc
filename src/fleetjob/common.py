"""Timestamps for machine check times kept in the job state file."""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Wall clock used by the scheduler."""

    return datetime.now(tz=UTC)


def from_iso(value: str) -> datetime:
    """Parse a persisted ``next_check``; naive values are taken as UTC."""

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
