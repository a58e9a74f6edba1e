"""Utility functions for time handling.

Two clocks are in play:

- wall clock (local, naive ``datetime``) for matching schedule slots such as
  "07:00" and for user-facing timestamps;
- monotonic clock (seconds, ``float``) for measuring elapsed simulation time,
  immune to wall clock jumps.

Persist timestamps as ISO-8601 strings via :func:`to_iso`.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Protocol


class Clock(Protocol):
    """Source of wall and monotonic time; injected so tests can drive it."""

    def now(self) -> datetime: ...

    def monotonic(self) -> float: ...


class SystemClock:
    """Real clock backed by :mod:`datetime` and :func:`time.monotonic`."""

    def now(self) -> datetime:
        return datetime.now()

    def monotonic(self) -> float:
        return time.monotonic()


def utc_now() -> datetime:
    """Return current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def iso_now(*, timespec: str | None = None) -> str:
    """Return current UTC time as an ISO8601 string (timezone-aware)."""
    now = utc_now()
    if timespec:
        return now.isoformat(timespec=timespec)
    return now.isoformat()


def to_iso(dt: datetime | None) -> str | None:
    """Serialize an optional datetime for storage/JSON."""
    if dt is None:
        return None
    return dt.isoformat()


def minute_of_day(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def coerce_datetime(value: Any) -> datetime | None:
    """
    Coerce value to a naive local datetime, returning None on failure.

    Aware values are converted to local time and stripped of tzinfo so they
    compare cleanly with :meth:`SystemClock.now`.

    Args:
        value: String or datetime to coerce

    Returns:
        Naive datetime or None if invalid
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw.replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)

    return parsed
