"""
core/clock.py -- Injectable time source.

Every expiry decision in LoginGuard goes through a Clock so tests can move
time forward without sleeping. Stores and issuers take a Clock in their
constructor and default to SystemClock.

All datetimes are timezone-aware UTC. Naive datetimes are rejected by
ManualClock so a test cannot accidentally mix local and UTC time.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """A clock that only moves when told to.

    Usage:
        clock = ManualClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(seconds=301)
    """

    def __init__(self, start: datetime | None = None) -> None:
        start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        if start.tzinfo is None:
            raise ValueError("ManualClock requires a timezone-aware datetime")
        self._now = start.astimezone(timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **delta: float) -> datetime:
        """Move the clock forward by a timedelta built from keyword args."""
        step = timedelta(**delta)
        if step < timedelta(0):
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._now += step
            return self._now

    def set(self, when: datetime) -> None:
        if when.tzinfo is None:
            raise ValueError("ManualClock requires a timezone-aware datetime")
        with self._lock:
            self._now = when.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Serialize a datetime as fixed-width ISO 8601 UTC (32 chars).

    Fixed microsecond precision keeps lexicographic order equal to time order,
    which the stores rely on for created_at / expires_at comparisons in SQL.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    """Parse a stored ISO 8601 timestamp back into an aware UTC datetime."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
