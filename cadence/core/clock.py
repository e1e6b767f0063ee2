"""
Clock — the single source of "now".

Everything that reads the time (due checks, backoff, recurrence end
conditions, provenance timestamps) takes a Clock instead of calling
datetime.now() directly. Tests use FrozenClock to pin or advance time.

All datetimes handled by Cadence are timezone-aware UTC.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(ABC):
    """Returns the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""
        ...


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """
    A clock that only moves when told to.

    Usage:
        clock = FrozenClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(minutes=5)
    """

    def __init__(self, at: datetime | None = None) -> None:
        self._now = ensure_utc(at) if at else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        self._now = ensure_utc(at)

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move forward by a timedelta or timedelta keyword arguments."""
        self._now = self._now + (delta or timedelta(**kwargs))
        return self._now
