"""
RecurrenceEngine — when does a recurring job fire next?

Pure computation over (current run time, recurrence, occurrence count).
The injected Clock is read only for end-condition checks, never for the
arithmetic, so the same inputs always give the same next run time.
"""

from __future__ import annotations

import logging
from datetime import datetime

from cadence.core.clock import Clock, SystemClock, ensure_utc
from cadence.core.errors import InvalidArgumentError, InvalidRecurrenceError
from cadence.scheduler.recurrence import ScheduleRecurrence
from cadence.scheduler.triggers import make_trigger

logger = logging.getLogger(__name__)


class RecurrenceEngine:
    """
    Usage:
        engine = RecurrenceEngine(clock)
        next_at = engine.calculate_next_run_time(job.run_at, job.recurrence, 1)
        if next_at is None:
            ...  # series is over
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()

    def calculate_next_run_time(
        self,
        current_run_at: datetime,
        recurrence: ScheduleRecurrence,
        occurrence_count: int,
    ) -> datetime | None:
        """
        Next run time after `current_run_at`, or None once the recurrence has ended.

        Args:
            current_run_at: run_at of the occurrence that just completed.
            recurrence: a repeating policy (one-time policies are rejected).
            occurrence_count: occurrences completed so far, including this one.

        Raises:
            InvalidRecurrenceError: one-time policy, or an unusable cron expression.
            InvalidArgumentError: negative occurrence_count.
        """
        if not recurrence.is_repeating():
            raise InvalidRecurrenceError("One-time recurrence has no next run time")
        if occurrence_count < 0:
            raise InvalidArgumentError(
                f"occurrence_count must be >= 0, got {occurrence_count}"
            )

        if recurrence.has_ended(self._clock.now(), occurrence_count):
            return None

        next_run = make_trigger(recurrence).next_fire_time(ensure_utc(current_run_at))

        # An occurrence that would land past ends_at is never produced.
        if recurrence.has_ended(next_run, occurrence_count):
            logger.debug(f"Next run {next_run.isoformat()} falls after recurrence end")
            return None
        return next_run

    def describe_next_run(
        self,
        current_run_at: datetime,
        recurrence: ScheduleRecurrence,
        occurrence_count: int,
    ) -> str:
        """Human-readable description of the next occurrence, for diagnostics."""
        if not recurrence.is_repeating():
            return "does not repeat"
        next_run = self.calculate_next_run_time(current_run_at, recurrence, occurrence_count)
        if next_run is None:
            return "recurrence has ended"
        stamp = next_run.strftime("%Y-%m-%d %H:%M UTC")
        return f"{_relative(next_run, self._clock.now())} ({stamp})"


_UNITS = (
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
)


def _relative(target: datetime, now: datetime) -> str:
    seconds = int((target - now).total_seconds())
    if seconds == 0:
        return "now"
    magnitude = abs(seconds)
    for name, size in _UNITS:
        if magnitude >= size:
            count = magnitude // size
            break
    text = f"{count} {name}{'' if count == 1 else 's'}"
    return f"in {text}" if seconds > 0 else f"{text} ago"
