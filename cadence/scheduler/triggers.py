"""
Trigger implementations — compute the next fire time after a given run.

Usage:
    trigger = make_trigger(ScheduleRecurrence.cron("0 9 * * 1-5"))
    next_at = trigger.next_fire_time(after=job.run_at)

Triggers are pure arithmetic; end conditions are the RecurrenceEngine's
concern.
"""

from __future__ import annotations

import calendar
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from croniter import CroniterError, croniter

from cadence.core.clock import ensure_utc
from cadence.core.errors import InvalidRecurrenceError
from cadence.scheduler.recurrence import RecurrenceType, ScheduleRecurrence


def add_months(value: datetime, months: int) -> datetime:
    """
    Add calendar months, clamping the day to the end of the target month.

    Jan 31 + 1 month → Feb 29 (leap year) / Feb 28; Feb 29 + 12 months → Feb 28.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class Trigger(ABC):
    """Computes the next fire time for a recurrence."""

    @abstractmethod
    def next_fire_time(self, after: datetime) -> datetime:
        """Return the first fire time strictly after `after` (aware UTC)."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description, e.g. 'every 2 days'."""
        ...


class CronTrigger(Trigger):
    """
    Fires on a cron schedule.

    expression: standard 5-field cron string, e.g. "0 9 * * 1-5",
    evaluated in UTC.
    """

    def __init__(self, expression: str) -> None:
        self._expression = expression

    def next_fire_time(self, after: datetime) -> datetime:
        try:
            it = croniter(self._expression, ensure_utc(after))
            return ensure_utc(it.get_next(datetime))
        except (CroniterError, ValueError, KeyError) as e:
            raise InvalidRecurrenceError(
                f"Invalid cron expression {self._expression!r}: {e}",
                expression=self._expression,
            ) from e

    @property
    def description(self) -> str:
        return f"cron({self._expression})"


class IntervalTrigger(Trigger):
    """Fires every fixed timedelta (minutes, hours, days, weeks)."""

    def __init__(self, step: timedelta) -> None:
        if step <= timedelta(0):
            raise InvalidRecurrenceError("Interval must be positive")
        self._step = step

    def next_fire_time(self, after: datetime) -> datetime:
        return ensure_utc(after) + self._step

    @property
    def description(self) -> str:
        s = int(self._step.total_seconds())
        if s % 604800 == 0:
            return f"every {s // 604800}w"
        if s % 86400 == 0:
            return f"every {s // 86400}d"
        if s % 3600 == 0:
            return f"every {s // 3600}h"
        return f"every {s // 60}m"


class CalendarTrigger(Trigger):
    """Fires every N calendar months (years are 12 months)."""

    def __init__(self, months: int) -> None:
        if months < 1:
            raise InvalidRecurrenceError("Interval must be at least 1 month")
        self._months = months

    def next_fire_time(self, after: datetime) -> datetime:
        return add_months(ensure_utc(after), self._months)

    @property
    def description(self) -> str:
        if self._months % 12 == 0:
            return f"every {self._months // 12}y"
        return f"every {self._months}mo"


def make_trigger(recurrence: ScheduleRecurrence) -> Trigger:
    """
    Build a Trigger for a repeating recurrence.

    Raises InvalidRecurrenceError for one-time policies.
    """
    rtype = recurrence.type
    if rtype is RecurrenceType.CRON:
        if not recurrence.cron_expression:
            raise InvalidRecurrenceError("Cron recurrence has no expression set")
        return CronTrigger(recurrence.cron_expression)
    if rtype is RecurrenceType.MONTH:
        return CalendarTrigger(recurrence.interval)
    if rtype is RecurrenceType.YEAR:
        return CalendarTrigger(recurrence.interval * 12)
    step = recurrence.interval_delta()
    if step is None:
        raise InvalidRecurrenceError(f"'{rtype.value}' recurrence does not repeat")
    return IntervalTrigger(step)
