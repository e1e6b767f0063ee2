"""
ScheduleRecurrence — how (and for how long) a job repeats.

Serialised shape (to_dict / from_dict):
    {"type": "day",  "interval": 1, "cron_expression": None,
     "ends_at": "2024-06-01T00:00:00+00:00", "end_after_occurrences": None}
    {"type": "cron", "interval": 1, "cron_expression": "0 9 * * 1-5", ...}
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from croniter import croniter

from cadence.core.clock import ensure_utc
from cadence.core.errors import InvalidArgumentError, InvalidRecurrenceError


class RecurrenceType(str, Enum):
    """Repetition policy kinds."""

    ONCE = "once"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    CRON = "cron"

    @property
    def is_fixed_interval(self) -> bool:
        return self not in (RecurrenceType.ONCE, RecurrenceType.CRON)


_FIXED_DELTAS = {
    RecurrenceType.MINUTE: timedelta(minutes=1),
    RecurrenceType.HOUR: timedelta(hours=1),
    RecurrenceType.DAY: timedelta(days=1),
    RecurrenceType.WEEK: timedelta(weeks=1),
}


def validate_cron_expression(expression: str | None) -> str:
    """Return the stripped expression, or raise if it is not a valid 5-field cron."""
    if not expression or not expression.strip():
        raise InvalidRecurrenceError("Cron recurrence requires an expression")
    expression = " ".join(expression.split())
    if len(expression.split(" ")) != 5:
        raise InvalidRecurrenceError(
            f"Cron expression must have 5 fields "
            f"(minute hour day-of-month month day-of-week): {expression!r}",
            expression=expression,
        )
    if not croniter.is_valid(expression):
        raise InvalidRecurrenceError(
            f"Invalid cron expression: {expression!r}", expression=expression
        )
    return expression


@dataclass(frozen=True, slots=True)
class ScheduleRecurrence:
    """
    Repetition policy for a scheduled job.

    `has_ended()` is the only place that decides whether a recurring job
    may produce another occurrence.
    """

    type: RecurrenceType = RecurrenceType.ONCE
    interval: int = 1
    cron_expression: str | None = None
    ends_at: datetime | None = None
    end_after_occurrences: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.type, RecurrenceType):
            try:
                object.__setattr__(self, "type", RecurrenceType(self.type))
            except ValueError as e:
                raise InvalidRecurrenceError(f"Unknown recurrence type: {self.type!r}") from e
        if self.type.is_fixed_interval and self.interval < 1:
            raise InvalidRecurrenceError(
                f"Interval must be at least 1, got {self.interval}"
            )
        if self.type is RecurrenceType.CRON:
            object.__setattr__(
                self, "cron_expression", validate_cron_expression(self.cron_expression)
            )
        if self.end_after_occurrences is not None and self.end_after_occurrences < 1:
            raise InvalidArgumentError("end_after_occurrences must be at least 1")
        if self.ends_at is not None:
            object.__setattr__(self, "ends_at", ensure_utc(self.ends_at))

    # ── Constructors ─────────────────────────────────────────────────────────

    @classmethod
    def once(cls) -> ScheduleRecurrence:
        return cls(type=RecurrenceType.ONCE)

    @classmethod
    def every(
        cls,
        unit: RecurrenceType | str,
        interval: int = 1,
        *,
        ends_at: datetime | None = None,
        end_after_occurrences: int | None = None,
    ) -> ScheduleRecurrence:
        """Fixed interval, e.g. ScheduleRecurrence.every("day", 2)."""
        rtype = RecurrenceType(unit)
        if not rtype.is_fixed_interval:
            raise InvalidRecurrenceError(f"'{rtype.value}' is not an interval unit")
        return cls(
            type=rtype,
            interval=interval,
            ends_at=ends_at,
            end_after_occurrences=end_after_occurrences,
        )

    @classmethod
    def cron(
        cls,
        expression: str,
        *,
        ends_at: datetime | None = None,
        end_after_occurrences: int | None = None,
    ) -> ScheduleRecurrence:
        return cls(
            type=RecurrenceType.CRON,
            cron_expression=expression,
            ends_at=ends_at,
            end_after_occurrences=end_after_occurrences,
        )

    # ── Queries ──────────────────────────────────────────────────────────────

    def is_repeating(self) -> bool:
        return self.type is not RecurrenceType.ONCE

    def has_ended(self, now: datetime, occurrence_count: int) -> bool:
        """True once the end date is reached or enough occurrences completed."""
        if self.ends_at is not None and ensure_utc(now) >= self.ends_at:
            return True
        if (
            self.end_after_occurrences is not None
            and occurrence_count >= self.end_after_occurrences
        ):
            return True
        return False

    def interval_delta(self) -> timedelta | None:
        """Exact step for minute/hour/day/week; None for calendar or cron types."""
        base = _FIXED_DELTAS.get(self.type)
        return base * self.interval if base is not None else None

    @property
    def description(self) -> str:
        if self.type is RecurrenceType.ONCE:
            text = "once"
        elif self.type is RecurrenceType.CRON:
            text = f"cron({self.cron_expression})"
        elif self.interval == 1:
            text = f"every {self.type.value}"
        else:
            text = f"every {self.interval} {self.type.value}s"
        if self.end_after_occurrences is not None:
            text += f", {self.end_after_occurrences} times"
        if self.ends_at is not None:
            text += f", until {self.ends_at.strftime('%Y-%m-%d %H:%M')} UTC"
        return text

    # ── Serialisation ────────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "interval": self.interval,
            "cron_expression": self.cron_expression,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "end_after_occurrences": self.end_after_occurrences,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ScheduleRecurrence:
        ends_at = d.get("ends_at")
        return cls(
            type=RecurrenceType(d["type"]),
            interval=int(d.get("interval", 1)),
            cron_expression=d.get("cron_expression"),
            ends_at=datetime.fromisoformat(ends_at) if ends_at else None,
            end_after_occurrences=d.get("end_after_occurrences"),
        )
