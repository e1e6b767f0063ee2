"""
Scheduler Job — the core data model.

A ScheduledJob describes what to run, for which target, when to run it,
and its current state. It is immutable: every state change returns a new
instance (copy-on-transition), so a record read by one worker can never be
changed underneath it by another.

State machine:

    PENDING ──▶ RUNNING ──▶ COMPLETED          (terminal)
       ▲           │
       └── retry ──┤
                   └──────▶ FAILED_PERMANENT   (terminal)

Recurring jobs continue through for_next_occurrence(), which yields a new
PENDING record with the same id and occurrence_count + 1. Terminal records
are never revived.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from cadence.core.clock import Clock, ensure_utc
from cadence.core.errors import InvalidArgumentError, InvalidJobStateError
from cadence.core.ids import is_valid_ulid, new_ulid
from cadence.scheduler.recurrence import ScheduleRecurrence
from cadence.scheduler.result import JobResult

OVERDUE_GRACE = timedelta(minutes=5)


class JobStatus(str, Enum):
    """Lifecycle state of a scheduled job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED_PERMANENT = "failed_permanent"

    def can_execute(self) -> bool:
        return self is JobStatus.PENDING

    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED_PERMANENT)

    def can_transition_to(self, new_status: JobStatus) -> bool:
        return new_status in _TRANSITIONS[self]


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.COMPLETED, JobStatus.PENDING, JobStatus.FAILED_PERMANENT}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED_PERMANENT: frozenset(),
}


def _check_ulid(value: str, label: str) -> None:
    if not is_valid_ulid(value):
        raise InvalidArgumentError(
            f"{label} must be a valid ULID (26 alphanumeric characters), got {value!r}"
        )


@dataclass(frozen=True, slots=True)
class ScheduleDefinition:
    """Input for creating a job. Never persisted itself."""

    job_type: str
    target_id: str
    run_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    recurrence: ScheduleRecurrence | None = None
    max_retries: int = 3
    priority: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.job_type:
            raise InvalidArgumentError("job_type must not be empty")
        _check_ulid(self.target_id, "Target ID")
        if self.max_retries < 0:
            raise InvalidArgumentError(
                f"max_retries must be >= 0, got {self.max_retries}"
            )
        object.__setattr__(self, "run_at", ensure_utc(self.run_at))


@dataclass(frozen=True, slots=True)
class ScheduledJob:
    """One job instance (one occurrence, for recurring jobs)."""

    id: str
    job_type: str
    target_id: str
    run_at: datetime
    status: JobStatus = JobStatus.PENDING
    payload: dict[str, Any] = field(default_factory=dict)
    recurrence: ScheduleRecurrence | None = None
    max_retries: int = 3
    retry_count: int = 0
    priority: int = 0
    occurrence_count: int = 0
    last_result: JobResult | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        _check_ulid(self.id, "Job ID")
        _check_ulid(self.target_id, "Target ID")
        if self.max_retries < 0 or self.retry_count < 0 or self.occurrence_count < 0:
            raise InvalidArgumentError("Retry and occurrence counters must be >= 0")
        object.__setattr__(self, "status", JobStatus(self.status))
        object.__setattr__(self, "run_at", ensure_utc(self.run_at))

    @classmethod
    def from_definition(
        cls,
        definition: ScheduleDefinition,
        clock: Clock,
        job_id: str | None = None,
    ) -> ScheduledJob:
        now = clock.now()
        return cls(
            id=job_id or new_ulid(now),
            job_type=definition.job_type,
            target_id=definition.target_id,
            run_at=definition.run_at,
            status=JobStatus.PENDING,
            payload=dict(definition.payload),
            recurrence=definition.recurrence,
            max_retries=definition.max_retries,
            priority=definition.priority,
            metadata=dict(definition.metadata),
            created_at=now,
            updated_at=now,
        )

    # ── Predicates ───────────────────────────────────────────────────────────

    def can_execute(self) -> bool:
        return self.status.can_execute()

    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    def can_retry(self) -> bool:
        return not self.is_terminal() and self.retry_count < self.max_retries

    def has_exceeded_max_retries(self) -> bool:
        return self.retry_count >= self.max_retries

    def is_recurring(self) -> bool:
        return self.recurrence is not None and self.recurrence.is_repeating()

    def is_due(self, clock: Clock) -> bool:
        return self.can_execute() and clock.now() >= self.run_at

    def is_overdue(self, clock: Clock, grace: timedelta = OVERDUE_GRACE) -> bool:
        """Due, and at least `grace` past run_at without being picked up."""
        return self.can_execute() and clock.now() >= self.run_at + grace

    def is_nearing_expiry(self, clock: Clock, minutes_before: int = 5) -> bool:
        """Within `minutes_before` minutes of run_at, but not yet due."""
        if not self.can_execute():
            return False
        now = clock.now()
        return self.run_at - timedelta(minutes=minutes_before) <= now < self.run_at

    def seconds_until_due(self, clock: Clock) -> int:
        """Seconds until run_at; negative once it has passed."""
        return int((self.run_at - clock.now()).total_seconds())

    # ── Transitions (each returns a new instance) ────────────────────────────

    def with_status(self, new_status: JobStatus, now: datetime | None = None) -> ScheduledJob:
        if not self.status.can_transition_to(new_status):
            raise InvalidJobStateError(
                f"Cannot transition job {self.id} from {self.status.value} "
                f"to {new_status.value}",
                job_id=self.id,
                status=self.status.value,
            )
        return self._copy(now, status=new_status)

    def with_incremented_retry(self, now: datetime | None = None) -> ScheduledJob:
        return self._copy(now, retry_count=self.retry_count + 1)

    def with_run_at(self, run_at: datetime, now: datetime | None = None) -> ScheduledJob:
        return self._copy(now, run_at=ensure_utc(run_at))

    def with_result(self, result: JobResult, now: datetime | None = None) -> ScheduledJob:
        return self._copy(now, last_result=result)

    def for_next_occurrence(
        self, next_run_at: datetime, now: datetime | None = None
    ) -> ScheduledJob:
        """A fresh PENDING record for the next firing of a recurring job."""
        if not self.is_recurring():
            raise InvalidJobStateError(
                f"Job {self.id} is not recurring", job_id=self.id, status=self.status.value
            )
        return self._copy(
            now,
            run_at=ensure_utc(next_run_at),
            status=JobStatus.PENDING,
            retry_count=0,
            occurrence_count=self.occurrence_count + 1,
            last_result=None,
        )

    def _copy(self, now: datetime | None, **changes: Any) -> ScheduledJob:
        return replace(self, updated_at=now or self.updated_at, **changes)

    # ── Serialisation ────────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_type": self.job_type,
            "target_id": self.target_id,
            "run_at": self.run_at.isoformat(),
            "status": self.status.value,
            "payload": self.payload,
            "recurrence": self.recurrence.to_dict() if self.recurrence else None,
            "max_retries": self.max_retries,
            "retry_count": self.retry_count,
            "priority": self.priority,
            "occurrence_count": self.occurrence_count,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ScheduledJob:
        recurrence = d.get("recurrence")
        last_result = d.get("last_result")
        created_at = d.get("created_at")
        updated_at = d.get("updated_at")
        return cls(
            id=d["id"],
            job_type=d["job_type"],
            target_id=d["target_id"],
            run_at=datetime.fromisoformat(d["run_at"]),
            status=JobStatus(d["status"]),
            payload=d.get("payload") or {},
            recurrence=ScheduleRecurrence.from_dict(recurrence) if recurrence else None,
            max_retries=int(d.get("max_retries", 3)),
            retry_count=int(d.get("retry_count", 0)),
            priority=int(d.get("priority", 0)),
            occurrence_count=int(d.get("occurrence_count", 0)),
            last_result=JobResult.from_dict(last_result) if last_result else None,
            metadata=d.get("metadata") or {},
            created_at=datetime.fromisoformat(created_at) if created_at else None,
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )
