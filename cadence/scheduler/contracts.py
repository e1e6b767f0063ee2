"""
Capability contracts the engine depends on.

    JobHandler          — business logic for one or more job types
    ScheduleRepository  — durable job records, with conditional writes
    JobQueue            — transport that delivers jobs once their delay passes

Implementations:
    SQLiteScheduleRepository          (cadence.scheduler.store)
    InMemoryScheduleRepository        (cadence.scheduler.memory)
    InMemoryJobQueue                  (cadence.scheduler.memory)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Iterable

from cadence.scheduler.job import JobStatus, ScheduledJob
from cadence.scheduler.result import JobResult


class JobHandler(ABC):
    """
    Executes jobs of the types it supports.

    Handlers must be idempotent: delivery is at-least-once, so a job may be
    handled again after a crash or a retry.
    """

    @abstractmethod
    def supports(self, job_type: str) -> bool:
        ...

    @abstractmethod
    def handle(self, job: ScheduledJob) -> JobResult:
        """
        Run the job. Return JobResult.ok / retry / fail.

        Raised exceptions are treated as transient failures and retried.
        """
        ...


class CallableHandler(JobHandler):
    """
    Wraps a plain function as a handler.

    Usage:
        def send_reminder(job: ScheduledJob) -> JobResult:
            ...
        handler = CallableHandler(send_reminder, job_types=["invoice.reminder"])

    A function returning None counts as success.
    """

    def __init__(
        self,
        func: Callable[[ScheduledJob], JobResult | None],
        job_types: Iterable[str],
    ) -> None:
        self._func = func
        self._job_types = frozenset(job_types)
        self.name = getattr(func, "__name__", "handler")

    @property
    def job_types(self) -> frozenset[str]:
        return self._job_types

    def supports(self, job_type: str) -> bool:
        return job_type in self._job_types

    def handle(self, job: ScheduledJob) -> JobResult:
        result = self._func(job)
        return result if result is not None else JobResult.ok()

    def __repr__(self) -> str:
        return f"CallableHandler({self.name}, job_types={sorted(self._job_types)})"


class ScheduleRepository(ABC):
    """
    Durable storage for job records.

    Records are keyed by (job id, occurrence_count): each occurrence of a
    recurring job is its own record.

    save() with expected_status is a compare-and-swap on the stored status,
    and on the stored retry_count when expected_retry_count is given too:
    it must raise ConcurrentModificationError when the stored record is
    missing or no longer matches. Every retry increments retry_count, so
    (status, retry_count) identifies one attempt; a stale copy of the job
    taken before a retry can no longer claim it. This is the only guard
    against two workers running the same attempt.
    """

    @abstractmethod
    def save(
        self,
        job: ScheduledJob,
        expected_status: JobStatus | None = None,
        expected_retry_count: int | None = None,
    ) -> None:
        """Insert or update. With expected_status, update only if the stored record still matches."""
        ...

    @abstractmethod
    def get(self, job_id: str) -> ScheduledJob | None:
        """Latest occurrence of a job, or None."""
        ...

    @abstractmethod
    def get_due_jobs(self, now: datetime, limit: int | None = None) -> list[ScheduledJob]:
        """PENDING jobs with run_at <= now, highest priority first, then oldest."""
        ...

    @abstractmethod
    def get_pending(self) -> list[ScheduledJob]:
        """Every PENDING job regardless of run_at."""
        ...


class JobQueue(ABC):
    """Delivers jobs to workers, honouring a delivery delay."""

    @abstractmethod
    def dispatch(self, job: ScheduledJob, delay_seconds: float = 0) -> None:
        ...
