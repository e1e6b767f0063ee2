"""
In-memory repository and queue — for tests and single-process use.

Dict/heap based. Data is lost when the process exits.
"""

from __future__ import annotations

import heapq
import itertools
import threading
from datetime import datetime, timedelta

from cadence.core.clock import Clock, SystemClock
from cadence.core.errors import ConcurrentModificationError
from cadence.scheduler.contracts import JobQueue, ScheduleRepository
from cadence.scheduler.job import JobStatus, ScheduledJob


class InMemoryScheduleRepository(ScheduleRepository):
    """
    Usage:
        repo = InMemoryScheduleRepository()
        repo.save(job)
        repo.save(job.with_status(JobStatus.RUNNING), expected_status=JobStatus.PENDING)
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, int], ScheduledJob] = {}
        self._lock = threading.Lock()

    def save(
        self,
        job: ScheduledJob,
        expected_status: JobStatus | None = None,
        expected_retry_count: int | None = None,
    ) -> None:
        key = (job.id, job.occurrence_count)
        with self._lock:
            if expected_status is not None:
                stored = self._records.get(key)
                if (
                    stored is None
                    or stored.status is not expected_status
                    or (
                        expected_retry_count is not None
                        and stored.retry_count != expected_retry_count
                    )
                ):
                    actual = stored.status.value if stored else None
                    actual_retries = stored.retry_count if stored else None
                    raise ConcurrentModificationError(
                        f"Job {job.id} occurrence {job.occurrence_count}: expected "
                        f"status {expected_status.value} (retries={expected_retry_count}), "
                        f"found {actual} (retries={actual_retries})",
                        job_id=job.id,
                        expected_status=expected_status.value,
                        actual_status=actual,
                        expected_retry_count=expected_retry_count,
                        actual_retry_count=actual_retries,
                    )
            self._records[key] = job

    def get(self, job_id: str) -> ScheduledJob | None:
        history = self.history(job_id)
        return history[-1] if history else None

    def history(self, job_id: str) -> list[ScheduledJob]:
        """All occurrences of a job, oldest first."""
        with self._lock:
            found = [j for (jid, _), j in self._records.items() if jid == job_id]
        return sorted(found, key=lambda j: j.occurrence_count)

    def get_due_jobs(self, now: datetime, limit: int | None = None) -> list[ScheduledJob]:
        with self._lock:
            due = [
                j for j in self._records.values()
                if j.status is JobStatus.PENDING and j.run_at <= now
            ]
        due.sort(key=lambda j: (-j.priority, j.run_at))
        return due[:limit] if limit is not None else due

    def get_pending(self) -> list[ScheduledJob]:
        with self._lock:
            return [j for j in self._records.values() if j.status is JobStatus.PENDING]

    def get_all(self, status: JobStatus | None = None) -> list[ScheduledJob]:
        with self._lock:
            jobs = list(self._records.values())
        if status is not None:
            jobs = [j for j in jobs if j.status is status]
        return sorted(jobs, key=lambda j: (j.run_at, j.id))

    def delete(self, job_id: str) -> bool:
        with self._lock:
            keys = [k for k in self._records if k[0] == job_id]
            for k in keys:
                del self._records[k]
        return bool(keys)

    def __len__(self) -> int:
        return len(self._records)


class InMemoryJobQueue(JobQueue):
    """
    Delayed-delivery queue.

    Jobs become visible to pop_due() once their delay has elapsed (measured
    from the injected clock), ordered by available time, then priority
    (highest first), then dispatch order.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._heap: list[tuple[datetime, int, int, ScheduledJob]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def dispatch(self, job: ScheduledJob, delay_seconds: float = 0) -> None:
        available_at = self._clock.now() + timedelta(seconds=max(0.0, delay_seconds))
        with self._lock:
            heapq.heappush(
                self._heap, (available_at, -job.priority, next(self._seq), job)
            )

    def pop_due(self, now: datetime) -> list[ScheduledJob]:
        """Remove and return every job whose delay has elapsed."""
        due: list[ScheduledJob] = []
        with self._lock:
            while self._heap and self._heap[0][0] <= now:
                due.append(heapq.heappop(self._heap)[3])
        return due

    def peek(self) -> list[ScheduledJob]:
        with self._lock:
            return [entry[3] for entry in sorted(self._heap)]

    def is_queued(self, job: ScheduledJob) -> bool:
        """True if this occurrence of the job is already waiting for delivery."""
        key = (job.id, job.occurrence_count)
        with self._lock:
            return any((e[3].id, e[3].occurrence_count) == key for e in self._heap)

    def __len__(self) -> int:
        return len(self._heap)
