"""
ExecutionEngine — runs one attempt of one job and applies the outcome.

Design:
- execute() is synchronous and handles exactly one job. Concurrency comes
  from running several workers, each calling execute() on its own jobs.
- PENDING → RUNNING is persisted with a conditional write *before* the
  handler runs. If another worker already claimed the job the repository
  raises ConcurrentModificationError and the handler is never called.
- Handler exceptions become retriable JobResults; they never escape.
- Retries are persisted as a new PENDING record with run_at = now + backoff,
  and dispatched on the queue with the same delay.
- A successful recurring job produces its next occurrence through the
  RecurrenceEngine.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterable

from cadence.core.clock import Clock, SystemClock
from cadence.core.config import BackoffConfig
from cadence.core.errors import HandlerNotFoundError, InvalidJobStateError
from cadence.scheduler.contracts import JobHandler, JobQueue, ScheduleRepository
from cadence.scheduler.job import JobStatus, ScheduledJob
from cadence.scheduler.recurrence_engine import RecurrenceEngine
from cadence.scheduler.result import JobResult

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF = BackoffConfig()


def calculate_backoff(
    retry_count: int,
    result: JobResult | None = None,
    policy: BackoffConfig = DEFAULT_BACKOFF,
) -> int:
    """
    Seconds to wait before the retry that follows attempt `retry_count`.

    An explicit result.retry_delay_seconds always wins; otherwise
    60, 120, 240, 480, 960, then min(2 ** retry_count * 60, 3600).
    """
    if result is not None and result.retry_delay_seconds is not None:
        return result.retry_delay_seconds
    return policy.delay_for(retry_count)


def find_handler(job: ScheduledJob, handlers: Iterable[JobHandler]) -> JobHandler:
    """
    First handler in `handlers` that supports job.job_type.

    Order matters: when several handlers claim the same type the first one
    registered wins, and a warning is logged since that is a configuration
    mistake.

    Raises:
        HandlerNotFoundError: nothing supports the job type.
    """
    matches = [h for h in handlers if h.supports(job.job_type)]
    if not matches:
        raise HandlerNotFoundError(job.job_type, details={"job_id": job.id})
    if len(matches) > 1:
        logger.warning(
            f"{len(matches)} handlers claim job type '{job.job_type}'; "
            f"using the first registered ({matches[0]!r})"
        )
    return matches[0]


class ExecutionEngine:
    """
    Usage:
        engine = ExecutionEngine(repository, queue, clock=clock)
        handler = find_handler(job, handlers)
        result = engine.execute(job, handler)
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        queue: JobQueue,
        clock: Clock | None = None,
        recurrence_engine: RecurrenceEngine | None = None,
        backoff: BackoffConfig | None = None,
    ) -> None:
        self._repository = repository
        self._queue = queue
        self._clock = clock or SystemClock()
        self._recurrence = recurrence_engine or RecurrenceEngine(self._clock)
        self._backoff = backoff or DEFAULT_BACKOFF

    def execute(self, job: ScheduledJob, handler: JobHandler) -> JobResult:
        """
        Run one attempt of `job` with `handler` and persist the outcome.

        Returns the attempt's JobResult (with timing attached).

        Raises:
            InvalidJobStateError: job is not PENDING.
            ConcurrentModificationError: another worker claimed this attempt first,
                or `job` is a stale copy read before a retry.
        """
        if not job.can_execute():
            raise InvalidJobStateError(
                f"Job {job.id} cannot be executed in status {job.status.value}",
                job_id=job.id,
                status=job.status.value,
            )

        running = job.with_status(JobStatus.RUNNING, now=self._clock.now())
        self._repository.save(
            running, expected_status=JobStatus.PENDING, expected_retry_count=job.retry_count
        )
        logger.info(
            f"Running job {job.id} ({job.job_type}) "
            f"attempt {job.retry_count + 1}/{job.max_retries + 1}"
        )

        started = self._clock.now()
        try:
            result = handler.handle(running)
        except Exception as e:
            logger.warning(f"Job {job.id} handler raised {type(e).__name__}: {e}")
            result = JobResult(success=False, error=str(e) or type(e).__name__, should_retry=True)

        ended = self._clock.now()
        result = result.with_timing(ended, (ended - started).total_seconds())

        if result.success:
            self._complete(running, result)
        elif result.is_permanent_failure() or not running.can_retry():
            self._fail(running, result)
        else:
            self._retry(running, result)

        return result

    def calculate_retry_delay(self, job: ScheduledJob, result: JobResult | None = None) -> int:
        return calculate_backoff(job.retry_count, result, self._backoff)

    # ── Outcomes ─────────────────────────────────────────────────────────────

    def _complete(self, running: ScheduledJob, result: JobResult) -> None:
        now = self._clock.now()
        done = running.with_result(result, now).with_status(JobStatus.COMPLETED, now)
        self._claimed_save(done, running)
        logger.info(f"Job {done.id} completed in {result.duration_seconds:.3f}s")

        if done.is_recurring():
            self._schedule_next_occurrence(done)

    def _fail(self, running: ScheduledJob, result: JobResult) -> None:
        now = self._clock.now()
        failed = running.with_result(result, now).with_status(JobStatus.FAILED_PERMANENT, now)
        self._claimed_save(failed, running)
        reason = "permanent failure" if result.is_permanent_failure() else "retries exhausted"
        logger.error(
            f"Job {failed.id} ({failed.job_type}) failed permanently "
            f"({reason}, {failed.retry_count} retries): {result.error}"
        )

    def _retry(self, running: ScheduledJob, result: JobResult) -> None:
        now = self._clock.now()
        delay = self.calculate_retry_delay(running, result)
        retry = (
            running.with_result(result, now)
            .with_incremented_retry(now)
            .with_run_at(now + timedelta(seconds=delay), now)
            .with_status(JobStatus.PENDING, now)
        )
        self._claimed_save(retry, running)
        self._queue.dispatch(retry, delay)
        logger.warning(
            f"Job {retry.id} failed ({result.error}); "
            f"retry {retry.retry_count}/{retry.max_retries} in {delay}s"
        )

    def _claimed_save(self, updated: ScheduledJob, running: ScheduledJob) -> None:
        self._repository.save(
            updated,
            expected_status=JobStatus.RUNNING,
            expected_retry_count=running.retry_count,
        )

    def _schedule_next_occurrence(self, done: ScheduledJob) -> None:
        recurrence = done.recurrence
        if recurrence is None:
            return
        completed = done.occurrence_count + 1
        next_run = self._recurrence.calculate_next_run_time(
            done.run_at, recurrence, completed
        )
        if next_run is None:
            logger.info(f"Job {done.id} recurrence ended after {completed} occurrence(s)")
            return

        now = self._clock.now()
        occurrence = done.for_next_occurrence(next_run, now)
        self._repository.save(occurrence)
        delay = max(0.0, (next_run - now).total_seconds())
        self._queue.dispatch(occurrence, delay)
        logger.debug(
            f"Job {done.id} occurrence {occurrence.occurrence_count} "
            f"scheduled for {next_run.isoformat()}"
        )
