"""
SchedulerWorker — the background asyncio task that fires due jobs.

Design:
- On startup: every PENDING job in the repository is dispatched onto the
  queue again, delayed until its run_at (recovery after a restart)
- Polls the queue every poll_interval seconds
- For each due job: resolves a handler and runs ExecutionEngine.execute()
  in the default executor, so blocking handlers do not stall the loop
- An in-flight set keeps this worker from firing the same job id twice
  at once; a duplicate popped in the same tick goes back on the queue
- Across deliveries and workers the repository's conditional write on
  (status, retry_count) is the guard: a copy queued before a retry can
  no longer claim the job
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Sequence

from cadence.core.clock import Clock, SystemClock
from cadence.core.config import CadenceConfig
from cadence.core.errors import (
    ConcurrentModificationError,
    HandlerNotFoundError,
    InvalidJobStateError,
)
from cadence.scheduler.contracts import JobHandler, ScheduleRepository
from cadence.scheduler.execution import ExecutionEngine, find_handler
from cadence.scheduler.job import OVERDUE_GRACE, ScheduleDefinition, ScheduledJob
from cadence.scheduler.memory import InMemoryJobQueue
from cadence.scheduler.result import JobResult

logger = logging.getLogger(__name__)

POLL_INTERVAL = 30  # seconds between due-job checks
DEFAULT_MAX_RETRIES = 3


class SchedulerWorker:
    """
    Background worker.

    Usage:
        queue = InMemoryJobQueue(clock)
        engine = ExecutionEngine(repository, queue, clock=clock)
        worker = SchedulerWorker(engine, repository, queue, handlers, clock=clock)
        # or: worker = SchedulerWorker.from_config(CadenceConfig.load(), handlers)
        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        repository: ScheduleRepository,
        queue: InMemoryJobQueue,
        handlers: Sequence[JobHandler],
        clock: Clock | None = None,
        poll_interval: float = POLL_INTERVAL,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
        overdue_grace: timedelta = OVERDUE_GRACE,
    ) -> None:
        self._engine = engine
        self._repository = repository
        self._queue = queue
        self._handlers = list(handlers)
        self._clock = clock or SystemClock()
        self._poll_interval = poll_interval
        self._default_max_retries = default_max_retries
        self._overdue_grace = overdue_grace
        self._task: asyncio.Task | None = None
        self._running = False
        self._in_flight: set[str] = set()

    @classmethod
    def from_config(
        cls,
        config: CadenceConfig,
        handlers: Sequence[JobHandler],
        repository: ScheduleRepository | None = None,
        clock: Clock | None = None,
    ) -> SchedulerWorker:
        """
        Wire a worker from configuration.

        Without an explicit repository, opens (and initialises) the SQLite
        repository at scheduler.db_path.
        """
        clock = clock or SystemClock()
        if repository is None:
            from cadence.scheduler.store import SQLiteScheduleRepository

            repository = SQLiteScheduleRepository(config.get_db_path())
            repository.initialize()
        queue = InMemoryJobQueue(clock)
        engine = ExecutionEngine(repository, queue, clock=clock, backoff=config.backoff)
        return cls(
            engine,
            repository,
            queue,
            handlers,
            clock=clock,
            poll_interval=config.scheduler.poll_interval,
            default_max_retries=config.scheduler.default_max_retries,
            overdue_grace=timedelta(minutes=config.scheduler.overdue_grace_minutes),
        )

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def schedule(
        self, job_type: str, target_id: str, run_at: datetime, **fields: Any
    ) -> ScheduledJob:
        """Submit a job built from keyword fields, applying the worker's retry default."""
        fields.setdefault("max_retries", self._default_max_retries)
        definition = ScheduleDefinition(
            job_type=job_type, target_id=target_id, run_at=run_at, **fields
        )
        return self.submit(definition)

    def submit(self, definition: ScheduleDefinition) -> ScheduledJob:
        """Create a job from a definition, persist it and queue it for run_at."""
        job = ScheduledJob.from_definition(definition, self._clock)
        self._repository.save(job)
        self._queue.dispatch(job, self._delay_until(job))
        logger.info(f"Scheduled job {job.id} ({job.job_type}) for {job.run_at.isoformat()}")
        return job

    async def start(self) -> None:
        """Recover pending jobs, then start the background polling loop."""
        self.recover()
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="cadence-worker")
        logger.info("SchedulerWorker started")

    async def stop(self) -> None:
        """Gracefully stop the background loop."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("SchedulerWorker stopped")

    def recover(self) -> int:
        """Queue every PENDING job not already waiting on the queue. Returns how many."""
        recovered = 0
        for job in self._repository.get_pending():
            if self._queue.is_queued(job):
                continue
            if job.is_overdue(self._clock, self._overdue_grace):
                logger.warning(
                    f"Job {job.id} is overdue (run_at {job.run_at.isoformat()}), firing now"
                )
            self._queue.dispatch(job, self._delay_until(job))
            recovered += 1
        if recovered:
            logger.info(f"Recovered {recovered} pending job(s)")
        return recovered

    # ── Internal loop ─────────────────────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.warning(f"Worker tick error (non-fatal): {e}")
            await asyncio.sleep(self._poll_interval)

    async def tick(self) -> list[JobResult]:
        """
        Fire every job whose delay has elapsed, concurrently.

        A job id that is already executing is put back on the queue for the
        next poll instead of being fired alongside itself. Returns the
        results of the attempts that ran.
        """
        tasks: list[asyncio.Task] = []
        for job in self._queue.pop_due(self._clock.now()):
            if job.id in self._in_flight:
                logger.debug(f"Job {job.id} still executing, re-queued")
                self._queue.dispatch(job, self._poll_interval)
                continue
            self._in_flight.add(job.id)
            tasks.append(asyncio.create_task(self._fire_job(job)))

        results = await asyncio.gather(*tasks)
        return [r for r in results if r is not None]

    async def _fire_job(self, job: ScheduledJob) -> JobResult | None:
        loop = asyncio.get_running_loop()
        try:
            handler = find_handler(job, self._handlers)
            return await loop.run_in_executor(None, self._engine.execute, job, handler)
        except HandlerNotFoundError as e:
            logger.error(f"Job {job.id} left pending: {e}")
        except ConcurrentModificationError as e:
            logger.debug(f"Job {job.id} not claimed: {e}")
        except InvalidJobStateError as e:
            logger.error(f"Job {job.id} could not run: {e}")
        finally:
            self._in_flight.discard(job.id)
        return None

    def _delay_until(self, job: ScheduledJob) -> float:
        return max(0.0, (job.run_at - self._clock.now()).total_seconds())
