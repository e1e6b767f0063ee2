"""Shared test fixtures for Cadence."""

from datetime import datetime, timezone

import pytest

from cadence.core.clock import FrozenClock
from cadence.scheduler.execution import ExecutionEngine
from cadence.scheduler.job import ScheduleDefinition, ScheduledJob
from cadence.scheduler.memory import InMemoryJobQueue, InMemoryScheduleRepository

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
TARGET_ID = "01ARZ3NDEKTSV4RRFFQ69G5FAV"


@pytest.fixture
def clock():
    """A clock frozen at 2024-01-01T00:00:00Z."""
    return FrozenClock(START)


@pytest.fixture
def repository():
    return InMemoryScheduleRepository()


@pytest.fixture
def queue(clock):
    return InMemoryJobQueue(clock)


@pytest.fixture
def engine(repository, queue, clock):
    return ExecutionEngine(repository, queue, clock=clock)


@pytest.fixture
def make_job(clock):
    """Factory for PENDING jobs built through ScheduleDefinition."""

    def _make(**kwargs) -> ScheduledJob:
        kwargs.setdefault("job_type", "test.job")
        kwargs.setdefault("target_id", TARGET_ID)
        kwargs.setdefault("run_at", START)
        return ScheduledJob.from_definition(ScheduleDefinition(**kwargs), clock)

    return _make


@pytest.fixture
def stored_job(make_job, repository):
    """Factory that also persists the job, as a scheduler would before dispatch."""

    def _make(**kwargs) -> ScheduledJob:
        job = make_job(**kwargs)
        repository.save(job)
        return job

    return _make
