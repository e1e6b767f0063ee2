"""Tests for cadence/scheduler/job.py"""
from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone

import pytest

from cadence.core.errors import InvalidArgumentError, InvalidJobStateError
from cadence.core.ids import is_valid_ulid
from cadence.scheduler.job import JobStatus, ScheduleDefinition, ScheduledJob
from cadence.scheduler.recurrence import ScheduleRecurrence
from cadence.scheduler.result import JobResult

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
TARGET_ID = "01ARZ3NDEKTSV4RRFFQ69G5FAV"


def _running(job: ScheduledJob) -> ScheduledJob:
    return job.with_status(JobStatus.RUNNING)


# ── Creation ─────────────────────────────────────────────────────────────────

class TestCreation:
    def test_from_definition_defaults(self, make_job, clock):
        job = make_job(payload={"invoice": 7}, priority=5, metadata={"source": "api"})
        assert is_valid_ulid(job.id)
        assert job.status is JobStatus.PENDING
        assert job.retry_count == 0
        assert job.occurrence_count == 0
        assert job.last_result is None
        assert job.payload == {"invoice": 7}
        assert job.priority == 5
        assert job.metadata == {"source": "api"}
        assert job.created_at == clock.now()

    def test_explicit_job_id(self, clock):
        definition = ScheduleDefinition(job_type="t", target_id=TARGET_ID, run_at=START)
        job = ScheduledJob.from_definition(definition, clock, job_id=TARGET_ID)
        assert job.id == TARGET_ID

    def test_definition_rejects_bad_target(self):
        with pytest.raises(InvalidArgumentError, match="Target ID"):
            ScheduleDefinition(job_type="t", target_id="not-a-ulid", run_at=START)

    def test_definition_rejects_negative_retries(self):
        with pytest.raises(InvalidArgumentError, match="max_retries"):
            ScheduleDefinition(job_type="t", target_id=TARGET_ID, run_at=START, max_retries=-1)

    def test_definition_rejects_empty_type(self):
        with pytest.raises(InvalidArgumentError):
            ScheduleDefinition(job_type="", target_id=TARGET_ID, run_at=START)

    def test_job_rejects_bad_id(self):
        with pytest.raises(InvalidArgumentError, match="Job ID"):
            ScheduledJob(id="abc", job_type="t", target_id=TARGET_ID, run_at=START)

    def test_job_is_immutable(self, make_job):
        job = make_job()
        with pytest.raises(dataclasses.FrozenInstanceError):
            job.status = JobStatus.RUNNING


# ── Predicates ───────────────────────────────────────────────────────────────

class TestDueness:
    def test_not_due_before_run_at(self, make_job, clock):
        job = make_job(run_at=START + timedelta(seconds=1))
        assert job.is_due(clock) is False

    def test_due_at_and_after_run_at(self, make_job, clock):
        job = make_job()
        assert job.is_due(clock) is True
        clock.advance(days=3)
        assert job.is_due(clock) is True

    @pytest.mark.parametrize("offset", [-3600, -1, 0, 1, 3600])
    def test_monotonic(self, make_job, clock, offset):
        job = make_job()
        clock.set(START + timedelta(seconds=offset))
        assert job.is_due(clock) is (offset >= 0)

    def test_running_job_is_never_due(self, make_job, clock):
        assert _running(make_job()).is_due(clock) is False

    def test_overdue_after_grace(self, make_job, clock):
        job = make_job()
        clock.advance(minutes=4, seconds=59)
        assert job.is_overdue(clock) is False
        clock.advance(seconds=1)
        assert job.is_overdue(clock) is True

    def test_custom_grace(self, make_job, clock):
        job = make_job()
        clock.advance(minutes=1)
        assert job.is_overdue(clock, grace=timedelta(seconds=30)) is True

    def test_nearing_expiry_window(self, make_job, clock):
        job = make_job(run_at=START + timedelta(minutes=10))
        assert job.is_nearing_expiry(clock) is False  # 10 min before
        clock.set(START + timedelta(minutes=5))
        assert job.is_nearing_expiry(clock) is True  # exactly 5 min before
        clock.set(START + timedelta(minutes=9))
        assert job.is_nearing_expiry(clock) is True
        clock.set(START + timedelta(minutes=10))
        assert job.is_nearing_expiry(clock) is False  # due now

    def test_nearing_expiry_custom_window(self, make_job, clock):
        job = make_job(run_at=START + timedelta(minutes=10))
        assert job.is_nearing_expiry(clock, minutes_before=15) is True

    def test_seconds_until_due(self, make_job, clock):
        job = make_job(run_at=START + timedelta(minutes=2))
        assert job.seconds_until_due(clock) == 120
        clock.advance(minutes=3)
        assert job.seconds_until_due(clock) == -60

    def test_retry_budget(self, make_job):
        job = make_job(max_retries=1)
        assert job.can_retry() is True
        assert job.has_exceeded_max_retries() is False
        job = job.with_incremented_retry()
        assert job.can_retry() is False
        assert job.has_exceeded_max_retries() is True

    def test_is_recurring(self, make_job):
        assert make_job().is_recurring() is False
        assert make_job(recurrence=ScheduleRecurrence.once()).is_recurring() is False
        assert make_job(recurrence=ScheduleRecurrence.every("day")).is_recurring() is True


# ── State machine ────────────────────────────────────────────────────────────

class TestTransitions:
    def test_legal_path(self, make_job):
        job = make_job()
        running = job.with_status(JobStatus.RUNNING)
        assert running.status is JobStatus.RUNNING
        assert running.with_status(JobStatus.COMPLETED).status is JobStatus.COMPLETED
        assert running.with_status(JobStatus.PENDING).status is JobStatus.PENDING
        assert running.with_status(JobStatus.FAILED_PERMANENT).is_terminal()

    def test_transition_returns_new_instance(self, make_job):
        job = make_job()
        running = job.with_status(JobStatus.RUNNING)
        assert running is not job
        assert job.status is JobStatus.PENDING
        assert running.id == job.id

    @pytest.mark.parametrize("target", [JobStatus.COMPLETED, JobStatus.FAILED_PERMANENT])
    def test_cannot_skip_running(self, make_job, target):
        with pytest.raises(InvalidJobStateError, match="Cannot transition"):
            make_job().with_status(target)

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED_PERMANENT])
    @pytest.mark.parametrize("target", list(JobStatus))
    def test_terminal_states_are_final(self, make_job, terminal, target):
        done = _running(make_job()).with_status(terminal)
        with pytest.raises(InvalidJobStateError):
            done.with_status(target)

    def test_updated_at_follows_supplied_time(self, make_job, clock):
        job = make_job()
        later = clock.advance(minutes=1)
        assert job.with_status(JobStatus.RUNNING, now=later).updated_at == later
        assert job.with_run_at(later).updated_at == job.updated_at

    def test_with_helpers(self, make_job):
        job = make_job()
        result = JobResult.ok()
        assert job.with_incremented_retry().retry_count == 1
        assert job.with_run_at(START + timedelta(hours=1)).run_at == START + timedelta(hours=1)
        assert job.with_result(result).last_result == result


class TestNextOccurrence:
    def test_resets_retry_and_result(self, make_job):
        job = make_job(recurrence=ScheduleRecurrence.every("day"), max_retries=5)
        tried = (
            _running(job)
            .with_incremented_retry()
            .with_incremented_retry()
            .with_result(JobResult.fail("x"))
            .with_status(JobStatus.FAILED_PERMANENT)
        )
        nxt = tried.for_next_occurrence(START + timedelta(days=1))

        assert nxt.id == job.id
        assert nxt.status is JobStatus.PENDING
        assert nxt.retry_count == 0
        assert nxt.last_result is None
        assert nxt.occurrence_count == 1
        assert nxt.run_at == START + timedelta(days=1)

    def test_one_shot_has_no_next_occurrence(self, make_job):
        with pytest.raises(InvalidJobStateError, match="not recurring"):
            make_job().for_next_occurrence(START + timedelta(days=1))


class TestSerialisation:
    def test_round_trip(self, make_job):
        job = (
            make_job(
                payload={"amount": "12.50"},
                recurrence=ScheduleRecurrence.cron("0 9 * * 1-5", end_after_occurrences=3),
                metadata={"tenant": "acme"},
            )
            .with_status(JobStatus.RUNNING)
            .with_result(JobResult.retry("timeout", 30))
        )
        assert ScheduledJob.from_dict(job.to_dict()) == job

    def test_status_serialises_as_value(self, make_job):
        assert make_job().to_dict()["status"] == "pending"
