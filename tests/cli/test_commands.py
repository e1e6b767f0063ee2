"""Tests for CLI commands."""

from datetime import datetime, timezone
from pathlib import Path

import pytest
from typer.testing import CliRunner

from cadence.cli.main import app
from cadence.core.clock import FrozenClock
from cadence.scheduler.job import JobStatus, ScheduleDefinition, ScheduledJob
from cadence.scheduler.recurrence import ScheduleRecurrence
from cadence.scheduler.result import JobResult
from cadence.scheduler.store import SQLiteScheduleRepository

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
TARGET_ID = "01ARZ3NDEKTSV4RRFFQ69G5FAV"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep config and log files out of the real home directory."""
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def db_with_jobs(tmp_path):
    """A scheduler database holding one finished daily job and its next occurrence."""
    path = tmp_path / "scheduler.db"
    repo = SQLiteScheduleRepository(path)
    repo.initialize()
    definition = ScheduleDefinition(
        job_type="report.send",
        target_id=TARGET_ID,
        run_at=START,
        recurrence=ScheduleRecurrence.every("day"),
    )
    job = ScheduledJob.from_definition(definition, FrozenClock(START))
    done = (
        job.with_status(JobStatus.RUNNING)
        .with_result(JobResult.fail("smtp down"))
        .with_status(JobStatus.FAILED_PERMANENT)
    )
    repo.save(done)
    repo.save(done.for_next_occurrence(datetime(2024, 1, 2, tzinfo=timezone.utc)))
    repo.close()
    return path, job


def test_version(runner):
    """cadence version shows version."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.stdout


class TestPreview:
    def test_daily_preview(self, runner):
        result = runner.invoke(
            app,
            ["preview", "--every", "day", "--start", "2024-01-01T00:00:00+00:00", "--count", "3"],
        )
        assert result.exit_code == 0
        assert "every day" in result.stdout
        assert "2024-01-02T00:00:00+00:00" in result.stdout
        assert "2024-01-04T00:00:00+00:00" in result.stdout
        assert "2024-01-05" not in result.stdout

    def test_cron_preview(self, runner):
        result = runner.invoke(
            app,
            ["preview", "--cron", "0 9 * * 1-5", "--start", "2024-01-05T10:00:00", "-n", "1"],
        )
        assert result.exit_code == 0
        # Friday after 09:00, so the next weekday run is Monday
        assert "2024-01-08T09:00:00+00:00" in result.stdout

    def test_requires_exactly_one_source(self, runner):
        assert runner.invoke(app, ["preview"]).exit_code == 1
        both = runner.invoke(app, ["preview", "--cron", "* * * * *", "--every", "day"])
        assert both.exit_code == 1

    def test_invalid_cron(self, runner):
        result = runner.invoke(app, ["preview", "--cron", "not a cron"])
        assert result.exit_code == 1

    def test_invalid_unit(self, runner):
        result = runner.invoke(app, ["preview", "--every", "fortnight"])
        assert result.exit_code == 1


class TestJobs:
    def test_missing_database(self, runner, tmp_path):
        result = runner.invoke(app, ["jobs", "--db", str(tmp_path / "nope.db")])
        assert result.exit_code == 1
        assert "No scheduler database" in result.stdout

    def test_lists_jobs(self, runner, db_with_jobs):
        path, _ = db_with_jobs
        result = runner.invoke(app, ["jobs", "--db", str(path)])
        assert result.exit_code == 0
        assert "Scheduled jobs" in result.stdout

    def test_status_filter(self, runner, db_with_jobs):
        path, _ = db_with_jobs
        result = runner.invoke(app, ["jobs", "--db", str(path), "--status", "completed"])
        assert result.exit_code == 0
        assert "No jobs." in result.stdout

    def test_unknown_status(self, runner, db_with_jobs):
        path, _ = db_with_jobs
        result = runner.invoke(app, ["jobs", "--db", str(path), "--status", "sleeping"])
        assert result.exit_code == 1


class TestShow:
    def test_history(self, runner, db_with_jobs):
        path, job = db_with_jobs
        result = runner.invoke(app, ["show", job.id, "--db", str(path)])
        assert result.exit_code == 0
        assert "#0" in result.stdout
        assert "failed_permanent" in result.stdout
        assert "smtp down" in result.stdout
        assert "#1" in result.stdout

    def test_unknown_job(self, runner, db_with_jobs):
        path, _ = db_with_jobs
        result = runner.invoke(app, ["show", "01ARZ3NDEKTSV4RRFFQ69G5FAX", "--db", str(path)])
        assert result.exit_code == 1
        assert "No job with id" in result.stdout
