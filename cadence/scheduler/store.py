"""
SQLiteScheduleRepository — SQLite persistence for scheduled jobs.

DB: ~/.cadence/scheduler.db

Table: jobs  (one row per occurrence)
    id          TEXT     ULID, shared by all occurrences of a recurring job
    occurrence  INT      occurrence_count
    job_type    TEXT
    target_id   TEXT
    status      TEXT
    retry_count INT      compared by conditional writes
    priority    INT
    run_at      REAL     unix timestamp, for due queries
    data        TEXT     full ScheduledJob.to_dict() as JSON
    updated_at  REAL
    PRIMARY KEY (id, occurrence)

Conditional writes are a single UPDATE ... WHERE status = ? AND retry_count = ?
statement, so two workers (threads or processes sharing the file) can never
both claim the same attempt, even from a copy read before a retry.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from cadence.core.errors import ConcurrentModificationError, StorageError
from cadence.scheduler.contracts import ScheduleRepository
from cadence.scheduler.job import JobStatus, ScheduledJob

logger = logging.getLogger(__name__)


class SQLiteScheduleRepository(ScheduleRepository):
    """
    Thread-safe SQLite store for jobs.

    Usage:
        repo = SQLiteScheduleRepository(Path("scheduler.db"))
        repo.initialize()

        repo.save(job)
        due = repo.get_due_jobs(now=clock.now())
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or (Path.home() / ".cadence" / "scheduler.db")
        self._db: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            db = self._get_db()
            db.execute("PRAGMA journal_mode=WAL")
            db.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id          TEXT    NOT NULL,
                    occurrence  INTEGER NOT NULL DEFAULT 0,
                    job_type    TEXT    NOT NULL,
                    target_id   TEXT    NOT NULL,
                    status      TEXT    NOT NULL,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    priority    INTEGER NOT NULL DEFAULT 0,
                    run_at      REAL    NOT NULL,
                    data        TEXT    NOT NULL,
                    updated_at  REAL,
                    PRIMARY KEY (id, occurrence)
                )
            """)
            db.execute(
                "CREATE INDEX IF NOT EXISTS idx_jobs_due ON jobs (status, run_at)"
            )
            db.commit()
        logger.debug(f"SQLiteScheduleRepository initialised at {self._db_path}")

    def _get_db(self) -> sqlite3.Connection:
        if self._db is None:
            try:
                db = sqlite3.connect(str(self._db_path), check_same_thread=False)
            except sqlite3.Error as e:
                raise StorageError(f"Cannot open {self._db_path}: {e}") from e
            db.row_factory = sqlite3.Row
            self._db = db
        return self._db

    # ── Writes ───────────────────────────────────────────────────────────────

    def save(
        self,
        job: ScheduledJob,
        expected_status: JobStatus | None = None,
        expected_retry_count: int | None = None,
    ) -> None:
        """Upsert, or compare-and-swap on (status, retry_count) when expected_status is given."""
        params = self._params(job)
        try:
            with self._lock:
                db = self._get_db()
                if expected_status is None:
                    db.execute(
                        """
                        INSERT INTO jobs (id, occurrence, job_type, target_id, status, retry_count,
                                          priority, run_at, data, updated_at)
                        VALUES (:id, :occurrence, :job_type, :target_id, :status, :retry_count,
                                :priority, :run_at, :data, :updated_at)
                        ON CONFLICT(id, occurrence) DO UPDATE SET
                            job_type=excluded.job_type, target_id=excluded.target_id,
                            status=excluded.status, retry_count=excluded.retry_count,
                            priority=excluded.priority,
                            run_at=excluded.run_at, data=excluded.data,
                            updated_at=excluded.updated_at
                        """,
                        params,
                    )
                    db.commit()
                    return

                cur = db.execute(
                    """
                    UPDATE jobs SET status=:status, retry_count=:retry_count,
                                    priority=:priority, run_at=:run_at,
                                    data=:data, updated_at=:updated_at
                    WHERE id=:id AND occurrence=:occurrence AND status=:expected
                      AND (:expected_retries IS NULL OR retry_count=:expected_retries)
                    """,
                    {
                        **params,
                        "expected": expected_status.value,
                        "expected_retries": expected_retry_count,
                    },
                )
                db.commit()
                if cur.rowcount == 1:
                    return
                row = db.execute(
                    "SELECT status, retry_count FROM jobs WHERE id=? AND occurrence=?",
                    (job.id, job.occurrence_count),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save job {job.id}: {e}") from e

        actual = row["status"] if row else None
        actual_retries = row["retry_count"] if row else None
        raise ConcurrentModificationError(
            f"Job {job.id} occurrence {job.occurrence_count}: expected status "
            f"{expected_status.value} (retries={expected_retry_count}), "
            f"found {actual} (retries={actual_retries})",
            job_id=job.id,
            expected_status=expected_status.value,
            actual_status=actual,
            expected_retry_count=expected_retry_count,
            actual_retry_count=actual_retries,
        )

    def delete(self, job_id: str) -> bool:
        """Delete every occurrence of a job. Returns True if anything existed."""
        with self._lock:
            db = self._get_db()
            cur = db.execute("DELETE FROM jobs WHERE id=?", (job_id,))
            db.commit()
        return cur.rowcount > 0

    # ── Reads ────────────────────────────────────────────────────────────────

    def get(self, job_id: str) -> ScheduledJob | None:
        rows = self._query(
            "SELECT data FROM jobs WHERE id=? ORDER BY occurrence DESC LIMIT 1",
            (job_id,),
        )
        return rows[0] if rows else None

    def history(self, job_id: str) -> list[ScheduledJob]:
        """All occurrences of a job, oldest first."""
        return self._query(
            "SELECT data FROM jobs WHERE id=? ORDER BY occurrence ASC", (job_id,)
        )

    def get_due_jobs(self, now: datetime, limit: int | None = None) -> list[ScheduledJob]:
        q = (
            "SELECT data FROM jobs WHERE status=? AND run_at <= ? "
            "ORDER BY priority DESC, run_at ASC"
        )
        args: tuple = (JobStatus.PENDING.value, now.timestamp())
        if limit is not None:
            q += " LIMIT ?"
            args += (limit,)
        return self._query(q, args)

    def get_pending(self) -> list[ScheduledJob]:
        return self._query(
            "SELECT data FROM jobs WHERE status=? ORDER BY run_at ASC",
            (JobStatus.PENDING.value,),
        )

    def get_all(self, status: JobStatus | None = None) -> list[ScheduledJob]:
        q = "SELECT data FROM jobs"
        args: tuple = ()
        if status is not None:
            q += " WHERE status=?"
            args = (status.value,)
        q += " ORDER BY run_at ASC, id ASC"
        return self._query(q, args)

    def close(self) -> None:
        with self._lock:
            if self._db:
                self._db.close()
                self._db = None

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _query(self, sql: str, args: tuple) -> list[ScheduledJob]:
        try:
            with self._lock:
                rows = self._get_db().execute(sql, args).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        return [ScheduledJob.from_dict(json.loads(r["data"])) for r in rows]

    @staticmethod
    def _params(job: ScheduledJob) -> dict:
        return {
            "id": job.id,
            "occurrence": job.occurrence_count,
            "job_type": job.job_type,
            "target_id": job.target_id,
            "status": job.status.value,
            "retry_count": job.retry_count,
            "priority": job.priority,
            "run_at": job.run_at.timestamp(),
            "data": json.dumps(job.to_dict()),
            "updated_at": job.updated_at.timestamp() if job.updated_at else None,
        }
