"""
JobResult — the outcome of a single execution attempt.

Handlers return one of:
    JobResult.ok(output={...})
    JobResult.retry("upstream timed out", delay_seconds=30)
    JobResult.fail("payload missing 'invoice_id'")   # never retried

Timing (ended_at, duration_seconds) is attached by the execution engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from cadence.core.errors import InvalidArgumentError


@dataclass(frozen=True, slots=True)
class JobResult:
    """Result of one attempt."""

    success: bool
    error: str | None = None
    should_retry: bool = False
    retry_delay_seconds: int | None = None  # overrides the backoff table
    output: dict[str, Any] = field(default_factory=dict)
    ended_at: datetime | None = None
    duration_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.retry_delay_seconds is not None and self.retry_delay_seconds < 0:
            raise InvalidArgumentError("retry_delay_seconds must be >= 0")

    @staticmethod
    def ok(output: dict[str, Any] | None = None) -> JobResult:
        return JobResult(success=True, output=output or {})

    @staticmethod
    def retry(error: str, delay_seconds: int | None = None) -> JobResult:
        return JobResult(
            success=False,
            error=error,
            should_retry=True,
            retry_delay_seconds=delay_seconds,
        )

    @staticmethod
    def fail(error: str) -> JobResult:
        return JobResult(success=False, error=error, should_retry=False)

    def is_permanent_failure(self) -> bool:
        """A failure the handler marked as never worth retrying."""
        return not self.success and not self.should_retry

    def with_timing(self, ended_at: datetime, duration_seconds: float) -> JobResult:
        return replace(self, ended_at=ended_at, duration_seconds=duration_seconds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "should_retry": self.should_retry,
            "retry_delay_seconds": self.retry_delay_seconds,
            "output": self.output,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> JobResult:
        ended_at = d.get("ended_at")
        return cls(
            success=bool(d["success"]),
            error=d.get("error"),
            should_retry=bool(d.get("should_retry", False)),
            retry_delay_seconds=d.get("retry_delay_seconds"),
            output=d.get("output") or {},
            ended_at=datetime.fromisoformat(ended_at) if ended_at else None,
            duration_seconds=d.get("duration_seconds"),
        )
