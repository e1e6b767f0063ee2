"""
Cadence exception hierarchy.

Every error in the system inherits from CadenceError.
Each concern has its own error class for targeted catching.

Usage:
    try:
        engine.execute(job, handler)
    except ConcurrentModificationError:
        # Another worker already claimed the job
    except CadenceError as e:
        # Any other Cadence error

Handler failures never show up here: the execution engine turns them
into JobResult values instead of raising.
"""


class CadenceError(Exception):
    """Base exception for all Cadence errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Configuration ━━━


class ConfigError(CadenceError):
    """Configuration is invalid, missing, or malformed."""

    pass


# ━━━ Caller errors (never retried) ━━━


class InvalidArgumentError(CadenceError, ValueError):
    """Malformed identifier, negative retry budget, bad interval, etc."""

    pass


class InvalidRecurrenceError(InvalidArgumentError):
    """Recurrence policy is malformed or cannot produce a next run time."""

    def __init__(
        self,
        message: str,
        expression: str | None = None,
        details: dict | None = None,
    ):
        self.expression = expression
        super().__init__(message, details)


class InvalidJobStateError(CadenceError):
    """Illegal status transition or executing a job that cannot run."""

    def __init__(
        self,
        message: str,
        job_id: str = "",
        status: str = "",
        details: dict | None = None,
    ):
        self.job_id = job_id
        self.status = status
        super().__init__(message, details)


class HandlerNotFoundError(CadenceError):
    """No registered handler supports a job type."""

    def __init__(self, job_type: str, details: dict | None = None):
        self.job_type = job_type
        super().__init__(f"No handler found for job type '{job_type}'", details)


# ━━━ Storage ━━━


class StorageError(CadenceError):
    """Repository failure — database errors, corruption, etc."""

    pass


class ConcurrentModificationError(StorageError):
    """A conditional write found a different status or retry count than expected."""

    def __init__(
        self,
        message: str,
        job_id: str = "",
        expected_status: str = "",
        actual_status: str | None = None,
        expected_retry_count: int | None = None,
        actual_retry_count: int | None = None,
        details: dict | None = None,
    ):
        self.job_id = job_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        self.expected_retry_count = expected_retry_count
        self.actual_retry_count = actual_retry_count
        super().__init__(message, details)
