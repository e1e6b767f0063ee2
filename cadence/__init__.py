"""
Cadence — recurring job scheduling with retries.

Public API:
    from cadence import ExecutionEngine, RecurrenceEngine, ScheduledJob
"""

__version__ = "0.1.0"

# Core
from cadence.core.clock import Clock, FrozenClock, SystemClock
from cadence.core.config import BackoffConfig, CadenceConfig
from cadence.core.errors import (
    CadenceError,
    ConcurrentModificationError,
    HandlerNotFoundError,
    InvalidArgumentError,
    InvalidJobStateError,
    InvalidRecurrenceError,
)

# Scheduler
from cadence.scheduler.contracts import CallableHandler, JobHandler, JobQueue, ScheduleRepository
from cadence.scheduler.execution import ExecutionEngine, calculate_backoff, find_handler
from cadence.scheduler.job import JobStatus, ScheduleDefinition, ScheduledJob
from cadence.scheduler.recurrence import RecurrenceType, ScheduleRecurrence
from cadence.scheduler.recurrence_engine import RecurrenceEngine
from cadence.scheduler.result import JobResult

__all__ = [
    # Core
    "Clock",
    "FrozenClock",
    "SystemClock",
    "BackoffConfig",
    "CadenceConfig",
    "CadenceError",
    "ConcurrentModificationError",
    "HandlerNotFoundError",
    "InvalidArgumentError",
    "InvalidJobStateError",
    "InvalidRecurrenceError",
    # Scheduler
    "CallableHandler",
    "JobHandler",
    "JobQueue",
    "ScheduleRepository",
    "ExecutionEngine",
    "calculate_backoff",
    "find_handler",
    "JobStatus",
    "ScheduleDefinition",
    "ScheduledJob",
    "RecurrenceType",
    "ScheduleRecurrence",
    "RecurrenceEngine",
    "JobResult",
]
