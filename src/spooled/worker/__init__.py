"""Polling worker runtime."""

from spooled.worker.runtime import JobWorker
from spooled.worker.types import (
    JOB_CLAIMED,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_HEARTBEAT,
    JOB_PROGRESS,
    JOB_STARTED,
    WORKER_ERROR,
    WORKER_HEARTBEAT,
    WORKER_STARTED,
    WORKER_STOPPED,
    JobContext,
    JobHandler,
    WorkerEvent,
    WorkerState,
)

__all__ = [
    "JobWorker",
    "JobContext",
    "JobHandler",
    "WorkerEvent",
    "WorkerState",
    "WORKER_STARTED",
    "WORKER_STOPPED",
    "WORKER_ERROR",
    "WORKER_HEARTBEAT",
    "JOB_CLAIMED",
    "JOB_STARTED",
    "JOB_COMPLETED",
    "JOB_FAILED",
    "JOB_PROGRESS",
    "JOB_HEARTBEAT",
]
