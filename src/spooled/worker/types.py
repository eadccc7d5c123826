"""
Worker runtime types: lifecycle states, events and the job context
handed to handlers.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from core.logging import get_logger, log_with_context
from spooled.schemas import ClaimedJob

logger = get_logger(__name__)


class WorkerState(Enum):
    """Worker lifecycle states.

    IDLE -> STARTING -> RUNNING -> STOPPING -> STOPPED, with ERROR reachable
    from STARTING when registration fails.
    """

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


# Event types emitted to listeners
WORKER_STARTED = "worker:started"
WORKER_STOPPED = "worker:stopped"
WORKER_ERROR = "worker:error"
WORKER_HEARTBEAT = "worker:heartbeat"
JOB_CLAIMED = "job:claimed"
JOB_STARTED = "job:started"
JOB_COMPLETED = "job:completed"
JOB_FAILED = "job:failed"
JOB_PROGRESS = "job:progress"
JOB_HEARTBEAT = "job:heartbeat"


@dataclass
class WorkerEvent:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ProgressReporter = Callable[[str, float, Optional[str]], Awaitable[None]]


class JobContext:
    """
    Everything a handler needs to process one job.

    Handlers should watch ``cancelled`` (or await ``wait_cancelled()``)
    during long work; the worker sets it when shutting down. A handler
    still running after the shutdown timeout is cancelled outright.

    Example:
        @worker.process
        async def handle(ctx: JobContext):
            for i, item in enumerate(ctx.payload["items"]):
                if ctx.cancelled:
                    raise RuntimeError("shutting down")
                await do(item)
                await ctx.progress(100 * (i + 1) / len(ctx.payload["items"]))
            return {"processed": len(ctx.payload["items"])}
    """

    def __init__(
        self,
        job: ClaimedJob,
        worker_id: str,
        cancel_event: asyncio.Event,
        reporter: ProgressReporter,
    ):
        self.job = job
        self.worker_id = worker_id
        self._cancel_event = cancel_event
        self._reporter = reporter

    @property
    def job_id(self) -> str:
        return self.job.id

    @property
    def queue_name(self) -> str:
        return self.job.queue_name

    @property
    def payload(self) -> Dict[str, Any]:
        return self.job.payload

    @property
    def retry_count(self) -> int:
        return self.job.retry_count

    @property
    def max_retries(self) -> int:
        return self.job.max_retries

    @property
    def cancelled(self) -> bool:
        """True once the worker has asked this job to stop."""
        return self._cancel_event.is_set()

    async def wait_cancelled(self, timeout: Optional[float] = None) -> bool:
        """Wait until cancellation is requested; False if the timeout elapsed first."""
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def progress(self, percent: float, message: Optional[str] = None) -> None:
        """Report progress (0-100) to the queue service."""
        await self._reporter(self.job.id, percent, message)

    def log(self, level: int, msg: str, **meta: Any) -> None:
        log_with_context(
            logger,
            level,
            msg,
            job_id=self.job.id,
            queue_name=self.job.queue_name,
            worker_id=self.worker_id,
            **meta,
        )

    def info(self, msg: str, **meta: Any) -> None:
        self.log(logging.INFO, msg, **meta)


JobHandler = Callable[[JobContext], Awaitable[Optional[Dict[str, Any]]]]
EventListener = Callable[[WorkerEvent], None]
