"""
Polling job worker.

Registers with the queue service, claims jobs up to its concurrency limit,
runs each through the user's async handler with its own lease-renewal
task, and reports completion or failure. Shutdown drains in-flight jobs
for a bounded time, then abandons what remains so their leases expire
server-side.

Usage:
    worker = client.worker(WorkerConfig(queue_name="emails", concurrency=3))

    @worker.process
    async def send_email(ctx: JobContext):
        await deliver(ctx.payload["to"])
        return {"sent": True}

    await worker.run()
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.errors import WorkerError
from core.logging import LoggedClass, set_log_context
from spooled import metrics
from spooled.config import WorkerConfig
from spooled.resources import JobsResource, WorkersResource
from spooled.schemas import ClaimedJob, RegisterWorkerRequest
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
    EventListener,
    JobContext,
    JobHandler,
    WorkerEvent,
    WorkerState,
)

# Per-call timeouts (seconds)
REGISTER_TIMEOUT = 10.0
CLAIM_TIMEOUT = 10.0
REPORT_TIMEOUT = 10.0
HEARTBEAT_TIMEOUT = 5.0
PROGRESS_TIMEOUT = 5.0
DEREGISTER_TIMEOUT = 5.0

# How long force-cancelled jobs get to unwind before they are abandoned
ABANDON_GRACE_SECONDS = 1.0


@dataclass
class ActiveJob:
    job: ClaimedJob
    cancel_event: asyncio.Event
    started_at: float = field(default_factory=time.monotonic)
    task: Optional[asyncio.Task] = None
    lease_task: Optional[asyncio.Task] = None


class JobWorker(LoggedClass):
    """
    Concurrency-bounded polling worker.

    Invariants:
    - at most ``concurrency`` jobs are active at any time
    - a job id is active at most once
    - every job exit path cancels its lease task and leaves the active set
    """

    log_component = "worker"

    def __init__(
        self,
        jobs: JobsResource,
        workers: WorkersResource,
        config: WorkerConfig,
        handler: Optional[JobHandler] = None,
    ):
        self.config = config
        self.queue_name = config.queue_name
        self._jobs = jobs
        self._workers = workers

        self._handler: Optional[JobHandler] = None
        if handler is not None:
            self.process(handler)
        self._listeners: List[EventListener] = []

        self._state = WorkerState.IDLE
        self._lifecycle_lock = asyncio.Lock()
        self._shutdown_event = asyncio.Event()
        self._stopped_event = asyncio.Event()

        self.worker_id: Optional[str] = None
        self._lease_secs = max(1, round(config.lease_duration_seconds))
        self._job_heartbeat_interval = config.heartbeat_interval_seconds
        self._worker_heartbeat_interval = config.heartbeat_interval_seconds

        self._active: Dict[str, ActiveJob] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

        self._jobs_completed = 0
        self._jobs_failed = 0
        self._jobs_abandoned = 0

        super().__init__()

    # =========================================================================
    # Registration of handler and listeners
    # =========================================================================

    def process(self, handler: JobHandler) -> JobHandler:
        """Register the job handler. Usable as a decorator."""
        if not asyncio.iscoroutinefunction(handler):
            raise WorkerError("job handler must be an async function")
        self._handler = handler
        return handler

    def on_event(self, listener: EventListener) -> EventListener:
        """Register an event listener. Usable as a decorator."""
        self._listeners.append(listener)
        return listener

    def _emit(self, event_type: str, **data: Any) -> None:
        event = WorkerEvent(type=event_type, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self._log_exception(
                    e,
                    "Event listener failed",
                    level=logging.WARNING,
                    event_type=event_type,
                )

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def active_jobs(self) -> int:
        return len(self._active)

    @property
    def active_job_ids(self) -> List[str]:
        return list(self._active)

    def _set_state(self, new_state: WorkerState) -> None:
        old_state = self._state
        self._state = new_state
        self._log(
            logging.DEBUG,
            "Worker state changed",
            old_state=old_state.value,
            new_state=new_state.value,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Register with the queue service and start polling.

        Raises:
            WorkerError: No handler registered, or worker not idle
            APIError: Registration failed (worker enters ERROR)
        """
        if self._handler is None:
            raise WorkerError("no job handler registered; call process() first")

        async with self._lifecycle_lock:
            if self._state != WorkerState.IDLE:
                raise WorkerError(f"cannot start worker in state {self._state.value}")

            self._set_state(WorkerState.STARTING)
            try:
                registration = await self._workers.register(
                    RegisterWorkerRequest(
                        queue_name=self.config.queue_name,
                        hostname=self.config.hostname,
                        worker_type=self.config.worker_type,
                        max_concurrency=self.config.concurrency,
                        metadata=self.config.metadata,
                        version=self.config.version,
                    ),
                    timeout_seconds=REGISTER_TIMEOUT,
                )
            except Exception as e:
                self._set_state(WorkerState.ERROR)
                self._log_exception(e, "Worker registration failed")
                self._emit(WORKER_ERROR, error=str(e))
                raise

            self.worker_id = registration.id
            if registration.heartbeat_interval_secs > 0:
                self._worker_heartbeat_interval = float(
                    registration.heartbeat_interval_secs
                )
            self._shutdown_event = asyncio.Event()
            self._stopped_event = asyncio.Event()
            self._poll_task = asyncio.create_task(
                self._poll_loop(), name=f"spooled-poll-{self.worker_id}"
            )
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(), name=f"spooled-heartbeat-{self.worker_id}"
            )
            self._set_state(WorkerState.RUNNING)

        self._log(
            logging.INFO,
            "Worker started",
            worker_id=self.worker_id,
            concurrency=self.config.concurrency,
            lease_duration=self._lease_secs,
        )
        self._emit(WORKER_STARTED, worker_id=self.worker_id)

    async def stop(self) -> None:
        """
        Gracefully stop the worker.

        No-op unless running. Stops polling and heartbeats, asks every
        active job to cancel, waits up to the shutdown timeout, abandons
        what is left, then deregisters. A deregistration failure is logged,
        not raised.
        """
        async with self._lifecycle_lock:
            if self._state != WorkerState.RUNNING:
                return

            self._set_state(WorkerState.STOPPING)
            self._log(logging.INFO, "Stopping worker", active_jobs=len(self._active))
            self._shutdown_event.set()

            loops = [t for t in (self._poll_task, self._heartbeat_task) if t is not None]
            for task in loops:
                task.cancel()
            await asyncio.gather(*loops, return_exceptions=True)
            self._poll_task = None
            self._heartbeat_task = None

            for active in list(self._active.values()):
                active.cancel_event.set()

            await self._drain(self.config.shutdown_timeout_seconds)

            try:
                await self._workers.deregister(
                    self.worker_id, timeout_seconds=DEREGISTER_TIMEOUT
                )
            except Exception as e:
                self._log_exception(
                    e,
                    "Worker deregistration failed",
                    level=logging.WARNING,
                    include_traceback=False,
                )

            self._set_state(WorkerState.STOPPED)
            self._stopped_event.set()

        self._log(
            logging.INFO,
            "Worker stopped",
            worker_id=self.worker_id,
        )
        self._emit(WORKER_STOPPED, worker_id=self.worker_id)

    async def run(self) -> None:
        """
        Start the worker and wait until it stops.

        Cancelling the task awaiting run() triggers a graceful stop.
        """
        await self.start()
        try:
            await self._stopped_event.wait()
        except asyncio.CancelledError:
            await asyncio.shield(self.stop())
            raise

    async def _drain(self, timeout_seconds: float) -> None:
        """
        Wait for active jobs to finish, then force-cancel stragglers.

        Jobs still running after the grace period are abandoned: their
        leases expire server-side and the jobs become claimable again.
        """
        tasks = [a.task for a in self._active.values() if a.task is not None]
        if not tasks:
            return

        self._log(
            logging.INFO,
            "Waiting for active jobs to finish",
            active_jobs=len(tasks),
            timeout_seconds=timeout_seconds,
        )
        _, pending = await asyncio.wait(tasks, timeout=timeout_seconds)
        if not pending:
            return

        self._log(
            logging.WARNING,
            "Cancelling jobs that did not finish in time",
            active_jobs=len(pending),
            timeout_seconds=timeout_seconds,
        )
        for task in pending:
            task.cancel()
        _, stuck = await asyncio.wait(pending, timeout=ABANDON_GRACE_SECONDS)

        # Tasks that ignore cancellation are left behind, and out of the set;
        # their leases must stop renewing so they can expire server-side
        abandoned = [(job_id, a) for job_id, a in self._active.items() if a.task in stuck]
        lease_tasks = [a.lease_task for _, a in abandoned if a.lease_task is not None]
        for lease_task in lease_tasks:
            lease_task.cancel()
        await asyncio.gather(*lease_tasks, return_exceptions=True)
        for job_id, active in abandoned:
            if self._active.get(job_id) is active:
                self._active.pop(job_id, None)
                self._jobs_abandoned += 1
                self._log(logging.WARNING, "Abandoned job", job_id=job_id)
        metrics.update_active_jobs(self.queue_name, len(self._active))

    # =========================================================================
    # Polling
    # =========================================================================

    async def _poll_loop(self) -> None:
        # Runs in the task's own context copy; job tasks inherit it
        set_log_context(worker_id=self.worker_id, queue_name=self.queue_name)
        while not self._shutdown_event.is_set():
            try:
                await self._poll_once()
            except Exception as e:
                self._log_exception(
                    e,
                    "Error claiming jobs",
                    level=logging.WARNING,
                    include_traceback=False,
                )
                self._emit(WORKER_ERROR, error=str(e))

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.config.poll_interval_seconds,
                )
                break
            except asyncio.TimeoutError:
                pass

    async def _poll_once(self) -> int:
        """Claim and start as many jobs as there is capacity for."""
        capacity = self.config.concurrency - len(self._active)
        if capacity <= 0:
            return 0

        jobs = await self._jobs.claim(
            self.queue_name,
            self.worker_id,
            limit=capacity,
            lease_duration_secs=self._lease_secs,
            timeout_seconds=CLAIM_TIMEOUT,
        )

        started = 0
        for job in jobs:
            if self._shutdown_event.is_set():
                self._log(logging.WARNING, "Shutting down, not starting claimed job", job_id=job.id)
                continue
            if job.id in self._active:
                self._log(logging.WARNING, "Claimed job is already active", job_id=job.id)
                continue
            if len(self._active) >= self.config.concurrency:
                self._log(
                    logging.WARNING,
                    "Claimed more jobs than capacity, skipping",
                    job_id=job.id,
                    capacity=capacity,
                )
                continue
            self._emit(JOB_CLAIMED, job_id=job.id, queue_name=job.queue_name)
            self._start_job(job)
            started += 1

        if started:
            self._log(logging.DEBUG, "Claimed jobs", claimed=started, active_jobs=len(self._active))
        return started

    def _start_job(self, job: ClaimedJob) -> None:
        active = ActiveJob(job=job, cancel_event=asyncio.Event())
        self._active[job.id] = active
        active.task = asyncio.create_task(
            self._run_job(active), name=f"spooled-job-{job.id}"
        )
        metrics.update_active_jobs(self.queue_name, len(self._active))

    # =========================================================================
    # Job execution
    # =========================================================================

    async def _run_job(self, active: ActiveJob) -> None:
        job = active.job
        set_log_context(job_id=job.id)
        lease_task = asyncio.create_task(
            self._lease_loop(job), name=f"spooled-lease-{job.id}"
        )
        active.lease_task = lease_task
        ctx = JobContext(job, self.worker_id, active.cancel_event, self._report_progress)
        outcome = "abandoned"

        self._emit(JOB_STARTED, job_id=job.id, retry_count=job.retry_count)
        try:
            try:
                result = await self._handler(ctx)
            except Exception as e:
                await self._report_failure(job, e)
                outcome = "failed"
            else:
                await self._report_completion(job, result)
                outcome = "completed"
        finally:
            lease_task.cancel()
            await asyncio.gather(lease_task, return_exceptions=True)
            # _drain() may already have dropped a job it gave up on
            owned = self._active.get(job.id) is active
            if owned:
                del self._active[job.id]
            if outcome == "abandoned" and owned:
                self._jobs_abandoned += 1
                self._log(logging.WARNING, "Job cancelled before finishing", job_id=job.id)
            metrics.update_active_jobs(self.queue_name, len(self._active))
            metrics.record_job_outcome(
                self.queue_name, outcome, time.monotonic() - active.started_at
            )

    async def _report_completion(self, job: ClaimedJob, result: Any) -> None:
        if result is not None and not isinstance(result, dict):
            result = {"result": result}
        try:
            await self._jobs.complete(
                job.id, self.worker_id, result, timeout_seconds=REPORT_TIMEOUT
            )
        except Exception as e:
            self._log_exception(
                e,
                "Failed to report job completion",
                level=logging.WARNING,
                include_traceback=False,
                job_id=job.id,
            )
            self._emit(WORKER_ERROR, job_id=job.id, error=str(e))
            return
        self._jobs_completed += 1
        self._log(logging.INFO, "Job completed", job_id=job.id)
        self._emit(JOB_COMPLETED, job_id=job.id, result=result)

    async def _report_failure(self, job: ClaimedJob, error: BaseException) -> None:
        message = str(error) or type(error).__name__
        self._log_exception(
            error,
            "Job handler failed",
            level=logging.WARNING,
            job_id=job.id,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
        )
        try:
            await self._jobs.fail(
                job.id, self.worker_id, message, timeout_seconds=REPORT_TIMEOUT
            )
        except Exception as e:
            self._log_exception(
                e,
                "Failed to report job failure",
                level=logging.WARNING,
                include_traceback=False,
                job_id=job.id,
            )
            self._emit(WORKER_ERROR, job_id=job.id, error=str(e))
            return
        self._jobs_failed += 1
        self._emit(JOB_FAILED, job_id=job.id, error=message)

    async def _report_progress(
        self, job_id: str, percent: float, message: Optional[str]
    ) -> None:
        await self._jobs.update_progress(
            job_id, percent, message, timeout_seconds=PROGRESS_TIMEOUT
        )
        self._emit(JOB_PROGRESS, job_id=job_id, progress=percent, message=message)

    async def _lease_loop(self, job: ClaimedJob) -> None:
        """Renew the job lease until cancelled."""
        while True:
            await asyncio.sleep(self._job_heartbeat_interval)
            try:
                await self._jobs.renew_lease(
                    job.id,
                    self.worker_id,
                    self._lease_secs,
                    timeout_seconds=HEARTBEAT_TIMEOUT,
                )
            except Exception as e:
                metrics.record_lease_renewal(self.queue_name, success=False)
                self._log_exception(
                    e,
                    "Lease renewal failed",
                    level=logging.WARNING,
                    include_traceback=False,
                    job_id=job.id,
                )
                continue
            metrics.record_lease_renewal(self.queue_name)
            self._emit(JOB_HEARTBEAT, job_id=job.id)

    # =========================================================================
    # Worker heartbeat
    # =========================================================================

    async def _heartbeat_loop(self) -> None:
        set_log_context(worker_id=self.worker_id, queue_name=self.queue_name)
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._worker_heartbeat_interval,
                )
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self._workers.heartbeat(
                    self.worker_id,
                    current_jobs=len(self._active),
                    status="active",
                    timeout_seconds=HEARTBEAT_TIMEOUT,
                )
            except Exception as e:
                self._log_exception(
                    e,
                    "Worker heartbeat failed",
                    level=logging.WARNING,
                    include_traceback=False,
                )
                self._emit(WORKER_ERROR, error=str(e))
                continue
            self._emit(WORKER_HEARTBEAT, active_jobs=len(self._active))

    def get_diagnostics(self) -> Dict[str, Any]:
        """Worker state and counters for health checks."""
        return {
            "worker_id": self.worker_id,
            "queue_name": self.queue_name,
            "state": self._state.value,
            "active_jobs": len(self._active),
            "concurrency": self.config.concurrency,
            "jobs_completed": self._jobs_completed,
            "jobs_failed": self._jobs_failed,
            "jobs_abandoned": self._jobs_abandoned,
        }
