"""Context variables for structured logging.

Values set here are injected by the formatters into every record emitted
from the same task. asyncio copies the context into each task at creation,
so a job task inherits the worker identity of the task that spawned it.
"""

import contextvars
from typing import Dict, Optional

_worker_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "worker_id", default=""
)
_queue_name: contextvars.ContextVar[str] = contextvars.ContextVar(
    "queue_name", default=""
)
_job_id: contextvars.ContextVar[str] = contextvars.ContextVar("job_id", default="")


def set_log_context(
    worker_id: Optional[str] = None,
    queue_name: Optional[str] = None,
    job_id: Optional[str] = None,
) -> None:
    """Set logging context for the current task. None leaves a field unchanged."""
    if worker_id is not None:
        _worker_id.set(worker_id)
    if queue_name is not None:
        _queue_name.set(queue_name)
    if job_id is not None:
        _job_id.set(job_id)


def get_log_context() -> Dict[str, str]:
    return {
        "worker_id": _worker_id.get(),
        "queue_name": _queue_name.get(),
        "job_id": _job_id.get(),
    }


def clear_log_context() -> None:
    _worker_id.set("")
    _queue_name.set("")
    _job_id.set("")
