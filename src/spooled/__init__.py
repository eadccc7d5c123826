"""
Spooled job queue client.

Resilient async transport (retry, circuit breaker, credential refresh)
and a polling worker runtime.
"""

from spooled.client import SpooledClient
from spooled.config import ClientConfig, WorkerConfig, load_config
from spooled.worker import JobContext, JobWorker, WorkerEvent, WorkerState

__version__ = "0.1.0"

__all__ = [
    "SpooledClient",
    "ClientConfig",
    "WorkerConfig",
    "load_config",
    "JobWorker",
    "JobContext",
    "WorkerEvent",
    "WorkerState",
]
