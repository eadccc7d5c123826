"""
Spooled client facade.

Wires one Transport (with its circuit breaker and credential refresher)
to the job and worker resources.
"""

from typing import Any, Dict, Optional

import aiohttp

from spooled.config import ClientConfig, WorkerConfig
from spooled.http import Transport
from spooled.resources import JobsResource, WorkersResource
from spooled.worker import JobHandler, JobWorker


class SpooledClient:
    """
    Entry point for talking to the Spooled API.

    Usage:
        async with SpooledClient(ClientConfig.from_env()) as client:
            worker = client.worker(WorkerConfig(queue_name="emails"))
            ...
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config or ClientConfig()
        self.transport = Transport(self.config, session=session)
        self.jobs = JobsResource(self.transport)
        self.workers = WorkersResource(self.transport)

    async def __aenter__(self) -> "SpooledClient":
        await self.transport.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.transport.close()

    def worker(
        self,
        config: WorkerConfig,
        handler: Optional[JobHandler] = None,
    ) -> JobWorker:
        """Create a JobWorker bound to this client's resources."""
        return JobWorker(self.jobs, self.workers, config, handler=handler)

    def set_access_token(self, token: str, expires_in: Optional[float] = None) -> None:
        self.transport.refresher.set_access_token(token, expires_in)

    def set_refresh_token(self, token: str) -> None:
        self.transport.refresher.set_refresh_token(token)

    def get_diagnostics(self) -> Dict[str, Any]:
        return {
            "base_url": self.config.base_url,
            "circuit": self.transport.get_circuit_status(),
            "credentials": self.transport.refresher.get_diagnostics(),
        }
