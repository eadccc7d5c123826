"""Worker registration, liveness and deregistration endpoints."""

import logging
from typing import Dict, Optional

from core.logging import logged_operation
from spooled.resources.base import BaseResource
from spooled.schemas import (
    RegisterWorkerRequest,
    RegisterWorkerResponse,
    WorkerHeartbeatRequest,
)


class WorkersResource(BaseResource):
    log_component = "workers"

    @logged_operation(level=logging.DEBUG)
    async def register(
        self,
        request: RegisterWorkerRequest,
        timeout_seconds: Optional[float] = None,
    ) -> RegisterWorkerResponse:
        """
        Register a worker and obtain its identity and lease parameters.

        Not idempotent: a retried registration could create a second worker.
        """
        return await self._call(
            "POST",
            "/api/v1/workers/register",
            body=request,
            response_model=RegisterWorkerResponse,
            timeout_seconds=timeout_seconds,
        )

    async def heartbeat(
        self,
        worker_id: str,
        current_jobs: int,
        status: str = "active",
        metadata: Optional[Dict[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        await self._call(
            "POST",
            f"/api/v1/workers/{worker_id}/heartbeat",
            body=WorkerHeartbeatRequest(
                current_jobs=current_jobs, status=status, metadata=metadata
            ),
            idempotent=True,
            timeout_seconds=timeout_seconds,
        )

    @logged_operation(level=logging.DEBUG)
    async def deregister(
        self, worker_id: str, timeout_seconds: Optional[float] = None
    ) -> None:
        await self._call(
            "DELETE",
            f"/api/v1/workers/{worker_id}",
            idempotent=True,
            timeout_seconds=timeout_seconds,
        )
