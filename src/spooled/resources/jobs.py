"""
Job lifecycle endpoints used by workers.

Claiming is never retried by the transport: a retried claim whose first
response was lost would lease jobs nobody processes. Lease renewal and
progress updates are safe to repeat and are marked idempotent.
"""

import logging
from typing import Any, Dict, List, Optional

from core.logging import logged_operation
from spooled.resources.base import BaseResource
from spooled.schemas import (
    ClaimedJob,
    ClaimJobsRequest,
    ClaimJobsResponse,
    CompleteJobRequest,
    FailJobRequest,
    RenewLeaseRequest,
    UpdateProgressRequest,
)


class JobsResource(BaseResource):
    """Claim, complete, fail, renew and report progress on jobs."""

    log_component = "jobs"

    @logged_operation(level=logging.DEBUG)
    async def claim(
        self,
        queue_name: str,
        worker_id: str,
        limit: int,
        lease_duration_secs: int,
        timeout_seconds: Optional[float] = None,
    ) -> List[ClaimedJob]:
        """
        Lease up to ``limit`` jobs from a queue.

        Returns:
            Claimed jobs (possibly empty)
        """
        body = ClaimJobsRequest(
            queue_name=queue_name,
            worker_id=worker_id,
            limit=limit,
            lease_duration_secs=lease_duration_secs,
        )
        response = await self._call(
            "POST",
            "/api/v1/jobs/claim",
            body=body,
            response_model=ClaimJobsResponse,
            timeout_seconds=timeout_seconds,
        )
        return response.jobs

    async def complete(
        self,
        job_id: str,
        worker_id: str,
        result: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        await self._call(
            "POST",
            f"/api/v1/jobs/{job_id}/complete",
            body=CompleteJobRequest(worker_id=worker_id, result=result),
            timeout_seconds=timeout_seconds,
        )

    async def fail(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        await self._call(
            "POST",
            f"/api/v1/jobs/{job_id}/fail",
            body=FailJobRequest(worker_id=worker_id, error=error),
            timeout_seconds=timeout_seconds,
        )

    async def renew_lease(
        self,
        job_id: str,
        worker_id: str,
        lease_duration_secs: int,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        """Extend the lease on a running job."""
        await self._call(
            "POST",
            f"/api/v1/jobs/{job_id}/heartbeat",
            body=RenewLeaseRequest(
                worker_id=worker_id, lease_duration_secs=lease_duration_secs
            ),
            idempotent=True,
            timeout_seconds=timeout_seconds,
        )

    async def update_progress(
        self,
        job_id: str,
        progress: float,
        message: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        await self._call(
            "POST",
            f"/api/v1/jobs/{job_id}/progress",
            body=UpdateProgressRequest(progress=progress, message=message),
            idempotent=True,
            timeout_seconds=timeout_seconds,
        )
