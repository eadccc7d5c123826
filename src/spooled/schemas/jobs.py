"""
Job lifecycle schemas.

Pydantic models for the job endpoints consumed by the worker runtime:
claim, complete, fail, lease renewal and progress updates.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class ClaimJobsRequest(BaseModel):
    """Claim up to ``limit`` jobs from a queue for one worker.

    Attributes:
        queue_name: Queue to claim from
        worker_id: Identity returned by worker registration
        limit: Maximum number of jobs to return
        lease_duration_secs: Lease granted on each claimed job
    """

    queue_name: str = Field(..., min_length=1)
    worker_id: str = Field(..., min_length=1)
    limit: int = Field(default=1, ge=1, le=100)
    lease_duration_secs: int = Field(default=30, ge=1)


class ClaimedJob(BaseModel):
    """A job leased to this worker.

    Attributes:
        id: Job identifier
        queue_name: Queue the job belongs to
        payload: Arbitrary JSON payload supplied by the producer
        retry_count: Attempts already made for this job
        max_retries: Attempts allowed before the job is dead-lettered
        timeout_seconds: Server-side execution timeout
        lease_expires_at: When the lease lapses unless renewed
    """

    id: str = Field(..., min_length=1)
    queue_name: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    timeout_seconds: int = Field(default=300, ge=0)
    lease_expires_at: Optional[datetime] = None

    @field_validator("payload", mode="before")
    @classmethod
    def default_payload(cls, v: Any) -> Any:
        """Servers may send null for an empty payload."""
        return {} if v is None else v


class ClaimJobsResponse(BaseModel):
    jobs: List[ClaimedJob] = Field(default_factory=list)

    @field_validator("jobs", mode="before")
    @classmethod
    def default_jobs(cls, v: Any) -> Any:
        return [] if v is None else v


class CompleteJobRequest(BaseModel):
    worker_id: str = Field(..., min_length=1)
    result: Optional[Dict[str, Any]] = None


class FailJobRequest(BaseModel):
    worker_id: str = Field(..., min_length=1)
    error: str = ""


class RenewLeaseRequest(BaseModel):
    worker_id: str = Field(..., min_length=1)
    lease_duration_secs: int = Field(default=30, ge=1)


class UpdateProgressRequest(BaseModel):
    """Progress report for a running job (percent in [0, 100])."""

    progress: float = Field(..., ge=0, le=100)
    message: Optional[str] = None
