"""
Wire schemas for the Spooled API.

Pydantic models for credential exchange, job lifecycle and worker
registration payloads.
"""

from spooled.schemas.auth import (
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    RefreshResponse,
)
from spooled.schemas.jobs import (
    ClaimedJob,
    ClaimJobsRequest,
    ClaimJobsResponse,
    CompleteJobRequest,
    FailJobRequest,
    RenewLeaseRequest,
    UpdateProgressRequest,
)
from spooled.schemas.workers import (
    RegisterWorkerRequest,
    RegisterWorkerResponse,
    WorkerHeartbeatRequest,
)

__all__ = [
    "LoginRequest",
    "LoginResponse",
    "RefreshRequest",
    "RefreshResponse",
    "ClaimedJob",
    "ClaimJobsRequest",
    "ClaimJobsResponse",
    "CompleteJobRequest",
    "FailJobRequest",
    "RenewLeaseRequest",
    "UpdateProgressRequest",
    "RegisterWorkerRequest",
    "RegisterWorkerResponse",
    "WorkerHeartbeatRequest",
]
