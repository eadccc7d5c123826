"""Worker registration and liveness schemas."""

from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field


class RegisterWorkerRequest(BaseModel):
    """Announce a worker to the queue service.

    Attributes:
        queue_name: Queue the worker will claim from
        hostname: Host the worker runs on
        worker_type: Runtime flavor reported to operators
        max_concurrency: Jobs the worker may run at once
        metadata: Free-form labels
        version: Worker software version
    """

    queue_name: str = Field(..., min_length=1)
    hostname: str = Field(..., min_length=1)
    worker_type: str = "python"
    max_concurrency: int = Field(default=5, ge=1)
    metadata: Dict[str, str] = Field(default_factory=dict)
    version: str = "0.1.0"


class RegisterWorkerResponse(BaseModel):
    """Identity and lease parameters assigned at registration."""

    id: str = Field(..., min_length=1)
    queue_name: str = ""
    lease_duration_secs: int = Field(default=30, ge=0)
    heartbeat_interval_secs: int = Field(default=0, ge=0)


class WorkerHeartbeatRequest(BaseModel):
    current_jobs: int = Field(default=0, ge=0)
    status: Literal["active", "stopping"] = "active"
    metadata: Optional[Dict[str, str]] = None
