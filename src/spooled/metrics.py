"""
Prometheus metrics for the Spooled client and worker runtime.

Provides instrumentation for:
- API request outcomes, retries and latency
- Circuit breaker state
- Credential refreshes
- Worker job throughput, active jobs and lease renewals

The library registers metrics on the default registry but never starts an
exporter; applications expose them however they already do.
"""

from prometheus_client import Counter, Gauge, Histogram

from core.resilience import CircuitState

# API request metrics
api_requests_total = Counter(
    "spooled_api_requests_total",
    "Total number of physical requests sent to the Spooled API",
    ["method", "status"],  # status: HTTP status code, or error kind
)

api_request_duration_seconds = Histogram(
    "spooled_api_request_duration_seconds",
    "Time spent waiting for Spooled API responses",
    ["method"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

api_retries_total = Counter(
    "spooled_api_retries_total",
    "Total number of request retries by error kind",
    ["error_kind"],
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "spooled_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half-open)",
    ["circuit_name"],
)

circuit_breaker_rejections_total = Counter(
    "spooled_circuit_breaker_rejections_total",
    "Total number of requests rejected by an open circuit",
    ["circuit_name"],
)

# Credential metrics
credential_refreshes_total = Counter(
    "spooled_credential_refreshes_total",
    "Total number of credential exchanges",
    ["source", "status"],  # source: refresh, login; status: success, error
)

# Worker metrics
worker_active_jobs = Gauge(
    "spooled_worker_active_jobs",
    "Number of jobs currently being processed",
    ["queue_name"],
)

worker_jobs_total = Counter(
    "spooled_worker_jobs_total",
    "Total number of jobs finished by outcome",
    ["queue_name", "outcome"],  # outcome: completed, failed, abandoned
)

worker_job_duration_seconds = Histogram(
    "spooled_worker_job_duration_seconds",
    "Time spent running job handlers",
    ["queue_name"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)

worker_lease_renewals_total = Counter(
    "spooled_worker_lease_renewals_total",
    "Total number of job lease renewals",
    ["queue_name", "status"],  # status: success, error
)

_STATE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.OPEN: 1,
    CircuitState.HALF_OPEN: 2,
}


def record_api_request(method: str, status: str, duration: float) -> None:
    """
    Record a physical API request.

    Args:
        method: HTTP method
        status: Status code as string, or error kind for transport failures
        duration: Seconds spent on the call
    """
    api_requests_total.labels(method=method, status=status).inc()
    api_request_duration_seconds.labels(method=method).observe(duration)


def record_retry(error_kind: str) -> None:
    api_retries_total.labels(error_kind=error_kind).inc()


def update_circuit_breaker_state(circuit_name: str, state: CircuitState) -> None:
    """
    Update circuit breaker state gauge.

    Args:
        circuit_name: Breaker name
        state: New circuit state
    """
    circuit_breaker_state.labels(circuit_name=circuit_name).set(_STATE_VALUES[state])


def record_circuit_rejection(circuit_name: str) -> None:
    circuit_breaker_rejections_total.labels(circuit_name=circuit_name).inc()


def record_credential_refresh(source: str, success: bool = True) -> None:
    status = "success" if success else "error"
    credential_refreshes_total.labels(source=source, status=status).inc()


def update_active_jobs(queue_name: str, count: int) -> None:
    worker_active_jobs.labels(queue_name=queue_name).set(count)


def record_job_outcome(queue_name: str, outcome: str, duration: float) -> None:
    """
    Record a finished job.

    Args:
        queue_name: Queue the job was claimed from
        outcome: completed, failed or abandoned
        duration: Seconds the handler ran
    """
    worker_jobs_total.labels(queue_name=queue_name, outcome=outcome).inc()
    worker_job_duration_seconds.labels(queue_name=queue_name).observe(duration)


def record_lease_renewal(queue_name: str, success: bool = True) -> None:
    status = "success" if success else "error"
    worker_lease_renewals_total.labels(queue_name=queue_name, status=status).inc()


__all__ = [
    "api_requests_total",
    "api_request_duration_seconds",
    "api_retries_total",
    "circuit_breaker_state",
    "circuit_breaker_rejections_total",
    "credential_refreshes_total",
    "worker_active_jobs",
    "worker_jobs_total",
    "worker_job_duration_seconds",
    "worker_lease_renewals_total",
    "record_api_request",
    "record_retry",
    "update_circuit_breaker_state",
    "record_circuit_rejection",
    "record_credential_refresh",
    "update_active_jobs",
    "record_job_outcome",
    "record_lease_renewal",
]
