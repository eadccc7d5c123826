"""
Resilience patterns module.

Provides fault tolerance primitives for distributed systems.

Components:
    - CircuitBreaker: State machine (closed/open/half-open)
    - RetryConfig / RetryPolicy: Exponential backoff with jitter
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitMetrics,
    CircuitState,
    CircuitStats,
    counts_as_failure,
)
from .retry import (
    DEFAULT_RETRY,
    NO_RETRY,
    SAFE_METHODS,
    RetryConfig,
    RetryPolicy,
)

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitMetrics",
    "CircuitState",
    "CircuitStats",
    "counts_as_failure",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    "DEFAULT_RETRY",
    "NO_RETRY",
    "SAFE_METHODS",
]
