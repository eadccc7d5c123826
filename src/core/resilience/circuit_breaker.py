"""
Circuit breaker pattern for resilience against cascading failures.

Protects against scenarios like:
- Queue service outages
- Network partitions
- Overloaded upstream returning 5xx

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Failing, requests rejected immediately (fast-fail)
- HALF_OPEN: Testing recovery, requests allowed provisionally

Every transition resets both counters and records the transition time.
Each transport owns its own breaker; there is no shared registry.

Usage:
    breaker = CircuitBreaker("spooled-api")
    if not breaker.allow():
        raise CircuitOpenError(breaker.name, breaker.retry_after())
    try:
        response = await send()
    except Exception as e:
        breaker.record_failure(e)
        raise
    breaker.record_success()
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from core.errors import ErrorKind, SpooledError
from core.logging import log_exception, log_with_context

logger = logging.getLogger(__name__)

# Kinds that signal the dependency is unavailable rather than the request bad
_COUNTED_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.SERVER})


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""

    # Consecutive failures before opening circuit
    failure_threshold: int = 5

    # Consecutive successes in half-open before closing
    success_threshold: int = 3

    # Seconds to wait in open state before probing
    open_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError(
                f"failure_threshold must be >= 1, got {self.failure_threshold}"
            )
        if self.success_threshold < 1:
            raise ValueError(
                f"success_threshold must be >= 1, got {self.success_threshold}"
            )
        if self.open_timeout_seconds < 0:
            raise ValueError(
                f"open_timeout_seconds must be >= 0, got {self.open_timeout_seconds}"
            )


@dataclass
class CircuitStats:
    """Cumulative statistics for circuit breaker monitoring."""

    allowed_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    ignored_failures: int = 0
    rejected_calls: int = 0
    state_changes: int = 0


@dataclass(frozen=True)
class CircuitMetrics:
    """Read-only snapshot of breaker state."""

    state: CircuitState
    failure_count: int
    success_count: int
    last_transition_time: float


def counts_as_failure(exc: Optional[BaseException]) -> bool:
    """
    Whether an error should count toward the failure threshold.

    Network errors, timeouts, 5xx responses and exceptions from outside the
    error hierarchy count. Client errors (4xx, including 401 and 429),
    client-side misuse and circuit-open rejections do not.
    """
    if exc is None:
        return True
    if isinstance(exc, SpooledError):
        return exc.kind in _COUNTED_KINDS
    return True


class CircuitBreaker:
    """
    Circuit breaker with exception-aware failure tracking.

    Thread-safe for concurrent access. State changes happen only under the
    lock; the network I/O being guarded never does.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        on_state_change: Optional[Callable[[CircuitState, CircuitState], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.on_state_change = on_state_change
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_transition = clock()

        self._stats = CircuitStats()
        self._lock = threading.Lock()

    @property
    def circuit_name(self) -> str:
        return self.name

    @property
    def state(self) -> CircuitState:
        """Current circuit state. Reading never transitions the breaker."""
        with self._lock:
            return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def stats(self) -> CircuitStats:
        """Get copy of cumulative statistics."""
        with self._lock:
            return CircuitStats(**vars(self._stats))

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to new state (called under lock)."""
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        self._failure_count = 0
        self._success_count = 0
        self._last_transition = self._clock()
        self._stats.state_changes += 1

        level = logging.WARNING if new_state == CircuitState.OPEN else logging.INFO
        log_with_context(
            logger,
            level,
            f"Circuit {new_state.value.replace('_', '-')}",
            circuit_name=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
        )

        if self.on_state_change:
            try:
                self.on_state_change(old_state, new_state)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Error in circuit state change callback",
                    circuit_name=self.name,
                    level=logging.WARNING,
                    include_traceback=False,
                )

    def allow(self) -> bool:
        """
        Whether a call may proceed.

        An open circuit moves to half-open (and allows) once the open
        timeout has elapsed since it opened.
        """
        with self._lock:
            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - self._last_transition
                if elapsed < self.config.open_timeout_seconds:
                    self._stats.rejected_calls += 1
                    return False
                self._transition_to(CircuitState.HALF_OPEN)
            self._stats.allowed_calls += 1
            return True

    def retry_after(self) -> float:
        """Seconds until an open circuit will allow a probe (0 if not open)."""
        with self._lock:
            if self._state != CircuitState.OPEN:
                return 0.0
            elapsed = self._clock() - self._last_transition
            return max(0.0, self.config.open_timeout_seconds - elapsed)

    def record_success(self) -> None:
        with self._lock:
            self._stats.successful_calls += 1
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                # Only consecutive failures count
                self._failure_count = 0

    def record_failure(self, exc: Optional[BaseException] = None) -> None:
        """
        Record a failed call.

        Args:
            exc: The error observed. Errors that do not signal service
                unavailability are ignored for counting.
        """
        with self._lock:
            if not counts_as_failure(exc):
                self._stats.ignored_failures += 1
                log_with_context(
                    logger,
                    logging.DEBUG,
                    "Circuit breaker failure not counted",
                    circuit_name=self.name,
                    circuit_state=self._state.value,
                    error_kind=getattr(getattr(exc, "kind", None), "value", None),
                )
                return

            self._stats.failed_calls += 1

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                log_with_context(
                    logger,
                    logging.DEBUG,
                    "Circuit breaker failure recorded",
                    circuit_name=self.name,
                    failure_count=self._failure_count,
                )
                if self._failure_count >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        """Manually reset circuit to closed state."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0
            self._success_count = 0
            log_with_context(
                logger,
                logging.INFO,
                "Circuit manually reset",
                circuit_name=self.name,
            )

    def metrics(self) -> CircuitMetrics:
        with self._lock:
            return CircuitMetrics(
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_transition_time=self._last_transition,
            )

    def get_diagnostics(self) -> dict:
        """Get diagnostic info for health checks."""
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "config": {
                    "failure_threshold": self.config.failure_threshold,
                    "success_threshold": self.config.success_threshold,
                    "open_timeout_seconds": self.config.open_timeout_seconds,
                },
                "stats": vars(self._stats).copy(),
            }
