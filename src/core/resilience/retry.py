"""
Retry policy with exponential backoff and jitter.

The policy is pure: it computes delays and answers whether another
attempt is allowed. Sleeping and error classification belong to the
caller (see spooled.http.transport).

Usage:
    policy = RetryPolicy(RetryConfig(max_retries=5))
    for attempt in range(policy.config.max_retries + 1):
        if attempt > 0:
            await asyncio.sleep(policy.delay(attempt - 1))
        ...
"""

import random
from dataclasses import dataclass
from typing import Optional

# Methods that are safe to repeat without an explicit idempotency flag
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retry)
        base_delay: Delay in seconds before the first retry
        max_delay: Upper bound for any computed delay
        factor: Exponential growth factor per attempt
        jitter: Multiply delays by a random factor in [0.5, 1.5)
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    factor: float = 2.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay <= 0:
            raise ValueError(f"base_delay must be > 0, got {self.base_delay}")
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        if self.factor < 1:
            raise ValueError(f"factor must be >= 1, got {self.factor}")


DEFAULT_RETRY = RetryConfig()
NO_RETRY = RetryConfig(max_retries=0)


class RetryPolicy:
    """
    Computes backoff delays for a RetryConfig.

    Each policy owns its random generator so concurrent transports never
    share jitter state.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or DEFAULT_RETRY
        self._rng = rng or random.Random()

    def _base(self, attempt: int) -> float:
        attempt = max(0, attempt)
        try:
            delay = self.config.base_delay * (self.config.factor**attempt)
        except OverflowError:
            return self.config.max_delay
        return min(delay, self.config.max_delay)

    def delay(self, attempt: int) -> float:
        """
        Delay in seconds to wait before retry number ``attempt + 1``.

        Args:
            attempt: Zero-based index of the retry being scheduled

        Returns:
            min(base * factor**attempt, max_delay), jittered when enabled
        """
        delay = self._base(attempt)
        if self.config.jitter:
            delay *= 0.5 + self._rng.random()
        return delay

    def delay_with_jitter(self, attempt: int, jitter_factor: float) -> float:
        """Deterministic variant of delay() with a caller-supplied jitter factor."""
        return self._base(attempt) * jitter_factor

    def should_retry(self, attempt: int) -> bool:
        """True while ``attempt`` (zero-based) is below max_retries."""
        return attempt < self.config.max_retries

    @staticmethod
    def is_retry_eligible(method: str, idempotent: bool = False) -> bool:
        """
        Whether a request may be repeated at all.

        Safe methods always qualify; others only when flagged idempotent.
        """
        return idempotent or method.upper() in SAFE_METHODS
