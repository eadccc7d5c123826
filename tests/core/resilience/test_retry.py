"""Tests for RetryConfig validation and RetryPolicy delay computation."""

import random

import pytest

from core.resilience import DEFAULT_RETRY, NO_RETRY, RetryConfig, RetryPolicy


class TestRetryConfig:
    def test_defaults(self):
        assert DEFAULT_RETRY.max_retries == 3
        assert DEFAULT_RETRY.base_delay == 1.0
        assert DEFAULT_RETRY.max_delay == 30.0
        assert DEFAULT_RETRY.factor == 2.0
        assert DEFAULT_RETRY.jitter is True
        assert NO_RETRY.max_retries == 0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retries": -1},
            {"base_delay": 0},
            {"base_delay": 5.0, "max_delay": 1.0},
            {"factor": 0.5},
        ],
    )
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)

    def test_is_immutable(self):
        with pytest.raises(AttributeError):
            DEFAULT_RETRY.max_retries = 10


class TestRetryPolicyDelay:
    def test_exponential_growth_without_jitter(self):
        policy = RetryPolicy(RetryConfig(base_delay=1.0, factor=2.0, jitter=False))
        assert policy.delay(0) == 1.0
        assert policy.delay(1) == 2.0
        assert policy.delay(2) == 4.0

    def test_delay_is_capped(self):
        policy = RetryPolicy(
            RetryConfig(base_delay=1.0, max_delay=5.0, factor=2.0, jitter=False)
        )
        assert policy.delay(3) == 5.0
        assert policy.delay(50) == 5.0

    def test_huge_attempt_does_not_overflow(self):
        policy = RetryPolicy(RetryConfig(max_delay=30.0, factor=10.0, jitter=False))
        assert policy.delay(10_000) == 30.0

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(
            RetryConfig(base_delay=1.0, max_delay=100.0, factor=2.0, jitter=True),
            rng=random.Random(42),
        )
        for attempt in range(5):
            expected = 2.0**attempt
            for _ in range(50):
                delay = policy.delay(attempt)
                assert 0.5 * expected <= delay <= 1.5 * expected

    def test_jitter_varies(self):
        policy = RetryPolicy(RetryConfig(jitter=True), rng=random.Random(7))
        samples = {policy.delay(1) for _ in range(20)}
        assert len(samples) > 1

    def test_delay_with_jitter_is_deterministic(self):
        policy = RetryPolicy(RetryConfig(base_delay=1.0, factor=2.0, jitter=True))
        assert policy.delay_with_jitter(2, 0.5) == 2.0
        assert policy.delay_with_jitter(2, 1.5) == 6.0


class TestRetryPolicyDecisions:
    def test_should_retry(self):
        policy = RetryPolicy(RetryConfig(max_retries=2))
        assert policy.should_retry(0)
        assert policy.should_retry(1)
        assert not policy.should_retry(2)

    def test_no_retry(self):
        assert not RetryPolicy(NO_RETRY).should_retry(0)

    @pytest.mark.parametrize("method", ["GET", "get", "HEAD", "OPTIONS"])
    def test_safe_methods_are_eligible(self, method):
        assert RetryPolicy.is_retry_eligible(method)

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
    def test_unsafe_methods_need_idempotent_flag(self, method):
        assert not RetryPolicy.is_retry_eligible(method)
        assert RetryPolicy.is_retry_eligible(method, idempotent=True)
