"""
Tests for the circuit breaker state machine.

Test Coverage:
    - Closed -> Open after consecutive counted failures
    - Open -> Half-open inside allow() once the open timeout elapses
    - Half-open -> Closed after consecutive successes, -> Open on failure
    - Failure classification (4xx ignored, 5xx/network counted)
    - Counter reset on every transition, state-change callback isolation
"""

from unittest.mock import MagicMock

import pytest

from core.errors import (
    AuthenticationError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TimeoutError,
)
from core.resilience import CircuitBreaker, CircuitBreakerConfig, CircuitState


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        "test",
        CircuitBreakerConfig(failure_threshold=3, success_threshold=2, open_timeout_seconds=10),
        clock=clock,
    )


def trip(breaker, n=3):
    for _ in range(n):
        breaker.record_failure(ServerError(status_code=500))


class TestClosedState:
    def test_starts_closed_and_allows(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow()

    def test_opens_after_threshold(self, breaker):
        trip(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        trip(breaker, 1)
        assert breaker.state == CircuitState.OPEN

    def test_success_resets_failure_count(self, breaker):
        trip(breaker, 2)
        breaker.record_success()
        trip(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.metrics().failure_count == 2

    def test_default_thresholds(self):
        config = CircuitBreakerConfig()
        assert config.failure_threshold == 5
        assert config.success_threshold == 3
        assert config.open_timeout_seconds == 30.0

    @pytest.mark.parametrize("kwargs", [{"failure_threshold": 0}, {"success_threshold": 0}])
    def test_rejects_invalid_config(self, kwargs):
        with pytest.raises(ValueError):
            CircuitBreakerConfig(**kwargs)


class TestFailureClassification:
    @pytest.mark.parametrize(
        "error",
        [
            AuthenticationError(status_code=401),
            NotFoundError(status_code=404),
            RateLimitError(status_code=429),
        ],
    )
    def test_client_errors_do_not_count(self, breaker, error):
        for _ in range(10):
            breaker.record_failure(error)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.metrics().failure_count == 0
        assert breaker.stats.ignored_failures == 10

    @pytest.mark.parametrize(
        "error",
        [NetworkError("refused"), TimeoutError(1.0), ServerError(status_code=503), RuntimeError("x"), None],
    )
    def test_unavailability_counts(self, breaker, error):
        for _ in range(3):
            breaker.record_failure(error)
        assert breaker.state == CircuitState.OPEN


class TestOpenState:
    def test_rejects_until_timeout(self, breaker, clock):
        trip(breaker)
        clock.advance(9.9)
        assert not breaker.allow()
        assert breaker.state == CircuitState.OPEN
        assert breaker.retry_after() == pytest.approx(0.1)
        assert breaker.stats.rejected_calls == 1

    def test_allow_moves_to_half_open_after_timeout(self, breaker, clock):
        trip(breaker)
        clock.advance(10)
        assert breaker.allow()
        assert breaker.state == CircuitState.HALF_OPEN

    def test_state_read_does_not_transition(self, breaker, clock):
        trip(breaker)
        clock.advance(60)
        assert breaker.state == CircuitState.OPEN


class TestHalfOpenState:
    @pytest.fixture
    def half_open(self, breaker, clock):
        trip(breaker)
        clock.advance(10)
        assert breaker.allow()
        return breaker

    def test_closes_after_success_threshold(self, half_open):
        half_open.record_success()
        assert half_open.state == CircuitState.HALF_OPEN
        half_open.record_success()
        assert half_open.state == CircuitState.CLOSED

    def test_failure_reopens_immediately(self, half_open, clock):
        half_open.record_success()
        half_open.record_failure(NetworkError("reset"))
        assert half_open.state == CircuitState.OPEN
        # The open timeout restarts from the new transition
        clock.advance(5)
        assert not half_open.allow()

    def test_ignored_error_keeps_half_open(self, half_open):
        half_open.record_failure(NotFoundError(status_code=404))
        assert half_open.state == CircuitState.HALF_OPEN


class TestTransitions:
    def test_every_transition_resets_counters_and_time(self, breaker, clock):
        trip(breaker)
        opened = breaker.metrics()
        assert opened.failure_count == 0
        assert opened.success_count == 0
        assert opened.last_transition_time == clock.now

        clock.advance(10)
        breaker.allow()
        half_open = breaker.metrics()
        assert half_open.state == CircuitState.HALF_OPEN
        assert half_open.last_transition_time == clock.now

        breaker.record_success()
        breaker.record_success()
        closed = breaker.metrics()
        assert closed.state == CircuitState.CLOSED
        assert closed.success_count == 0

    def test_callback_receives_transitions(self, clock):
        callback = MagicMock()
        breaker = CircuitBreaker(
            "cb",
            CircuitBreakerConfig(failure_threshold=1, success_threshold=1, open_timeout_seconds=1),
            on_state_change=callback,
            clock=clock,
        )
        breaker.record_failure()
        clock.advance(1)
        breaker.allow()
        breaker.record_success()

        assert [c.args for c in callback.call_args_list] == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    def test_callback_errors_are_isolated(self, clock):
        breaker = CircuitBreaker(
            "cb",
            CircuitBreakerConfig(failure_threshold=1),
            on_state_change=MagicMock(side_effect=RuntimeError("listener bug")),
            clock=clock,
        )
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    def test_reset_closes(self, breaker):
        trip(breaker)
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow()

    def test_diagnostics(self, breaker):
        trip(breaker)
        diagnostics = breaker.get_diagnostics()
        assert diagnostics["name"] == "test"
        assert diagnostics["state"] == "open"
        assert diagnostics["config"]["failure_threshold"] == 3
        assert diagnostics["stats"]["state_changes"] == 1
        assert diagnostics["stats"]["failed_calls"] == 3
