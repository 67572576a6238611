"""
Unit tests for CircuitBreaker state transitions.

CLOSED -> OPEN after failure_threshold transient failures, OPEN -> HALF_OPEN
after recovery_timeout, and a single trial decides between CLOSED and OPEN.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from knowledge_broker.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from knowledge_broker.services.errors import (
    ChannelError,
    NotFoundError,
    TransientChannelError,
    UpstreamUnhealthyError,
)
from knowledge_broker.settings import CircuitBreakerConfig

CONFIG = CircuitBreakerConfig(
    failure_threshold=3,
    recovery_timeout=timedelta(seconds=60),
    monitoring_period=timedelta(seconds=10),
)


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("http", CONFIG, clock=clock)


def trip(breaker: CircuitBreaker) -> None:
    for _ in range(CONFIG.failure_threshold):
        breaker.record_failure()


@pytest.mark.unit
class TestCircuitBreakerTransitions:
    def test_initial_state_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.can_attempt() is True

    def test_opens_at_threshold(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.can_attempt() is False
        assert breaker.allow_request() is False

    async def test_open_circuit_fails_fast_without_calling(self, breaker):
        trip(breaker)
        fn = AsyncMock(return_value="data")

        with pytest.raises(UpstreamUnhealthyError) as exc_info:
            await breaker.call(fn)

        fn.assert_not_called()
        assert exc_info.value.reset_after_seconds == pytest.approx(60)

    def test_half_open_after_recovery_timeout(self, breaker, clock):
        trip(breaker)
        clock.advance(seconds=59)
        assert breaker.can_attempt() is False

        clock.advance(seconds=1)
        assert breaker.can_attempt() is True
        assert breaker.allow_request() is True
        assert breaker.state == CircuitState.HALF_OPEN

    def test_half_open_admits_single_trial(self, breaker, clock):
        trip(breaker)
        clock.advance(seconds=61)

        assert breaker.allow_request() is True
        assert breaker.allow_request() is False
        assert breaker.can_attempt() is False

    async def test_trial_success_closes_circuit(self, breaker, clock):
        trip(breaker)
        clock.advance(seconds=61)

        result = await breaker.call(AsyncMock(return_value="ok"))

        assert result == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    async def test_trial_failure_reopens_circuit(self, breaker, clock):
        trip(breaker)
        clock.advance(seconds=61)

        with pytest.raises(TransientChannelError):
            await breaker.call(AsyncMock(side_effect=TransientChannelError("down")))

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_time_until_reset() == pytest.approx(60)

    def test_stale_streak_resets_after_monitoring_period(self, breaker, clock):
        breaker.record_failure()
        breaker.record_failure()

        clock.advance(seconds=11)
        breaker.record_failure()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1

    async def test_slow_failures_back_to_back_still_open(self, breaker, clock):
        async def slow_failure():
            # Each failing operation outlasts the monitoring period
            clock.advance(seconds=27)
            raise TransientChannelError("timed out")

        for _ in range(CONFIG.failure_threshold):
            with pytest.raises(TransientChannelError):
                await breaker.call(slow_failure)

        assert breaker.state == CircuitState.OPEN

    def test_success_inside_window_keeps_streak(self, breaker, clock):
        breaker.record_failure()
        breaker.record_failure()
        clock.advance(seconds=1)
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN

    async def test_non_transient_errors_do_not_count(self, breaker):
        for error in (NotFoundError("missing"), ChannelError("bad body")):
            for _ in range(CONFIG.failure_threshold):
                with pytest.raises(type(error)):
                    await breaker.call(AsyncMock(side_effect=error))

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_reset_closes_and_clears(self, breaker):
        trip(breaker)
        breaker.reset()

        status = breaker.get_status()
        assert status["state"] == "CLOSED"
        assert status["failure_count"] == 0
        assert status["time_until_reset"] is None


@pytest.mark.unit
class TestCircuitBreakerRegistry:
    def test_get_returns_same_instance(self, clock):
        registry = CircuitBreakerRegistry(CONFIG, clock=clock)

        assert registry.get("http") is registry.get("http")
        assert registry.get("http") is not registry.get("rpc")

    def test_open_circuits_and_reset_all(self, clock):
        registry = CircuitBreakerRegistry(CONFIG, clock=clock)
        trip(registry.get("http"))
        registry.get("rpc")

        assert registry.get_open_circuits() == ["http"]
        assert set(registry.get_all_status()) == {"http", "rpc"}

        registry.reset_all()
        assert registry.get_open_circuits() == []
        assert registry.reset("missing") is False
