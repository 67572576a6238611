"""
CircuitBreaker - Stops calling an upstream channel that keeps failing.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Channel is failing, requests are rejected without an upstream call
- HALF_OPEN: One trial request is testing whether the channel recovered

Transitions:
- CLOSED → OPEN: When failure_threshold consecutive failures are reached
- OPEN → HALF_OPEN: On the first request after recovery_timeout expires
- HALF_OPEN → CLOSED: When the trial succeeds
- HALF_OPEN → OPEN: When the trial fails

Every check-and-transition below runs without an await in between, so each
one is atomic under the asyncio scheduler.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from knowledge_broker.services.errors import UpstreamUnhealthyError, is_transient
from knowledge_broker.settings import CircuitBreakerConfig

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


class CircuitBreaker:
    """
    Circuit breaker implementation for a single channel.

    Usage:
        cb = CircuitBreaker("http")
        result = await cb.call(lambda: channel.request("/search", params))

    Or by hand:
        if not cb.allow_request():
            raise UpstreamUnhealthyError(...)

        try:
            result = await make_request()
            cb.record_success()
            return result
        except Exception:
            cb.record_failure()
            raise
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        is_failure: Callable[[BaseException], bool] = is_transient,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._is_failure = is_failure

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: datetime | None = None
        self._opened_at: datetime | None = None
        self._last_probe_at: datetime | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _recovery_elapsed(self) -> bool:
        return (
            self._opened_at is not None
            and self._clock() - self._opened_at >= self.config.recovery_timeout
        )

    def can_attempt(self) -> bool:
        """Whether a request would be let through right now. Does not change state."""
        if self._state == CircuitState.CLOSED:
            return True
        if self._state == CircuitState.OPEN:
            return self._recovery_elapsed()
        return not self._trial_in_flight

    def allow_request(self) -> bool:
        """
        Check if a request is allowed and claim it.

        In OPEN past the recovery timeout this moves to HALF_OPEN and hands
        the single trial slot to the caller.
        """
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if not self._recovery_elapsed():
                return False
            self._state = CircuitState.HALF_OPEN
            logger.info(f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN")

        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        self._last_probe_at = self._clock()
        return True

    def _expire_stale_streak(self, now: datetime) -> None:
        if (
            self._last_failure_time is not None
            and now - self._last_failure_time > self.config.monitoring_period
        ):
            self._failure_count = 0

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state == CircuitState.HALF_OPEN:
            self._close()
        elif self._state == CircuitState.CLOSED:
            self._expire_stale_streak(self._clock())

    def record_failure(self, started_at: datetime | None = None) -> None:
        """
        Record a failed request.

        ``started_at`` is when the failed operation began. The streak gap is
        measured up to that point, so a slow operation does not look idle.
        """
        now = self._clock()
        self._expire_stale_streak(started_at or now)
        self._failure_count += 1
        self._last_failure_time = now

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._open()
        elif self._state == CircuitState.CLOSED:
            if self._failure_count >= self.config.failure_threshold:
                self._open()

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` under the breaker.

        Raises UpstreamUnhealthyError without calling ``fn`` while the circuit
        is open. Only failures matching ``is_failure`` count against the
        channel; any other exception means the channel answered.
        """
        if not self.allow_request():
            raise UpstreamUnhealthyError(self.service_id, self.get_time_until_reset() or 0)

        started_at = self._clock()
        try:
            result = await fn()
        except Exception as e:
            if self._is_failure(e):
                self.record_failure(started_at)
            else:
                self.record_success()
            raise
        except BaseException:
            # Cancelled mid-trial: give the slot back by reopening
            if self._state == CircuitState.HALF_OPEN:
                self._open()
            raise

        self.record_success()
        return result

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after {self._failure_count} failures"
        )

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False
        self._last_failure_time = None
        self._last_probe_at = None
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit transitions to half-open."""
        if self._state != CircuitState.OPEN or not self._opened_at:
            return None

        reset_at = self._opened_at + self.config.recovery_timeout
        remaining = (reset_at - self._clock()).total_seconds()
        return max(0, remaining)

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "last_failure": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "opened_at": (self._opened_at.isoformat() if self._opened_at else None),
            "last_probe_at": (
                self._last_probe_at.isoformat() if self._last_probe_at else None
            ),
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    One circuit breaker per channel.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("http")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock

    def get(self, service_id: str) -> CircuitBreaker:
        """Get or create the circuit breaker for a channel."""
        if service_id not in self._breakers:
            self._breakers[service_id] = CircuitBreaker(
                service_id,
                self._default_config,
                clock=self._clock,
            )
        return self._breakers[service_id]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {
            service_id: cb.get_status() for service_id, cb in self._breakers.items()
        }

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for cb in self._breakers.values():
            cb.reset()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def reset(self, service_id: str) -> bool:
        """Reset a specific circuit breaker."""
        if service_id in self._breakers:
            self._breakers[service_id].reset()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        """Get list of channels with open circuits."""
        return [
            service_id
            for service_id, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
