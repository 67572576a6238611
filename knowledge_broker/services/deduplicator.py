"""
RequestDeduplicator - Prevents duplicate concurrent upstream requests.

When multiple callers request the same key simultaneously, only one actual
request is made and every caller observes its outcome.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from knowledge_broker.services.errors import RequestTimeoutError, TransientChannelError

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async requests.

    The shared request runs as its own task and is removed from the in-flight
    map only once it settles. A caller that gives up (timeout or its own
    cancellation) leaves the shared task running for everyone else.

    Usage:
        dedup = RequestDeduplicator()

        async def fetch_docs(key: str):
            return await dedup.run_once(
                key=key,
                request_fn=lambda: channel.request(path, params),
                timeout=5.0,
            )
    """

    SERVICE_ID = "deduplicator"

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._lock = asyncio.Lock()
        self._debug = debug
        self._stats = DeduplicatorStats()

    async def run_once(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
        timeout: float | None = None,
    ) -> T:
        """
        Execute request with deduplication.

        If a request with the same key is already in flight, wait for and
        return its result instead of making a new request.

        Args:
            key: Unique identifier for this request
            request_fn: Async function to execute if no duplicate exists
            timeout: Seconds this caller is willing to wait

        Returns:
            Result from request_fn (either fresh or from in-flight request)

        Raises:
            RequestTimeoutError: If this caller's wait exceeded ``timeout``
            TransientChannelError: If the shared request was cancelled (shutdown)
        """
        async with self._lock:
            if key in self._in_flight:
                self._stats.deduplicated += 1
                self._log(f"DEDUPE: Waiting for in-flight request: {key[:50]}")
                task = self._in_flight[key]
            else:
                self._stats.total += 1
                self._log(f"NEW: Starting request: {key[:50]}")
                task = asyncio.create_task(self._execute_and_cleanup(key, request_fn))
                task.add_done_callback(self._consume_outcome)
                self._in_flight[key] = task

        try:
            if timeout is None:
                return await asyncio.shield(task)
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError as e:
            self._stats.timeouts += 1
            self._log(f"TIMEOUT: Caller stopped waiting: {key[:50]}")
            raise RequestTimeoutError(self.SERVICE_ID, timeout) from e
        except asyncio.CancelledError:
            # Only the shared request was cancelled (e.g. on shutdown), not this caller
            if task.cancelled():
                raise TransientChannelError(
                    f"Request cancelled before completing: {key[:50]}",
                    service_id=self.SERVICE_ID,
                ) from None
            raise

    async def _execute_and_cleanup(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Execute request and clean up when done."""
        try:
            return await request_fn()
        finally:
            async with self._lock:
                if self._in_flight.get(key) is asyncio.current_task():
                    del self._in_flight[key]
                self._log(f"DONE: Request completed: {key[:50]}")

    @staticmethod
    def _consume_outcome(task: asyncio.Task[Any]) -> None:
        # Every waiter may have timed out; retrieve the error so asyncio does not warn
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"[Deduplicator] Shared request failed: {task.exception()}")

    async def cancel_all(self) -> int:
        """Cancel all in-flight requests."""
        async with self._lock:
            count = len(self._in_flight)
            for task in self._in_flight.values():
                task.cancel()
            self._in_flight.clear()
            if count:
                self._log(f"CANCEL_ALL: {count} requests cancelled")
            return count

    def get_in_flight_count(self) -> int:
        """Get number of in-flight requests."""
        return len(self._in_flight)

    def get_in_flight_keys(self) -> list[str]:
        """Get keys of all in-flight requests."""
        return list(self._in_flight.keys())

    def get_stats(self) -> "DeduplicatorStats":
        """Get deduplication statistics."""
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


class DeduplicatorStats:
    """Statistics for request deduplication."""

    def __init__(self):
        self.total: int = 0  # Total unique requests made
        self.deduplicated: int = 0  # Requests that were deduplicated
        self.timeouts: int = 0  # Callers that stopped waiting
        self.in_flight: int = 0  # Current in-flight requests

    @property
    def dedup_rate(self) -> float:
        """Calculate deduplication rate."""
        total = self.total + self.deduplicated
        if total == 0:
            return 0.0
        return self.deduplicated / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_requests": self.total,
            "deduplicated": self.deduplicated,
            "timeouts": self.timeouts,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
