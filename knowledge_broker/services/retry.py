"""
RetryPolicy - Bounded exponential backoff for transient channel failures.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from knowledge_broker.services.errors import RateLimitError, is_transient
from knowledge_broker.settings import RetryConfig

T = TypeVar("T")


class RetryPolicy:
    """
    Retries transient failures with exponential backoff.

    ``max_retries`` counts retries after the first attempt, so an operation
    runs at most ``max_retries + 1`` times.

    Usage:
        policy = RetryPolicy(RetryConfig(max_retries=2))
        data = await policy.run(lambda: channel.request(path, params))
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._sleep = sleep

    def delay_for_attempt(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (0-based)."""
        delay = self.config.base_delay * self.config.backoff_multiplier**attempt
        return min(delay, self.config.max_delay)

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        return is_transient(error)

    async def run(self, fn: Callable[[], Awaitable[T]], describe: str = "operation") -> T:
        """Execute ``fn``, retrying transient failures. Re-raises the last failure."""
        retries = self.config.max_retries
        for attempt in range(retries + 1):
            try:
                return await fn()
            except Exception as e:
                if not self.is_retryable(e) or attempt >= retries:
                    raise

                delay = self.delay_for_attempt(attempt)
                if isinstance(e, RateLimitError) and e.retry_after:
                    delay = min(max(delay, e.retry_after), self.config.max_delay)

                logger.warning(
                    f"{describe} failed (attempt {attempt + 1}/{retries + 1}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                await self._sleep(delay)

        raise AssertionError("unreachable")
