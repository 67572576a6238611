"""
Broker exceptions.
"""

import asyncio


class BrokerError(Exception):
    """Base exception for knowledge broker errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class TransientChannelError(BrokerError):
    """Network or timeout class failure. Safe to retry."""

    pass


class RequestTimeoutError(TransientChannelError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class RateLimitError(TransientChannelError):
    """Rate limit exceeded."""

    def __init__(self, service_id: str, retry_after: float | None = None):
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, service_id=service_id)


class UpstreamUnhealthyError(BrokerError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class NotFoundError(BrokerError):
    """Upstream was reached but has no data for the subject."""

    pass


class ChannelError(BrokerError):
    """Upstream answered with something unusable. Not retried."""

    pass


class ValidationError(BrokerError):
    """Malformed request. Caller error, never retried or replaced by fallback."""

    pass


class CachePersistenceError(BrokerError):
    """Reading or writing the cache file failed."""

    pass


class UpstreamError(BrokerError):
    """Final failure of a query once retries are exhausted and fallback is off."""

    def __init__(
        self,
        kind: str,
        subject: str,
        cause: BaseException,
        channel: str | None = None,
        attempts: int = 0,
    ):
        self.kind = kind
        self.subject = subject
        self.cause = cause
        self.attempts = attempts
        super().__init__(
            f"{kind} lookup for '{subject}' failed via {channel or 'no channel'} "
            f"after {attempts} attempt(s): {cause}",
            service_id=channel,
        )


def is_transient(error: BaseException) -> bool:
    """Whether ``error`` is a network/timeout class failure worth retrying."""
    if isinstance(error, TransientChannelError):
        return True
    if isinstance(error, BrokerError):
        return False
    return isinstance(
        error, (asyncio.TimeoutError, TimeoutError, ConnectionError, OSError)
    )
