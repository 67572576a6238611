"""
Base channel interface.
"""

from abc import ABC, abstractmethod
from typing import Any

RawResponse = dict[str, Any]


class BaseChannel(ABC):
    """
    Abstract transport to the upstream knowledge service.

    All channels share one contract:
    - ``request`` returns the decoded payload or raises a BrokerError subclass
      (TransientChannelError, NotFoundError, ChannelError)
    - ``health_check`` never raises
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this channel (keys its circuit breaker)."""
        ...

    @abstractmethod
    async def request(self, path: str, params: dict[str, Any] | None = None) -> RawResponse:
        """Fetch ``path`` from the upstream service."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check whether the upstream answers on this channel."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        return None

    async def __aenter__(self) -> "BaseChannel":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
