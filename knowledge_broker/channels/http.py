"""
HttpChannel - REST access to the knowledge service over httpx.
"""

from typing import Any

import httpx
from loguru import logger

from knowledge_broker.channels.base import BaseChannel, RawResponse
from knowledge_broker.services.errors import (
    ChannelError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    TransientChannelError,
)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def check_response(service_id: str, response: httpx.Response) -> RawResponse:
    """Map an HTTP response to its JSON object or the matching broker error."""
    status = response.status_code
    if status == 404:
        raise NotFoundError(f"HTTP 404: {response.text[:200]}", service_id=service_id)
    if status == 429:
        raise RateLimitError(service_id, _retry_after(response))
    if status >= 500:
        raise TransientChannelError(
            f"HTTP {status}: {response.text[:200]}", service_id=service_id
        )
    if status >= 400:
        raise ChannelError(f"HTTP {status}: {response.text[:200]}", service_id=service_id)

    try:
        data = response.json()
    except ValueError as e:
        raise ChannelError(f"Invalid JSON body: {e}", service_id=service_id) from e
    if not isinstance(data, dict):
        raise ChannelError("Expected a JSON object", service_id=service_id)
    return data


async def send(
    service_id: str,
    client: httpx.AsyncClient,
    method: str,
    url: str,
    timeout: float,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, translating httpx transport errors."""
    try:
        return await client.request(method=method, url=url, timeout=timeout, **kwargs)

    except httpx.TimeoutException as e:
        raise RequestTimeoutError(service_id, timeout) from e

    except httpx.RequestError as e:
        raise TransientChannelError(str(e) or type(e).__name__, service_id=service_id) from e


class HttpChannel(BaseChannel):
    """
    GET-based channel against the REST API.

    Usage:
        async with HttpChannel("https://context7.com/api/v1", api_key=key) as channel:
            data = await channel.request("/search", {"query": "react"})
    """

    SERVICE_ID = "http"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return self.SERVICE_ID

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            headers = {"Accept": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    async def request(self, path: str, params: dict[str, Any] | None = None) -> RawResponse:
        client = self._get_http_client()
        response = await send(
            self.SERVICE_ID,
            client,
            "GET",
            "/" + path.lstrip("/"),
            self._timeout,
            params=params,
        )
        return check_response(self.SERVICE_ID, response)

    async def health_check(self) -> bool:
        try:
            await self.request("/search", {"query": "react"})
            return True
        except Exception as e:
            logger.warning(f"HTTP channel health check failed: {e}")
            return False

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
