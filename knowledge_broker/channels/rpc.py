"""
RpcChannel - JSON-RPC (tool call) access to the knowledge service.

Paths are translated into tool calls so that callers see the same raw
response shape as HttpChannel:
- ``/search`` -> ``resolve-library-id`` -> ``{"results": [{"id": ...}]}``
- anything else -> ``get-library-docs`` -> ``{"snippets": [...], "qaItems": [...]}``
"""

import itertools
import json
import re
from typing import Any

import httpx
from loguru import logger

from knowledge_broker.channels.base import BaseChannel, RawResponse
from knowledge_broker.channels.http import check_response, send
from knowledge_broker.services.errors import ChannelError

LIBRARY_ID_PATTERN = re.compile(r"library ID:\s*(/\S+)", re.IGNORECASE)


def _decode_body(response: httpx.Response) -> httpx.Response:
    """Unwrap a single-message event stream into a plain JSON response."""
    if "text/event-stream" not in response.headers.get("content-type", ""):
        return response
    payload = ""
    for line in response.text.splitlines():
        if line.startswith("data:"):
            payload = line[len("data:") :].strip()
    return httpx.Response(
        response.status_code,
        headers={"content-type": "application/json"},
        content=payload.encode(),
        request=response.request,
    )


def _text_content(result: dict[str, Any]) -> str:
    parts = [
        block.get("text", "")
        for block in result.get("content") or []
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n".join(part for part in parts if part)


def _structured(result: dict[str, Any]) -> dict[str, Any] | None:
    structured = result.get("structuredContent")
    if isinstance(structured, dict):
        return structured
    text = _text_content(result)
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


class RpcChannel(BaseChannel):
    """
    Tool-call channel speaking JSON-RPC 2.0 over HTTP POST.

    Usage:
        channel = RpcChannel("https://mcp.context7.com/mcp", api_key=key)
        data = await channel.request("/vercel/next.js", {"topic": "routing"})
    """

    SERVICE_ID = "rpc"

    def __init__(
        self,
        rpc_url: str,
        api_key: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._rpc_url = rpc_url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._ids = itertools.count(1)
        self._http_client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return self.SERVICE_ID

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            headers = {
                "Accept": "application/json, text/event-stream",
                "Content-Type": "application/json",
            }
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._http_client = httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._http_client

    async def _call(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send one JSON-RPC call and return its ``result`` member."""
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method}
        if params is not None:
            body["params"] = params

        response = await send(
            self.SERVICE_ID,
            self._get_http_client(),
            "POST",
            self._rpc_url,
            self._timeout,
            json=body,
        )
        data = check_response(self.SERVICE_ID, _decode_body(response))

        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ChannelError(f"RPC error: {message}", service_id=self.SERVICE_ID)

        result = data.get("result")
        if not isinstance(result, dict):
            raise ChannelError("RPC response has no result", service_id=self.SERVICE_ID)
        return result

    async def _call_tool(self, tool: str, arguments: dict[str, Any]) -> dict[str, Any]:
        result = await self._call("tools/call", {"name": tool, "arguments": arguments})
        if result.get("isError"):
            raise ChannelError(
                f"Tool '{tool}' failed: {_text_content(result)[:200]}",
                service_id=self.SERVICE_ID,
            )
        return result

    async def request(self, path: str, params: dict[str, Any] | None = None) -> RawResponse:
        params = params or {}

        if path.rstrip("/") == "/search":
            result = await self._call_tool(
                "resolve-library-id", {"libraryName": params.get("query", "")}
            )
            structured = _structured(result)
            if structured and "results" in structured:
                return structured
            ids = LIBRARY_ID_PATTERN.findall(_text_content(result))
            return {"results": [{"id": library_id} for library_id in ids]}

        arguments: dict[str, Any] = {"context7CompatibleLibraryID": path}
        if params.get("topic"):
            arguments["topic"] = params["topic"]
        if params.get("tokens"):
            arguments["tokens"] = params["tokens"]

        result = await self._call_tool("get-library-docs", arguments)
        structured = _structured(result)
        if structured and ("snippets" in structured or "qaItems" in structured):
            return structured

        text = _text_content(result)
        if not text.strip():
            return {"snippets": [], "qaItems": []}
        return {
            "snippets": [{"title": params.get("topic") or path, "content": text}],
            "qaItems": [],
        }

    async def health_check(self) -> bool:
        try:
            await self._call("ping")
            return True
        except Exception as e:
            logger.warning(f"RPC channel health check failed: {e}")
            return False

    async def aclose(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
