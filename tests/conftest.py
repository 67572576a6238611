"""
Shared fixtures: a controllable clock, scripted channels and broker factory.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from knowledge_broker.channels.base import BaseChannel, RawResponse
from knowledge_broker.services.broker import KnowledgeBroker
from knowledge_broker.settings import BrokerConfig, RetryConfig

SAMPLE_DOCS: RawResponse = {
    "snippets": [
        {
            "codeId": "snippet-use-state",
            "codeTitle": "useState",
            "codeDescription": "Adds a state variable to a component.",
            "codeLanguage": "jsx",
            "codeList": [{"code": "const [count, setCount] = useState(0);"}],
        }
    ],
    "qaItems": [
        {"question": "What is JSX?", "answer": "A syntax extension for JavaScript."}
    ],
}


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class StubChannel(BaseChannel):
    """
    Scripted channel. Answers searches with ``search_results`` and every
    other path with ``docs``, unless ``error`` is set. When ``gate`` is set
    each request waits for it first.
    """

    def __init__(
        self,
        name: str = "stub",
        docs: RawResponse | None = None,
        search_results: list[dict[str, Any]] | None = None,
        error: Exception | None = None,
        healthy: bool = True,
    ):
        self._name = name
        self.docs = SAMPLE_DOCS if docs is None else docs
        self.search_results = search_results or []
        self.error = error
        self.healthy = healthy
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    async def request(self, path: str, params: dict[str, Any] | None = None) -> RawResponse:
        self.calls.append((path, params or {}))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if path == "/search":
            return {"results": self.search_results}
        return self.docs

    async def health_check(self) -> bool:
        return self.healthy

    async def aclose(self) -> None:
        self.closed = True

    @property
    def doc_calls(self) -> list[tuple[str, dict[str, Any]]]:
        return [call for call in self.calls if call[0] != "/search"]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broker_config():
    """Build a test config: no disk, no retries, short timeouts."""

    def _build(**overrides: Any) -> BrokerConfig:
        values: dict[str, Any] = {
            "cache_file": None,
            "retry": RetryConfig(max_retries=0, base_delay=0.0),
            "request_timeout": 1.0,
            "query_timeout": 1.0,
        }
        values.update(overrides)
        return BrokerConfig(**values)

    return _build


@pytest.fixture
async def make_broker(broker_config):
    """Factory for brokers that are closed after the test."""
    brokers: list[KnowledgeBroker] = []

    def _make(
        primary: BaseChannel,
        secondary: BaseChannel | None = None,
        **overrides: Any,
    ) -> KnowledgeBroker:
        metrics = overrides.pop("metrics", None)
        broker = KnowledgeBroker(
            broker_config(**overrides),
            primary,
            secondary,
            metrics=metrics,
            sleep=AsyncMock(),
        )
        brokers.append(broker)
        return broker

    yield _make

    for broker in brokers:
        await broker.close()
