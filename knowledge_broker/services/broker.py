"""
KnowledgeBroker - Resilient access to the upstream knowledge service.

Combines:
- CacheStore for response caching (with file persistence)
- LibraryIdResolver for topic -> library id lookups
- RequestDeduplicator so concurrent identical queries share one upstream call
- CircuitBreaker (one per channel) wrapping a RetryPolicy
- FallbackProvider for degraded answers when the upstream is unavailable
"""

import asyncio
import hashlib
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal

from loguru import logger

from knowledge_broker.channels.base import BaseChannel, RawResponse
from knowledge_broker.models import (
    BestPractice,
    CodeExample,
    DocItem,
    KnowledgeBundle,
    KnowledgeItem,
    QueryKind,
    TroubleshootingGuide,
    items_from_raw,
    knowledge_items_adapter,
)
from knowledge_broker.services.cache import CacheStore
from knowledge_broker.services.circuit_breaker import CircuitBreakerRegistry
from knowledge_broker.services.deduplicator import RequestDeduplicator
from knowledge_broker.services.errors import (
    BrokerError,
    NotFoundError,
    RequestTimeoutError,
    UpstreamError,
    UpstreamUnhealthyError,
    ValidationError,
)
from knowledge_broker.services.fallback import FallbackProvider
from knowledge_broker.services.library_resolver import LibraryIdResolver, normalize_topic
from knowledge_broker.services.metrics import LoggingMetrics, MetricsRecorder
from knowledge_broker.services.retry import RetryPolicy
from knowledge_broker.settings import BrokerConfig, ChannelMode

KEY_PREFIXES: dict[QueryKind, str] = {
    QueryKind.DOCUMENTATION: "doc",
    QueryKind.CODE_EXAMPLE: "examples",
    QueryKind.BEST_PRACTICE: "best-practices",
    QueryKind.TROUBLESHOOTING: "troubleshooting",
}

# Used to pick a library for free-text troubleshooting questions
TECH_KEYWORDS = ("react", "typescript", "javascript", "node", "next", "vue", "angular")

DOCS_TOKEN_BUDGET = 4000


def build_cache_key(kind: QueryKind, subject: str, version: str | None = None) -> str:
    """Stable key from query type, normalized subject and version."""
    full_key = f"{KEY_PREFIXES[kind]}:{normalize_topic(subject)}:{version or 'latest'}"

    # Hash long keys
    if len(full_key) > 200:
        hash_val = hashlib.md5(full_key.encode()).hexdigest()[:16]
        return f"{KEY_PREFIXES[kind]}:{hash_val}"

    return full_key


@dataclass
class QueryResult:
    """Result from a knowledge query."""

    items: list[KnowledgeItem]
    source: Literal["cache", "upstream", "fallback"]
    channel: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


class KnowledgeBroker:
    """
    Cached, deduplicated, circuit-broken access to the knowledge service.

    Usage:
        config = load_settings().to_broker_config()
        async with KnowledgeBroker(config, HttpChannel(url), RpcChannel(rpc_url)) as broker:
            result = await broker.query("documentation", "react")
            for item in result.items:
                print(item.title)

    ``query`` only ever raises BrokerError subclasses. With fallback enabled,
    only ValidationError reaches the caller.
    """

    def __init__(
        self,
        config: BrokerConfig,
        primary: BaseChannel,
        secondary: BaseChannel | None = None,
        *,
        cache: CacheStore | None = None,
        library_ids: CacheStore | None = None,
        fallback: FallbackProvider | None = None,
        metrics: MetricsRecorder | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        debug: bool = False,
    ):
        self._config = config
        self._primary = primary
        self._secondary = secondary

        # Initialize components
        self._cache = cache or CacheStore(
            name="knowledge-cache",
            max_entries=config.cache_max_entries,
            ttl=config.cache_ttl,
            path=config.cache_file,
            flush_every=config.cache_flush_every,
            codec=knowledge_items_adapter,
            clock=clock,
            debug=debug,
        )
        self._resolver = LibraryIdResolver(
            library_ids
            or CacheStore(
                name="library-ids",
                max_entries=config.cache_max_entries,
                ttl=config.library_id_ttl,
                path=config.library_id_cache_file,
                flush_every=config.cache_flush_every,
                clock=clock,
                debug=debug,
            )
        )
        self._circuit_breakers = CircuitBreakerRegistry(config.circuit_breaker, clock=clock)
        self._retry = RetryPolicy(config.retry, sleep=sleep)
        self._deduplicator = RequestDeduplicator(debug=debug)
        self._fallback = fallback or FallbackProvider()
        self._metrics: MetricsRecorder = metrics or LoggingMetrics()

        self._started = False
        self._start_lock = asyncio.Lock()

    @property
    def config(self) -> BrokerConfig:
        return self._config

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def resolver(self) -> LibraryIdResolver:
        return self._resolver

    def _channels(self) -> list[BaseChannel]:
        channels = [self._primary]
        if (
            self._secondary is not None
            and self._config.channel_mode == ChannelMode.PRIMARY_THEN_SECONDARY
        ):
            channels.append(self._secondary)
        return channels

    # Lifecycle

    async def start(self) -> None:
        """Restore persisted caches. Safe to call more than once."""
        async with self._start_lock:
            if self._started:
                return
            if self._config.enable_cache:
                await self._cache.load()
            await self._resolver.store.load()
            self._started = True

    async def close(self) -> None:
        """Flush caches, cancel in-flight work and close channels."""
        await self._deduplicator.cancel_all()
        await self._cache.close()
        await self._resolver.store.close()
        for channel in {id(c): c for c in (self._primary, self._secondary) if c}.values():
            await channel.aclose()
        logger.debug("KnowledgeBroker closed")

    async def __aenter__(self) -> "KnowledgeBroker":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # Queries

    async def query(
        self,
        kind: QueryKind | str,
        subject: str,
        version: str | None = None,
    ) -> QueryResult:
        """
        Answer a knowledge query.

        Args:
            kind: Query namespace (documentation, code_example, ...)
            subject: Free-text subject, e.g. "react" or "react hooks"
            version: Optional library version

        Returns:
            QueryResult with typed items and where they came from

        Raises:
            ValidationError: Empty subject or unknown kind
            UpstreamUnhealthyError, NotFoundError, UpstreamError: Only when
                fallback is disabled
        """
        started = time.perf_counter()
        try:
            kind = QueryKind(kind)
        except ValueError as e:
            raise ValidationError(f"Unknown query kind: {kind!r}") from e
        subject = " ".join((subject or "").split())
        if not subject:
            raise ValidationError("Subject must not be empty")
        version = (version or "").strip() or None
        operation = f"query.{kind.value}"

        await self.start()
        cache_key = build_cache_key(kind, subject, version)

        # Check cache first
        if self._config.enable_cache:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                self._record(operation, True, started, "cache")
                return QueryResult(items=cached, source="cache")

        # Skip the upstream entirely while every usable circuit is open
        channels = self._channels()
        if not any(self._circuit_breakers.get(c.name).can_attempt() for c in channels):
            breaker = self._circuit_breakers.get(channels[0].name)
            error = UpstreamUnhealthyError(
                breaker.service_id, breaker.get_time_until_reset() or 0
            )
            return self._degrade(kind, subject, version, error, operation, started)

        try:
            items, channel = await self._deduplicator.run_once(
                cache_key,
                lambda: self._fetch(kind, subject, version, cache_key),
                timeout=self._config.query_timeout,
            )
        except ValidationError:
            raise
        except Exception as e:
            return self._degrade(kind, subject, version, e, operation, started)

        self._record(operation, True, started, "upstream")
        return QueryResult(items=items, source="upstream", channel=channel)

    def _degrade(
        self,
        kind: QueryKind,
        subject: str,
        version: str | None,
        error: Exception,
        operation: str,
        started: float,
    ) -> QueryResult:
        """Serve fallback content, or surface the failure when fallback is off."""
        if self._config.fallback_enabled:
            logger.warning(f"Serving fallback {kind.value} for '{subject}': {error}")
            self._record(operation, True, started, "fallback")
            return QueryResult(
                items=self._fallback.for_query(kind, subject, version),
                source="fallback",
            )

        self._record(operation, False, started, "error")
        if isinstance(error, (UpstreamError, UpstreamUnhealthyError, NotFoundError)):
            raise error
        raise UpstreamError(kind.value, subject, error, channel=error_channel(error)) from error

    async def _fetch(
        self,
        kind: QueryKind,
        subject: str,
        version: str | None,
        cache_key: str,
    ) -> tuple[list[KnowledgeItem], str]:
        """The shared upstream operation behind one cache key."""
        library_topic, docs_topic = self._topics(kind, subject)
        last_error: Exception | None = None
        last_channel: str | None = None
        attempts = 0

        for channel in self._channels():
            breaker = self._circuit_breakers.get(channel.name)

            async def attempt(channel: BaseChannel = channel) -> list[KnowledgeItem]:
                nonlocal attempts
                attempts += 1
                return await self._fetch_from(
                    channel, kind, subject, library_topic, docs_topic, version
                )

            try:
                items = await breaker.call(
                    lambda: self._retry.run(
                        attempt, describe=f"{kind.value} '{subject}' via {channel.name}"
                    )
                )
            except ValidationError:
                raise
            except Exception as e:
                logger.warning(f"Channel '{channel.name}' failed for '{subject}': {e}")
                last_error, last_channel = e, channel.name
                continue

            if items:
                if self._config.enable_cache:
                    await self._cache.set(cache_key, items)
                return items, channel.name

            logger.info(f"Channel '{channel.name}' returned nothing for '{subject}'")
            last_error = None
            last_channel = channel.name

        if last_error is None:
            raise NotFoundError(
                f"No {kind.value} found for '{subject}'", service_id=last_channel
            )
        if isinstance(last_error, (NotFoundError, UpstreamUnhealthyError)):
            raise last_error
        raise UpstreamError(
            kind.value, subject, last_error, channel=last_channel, attempts=attempts
        ) from last_error

    async def _fetch_from(
        self,
        channel: BaseChannel,
        kind: QueryKind,
        subject: str,
        library_topic: str,
        docs_topic: str,
        version: str | None,
    ) -> list[KnowledgeItem]:
        library_id = await self._resolver.resolve(
            library_topic, search=lambda topic: self._search(channel, topic)
        )
        if not library_id:
            raise NotFoundError(
                f"No library found for topic: {library_topic}", service_id=channel.name
            )

        raw = await self._request(
            channel,
            "/" + library_id.lstrip("/"),
            {"type": "json", "topic": docs_topic, "tokens": DOCS_TOKEN_BUDGET},
        )
        return items_from_raw(kind, subject, raw, version)

    async def _search(self, channel: BaseChannel, topic: str) -> str | None:
        raw = await self._request(channel, "/search", {"query": topic})
        results = raw.get("results") or []
        if not results or not isinstance(results[0], dict):
            logger.warning(f"No libraries found for topic: {topic}")
            return None
        # First result is the most relevant
        return results[0].get("id") or None

    async def _request(
        self, channel: BaseChannel, path: str, params: dict[str, Any]
    ) -> RawResponse:
        timeout = self._config.request_timeout
        try:
            return await asyncio.wait_for(channel.request(path, params), timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(channel.name, timeout) from e

    @staticmethod
    def _topics(kind: QueryKind, subject: str) -> tuple[str, str]:
        """(library lookup topic, upstream docs topic) for a query."""
        if kind == QueryKind.BEST_PRACTICE:
            return subject, f"{subject} best practices"
        if kind == QueryKind.TROUBLESHOOTING:
            lowered = subject.lower()
            technology = next((t for t in TECH_KEYWORDS if t in lowered), "javascript")
            return technology, f"troubleshooting {subject}"
        return subject, subject

    def _record(self, operation: str, success: bool, started: float, source: str) -> None:
        self._metrics.record(operation, success, time.perf_counter() - started, source)

    # Convenience operations

    async def get_documentation(self, topic: str, version: str | None = None) -> list[DocItem]:
        result = await self.query(QueryKind.DOCUMENTATION, topic, version)
        return [item for item in result.items if isinstance(item, DocItem)]

    async def get_code_examples(self, technology: str, pattern: str) -> list[CodeExample]:
        result = await self.query(QueryKind.CODE_EXAMPLE, f"{technology} {pattern}")
        return [item for item in result.items if isinstance(item, CodeExample)]

    async def get_best_practices(self, domain: str) -> list[BestPractice]:
        result = await self.query(QueryKind.BEST_PRACTICE, domain)
        return [item for item in result.items if isinstance(item, BestPractice)]

    async def get_troubleshooting_guides(self, problem: str) -> list[TroubleshootingGuide]:
        result = await self.query(QueryKind.TROUBLESHOOTING, problem)
        return [item for item in result.items if isinstance(item, TroubleshootingGuide)]

    async def get_knowledge(
        self,
        topic: str,
        priority: Literal["low", "medium", "high"] = "medium",
    ) -> KnowledgeBundle:
        """Gather every knowledge kind for ``topic`` concurrently."""
        documentation, code_examples, best_practices, guides = await asyncio.gather(
            self.get_documentation(topic),
            self.get_code_examples(topic, "best-practices"),
            self.get_best_practices(topic),
            self.get_troubleshooting_guides(topic),
        )
        bundle = KnowledgeBundle(
            topic=topic,
            priority=priority,
            documentation=documentation,
            code_examples=code_examples,
            best_practices=best_practices,
            troubleshooting_guides=guides,
        )
        bundle.summary = (
            f"Knowledge gathered for {topic} ({priority} priority): "
            f"{bundle.total_items} total items including {len(documentation)} "
            f"documentation entries, {len(code_examples)} code examples, "
            f"{len(best_practices)} best practices, and {len(guides)} troubleshooting guides."
        )
        return bundle

    # Health and status methods

    async def health_check(self) -> bool:
        """Whether the primary channel answers right now. Ignores the cache."""
        try:
            return await self._primary.health_check()
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            return False

    def cache_stats(self) -> dict[str, int]:
        return {"size": self._cache.size(), "max_size": self._cache.max_entries}

    def is_cache_healthy(self) -> bool:
        """Healthy while under 90% of capacity."""
        return self._cache.size() < self._cache.max_entries * 0.9

    async def clear_cache(self) -> None:
        await self._cache.clear()

    async def flush_cache(self) -> bool:
        """Write both caches to disk. Returns whether the main cache was written."""
        await self._resolver.store.flush()
        return await self._cache.flush()

    def breaker_status(self) -> dict[str, dict[str, Any]]:
        return {c.name: self._circuit_breakers.get(c.name).get_status() for c in self._channels()}

    def reset_circuits(self) -> None:
        self._circuit_breakers.reset_all()

    def get_health_status(self) -> dict[str, Any]:
        """Get status of every resilience component."""
        return {
            "cache": self._cache.get_stats().to_dict(),
            "library_ids": self._resolver.store.get_stats().to_dict(),
            "circuit_breakers": self.breaker_status(),
            "deduplicator": self._deduplicator.get_stats().to_dict(),
            "open_circuits": self._circuit_breakers.get_open_circuits(),
        }


def error_channel(error: BaseException) -> str | None:
    return error.service_id if isinstance(error, BrokerError) else None
