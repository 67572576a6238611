"""
Service layer - resilient access to the upstream knowledge service.

Provides:
- CacheStore: TTL + LRU cache with batched file persistence
- LibraryIdResolver: Topic to library id lookups with a static table
- CircuitBreaker: Stops calling a failing channel
- RetryPolicy: Exponential backoff for transient failures
- RequestDeduplicator: Prevents duplicate concurrent requests
- FallbackProvider: Degraded answers while the upstream is down
- KnowledgeBroker: Unified broker combining all patterns
"""

from knowledge_broker.services.errors import (
    BrokerError,
    TransientChannelError,
    RequestTimeoutError,
    RateLimitError,
    UpstreamUnhealthyError,
    NotFoundError,
    ChannelError,
    ValidationError,
    CachePersistenceError,
    UpstreamError,
    is_transient,
)
from knowledge_broker.services.cache import CacheStore, CacheEntry, CacheStats
from knowledge_broker.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from knowledge_broker.services.retry import RetryPolicy
from knowledge_broker.services.deduplicator import RequestDeduplicator
from knowledge_broker.services.fallback import FallbackProvider
from knowledge_broker.services.library_resolver import LibraryIdResolver
from knowledge_broker.services.metrics import (
    MetricsRecorder,
    LoggingMetrics,
    InMemoryMetrics,
)
from knowledge_broker.services.broker import KnowledgeBroker, QueryResult, build_cache_key

__all__ = [
    # Errors
    "BrokerError",
    "TransientChannelError",
    "RequestTimeoutError",
    "RateLimitError",
    "UpstreamUnhealthyError",
    "NotFoundError",
    "ChannelError",
    "ValidationError",
    "CachePersistenceError",
    "UpstreamError",
    "is_transient",
    # Cache
    "CacheStore",
    "CacheEntry",
    "CacheStats",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Retry / Dedup / Fallback
    "RetryPolicy",
    "RequestDeduplicator",
    "FallbackProvider",
    "LibraryIdResolver",
    # Metrics
    "MetricsRecorder",
    "LoggingMetrics",
    "InMemoryMetrics",
    # Broker
    "KnowledgeBroker",
    "QueryResult",
    "build_cache_key",
]
