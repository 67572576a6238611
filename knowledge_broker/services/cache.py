"""
CacheStore - Async-compatible cache with TTL, LRU eviction and file persistence.

Features:
- Memory-based cache with least-recently-used eviction
- TTL (Time To Live) checked on every read
- Optional JSON file persistence, loaded at startup and flushed in batches
- Async-safe operations guarded by a single lock
"""

import asyncio
import json
import os
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

from loguru import logger
from pydantic import TypeAdapter

from knowledge_broker.services.errors import CachePersistenceError

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A single cache entry. Replaced, never mutated, by a new set."""

    key: str
    payload: T
    stored_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now >= self.expires_at


class CacheStore:
    """
    Bounded TTL cache with LRU eviction and optional disk persistence.

    Usage:
        cache = CacheStore(max_entries=100, ttl=timedelta(minutes=5))

        payload = await cache.get("my_key")
        if payload is None:
            payload = await fetch_data()
            await cache.set("my_key", payload)

    When ``path`` is given, ``load()`` restores the file contents and every
    ``flush_every``-th ``set`` schedules a background flush. Persistence
    problems are logged and never reach the caller.
    """

    def __init__(
        self,
        name: str = "cache",
        max_entries: int = 1000,
        ttl: timedelta = timedelta(days=30),
        path: str | Path | None = None,
        flush_every: int = 10,
        codec: TypeAdapter | None = None,
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self._name = name
        self._memory: OrderedDict[str, CacheEntry[Any]] = OrderedDict()
        self._max_entries = max_entries
        self._ttl = ttl
        self._path = Path(path) if path else None
        self._flush_every = max(1, flush_every)
        self._codec = codec
        self._clock = clock
        self._debug = debug

        self._lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._writes_since_flush = 0
        self._dirty = False
        self._pending_flushes: set[asyncio.Task[bool]] = set()
        self._stats = CacheStats()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def path(self) -> Path | None:
        return self._path

    def size(self) -> int:
        """Number of entries currently held (expired ones included until read)."""
        return len(self._memory)

    async def get(self, key: str) -> Any | None:
        """
        Get value from cache.

        Returns the payload if found and not expired, None otherwise.
        """
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:50]}")
                return None

            if entry.is_expired(self._clock()):
                del self._memory[key]
                self._stats.misses += 1
                self._stats.expirations += 1
                self._log(f"EXPIRED: {key[:50]}")
                return None

            self._memory.move_to_end(key)
            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}")
            return entry.payload

    async def set(self, key: str, payload: Any, ttl: timedelta | None = None) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key
            payload: Data to cache
            ttl: Time to live (uses default if not specified)
        """
        if ttl is None:
            ttl = self._ttl
        now = self._clock()
        entry = CacheEntry(key=key, payload=payload, stored_at=now, expires_at=now + ttl)

        async with self._lock:
            if key not in self._memory and len(self._memory) >= self._max_entries:
                self._evict_least_recent()

            self._memory[key] = entry
            self._memory.move_to_end(key)
            self._dirty = True
            self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

            should_flush = False
            if self._path is not None:
                self._writes_since_flush += 1
                if self._writes_since_flush >= self._flush_every:
                    self._writes_since_flush = 0
                    should_flush = True

        if should_flush:
            self._schedule_flush()

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        async with self._lock:
            if key in self._memory:
                del self._memory[key]
                self._dirty = True
                self._log(f"DELETE: {key[:50]}")
                return True
            return False

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._dirty = True
            self._log(f"CLEAR: {count} entries removed")

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        async with self._lock:
            expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._memory[key]
            self._stats.expirations += len(expired_keys)

            if expired_keys:
                self._dirty = True
                self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

            return len(expired_keys)

    def _evict_least_recent(self) -> None:
        """Evict the least recently used entry."""
        if not self._memory:
            return

        oldest_key, _ = self._memory.popitem(last=False)
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")

    # Persistence

    async def load(self) -> int:
        """
        Restore entries from the cache file.

        Unreadable files and malformed or expired entries are skipped.
        Returns the number of entries restored.
        """
        if self._path is None:
            return 0

        try:
            raw = await asyncio.to_thread(self._read_file)
        except CachePersistenceError as e:
            logger.warning(f"[{self._name}] Failed to load cache file: {e}")
            return 0

        if raw is None:
            return 0

        now = self._clock()
        restored = 0
        async with self._lock:
            for item in raw:
                entry = self._decode_entry(item)
                if entry is None or entry.is_expired(now):
                    continue
                if entry.key not in self._memory and len(self._memory) >= self._max_entries:
                    self._evict_least_recent()
                self._memory[entry.key] = entry
                self._memory.move_to_end(entry.key)
                restored += 1

        logger.info(f"[{self._name}] Restored {restored} entries from {self._path}")
        return restored

    async def flush(self) -> bool:
        """Write the current contents to the cache file. Returns success."""
        if self._path is None:
            return False

        async with self._flush_lock:
            async with self._lock:
                snapshot = [
                    [entry.key, self._encode_entry(entry)]
                    for entry in self._memory.values()
                ]
                self._dirty = False
                self._writes_since_flush = 0

            try:
                await asyncio.to_thread(self._write_file, snapshot)
            except CachePersistenceError as e:
                logger.warning(f"[{self._name}] Failed to save cache: {e}")
                async with self._lock:
                    self._dirty = True
                return False

        self._log(f"FLUSH: {len(snapshot)} entries written")
        return True

    async def close(self) -> None:
        """Wait for scheduled flushes and write any remaining changes."""
        if self._pending_flushes:
            await asyncio.gather(*self._pending_flushes, return_exceptions=True)
        if self._path is not None and self._dirty:
            await self.flush()

    def _schedule_flush(self) -> None:
        task = asyncio.create_task(self.flush())
        self._pending_flushes.add(task)
        task.add_done_callback(self._pending_flushes.discard)

    def _read_file(self) -> list[Any] | None:
        if self._path is None or not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise CachePersistenceError(f"{self._path}: {e}") from e
        if not isinstance(data, list):
            raise CachePersistenceError(f"{self._path}: expected a JSON array")
        return data

    def _write_file(self, snapshot: list[Any]) -> None:
        assert self._path is not None
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as e:
            raise CachePersistenceError(f"{self._path}: {e}") from e

    def _encode_entry(self, entry: CacheEntry[Any]) -> dict[str, Any]:
        payload = entry.payload
        if self._codec is not None:
            payload = self._codec.dump_python(payload, mode="json")
        return {
            "key": entry.key,
            "payload": payload,
            "stored_at": entry.stored_at.isoformat(),
            "expires_at": entry.expires_at.isoformat(),
        }

    def _decode_entry(self, item: Any) -> CacheEntry[Any] | None:
        try:
            key, value = item
            payload = value["payload"]
            if self._codec is not None:
                payload = self._codec.validate_python(payload)
            return CacheEntry(
                key=str(key),
                payload=payload,
                stored_at=datetime.fromisoformat(value["stored_at"]),
                expires_at=datetime.fromisoformat(value["expires_at"]),
            )
        except Exception as e:
            self._log(f"SKIP: unreadable entry ({type(e).__name__}: {e})")
            return None

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_entries
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[{self._name}] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
