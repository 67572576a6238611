"""
Unit tests for CacheStore: TTL, LRU bound and file persistence.
"""

import json
from datetime import timedelta

import pytest

from knowledge_broker.models import DocItem, knowledge_items_adapter
from knowledge_broker.services.cache import CacheStore


@pytest.mark.unit
class TestCacheStore:
    async def test_set_then_get_returns_payload(self, clock):
        cache = CacheStore(clock=clock)
        await cache.set("doc:react:latest", {"answer": 42})

        assert await cache.get("doc:react:latest") == {"answer": 42}
        assert cache.get_stats().hits == 1

    async def test_missing_key_is_a_miss(self, clock):
        cache = CacheStore(clock=clock)

        assert await cache.get("nope") is None
        assert cache.get_stats().misses == 1

    async def test_entry_expires_after_ttl(self, clock):
        cache = CacheStore(ttl=timedelta(seconds=30), clock=clock)
        await cache.set("k", "v")

        clock.advance(seconds=29)
        assert await cache.get("k") == "v"

        clock.advance(seconds=1)
        assert await cache.get("k") is None
        assert cache.size() == 0
        assert cache.get_stats().expirations == 1

    async def test_per_entry_ttl_overrides_default(self, clock):
        cache = CacheStore(ttl=timedelta(days=30), clock=clock)
        await cache.set("short", "v", ttl=timedelta(seconds=5))

        clock.advance(seconds=6)
        assert await cache.get("short") is None

    async def test_zero_ttl_is_not_replaced_by_default(self, clock):
        cache = CacheStore(ttl=timedelta(days=30), clock=clock)
        await cache.set("k", "v", ttl=timedelta(0))

        assert await cache.get("k") is None

    async def test_capacity_evicts_least_recently_used(self, clock):
        cache = CacheStore(max_entries=2, clock=clock)
        await cache.set("a", 1)
        await cache.set("b", 2)

        # Reading "a" makes "b" the eviction candidate
        await cache.get("a")
        await cache.set("c", 3)

        assert cache.size() == 2
        assert await cache.get("a") == 1
        assert await cache.get("b") is None
        assert await cache.get("c") == 3
        assert cache.get_stats().evictions == 1

    async def test_overwrite_does_not_evict(self, clock):
        cache = CacheStore(max_entries=2, clock=clock)
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.set("a", 10)

        assert cache.size() == 2
        assert await cache.get("a") == 10
        assert await cache.get("b") == 2

    async def test_delete_clear_and_cleanup(self, clock):
        cache = CacheStore(ttl=timedelta(seconds=10), clock=clock)
        await cache.set("a", 1)
        await cache.set("b", 2, ttl=timedelta(seconds=1))
        await cache.set("c", 3, ttl=timedelta(seconds=1))

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False

        clock.advance(seconds=2)
        assert await cache.cleanup_expired() == 2
        assert cache.size() == 0

        await cache.set("d", 4)
        await cache.clear()
        assert cache.size() == 0

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            CacheStore(max_entries=0)


@pytest.mark.unit
class TestCachePersistence:
    async def test_flush_and_load_restore_entries(self, tmp_path, clock):
        path = tmp_path / "cache.json"
        cache = CacheStore(path=path, clock=clock)
        await cache.set("a", {"x": 1})
        await cache.set("b", [1, 2])

        assert await cache.flush() is True

        restored = CacheStore(path=path, clock=clock)
        assert await restored.load() == 2
        assert await restored.get("a") == {"x": 1}
        assert await restored.get("b") == [1, 2]

    async def test_file_layout_is_key_entry_pairs(self, tmp_path, clock):
        path = tmp_path / "cache.json"
        cache = CacheStore(path=path, clock=clock)
        await cache.set("doc:react:latest", "payload")
        await cache.flush()

        data = json.loads(path.read_text())
        assert data[0][0] == "doc:react:latest"
        assert data[0][1]["payload"] == "payload"
        assert set(data[0][1]) == {"key", "payload", "stored_at", "expires_at"}

    async def test_codec_restores_typed_items(self, tmp_path, clock):
        path = tmp_path / "cache.json"
        items = [DocItem(id="d1", title="Hooks", content="useState")]
        cache = CacheStore(path=path, codec=knowledge_items_adapter, clock=clock)
        await cache.set("doc:react:latest", items)
        await cache.flush()

        restored = CacheStore(path=path, codec=knowledge_items_adapter, clock=clock)
        await restored.load()
        loaded = await restored.get("doc:react:latest")

        assert isinstance(loaded[0], DocItem)
        assert loaded == items

    async def test_load_skips_expired_entries(self, tmp_path, clock):
        path = tmp_path / "cache.json"
        cache = CacheStore(path=path, ttl=timedelta(hours=1), clock=clock)
        await cache.set("old", 1, ttl=timedelta(minutes=1))
        await cache.set("fresh", 2)
        await cache.flush()

        clock.advance(minutes=5)
        restored = CacheStore(path=path, clock=clock)

        assert await restored.load() == 1
        assert await restored.get("fresh") == 2

    async def test_corrupt_file_loads_empty(self, tmp_path, clock):
        path = tmp_path / "cache.json"
        path.write_text("{not json")

        cache = CacheStore(path=path, clock=clock)

        assert await cache.load() == 0
        assert cache.size() == 0

    async def test_malformed_entries_are_skipped(self, tmp_path, clock):
        path = tmp_path / "cache.json"
        good = {
            "key": "good",
            "payload": "ok",
            "stored_at": clock().isoformat(),
            "expires_at": (clock() + timedelta(days=1)).isoformat(),
        }
        path.write_text(json.dumps([["good", good], ["bad"], "junk", ["x", {"payload": 1}]]))

        cache = CacheStore(path=path, clock=clock)

        assert await cache.load() == 1
        assert await cache.get("good") == "ok"

    async def test_missing_file_loads_empty(self, tmp_path, clock):
        cache = CacheStore(path=tmp_path / "absent.json", clock=clock)
        assert await cache.load() == 0

    async def test_every_nth_write_schedules_flush(self, tmp_path, clock):
        path = tmp_path / "cache.json"
        cache = CacheStore(path=path, flush_every=3, clock=clock)

        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.close()
        # close writes the pending changes even below the batch size
        assert len(json.loads(path.read_text())) == 2

        path.unlink()
        await cache.set("c", 3)
        await cache.set("d", 4)
        await cache.set("e", 5)
        assert cache._pending_flushes
        await cache.close()

        assert len(json.loads(path.read_text())) == 5

    async def test_flush_without_path_is_noop(self, clock):
        cache = CacheStore(clock=clock)
        await cache.set("a", 1)

        assert await cache.flush() is False

    async def test_unwritable_path_does_not_raise(self, tmp_path, clock):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        cache = CacheStore(path=blocker / "cache.json", clock=clock)
        await cache.set("a", 1)

        assert await cache.flush() is False
        assert await cache.get("a") == 1

    async def test_failed_flush_is_retried_on_close(self, tmp_path, clock):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        path = blocker / "cache.json"
        cache = CacheStore(path=path, clock=clock)
        await cache.set("a", 1)

        assert await cache.flush() is False

        blocker.unlink()
        await cache.close()

        assert json.loads(path.read_text())[0][0] == "a"
