"""Tests for the in-memory cache and offline stores."""

import pytest

from fetchkit import (
    AsyncCacheStore,
    AsyncMemoryCacheStore,
    AsyncOfflineStore,
    MemoryOfflineStore,
    OnlineStatus,
)


class TestAsyncMemoryCacheStore:
    """Tests for AsyncMemoryCacheStore."""

    async def test_get_nonexistent_returns_none(
        self, cache: AsyncMemoryCacheStore
    ) -> None:
        """Test that getting a nonexistent key returns None."""
        assert await cache.get("nonexistent") is None

    async def test_set_and_get(self, cache: AsyncMemoryCacheStore, clock) -> None:
        """Test setting and getting a value."""
        await cache.set("key1", {"id": "123"}, 1000)
        result = await cache.get("key1")
        assert result is not None
        assert result.key == "key1"
        assert result.value == {"id": "123"}
        assert result.stored_at == clock.now
        assert result.ttl == 1000

    async def test_expired_entry_is_evicted(
        self, cache: AsyncMemoryCacheStore, clock
    ) -> None:
        """Test that entries disappear once their ttl has passed."""
        await cache.set("key1", "value", 1000)
        clock.advance(999)
        assert await cache.get("key1") is not None
        clock.advance(1)
        assert await cache.get("key1") is None

    async def test_delete(self, cache: AsyncMemoryCacheStore) -> None:
        """Test deleting a value."""
        await cache.set("key1", "test", 1000)
        await cache.delete("key1")
        assert await cache.get("key1") is None
        await cache.delete("key1")

    async def test_clear(self, cache: AsyncMemoryCacheStore) -> None:
        """Test clearing all values."""
        await cache.set("key1", 1, 1000)
        await cache.set("key2", 2, 1000)
        await cache.clear()
        assert await cache.get("key1") is None
        assert await cache.get("key2") is None

    async def test_lru_eviction(self, clock) -> None:
        """Test that the least recently used entry is evicted first."""
        cache = AsyncMemoryCacheStore(max_items=2, clock=clock)
        await cache.set("a", 1, 1000)
        await cache.set("b", 2, 1000)
        await cache.get("a")
        await cache.set("c", 3, 1000)

        assert await cache.get("a") is not None
        assert await cache.get("b") is None
        assert await cache.get("c") is not None

    async def test_stats(self, cache: AsyncMemoryCacheStore, clock) -> None:
        """Test hit and miss counting, with expired entries counted as misses."""
        await cache.set("a", 1, 1000)
        await cache.get("a")
        await cache.get("b")
        clock.advance(1000)
        await cache.get("a")
        await cache.delete("missing")

        stats = cache.stats
        assert (stats.hits, stats.misses, stats.sets, stats.deletes) == (1, 2, 1, 0)
        assert stats.size == 0
        assert stats.hit_rate == pytest.approx(1 / 3)
        assert stats.miss_rate == pytest.approx(2 / 3)

        cache.reset_stats()
        assert cache.stats.hits == 0
        assert cache.stats.hit_rate == 0.0

    async def test_disconnect(self, cache: AsyncMemoryCacheStore) -> None:
        """Test that disconnect is a no-op."""
        await cache.disconnect()

    def test_satisfies_protocol(self, cache: AsyncMemoryCacheStore) -> None:
        assert isinstance(cache, AsyncCacheStore)


class TestMemoryOfflineStore:
    """Tests for MemoryOfflineStore."""

    async def test_store_and_retrieve(self, offline: MemoryOfflineStore) -> None:
        await offline.store("k", {"items": [1]})
        assert await offline.retrieve("k") == {"items": [1]}
        assert await offline.retrieve("missing") is None

    async def test_payload_is_copied(self, offline: MemoryOfflineStore) -> None:
        """Test that later mutation does not alter the stored payload."""
        payload = {"items": [1]}
        await offline.store("k", payload)
        payload["items"].append(2)
        retrieved = await offline.retrieve("k")
        retrieved["items"].append(3)
        assert await offline.retrieve("k") == {"items": [1]}

    async def test_stored_none_is_retrievable_as_none(
        self, offline: MemoryOfflineStore
    ) -> None:
        await offline.store("k", None)
        assert await offline.retrieve("k") is None

    def test_online_listener(self, offline: MemoryOfflineStore) -> None:
        changes: list[bool] = []
        dispose = offline.add_listener(changes.append)
        offline.set_online(False)
        dispose()
        offline.set_online(True)
        assert changes == [False]
        assert offline.is_online()

    def test_shared_status(self) -> None:
        status = OnlineStatus()
        first = MemoryOfflineStore(status=status)
        second = MemoryOfflineStore(status=status)
        status.set_online(False)
        assert not first.is_online()
        assert not second.is_online()
        assert first.status is status

    def test_satisfies_protocol(self, offline: MemoryOfflineStore) -> None:
        assert isinstance(offline, AsyncOfflineStore)

    @pytest.mark.parametrize("online", [True, False])
    def test_initial_connectivity(self, online: bool) -> None:
        assert MemoryOfflineStore(online=online).is_online() is online
