"""In-memory cache and offline stores (async only)."""

import asyncio
import copy
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from fetchkit.duration import now_ms
from fetchkit.signals import OnlineStatus
from fetchkit.types import CacheEntry, CacheStats, Disposer


class AsyncMemoryCacheStore:
    """Async in-memory cache store with ttl expiry and optional LRU eviction."""

    def __init__(
        self,
        max_items: int | None = None,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._cache: OrderedDict[str, CacheEntry[object]] = OrderedDict()
        self._max_items = max_items
        self._clock = clock
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0

    @property
    def stats(self) -> CacheStats:
        """Hit/miss counters since creation or the last ``reset_stats()``."""
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            sets=self._sets,
            deletes=self._deletes,
            size=len(self._cache),
        )

    def reset_stats(self) -> None:
        self._hits = self._misses = self._sets = self._deletes = 0

    async def get(self, key: str) -> CacheEntry[object] | None:
        """Get a live cache entry by key."""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None
            if not entry.is_fresh(self._clock()):
                del self._cache[key]
                self._misses += 1
                return None
            self._cache.move_to_end(key)  # LRU touch
            self._hits += 1
            return entry

    async def set(self, key: str, value: object, ttl: int) -> None:
        """Store a value for ``ttl`` milliseconds."""
        entry: CacheEntry[object] = CacheEntry(
            key=key, value=value, stored_at=self._clock(), ttl=ttl
        )
        async with self._lock:
            self._cache[key] = entry
            self._cache.move_to_end(key)
            self._sets += 1
            if self._max_items and len(self._cache) > self._max_items:
                self._cache.popitem(last=False)

    async def delete(self, key: str) -> None:
        """Delete a cache entry."""
        async with self._lock:
            if self._cache.pop(key, None) is not None:
                self._deletes += 1

    async def clear(self) -> None:
        """Clear all cached entries."""
        async with self._lock:
            self._cache.clear()

    async def disconnect(self) -> None:
        """Disconnect from the storage backend (no-op for memory)."""
        pass


class MemoryOfflineStore:
    """Offline store kept in process memory.

    Payloads are deep-copied on the way in and out so a stored payload stays
    exactly as it was when the fetch succeeded.
    """

    def __init__(
        self,
        *,
        online: bool = True,
        status: OnlineStatus | None = None,
    ) -> None:
        self._data: dict[str, Any] = {}
        self._status = status or OnlineStatus(online)
        self._lock = asyncio.Lock()

    @property
    def status(self) -> OnlineStatus:
        return self._status

    async def store(self, key: str, value: object) -> None:
        async with self._lock:
            self._data[key] = copy.deepcopy(value)

    async def retrieve(self, key: str) -> object | None:
        async with self._lock:
            if key not in self._data:
                return None
            return copy.deepcopy(self._data[key])

    def is_online(self) -> bool:
        return self._status.is_online()

    def set_online(self, online: bool) -> None:
        self._status.set_online(online)

    def add_listener(self, listener: Callable[[bool], Any]) -> Disposer:
        return self._status.add_listener(listener)
