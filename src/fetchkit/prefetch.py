"""Anticipatory cache for data the application expects to need soon."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fetchkit.adapters.base import AsyncCacheStore
from fetchkit.duration import now_ms, parse_duration
from fetchkit.errors import classify_error
from fetchkit.types import CacheEntry, Duration

logger = logging.getLogger(__name__)


class PrefetchCache:
    """Application-scoped prefetch cache.

    Construct one per application and pass it to whoever prefetches. Values
    live in process memory; when a cache store is given, each prefetched
    value is mirrored into it under ``<prefix>:<key>``.

    Usage:
        prefetched = PrefetchCache(ttl="2m")
        await prefetched.prefetch("user:1", lambda: api.get_user(1))
        prefetched.get("user:1")
    """

    def __init__(
        self,
        cache: AsyncCacheStore | None = None,
        *,
        ttl: Duration = "5m",
        prefix: str = "prefetch",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._cache = cache
        self._ttl = parse_duration(ttl)
        self._prefix = prefix
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    async def prefetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        ttl: Duration | None = None,
    ) -> bool:
        """Fetch and hold a value. Failures are logged and reported as False."""
        ttl_ms = self._ttl if ttl is None else parse_duration(ttl)
        try:
            value = await fetch_fn()
        except Exception as exc:
            logger.warning("Prefetch of %s failed: %s", key, classify_error(exc))
            return False

        self._entries[key] = CacheEntry(
            key=key, value=value, stored_at=self._clock(), ttl=ttl_ms
        )
        if self._cache is not None:
            try:
                await self._cache.set(f"{self._prefix}:{key}", value, ttl_ms)
            except Exception as exc:
                logger.warning("Mirroring prefetch of %s failed: %s", key, exc)
        logger.debug("Prefetched %s for %dms", key, ttl_ms)
        return True

    def get(self, key: str) -> Any | None:
        """Return the value while it is within its ttl; expired entries are dropped."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def clear(self, key: str | None = None) -> None:
        """Drop one key, or everything when no key is given."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
