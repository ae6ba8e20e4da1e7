"""Redis cache store."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from fetchkit.duration import now_ms
from fetchkit.types import CacheEntry


def _serialize_entry(entry: CacheEntry[object]) -> str:
    """Serialize a cache entry to JSON."""
    return json.dumps(
        {
            "key": entry.key,
            "value": entry.value,
            "stored_at": entry.stored_at,
            "ttl": entry.ttl,
        }
    )


def _deserialize_entry(data: bytes | str) -> CacheEntry[object]:
    """Deserialize JSON to a cache entry."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    obj = json.loads(data)
    return CacheEntry(
        key=obj["key"],
        value=obj["value"],
        stored_at=obj["stored_at"],
        ttl=obj["ttl"],
    )


class AsyncRedisCacheStore:
    """Async Redis cache store; Redis expires entries on its own."""

    def __init__(
        self,
        client: Any,  # redis.asyncio.Redis
        *,
        prefix: str = "fetchkit",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._clock = clock

    def _cache_key(self, key: str) -> str:
        """Generate full Redis key for cache entries."""
        return f"{self._prefix}:cache:{key}"

    async def get(self, key: str) -> CacheEntry[object] | None:
        """Get a cache entry by key."""
        data = await self._client.get(self._cache_key(key))
        if data is None:
            return None
        return _deserialize_entry(data)

    async def set(self, key: str, value: object, ttl: int) -> None:
        """Store a value with automatic expiration."""
        if ttl <= 0:
            await self.delete(key)
            return
        entry: CacheEntry[object] = CacheEntry(
            key=key, value=value, stored_at=self._clock(), ttl=ttl
        )
        await self._client.set(self._cache_key(key), _serialize_entry(entry), px=ttl)

    async def delete(self, key: str) -> None:
        """Delete a cache entry."""
        await self._client.delete(self._cache_key(key))

    async def clear(self) -> None:
        """Clear all cached entries under this prefix."""
        # Use SCAN to find and delete all cache keys
        cursor: int = 0
        pattern = f"{self._prefix}:cache:*"
        while True:
            result = await self._client.scan(cursor, match=pattern, count=100)
            cursor = result[0]
            keys = result[1]
            if keys:
                await self._client.delete(*keys)
            if cursor == 0:
                break

    async def disconnect(self) -> None:
        """Close the Redis connection."""
        await self._client.aclose()
