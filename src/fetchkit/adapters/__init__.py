"""Reference adapters for the cache, offline and remote stores (async only)."""

from contextlib import suppress

from fetchkit.adapters.base import (
    AsyncCacheStore,
    AsyncOfflineStore,
    AsyncRemoteStore,
    Document,
    TransactionHandle,
)
from fetchkit.adapters.memory import AsyncMemoryCacheStore, MemoryOfflineStore
from fetchkit.adapters.memory_remote import AsyncMemoryRemoteStore, MemoryTransaction
from fetchkit.adapters.sqlite import SqliteOfflineStore

# Optional adapters - only available when dependencies are installed
with suppress(ImportError):
    from fetchkit.adapters.redis import AsyncRedisCacheStore

with suppress(ImportError):
    from fetchkit.adapters.http import AsyncHttpRemoteStore, HttpTransaction

__all__ = [
    "AsyncCacheStore",
    "AsyncHttpRemoteStore",
    "AsyncMemoryCacheStore",
    "AsyncMemoryRemoteStore",
    "AsyncOfflineStore",
    "AsyncRedisCacheStore",
    "AsyncRemoteStore",
    "Document",
    "HttpTransaction",
    "MemoryOfflineStore",
    "MemoryTransaction",
    "SqliteOfflineStore",
    "TransactionHandle",
]
