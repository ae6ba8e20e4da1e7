"""Protocols for the external collaborators: cache, offline and remote stores."""

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol, TypeVar, runtime_checkable

from fetchkit.types import (
    BatchOperation,
    CacheEntry,
    Constraint,
    Disposer,
    DocumentRef,
    PageResult,
)

T = TypeVar("T")

Document = dict[str, Any]


@runtime_checkable
class AsyncCacheStore(Protocol):
    """Key-value store with per-entry time-to-live."""

    async def get(self, key: str) -> CacheEntry[object] | None:
        """Get a live cache entry by key."""
        ...

    async def set(self, key: str, value: object, ttl: int) -> None:
        """Store a value for ``ttl`` milliseconds."""
        ...

    async def delete(self, key: str) -> None:
        """Delete a cache entry."""
        ...

    async def clear(self) -> None:
        """Clear all cached entries."""
        ...

    async def disconnect(self) -> None:
        """Disconnect from the storage backend."""
        ...


@runtime_checkable
class AsyncOfflineStore(Protocol):
    """Durable store of last-known-good payloads plus a connectivity signal."""

    async def store(self, key: str, value: object) -> None:
        """Persist a complete payload under a logical name."""
        ...

    async def retrieve(self, key: str) -> object | None:
        """Return the stored payload, or None."""
        ...

    def is_online(self) -> bool:
        """Current connectivity."""
        ...

    def add_listener(self, listener: Callable[[bool], Any]) -> Disposer:
        """Be told about online/offline transitions."""
        ...


@runtime_checkable
class TransactionHandle(Protocol):
    """Reads and buffered writes inside a remote transaction."""

    async def get(self, ref: DocumentRef) -> Document | None:
        ...

    def set(self, ref: DocumentRef, data: Document) -> None:
        ...

    def update(self, ref: DocumentRef, data: Document) -> None:
        ...

    def delete(self, ref: DocumentRef) -> None:
        ...


@runtime_checkable
class AsyncRemoteStore(Protocol):
    """Document/collection service with live queries and atomic writes."""

    async def get_document(
        self,
        collection_path: str,
        document_id: str,
        *,
        use_cache: bool = True,
        retries: int | None = None,
        timeout: int | None = None,
    ) -> Document | None:
        """Read a single document (``id`` included), or None if missing."""
        ...

    def subscribe_to_document(
        self,
        collection_path: str,
        document_id: str,
        on_data: Callable[[Document | None], Any],
        on_error: Callable[[Exception], Any] | None = None,
    ) -> Disposer:
        """Push every new version of a document until disposed."""
        ...

    async def get_collection(
        self,
        collection_path: str,
        constraints: Sequence[Constraint] = (),
        *,
        use_cache: bool = True,
        retries: int | None = None,
        timeout: int | None = None,
    ) -> list[Document]:
        """Read every document matching the constraints."""
        ...

    def subscribe_to_collection(
        self,
        collection_path: str,
        constraints: Sequence[Constraint],
        on_data: Callable[[list[Document]], Any],
        on_error: Callable[[Exception], Any] | None = None,
    ) -> Disposer:
        """Push the full matching result set on every change until disposed."""
        ...

    async def get_paginated_collection(
        self,
        collection_path: str,
        page_size: int,
        cursor: Any = None,
        constraints: Sequence[Constraint] = (),
    ) -> PageResult[Document]:
        """Read the page following ``cursor``."""
        ...

    async def execute_batch(self, operations: Sequence[BatchOperation]) -> None:
        """Apply every operation or none of them."""
        ...

    async def execute_transaction(
        self, fn: Callable[[TransactionHandle], Awaitable[T]]
    ) -> T:
        """Run ``fn`` atomically, re-running it on write conflicts."""
        ...
