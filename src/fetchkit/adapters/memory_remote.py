"""In-memory remote document store.

Implements the full remote store contract against dictionaries: constraint
evaluation, cursor pagination, push listeners, atomic batches and
optimistic transactions. Used for tests and local development.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from fetchkit.adapters.base import Document
from fetchkit.errors import RemoteValidationError, TransientNetworkError
from fetchkit.query import apply_constraints
from fetchkit.types import (
    BatchOperation,
    Constraint,
    Disposer,
    DocumentRef,
    PageResult,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Listener:
    collection_path: str
    document_id: str | None
    constraints: tuple[Constraint, ...]
    on_data: Callable[[Any], Any]
    on_error: Callable[[Exception], Any] | None


class MemoryTransaction:
    """Transaction handle that records read versions and buffers writes."""

    def __init__(self, store: AsyncMemoryRemoteStore) -> None:
        self._store = store
        self.reads: dict[str, int] = {}
        self.writes: list[BatchOperation] = []

    async def get(self, ref: DocumentRef) -> Document | None:
        self.reads[ref.path] = self._store._versions.get(ref.path, 0)
        return self._store._snapshot(ref.collection_path, ref.id)

    def set(self, ref: DocumentRef, data: Document) -> None:
        self.writes.append(BatchOperation("set", ref, data))

    def update(self, ref: DocumentRef, data: Document) -> None:
        self.writes.append(BatchOperation("update", ref, data))

    def delete(self, ref: DocumentRef) -> None:
        self.writes.append(BatchOperation("delete", ref))


class AsyncMemoryRemoteStore:
    """Async in-memory implementation of the remote store protocol."""

    def __init__(self, *, max_transaction_attempts: int = 5) -> None:
        if max_transaction_attempts < 1:
            raise ValueError("max_transaction_attempts must be at least 1")
        self._collections: dict[str, dict[str, Document]] = {}
        self._versions: dict[str, int] = {}
        self._listeners: list[_Listener] = []
        self._max_transaction_attempts = max_transaction_attempts
        self._lock = asyncio.Lock()
        self.read_count = 0

    def seed(self, collection_path: str, documents: Iterable[Document]) -> None:
        """Load documents (each with an ``id``) without notifying listeners."""
        collection = self._collections.setdefault(collection_path, {})
        for document in documents:
            data = dict(document)
            doc_id = str(data.pop("id"))
            collection[doc_id] = copy.deepcopy(data)
            path = f"{collection_path}/{doc_id}"
            self._versions[path] = self._versions.get(path, 0) + 1

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_document(
        self,
        collection_path: str,
        document_id: str,
        *,
        use_cache: bool = True,
        retries: int | None = None,
        timeout: int | None = None,
    ) -> Document | None:
        self.read_count += 1
        return self._snapshot(collection_path, document_id)

    async def get_collection(
        self,
        collection_path: str,
        constraints: Sequence[Constraint] = (),
        *,
        use_cache: bool = True,
        retries: int | None = None,
        timeout: int | None = None,
    ) -> list[Document]:
        self.read_count += 1
        return self._query(collection_path, constraints)

    async def get_paginated_collection(
        self,
        collection_path: str,
        page_size: int,
        cursor: Any = None,
        constraints: Sequence[Constraint] = (),
    ) -> PageResult[Document]:
        if page_size < 1:
            raise RemoteValidationError("page_size must be positive")
        self.read_count += 1
        documents = self._query(collection_path, constraints)
        start = 0
        if cursor is not None:
            ids = [doc["id"] for doc in documents]
            if cursor not in ids:
                raise RemoteValidationError(
                    f"Unknown cursor {cursor!r} for {collection_path}"
                )
            start = ids.index(cursor) + 1

        # One extra document tells us whether another page exists
        window = documents[start : start + page_size + 1]
        page = window[:page_size]
        return PageResult(
            data=page,
            has_more=len(window) > page_size,
            cursor=page[-1]["id"] if page else cursor,
        )

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe_to_document(
        self,
        collection_path: str,
        document_id: str,
        on_data: Callable[[Document | None], Any],
        on_error: Callable[[Exception], Any] | None = None,
    ) -> Disposer:
        listener = _Listener(collection_path, document_id, (), on_data, on_error)
        return self._register(listener)

    def subscribe_to_collection(
        self,
        collection_path: str,
        constraints: Sequence[Constraint],
        on_data: Callable[[list[Document]], Any],
        on_error: Callable[[Exception], Any] | None = None,
    ) -> Disposer:
        listener = _Listener(
            collection_path, None, tuple(constraints), on_data, on_error
        )
        return self._register(listener)

    def _register(self, listener: _Listener) -> Disposer:
        self._listeners.append(listener)
        self._push(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    def _push(self, listener: _Listener) -> None:
        try:
            if listener.document_id is not None:
                payload: Any = self._snapshot(
                    listener.collection_path, listener.document_id
                )
            else:
                payload = self._query(listener.collection_path, listener.constraints)
            listener.on_data(payload)
        except Exception as exc:
            if listener.on_error is None:
                logger.exception("Listener on %s failed", listener.collection_path)
            else:
                listener.on_error(exc)

    def _notify(self, paths: set[str]) -> None:
        collections = {path.rsplit("/", 1)[0] for path in paths}
        for listener in list(self._listeners):
            if listener.collection_path not in collections:
                continue
            if (
                listener.document_id is not None
                and f"{listener.collection_path}/{listener.document_id}" not in paths
            ):
                continue
            self._push(listener)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def execute_batch(self, operations: Sequence[BatchOperation]) -> None:
        async with self._lock:
            self._validate(operations)
            paths = self._apply(operations)
        self._notify(paths)

    async def execute_transaction(
        self, fn: Callable[[MemoryTransaction], Awaitable[T]]
    ) -> T:
        for attempt in range(1, self._max_transaction_attempts + 1):
            transaction = MemoryTransaction(self)
            result = await fn(transaction)
            async with self._lock:
                conflicted = [
                    path
                    for path, version in transaction.reads.items()
                    if self._versions.get(path, 0) != version
                ]
                if not conflicted:
                    self._validate(transaction.writes)
                    paths = self._apply(transaction.writes)
                    break
            logger.debug(
                "Transaction attempt %d conflicted on %s", attempt, conflicted
            )
        else:
            raise TransientNetworkError(
                f"Transaction aborted after {self._max_transaction_attempts} "
                "conflicting attempts"
            )
        self._notify(paths)
        return result

    def _validate(self, operations: Sequence[BatchOperation]) -> None:
        # Presence of each touched path as the batch would leave it so far
        present: dict[str, bool] = {}
        for op in operations:
            path = op.ref.path
            exists = present.get(path)
            if exists is None:
                exists = self._exists(op.ref)
            if op.type == "update" and not exists:
                raise RemoteValidationError(
                    f"No document to update: {path}", {"path": path}
                )
            present[path] = op.type != "delete"

    def _apply(self, operations: Sequence[BatchOperation]) -> set[str]:
        paths: set[str] = set()
        for op in operations:
            collection = self._collections.setdefault(op.ref.collection_path, {})
            data = {k: v for k, v in (op.data or {}).items() if k != "id"}
            if op.type == "set":
                collection[op.ref.id] = copy.deepcopy(data)
            elif op.type == "update":
                collection[op.ref.id].update(copy.deepcopy(data))
            else:
                collection.pop(op.ref.id, None)
            self._versions[op.ref.path] = self._versions.get(op.ref.path, 0) + 1
            paths.add(op.ref.path)
        return paths

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _exists(self, ref: DocumentRef) -> bool:
        return ref.id in self._collections.get(ref.collection_path, {})

    def _snapshot(self, collection_path: str, document_id: str) -> Document | None:
        data = self._collections.get(collection_path, {}).get(document_id)
        if data is None:
            return None
        return {"id": document_id, **copy.deepcopy(data)}

    def _query(
        self, collection_path: str, constraints: Sequence[Constraint]
    ) -> list[Document]:
        documents = [
            {"id": doc_id, **copy.deepcopy(data)}
            for doc_id, data in self._collections.get(collection_path, {}).items()
        ]
        return apply_constraints(documents, constraints)
