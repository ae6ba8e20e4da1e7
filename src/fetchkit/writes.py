"""Atomic batch writes and transactions against the remote store."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from fetchkit.adapters.base import AsyncRemoteStore, Document, TransactionHandle
from fetchkit.errors import FetchKitError, classify_error
from fetchkit.types import BatchOperation, DocumentRef, Status

T = TypeVar("T")

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 500


class _WriteExecutor:
    """Shared loading/error/status bookkeeping for write executors."""

    def __init__(self, remote: AsyncRemoteStore) -> None:
        self._remote = remote
        self._active = 0
        self._error: FetchKitError | None = None
        self._status = Status.IDLE

    @property
    def loading(self) -> bool:
        return self._active > 0

    @property
    def error(self) -> FetchKitError | None:
        return self._error

    @property
    def status(self) -> Status:
        return self._status

    async def _run(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        self._active += 1
        self._error = None
        self._status = Status.LOADING
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._status = Status.IDLE
            raise
        except Exception as exc:
            error = classify_error(exc)
            self._error = error
            self._status = Status.ERROR
            logger.warning("%s failed: %s", description, error)
            if error is exc:
                raise
            raise error from exc
        finally:
            self._active -= 1
        self._status = Status.SUCCESS
        return result


class BatchExecutor(_WriteExecutor):
    """Submits set/update/delete operations as atomic batches.

    Failures are stored in ``error`` and re-raised; nothing is retried here.
    """

    async def execute_batch(self, operations: Sequence[BatchOperation]) -> None:
        """Apply every operation or none of them. An empty batch is a no-op."""
        if not operations:
            return
        if len(operations) > MAX_BATCH_SIZE:
            raise ValueError(
                f"A batch holds at most {MAX_BATCH_SIZE} operations, "
                f"got {len(operations)}; use bulk_write()"
            )
        await self._run(
            lambda: self._remote.execute_batch(list(operations)),
            f"Batch of {len(operations)} operations",
        )

    async def create(
        self,
        collection_path: str,
        data: Document,
        document_id: str | None = None,
    ) -> str:
        """Write a new document and return its id (a uuid4 when not given)."""
        doc_id = document_id or uuid.uuid4().hex
        await self.execute_batch(
            [BatchOperation("set", DocumentRef(collection_path, doc_id), data)]
        )
        return doc_id

    async def update(
        self, collection_path: str, document_id: str, data: Document
    ) -> None:
        await self.execute_batch(
            [BatchOperation("update", DocumentRef(collection_path, document_id), data)]
        )

    async def remove(self, collection_path: str, document_id: str) -> None:
        await self.execute_batch(
            [BatchOperation("delete", DocumentRef(collection_path, document_id))]
        )

    async def bulk_write(
        self,
        operations: Sequence[BatchOperation],
        *,
        chunk_size: int = MAX_BATCH_SIZE,
        concurrency: int = 3,
    ) -> int:
        """Write any number of operations as consecutive atomic chunks.

        Each chunk is atomic on its own; the whole write is not. At most
        ``concurrency`` chunks are in flight at once. Returns the number of
        chunks written.

        Raises:
            FetchKitError: The first chunk failure; chunks already written stay
        """
        if not 1 <= chunk_size <= MAX_BATCH_SIZE:
            raise ValueError(f"chunk_size must be between 1 and {MAX_BATCH_SIZE}")
        if concurrency < 1:
            raise ValueError("concurrency must be positive")
        chunks = [
            list(operations[i : i + chunk_size])
            for i in range(0, len(operations), chunk_size)
        ]
        if not chunks:
            return 0
        semaphore = asyncio.Semaphore(concurrency)

        async def write(chunk: list[BatchOperation]) -> None:
            async with semaphore:
                await self._remote.execute_batch(chunk)

        async def write_all() -> None:
            tasks = [asyncio.create_task(write(chunk)) for chunk in chunks]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        await self._run(write_all, f"Bulk write of {len(operations)} operations")
        logger.debug(
            "Bulk write of %d operations in %d chunks", len(operations), len(chunks)
        )
        return len(chunks)


class TransactionExecutor(_WriteExecutor):
    """Runs read-modify-write functions through the remote store's transaction.

    The store re-runs ``fn`` on write conflicts; this layer adds no retry.

    Usage:
        async def transfer(tx: TransactionHandle) -> None:
            account = await tx.get(ref)
            tx.update(ref, {"balance": account["balance"] - 10})

        await TransactionExecutor(remote).execute_transaction(transfer)
    """

    async def execute_transaction(
        self, fn: Callable[[TransactionHandle], Awaitable[T]]
    ) -> T:
        result: Any = await self._run(
            lambda: self._remote.execute_transaction(fn), "Transaction"
        )
        return result
