"""OfflineWriteQueue - batches written while offline, replayed on reconnect."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Any, cast

from fetchkit.adapters.base import AsyncOfflineStore, AsyncRemoteStore
from fetchkit.duration import now_ms, parse_duration, to_seconds
from fetchkit.errors import FetchKitError
from fetchkit.lifecycle import Controller
from fetchkit.signals import Signal
from fetchkit.types import (
    BatchOperation,
    Disposer,
    DocumentRef,
    Duration,
    QueuedWrite,
    WriteQueueStatus,
)
from fetchkit.writes import MAX_BATCH_SIZE, BatchExecutor

logger = logging.getLogger(__name__)


def encode_write(write: QueuedWrite) -> dict[str, Any]:
    """JSON-compatible form of a queued write, as persisted in the offline store."""
    return {
        "id": write.id,
        "queued_at": write.queued_at,
        "retry_count": write.retry_count,
        "max_retries": write.max_retries,
        "operations": [
            {
                "type": op.type,
                "collection_path": op.ref.collection_path,
                "id": op.ref.id,
                "data": op.data,
            }
            for op in write.operations
        ],
    }


def decode_write(data: dict[str, Any]) -> QueuedWrite:
    return QueuedWrite(
        id=data["id"],
        queued_at=data["queued_at"],
        retry_count=data.get("retry_count", 0),
        max_retries=data.get("max_retries", 3),
        operations=tuple(
            BatchOperation(
                op["type"], DocumentRef(op["collection_path"], op["id"]), op["data"]
            )
            for op in data["operations"]
        ),
    )


class OfflineWriteQueue(Controller):
    """Applies batches now when online, otherwise holds them until reconnect.

    Held batches are persisted through the offline store under
    ``storage_key`` so they survive a restart, and are replayed in the order
    they were written: when connectivity returns, every ``sync_interval``
    while batches are pending, and on ``flush()``. A batch the remote store
    rejects is dropped; a transient failure keeps it (and everything after
    it) queued until ``max_retries`` replays have failed.

    Usage:
        queue = OfflineWriteQueue(remote, offline)
        await queue.start()
        applied = await queue.write([BatchOperation("set", ref, {"title": "Draft"})])
    """

    def __init__(
        self,
        remote: AsyncRemoteStore,
        offline: AsyncOfflineStore,
        *,
        storage_key: str = "fetchkit:write-queue",
        max_retries: int = 3,
        sync_interval: Duration = "30s",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        super().__init__()
        self._executor = BatchExecutor(remote)
        self._offline = offline
        self._storage_key = storage_key
        self._max_retries = max_retries
        self._sync_interval = parse_duration(sync_interval)
        self._clock = clock
        self._queue: list[QueuedWrite] = []
        self._syncing = False
        self._last_sync_at: int | None = None
        self._started = False
        self._changed = Signal("write-queue")

    @property
    def pending(self) -> tuple[QueuedWrite, ...]:
        return tuple(self._queue)

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def executor(self) -> BatchExecutor:
        """Executor used for direct writes and replays; exposes the last error."""
        return self._executor

    @property
    def sync_status(self) -> WriteQueueStatus:
        return WriteQueueStatus(
            is_online=self._offline.is_online(),
            pending=len(self._queue),
            syncing=self._syncing,
            last_sync_at=self._last_sync_at,
        )

    def add_listener(self, listener: Callable[[WriteQueueStatus], Any]) -> Disposer:
        """Notify ``listener`` with a fresh status whenever the queue changes."""
        return self._changed.subscribe(listener)

    async def start(self) -> WriteQueueStatus:
        """Load persisted batches, watch connectivity, and replay if online."""
        self._ensure_active()
        if self._started:
            return self.sync_status
        self._started = True
        stored = await self._offline.retrieve(self._storage_key)
        if stored:
            items = cast(list[dict[str, Any]], stored)
            self._queue = [decode_write(item) for item in items]
            logger.info(
                "Loaded %d queued writes from %s", len(self._queue), self._storage_key
            )
        self._on_dispose(self._offline.add_listener(self._on_connectivity))
        self._spawn(self._run())
        if self._queue and self._offline.is_online():
            await self.flush()
        return self.sync_status

    async def write(
        self,
        operations: Sequence[BatchOperation],
        *,
        max_retries: int | None = None,
    ) -> bool:
        """Apply a batch now, or queue it. Returns whether it was applied now.

        Batches queue while offline, while earlier batches are still pending,
        and when a direct write fails transiently.

        Raises:
            FetchKitError: The remote store rejected the batch
        """
        self._ensure_active()
        if not self._started:
            raise RuntimeError("start() must be called before write()")
        if not operations:
            return True
        if len(operations) > MAX_BATCH_SIZE:
            raise ValueError(f"A batch holds at most {MAX_BATCH_SIZE} operations")

        online = self._offline.is_online()
        if online and not self._queue:
            try:
                await self._executor.execute_batch(operations)
                return True
            except FetchKitError as error:
                if not error.retryable:
                    raise
                logger.warning("Write failed, queueing for replay: %s", error)
                await self._enqueue(operations, max_retries or self._max_retries)
                return False

        await self._enqueue(operations, max_retries or self._max_retries)
        if online and not self._syncing:
            self._spawn(self.flush())
        return False

    async def flush(self) -> int:
        """Replay queued batches in order. Returns how many were applied.

        Does nothing while offline or while another replay runs.
        """
        if self._syncing or not self._queue or not self._offline.is_online():
            return 0
        self._syncing = True
        self._emit()
        applied = 0
        try:
            while self._queue and not self.disposed and self._offline.is_online():
                queued = self._queue[0]
                try:
                    await self._executor.execute_batch(queued.operations)
                except FetchKitError as error:
                    attempts = queued.retry_count + 1
                    if error.retryable and attempts < queued.max_retries:
                        self._queue = [
                            replace(q, retry_count=attempts) if q.id == queued.id else q
                            for q in self._queue
                        ]
                        logger.warning(
                            "Replay of %s failed (%d/%d): %s",
                            queued.id,
                            attempts,
                            queued.max_retries,
                            error,
                        )
                        # Later batches may depend on this one
                        break
                    logger.error("Dropping queued write %s: %s", queued.id, error)
                else:
                    applied += 1
                self._queue = [q for q in self._queue if q.id != queued.id]
        finally:
            self._syncing = False
            self._last_sync_at = self._clock()
            await self._persist()
            self._emit()
        if applied:
            logger.info("Replayed %d queued writes", applied)
        return applied

    async def clear(self) -> None:
        """Discard every queued batch."""
        self._queue = []
        await self._persist()
        self._emit()

    async def _enqueue(
        self, operations: Sequence[BatchOperation], max_retries: int
    ) -> None:
        self._queue.append(
            QueuedWrite(
                id=uuid.uuid4().hex,
                operations=tuple(operations),
                queued_at=self._clock(),
                max_retries=max_retries,
            )
        )
        await self._persist()
        self._emit()

    async def _persist(self) -> None:
        await self._offline.store(
            self._storage_key, [encode_write(queued) for queued in self._queue]
        )

    def _emit(self) -> None:
        self._changed.emit(self.sync_status)

    def _on_connectivity(self, online: bool) -> None:
        if self.disposed:
            return
        self._emit()
        if online and self._queue:
            logger.debug("Back online with %d queued writes", len(self._queue))
            self._spawn(self.flush())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(to_seconds(self._sync_interval))
            if self._queue and self._offline.is_online():
                await self.flush()
