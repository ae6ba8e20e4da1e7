"""Controllers for a single remote document and a whole remote collection."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any, Generic, TypeVar

from fetchkit.adapters.base import AsyncRemoteStore, Document
from fetchkit.duration import now_ms, parse_optional_duration
from fetchkit.errors import CancellationError, FetchKitError, classify_error
from fetchkit.lifecycle import Controller
from fetchkit.query import build_constraints
from fetchkit.types import (
    Constraint,
    Disposer,
    Duration,
    FetchState,
    QueryConstraint,
    SortSpec,
    Status,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


class _RemoteReadController(Controller, ABC, Generic[T]):
    """One-shot reads or a live subscription, sharing one state snapshot."""

    def __init__(
        self,
        *,
        enable_realtime: bool,
        use_cache: bool,
        retries: int | None,
        timeout: Duration | None,
        clock: Callable[[], int],
    ) -> None:
        if retries is not None and retries < 0:
            raise ValueError("retries must not be negative")
        super().__init__()
        self._realtime = enable_realtime
        self._use_cache = use_cache
        self._retries = retries
        self._timeout = parse_optional_duration(timeout)
        self._clock = clock
        self._state: FetchState[T] = FetchState()
        self._generation = 0
        self._unsubscribe: Disposer | None = None

    @property
    def state(self) -> FetchState[T]:
        return self._state

    @property
    def data(self) -> T | None:
        return self._state.data

    @property
    def error(self) -> FetchKitError | None:
        return self._state.error

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def last_updated_at(self) -> int | None:
        return self._state.last_fetched_at

    async def start(self) -> FetchState[T]:
        """Subscribe in realtime mode, otherwise read once."""
        self._ensure_active()
        if self._realtime:
            if self._unsubscribe is None:
                self._set(replace(self._state, loading=True, status=Status.LOADING))
                try:
                    unsubscribe = self._subscribe(self._on_data, self._on_error)
                except Exception as exc:
                    self._on_error(exc)
                    return self._state
                self._unsubscribe = unsubscribe
                self._on_dispose(unsubscribe)
            return self._state
        return await self._read_once()

    async def refetch(self) -> FetchState[T]:
        """Read again; a live subscription is already current, so this is a no-op."""
        self._ensure_active()
        if self._realtime:
            return self._state
        return await self._read_once()

    async def dispose(self) -> None:
        if self.disposed:
            return
        self._generation += 1
        self._unsubscribe = None
        self._state = replace(self._state, loading=False, status=Status.STOPPED)
        await super().dispose()

    async def _read_once(self) -> FetchState[T]:
        self._generation += 1
        generation = self._generation
        self._set(replace(self._state, loading=True, error=None, status=Status.LOADING))
        try:
            data = await self._read()
        except asyncio.CancelledError:
            if generation == self._generation and not self.disposed:
                self._set(replace(self._state, loading=False, status=Status.IDLE))
            raise
        except Exception as exc:
            if generation == self._generation and not self.disposed:
                self._fail(classify_error(exc))
            return self._state

        if generation == self._generation and not self.disposed:
            self._succeed(data)
        return self._state

    def _on_data(self, data: Any) -> None:
        if not self.disposed:
            self._succeed(data)

    def _on_error(self, exc: Exception) -> None:
        if not self.disposed:
            self._fail(classify_error(exc))

    def _succeed(self, data: T) -> None:
        self._set(
            FetchState(data=data, last_fetched_at=self._clock(), status=Status.SUCCESS)
        )

    def _fail(self, error: FetchKitError) -> None:
        if isinstance(error, CancellationError):
            self._set(replace(self._state, loading=False, status=Status.IDLE))
            return
        logger.warning("Reading %s failed: %s", self._describe(), error)
        self._set(replace(self._state, loading=False, error=error, status=Status.ERROR))

    def _set(self, state: FetchState[T]) -> None:
        self._state = state
        self._status = state.status

    @abstractmethod
    async def _read(self) -> T:
        """Read the resource once."""

    @abstractmethod
    def _subscribe(
        self,
        on_data: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ) -> Disposer:
        """Follow the resource; the returned callable stops following it."""

    @abstractmethod
    def _describe(self) -> str:
        """Resource path used in log messages."""


class DocumentController(_RemoteReadController[Document | None]):
    """Reads one document, or follows it live with ``enable_realtime``.

    A missing document is a successful read with ``data`` None.
    """

    def __init__(
        self,
        remote: AsyncRemoteStore,
        collection_path: str,
        document_id: str,
        *,
        enable_realtime: bool = False,
        use_cache: bool = True,
        retries: int | None = None,
        timeout: Duration | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(
            enable_realtime=enable_realtime,
            use_cache=use_cache,
            retries=retries,
            timeout=timeout,
            clock=clock,
        )
        self._remote = remote
        self._collection_path = collection_path
        self._document_id = document_id

    @property
    def exists(self) -> bool:
        return self._state.data is not None

    async def _read(self) -> Document | None:
        return await self._remote.get_document(
            self._collection_path,
            self._document_id,
            use_cache=self._use_cache,
            retries=self._retries,
            timeout=self._timeout,
        )

    def _subscribe(
        self,
        on_data: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ) -> Disposer:
        return self._remote.subscribe_to_document(
            self._collection_path, self._document_id, on_data, on_error
        )

    def _describe(self) -> str:
        return f"{self._collection_path}/{self._document_id}"


class CollectionController(_RemoteReadController[list[Document]]):
    """Reads every document of a query, or follows the query live."""

    def __init__(
        self,
        remote: AsyncRemoteStore,
        collection_path: str,
        *,
        filters: Iterable[QueryConstraint] = (),
        order_by: Iterable[SortSpec] = (),
        limit: int | None = None,
        enable_realtime: bool = False,
        use_cache: bool = True,
        retries: int | None = None,
        timeout: Duration | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(
            enable_realtime=enable_realtime,
            use_cache=use_cache,
            retries=retries,
            timeout=timeout,
            clock=clock,
        )
        self._remote = remote
        self._collection_path = collection_path
        self._constraints: tuple[Constraint, ...] = build_constraints(
            filters, order_by, limit
        )

    @property
    def constraints(self) -> tuple[Constraint, ...]:
        return self._constraints

    async def _read(self) -> list[Document]:
        return await self._remote.get_collection(
            self._collection_path,
            self._constraints,
            use_cache=self._use_cache,
            retries=self._retries,
            timeout=self._timeout,
        )

    def _subscribe(
        self,
        on_data: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ) -> Disposer:
        return self._remote.subscribe_to_collection(
            self._collection_path, self._constraints, on_data, on_error
        )

    def _describe(self) -> str:
        return self._collection_path
