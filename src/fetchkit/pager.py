"""RemoteCollectionPager - cursor pagination or live results for a collection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import replace

from fetchkit.adapters.base import AsyncRemoteStore, Document
from fetchkit.duration import now_ms
from fetchkit.errors import FetchKitError, classify_error
from fetchkit.lifecycle import Controller
from fetchkit.query import build_constraints
from fetchkit.types import (
    Constraint,
    Disposer,
    PageState,
    QueryConstraint,
    SortSpec,
    Status,
)

logger = logging.getLogger(__name__)


class RemoteCollectionPager(Controller):
    """Pages through a remote collection, or follows it live.

    In one-shot mode ``load_next_page()`` appends the next page and advances
    the cursor. With ``enable_realtime`` the pager subscribes on ``start()``
    and every push replaces the held items; paging calls are then an error.

    Usage:
        async with RemoteCollectionPager(
            remote, "posts", order_by=[order_by("created", "desc")], page_size=10
        ) as posts:
            await posts.start()
            await posts.load_next_page()
    """

    def __init__(
        self,
        remote: AsyncRemoteStore,
        collection_path: str,
        *,
        filters: Iterable[QueryConstraint] = (),
        order_by: Iterable[SortSpec] = (),
        limit: int | None = None,
        page_size: int = 20,
        enable_realtime: bool = False,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        super().__init__()
        self._remote = remote
        self._collection_path = collection_path
        self._constraints: tuple[Constraint, ...] = build_constraints(
            filters, order_by, limit
        )
        self._realtime = enable_realtime
        self._clock = clock
        self._state: PageState[Document] = PageState(page_size=page_size)
        self._unsubscribe: Disposer | None = None
        self._generation = 0

    @property
    def state(self) -> PageState[Document]:
        return self._state

    @property
    def items(self) -> tuple[Document, ...]:
        return self._state.items

    @property
    def has_more(self) -> bool:
        return self._state.has_more

    @property
    def error(self) -> FetchKitError | None:
        return self._state.error

    @property
    def constraints(self) -> tuple[Constraint, ...]:
        return self._constraints

    @property
    def subscribed(self) -> bool:
        return self._unsubscribe is not None

    async def start(self) -> PageState[Document]:
        """Subscribe in realtime mode, otherwise load the first page."""
        self._ensure_active()
        if self._realtime:
            self._subscribe()
            return self._state
        if self._state.page == 0:
            await self.load_next_page()
        return self._state

    async def load_next_page(self) -> PageState[Document]:
        self._ensure_active()
        self._require_one_shot("load_next_page")
        state = self._state
        if state.loading or not state.has_more:
            return state

        generation = self._generation
        request = state.next_request
        self._set(replace(state, loading=True, error=None, status=Status.LOADING))
        try:
            result = await self._remote.get_paginated_collection(
                self._collection_path,
                request.page_size,
                request.cursor,
                self._constraints,
            )
        except asyncio.CancelledError:
            if generation == self._generation and not self.disposed:
                self._set(replace(self._state, loading=False, status=state.status))
            raise
        except Exception as exc:
            if generation != self._generation or self.disposed:
                return self._state
            error = classify_error(exc)
            logger.warning("Loading %s failed: %s", self._collection_path, error)
            self._set(
                replace(self._state, loading=False, error=error, status=Status.ERROR)
            )
            return self._state

        if generation != self._generation or self.disposed:
            return self._state

        has_more = result.has_more and len(result.data) >= state.page_size
        if state.cursor is not None and result.cursor == state.cursor:
            # Cursor did not advance
            has_more = False
        self._set(
            replace(
                self._state,
                items=self._state.items + tuple(result.data),
                cursor=result.cursor,
                has_more=has_more,
                page=state.page + 1,
                loading=False,
                status=Status.SUCCESS,
                last_updated_at=self._clock(),
            )
        )
        return self._state

    def reset(self) -> None:
        """Drop loaded pages and rewind the cursor."""
        self._ensure_active()
        self._require_one_shot("reset")
        self._generation += 1
        self._set(PageState(page_size=self._state.page_size))

    async def refetch(self) -> PageState[Document]:
        """Reload from the first page."""
        self.reset()
        return await self.load_next_page()

    async def dispose(self) -> None:
        if self.disposed:
            return
        self._generation += 1
        self._unsubscribe = None
        self._state = replace(self._state, loading=False, status=Status.STOPPED)
        await super().dispose()

    def _require_one_shot(self, operation: str) -> None:
        if self._realtime:
            raise RuntimeError(f"{operation}() is not available in realtime mode")

    def _set(self, state: PageState[Document]) -> None:
        self._state = state
        self._status = state.status

    def _subscribe(self) -> None:
        if self._unsubscribe is not None:
            return
        self._set(replace(self._state, loading=True, status=Status.LOADING))
        try:
            unsubscribe = self._remote.subscribe_to_collection(
                self._collection_path,
                self._constraints,
                self._on_data,
                self._on_error,
            )
        except Exception as exc:
            self._on_error(exc)
            return
        self._unsubscribe = unsubscribe
        self._on_dispose(unsubscribe)
        logger.debug("Subscribed to %s", self._collection_path)

    def _on_data(self, documents: list[Document]) -> None:
        if self.disposed:
            return
        self._set(
            replace(
                self._state,
                items=tuple(documents),
                has_more=False,
                loading=False,
                error=None,
                status=Status.SUCCESS,
                last_updated_at=self._clock(),
            )
        )

    def _on_error(self, exc: Exception) -> None:
        if self.disposed:
            return
        error = classify_error(exc)
        logger.warning("Subscription to %s failed: %s", self._collection_path, error)
        self._set(
            replace(self._state, loading=False, error=error, status=Status.ERROR)
        )
