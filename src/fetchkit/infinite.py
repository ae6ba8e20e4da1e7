"""InfiniteQueryController - accumulate pages of a list resource."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any, Generic, TypeVar

from fetchkit.adapters.base import AsyncCacheStore
from fetchkit.duration import now_ms, parse_duration
from fetchkit.errors import CancellationError, FetchKitError, classify_error
from fetchkit.lifecycle import Controller
from fetchkit.types import Duration, PageResult, PageState, Status

T = TypeVar("T")

PageFn = Callable[[int, int], Awaitable[PageResult[T]]]

logger = logging.getLogger(__name__)


class InfiniteQueryController(Controller, Generic[T]):
    """Loads successive pages and appends their items.

    ``fetch_page(page, page_size)`` is called with a 1-based page number.
    Each successful page is cached under ``<cache_key>:page:<n>``; cached
    pages are reused until their ttl expires or ``invalidate_pages()`` runs.
    """

    def __init__(
        self,
        fetch_page: PageFn[T],
        *,
        cache: AsyncCacheStore | None = None,
        cache_key: str = "infinite",
        page_size: int = 20,
        page_ttl: Duration = "5m",
        enabled: bool = True,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        super().__init__()
        self._fetch_page = fetch_page
        self._cache = cache
        self._cache_key = cache_key
        self._page_ttl = parse_duration(page_ttl)
        self._enabled = enabled
        self._clock = clock
        self._state: PageState[T] = PageState(page_size=page_size)
        self._generation = 0

    @property
    def state(self) -> PageState[T]:
        return self._state

    @property
    def items(self) -> tuple[T, ...]:
        return self._state.items

    @property
    def has_more(self) -> bool:
        return self._state.has_more

    @property
    def error(self) -> FetchKitError | None:
        return self._state.error

    def page_key(self, page: int) -> str:
        return f"{self._cache_key}:page:{page}"

    async def start(self) -> PageState[T]:
        """Load the first page unless items are already held."""
        self._ensure_active()
        if not self._state.items and self._state.page == 0:
            await self.fetch_next_page()
        return self._state

    async def fetch_next_page(self) -> PageState[T]:
        self._ensure_active()
        state = self._state
        if not self._enabled or state.loading or not state.has_more:
            return state

        generation = self._generation
        page = state.page + 1
        self._state = replace(state, loading=True, error=None, status=Status.LOADING)
        self._status = Status.LOADING

        try:
            result = await self._load(page, state.page_size)
        except asyncio.CancelledError:
            if generation == self._generation and not self.disposed:
                self._state = replace(self._state, loading=False)
            raise
        except Exception as exc:
            error = classify_error(exc)
            if generation != self._generation or self.disposed:
                return self._state
            if isinstance(error, CancellationError):
                self._state = replace(self._state, loading=False)
                return self._state
            logger.warning(
                "Loading page %d of %s failed: %s", page, self._cache_key, error
            )
            self._state = replace(
                self._state, loading=False, error=error, status=Status.ERROR
            )
            self._status = Status.ERROR
            return self._state

        if generation != self._generation or self.disposed:
            logger.debug("Dropping page %d of %s after reset", page, self._cache_key)
            return self._state

        self._state = replace(
            self._state,
            items=self._state.items + tuple(result.data),
            cursor=result.cursor,
            has_more=result.has_more and len(result.data) >= state.page_size,
            page=page,
            loading=False,
            error=None,
            status=Status.SUCCESS,
            last_updated_at=self._clock(),
        )
        self._status = Status.SUCCESS
        return self._state

    def reset(self) -> None:
        """Forget every page; a page still loading is discarded when it lands."""
        self._ensure_active()
        self._generation += 1
        self._state = PageState(page_size=self._state.page_size)
        self._status = Status.IDLE

    async def invalidate_pages(self) -> None:
        """Delete the cached pages loaded so far."""
        if self._cache is None:
            return
        for page in range(1, self._state.page + 1):
            try:
                await self._cache.delete(self.page_key(page))
            except Exception as exc:
                logger.warning("Invalidating %s failed: %s", self.page_key(page), exc)

    async def dispose(self) -> None:
        if self.disposed:
            return
        self._generation += 1
        self._state = replace(self._state, loading=False, status=Status.STOPPED)
        await super().dispose()

    async def _load(self, page: int, page_size: int) -> PageResult[T]:
        key = self.page_key(page)
        if self._cache is not None:
            entry = await self._read_cache(key)
            if entry is not None:
                logger.debug("Page %s served from cache", key)
                return entry

        result = await self._fetch_page(page, page_size)
        if self._cache is not None:
            try:
                await self._cache.set(
                    key,
                    {
                        "data": list(result.data),
                        "has_more": result.has_more,
                        "cursor": result.cursor,
                    },
                    self._page_ttl,
                )
            except Exception as exc:
                logger.warning("Caching %s failed: %s", key, exc)
        return result

    async def _read_cache(self, key: str) -> PageResult[T] | None:
        assert self._cache is not None
        try:
            entry = await self._cache.get(key)
        except Exception as exc:
            logger.warning("Cache read for %s failed: %s", key, exc)
            return None
        if entry is None:
            return None
        cached: Any = entry.value
        return PageResult(
            data=list(cached["data"]),
            has_more=bool(cached["has_more"]),
            cursor=cached.get("cursor"),
        )
