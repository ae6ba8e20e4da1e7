"""Tests for InfiniteQueryController."""

import asyncio

import pytest

from fetchkit import InfiniteQueryController, PageResult, RemoteValidationError, Status


def make_pages(total: int):
    """Page function over ``total`` numbered items that records its calls."""
    calls: list[tuple[int, int]] = []

    async def fetch_page(page: int, page_size: int) -> PageResult[int]:
        calls.append((page, page_size))
        start = (page - 1) * page_size
        data = list(range(start, min(start + page_size, total)))
        return PageResult(data=data, has_more=start + page_size < total, cursor=page)

    return fetch_page, calls


class TestInfiniteQuery:
    """Tests for page accumulation."""

    async def test_two_pages_accumulate(self) -> None:
        """Page size 10: 10 items then 4 items, 14 in total."""
        fetch_page, calls = make_pages(14)
        controller = InfiniteQueryController(fetch_page, page_size=10)

        state = await controller.start()
        assert len(state.items) == 10
        assert state.has_more is True

        state = await controller.fetch_next_page()
        assert len(state.items) == 14
        assert state.items == tuple(range(14))
        assert state.has_more is False
        assert state.page == 2
        assert calls == [(1, 10), (2, 10)]

        await controller.fetch_next_page()
        assert len(calls) == 2

    async def test_short_page_ends_even_if_store_says_more(self) -> None:
        async def fetch_page(page: int, page_size: int) -> PageResult[int]:
            return PageResult(data=[1, 2], has_more=True)

        controller = InfiniteQueryController(fetch_page, page_size=5)
        state = await controller.start()
        assert state.has_more is False

    async def test_start_does_not_reload(self) -> None:
        fetch_page, calls = make_pages(50)
        controller = InfiniteQueryController(fetch_page, page_size=10)
        await controller.start()
        await controller.start()
        assert len(calls) == 1

    async def test_no_overlapping_loads(self) -> None:
        release = asyncio.Event()
        calls = 0

        async def fetch_page(page: int, page_size: int) -> PageResult[int]:
            nonlocal calls
            calls += 1
            await release.wait()
            return PageResult(data=[page] * page_size, has_more=True)

        controller = InfiniteQueryController(fetch_page, page_size=2)
        first = asyncio.create_task(controller.fetch_next_page())
        await asyncio.sleep(0)
        assert controller.state.loading
        await controller.fetch_next_page()
        release.set()
        await first
        assert calls == 1

    async def test_disabled(self) -> None:
        fetch_page, calls = make_pages(10)
        controller = InfiniteQueryController(fetch_page, enabled=False)
        await controller.start()
        assert calls == []

    async def test_failure_is_classified(self) -> None:
        async def fetch_page(page: int, page_size: int) -> PageResult[int]:
            raise ValueError("bad cursor")

        controller = InfiniteQueryController(fetch_page)
        state = await controller.start()
        assert isinstance(state.error, RemoteValidationError)
        assert state.status is Status.ERROR
        assert state.loading is False
        assert state.items == ()

    async def test_reset_discards_inflight_page(self) -> None:
        release = asyncio.Event()

        async def fetch_page(page: int, page_size: int) -> PageResult[int]:
            await release.wait()
            return PageResult(data=[99], has_more=False)

        controller = InfiniteQueryController(fetch_page, page_size=1)
        task = asyncio.create_task(controller.fetch_next_page())
        await asyncio.sleep(0)
        controller.reset()
        release.set()
        await task

        assert controller.items == ()
        assert controller.state.page == 0
        assert controller.has_more is True
        assert controller.state.loading is False


class TestPageCache:
    """Tests for per-page caching."""

    async def test_pages_served_from_cache(self, cache) -> None:
        fetch_page, calls = make_pages(30)
        first = InfiniteQueryController(
            fetch_page, cache=cache, cache_key="feed", page_size=10
        )
        await first.start()
        await first.fetch_next_page()

        entry = await cache.get("feed:page:1")
        assert entry is not None
        assert entry.value["data"] == list(range(10))

        second = InfiniteQueryController(
            fetch_page, cache=cache, cache_key="feed", page_size=10
        )
        await second.start()
        await second.fetch_next_page()
        assert second.items == first.items
        assert len(calls) == 2

    async def test_page_ttl(self, cache, clock) -> None:
        fetch_page, calls = make_pages(30)
        controller = InfiniteQueryController(
            fetch_page, cache=cache, cache_key="feed", page_size=10, page_ttl=500
        )
        await controller.start()
        clock.advance(500)
        assert await cache.get("feed:page:1") is None

    async def test_invalidate_pages(self, cache) -> None:
        fetch_page, calls = make_pages(30)
        controller = InfiniteQueryController(
            fetch_page, cache=cache, cache_key="feed", page_size=10
        )
        await controller.start()
        await controller.fetch_next_page()
        await controller.invalidate_pages()

        assert await cache.get("feed:page:1") is None
        assert await cache.get("feed:page:2") is None

        controller.reset()
        await controller.start()
        assert len(calls) == 3


class TestLifecycle:
    """Tests for disposal and validation."""

    async def test_dispose(self) -> None:
        fetch_page, _ = make_pages(10)
        controller = InfiniteQueryController(fetch_page)
        await controller.dispose()
        assert controller.status is Status.STOPPED
        with pytest.raises(RuntimeError):
            await controller.fetch_next_page()

    def test_page_size_validated(self) -> None:
        fetch_page, _ = make_pages(10)
        with pytest.raises(ValueError):
            InfiniteQueryController(fetch_page, page_size=0)
