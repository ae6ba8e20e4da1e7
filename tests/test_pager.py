"""Tests for RemoteCollectionPager."""

import asyncio

import pytest

from fetchkit import (
    AsyncMemoryRemoteStore,
    BatchOperation,
    DocumentRef,
    RemoteCollectionPager,
    RemoteValidationError,
    Status,
    TransientNetworkError,
    order_by,
    where_greater,
)


@pytest.fixture
def numbers() -> AsyncMemoryRemoteStore:
    """Remote store with 14 numbered documents."""
    store = AsyncMemoryRemoteStore()
    store.seed("numbers", [{"id": f"n{i:02d}", "value": i} for i in range(14)])
    return store


class TestOneShotPaging:
    """Tests for cursor pagination."""

    async def test_pages_accumulate(self, numbers, clock) -> None:
        pager = RemoteCollectionPager(
            numbers, "numbers", order_by=[order_by("value")], page_size=10, clock=clock
        )

        state = await pager.start()
        assert len(state.items) == 10
        assert state.has_more is True
        assert state.cursor == "n09"
        assert state.last_updated_at == clock.now

        state = await pager.load_next_page()
        assert [doc["value"] for doc in state.items] == list(range(14))
        assert state.has_more is False
        assert state.page == 2

        await pager.load_next_page()
        assert numbers.read_count == 2

    async def test_filters_and_descending_order(self, numbers) -> None:
        pager = RemoteCollectionPager(
            numbers,
            "numbers",
            filters=[where_greater("value", 9)],
            order_by=[order_by("value", "desc")],
            page_size=3,
        )
        await pager.start()
        await pager.load_next_page()
        assert [doc["value"] for doc in pager.items] == [13, 12, 11, 10]
        assert pager.has_more is False

    async def test_exact_page_size_has_no_more(self, remote) -> None:
        pager = RemoteCollectionPager(remote, "posts", page_size=3)
        state = await pager.start()
        assert len(state.items) == 3
        assert state.has_more is False

    async def test_reset_and_refetch(self, numbers) -> None:
        pager = RemoteCollectionPager(numbers, "numbers", page_size=5)
        await pager.start()
        await pager.load_next_page()
        pager.reset()
        assert pager.items == ()
        assert pager.state.cursor is None

        state = await pager.refetch()
        assert len(state.items) == 5
        assert state.page == 1

    async def test_error_is_stored(self, numbers) -> None:
        class Broken(AsyncMemoryRemoteStore):
            async def get_paginated_collection(self, *args, **kwargs):
                raise RemoteValidationError("missing index")

        pager = RemoteCollectionPager(Broken(), "numbers")
        state = await pager.start()
        assert isinstance(state.error, RemoteValidationError)
        assert state.status is Status.ERROR
        assert state.loading is False

    async def test_cancelled_load_can_be_retried(self) -> None:
        class Slow(AsyncMemoryRemoteStore):
            slow = True

            async def get_paginated_collection(self, *args, **kwargs):
                if self.slow:
                    await asyncio.sleep(1)
                return await super().get_paginated_collection(*args, **kwargs)

        store = Slow()
        store.seed("numbers", [{"id": f"n{i:02d}", "value": i} for i in range(14)])
        pager = RemoteCollectionPager(store, "numbers", page_size=10)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(pager.load_next_page(), 0.05)
        assert pager.state.loading is False
        assert pager.status is Status.IDLE

        store.slow = False
        state = await pager.load_next_page()
        assert len(state.items) == 10
        assert state.status is Status.SUCCESS

    def test_constraints_built_once(self, numbers) -> None:
        pager = RemoteCollectionPager(
            numbers,
            "numbers",
            filters=[where_greater("value", 1)],
            order_by=[order_by("value")],
            limit=5,
        )
        assert len(pager.constraints) == 3
        assert pager.constraints is pager.constraints


class TestRealtime:
    """Tests for subscription mode."""

    async def test_pushes_replace_items(self, remote, clock) -> None:
        pager = RemoteCollectionPager(
            remote,
            "posts",
            order_by=[order_by("likes")],
            enable_realtime=True,
            clock=clock,
        )
        await pager.start()
        assert [doc["id"] for doc in pager.items] == ["p1", "p3", "p2"]
        assert pager.subscribed

        clock.advance(50)
        await remote.execute_batch(
            [BatchOperation("set", DocumentRef("posts", "p4"), {"likes": 1})]
        )
        assert [doc["id"] for doc in pager.items] == ["p4", "p1", "p3", "p2"]
        assert pager.state.last_updated_at == clock.now

    async def test_paging_not_allowed(self, remote) -> None:
        pager = RemoteCollectionPager(remote, "posts", enable_realtime=True)
        with pytest.raises(RuntimeError, match="realtime"):
            await pager.load_next_page()
        with pytest.raises(RuntimeError, match="realtime"):
            pager.reset()

    async def test_subscribe_failure_is_structured(self) -> None:
        class Unreachable(AsyncMemoryRemoteStore):
            def subscribe_to_collection(self, *args, **kwargs):
                raise ConnectionError("refused")

        pager = RemoteCollectionPager(Unreachable(), "posts", enable_realtime=True)
        state = await pager.start()
        assert isinstance(state.error, TransientNetworkError)
        assert state.loading is False
        assert state.status is Status.ERROR
        assert not pager.subscribed
        await pager.dispose()

    async def test_dispose_unsubscribes(self, remote) -> None:
        async with RemoteCollectionPager(
            remote, "posts", enable_realtime=True
        ) as pager:
            await pager.start()
            assert remote.listener_count == 1

        assert remote.listener_count == 0
        assert pager.status is Status.STOPPED
