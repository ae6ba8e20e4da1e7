"""Tests for the HTTP remote store using mocked HTTP responses."""

import asyncio
import json

import pytest

# Skip all tests if httpx is not installed
pytest.importorskip("httpx")

import httpx
import respx

from fetchkit import (
    AsyncMemoryCacheStore,
    BatchOperation,
    DocumentRef,
    RateLimitError,
    RemoteValidationError,
    TransientNetworkError,
    order_by,
    where_equal,
)
from fetchkit.adapters.http import AsyncHttpRemoteStore

BASE = "https://api.test.dev"


@pytest.fixture
def store() -> AsyncHttpRemoteStore:
    """Create an AsyncHttpRemoteStore with fast retries."""
    return AsyncHttpRemoteStore(
        api_key="test-api-key", base_url=BASE, retries=2, retry_delay=1
    )


@pytest.fixture
def cached_store() -> AsyncHttpRemoteStore:
    """Create an AsyncHttpRemoteStore with a read cache."""
    return AsyncHttpRemoteStore(
        api_key="test-api-key",
        base_url=BASE,
        retry_delay=1,
        cache=AsyncMemoryCacheStore(),
    )


class TestReads:
    """Tests for document and collection reads."""

    @respx.mock
    async def test_get_document(self, store: AsyncHttpRemoteStore) -> None:
        """Test reading a document with bearer auth."""
        route = respx.get(f"{BASE}/v1/documents/posts/p1").mock(
            return_value=httpx.Response(
                200, json={"document": {"id": "p1", "title": "Hello"}}
            )
        )

        document = await store.get_document("posts", "p1")

        assert document == {"id": "p1", "title": "Hello"}
        request = route.calls[0].request
        assert request.headers["Authorization"] == "Bearer test-api-key"

    @respx.mock
    async def test_missing_document_is_none(self, store: AsyncHttpRemoteStore) -> None:
        respx.get(f"{BASE}/v1/documents/posts/nope").mock(
            return_value=httpx.Response(404, json={"error": "not found"})
        )
        assert await store.get_document("posts", "nope") is None

    @respx.mock
    async def test_server_error_is_retried(self, store: AsyncHttpRemoteStore) -> None:
        route = respx.get(f"{BASE}/v1/documents/posts/p1").mock(
            side_effect=[
                httpx.Response(503, json={"error": "unavailable"}),
                httpx.Response(200, json={"document": {"id": "p1"}}),
            ]
        )
        assert await store.get_document("posts", "p1") == {"id": "p1"}
        assert route.call_count == 2

    @respx.mock
    async def test_client_error_not_retried(self, store: AsyncHttpRemoteStore) -> None:
        route = respx.get(f"{BASE}/v1/documents/posts/p1").mock(
            return_value=httpx.Response(400, json={"error": "bad path"})
        )
        with pytest.raises(RemoteValidationError, match="bad path") as exc_info:
            await store.get_document("posts", "p1")
        assert exc_info.value.details == {"status_code": 400}
        assert route.call_count == 1

    @respx.mock
    async def test_rate_limit(self, store: AsyncHttpRemoteStore) -> None:
        respx.get(f"{BASE}/v1/documents/posts/p1").mock(
            return_value=httpx.Response(
                429, headers={"Retry-After": "0.01"}, json={"error": "slow down"}
            )
        )
        with pytest.raises(RateLimitError) as exc_info:
            await store.get_document("posts", "p1", retries=0)
        assert exc_info.value.retry_after == 0.01

    @respx.mock
    async def test_connection_error_is_transient(
        self, store: AsyncHttpRemoteStore
    ) -> None:
        route = respx.get(f"{BASE}/v1/documents/posts/p1").mock(
            side_effect=httpx.ConnectError("refused")
        )
        with pytest.raises(TransientNetworkError):
            await store.get_document("posts", "p1")
        assert route.call_count == 3

    @respx.mock
    async def test_get_collection_sends_constraints(
        self, store: AsyncHttpRemoteStore
    ) -> None:
        route = respx.post(f"{BASE}/v1/query").mock(
            return_value=httpx.Response(200, json={"documents": [{"id": "p1"}]})
        )

        documents = await store.get_collection(
            "posts", [where_equal("author", "u1"), order_by("created", "desc")]
        )

        assert documents == [{"id": "p1"}]
        body = json.loads(route.calls[0].request.content)
        assert body == {
            "collection": "posts",
            "constraints": [
                {"type": "where", "field": "author", "op": "==", "value": "u1"},
                {"type": "orderBy", "field": "created", "direction": "desc"},
            ],
        }

    @respx.mock
    async def test_paginated_collection(self, store: AsyncHttpRemoteStore) -> None:
        route = respx.post(f"{BASE}/v1/query").mock(
            return_value=httpx.Response(
                200,
                json={"documents": [{"id": "p3"}], "has_more": False, "cursor": "p3"},
            )
        )

        page = await store.get_paginated_collection("posts", 10, "p2")

        assert page.data == [{"id": "p3"}]
        assert page.has_more is False
        assert page.cursor == "p3"
        body = json.loads(route.calls[0].request.content)
        assert body["page_size"] == 10
        assert body["cursor"] == "p2"


class TestReadCache:
    """Tests for the optional read cache."""

    @respx.mock
    async def test_reads_are_cached_until_a_write(
        self, cached_store: AsyncHttpRemoteStore
    ) -> None:
        read = respx.get(f"{BASE}/v1/documents/posts/p1").mock(
            return_value=httpx.Response(200, json={"document": {"id": "p1"}})
        )
        respx.post(f"{BASE}/v1/batch").mock(return_value=httpx.Response(200))

        await cached_store.get_document("posts", "p1")
        await cached_store.get_document("posts", "p1")
        assert read.call_count == 1

        await cached_store.get_document("posts", "p1", use_cache=False)
        assert read.call_count == 2

        await cached_store.execute_batch(
            [BatchOperation("update", DocumentRef("posts", "p1"), {"a": 1})]
        )
        await cached_store.get_document("posts", "p1")
        assert read.call_count == 3


class TestSubscriptions:
    """Tests for server-sent event subscriptions."""

    @respx.mock
    async def test_collection_stream(self, store: AsyncHttpRemoteStore) -> None:
        stream = (
            'data: {"documents": [{"id": "p1"}]}\n\n'
            ": keep-alive\n\n"
            'data: {"documents": [{"id": "p1"}, {"id": "p2"}]}\n\n'
        )
        respx.post(f"{BASE}/v1/listen/query").mock(
            return_value=httpx.Response(200, text=stream)
        )
        pushes: list[list] = []

        dispose = store.subscribe_to_collection("posts", [], pushes.append)
        await asyncio.sleep(0.05)
        dispose()

        assert pushes == [[{"id": "p1"}], [{"id": "p1"}, {"id": "p2"}]]

    @respx.mock
    async def test_document_stream_error(self, store: AsyncHttpRemoteStore) -> None:
        respx.get(f"{BASE}/v1/listen/documents/posts/p1").mock(
            return_value=httpx.Response(500, json={"error": "boom"})
        )
        errors: list[Exception] = []

        store.subscribe_to_document("posts", "p1", lambda _: None, errors.append)
        await asyncio.sleep(0.05)

        assert len(errors) == 1
        assert isinstance(errors[0], TransientNetworkError)

    @respx.mock
    async def test_disconnect_cancels_streams(
        self, store: AsyncHttpRemoteStore
    ) -> None:
        respx.post(f"{BASE}/v1/listen/query").mock(
            return_value=httpx.Response(200, text="")
        )
        store.subscribe_to_collection("posts", [], lambda _: None)
        store.subscribe_to_collection("users", [], lambda _: None)

        await store.disconnect()

        assert not store._listen_tasks
        assert store._client.is_closed


class TestWrites:
    """Tests for batches and transactions."""

    @respx.mock
    async def test_execute_batch(self, store: AsyncHttpRemoteStore) -> None:
        route = respx.post(f"{BASE}/v1/batch").mock(return_value=httpx.Response(200))

        await store.execute_batch(
            [
                BatchOperation("set", DocumentRef("posts", "p1"), {"title": "T"}),
                BatchOperation("delete", DocumentRef("posts", "p2")),
            ]
        )

        body = json.loads(route.calls[0].request.content)
        assert body == {
            "operations": [
                {"type": "set", "path": "posts/p1", "data": {"title": "T"}},
                {"type": "delete", "path": "posts/p2", "data": None},
            ]
        }

    @respx.mock
    async def test_batch_not_retried(self, store: AsyncHttpRemoteStore) -> None:
        route = respx.post(f"{BASE}/v1/batch").mock(return_value=httpx.Response(503))
        with pytest.raises(TransientNetworkError):
            await store.execute_batch(
                [BatchOperation("delete", DocumentRef("posts", "p2"))]
            )
        assert route.call_count == 1

    @respx.mock
    async def test_transaction_reruns_on_conflict(
        self, store: AsyncHttpRemoteStore
    ) -> None:
        respx.post(f"{BASE}/v1/transactions").mock(
            side_effect=[
                httpx.Response(200, json={"transaction": "t1"}),
                httpx.Response(200, json={"transaction": "t2"}),
            ]
        )
        respx.get(
            f"{BASE}/v1/documents/accounts/a1", params={"transaction": "t1"}
        ).mock(
            return_value=httpx.Response(200, json={"document": {"id": "a1", "n": 1}})
        )
        respx.get(
            f"{BASE}/v1/documents/accounts/a1", params={"transaction": "t2"}
        ).mock(
            return_value=httpx.Response(200, json={"document": {"id": "a1", "n": 5}})
        )
        respx.post(f"{BASE}/v1/transactions/t1/commit").mock(
            return_value=httpx.Response(409, json={"error": "conflict"})
        )
        commit = respx.post(f"{BASE}/v1/transactions/t2/commit").mock(
            return_value=httpx.Response(200)
        )
        ref = DocumentRef("accounts", "a1")

        async def increment(tx) -> int:
            account = await tx.get(ref)
            tx.update(ref, {"n": account["n"] + 1})
            return account["n"] + 1

        assert await store.execute_transaction(increment) == 6
        body = json.loads(commit.calls[0].request.content)
        assert body == {
            "writes": [{"type": "update", "path": "accounts/a1", "data": {"n": 6}}]
        }

    @respx.mock
    async def test_transaction_failure_rolls_back(
        self, store: AsyncHttpRemoteStore
    ) -> None:
        respx.post(f"{BASE}/v1/transactions").mock(
            return_value=httpx.Response(200, json={"transaction": "t1"})
        )
        rollback = respx.post(f"{BASE}/v1/transactions/t1/rollback").mock(
            return_value=httpx.Response(200)
        )

        async def broken(tx) -> None:
            raise ValueError("invariant violated")

        with pytest.raises(ValueError):
            await store.execute_transaction(broken)
        assert rollback.call_count == 1
