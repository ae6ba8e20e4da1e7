"""Remote document store over a JSON HTTP API (httpx)."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar, cast

from fetchkit.adapters.base import AsyncCacheStore, Document
from fetchkit.duration import parse_duration
from fetchkit.errors import (
    FetchKitError,
    RateLimitError,
    RemoteValidationError,
    TransientNetworkError,
    classify_error,
)
from fetchkit.query import constraint_to_dict, constraints_key
from fetchkit.retry import call_with_retry
from fetchkit.types import (
    BatchOperation,
    Constraint,
    Disposer,
    DocumentRef,
    Duration,
    PageResult,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _operation_to_dict(operation: BatchOperation) -> dict[str, Any]:
    return {
        "type": operation.type,
        "path": operation.ref.path,
        "data": operation.data,
    }


def _error_for(response: Any) -> FetchKitError:
    """Map an unsuccessful httpx response to a structured error."""
    try:
        message = response.json().get("error", "Request failed")
    except Exception:
        message = f"HTTP {response.status_code}"
    details = {"status_code": response.status_code}
    status = response.status_code
    if status == 429:
        retry_after = response.headers.get("Retry-After")
        try:
            seconds = float(retry_after) if retry_after is not None else None
        except ValueError:
            seconds = None
        return RateLimitError(message, retry_after=seconds, details=details)
    if status == 408 or status >= 500:
        return TransientNetworkError(message, details)
    return RemoteValidationError(message, details)


class HttpTransaction:
    """Transaction handle bound to a server-side transaction id."""

    def __init__(self, store: AsyncHttpRemoteStore, transaction_id: str) -> None:
        self._store = store
        self.transaction_id = transaction_id
        self.writes: list[BatchOperation] = []

    async def get(self, ref: DocumentRef) -> Document | None:
        return await self._store._fetch_document(
            ref.collection_path, ref.id, params={"transaction": self.transaction_id}
        )

    def set(self, ref: DocumentRef, data: Document) -> None:
        self.writes.append(BatchOperation("set", ref, data))

    def update(self, ref: DocumentRef, data: Document) -> None:
        self.writes.append(BatchOperation("update", ref, data))

    def delete(self, ref: DocumentRef) -> None:
        self.writes.append(BatchOperation("delete", ref))


class AsyncHttpRemoteStore:
    """Async remote store speaking JSON over HTTP.

    Reads are retried with exponential backoff and bounded by a timeout;
    writes are never retried here. Live queries consume a server-sent event
    stream in a background task that the returned disposer cancels.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str = "http://localhost:8080",
        timeout: Duration = "15s",
        retries: int = 3,
        retry_delay: Duration = "1s",
        cache: AsyncCacheStore | None = None,
        document_ttl: Duration = "5m",
        collection_ttl: Duration = "3m",
        max_transaction_attempts: int = 5,
        client: Any = None,  # httpx.AsyncClient
    ) -> None:
        import httpx

        if retries < 0:
            raise ValueError("retries must not be negative")
        self._httpx = httpx
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=30.0
        )
        self._timeout = parse_duration(timeout)
        self._retries = retries
        self._retry_delay = parse_duration(retry_delay)
        self._cache = cache
        self._document_ttl = parse_duration(document_ttl)
        self._collection_ttl = parse_duration(collection_ttl)
        self._max_transaction_attempts = max_transaction_attempts
        self._cache_keys: dict[str, set[str]] = {}
        self._listen_tasks: set[asyncio.Task[None]] = set()

    async def _request(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a request to the remote API."""
        try:
            response = await self._client.request(
                method, endpoint, json=body, params=params
            )
        except self._httpx.TimeoutException as exc:
            raise TransientNetworkError(f"{method} {endpoint} timed out") from exc
        except self._httpx.TransportError as exc:
            raise TransientNetworkError(str(exc) or type(exc).__name__) from exc
        if not response.is_success:
            raise _error_for(response)
        if not response.content:
            return {}
        return cast(dict[str, Any], response.json())

    # -------------------------------------------------------------------------
    # Read cache
    # -------------------------------------------------------------------------

    async def _cached(
        self,
        use_cache: bool,
        collection_path: str,
        key: str,
        ttl: int,
        load: Callable[[], Awaitable[Any]],
    ) -> Any:
        if not use_cache or self._cache is None:
            return await load()
        entry = await self._cache.get(key)
        if entry is not None:
            logger.debug("Remote read cache hit for %s", key)
            return entry.value
        value = await load()
        await self._cache.set(key, value, ttl)
        self._cache_keys.setdefault(collection_path, set()).add(key)
        return value

    async def _invalidate(self, operations: Sequence[BatchOperation]) -> None:
        if self._cache is None:
            return
        for collection_path in {op.ref.collection_path for op in operations}:
            for key in self._cache_keys.pop(collection_path, set()):
                await self._cache.delete(key)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _fetch_document(
        self,
        collection_path: str,
        document_id: str,
        params: dict[str, Any] | None = None,
    ) -> Document | None:
        try:
            data = await self._request(
                "GET", f"/v1/documents/{collection_path}/{document_id}", params=params
            )
        except RemoteValidationError as exc:
            if exc.details.get("status_code") == 404:
                return None
            raise
        return cast("Document | None", data.get("document"))

    async def get_document(
        self,
        collection_path: str,
        document_id: str,
        *,
        use_cache: bool = True,
        retries: int | None = None,
        timeout: int | None = None,
    ) -> Document | None:
        async def load() -> Document | None:
            return await call_with_retry(
                lambda: self._fetch_document(collection_path, document_id),
                retries=self._retries if retries is None else retries,
                base_delay=self._retry_delay,
                timeout=self._timeout if timeout is None else timeout,
                description=f"get {collection_path}/{document_id}",
            )

        return cast(
            "Document | None",
            await self._cached(
                use_cache,
                collection_path,
                f"doc:{collection_path}/{document_id}",
                self._document_ttl,
                load,
            ),
        )

    async def get_collection(
        self,
        collection_path: str,
        constraints: Sequence[Constraint] = (),
        *,
        use_cache: bool = True,
        retries: int | None = None,
        timeout: int | None = None,
    ) -> list[Document]:
        body = {
            "collection": collection_path,
            "constraints": [constraint_to_dict(c) for c in constraints],
        }

        async def load() -> list[Document]:
            data = await call_with_retry(
                lambda: self._request("POST", "/v1/query", body),
                retries=self._retries if retries is None else retries,
                base_delay=self._retry_delay,
                timeout=self._timeout if timeout is None else timeout,
                description=f"query {collection_path}",
            )
            return cast(list[Document], data.get("documents", []))

        return cast(
            list[Document],
            await self._cached(
                use_cache,
                collection_path,
                f"collection:{collection_path}:{constraints_key(constraints)}",
                self._collection_ttl,
                load,
            ),
        )

    async def get_paginated_collection(
        self,
        collection_path: str,
        page_size: int,
        cursor: Any = None,
        constraints: Sequence[Constraint] = (),
    ) -> PageResult[Document]:
        body = {
            "collection": collection_path,
            "constraints": [constraint_to_dict(c) for c in constraints],
            "page_size": page_size,
            "cursor": cursor,
        }
        data = await call_with_retry(
            lambda: self._request("POST", "/v1/query", body),
            retries=self._retries,
            base_delay=self._retry_delay,
            timeout=self._timeout,
            description=f"page {collection_path}",
        )
        return PageResult(
            data=data.get("documents", []),
            has_more=bool(data.get("has_more", False)),
            cursor=data.get("cursor"),
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
        return self._listen(
            "GET",
            f"/v1/listen/documents/{collection_path}/{document_id}",
            None,
            lambda payload: payload.get("document"),
            on_data,
            on_error,
        )

    def subscribe_to_collection(
        self,
        collection_path: str,
        constraints: Sequence[Constraint],
        on_data: Callable[[list[Document]], Any],
        on_error: Callable[[Exception], Any] | None = None,
    ) -> Disposer:
        body = {
            "collection": collection_path,
            "constraints": [constraint_to_dict(c) for c in constraints],
        }
        return self._listen(
            "POST",
            "/v1/listen/query",
            body,
            lambda payload: payload.get("documents", []),
            on_data,
            on_error,
        )

    def _listen(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None,
        extract: Callable[[dict[str, Any]], Any],
        on_data: Callable[[Any], Any],
        on_error: Callable[[Exception], Any] | None,
    ) -> Disposer:
        async def run() -> None:
            try:
                async with self._client.stream(
                    method, endpoint, json=body, timeout=None
                ) as response:
                    if not response.is_success:
                        await response.aread()
                        raise _error_for(response)
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        on_data(extract(json.loads(line[5:].strip())))
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = classify_error(exc)
                if on_error is None:
                    logger.error("Live query %s failed: %s", endpoint, error)
                else:
                    on_error(error)

        task = asyncio.create_task(run())
        self._listen_tasks.add(task)
        task.add_done_callback(self._listen_tasks.discard)

        def dispose() -> None:
            task.cancel()

        return dispose

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def execute_batch(self, operations: Sequence[BatchOperation]) -> None:
        await self._request(
            "POST",
            "/v1/batch",
            {"operations": [_operation_to_dict(op) for op in operations]},
        )
        await self._invalidate(operations)

    async def execute_transaction(
        self, fn: Callable[[HttpTransaction], Awaitable[T]]
    ) -> T:
        for attempt in range(1, self._max_transaction_attempts + 1):
            begin = await self._request("POST", "/v1/transactions", {})
            transaction = HttpTransaction(self, str(begin["transaction"]))
            endpoint = f"/v1/transactions/{transaction.transaction_id}"
            try:
                result = await fn(transaction)
            except Exception:
                await self._rollback(endpoint)
                raise
            try:
                await self._request(
                    "POST",
                    f"{endpoint}/commit",
                    {"writes": [_operation_to_dict(op) for op in transaction.writes]},
                )
            except RemoteValidationError as exc:
                if exc.details.get("status_code") != 409:
                    raise
                logger.debug("Transaction attempt %d hit a write conflict", attempt)
                continue
            await self._invalidate(transaction.writes)
            return result
        raise TransientNetworkError(
            f"Transaction aborted after {self._max_transaction_attempts} "
            "conflicting attempts"
        )

    async def _rollback(self, endpoint: str) -> None:
        try:
            await self._request("POST", f"{endpoint}/rollback", {})
        except FetchKitError as exc:
            logger.warning("Rollback of %s failed: %s", endpoint, exc)

    async def disconnect(self) -> None:
        """Stop live queries and close the HTTP client."""
        for task in list(self._listen_tasks):
            task.cancel()
        if self._listen_tasks:
            await asyncio.gather(*self._listen_tasks, return_exceptions=True)
        await self._client.aclose()
