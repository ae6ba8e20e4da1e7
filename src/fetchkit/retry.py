"""Timeout and exponential backoff helpers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Generator
from typing import Any, TypeVar

import backoff

from fetchkit.duration import to_seconds
from fetchkit.errors import (
    FetchKitError,
    RateLimitError,
    TransientNetworkError,
    classify_error,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


def backoff_delay(base_delay: int, attempt: int) -> int:
    """Delay in ms before retry number ``attempt`` (1-based)."""
    if attempt < 1:
        raise ValueError("attempt must be at least 1")
    return base_delay * 2 ** (attempt - 1)


def retry_wait(base_delay: int) -> Generator[float | None, Any, None]:
    """backoff wait generator: doubling delays in seconds, stretched by Retry-After."""
    error = yield None
    attempt = 1
    while True:
        delay = to_seconds(backoff_delay(base_delay, attempt))
        if isinstance(error, RateLimitError) and error.retry_after:
            delay = max(delay, error.retry_after)
        error = yield delay
        attempt += 1


async def with_timeout(awaitable: Awaitable[T], timeout: int | None) -> T:
    """Await with an optional timeout in ms; expiry is a transient failure."""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, to_seconds(timeout))
    except asyncio.TimeoutError as exc:
        raise TransientNetworkError(
            f"Timed out after {timeout}ms", {"timeout_ms": timeout}
        ) from exc


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int,
    base_delay: int,
    timeout: int | None = None,
    description: str = "operation",
) -> T:
    """Run ``operation`` retrying retryable failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        retries: Retries after the first attempt
        base_delay: Delay before the first retry in ms
        timeout: Per-attempt timeout in ms
        description: Used in log messages

    Returns:
        The first successful result

    Raises:
        FetchKitError: The classified failure once retries are exhausted
    """

    def log_retry(details: Any) -> None:
        logger.warning(
            "Retry %d/%d for %s in %.3fs: %s",
            details["tries"],
            retries,
            description,
            details["wait"],
            details["exception"],
        )

    @backoff.on_exception(
        retry_wait,
        FetchKitError,
        max_tries=retries + 1,
        giveup=lambda error: not error.retryable,
        jitter=None,
        on_backoff=log_retry,
        logger=None,
        base_delay=base_delay,
    )
    async def attempt() -> T:
        try:
            return await with_timeout(operation(), timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify_error(exc)
            if error is exc:
                raise
            raise error from exc

    return await attempt()
