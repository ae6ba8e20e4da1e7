"""FetchController - single-resource fetch with caching and resilience.

Per fetch:
- cache-first lookup, served without a network call while younger than
  ``stale_time``
- a new generation that supersedes (and cancels) any attempt in flight
- bounded retries with exponential backoff and a per-call timeout
- offline fallback to the last complete payload
- write-through to the cache and offline stores
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

from fetchkit.adapters.base import AsyncCacheStore, AsyncOfflineStore
from fetchkit.duration import (
    now_ms,
    parse_duration,
    parse_optional_duration,
    to_seconds,
)
from fetchkit.errors import (
    CancellationError,
    FetchKitError,
    OfflineUnavailableError,
    RateLimitError,
    classify_error,
)
from fetchkit.lifecycle import Controller, GenerationRegistry, invoke_callback
from fetchkit.retry import backoff_delay, with_timeout
from fetchkit.signals import Signal
from fetchkit.types import CacheEntry, Disposer, Duration, FetchState, Status

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FetchOptions(Generic[T]):
    """Configuration for a FetchController."""

    enabled: bool = True
    cache_key: str | None = None  # defaults to the logical key
    cache_ttl: Duration = "5m"
    stale_time: Duration = 0
    retry_count: int = 3
    retry_delay: Duration = "1s"
    timeout: Duration | None = None
    refetch_on_focus: bool = False
    refetch_interval: Duration | None = None
    offline_fallback: bool = True
    on_success: Callable[[T], Any] | None = None
    on_error: Callable[[FetchKitError], Any] | None = None

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError("retry_count must not be negative")
        # Fail fast on malformed durations
        parse_duration(self.cache_ttl)
        parse_duration(self.stale_time)
        parse_duration(self.retry_delay)
        parse_optional_duration(self.timeout)
        interval = parse_optional_duration(self.refetch_interval)
        if interval == 0:
            raise ValueError("refetch_interval must be positive")

    @property
    def cache_ttl_ms(self) -> int:
        return parse_duration(self.cache_ttl)

    @property
    def stale_time_ms(self) -> int:
        return parse_duration(self.stale_time)

    @property
    def retry_delay_ms(self) -> int:
        return parse_duration(self.retry_delay)

    @property
    def timeout_ms(self) -> int | None:
        return parse_optional_duration(self.timeout)

    @property
    def refetch_interval_ms(self) -> int | None:
        return parse_optional_duration(self.refetch_interval)


class FetchController(Controller, Generic[T]):
    """Fetches one logical resource and keeps its state.

    Usage:
        async with FetchController(cache, offline) as users:
            await users.start("users", load_users, FetchOptions(stale_time="30s"))
            users.data  # latest value
            await users.refetch()
    """

    def __init__(
        self,
        cache: AsyncCacheStore,
        offline: AsyncOfflineStore,
        *,
        focus: Signal | None = None,
        generations: GenerationRegistry | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__()
        self._cache = cache
        self._offline = offline
        self._focus = focus
        self._generations = generations or GenerationRegistry()
        self._clock = clock
        self._key: str | None = None
        self._fetch_fn: Callable[[], Awaitable[T]] | None = None
        self._options: FetchOptions[T] = FetchOptions()
        self._state: FetchState[T] = FetchState()
        self._generation = 0
        self._inflight: asyncio.Task[None] | None = None
        self._triggers: list[Disposer] = []

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
    def generation(self) -> int:
        return self._generation

    @property
    def is_stale(self) -> bool:
        last = self._state.last_fetched_at
        if last is None:
            return True
        return self._clock() - last >= self._options.stale_time_ms

    @property
    def _cache_key(self) -> str:
        return self._options.cache_key or self._key or ""

    async def start(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        options: FetchOptions[T] | None = None,
    ) -> FetchState[T]:
        """Configure the controller for ``key`` and run the initial fetch.

        Calling start again reconfigures: triggers are re-armed and any
        attempt for the previous configuration is discarded.
        """
        self._ensure_active()
        self._teardown_triggers()
        self._supersede()
        if key != self._key:
            self._state = FetchState()
        self._key = key
        self._fetch_fn = fetch_fn
        self._options = options or FetchOptions()
        if not self._options.enabled:
            return self._state
        self._arm_triggers()
        return await self._fetch(force=False)

    async def refetch(self, force: bool = True) -> FetchState[T]:
        """Fetch again; ``force`` skips the cache lookup."""
        self._ensure_active()
        if self._key is None:
            raise RuntimeError("start() must be called before refetch()")
        return await self._fetch(force)

    async def dispose(self) -> None:
        if self.disposed:
            return
        self._teardown_triggers()
        self._state = replace(self._state, loading=False, status=Status.STOPPED)
        await super().dispose()

    # -------------------------------------------------------------------------
    # Fetch pipeline
    # -------------------------------------------------------------------------

    async def _fetch(self, force: bool) -> FetchState[T]:
        options = self._options
        if not options.enabled or self.disposed or self._fetch_fn is None:
            return self._state
        cache_key = self._cache_key

        entry = None if force else await self._read_cache(cache_key)
        if self.disposed:
            return self._state
        if entry is not None:
            age = entry.age(self._clock())
            if age < options.stale_time_ms:
                logger.debug("Serving %s from cache (age %dms)", cache_key, age)
                generation, _ = self._begin(cache_key)
                self._set_state(
                    generation,
                    FetchState(
                        data=entry.value,  # type: ignore[arg-type]
                        last_fetched_at=entry.stored_at,
                        status=Status.SUCCESS,
                    ),
                )
                return self._state

        generation, token = self._begin(cache_key)
        seed = self._state.data
        if seed is None and entry is not None:
            # Stale cached data is shown while the network call runs
            seed = entry.value  # type: ignore[assignment]
        self._set_state(
            generation,
            replace(
                self._state, data=seed, loading=True, error=None, status=Status.LOADING
            ),
        )

        task = self._spawn(
            self._run_attempts(generation, token, cache_key, self._fetch_fn, options)
        )
        self._inflight = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        return self._state

    async def _run_attempts(
        self,
        generation: int,
        token: int,
        cache_key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        options: FetchOptions[T],
    ) -> None:
        attempt = 0
        while True:
            try:
                data = await with_timeout(fetch_fn(), options.timeout_ms)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = classify_error(exc)
                if not self._is_current(generation):
                    return
                if isinstance(error, CancellationError):
                    logger.debug("Fetch of %s was aborted", cache_key)
                    self._set_state(
                        generation,
                        replace(self._state, loading=False, status=Status.IDLE),
                    )
                    return

                if options.offline_fallback and not self._offline.is_online():
                    await self._serve_offline(generation, cache_key, error, options)
                    return

                if error.retryable and attempt < options.retry_count:
                    attempt += 1
                    delay = backoff_delay(options.retry_delay_ms, attempt)
                    if isinstance(error, RateLimitError) and error.retry_after:
                        delay = max(delay, int(error.retry_after * 1000))
                    logger.warning(
                        "Fetch of %s failed, retry %d/%d in %dms: %s",
                        cache_key,
                        attempt,
                        options.retry_count,
                        delay,
                        error,
                    )
                    await asyncio.sleep(to_seconds(delay))
                    if not self._is_current(generation):
                        return
                    continue

                await self._fail(generation, error, options)
                return

            if not self._is_current(generation):
                return
            self._set_state(
                generation,
                FetchState(
                    data=data, last_fetched_at=self._clock(), status=Status.SUCCESS
                ),
            )
            if self._generations.is_current(cache_key, token):
                await self._write_through(cache_key, data, options)
            if self._is_current(generation):
                await invoke_callback(options.on_success, data, name="on_success")
            return

    async def _serve_offline(
        self,
        generation: int,
        cache_key: str,
        error: FetchKitError,
        options: FetchOptions[T],
    ) -> None:
        payload = await self._offline.retrieve(cache_key)
        if not self._is_current(generation):
            return
        if payload is None:
            unavailable = OfflineUnavailableError(cache_key)
            unavailable.__cause__ = error
            await self._fail(generation, unavailable, options)
            return
        logger.info("Offline, serving stored payload for %s", cache_key)
        # Not a fresh fetch, so last_fetched_at stays as it was
        self._set_state(
            generation,
            replace(
                self._state,
                data=payload,
                loading=False,
                error=None,
                status=Status.SUCCESS,
            ),
        )

    async def _fail(
        self, generation: int, error: FetchKitError, options: FetchOptions[T]
    ) -> None:
        logger.warning("Fetch of %s failed: %s", self._cache_key, error)
        self._set_state(
            generation,
            replace(self._state, loading=False, error=error, status=Status.ERROR),
        )
        await invoke_callback(options.on_error, error, name="on_error")

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _begin(self, cache_key: str) -> tuple[int, int]:
        """Start a new generation, superseding whatever is in flight."""
        self._supersede()
        self._generation += 1
        return self._generation, self._generations.advance(cache_key)

    def _supersede(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Superseding fetch generation %d", self._generation)
            self._inflight.cancel()
        self._inflight = None

    def _is_current(self, generation: int) -> bool:
        return not self.disposed and generation == self._generation

    def _set_state(self, generation: int, state: FetchState[T]) -> None:
        if not self._is_current(generation):
            return
        self._state = state
        self._status = state.status

    async def _read_cache(self, cache_key: str) -> CacheEntry[object] | None:
        try:
            return await self._cache.get(cache_key)
        except Exception as exc:
            logger.warning("Cache read for %s failed: %s", cache_key, exc)
            return None

    async def _write_through(
        self, cache_key: str, data: T, options: FetchOptions[T]
    ) -> None:
        try:
            await self._cache.set(cache_key, data, options.cache_ttl_ms)
            await self._offline.store(cache_key, data)
        except Exception as exc:
            logger.warning("Write-through for %s failed: %s", cache_key, exc)

    def _arm_triggers(self) -> None:
        options = self._options
        if options.refetch_on_focus and self._focus is not None:
            self._triggers.append(self._focus.subscribe(self._on_focus))
        interval = options.refetch_interval_ms
        if interval:
            task = self._spawn(self._interval_loop(interval))
            self._triggers.append(task.cancel)

    def _teardown_triggers(self) -> None:
        triggers, self._triggers = self._triggers, []
        for dispose in triggers:
            dispose()

    def _on_focus(self) -> None:
        if self.disposed or self._state.data is None:
            return
        logger.debug("Focus regained, refetching %s", self._cache_key)
        self._spawn(self._fetch(force=True))

    async def _interval_loop(self, interval: int) -> None:
        while not self.disposed:
            await asyncio.sleep(to_seconds(interval))
            await self._fetch(force=True)
