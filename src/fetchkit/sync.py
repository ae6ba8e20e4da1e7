"""BackgroundSyncController - periodic resynchronization with change detection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from fetchkit.adapters.base import AsyncCacheStore, AsyncOfflineStore
from fetchkit.duration import now_ms, parse_duration, to_seconds
from fetchkit.errors import FetchKitError, classify_error
from fetchkit.lifecycle import Controller, invoke_callback
from fetchkit.types import Duration, Status, SyncSubscription

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BackgroundSyncController(Controller, Generic[T]):
    """Keeps a value in sync with its source while the controller runs.

    Syncs once on ``start()``, then every ``sync_interval``, and again on
    reconnect when the last sync is older than the interval. Syncs are
    skipped while offline. ``on_data_change(new, old)`` fires when a
    previously held value is replaced by a different one.
    """

    def __init__(
        self,
        fetch_fn: Callable[[], Awaitable[T]],
        *,
        offline: AsyncOfflineStore,
        cache: AsyncCacheStore | None = None,
        cache_key: str | None = None,
        sync_interval: Duration = "30s",
        on_data_change: Callable[[T, T], Any] | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        interval = parse_duration(sync_interval)
        if interval <= 0:
            raise ValueError("sync_interval must be positive")
        if cache is not None and not cache_key:
            raise ValueError("cache_key is required when a cache is given")
        super().__init__()
        self._fetch_fn = fetch_fn
        self._offline = offline
        self._cache = cache
        self._cache_key = cache_key
        self._clock = clock
        self._subscription: SyncSubscription[T] = SyncSubscription(
            interval_ms=interval, on_change=on_data_change
        )
        self._data: T | None = None
        self._error: FetchKitError | None = None
        self._syncing = False
        self._loop: asyncio.Task[None] | None = None
        self._unlisten: Callable[[], None] | None = None

    @property
    def data(self) -> T | None:
        return self._data

    @property
    def error(self) -> FetchKitError | None:
        return self._error

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def running(self) -> bool:
        return self._loop is not None and not self._loop.done()

    @property
    def last_sync_at(self) -> int:
        return self._subscription.last_sync_at

    async def start(self) -> None:
        """Listen for reconnects, sync now and start the periodic loop."""
        self._ensure_active()
        if self.running:
            return
        self._unlisten = self._offline.add_listener(self._on_connectivity)
        await self.sync_now()
        if not self.disposed:
            self._loop = self._spawn(self._run())

    async def sync_now(self) -> bool:
        """Sync once. Returns True when the held value changed."""
        self._ensure_active()
        if self._syncing:
            logger.debug("Sync already running, skipping")
            return False
        if not self._offline.is_online():
            logger.debug("Offline, skipping sync")
            return False

        self._syncing = True
        self._status = Status.LOADING
        try:
            try:
                fresh = await self._fetch_fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self.disposed:
                    return False
                self._error = classify_error(exc)
                self._status = Status.ERROR
                logger.warning("Background sync failed: %s", self._error)
                return False

            if self.disposed:
                return False
            previous = self._data
            changed = previous is not None and fresh != previous
            self._data = fresh
            self._error = None
            self._subscription.last_sync_at = self._clock()
            self._status = Status.SUCCESS

            if self._cache is not None and self._cache_key:
                try:
                    await self._cache.set(
                        self._cache_key, fresh, 2 * self._subscription.interval_ms
                    )
                except Exception as exc:
                    logger.warning("Caching %s failed: %s", self._cache_key, exc)

            if changed:
                logger.debug("Background sync detected a change")
                await invoke_callback(
                    self._subscription.on_change,
                    fresh,
                    previous,
                    name="on_data_change",
                )
            return changed
        finally:
            self._syncing = False

    async def stop(self) -> None:
        """Stop the periodic loop and reconnect listener; ``start()`` resumes."""
        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None
        loop, self._loop = self._loop, None
        if loop is not None and loop is not asyncio.current_task():
            loop.cancel()
            await asyncio.gather(loop, return_exceptions=True)
        if not self.disposed and self._status is Status.LOADING:
            self._status = Status.IDLE

    async def dispose(self) -> None:
        if self.disposed:
            return
        await self.stop()
        await super().dispose()

    async def _run(self) -> None:
        interval = to_seconds(self._subscription.interval_ms)
        while not self.disposed:
            await asyncio.sleep(interval)
            await self.sync_now()

    def _on_connectivity(self, online: bool) -> None:
        if not online or self.disposed:
            return
        elapsed = self._clock() - self._subscription.last_sync_at
        if elapsed > self._subscription.interval_ms:
            logger.info("Back online after %dms, syncing", elapsed)
            self._spawn(self.sync_now())
