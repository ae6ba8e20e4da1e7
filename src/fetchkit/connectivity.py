"""Connectivity detection by polling a health endpoint (httpx)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fetchkit.duration import parse_duration, to_seconds
from fetchkit.signals import OnlineStatus
from fetchkit.types import Duration

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Drives an OnlineStatus from periodic health checks.

    Polls every ``online_interval`` while online and every
    ``offline_interval`` while offline, so a reconnect is noticed quickly.
    Any 2xx/3xx answer within ``timeout`` counts as online.

    Usage:
        offline = MemoryOfflineStore()
        monitor = ConnectivityMonitor("https://api.example.com/health", offline.status)
        await monitor.start()
    """

    def __init__(
        self,
        url: str,
        status: OnlineStatus | None = None,
        *,
        online_interval: Duration = "30s",
        offline_interval: Duration = "10s",
        timeout: Duration = "5s",
        client: Any = None,  # httpx.AsyncClient
    ) -> None:
        import httpx

        self._httpx = httpx
        self._url = url
        self._status = status or OnlineStatus()
        self._online_interval = parse_duration(online_interval)
        self._offline_interval = parse_duration(offline_interval)
        self._timeout = parse_duration(timeout)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=to_seconds(self._timeout)
        )
        self._task: asyncio.Task[None] | None = None

    @property
    def status(self) -> OnlineStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check(self) -> bool:
        """Probe once and update the status. Returns whether we are online."""
        try:
            response = await self._client.get(
                self._url, timeout=to_seconds(self._timeout)
            )
            online = response.status_code < 400
        except self._httpx.HTTPError as exc:
            logger.debug("Health check against %s failed: %s", self._url, exc)
            online = False
        self._status.set_online(online)
        return online

    async def start(self) -> None:
        """Check immediately, then keep polling in the background."""
        if self.running:
            return
        await self.check()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        """Stop polling and close the HTTP client if we created it."""
        await self.stop()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ConnectivityMonitor:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _run(self) -> None:
        while True:
            interval = (
                self._online_interval
                if self._status.is_online()
                else self._offline_interval
            )
            await asyncio.sleep(to_seconds(interval))
            await self.check()
