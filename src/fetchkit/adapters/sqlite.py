"""SQLite-backed offline store for last-known-good payloads."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from fetchkit.duration import now_ms
from fetchkit.signals import OnlineStatus
from fetchkit.types import Disposer

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS offline_payloads (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    stored_at INTEGER NOT NULL
)
"""


class SqliteOfflineStore:
    """Durable offline store; payloads are kept as JSON rows.

    Blocking sqlite calls run in a worker thread so the event loop never
    stalls on disk I/O.
    """

    def __init__(
        self,
        path: str | Path = ":memory:",
        *,
        online: bool = True,
        status: OnlineStatus | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._path = str(path)
        self._status = status or OnlineStatus(online)
        self._clock = clock
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(self._path, check_same_thread=False)
        with self._lock, self._connection:
            self._connection.execute(_SCHEMA)

    @property
    def status(self) -> OnlineStatus:
        return self._status

    def _store(self, key: str, payload: str) -> None:
        with self._lock, self._connection:
            self._connection.execute(
                "INSERT OR REPLACE INTO offline_payloads (key, value, stored_at) "
                "VALUES (?, ?, ?)",
                (key, payload, self._clock()),
            )

    def _retrieve(self, key: str) -> str | None:
        with self._lock:
            row = self._connection.execute(
                "SELECT value FROM offline_payloads WHERE key = ?", (key,)
            ).fetchone()
        return None if row is None else row[0]

    async def store(self, key: str, value: object) -> None:
        payload = json.dumps(value)
        await asyncio.to_thread(self._store, key, payload)

    async def retrieve(self, key: str) -> object | None:
        payload = await asyncio.to_thread(self._retrieve, key)
        if payload is None:
            return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable offline payload for %s", key)
            return None

    async def delete(self, key: str) -> None:
        def _delete() -> None:
            with self._lock, self._connection:
                self._connection.execute(
                    "DELETE FROM offline_payloads WHERE key = ?", (key,)
                )

        await asyncio.to_thread(_delete)

    def is_online(self) -> bool:
        return self._status.is_online()

    def set_online(self, online: bool) -> None:
        self._status.set_online(online)

    def add_listener(self, listener: Callable[[bool], Any]) -> Disposer:
        return self._status.add_listener(listener)

    def close(self) -> None:
        with self._lock:
            self._connection.close()
