"""Shared controller lifecycle: background tasks, disposers, generations."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from fetchkit.types import Disposer, Status

T = TypeVar("T")

logger = logging.getLogger(__name__)


class GenerationRegistry:
    """Issues monotonically increasing generations per logical key.

    Share one registry between controllers that write the same keys so that
    cache writes follow the most recently started fetch, not the most
    recently finished one.
    """

    def __init__(self) -> None:
        self._current: dict[str, int] = {}

    def advance(self, key: str) -> int:
        generation = self._current.get(key, 0) + 1
        self._current[key] = generation
        return generation

    def current(self, key: str) -> int:
        return self._current.get(key, 0)

    def is_current(self, key: str, generation: int) -> bool:
        return self._current.get(key, 0) == generation


async def invoke_callback(
    callback: Callable[..., Any] | None, *args: Any, name: str = "callback"
) -> None:
    """Call a sync or async user callback; failures are logged, not raised."""
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("%s failed", name)


class Controller:
    """Base class for stateful accessors.

    Tracks background tasks and disposers so that ``dispose()`` releases
    everything the controller acquired. Usable as an async context manager.
    """

    def __init__(self) -> None:
        self._status = Status.IDLE
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._disposers: list[Disposer] = []

    @property
    def status(self) -> Status:
        return self._status

    @property
    def disposed(self) -> bool:
        return self._status is Status.STOPPED

    def _ensure_active(self) -> None:
        if self.disposed:
            raise RuntimeError(f"{type(self).__name__} has been disposed")

    def _spawn(self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T]:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def _on_dispose(self, disposer: Disposer) -> None:
        self._disposers.append(disposer)

    def _run_disposers(self) -> None:
        disposers, self._disposers = self._disposers, []
        for disposer in reversed(disposers):
            try:
                disposer()
            except Exception:
                logger.exception("Disposer failed for %s", type(self).__name__)

    async def _cancel_background(self) -> None:
        current = asyncio.current_task()
        tasks = [t for t in self._background_tasks if t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def dispose(self) -> None:
        """Stop for good: cancel background work and run every disposer."""
        if self.disposed:
            return
        self._status = Status.STOPPED
        try:
            self._run_disposers()
        finally:
            await self._cancel_background()

    async def __aenter__(self: T) -> T:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()
