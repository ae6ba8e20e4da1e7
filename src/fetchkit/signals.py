"""Host notifications: focus regained, connectivity changes."""

import logging
from collections.abc import Callable
from typing import Any

from fetchkit.types import Disposer

logger = logging.getLogger(__name__)


class Signal:
    """A synchronous multi-listener notification."""

    def __init__(self, name: str = "signal") -> None:
        self._name = name
        self._listeners: list[Callable[..., Any]] = []

    def subscribe(self, listener: Callable[..., Any]) -> Disposer:
        """Register a listener; the returned callable unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, *args: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener for %s failed", self._name)

    def __len__(self) -> int:
        return len(self._listeners)


class OnlineStatus:
    """Online/offline flag that notifies listeners on transitions only."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._changed = Signal("online-status")

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        self._changed.emit(online)

    def add_listener(self, listener: Callable[[bool], Any]) -> Disposer:
        return self._changed.subscribe(listener)
