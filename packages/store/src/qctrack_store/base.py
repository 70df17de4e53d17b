"""Abstract store interface.

Any storage backend (in-memory, JSON file, SQLite) implements this
key-value interface. The engine depends on BaseStore, not on a concrete
backend, so backends are swappable without touching engine or CLI code.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, Any], None]


class BaseStore(ABC):
    """Pluggable key-value persistence layer.

    Values are JSON-compatible objects. ``set`` must be all-or-nothing: a
    failed write leaves the previous value in place. Failures are raised as
    StoreError subclasses — callers decide whether to retry.
    """

    def __init__(self):
        self._listeners: list[ChangeListener] = []

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the value stored under key, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Replace the value stored under key."""

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, key: str, value: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, value)
            except Exception as e:
                # A broken listener must not turn a committed write into a failure.
                logger.warning("Store change listener failed (%s): %s", type(e).__name__, e)

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional — subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """
