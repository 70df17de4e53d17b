"""In-memory store — the default for tests and throwaway runs.

Nothing survives the process. Values are deep-copied on the way in and out
so callers can never mutate stored state behind the store's back.
"""

from __future__ import annotations

import copy
from typing import Any

from qctrack_store.base import BaseStore


class MemoryStore(BaseStore):
    """Keeps every key in a plain dict — zero configuration required."""

    def __init__(self):
        super().__init__()
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self._notify(key, value)
