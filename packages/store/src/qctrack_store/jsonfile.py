"""JsonFileStore — zero-infrastructure local persistence in one JSON file.

Data format: a single JSON object mapping store keys to values, by default
in `.qctrack.json` in the current directory. The whole file is rewritten on
every set() through a temporary file and os.replace(), so a crash mid-write
leaves the previous contents intact.

A file that does not parse as a JSON object is reported as corrupt on read
and renamed to `<name>.corrupt` by the next set(), never overwritten.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from qctrack_store.base import BaseStore
from qctrack_store.errors import CorruptStoreError, StoreUnavailableError

logger = logging.getLogger(__name__)


class JsonFileStore(BaseStore):
    """Stores all keys in one JSON document on disk.

    Reads parse the full file — fine for the few thousand entries a single
    worker accumulates. Switch to SQLiteStore for anything larger.
    """

    def __init__(self, path: str = ".qctrack.json"):
        super().__init__()
        self._path = Path(path)

    @property
    def corrupt_path(self) -> Path:
        return self._path.with_name(self._path.name + ".corrupt")

    def get(self, key: str) -> Any | None:
        return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        try:
            data = self._read_all()
        except CorruptStoreError:
            self._quarantine()
            data = {}
        data[key] = value
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".qctrack-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, self._path)
            finally:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
        except (OSError, TypeError, ValueError) as e:
            raise StoreUnavailableError(f"Could not write {self._path}: {e}") from e
        self._notify(key, value)

    def _read_all(self) -> dict:
        """Read the current JSON object from disk, or return {} when there is no file."""
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            raise CorruptStoreError(
                f"{self._path} is not valid JSON ({e}); it will be moved to {self.corrupt_path} on the next save"
            ) from e
        except OSError as e:
            raise StoreUnavailableError(f"Could not read {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise CorruptStoreError(
                f"{self._path} holds a JSON {type(data).__name__}, not an object; "
                f"it will be moved to {self.corrupt_path} on the next save"
            )
        return data

    def _quarantine(self) -> None:
        try:
            os.replace(self._path, self.corrupt_path)
        except OSError as e:
            raise StoreUnavailableError(f"Could not move aside unreadable {self._path}: {e}") from e
        logger.warning("Moved unreadable store file %s to %s", self._path, self.corrupt_path)
