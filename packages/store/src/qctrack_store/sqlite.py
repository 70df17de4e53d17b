"""SQLiteStore — local file-based store for long-running trackers.

Why SQLite as the durable store:
- Batteries included: ships with Python, no extra dependencies.
- Transactional writes: each set() commits or rolls back as a unit, which is
  exactly the all-or-nothing guarantee the engine needs per transition.
- Safe to share between a long-lived ingest process and ad-hoc CLI queries.

Schema:
  kv — one row per store key, value serialized as JSON text.

A value that no longer decodes is reported as corrupt on read and copied to
`<key>.corrupt` by the next set() of that key.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from qctrack_store.base import BaseStore
from qctrack_store.errors import CorruptStoreError, StoreUnavailableError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key         TEXT PRIMARY KEY,
    value_json  TEXT NOT NULL,
    updated_at  TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


class SQLiteStore(BaseStore):
    """Stores key-value state in a local SQLite database file.

    The database file path defaults to `.qctrack.db` in the current working
    directory. Configure via .qctrack.yml: `store_path: /path/to/qctrack.db`.
    """

    def __init__(self, db_path: str = ".qctrack.db"):
        super().__init__()
        try:
            self._conn = sqlite3.connect(db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Could not open {db_path}: {e}") from e

    def get(self, key: str) -> Any | None:
        try:
            row = self._conn.execute("SELECT value_json FROM kv WHERE key=?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Could not read key {key!r}: {e}") from e
        if row is None:
            return None
        try:
            return json.loads(row["value_json"])
        except json.JSONDecodeError as e:
            raise CorruptStoreError(
                f"Value under {key!r} is not valid JSON ({e}); it will be kept under {key}.corrupt on the next save"
            ) from e

    def set(self, key: str, value: Any) -> None:
        try:
            value_json = json.dumps(value)
            with self._conn:
                self._preserve_undecodable(key)
                self._conn.execute(
                    """
                    INSERT INTO kv (key, value_json, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                      value_json = excluded.value_json,
                      updated_at = excluded.updated_at
                    """,
                    (key, value_json),
                )
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise StoreUnavailableError(f"Could not write key {key!r}: {e}") from e
        self._notify(key, value)

    def _preserve_undecodable(self, key: str) -> None:
        """Copy an undecodable value under `key` aside before it is replaced."""
        row = self._conn.execute("SELECT value_json FROM kv WHERE key=?", (key,)).fetchone()
        if row is None:
            return
        try:
            json.loads(row["value_json"])
        except json.JSONDecodeError:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value_json) VALUES (?, ?)",
                (f"{key}.corrupt", row["value_json"]),
            )
            logger.warning("Kept undecodable value of %r under %r", key, f"{key}.corrupt")

    def close(self) -> None:
        self._conn.close()
