"""Store-layer exceptions.

Backends raise these instead of leaking sqlite3 / OSError details so the
engine can apply one retry policy regardless of which backend is configured.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for persistence failures."""


class StoreUnavailableError(StoreError):
    """The backing store could not be read or written (locked, full, missing)."""


class CorruptStoreError(StoreUnavailableError):
    """The backing store holds bytes that do not decode as JSON.

    Backends keep the undecodable data aside on the next write instead of
    overwriting it.
    """


class SchemaVersionError(StoreError):
    """Persisted state carries a schema version this build cannot interpret."""

    def __init__(self, version):
        super().__init__(f"Unsupported state schema version: {version!r}")
        self.version = version
