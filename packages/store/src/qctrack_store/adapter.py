"""Persistence adapter — versioned (de)serialization of engine state.

The whole state lives under one store key as

    {"version": 2, "sessions": [...], "entries": [...]}

so each commit is a single set() and therefore all-or-nothing.

Version 1 is the layout written by the earlier browser-extension releases
(``completedTasks`` / ``offPlatformTime`` / ``currentTask`` with camelCase
fields); it is upgraded on load. Any other version is never guessed at:
load() falls back to an empty state, reports the problem in
LoadResult.error, and the next save() first copies the unrecognised value
to a backup key so it is never overwritten.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from qctrack_store.base import BaseStore
from qctrack_store.errors import CorruptStoreError, SchemaVersionError, StoreError
from qctrack_store.models import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING_TRANSITION,
    TYPE_AUDIT,
    DashboardEntry,
    OffPlatformEntry,
    Session,
    StoreSnapshot,
    int_or_none,
)

logger = logging.getLogger(__name__)

STATE_KEY = "qctrack_state"
SCHEMA_VERSION = 2
_LEGACY_VERSION = 1

# What a malformed record can raise while being decoded.
_DECODE_ERRORS = (KeyError, TypeError, ValueError, OverflowError)


@dataclass
class LoadResult:
    """Outcome of PersistenceAdapter.load().

    ``error`` is set when stored state could not be used and an empty state
    was substituted; ``migrated_from`` when an older schema was upgraded;
    ``backup_key`` names where an unrecognised state will be kept.
    """

    snapshot: StoreSnapshot = field(default_factory=StoreSnapshot)
    error: str | None = None
    migrated_from: int | None = None
    backup_key: str | None = None


class PersistenceAdapter:
    """Reads and writes StoreSnapshot objects through a BaseStore."""

    def __init__(self, store: BaseStore, key: str = STATE_KEY):
        self._store = store
        self._key = key
        self._pending_backup: tuple[str, object] | None = None

    def load(self) -> LoadResult:
        """Load the persisted snapshot. Never raises."""
        self._pending_backup = None
        try:
            raw = self._store.get(self._key)
        except CorruptStoreError as e:
            logger.warning("Persisted state is unreadable: %s", e)
            return LoadResult(error=f"Stored state is unreadable: {e}")
        except StoreError as e:
            logger.warning("Could not read persisted state (%s): %s", type(e).__name__, e)
            return LoadResult(error=f"Store unavailable: {e}")

        if raw is None:
            return LoadResult()

        try:
            version = self._detect_version(raw)
        except SchemaVersionError as e:
            backup_key = self._backup_key(e.version)
            self._pending_backup = (backup_key, raw)
            logger.warning("%s; starting from an empty state, previous state goes to %r", e, backup_key)
            return LoadResult(error=str(e), backup_key=backup_key)

        if version == _LEGACY_VERSION:
            logger.info("Upgrading persisted state from schema version %d", _LEGACY_VERSION)
            return LoadResult(snapshot=self._upgrade_v1(raw), migrated_from=_LEGACY_VERSION)

        return LoadResult(snapshot=self._decode(raw))

    def save(self, snapshot: StoreSnapshot) -> None:
        """Commit the snapshot. Raises StoreError on failure — the caller retries."""
        if self._pending_backup is not None:
            backup_key, raw = self._pending_backup
            self._store.set(backup_key, raw)
            logger.warning("Kept unrecognised state under %r", backup_key)
            self._pending_backup = None
        self._store.set(self._key, self.encode(snapshot))

    @staticmethod
    def encode(snapshot: StoreSnapshot) -> dict:
        return {
            "version": SCHEMA_VERSION,
            "sessions": [s.to_dict() for s in snapshot.sessions],
            "entries": [e.to_dict() for e in snapshot.entries],
        }

    def _backup_key(self, version) -> str:
        if isinstance(version, int) and not isinstance(version, bool):
            return f"{self._key}.v{version}.bak"
        return f"{self._key}.bak"

    @staticmethod
    def _detect_version(raw) -> int:
        if not isinstance(raw, dict):
            raise SchemaVersionError(type(raw).__name__)
        version = raw.get("version")
        if version is None and ("completedTasks" in raw or "offPlatformTime" in raw or "currentTask" in raw):
            return _LEGACY_VERSION
        if version in (_LEGACY_VERSION, SCHEMA_VERSION):
            return version
        raise SchemaVersionError(version)

    @staticmethod
    def _records(raw: dict, name: str) -> list:
        items = raw.get(name)
        if items is None:
            return []
        if not isinstance(items, list):
            logger.warning("Ignoring persisted %r: expected a list, got %s", name, type(items).__name__)
            return []
        return items

    @classmethod
    def _decode(cls, raw: dict) -> StoreSnapshot:
        snapshot = StoreSnapshot()
        for item in cls._records(raw, "sessions"):
            try:
                snapshot.sessions.append(Session.from_dict(item))
            except _DECODE_ERRORS as e:
                logger.warning("Dropping malformed persisted session: %s", e)
        for item in cls._records(raw, "entries"):
            try:
                snapshot.entries.append(DashboardEntry.from_dict(item))
            except _DECODE_ERRORS as e:
                logger.warning("Dropping malformed persisted entry: %s", e)
        return snapshot

    @classmethod
    def _upgrade_v1(cls, raw: dict) -> StoreSnapshot:
        snapshot = StoreSnapshot()

        for task in cls._records(raw, "completedTasks"):
            if not isinstance(task, dict) or not task.get("qaOperationId"):
                continue
            try:
                snapshot.entries.append(_legacy_task_entry(task))
            except _DECODE_ERRORS as e:
                logger.warning("Dropping malformed legacy task: %s", e)

        for item in cls._records(raw, "offPlatformTime"):
            try:
                entry = OffPlatformEntry(
                    id=str(item["id"]),
                    activity_type=item.get("type", "other"),
                    hours=int(item.get("hours") or 0),
                    minutes=int(item.get("minutes") or 0),
                    date=item["date"],
                    description=item.get("description", ""),
                    timestamp=int(item.get("timestamp") or 0),
                    project_id=item.get("projectId"),
                    project_name=item.get("projectName"),
                )
                snapshot.entries.append(entry.to_dashboard_entry())
            except _DECODE_ERRORS as e:
                logger.warning("Dropping malformed legacy off-platform entry: %s", e)

        current = raw.get("currentTask")
        if isinstance(current, dict) and current.get("qaOperationId") and current.get("startTime"):
            try:
                snapshot.sessions.append(_legacy_current_session(current))
            except _DECODE_ERRORS as e:
                logger.warning("Dropping malformed legacy current task: %s", e)

        return snapshot


def _legacy_task_entry(task: dict) -> DashboardEntry:
    qa_id = str(task["qaOperationId"])
    start = int(task.get("startTime") or 0)
    end_time = int_or_none(task.get("endTime"))
    return DashboardEntry(
        id=qa_id,
        type=TYPE_AUDIT,
        start_time=start,
        duration=max(int(task.get("duration") or 0), 0),
        status=task.get("status") or STATUS_COMPLETED,
        project_id=task.get("projectId") or None,
        project_name=task.get("projectName"),
        description=f"Operation ID: {qa_id}",
        qa_operation_id=qa_id,
        attempt_id=task.get("attemptId") or None,
        review_level=int_or_none(task.get("reviewLevel")),
        max_time=int_or_none(task.get("maxTime")),
        end_time=end_time,
        completion_time=int_or_none(task.get("completionTime")),
        transition_time=int_or_none(task.get("transitionTime")),
        observed_at=end_time or start,
    )


def _legacy_current_session(current: dict) -> Session:
    status = current.get("status")
    start = int(current["startTime"])
    return Session(
        qa_operation_id=str(current["qaOperationId"]),
        start_time=start,
        max_time=int(current.get("maxTime") or 0),
        status=status if status == STATUS_PENDING_TRANSITION else STATUS_IN_PROGRESS,
        attempt_id=current.get("attemptId") or None,
        review_level=int_or_none(current.get("reviewLevel")),
        project_id=current.get("projectId") or None,
        project_name=current.get("projectName"),
        completion_time=int_or_none(current.get("completionTime")),
        transition_time=int_or_none(current.get("transitionTime")),
        last_seen_at=start,
    )
