"""Tracking engine — the single entry point the outside world talks to.

Wires the pipeline together:

    raw call -> normalize() -> SessionCorrelator -> merge -> PersistenceAdapter

and owns the durability policy. Every state change is computed in memory
first and then committed with one adapter.save() (one store write, so all
or nothing). If the write fails the in-memory state is kept, the engine
stays dirty, and the save is retried on the next event, tick or explicit
flush(). Nothing is discarded while the process lives.

No StoreError escapes the public methods; callers only ever see entries or
explicit "nothing happened" results.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from qctrack_core.config import DEFAULT_CONFIG, CorrelatorSettings
from qctrack_core.correlator import SessionCorrelator
from qctrack_core.events import LifecycleEvent, RawCall, normalize
from qctrack_core.merger import merge
from qctrack_core.query import EntryFilters, list_entries
from qctrack_store.adapter import LoadResult, PersistenceAdapter
from qctrack_store.base import BaseStore
from qctrack_store.errors import StoreError
from qctrack_store.models import (
    STATUS_CANCELED,
    STATUS_COMPLETED,
    TYPE_AUDIT,
    DashboardEntry,
    OffPlatformEntry,
    Session,
    StoreSnapshot,
)

logger = logging.getLogger(__name__)

_FINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELED)


def _now_ms() -> int:
    return int(time.time() * 1000)


class TrackingEngine:
    def __init__(
        self,
        store: BaseStore,
        settings: CorrelatorSettings | None = None,
        max_audit_entries: int = DEFAULT_CONFIG["max_audit_entries"],
        max_off_platform_entries: int = DEFAULT_CONFIG["max_off_platform_entries"],
        clock: Callable[[], int] = _now_ms,
    ):
        self._adapter = PersistenceAdapter(store)
        self._correlator = SessionCorrelator(settings)
        self._max_audit_entries = max_audit_entries
        self._max_off_platform_entries = max_off_platform_entries
        self._clock = clock
        self._audits: dict[str, DashboardEntry] = {}
        self._off_platform: dict[str, DashboardEntry] = {}
        self._dirty = False
        self.load_result: LoadResult = self.reload()

    @classmethod
    def open(cls, store: BaseStore, config: dict | None = None) -> TrackingEngine:
        """Build an engine from a config dict and rebuild its state from ``store``."""
        config = config or DEFAULT_CONFIG
        return cls(
            store,
            settings=CorrelatorSettings.from_config(config),
            max_audit_entries=int(config.get("max_audit_entries", DEFAULT_CONFIG["max_audit_entries"])),
            max_off_platform_entries=int(
                config.get("max_off_platform_entries", DEFAULT_CONFIG["max_off_platform_entries"])
            ),
        )

    # ------------------------------------------------------------------ #
    # State                                                                #
    # ------------------------------------------------------------------ #

    def reload(self) -> LoadResult:
        """Rebuild all in-memory state from the store (e.g. after a restart)."""
        result = self._adapter.load()
        self._correlator.restore(result.snapshot.sessions)
        self._audits = {}
        self._off_platform = {}
        self._absorb(result.snapshot.entries)
        if result.migrated_from is not None:
            # Write the upgraded layout back so the next load is a plain read.
            self._commit()
        return result

    @property
    def load_error(self) -> str | None:
        return self.load_result.error

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def sessions(self) -> list[Session]:
        return self._correlator.sessions

    def entries(self) -> list[DashboardEntry]:
        """The merged timeline, ordered by start time."""
        return merge(self._audits.values(), self._off_platform.values())

    def list_entries(self, filters: EntryFilters | None = None) -> list[DashboardEntry]:
        return list_entries(self.entries(), filters)

    # ------------------------------------------------------------------ #
    # Inputs                                                               #
    # ------------------------------------------------------------------ #

    def handle_call(self, raw_call: RawCall | dict) -> list[DashboardEntry]:
        """Feed one intercepted call. Irrelevant or malformed calls are ignored."""
        event = normalize(raw_call)
        if event is None:
            if self._dirty:
                self.flush()
            return []
        return self.handle_event(event)

    def handle_event(self, event: LifecycleEvent) -> list[DashboardEntry]:
        finalized = {k: e for k, e in self._audits.items() if e.status in _FINAL_STATUSES}
        produced = self._correlator.apply(event, finalized=finalized)
        self._absorb(produced)
        self._commit()
        return produced

    def tick(self, now: int | None = None) -> list[DashboardEntry]:
        """Timer wake-up: finalize sessions whose windows have elapsed."""
        produced = self._correlator.tick(self._clock() if now is None else now)
        if produced:
            self._absorb(produced)
            self._commit()
        elif self._dirty:
            self.flush()
        return produced

    def add_off_platform(self, entry: OffPlatformEntry) -> DashboardEntry:
        if not entry.timestamp:
            entry.timestamp = self._clock()
        dashboard_entry = entry.to_dashboard_entry()
        self._absorb([dashboard_entry])
        self._commit()
        logger.info("Off-platform time added: %s", entry.id)
        return dashboard_entry

    def delete_entry(self, entry_id: str) -> bool:
        """Delete an entry by id. Deleting a live audit also drops its session."""
        removed = self._off_platform.pop(entry_id, None) is not None
        if entry_id in self._audits:
            del self._audits[entry_id]
            self._correlator.discard(entry_id)
            removed = True
        if removed:
            self._commit()
        return removed

    def update_entry(self, entry_id: str, **changes) -> DashboardEntry | None:
        """Edit one entry in place. Returns the updated entry, or None for an unknown id.

        Finalized audits accept ``project_name``, ``max_time`` (seconds),
        ``description``, ``start_time`` and ``end_time`` (ms); the duration
        is recomputed from the times. Off-platform entries accept
        ``activity_type``, ``hours``, ``minutes``, ``date``, ``description``,
        ``project_id`` and ``project_name`` and are re-validated as a whole.
        Raises ValueError for any other field, for invalid values, and for
        audits still in flight.
        """
        if entry_id in self._off_platform:
            updated = _edit_off_platform(self._off_platform[entry_id], changes)
            self._off_platform[entry_id] = updated
        elif entry_id in self._audits:
            current = self._audits[entry_id]
            if current.status not in _FINAL_STATUSES:
                raise ValueError(f"Audit {entry_id} is still in flight and cannot be edited yet.")
            updated = _edit_audit(current, changes)
            self._audits[entry_id] = updated
        else:
            return None

        self._commit()
        logger.info("Entry updated: %s (%s)", entry_id, ", ".join(sorted(changes)))
        return updated

    def flush(self) -> bool:
        """Retry a pending save. Returns True when nothing is left unsaved."""
        if not self._dirty:
            return True
        return self._commit()

    # ------------------------------------------------------------------ #
    # Internals                                                            #
    # ------------------------------------------------------------------ #

    def _absorb(self, entries: Iterable[DashboardEntry]) -> None:
        new_audits = []
        new_off_platform = []
        for entry in entries:
            (new_audits if entry.type == TYPE_AUDIT else new_off_platform).append(entry)

        merged = merge([*self._audits.values(), *new_audits], [*self._off_platform.values(), *new_off_platform])
        self._audits = {e.qa_operation_id or e.id: e for e in merged if e.type == TYPE_AUDIT}
        self._off_platform = {e.id: e for e in merged if e.type != TYPE_AUDIT}
        self._prune()

    def _prune(self) -> None:
        """Retention: keep the newest N finalized audits and N off-platform entries."""
        finished = [e for e in self._audits.values() if e.status in _FINAL_STATUSES]
        excess = len(finished) - self._max_audit_entries
        if excess > 0:
            for entry in sorted(finished, key=lambda e: e.start_time)[:excess]:
                del self._audits[entry.qa_operation_id or entry.id]

        excess = len(self._off_platform) - self._max_off_platform_entries
        if excess > 0:
            for entry in sorted(self._off_platform.values(), key=lambda e: e.start_time)[:excess]:
                del self._off_platform[entry.id]

    def _commit(self) -> bool:
        self._dirty = True
        snapshot = StoreSnapshot(sessions=self._correlator.sessions, entries=self.entries())
        try:
            self._adapter.save(snapshot)
        except StoreError as e:
            logger.warning("Could not persist state, will retry (%s): %s", type(e).__name__, e)
            return False
        self._dirty = False
        return True


_AUDIT_FIELDS = frozenset({"project_name", "max_time", "description", "start_time", "end_time"})
_OFF_PLATFORM_FIELDS = frozenset(
    {"activity_type", "hours", "minutes", "date", "description", "project_id", "project_name"}
)
_MAX_TIME_LIMIT = 24 * 60 * 60


def _check_fields(changes: dict, allowed: frozenset, kind: str) -> None:
    if not changes:
        raise ValueError("Nothing to change.")
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValueError(f"Cannot edit {', '.join(unknown)} on {kind} entries.")


def _non_empty(value, label: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValueError(f"{label} cannot be empty.")
    return text


def _edit_audit(entry: DashboardEntry, changes: dict) -> DashboardEntry:
    _check_fields(changes, _AUDIT_FIELDS, "audit")
    updates: dict = {}

    if "project_name" in changes:
        updates["project_name"] = _non_empty(changes["project_name"], "Project name")
    if "description" in changes:
        updates["description"] = _non_empty(changes["description"], "Description")
    if "max_time" in changes:
        max_time = int(changes["max_time"])
        if not 0 < max_time <= _MAX_TIME_LIMIT:
            raise ValueError("Max time must be between 1 second and 24 hours.")
        updates["max_time"] = max_time

    if "start_time" in changes or "end_time" in changes:
        start = int(changes.get("start_time", entry.start_time))
        end = int(changes.get("end_time", entry.end_time if entry.end_time is not None else entry.range_end))
        if end < start:
            raise ValueError("End time must not be before start time.")
        updates.update(start_time=start, end_time=end, duration=end - start)

    return entry.evolve(**updates)


def _edit_off_platform(entry: DashboardEntry, changes: dict) -> DashboardEntry:
    _check_fields(changes, _OFF_PLATFORM_FIELDS, "off-platform")
    if "description" in changes:
        changes = {**changes, "description": _non_empty(changes["description"], "Description")}

    hours, minutes = divmod(entry.duration // 60_000, 60)
    fields = {
        "activity_type": entry.activity_type or "other",
        "hours": hours,
        "minutes": minutes,
        "date": entry.date,
        "description": entry.description or "",
        "project_id": entry.project_id,
        "project_name": entry.project_name,
        **changes,
    }
    if int(fields["minutes"]) > 59:
        raise ValueError("Minutes must be between 0 and 59.")
    edited = OffPlatformEntry(
        id=entry.id,
        activity_type=fields["activity_type"],
        hours=int(fields["hours"]),
        minutes=int(fields["minutes"]),
        date=fields["date"],
        description=fields["description"],
        timestamp=entry.observed_at,
        project_id=fields["project_id"],
        project_name=fields["project_name"],
    )
    if edited.duration <= 0:
        raise ValueError("Log at least one minute.")
    return edited.to_dashboard_entry()
