"""Tests for the versioned persistence adapter."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from qctrack_store.adapter import SCHEMA_VERSION, STATE_KEY, PersistenceAdapter
from qctrack_store.base import BaseStore
from qctrack_store.errors import CorruptStoreError, StoreUnavailableError
from qctrack_store.memory import MemoryStore
from qctrack_store.models import (
    STATUS_PENDING_TRANSITION,
    TYPE_AUDIT,
    TYPE_OFF_PLATFORM,
    DashboardEntry,
    Session,
    StoreSnapshot,
)


def _make_snapshot():
    return StoreSnapshot(
        sessions=[Session(qa_operation_id="op-live", start_time=1_000, max_time=1800, last_seen_at=2_000)],
        entries=[
            DashboardEntry(
                id="op-done",
                type=TYPE_AUDIT,
                start_time=10_000,
                duration=60_000,
                status="completed",
                qa_operation_id="op-done",
                max_time=1800,
                end_time=70_000,
                observed_at=70_000,
            )
        ],
    )


# ---------------------------------------------------------------------------
# Current schema
# ---------------------------------------------------------------------------


class TestSaveAndLoad:
    def test_empty_store_loads_empty_snapshot(self):
        result = PersistenceAdapter(MemoryStore()).load()
        assert result.snapshot.sessions == []
        assert result.snapshot.entries == []
        assert result.error is None
        assert result.migrated_from is None

    def test_roundtrip(self):
        adapter = PersistenceAdapter(MemoryStore())
        adapter.save(_make_snapshot())

        result = adapter.load()
        assert result.error is None
        assert result.snapshot.sessions[0].qa_operation_id == "op-live"
        assert result.snapshot.entries[0].end_time == 70_000

    def test_save_is_one_write_under_state_key(self):
        store = MagicMock(spec=BaseStore)
        PersistenceAdapter(store).save(_make_snapshot())

        store.set.assert_called_once()
        key, value = store.set.call_args.args
        assert key == STATE_KEY
        assert value["version"] == SCHEMA_VERSION

    def test_save_propagates_store_errors(self):
        store = MagicMock(spec=BaseStore)
        store.set.side_effect = StoreUnavailableError("locked")
        with pytest.raises(StoreUnavailableError):
            PersistenceAdapter(store).save(_make_snapshot())

    def test_malformed_items_dropped(self):
        store = MemoryStore()
        store.set(
            STATE_KEY,
            {
                "version": 2,
                "sessions": [{"start_time": 1}, {"qa_operation_id": "ok", "start_time": 5, "max_time": 60}],
                "entries": [{"type": "audit"}, {"id": "e1", "start_time": 1, "duration": -5}],
            },
        )
        snapshot = PersistenceAdapter(store).load().snapshot
        assert [s.qa_operation_id for s in snapshot.sessions] == ["ok"]
        assert [e.id for e in snapshot.entries] == ["e1"]
        assert snapshot.entries[0].duration == 0

    def test_non_list_sections_are_skipped(self):
        store = MemoryStore()
        store.set(STATE_KEY, {"version": 2, "sessions": 5, "entries": {"id": "e1"}})

        result = PersistenceAdapter(store).load()

        assert result.error is None
        assert result.snapshot.sessions == []
        assert result.snapshot.entries == []

    @pytest.mark.parametrize(
        "field, value",
        [("last_seen_at", "x"), ("completion_time", [1]), ("review_level", "two"), ("start_time", float("inf"))],
    )
    def test_session_with_bad_number_is_dropped(self, field, value):
        store = MemoryStore()
        good = {"qa_operation_id": "ok", "start_time": 5, "max_time": 60}
        store.set(STATE_KEY, {"version": 2, "sessions": [{**good, "qa_operation_id": "bad", field: value}, good]})

        snapshot = PersistenceAdapter(store).load().snapshot

        assert [s.qa_operation_id for s in snapshot.sessions] == ["ok"]

    def test_entry_optional_numbers_are_coerced(self):
        store = MemoryStore()
        store.set(
            STATE_KEY,
            {
                "version": 2,
                "entries": [
                    {"id": "e1", "max_time": "1800", "end_time": 70_000.0},
                    {"id": "e2", "end_time": "later"},
                ],
            },
        )
        [entry] = PersistenceAdapter(store).load().snapshot.entries
        assert entry.max_time == 1800
        assert entry.end_time == 70_000


# ---------------------------------------------------------------------------
# Unusable state
# ---------------------------------------------------------------------------


class TestLoadFailures:
    def test_unknown_version_gives_empty_state_and_error(self):
        store = MemoryStore()
        store.set(STATE_KEY, {"version": 99, "entries": [{"id": "x"}]})

        result = PersistenceAdapter(store).load()

        assert result.snapshot.entries == []
        assert "99" in result.error

    def test_non_object_state_gives_error(self):
        store = MemoryStore()
        store.set(STATE_KEY, ["not", "an", "object"])
        result = PersistenceAdapter(store).load()
        assert result.error is not None
        assert result.snapshot.entries == []

    def test_unavailable_store_gives_error_not_exception(self):
        store = MagicMock(spec=BaseStore)
        store.get.side_effect = StoreUnavailableError("database is locked")

        result = PersistenceAdapter(store).load()

        assert result.error.startswith("Store unavailable")
        assert result.snapshot.sessions == []

    def test_corrupt_store_gives_error_not_exception(self):
        store = MagicMock(spec=BaseStore)
        store.get.side_effect = CorruptStoreError("state.json is not valid JSON")

        result = PersistenceAdapter(store).load()

        assert result.error.startswith("Stored state is unreadable")
        assert result.snapshot.entries == []

    def test_unknown_version_is_backed_up_before_first_save(self):
        store = MemoryStore()
        newer = {"version": 9, "payload": {"kept": True}}
        store.set(STATE_KEY, newer)
        adapter = PersistenceAdapter(store)

        result = adapter.load()
        assert result.backup_key == "qctrack_state.v9.bak"

        adapter.save(StoreSnapshot())

        assert store.get("qctrack_state.v9.bak") == newer
        assert store.get(STATE_KEY)["version"] == SCHEMA_VERSION

    def test_backup_written_once(self):
        store = MagicMock(spec=BaseStore)
        store.get.return_value = {"version": 9}
        adapter = PersistenceAdapter(store)
        adapter.load()

        adapter.save(StoreSnapshot())
        adapter.save(StoreSnapshot())

        keys = [c.args[0] for c in store.set.call_args_list]
        assert keys == ["qctrack_state.v9.bak", STATE_KEY, STATE_KEY]

    def test_failed_backup_is_retried(self):
        store = MagicMock(spec=BaseStore)
        store.get.return_value = ["not", "an", "object"]
        store.set.side_effect = [StoreUnavailableError("locked"), None, None]
        adapter = PersistenceAdapter(store)
        adapter.load()

        with pytest.raises(StoreUnavailableError):
            adapter.save(StoreSnapshot())
        adapter.save(StoreSnapshot())

        keys = [c.args[0] for c in store.set.call_args_list]
        assert keys == ["qctrack_state.bak", "qctrack_state.bak", STATE_KEY]


# ---------------------------------------------------------------------------
# Legacy (version 1) layout
# ---------------------------------------------------------------------------


class TestLegacyUpgrade:
    def _legacy_state(self):
        return {
            "completedTasks": [
                {
                    "qaOperationId": "op-old",
                    "startTime": 1_000,
                    "duration": 120_000,
                    "status": "completed",
                    "projectId": "p1",
                    "projectName": "Project One",
                    "attemptId": "att-1",
                    "reviewLevel": 2,
                    "maxTime": 1800,
                    "endTime": 121_000,
                },
                {"startTime": 5},
            ],
            "offPlatformTime": [
                {"id": "off-1", "type": "validation", "hours": 1, "minutes": 30, "date": "2024-05-01", "timestamp": 9},
                {"id": "off-bad", "type": "napping", "hours": 1, "minutes": 0, "date": "2024-05-01"},
            ],
            "currentTask": {
                "qaOperationId": "op-live",
                "startTime": 200_000,
                "maxTime": 0,
                "status": STATUS_PENDING_TRANSITION,
                "completionTime": 260_000,
            },
        }

    def test_upgrades_tasks_off_platform_and_current_task(self):
        store = MemoryStore()
        store.set(STATE_KEY, self._legacy_state())

        result = PersistenceAdapter(store).load()

        assert result.migrated_from == 1
        assert result.error is None

        audits = [e for e in result.snapshot.entries if e.type == TYPE_AUDIT]
        off_platform = [e for e in result.snapshot.entries if e.type == TYPE_OFF_PLATFORM]
        assert [a.qa_operation_id for a in audits] == ["op-old"]
        assert audits[0].project_name == "Project One"
        assert audits[0].description == "Operation ID: op-old"
        assert [o.id for o in off_platform] == ["off-1"]
        assert off_platform[0].duration == 90 * 60 * 1000

        session = result.snapshot.sessions[0]
        assert session.qa_operation_id == "op-live"
        assert session.status == STATUS_PENDING_TRANSITION
        assert session.completion_time == 260_000

    def test_explicit_version_one_is_upgraded(self):
        store = MemoryStore()
        store.set(STATE_KEY, {"version": 1, "completedTasks": []})
        assert PersistenceAdapter(store).load().migrated_from == 1

    def test_malformed_legacy_records_are_dropped(self):
        store = MemoryStore()
        store.set(
            STATE_KEY,
            {
                "completedTasks": [
                    {"qaOperationId": "a", "startTime": "yesterday"},
                    {"qaOperationId": "b", "startTime": 1_000, "endTime": float("inf")},
                    {"qaOperationId": "c", "startTime": 2_000, "duration": 60_000},
                ],
                "offPlatformTime": "none",
                "currentTask": {"qaOperationId": "live", "startTime": "soon"},
            },
        )

        result = PersistenceAdapter(store).load()

        assert result.error is None
        assert [e.id for e in result.snapshot.entries] == ["c"]
        assert result.snapshot.sessions == []
