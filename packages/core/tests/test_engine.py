"""Tests for the tracking engine: pipeline wiring, persistence and restarts."""

from __future__ import annotations

import pytest

from qctrack_core.config import DEFAULT_CONFIG
from qctrack_core.engine import TrackingEngine
from qctrack_core.query import EntryFilters
from qctrack_store.adapter import STATE_KEY, SCHEMA_VERSION
from qctrack_store.jsonfile import JsonFileStore
from qctrack_store.errors import StoreUnavailableError
from qctrack_store.memory import MemoryStore
from qctrack_store.models import OffPlatformEntry

BASE = "https://app.example.com/corp-api"
MIN = 60_000


class FlakyStore(MemoryStore):
    """MemoryStore whose writes fail while ``fail`` is set."""

    def __init__(self):
        super().__init__()
        self.fail = False
        self.writes = 0

    def set(self, key, value):
        if self.fail:
            raise StoreUnavailableError("database is locked")
        self.writes += 1
        super().set(key, value)


def begin_call(t, qa_id="op1", batch_id="b1", max_time=1800):
    return {
        "url": f"{BASE}/chatBulkAudit/relatedQaOperationForAuditBatch/{batch_id}",
        "method": "GET",
        "responseBody": {"stateMachine": {"context": {"operationId": qa_id}}, "maxTimeRequired": max_time},
        "timestamp": t,
    }


def complete_call(t, qa_id="op1"):
    return {
        "url": f"{BASE}/chatBulkAudit/complete/{qa_id}",
        "method": "POST",
        "requestBody": {"qaOperationId": qa_id},
        "timestamp": t,
    }


def transition_call(t, qa_id="op1"):
    return {"url": f"{BASE}/qm/operations/{qa_id}/transition", "method": "POST", "timestamp": t}


def _engine(store=None, clock=lambda: 0, **kwargs):
    return TrackingEngine(store if store is not None else MemoryStore(), clock=clock, **kwargs)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestPipeline:
    def test_full_lifecycle(self):
        engine = _engine()
        engine.handle_call(begin_call(0))
        engine.handle_call(complete_call(20 * MIN))
        engine.handle_call(transition_call(21 * MIN))

        [entry] = engine.entries()
        assert entry.status == "completed"
        assert entry.duration == 21 * MIN
        assert entry.max_time == 1800
        assert engine.sessions == []

    def test_in_flight_entry_is_visible(self):
        engine = _engine()
        engine.handle_call(begin_call(0))
        [entry] = engine.entries()
        assert entry.status == "in-progress"

    def test_unrelated_calls_ignored(self):
        engine = _engine()
        assert engine.handle_call({"url": f"{BASE}/users/me", "timestamp": 1}) == []
        assert engine.entries() == []

    def test_one_entry_per_operation(self):
        engine = _engine()
        for t in (0, 1 * MIN, 2 * MIN):
            engine.handle_call(begin_call(t))
        engine.handle_call(complete_call(10 * MIN))
        engine.handle_call(transition_call(11 * MIN))
        assert len(engine.entries()) == 1

    def test_complete_before_begin_then_begin_is_redundant(self):
        engine = _engine()
        engine.handle_call(complete_call(200 * MIN))
        assert engine.handle_call(begin_call(201 * MIN)) == []

        [entry] = engine.entries()
        assert entry.partial is True
        assert engine.sessions == []

    def test_tick_uses_clock_by_default(self):
        now = {"t": 0}
        engine = _engine(clock=lambda: now["t"])
        engine.handle_call(begin_call(0))
        engine.handle_call(complete_call(20 * MIN))

        now["t"] = 26 * MIN
        [entry] = engine.tick()
        assert entry.status == "completed"
        assert entry.end_time == 20 * MIN

    def test_list_entries_applies_filters(self):
        engine = _engine()
        engine.handle_call(begin_call(0))
        engine.add_off_platform(
            OffPlatformEntry(id="off-1", activity_type="validation", hours=1, minutes=0, date="2024-05-01")
        )
        [entry] = engine.list_entries(EntryFilters(entry_type="off_platform"))
        assert entry.id == "off-1"


# ---------------------------------------------------------------------------
# Persistence and restarts
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_every_transition_is_saved(self):
        store = FlakyStore()
        engine = _engine(store)
        engine.handle_call(begin_call(0))
        engine.handle_call(complete_call(20 * MIN))
        assert store.writes == 2
        assert store.get(STATE_KEY)["version"] == SCHEMA_VERSION

    def test_restart_mid_session(self):
        store = MemoryStore()
        first = _engine(store)
        first.handle_call(begin_call(0))
        first.handle_call(complete_call(20 * MIN))

        second = TrackingEngine.open(store)
        assert [s.qa_operation_id for s in second.sessions] == ["op1"]

        second.handle_call(transition_call(21 * MIN))
        [entry] = second.entries()
        assert entry.status == "completed"
        assert entry.start_time == 0
        assert entry.duration == 21 * MIN

    def test_failed_save_is_retried_on_next_tick(self):
        store = FlakyStore()
        engine = _engine(store)
        store.fail = True

        engine.handle_call(begin_call(0))
        assert engine.dirty is True
        assert engine.entries()[0].qa_operation_id == "op1"

        store.fail = False
        engine.tick(1 * MIN)

        assert engine.dirty is False
        assert store.get(STATE_KEY)["sessions"][0]["qa_operation_id"] == "op1"

    def test_failed_save_is_retried_on_next_call(self):
        store = FlakyStore()
        engine = _engine(store)
        store.fail = True
        engine.handle_call(begin_call(0))

        store.fail = False
        engine.handle_call({"url": f"{BASE}/users/me", "timestamp": 1})

        assert engine.dirty is False

    def test_flush(self):
        store = FlakyStore()
        engine = _engine(store)
        assert engine.flush() is True
        store.fail = True
        engine.handle_call(begin_call(0))
        assert engine.flush() is False
        store.fail = False
        assert engine.flush() is True

    def test_unsupported_schema_gives_empty_state_and_error(self):
        store = MemoryStore()
        store.set(STATE_KEY, {"version": 7})
        engine = _engine(store)
        assert engine.entries() == []
        assert "7" in engine.load_error

    def test_unknown_version_is_kept_before_first_save(self):
        store = MemoryStore()
        newer = {"version": 9, "payload": {"sessions": ["from a newer build"]}}
        store.set(STATE_KEY, newer)
        engine = _engine(store)
        assert engine.load_result.backup_key == "qctrack_state.v9.bak"

        engine.handle_call(begin_call(0))

        assert store.get("qctrack_state.v9.bak") == newer
        assert store.get(STATE_KEY)["version"] == SCHEMA_VERSION

    def test_corrupt_state_file_is_reported_and_kept(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text('{"qctrack_state": {"version": 2, "ses')
        store = JsonFileStore(path=str(path))

        engine = _engine(store)
        assert engine.load_error.startswith("Stored state is unreadable")

        engine.handle_call(begin_call(0))

        assert store.corrupt_path.read_text().startswith('{"qctrack_state"')
        assert store.get(STATE_KEY)["sessions"][0]["qa_operation_id"] == "op1"

    def test_malformed_legacy_state_does_not_crash(self):
        store = MemoryStore()
        store.set(STATE_KEY, {"completedTasks": [{"qaOperationId": "a", "startTime": "yesterday"}]})
        engine = _engine(store)
        assert engine.entries() == []
        assert engine.load_error is None

    def test_malformed_section_does_not_crash(self):
        store = MemoryStore()
        store.set(STATE_KEY, {"version": 2, "sessions": 5})
        assert _engine(store).sessions == []

    def test_session_with_bad_timestamp_is_dropped(self):
        store = MemoryStore()
        store.set(
            STATE_KEY,
            {"version": 2, "sessions": [{"qa_operation_id": "op1", "start_time": 0, "max_time": 1800, "last_seen_at": "x"}]},
        )
        engine = _engine(store)

        engine.handle_call(begin_call(MIN))

        [session] = engine.sessions
        assert session.start_time == MIN

    def test_legacy_state_is_upgraded_and_written_back(self):
        store = MemoryStore()
        store.set(
            STATE_KEY,
            {"completedTasks": [{"qaOperationId": "old", "startTime": 1_000, "duration": 5_000}]},
        )
        engine = _engine(store)

        assert [e.id for e in engine.entries()] == ["old"]
        assert engine.load_result.migrated_from == 1
        assert store.get(STATE_KEY)["version"] == SCHEMA_VERSION

    def test_open_reads_config(self):
        config = {**DEFAULT_CONFIG, "grace_window_seconds": 1}
        engine = TrackingEngine.open(MemoryStore(), config)
        engine.handle_call(begin_call(0))
        engine.handle_call(complete_call(10_000))
        assert len(engine.tick(11_000)) == 1

    def test_open_rejects_invalid_config(self):
        with pytest.raises(ValueError):
            TrackingEngine.open(MemoryStore(), {"timeout_multiplier": -1})


# ---------------------------------------------------------------------------
# Manual entries, deletion, retention
# ---------------------------------------------------------------------------


class TestEntries:
    def test_add_off_platform_stamps_timestamp(self):
        engine = _engine(clock=lambda: 12345)
        entry = engine.add_off_platform(
            OffPlatformEntry(id="off-1", activity_type="other", hours=0, minutes=30, date="2024-05-01")
        )
        assert entry.observed_at == 12345
        assert entry.duration == 30 * MIN

    def test_delete_off_platform(self):
        engine = _engine()
        engine.add_off_platform(
            OffPlatformEntry(id="off-1", activity_type="other", hours=1, minutes=0, date="2024-05-01")
        )
        assert engine.delete_entry("off-1") is True
        assert engine.entries() == []

    def test_delete_live_audit_drops_session(self):
        engine = _engine()
        engine.handle_call(begin_call(0))
        assert engine.delete_entry("op1") is True
        assert engine.sessions == []
        assert engine.entries() == []

    def test_delete_unknown_entry(self):
        assert _engine().delete_entry("missing") is False

    def test_retention_drops_oldest_finalized_audits(self):
        engine = _engine(max_audit_entries=2)
        for i in range(3):
            qa_id = f"op{i}"
            engine.handle_call(begin_call(i * 100 * MIN, qa_id=qa_id))
            engine.handle_call(transition_call(i * 100 * MIN + MIN, qa_id=qa_id))

        assert [e.id for e in engine.entries()] == ["op1", "op2"]

    def test_retention_keeps_in_flight_audits(self):
        engine = _engine(max_audit_entries=1)
        engine.handle_call(begin_call(0, qa_id="live"))
        engine.handle_call(begin_call(1 * MIN, qa_id="done"))
        engine.handle_call(transition_call(2 * MIN, qa_id="done"))

        assert {e.id for e in engine.entries()} == {"live", "done"}

    def test_retention_for_off_platform(self):
        engine = _engine(max_off_platform_entries=1)
        for day in (1, 2):
            engine.add_off_platform(
                OffPlatformEntry(id=f"off-{day}", activity_type="other", hours=1, minutes=0, date=f"2024-05-0{day}")
            )
        assert [e.id for e in engine.entries()] == ["off-2"]


# ---------------------------------------------------------------------------
# Editing entries
# ---------------------------------------------------------------------------


class TestUpdateEntry:
    def _finished_audit(self, engine):
        engine.handle_call(begin_call(0))
        engine.handle_call(transition_call(20 * MIN))

    def test_edit_audit_fields(self):
        store = FlakyStore()
        engine = _engine(store)
        self._finished_audit(engine)

        entry = engine.update_entry("op1", project_name="  Project X ", max_time=3600)

        assert entry.project_name == "Project X"
        assert entry.max_time == 3600
        assert engine.entries()[0].project_name == "Project X"
        assert store.get(STATE_KEY)["entries"][0]["project_name"] == "Project X"

    def test_edit_audit_times_recomputes_duration(self):
        engine = _engine()
        self._finished_audit(engine)

        entry = engine.update_entry("op1", start_time=5 * MIN)

        assert entry.end_time == 20 * MIN
        assert entry.duration == 15 * MIN

    def test_end_before_start_rejected(self):
        engine = _engine()
        self._finished_audit(engine)
        with pytest.raises(ValueError, match="End time"):
            engine.update_entry("op1", end_time=-1)
        assert engine.entries()[0].duration == 20 * MIN

    @pytest.mark.parametrize(
        "changes",
        [{"project_name": "   "}, {"max_time": 0}, {"max_time": 25 * 3600}, {"status": "canceled"}, {}],
    )
    def test_invalid_audit_changes_rejected(self, changes):
        engine = _engine()
        self._finished_audit(engine)
        with pytest.raises(ValueError):
            engine.update_entry("op1", **changes)

    def test_in_flight_audit_cannot_be_edited(self):
        engine = _engine()
        engine.handle_call(begin_call(0))
        with pytest.raises(ValueError, match="in flight"):
            engine.update_entry("op1", project_name="X")

    def test_edit_off_platform_recomputes_duration(self):
        engine = _engine()
        engine.add_off_platform(
            OffPlatformEntry(id="off-1", activity_type="validation", hours=1, minutes=30, date="2024-05-01")
        )

        entry = engine.update_entry("off-1", minutes=45, date="2024-05-02", description="Rubric review")

        assert entry.duration == 105 * MIN
        assert entry.date == "2024-05-02"
        assert entry.activity_type == "validation"
        assert entry.description == "Rubric review"
        [listed] = engine.list_entries(EntryFilters(entry_type="off_platform"))
        assert listed.duration == 105 * MIN

    @pytest.mark.parametrize(
        "changes",
        [
            {"activity_type": "napping"},
            {"hours": 0, "minutes": 0},
            {"minutes": 75},
            {"date": "2024-13-01"},
            {"description": ""},
            {"max_time": 60},
        ],
    )
    def test_invalid_off_platform_changes_rejected(self, changes):
        engine = _engine()
        engine.add_off_platform(
            OffPlatformEntry(id="off-1", activity_type="other", hours=1, minutes=0, date="2024-05-01")
        )
        with pytest.raises(ValueError):
            engine.update_entry("off-1", **changes)
        assert engine.entries()[0].duration == 60 * MIN

    def test_unknown_entry(self):
        assert _engine().update_entry("missing", description="x") is None
