"""Tests for timeline filtering."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from qctrack_core.query import EntryFilters, list_entries
from qctrack_store.models import TYPE_AUDIT, TYPE_OFF_PLATFORM, DashboardEntry


def _ms(year, month, day, hour=0, minute=0, tz=timezone.utc):
    return int(datetime(year, month, day, hour, minute, tzinfo=tz).timestamp() * 1000)


def _audit(qa_id, start, duration=60_000, max_time=1800, project_id="p1"):
    return DashboardEntry(
        id=qa_id,
        type=TYPE_AUDIT,
        start_time=start,
        duration=duration,
        status="completed",
        project_id=project_id,
        qa_operation_id=qa_id,
        max_time=max_time,
    )


def _off(entry_id, start, activity_type="validation", project_id=None):
    return DashboardEntry(
        id=entry_id,
        type=TYPE_OFF_PLATFORM,
        start_time=start,
        duration=60_000,
        status="completed",
        project_id=project_id,
        activity_type=activity_type,
    )


ENTRIES = [
    _audit("a-may1", _ms(2024, 5, 1, 9)),
    _audit("a-may2-late", _ms(2024, 5, 2, 23, 59), duration=2 * 3_600_000, project_id="p2"),
    _off("o-may2", _ms(2024, 5, 2), activity_type="self_onboarding"),
    _audit("a-may3", _ms(2024, 5, 3, 0, 0)),
]


class TestListEntries:
    def test_no_filters_returns_everything_in_order(self):
        assert [e.id for e in list_entries(ENTRIES)] == [e.id for e in ENTRIES]

    def test_date_range_is_inclusive_whole_days(self):
        filters = EntryFilters(start_date=date(2024, 5, 2), end_date=date(2024, 5, 2))
        assert [e.id for e in list_entries(ENTRIES, filters)] == ["a-may2-late", "o-may2"]

    def test_open_ended_start(self):
        filters = EntryFilters(start_date=date(2024, 5, 3))
        assert [e.id for e in list_entries(ENTRIES, filters)] == ["a-may3"]

    def test_date_bounds_respect_timezone(self):
        tz = timezone(timedelta(hours=-5))
        # 2024-05-03 00:00 UTC is still May 2nd at UTC-5.
        filters = EntryFilters(start_date=date(2024, 5, 2), end_date=date(2024, 5, 2), tz=tz)
        assert "a-may3" in [e.id for e in list_entries(ENTRIES, filters)]

    def test_project_filter(self):
        assert [e.id for e in list_entries(ENTRIES, EntryFilters(project_id="p2"))] == ["a-may2-late"]

    def test_entry_type_filters(self):
        audits = list_entries(ENTRIES, EntryFilters(entry_type="audits"))
        off_platform = list_entries(ENTRIES, EntryFilters(entry_type="off_platform"))
        assert all(e.type == TYPE_AUDIT for e in audits)
        assert [e.id for e in off_platform] == ["o-may2"]

    def test_activity_filter(self):
        filters = EntryFilters(activity_type="self_onboarding")
        assert [e.id for e in list_entries(ENTRIES, filters)] == ["o-may2"]

    def test_over_time_filter(self):
        filters = EntryFilters(entry_type="audits", show_only_over_time=True)
        assert [e.id for e in list_entries(ENTRIES, filters)] == ["a-may2-late"]

    def test_unknown_entry_type_rejected(self):
        with pytest.raises(ValueError):
            EntryFilters(entry_type="tasks")
