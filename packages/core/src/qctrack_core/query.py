"""Read-side filtering of the merged timeline."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo

from qctrack_store.models import TYPE_AUDIT, TYPE_OFF_PLATFORM, DashboardEntry

ENTRY_TYPES = ("all", "audits", "off_platform")


@dataclass(frozen=True)
class EntryFilters:
    """Dashboard filters. Date bounds are inclusive whole days in ``tz``."""

    start_date: date | None = None
    end_date: date | None = None
    project_id: str | None = None
    entry_type: str = "all"  # "all" | "audits" | "off_platform"
    activity_type: str | None = None
    show_only_over_time: bool = False
    tz: tzinfo = timezone.utc

    def __post_init__(self):
        if self.entry_type not in ENTRY_TYPES:
            raise ValueError(f"Unknown entry type: {self.entry_type!r}. Choose one of {', '.join(ENTRY_TYPES)}.")


def list_entries(entries: Iterable[DashboardEntry], filters: EntryFilters | None = None) -> list[DashboardEntry]:
    """Return the entries matching every filter, in input order."""
    filters = filters or EntryFilters()

    lower = _day_start_ms(filters.start_date, filters.tz) if filters.start_date else None
    upper = _day_start_ms(filters.end_date, filters.tz) + _DAY_MS - 1 if filters.end_date else None

    results = []
    for entry in entries:
        if filters.entry_type == "audits" and entry.type != TYPE_AUDIT:
            continue
        if filters.entry_type == "off_platform" and entry.type != TYPE_OFF_PLATFORM:
            continue
        if filters.activity_type and entry.activity_type != filters.activity_type:
            continue
        if lower is not None and entry.start_time < lower:
            continue
        if upper is not None and entry.start_time > upper:
            continue
        if filters.project_id and entry.project_id != filters.project_id:
            continue
        # Only audits carry a max time; everything else passes this filter.
        if filters.show_only_over_time and entry.is_audit and entry.max_time and not entry.is_over_time:
            continue
        results.append(entry)
    return results


_DAY_MS = 24 * 60 * 60 * 1000


def _day_start_ms(day: date, tz: tzinfo) -> int:
    return int(datetime.combine(day, time.min, tzinfo=tz).timestamp() * 1000)
