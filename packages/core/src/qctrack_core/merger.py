"""Entry merger — one ordered timeline from audit and off-platform entries."""

from __future__ import annotations

from collections.abc import Iterable

from qctrack_store.models import TYPE_AUDIT, DashboardEntry


def merge(
    audit_entries: Iterable[DashboardEntry],
    off_platform_entries: Iterable[DashboardEntry],
) -> list[DashboardEntry]:
    """Combine both sources into a timeline ordered by start_time.

    Audit entries are keyed by qa_operation_id and off-platform entries by
    their own id; within a key the entry with the later observed_at replaces
    the earlier one (ties go to the one seen last). The two id spaces are
    disjoint, so nothing is deduplicated across sources, and overlapping time
    ranges are kept as-is — see find_overlaps().
    """
    audits = _latest_by(audit_entries, lambda e: e.qa_operation_id or e.id)
    off_platform = _latest_by(off_platform_entries, lambda e: e.id)
    return sorted([*audits.values(), *off_platform.values()], key=lambda e: (e.start_time, e.id))


def _latest_by(entries: Iterable[DashboardEntry], key) -> dict[str, DashboardEntry]:
    latest: dict[str, DashboardEntry] = {}
    for entry in entries:
        k = key(entry)
        current = latest.get(k)
        if current is None or entry.observed_at >= current.observed_at:
            latest[k] = entry
    return latest


def split_by_type(entries: Iterable[DashboardEntry]) -> tuple[list[DashboardEntry], list[DashboardEntry]]:
    audits: list[DashboardEntry] = []
    off_platform: list[DashboardEntry] = []
    for entry in entries:
        (audits if entry.type == TYPE_AUDIT else off_platform).append(entry)
    return audits, off_platform


def find_overlaps(entries: Iterable[DashboardEntry]) -> list[tuple[DashboardEntry, DashboardEntry]]:
    """Pairs of (audit, off-platform) entries whose time ranges intersect.

    Overlaps are legitimate (a break logged during a long audit), so they
    are reported for the user to judge, never resolved here.
    """
    audits, off_platform = split_by_type(entries)
    overlaps = []
    for audit in audits:
        for other in off_platform:
            if audit.start_time < other.range_end and other.start_time < audit.range_end:
                overlaps.append((audit, other))
    return overlaps
