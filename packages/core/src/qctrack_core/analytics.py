"""Hours and pay summaries over the merged timeline.

Audit time counts only for completed audits, booked on the day the audit
ended (end, completion, transition or start time, whichever is set first).
Off-platform time is booked on its logged date. Days are calendar days in
``tz`` and weeks run Monday to Sunday.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo

from qctrack_core.config import PaySettings
from qctrack_store.models import STATUS_COMPLETED, TYPE_AUDIT, DashboardEntry

_HOUR_MS = 60 * 60 * 1000


@dataclass(frozen=True)
class PayCalculation:
    week_start: date
    week_end: date
    regular_hours: float
    overtime_hours: float
    regular_pay: float
    overtime_pay: float

    @property
    def total_hours(self) -> float:
        return self.regular_hours + self.overtime_hours

    @property
    def total_pay(self) -> float:
        return self.regular_pay + self.overtime_pay


def week_start(day: date) -> date:
    """The Monday on or before ``day``."""
    return day - timedelta(days=day.weekday())


def entry_day(entry: DashboardEntry, tz: tzinfo = timezone.utc) -> date | None:
    """The day an entry's time is booked on, or None when it does not count."""
    if entry.type == TYPE_AUDIT:
        if entry.status != STATUS_COMPLETED:
            return None
        booked_at = entry.end_time or entry.completion_time or entry.transition_time or entry.start_time
        return datetime.fromtimestamp(booked_at / 1000, tz=tz).date()
    if entry.date:
        return date.fromisoformat(entry.date[:10])
    return datetime.fromtimestamp(entry.start_time / 1000, tz=tz).date()


def hours_by_day(
    entries: Iterable[DashboardEntry], start: date, end: date, tz: tzinfo = timezone.utc
) -> dict[date, float]:
    """Hours booked on each day from ``start`` to ``end`` inclusive, zero-filled."""
    days = {start + timedelta(days=i): 0.0 for i in range((end - start).days + 1)}
    for entry in entries:
        day = entry_day(entry, tz)
        if day in days:
            days[day] += entry.duration / _HOUR_MS
    return days


def daily_hours(entries: Iterable[DashboardEntry], day: date, tz: tzinfo = timezone.utc) -> float:
    return hours_by_day(entries, day, day, tz)[day]


def weekly_hours(entries: Iterable[DashboardEntry], day: date, tz: tzinfo = timezone.utc) -> float:
    """Hours booked in the Monday-to-Sunday week containing ``day``."""
    monday = week_start(day)
    return sum(hours_by_day(entries, monday, monday + timedelta(days=6), tz).values())


def calculate_weekly_pay(
    entries: Iterable[DashboardEntry],
    day: date,
    settings: PaySettings | None = None,
    tz: tzinfo = timezone.utc,
) -> PayCalculation:
    """Split the week's hours into regular and overtime and price them.

    Hours above ``weekly_overtime_threshold`` are paid at
    ``hourly_rate * overtime_rate`` when weekly overtime is enabled.
    """
    settings = settings or PaySettings()
    monday = week_start(day)
    total = weekly_hours(entries, monday, tz)

    regular_hours, overtime_hours = total, 0.0
    if settings.weekly_overtime_enabled and total > settings.weekly_overtime_threshold:
        regular_hours = float(settings.weekly_overtime_threshold)
        overtime_hours = total - regular_hours

    return PayCalculation(
        week_start=monday,
        week_end=monday + timedelta(days=6),
        regular_hours=regular_hours,
        overtime_hours=overtime_hours,
        regular_pay=regular_hours * settings.hourly_rate,
        overtime_pay=overtime_hours * settings.hourly_rate * settings.overtime_rate,
    )
