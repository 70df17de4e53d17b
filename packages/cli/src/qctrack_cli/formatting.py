"""Display and input helpers for durations, timestamps, pay and activity labels."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

_MAX_TIME_RE = re.compile(r"^(?:(\d+)h)?\s*(?:(\d+)m)?$")

ACTIVITY_LABELS = {
    "auditing": "Auditing",
    "self_onboarding": "Self Onboarding",
    "validation": "Validation",
    "onboarding_oh": "Onboarding/OH",
    "total_over_max_time": "Total Over Max Time",
    "other": "Other",
}


def format_activity_type(activity_type: str | None) -> str:
    """Human label for an activity type; unknown types are title-cased."""
    if not activity_type:
        return ""
    return ACTIVITY_LABELS.get(activity_type) or activity_type.replace("_", " ").title()


def format_duration(ms: int) -> str:
    """Milliseconds as HH:MM:SS. Hours are not wrapped at 24."""
    total_seconds = max(ms, 0) // 1000
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_max_time(seconds: int | None) -> str:
    """Max time (seconds) as "90m" or "90m 30s"."""
    if not seconds:
        return ""
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}m" if rest == 0 else f"{minutes}m {rest}s"


def format_timestamp(ms: int | None) -> str:
    if not ms:
        return ""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def iso_timestamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def today_iso() -> str:
    return date.today().isoformat()


def format_hours(hours: float) -> str:
    return f"{hours:.2f}"


def format_money(amount: float) -> str:
    return f"${amount:,.2f}"


def parse_max_time(text: str) -> int:
    """Parse "3h 30m", "3h" or "90m" into seconds. Raises ValueError."""
    match = _MAX_TIME_RE.match(text.strip())
    if not match or not any(match.groups()):
        raise ValueError(f'Invalid time {text!r}. Use a format like "3h 30m", "3h" or "90m".')
    hours, minutes = int(match.group(1) or 0), int(match.group(2) or 0)
    if match.group(1) and minutes >= 60:
        raise ValueError(f"Invalid time {text!r}: minutes must be below 60 when hours are given.")
    return (hours * 60 + minutes) * 60


def utc_ms(moment: datetime) -> int:
    """A naive datetime read as UTC, in epoch milliseconds."""
    return int(moment.replace(tzinfo=timezone.utc).timestamp() * 1000)
