"""Tracking data models.

Decoupled from qctrack_core so the store layer can be used independently:
the correlator produces these records, the store persists them, and neither
needs to know how the other works.

All timestamps are integer milliseconds since the Unix epoch. ``max_time``
is in seconds (the host platform's unit), ``duration`` in milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date as date_cls
from datetime import datetime, timezone

STATUS_IN_PROGRESS = "in-progress"
STATUS_PENDING_TRANSITION = "pending-transition"
STATUS_COMPLETED = "completed"
STATUS_CANCELED = "canceled"

ENTRY_STATUSES = (STATUS_COMPLETED, STATUS_IN_PROGRESS, STATUS_CANCELED, STATUS_PENDING_TRANSITION)

TYPE_AUDIT = "audit"
TYPE_OFF_PLATFORM = "off_platform"

ACTIVITY_TYPES = (
    "auditing",
    "self_onboarding",
    "validation",
    "onboarding_oh",
    "total_over_max_time",
    "other",
)


def int_or_none(value) -> int | None:
    """Coerce an optional stored number; raises ValueError or TypeError on garbage."""
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class Session:
    """In-flight correlation state for one QA operation.

    Owned by the session correlator. Persisted alongside the entries so a
    restarted process can pick up exactly where the previous one stopped.
    """

    qa_operation_id: str
    start_time: int
    max_time: int  # seconds
    status: str = STATUS_IN_PROGRESS  # "in-progress" | "pending-transition"
    batch_id: str | None = None
    attempt_id: str | None = None
    review_level: int | None = None
    project_id: str | None = None
    project_name: str | None = None
    completion_time: int | None = None
    transition_time: int | None = None
    last_seen_at: int | None = None

    def to_dict(self) -> dict:
        return {
            "qa_operation_id": self.qa_operation_id,
            "start_time": self.start_time,
            "max_time": self.max_time,
            "status": self.status,
            "batch_id": self.batch_id,
            "attempt_id": self.attempt_id,
            "review_level": self.review_level,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "completion_time": self.completion_time,
            "transition_time": self.transition_time,
            "last_seen_at": self.last_seen_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Session:
        return cls(
            qa_operation_id=str(d["qa_operation_id"]),
            start_time=int(d["start_time"]),
            max_time=int(d.get("max_time") or 0),
            status=d.get("status", STATUS_IN_PROGRESS),
            batch_id=d.get("batch_id"),
            attempt_id=d.get("attempt_id"),
            review_level=int_or_none(d.get("review_level")),
            project_id=d.get("project_id"),
            project_name=d.get("project_name"),
            completion_time=int_or_none(d.get("completion_time")),
            transition_time=int_or_none(d.get("transition_time")),
            last_seen_at=int_or_none(d.get("last_seen_at")),
        )


@dataclass
class DashboardEntry:
    """The durable, user-visible unit of the timeline.

    ``type`` discriminates audit entries (derived from intercepted lifecycle
    events) from off-platform entries (logged by hand). Audit entries use
    their ``qa_operation_id`` as ``id``.
    """

    id: str
    type: str  # "audit" | "off_platform"
    start_time: int
    duration: int  # milliseconds
    status: str
    project_id: str | None = None
    project_name: str | None = None
    description: str | None = None

    # Audit-only
    qa_operation_id: str | None = None
    attempt_id: str | None = None
    review_level: int | None = None
    max_time: int | None = None  # seconds
    end_time: int | None = None
    completion_time: int | None = None
    transition_time: int | None = None

    # Off-platform-only
    activity_type: str | None = None
    date: str | None = None  # ISO date

    # When the event that produced this version of the entry arrived.
    observed_at: int = 0
    # Reconstructed from an orphaned event; start time is an estimate.
    partial: bool = False

    @property
    def is_audit(self) -> bool:
        return self.type == TYPE_AUDIT

    @property
    def is_over_time(self) -> bool:
        """True when an audit ran longer than its max time."""
        return self.is_audit and bool(self.max_time) and self.duration > self.max_time * 1000

    @property
    def range_end(self) -> int:
        return self.start_time + max(self.duration, 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "start_time": self.start_time,
            "duration": self.duration,
            "status": self.status,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "description": self.description,
            "qa_operation_id": self.qa_operation_id,
            "attempt_id": self.attempt_id,
            "review_level": self.review_level,
            "max_time": self.max_time,
            "end_time": self.end_time,
            "completion_time": self.completion_time,
            "transition_time": self.transition_time,
            "activity_type": self.activity_type,
            "date": self.date,
            "observed_at": self.observed_at,
            "partial": self.partial,
        }

    @classmethod
    def from_dict(cls, d: dict) -> DashboardEntry:
        return cls(
            id=str(d["id"]),
            type=d.get("type", TYPE_AUDIT),
            start_time=int(d.get("start_time") or 0),
            duration=max(int(d.get("duration") or 0), 0),
            status=d.get("status", STATUS_COMPLETED),
            project_id=d.get("project_id"),
            project_name=d.get("project_name"),
            description=d.get("description"),
            qa_operation_id=d.get("qa_operation_id"),
            attempt_id=d.get("attempt_id"),
            review_level=int_or_none(d.get("review_level")),
            max_time=int_or_none(d.get("max_time")),
            end_time=int_or_none(d.get("end_time")),
            completion_time=int_or_none(d.get("completion_time")),
            transition_time=int_or_none(d.get("transition_time")),
            activity_type=d.get("activity_type"),
            date=d.get("date"),
            observed_at=int(d.get("observed_at") or 0),
            partial=bool(d.get("partial", False)),
        )

    def evolve(self, **changes) -> DashboardEntry:
        return replace(self, **changes)


@dataclass
class OffPlatformEntry:
    """A manually logged activity, as entered by the user.

    Converted to a DashboardEntry before it joins the timeline.
    """

    id: str
    activity_type: str
    hours: int
    minutes: int
    date: str  # ISO date, e.g. "2024-05-01"
    description: str = ""
    timestamp: int = 0
    project_id: str | None = None
    project_name: str | None = None

    def __post_init__(self):
        if self.activity_type not in ACTIVITY_TYPES:
            raise ValueError(f"Unknown activity type: {self.activity_type!r}. Choose one of {', '.join(ACTIVITY_TYPES)}.")
        if self.hours < 0 or self.minutes < 0:
            raise ValueError("Hours and minutes must be non-negative.")
        # Raises ValueError on a malformed date.
        date_cls.fromisoformat(self.date[:10])

    @property
    def duration(self) -> int:
        return (self.hours * 60 + self.minutes) * 60 * 1000

    def to_dashboard_entry(self) -> DashboardEntry:
        day = date_cls.fromisoformat(self.date[:10])
        start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        return DashboardEntry(
            id=self.id,
            type=TYPE_OFF_PLATFORM,
            start_time=int(start.timestamp() * 1000),
            duration=self.duration,
            status=STATUS_COMPLETED,
            project_id=self.project_id,
            project_name=self.project_name,
            description=self.description,
            activity_type=self.activity_type,
            date=self.date,
            observed_at=self.timestamp,
        )


@dataclass
class StoreSnapshot:
    """Everything the engine persists: in-flight sessions plus the timeline."""

    sessions: list[Session] = field(default_factory=list)
    entries: list[DashboardEntry] = field(default_factory=list)
