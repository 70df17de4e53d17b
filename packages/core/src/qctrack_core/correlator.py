"""Session correlator — the audit lifecycle state machine.

States per QA operation id:

    NotStarted --Begin--> in-progress --Complete--> pending-transition
                              |                          |
                              +------Transition----------+--> completed
                              |                          +--(grace expiry)--> completed
                              +--Cancel / abandonment--> canceled

Lifecycle events arrive asynchronously and the process hosting this code may
be restarted at any time, so:

- every transition is a pure function of (session, event) — see step() —
  and the caller persists the result immediately;
- events for unknown sessions are a normal input, not an error: a Complete
  or Transition with no session either amends the already-finalized entry
  or reconstructs a best-effort one flagged ``partial``;
- grace windows and abandonment are evaluated on tick(now), driven by an
  external timer, never by blocking waits.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace

from qctrack_core.config import CorrelatorSettings
from qctrack_core.events import EventKind, LifecycleEvent
from qctrack_store.models import (
    STATUS_CANCELED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING_TRANSITION,
    TYPE_AUDIT,
    DashboardEntry,
    Session,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outcome:
    """Result of one transition.

    ``session`` is the session state after the event (None once retired or
    if no session exists); ``entry`` is the entry produced or updated, if any.
    """

    session: Session | None
    entry: DashboardEntry | None = None


def step(
    session: Session | None,
    event: LifecycleEvent,
    settings: CorrelatorSettings,
    finalized: DashboardEntry | None = None,
) -> Outcome:
    """Apply one lifecycle event to one session. Pure: inputs are never mutated.

    ``finalized`` is the already-stored entry for the same id, if any; it
    decides whether a Begin is redundant and whether an orphaned Complete or
    Transition amends an entry instead of reconstructing one.
    """
    if session is None:
        return _step_without_session(event, settings, finalized)

    current = replace(session, last_seen_at=max(session.last_seen_at or 0, event.observed_at))

    if event.kind is EventKind.BEGIN:
        # Heartbeat: a retried or repeated Begin never restarts the clock.
        current = _enrich(current, event, settings)
        return Outcome(current, session_entry(current, event.observed_at))

    if event.kind is EventKind.COMPLETE:
        if current.completion_time is None:
            current = replace(current, completion_time=event.observed_at, status=STATUS_PENDING_TRANSITION)
        return Outcome(current, session_entry(current, event.observed_at))

    if event.kind is EventKind.TRANSITION:
        if current.transition_time is None:
            current = replace(current, transition_time=event.observed_at)
        end = max(t for t in (current.completion_time, current.transition_time) if t is not None)
        return Outcome(None, finalize(current, STATUS_COMPLETED, end, current.last_seen_at))

    # EventKind.CANCEL
    return Outcome(None, finalize(current, STATUS_CANCELED, event.observed_at, current.last_seen_at))


def _step_without_session(
    event: LifecycleEvent,
    settings: CorrelatorSettings,
    finalized: DashboardEntry | None,
) -> Outcome:
    live = finalized is not None and finalized.status != STATUS_CANCELED

    if event.kind is EventKind.BEGIN:
        if live and finalized.status == STATUS_COMPLETED:
            # Complete/Transition was observed first (e.g. while the worker slept).
            logger.debug("Ignoring redundant Begin for finalized %s", event.qa_operation_id)
            return Outcome(None)
        new = _new_session(event, settings)
        return Outcome(new, session_entry(new, event.observed_at))

    if event.kind in (EventKind.COMPLETE, EventKind.TRANSITION):
        if live:
            return Outcome(None, _amend(finalized, event))
        return Outcome(None, _reconstruct(event, settings))

    # Cancel for something we never saw running: nothing to cancel.
    return Outcome(None)


def _new_session(event: LifecycleEvent, settings: CorrelatorSettings) -> Session:
    session = Session(
        qa_operation_id=event.qa_operation_id,
        start_time=event.observed_at,
        max_time=event.max_time_seconds or settings.default_max_time,
        status=STATUS_IN_PROGRESS,
        batch_id=event.related_batch_id,
        attempt_id=event.attempt_id,
        review_level=event.review_level,
        project_id=event.project_id,
        project_name=event.project_name,
        last_seen_at=event.observed_at,
    )
    return _apply_override(session, settings)


def _enrich(session: Session, event: LifecycleEvent, settings: CorrelatorSettings) -> Session:
    """Fill blanks from a heartbeat Begin; never overwrite what is already known."""
    changes = {}
    for attr, value in (
        ("batch_id", event.related_batch_id),
        ("attempt_id", event.attempt_id),
        ("review_level", event.review_level),
        ("project_id", event.project_id),
        ("project_name", event.project_name),
    ):
        if value is not None and getattr(session, attr) is None:
            changes[attr] = value

    reported = event.max_time_seconds
    if reported and (session.max_time == settings.default_max_time or reported > session.max_time):
        changes["max_time"] = reported

    return _apply_override(replace(session, **changes), settings) if changes else session


def _apply_override(session: Session, settings: CorrelatorSettings) -> Session:
    override = settings.project_overrides.get(session.project_id) if session.project_id else None
    if override is None:
        return session
    changes = {}
    if override.display_name:
        changes["project_name"] = override.display_name
    if override.max_time:
        changes["max_time"] = override.max_time
    return replace(session, **changes)


def _amend(entry: DashboardEntry, event: LifecycleEvent) -> DashboardEntry | None:
    """Late Complete/Transition for an entry that was already finalized."""
    changes = {}
    if event.kind is EventKind.COMPLETE and entry.completion_time is None:
        changes["completion_time"] = event.observed_at
    if event.kind is EventKind.TRANSITION and entry.transition_time is None:
        changes["transition_time"] = event.observed_at
    if not changes:
        return None

    amended = entry.evolve(**changes)
    end = max(t for t in (amended.completion_time, amended.transition_time) if t is not None)
    return amended.evolve(
        end_time=end,
        duration=max(end - amended.start_time, 0),
        observed_at=max(entry.observed_at, event.observed_at),
    )


def _reconstruct(event: LifecycleEvent, settings: CorrelatorSettings) -> DashboardEntry:
    """Best-effort entry from an orphaned terminal event; start time is estimated."""
    max_time = event.max_time_seconds or settings.default_max_time
    session = Session(
        qa_operation_id=event.qa_operation_id,
        start_time=event.observed_at - max_time * 1000,
        max_time=max_time,
        batch_id=event.related_batch_id,
        completion_time=event.observed_at if event.kind is EventKind.COMPLETE else None,
        transition_time=event.observed_at if event.kind is EventKind.TRANSITION else None,
        last_seen_at=event.observed_at,
    )
    logger.info(
        "Reconstructed %s from orphaned %s event",
        event.qa_operation_id,
        event.kind.value,
    )
    return finalize(session, STATUS_COMPLETED, event.observed_at, event.observed_at, partial=True)


def session_entry(session: Session, now: int) -> DashboardEntry:
    """Live entry for an in-flight session."""
    if session.status == STATUS_PENDING_TRANSITION and session.completion_time is not None:
        end = session.completion_time
    else:
        end = max(now, session.last_seen_at or now)
    return _entry(session, session.status, end, session.last_seen_at or now, end_time=None)


def finalize(
    session: Session,
    status: str,
    end_time: int,
    observed_at: int | None,
    partial: bool = False,
) -> DashboardEntry:
    return _entry(session, status, end_time, observed_at or end_time, end_time=end_time, partial=partial)


def _entry(
    session: Session,
    status: str,
    end: int,
    observed_at: int,
    end_time: int | None,
    partial: bool = False,
) -> DashboardEntry:
    return DashboardEntry(
        id=session.qa_operation_id,
        type=TYPE_AUDIT,
        start_time=session.start_time,
        duration=max(end - session.start_time, 0),
        status=status,
        project_id=session.project_id,
        project_name=session.project_name,
        description=f"Operation ID: {session.qa_operation_id}",
        qa_operation_id=session.qa_operation_id,
        attempt_id=session.attempt_id,
        review_level=session.review_level,
        max_time=session.max_time,
        end_time=end_time,
        completion_time=session.completion_time,
        transition_time=session.transition_time,
        observed_at=observed_at,
        partial=partial,
    )


class SessionCorrelator:
    """Owns the in-flight session table and applies step() to it.

    Not thread-safe: the engine feeds it one event or tick at a time.
    """

    def __init__(self, settings: CorrelatorSettings | None = None, sessions: Iterable[Session] = ()):
        self._settings = settings or CorrelatorSettings()
        self._sessions: dict[str, Session] = {}
        self.restore(sessions)

    @property
    def settings(self) -> CorrelatorSettings:
        return self._settings

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def get(self, qa_operation_id: str) -> Session | None:
        return self._sessions.get(qa_operation_id)

    def restore(self, sessions: Iterable[Session]) -> None:
        """Replace the session table, e.g. with state loaded after a restart."""
        self._sessions = {}
        for session in sessions:
            if session.max_time <= 0:
                session = replace(session, max_time=self._settings.default_max_time)
            self._sessions[session.qa_operation_id] = session

    def discard(self, qa_operation_id: str) -> bool:
        return self._sessions.pop(qa_operation_id, None) is not None

    def apply(
        self,
        event: LifecycleEvent,
        finalized: Mapping[str, DashboardEntry] | None = None,
    ) -> list[DashboardEntry]:
        """Apply one event; return the entries it produced or updated."""
        qa_id = event.qa_operation_id
        before = self._sessions.get(qa_id)
        outcome = step(before, event, self._settings, (finalized or {}).get(qa_id))

        if outcome.session is None:
            self._sessions.pop(qa_id, None)
        else:
            self._sessions[qa_id] = outcome.session

        after_status = outcome.session.status if outcome.session else (outcome.entry.status if outcome.entry else None)
        before_status = before.status if before else None
        if after_status is not None and after_status != before_status:
            logger.info("Session %s: %s -> %s", qa_id, before_status or "not-started", after_status)

        return [outcome.entry] if outcome.entry is not None else []

    def tick(self, now: int) -> list[DashboardEntry]:
        """Finalize sessions whose grace window or abandonment timeout has elapsed."""
        finished: list[DashboardEntry] = []
        grace_ms = self._settings.grace_window_ms

        for qa_id, session in list(self._sessions.items()):
            observed = max(now, session.last_seen_at or 0)

            if session.status == STATUS_PENDING_TRANSITION and session.completion_time is not None:
                if now - session.completion_time >= grace_ms:
                    finished.append(finalize(session, STATUS_COMPLETED, session.completion_time, observed))
                    del self._sessions[qa_id]
                    logger.info("Session %s: grace window elapsed, completed", qa_id)
                continue

            limit_ms = session.max_time * self._settings.timeout_multiplier * 1000
            if now - session.start_time > limit_ms:
                end = session.last_seen_at or session.start_time
                finished.append(finalize(session, STATUS_CANCELED, end, observed))
                del self._sessions[qa_id]
                logger.info("Session %s: abandoned after %.0f min, canceled", qa_id, (now - session.start_time) / 60000)

        return finished
