"""Event normalizer — raw intercepted calls to typed lifecycle events.

The host application makes many calls that have nothing to do with audit
tracking, so normalize() is a filter rather than a validator: anything that
does not match one of the enumerated endpoint shapes below comes back as
None, and so does anything whose body cannot be parsed. It never raises.

Recognized shapes:

  BEGIN       /corp-api/chatBulkAudit/relatedQaOperationForAuditBatch/<batch>
  BEGIN       /corp-api/chatBulkAudit/attemptAudit/...?pageLoadId=...
  BEGIN       /corp-api/chatBulkAudit/attemptAudit/.../response?...
  COMPLETE    /corp-api/chatBulkAudit/complete/<id>          (mutating method)
  TRANSITION  /corp-api/qm/operations/<id>/transition        (mutating method)
  CANCEL      /corp-api/qm/operations/<id>/nodes             (response says canceled)
"""

from __future__ import annotations

import enum
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

_CHAT_BULK_AUDIT = "/corp-api/chatBulkAudit/"
_RELATED_QA_OPERATION = _CHAT_BULK_AUDIT + "relatedQaOperationForAuditBatch/"
_ATTEMPT_AUDIT = _CHAT_BULK_AUDIT + "attemptAudit/"
_COMPLETE = _CHAT_BULK_AUDIT + "complete/"
_QM_OPERATIONS = "/corp-api/qm/operations/"

_MUTATING_METHODS = {"POST", "PUT", "PATCH"}

# Depth limit for scanning node responses; they can be very large.
_CANCEL_SCAN_DEPTH = 8

# Project segment precedes a worker-team level (".../Project/Attempter") or
# a trailing tag (".../Project [SCALE_REF]").
_PROJECT_NAME_RE = re.compile(r"/([^/]+)(?=/(?:(?:Super)?Attempter|Reviewer|L\d+))|/([^/\[]+?)\s*\[[^\]]+\]$")
_LEADING_TAG_RE = re.compile(r"(?:\[[^\]]+\]\s*)?(.*)", re.DOTALL)


class EventKind(str, enum.Enum):
    BEGIN = "begin"
    COMPLETE = "complete"
    TRANSITION = "transition"
    CANCEL = "cancel"


@dataclass(frozen=True)
class RawCall:
    """One network call as delivered by the interceptor."""

    url: str
    method: str = "GET"
    request_body: Any = None
    response_body: Any = None
    timestamp: int = 0  # ms since epoch

    @classmethod
    def from_dict(cls, d: dict) -> RawCall:
        """Build from the interceptor's wire shape (camelCase keys)."""
        return cls(
            url=str(d.get("url", "")),
            method=str(d.get("method") or "GET"),
            request_body=d.get("requestBody", d.get("request_body")),
            response_body=d.get("responseBody", d.get("response_body")),
            timestamp=int(d.get("timestamp") or 0),
        )


@dataclass(frozen=True)
class LifecycleEvent:
    kind: EventKind
    qa_operation_id: str
    observed_at: int
    related_batch_id: str | None = None
    attempt_id: str | None = None
    review_level: int | None = None
    max_time_seconds: int | None = None
    project_id: str | None = None
    project_name: str | None = None


class _Malformed(Exception):
    """Internal: the call matched a pattern but its payload is unusable."""


def normalize(raw_call: RawCall | dict) -> LifecycleEvent | None:
    """Turn a raw intercepted call into a LifecycleEvent, or None."""
    try:
        call = raw_call if isinstance(raw_call, RawCall) else RawCall.from_dict(raw_call)
        event = _route(call)
    except (_Malformed, ValueError, TypeError, AttributeError, KeyError, OverflowError) as e:
        logger.debug("Dropping malformed call %r: %s", getattr(raw_call, "url", raw_call), e)
        return None
    if event is None:
        logger.debug("Ignoring unrecognized call %s", getattr(call, "url", ""))
    return event


def _route(call: RawCall) -> LifecycleEvent | None:
    parsed = urlparse(call.url)
    path = parsed.path
    query = parse_qs(parsed.query)
    method = call.method.upper()

    if _ATTEMPT_AUDIT in path:
        if path.rstrip("/").endswith("/response"):
            return _attempt_response_event(call, query)
        if "pageLoadId" in query:
            return _attempt_event(call, query)
        return None

    if _RELATED_QA_OPERATION in path:
        return _related_qa_operation_event(call, path, query)

    if _COMPLETE in path:
        if method not in _MUTATING_METHODS:
            return None
        return _complete_event(call, path)

    if _QM_OPERATIONS in path:
        tail = path.rstrip("/")
        if tail.endswith("/transition"):
            if method not in _MUTATING_METHODS:
                return None
            return _simple_event(EventKind.TRANSITION, _segment_after(path, _QM_OPERATIONS), call)
        if tail.endswith("/nodes"):
            body = _coerce_body(call.response_body)
            if body is not None and _reports_canceled(body):
                return _simple_event(EventKind.CANCEL, _segment_after(path, _QM_OPERATIONS), call)
        return None

    return None


def _attempt_event(call: RawCall, query: dict) -> LifecycleEvent | None:
    body = _coerce_body(call.response_body) or {}
    qa_id = _qa_id_from(query, call.request_body, body)
    if not qa_id:
        return None
    context = body.get("auditedEntityContext") or {}
    if not isinstance(context, dict):
        raise _Malformed("auditedEntityContext is not an object")
    return LifecycleEvent(
        kind=EventKind.BEGIN,
        qa_operation_id=qa_id,
        observed_at=call.timestamp,
        attempt_id=_str_or_none(context.get("entityAttemptId")),
        review_level=_int_or_none(context.get("entityReviewLevel")),
        project_id=_str_or_none(body.get("project")),
    )


def _attempt_response_event(call: RawCall, query: dict) -> LifecycleEvent | None:
    body = _coerce_body(call.response_body) or {}
    qa_id = _qa_id_from(query, call.request_body, body)
    if not qa_id:
        return None
    team_name = ((body.get("auditedAttempt") or {}).get("estimatedPayoutMeta") or {}).get("workerTeamName")
    return LifecycleEvent(
        kind=EventKind.BEGIN,
        qa_operation_id=qa_id,
        observed_at=call.timestamp,
        project_name=extract_project_name(team_name) if isinstance(team_name, str) else None,
    )


def _related_qa_operation_event(call: RawCall, path: str, query: dict) -> LifecycleEvent | None:
    body = _coerce_body(call.response_body) or {}
    context = (body.get("stateMachine") or {}).get("context") or {}
    qa_id = _str_or_none(context.get("operationId")) or _str_or_none(body.get("operationId"))
    qa_id = qa_id or _first(query.get("qaOperationId"))
    if not qa_id:
        return None
    max_time = body.get("maxTimeRequired")
    return LifecycleEvent(
        kind=EventKind.BEGIN,
        qa_operation_id=qa_id,
        observed_at=call.timestamp,
        related_batch_id=_segment_after(path, _RELATED_QA_OPERATION),
        max_time_seconds=_positive_seconds(max_time),
    )


def _complete_event(call: RawCall, path: str) -> LifecycleEvent | None:
    qa_id = None
    for body in (_coerce_body(call.request_body), _coerce_body(call.response_body)):
        if isinstance(body, dict) and body.get("qaOperationId"):
            qa_id = str(body["qaOperationId"])
            break
    return _simple_event(EventKind.COMPLETE, qa_id or _segment_after(path, _COMPLETE), call)


def _simple_event(kind: EventKind, qa_id: str | None, call: RawCall) -> LifecycleEvent | None:
    if not qa_id:
        return None
    return LifecycleEvent(kind=kind, qa_operation_id=qa_id, observed_at=call.timestamp)


def extract_project_name(worker_team_name: str) -> str | None:
    """Pull the project name out of a worker-team path.

    >>> extract_project_name("/Org/My Project/Attempter")
    'My Project'
    >>> extract_project_name("/Org/Other Project [SCALE_REF]")
    'Other Project'
    >>> extract_project_name("/Org/[SCALE_REF] Plain")
    'Plain'
    """
    match = _PROJECT_NAME_RE.search(worker_team_name)
    if match:
        raw = match.group(1) or match.group(2)
    else:
        segments = [s for s in worker_team_name.split("/") if s]
        if not segments:
            return None
        raw = segments[-1]
    name = _LEADING_TAG_RE.match(raw).group(1).strip()
    return name or None


def _reports_canceled(obj: Any, depth: int = 0) -> bool:
    if depth > _CANCEL_SCAN_DEPTH:
        return False
    if isinstance(obj, dict):
        state_machine = obj.get("stateMachine")
        if isinstance(state_machine, dict) and state_machine.get("currentState") == "canceled":
            return True
        if obj.get("currentState") == "canceled":
            return True
        return any(_reports_canceled(v, depth + 1) for v in obj.values() if isinstance(v, (dict, list)))
    if isinstance(obj, list):
        return any(_reports_canceled(v, depth + 1) for v in obj if isinstance(v, (dict, list)))
    return False


def _coerce_body(body: Any) -> dict | list | None:
    """Normalise a payload to a dict (or list for deep scans). Raises _Malformed on bad JSON."""
    if body is None:
        return None
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        if not body.strip():
            return None
        try:
            body = json.loads(body)
        except json.JSONDecodeError as e:
            raise _Malformed(f"unparseable body: {e}") from e
    if isinstance(body, list):
        # Several endpoints answer with a one-element array.
        return body[0] if body and isinstance(body[0], dict) else body
    if isinstance(body, dict):
        return body
    return None


def _qa_id_from(query: dict, request_body: Any, response_body: Any) -> str | None:
    qa_id = _first(query.get("qaOperationId"))
    if qa_id:
        return qa_id
    for body in (_coerce_body(request_body), response_body):
        if isinstance(body, dict) and body.get("qaOperationId"):
            return str(body["qaOperationId"])
    return None


def _segment_after(path: str, marker: str) -> str | None:
    _, _, rest = path.partition(marker)
    for segment in rest.split("/"):
        if segment:
            return segment
    return None


def _first(values: list[str] | None) -> str | None:
    return values[0] if values else None


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _int_or_none(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _positive_seconds(value: Any) -> int | None:
    """A usable max-time in seconds; non-numbers, non-finite and non-positive values give None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value) if value > 0 else None
