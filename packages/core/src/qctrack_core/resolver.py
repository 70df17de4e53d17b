"""Identifier resolver — scraped table-cell text to full audit/batch ids.

The host page's audit tables truncate ids, so a cell may show the full id,
only its first few characters, or only its last few. Rather than searching
substrings at lookup time, the link map indexes every record under three
explicit keys (full id, prefix, suffix) once per page load, and lookups try
those tiers in a fixed order: exact, then prefix, then suffix.

The map is rebuilt wholesale whenever the page reports a new node list and
swapped in by reference, so readers never see a half-built map.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

KEY_LENGTH = 5

LOOKUP_URL_TEMPLATE = "https://app.outlier.ai/en/expert/outlieradmin/tools/chat_bulk_audit/{batch_id}"


@dataclass(frozen=True)
class LinkMapEntry:
    qa_id: str
    batch_id: str


@dataclass(frozen=True)
class CellKeys:
    exact: str | None = None
    prefix: str | None = None
    suffix: str | None = None

    def in_priority_order(self) -> list[str]:
        return [k for k in (self.exact, self.prefix, self.suffix) if k]


def build_link_map(host_page_data: Any) -> dict[str, LinkMapEntry]:
    """Index every usable node under its full id, prefix and suffix.

    Accepts ``{"nodes": [...]}`` or a bare list of nodes. Each node carries
    its QA operation either nested (``qaOperation._id`` /
    ``qaOperation.relatedObjectId``) or flattened (``qaOperationId`` /
    ``qaOperationRelatedObjectId``). Nodes missing an id are skipped.
    Colliding prefixes/suffixes are last-write-wins.
    """
    if isinstance(host_page_data, list):
        nodes = host_page_data
    elif isinstance(host_page_data, Mapping) and isinstance(host_page_data.get("nodes"), list):
        nodes = host_page_data["nodes"]
    else:
        nodes = []

    link_map: dict[str, LinkMapEntry] = {}
    skipped = 0
    for node in nodes:
        ids = _node_ids(node)
        if ids is None:
            skipped += 1
            continue
        full_id, entry = ids
        link_map[full_id] = entry
        link_map[full_id[:KEY_LENGTH]] = entry
        link_map[full_id[-KEY_LENGTH:]] = entry

    if skipped:
        logger.debug("Skipped %d node(s) missing qa/batch ids", skipped)
    return link_map


def _node_ids(node: Any) -> tuple[str, LinkMapEntry] | None:
    if not isinstance(node, Mapping):
        return None
    nested = node.get("qaOperation")
    if not isinstance(nested, Mapping):
        nested = {}

    qa_id = nested.get("_id") or node.get("qaOperationId")
    batch_id = nested.get("relatedObjectId") or node.get("relatedObjectId") or node.get("qaOperationRelatedObjectId")
    full_id = node.get("_id") or node.get("id") or qa_id
    if not qa_id or not batch_id or not full_id:
        return None
    return str(full_id), LinkMapEntry(qa_id=str(qa_id), batch_id=str(batch_id))


def derive_cell_key_candidates(cell_text: str | None) -> CellKeys:
    """Lookup keys for a scraped cell, using the same lengths as build_link_map()."""
    raw = (cell_text or "").strip()
    if not raw:
        return CellKeys()
    return CellKeys(exact=raw, prefix=raw[:KEY_LENGTH], suffix=raw[-KEY_LENGTH:])


def resolve_cell(link_map: Mapping[str, LinkMapEntry], cell_text: str | None) -> LinkMapEntry | None:
    """First hit among exact, prefix, suffix — or None ("no link available")."""
    for key in derive_cell_key_candidates(cell_text).in_priority_order():
        entry = link_map.get(key)
        if entry is not None:
            return entry
    return None


def build_lookup_url(batch_id: str) -> str:
    # No closeOnComplete=1: opening a lookup link must not look like starting an audit.
    if not batch_id:
        raise ValueError("batch_id must be non-empty.")
    return LOOKUP_URL_TEMPLATE.format(batch_id=batch_id)


class LinkResolver:
    """Holds the link map for the current page context."""

    def __init__(self, host_page_data: Any = None):
        self._map: Mapping[str, LinkMapEntry] = build_link_map(host_page_data) if host_page_data is not None else {}

    @property
    def link_map(self) -> Mapping[str, LinkMapEntry]:
        return self._map

    def refresh(self, host_page_data: Any) -> None:
        new_map = build_link_map(host_page_data)
        self._map = new_map
        logger.info("Link map rebuilt with %d key(s)", len(new_map))

    def resolve(self, cell_text: str | None) -> LinkMapEntry | None:
        return resolve_cell(self._map, cell_text)

    def lookup_url(self, cell_text: str | None) -> str | None:
        entry = self.resolve(cell_text)
        return build_lookup_url(entry.batch_id) if entry else None
