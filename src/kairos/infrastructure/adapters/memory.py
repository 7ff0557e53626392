"""
In-Memory Event Repository — Infrastructure adapter over Python lists.

Backs tests and demos. Fixture files are YAML (or JSON, which YAML reads too)
with ``reviews``, ``sessions`` and optional ``prerequisites`` lists.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from kairos.domain.analytics.models import (
    PrerequisiteGraph,
    ReviewEvent,
    ReviewFilter,
    SessionFilter,
    SessionTracking,
)
from kairos.domain.analytics.ports import EventRepository
from kairos.domain.constants import DEFAULT_ROW_CAP
from kairos.domain.errors import RangeTooLargeError, StoreUnavailable

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        moment = value
    else:
        moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def review_from_dict(row: dict[str, Any]) -> ReviewEvent:
    return ReviewEvent(
        user_id=str(row["user_id"]),
        card_id=str(row["card_id"]),
        deck_id=str(row["deck_id"]),
        session_id=str(row["session_id"]) if row.get("session_id") else None,
        reviewed_at=_parse_timestamp(row["reviewed_at"]),
        response_quality=int(row.get("response_quality", 3)),
        response_time_ms=int(row.get("response_time_ms", 0)),
        interval_before=float(row.get("interval_before", 0)),
        interval_after=float(row.get("interval_after", 0)),
        ease_factor=float(row.get("ease_factor", 2.5)),
        was_correct=bool(row["was_correct"]),
    )


def session_from_dict(row: dict[str, Any]) -> SessionTracking:
    ended_at = row.get("ended_at")
    offset = row.get("utc_offset_minutes")
    return SessionTracking(
        session_id=str(row["session_id"]),
        user_id=str(row["user_id"]),
        started_at=_parse_timestamp(row["started_at"]),
        ended_at=_parse_timestamp(ended_at) if ended_at else None,
        device_category=row.get("device_category") or "unknown",
        utc_offset_minutes=int(offset) if offset is not None else None,
    )


class InMemoryEventRepository(EventRepository):
    """
    Serves review and session records held in memory.

    ``prerequisites`` is a list of (card_id, prerequisite_id, deck_id) edges;
    None means the store has no prerequisite data.
    """

    def __init__(
        self,
        reviews: Iterable[ReviewEvent] = (),
        sessions: Iterable[SessionTracking] = (),
        prerequisites: Iterable[tuple[str, str, str | None]] | None = None,
        max_rows: int = DEFAULT_ROW_CAP,
    ):
        # Stable sort keeps insertion order for equal timestamps
        self._reviews = sorted(reviews, key=lambda e: e.reviewed_at)
        self._sessions = sorted(sessions, key=lambda s: s.started_at)
        self._prerequisites = list(prerequisites) if prerequisites is not None else None
        self.max_rows = max_rows

    @classmethod
    def from_file(cls, path: Path, max_rows: int = DEFAULT_ROW_CAP) -> "InMemoryEventRepository":
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise StoreUnavailable(f"Could not load fixture file {path}: {e}") from e

        prerequisites = data.get("prerequisites")
        edges = None
        if prerequisites is not None:
            edges = [
                (str(p["card_id"]), str(p["prerequisite_id"]), p.get("deck_id"))
                for p in prerequisites
            ]

        repo = cls(
            reviews=[review_from_dict(r) for r in data.get("reviews", [])],
            sessions=[session_from_dict(s) for s in data.get("sessions", [])],
            prerequisites=edges,
            max_rows=max_rows,
        )
        logger.info(
            f"Loaded {len(repo._reviews)} reviews and {len(repo._sessions)} sessions from {path}"
        )
        return repo

    def _matches(self, event: ReviewEvent, f: ReviewFilter) -> bool:
        if f.user_id is not None and event.user_id != f.user_id:
            return False
        if f.deck_id is not None and event.deck_id != f.deck_id:
            return False
        if f.card_id is not None and event.card_id != f.card_id:
            return False
        if f.session_id is not None and event.session_id != f.session_id:
            return False
        if f.since is not None and event.reviewed_at < f.since:
            return False
        if f.until is not None and event.reviewed_at > f.until:
            return False
        return True

    async def query_reviews(self, review_filter: ReviewFilter) -> list[ReviewEvent]:
        if review_filter.limit is not None and review_filter.limit > self.max_rows:
            raise RangeTooLargeError(self.max_rows)

        matched = [e for e in self._reviews if self._matches(e, review_filter)]
        if review_filter.limit is None and len(matched) > self.max_rows:
            raise RangeTooLargeError(self.max_rows)

        start = max(0, review_filter.offset)
        if review_filter.limit is None:
            return matched[start:]
        return matched[start : start + review_filter.limit]

    async def query_sessions(self, session_filter: SessionFilter) -> list[SessionTracking]:
        matched = [
            s
            for s in self._sessions
            if (session_filter.user_id is None or s.user_id == session_filter.user_id)
            and (session_filter.session_id is None or s.session_id == session_filter.session_id)
            and (
                session_filter.started_before is None
                or s.started_at <= session_filter.started_before
            )
        ]
        if len(matched) > self.max_rows:
            raise RangeTooLargeError(self.max_rows)
        return matched

    async def query_prerequisite_graph(self, deck_id: str | None = None) -> PrerequisiteGraph:
        if not self._prerequisites:
            return PrerequisiteGraph.unavailable()

        edges: dict[str, set[str]] = {}
        for card_id, prerequisite_id, edge_deck in self._prerequisites:
            if deck_id is not None and edge_deck is not None and edge_deck != deck_id:
                continue
            edges.setdefault(card_id, set()).add(prerequisite_id)
        return PrerequisiteGraph(edges={k: frozenset(v) for k, v in edges.items()})
