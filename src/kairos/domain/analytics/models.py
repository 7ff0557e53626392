"""
Domain models for the review and session logs.

These are pure data structures with no I/O or external dependencies.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class ReviewEvent:
    """
    A single card review.

    Attributes:
        user_id: The learner who reviewed the card.
        card_id: The card that was reviewed.
        deck_id: Deck the card belonged to at review time.
        session_id: Study session the review happened in (None if sessionless).
        reviewed_at: Timezone-aware UTC timestamp of the review.
        response_quality: Self-rated quality, 1 (blackout) to 5 (perfect).
        response_time_ms: Time from card shown to answer.
        interval_before: Scheduled interval before this review (days).
        interval_after: Interval assigned by the scheduler after this review (days).
        ease_factor: Scheduler ease factor after this review (e.g. 2.5).
        was_correct: Whether the review counted as a successful recall.
    """

    user_id: str
    card_id: str
    deck_id: str
    session_id: str | None
    reviewed_at: datetime
    response_quality: int
    response_time_ms: int
    interval_before: float
    interval_after: float
    ease_factor: float
    was_correct: bool


@dataclass(frozen=True)
class SessionTracking:
    """
    A study session record.

    ``ended_at`` is None while the session is live. ``utc_offset_minutes`` is
    the learner's local offset captured at session start, if the client sent one.
    """

    session_id: str
    user_id: str
    started_at: datetime
    ended_at: datetime | None = None
    device_category: str = "unknown"
    utc_offset_minutes: int | None = None

    @property
    def is_live(self) -> bool:
        return self.ended_at is None


@dataclass(frozen=True)
class PrerequisiteGraph:
    """
    Declared prerequisites, card_id -> prerequisite card ids.

    ``available`` is False when the store has no prerequisite data at all,
    which is different from a graph in which no card declares prerequisites.
    """

    edges: Mapping[str, frozenset[str]] = field(default_factory=dict)
    available: bool = True

    @classmethod
    def unavailable(cls) -> "PrerequisiteGraph":
        return cls(edges={}, available=False)

    def prerequisites_of(self, card_id: str) -> frozenset[str]:
        return self.edges.get(card_id, frozenset())


@dataclass(frozen=True)
class ReviewFilter:
    """
    Read filter for review queries.

    ``until`` is inclusive and is how callers pin an as-of snapshot.
    ``limit``/``offset`` page through histories too large for one call.
    """

    user_id: str | None = None
    deck_id: str | None = None
    card_id: str | None = None
    session_id: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int | None = None
    offset: int = 0


@dataclass(frozen=True)
class SessionFilter:
    """Read filter for session queries. ``started_before`` is inclusive."""

    user_id: str | None = None
    session_id: str | None = None
    started_before: datetime | None = None
