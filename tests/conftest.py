from datetime import datetime, timedelta, timezone

import pytest

from kairos.application.config import AnalyticsPolicy
from kairos.domain.analytics.models import ReviewEvent, SessionTracking
from kairos.infrastructure.adapters.memory import InMemoryEventRepository

# Wednesday; the ISO week starts Monday 2026-03-16
NOW = datetime(2026, 3, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def policy():
    return AnalyticsPolicy()


@pytest.fixture
def make_review():
    """Factory for ReviewEvents with sensible defaults; ``ago`` is a timedelta before NOW."""

    def _make(
        card_id="c1",
        was_correct=True,
        ago=timedelta(hours=1),
        user_id="u1",
        deck_id="d1",
        session_id="s1",
        response_time_ms=2000,
        interval_before=1.0,
        interval_after=3.0,
        ease_factor=2.5,
        response_quality=None,
        at=None,
    ):
        return ReviewEvent(
            user_id=user_id,
            card_id=card_id,
            deck_id=deck_id,
            session_id=session_id,
            reviewed_at=at if at is not None else NOW - ago,
            response_quality=response_quality or (4 if was_correct else 1),
            response_time_ms=response_time_ms,
            interval_before=interval_before,
            interval_after=interval_after,
            ease_factor=ease_factor,
            was_correct=was_correct,
        )

    return _make


@pytest.fixture
def make_session():
    def _make(
        session_id="s1",
        user_id="u1",
        started_at=None,
        ended_at=None,
        device_category="desktop",
        utc_offset_minutes=None,
        live=False,
    ):
        started = started_at or NOW - timedelta(hours=2)
        if ended_at is None and not live:
            ended_at = started + timedelta(hours=1)
        return SessionTracking(
            session_id=session_id,
            user_id=user_id,
            started_at=started,
            ended_at=ended_at,
            device_category=device_category,
            utc_offset_minutes=utc_offset_minutes,
        )

    return _make


@pytest.fixture
def make_repo():
    def _make(reviews=(), sessions=(), prerequisites=None, max_rows=50_000):
        return InMemoryEventRepository(
            reviews=reviews,
            sessions=sessions,
            prerequisites=prerequisites,
            max_rows=max_rows,
        )

    return _make
