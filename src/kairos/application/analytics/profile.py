"""
Study habits for the learning profile.
"""

from collections import Counter
from collections.abc import Sequence

from kairos.domain.analytics.models import ReviewEvent, SessionTracking
from kairos.domain.analytics.results import StudyPatterns

from .patterns import local_datetime, session_offsets
from .stats import mean

DEVICE_CATEGORIES = ("mobile", "tablet", "desktop", "unknown")


def _mode(values: Sequence[int]) -> int | None:
    """Most common value; the smallest wins ties."""
    if not values:
        return None
    counts = Counter(values)
    return min(counts, key=lambda v: (-counts[v], v))


def build_study_patterns(
    events: Sequence[ReviewEvent],
    sessions: Sequence[SessionTracking],
) -> StudyPatterns:
    offsets = session_offsets(sessions)
    local_times = [local_datetime(e, offsets) for e in events]

    durations = [
        (s.ended_at - s.started_at).total_seconds() / 60
        for s in sessions
        if s.ended_at is not None and s.ended_at >= s.started_at
    ]
    cards_per_session = Counter(e.session_id for e in events if e.session_id)

    devices = {category: 0 for category in DEVICE_CATEGORIES}
    for session in sessions:
        category = session.device_category if session.device_category in devices else "unknown"
        devices[category] += 1

    return StudyPatterns(
        total_sessions=len(sessions),
        total_study_days=len({t.date() for t in local_times}),
        preferred_hour=_mode([t.hour for t in local_times]),
        preferred_weekday=_mode([t.weekday() for t in local_times]),
        avg_session_minutes=mean(durations),
        avg_cards_per_session=mean([float(n) for n in cards_per_session.values()]),
        device_breakdown=devices,
    )
