"""
Session health: how a single study session held up from start to finish.

Live and completed sessions go through the same computation; a live session
is simply evaluated on the reviews recorded so far.
"""

from collections.abc import Sequence

from kairos.application.config import AnalyticsPolicy
from kairos.domain.analytics.models import ReviewEvent, SessionTracking
from kairos.domain.analytics.results import (
    HealthLabel,
    QuartileStat,
    SessionHealthSnapshot,
)

from .patterns import analyze_session_fatigue
from .stats import mean, ratio, split_quartiles


def build_session_health(
    session: SessionTracking,
    events: Sequence[ReviewEvent],
    policy: AnalyticsPolicy,
) -> SessionHealthSnapshot | None:
    """
    Compute quartile trends and a health label for one session.

    Returns:
        None when the session has fewer than ``session_min_reviews`` reviews.
    """
    reviews = sorted(events, key=lambda r: r.reviewed_at)
    fatigue = analyze_session_fatigue(session.session_id, reviews, policy)
    if fatigue is None:
        return None

    quartiles = [
        QuartileStat(
            quartile=i + 1,
            review_count=len(group),
            accuracy=ratio(sum(1 for r in group if r.was_correct), len(group)),
            mean_response_time_ms=mean([float(r.response_time_ms) for r in group]) or 0.0,
        )
        for i, group in enumerate(split_quartiles(reviews))
    ]
    first, last = quartiles[0], quartiles[-1]

    accuracy_decay = first.accuracy - last.accuracy
    pace_decay = ratio(
        last.mean_response_time_ms - first.mean_response_time_ms,
        first.mean_response_time_ms,
    )

    if accuracy_decay > policy.health_poor_accuracy_drop or pace_decay > policy.health_poor_pace_decay:
        label = HealthLabel.POOR
    elif (
        fatigue.onset_position is not None
        or accuracy_decay > policy.health_declining_accuracy_drop
        or pace_decay > policy.health_declining_pace_decay
    ):
        label = HealthLabel.DECLINING
    else:
        label = HealthLabel.HEALTHY

    return SessionHealthSnapshot(
        session_id=session.session_id,
        is_live=session.is_live,
        review_count=len(reviews),
        accuracy=ratio(sum(1 for r in reviews if r.was_correct), len(reviews)),
        quartiles=quartiles,
        accuracy_decay=accuracy_decay,
        pace_decay=pace_decay,
        fatigue_onset_position=fatigue.onset_position,
        label=label,
        recommendations=_recommendations(label, accuracy_decay, pace_decay, session.is_live, policy),
    )


def _recommendations(
    label: HealthLabel,
    accuracy_decay: float,
    pace_decay: float,
    is_live: bool,
    policy: AnalyticsPolicy,
) -> list[str]:
    if is_live:
        if label is HealthLabel.HEALTHY:
            return []
        return ["Consider taking a break or ending the session"]

    recommendations = []
    if label is HealthLabel.POOR:
        recommendations.append("High fatigue detected. Consider shorter sessions.")
    elif label is HealthLabel.DECLINING:
        recommendations.append("Performance dipped later in the session. A short break may help.")
    if accuracy_decay > policy.health_poor_accuracy_drop:
        recommendations.append("Significant accuracy decline. Take breaks every 15-20 cards.")
    if pace_decay > policy.health_poor_pace_decay:
        recommendations.append("Response time increased significantly. You may be losing focus.")
    if not recommendations:
        recommendations.append("Good session! Your performance was consistent throughout.")
    return recommendations
