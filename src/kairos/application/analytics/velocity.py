"""
Learning velocity and daily activity series.

Both series are contiguous and zero-filled so charts never see gaps.
"""

from collections import defaultdict
from collections.abc import Sequence
from datetime import date, datetime, time, timedelta, timezone

from kairos.application.config import AnalyticsPolicy
from kairos.domain.analytics.models import ReviewEvent
from kairos.domain.analytics.results import (
    Confidence,
    DailySummaryPoint,
    Trend,
    VelocityHistory,
    VelocityPoint,
)

from .stats import mean, ols_slope, ratio


def week_start(moment: datetime) -> date:
    """Monday of the ISO week containing ``moment`` (UTC)."""
    day = moment.astimezone(timezone.utc).date()
    return day - timedelta(days=day.weekday())


def velocity_window_start(as_of: datetime, weeks: int) -> datetime:
    """UTC midnight of the first Monday covered by a ``weeks``-long history."""
    first = week_start(as_of) - timedelta(weeks=weeks - 1)
    return datetime.combine(first, time.min, tzinfo=timezone.utc)


def daily_window_start(as_of: datetime, days: int) -> datetime:
    first = as_of.astimezone(timezone.utc).date() - timedelta(days=days - 1)
    return datetime.combine(first, time.min, tzinfo=timezone.utc)


def classify_trend(values: Sequence[float], policy: AnalyticsPolicy) -> tuple[Trend | None, float | None]:
    """
    Classify the OLS slope over the non-empty buckets of ``values``.

    The slope is taken against bucket index; accelerating/decelerating need it
    to exceed the tolerance as a fraction of the mean non-empty bucket value.
    """
    points = [(float(i), float(v)) for i, v in enumerate(values) if v > 0]
    if len(points) < policy.trend_min_points:
        return None, None

    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    slope = ols_slope(xs, ys)
    if slope is None:
        return None, None

    tolerance = policy.trend_slope_tolerance * (sum(ys) / len(ys))
    if slope > tolerance:
        return Trend.ACCELERATING, slope
    if slope < -tolerance:
        return Trend.DECELERATING, slope
    return Trend.STABLE, slope


def build_velocity_history(
    events: Sequence[ReviewEvent],
    as_of: datetime,
    weeks: int,
    policy: AnalyticsPolicy,
) -> VelocityHistory:
    """
    Bucket mastery transitions into ISO weeks.

    A card counts as mastered in the week of its first review inside the
    window whose scheduled interval crosses the mastery threshold; reviews of
    cards already past it do not count.
    """
    first_week = week_start(as_of) - timedelta(weeks=weeks - 1)
    window_start = velocity_window_start(as_of, weeks)

    mastered: dict[date, int] = defaultdict(int)
    totals: dict[date, int] = defaultdict(int)
    correct: dict[date, int] = defaultdict(int)
    learned: dict[date, int] = defaultdict(int)
    seen_mastered: set[str] = set()

    for event in sorted(events, key=lambda e: e.reviewed_at):
        if event.reviewed_at < window_start or event.reviewed_at > as_of:
            continue
        week = week_start(event.reviewed_at)
        totals[week] += 1
        if event.was_correct:
            correct[week] += 1
        if event.interval_before <= 0:
            learned[week] += 1
        if (
            event.card_id not in seen_mastered
            and event.interval_before < policy.mastery_interval_days
            and event.interval_after >= policy.mastery_interval_days
        ):
            seen_mastered.add(event.card_id)
            mastered[week] += 1

    points = []
    for i in range(weeks):
        week = first_week + timedelta(weeks=i)
        points.append(
            VelocityPoint(
                week_start=week,
                mastered_count=mastered[week],
                total_reviews=totals[week],
                correct_reviews=correct[week],
                new_cards_learned=learned[week],
            )
        )

    counts = [p.mastered_count for p in points]
    trend, slope = classify_trend(counts, policy)
    return VelocityHistory(
        points=points,
        trend=trend,
        slope=slope,
        rolling_4week_avg=mean(counts[-4:]) or 0.0,
        confidence=Confidence.HIGH if trend is not None else Confidence.INSUFFICIENT,
    )


def build_daily_summary(
    events: Sequence[ReviewEvent],
    as_of: datetime,
    days: int,
) -> list[DailySummaryPoint]:
    """Per-UTC-day activity for the ``days`` days ending on as_of's date."""
    first_day = as_of.astimezone(timezone.utc).date() - timedelta(days=days - 1)
    window_start = daily_window_start(as_of, days)

    reviews: dict[date, list[ReviewEvent]] = defaultdict(list)
    for event in events:
        if window_start <= event.reviewed_at <= as_of:
            reviews[event.reviewed_at.astimezone(timezone.utc).date()].append(event)

    summary = []
    for i in range(days):
        day = first_day + timedelta(days=i)
        day_reviews = reviews.get(day, [])
        correct = sum(1 for r in day_reviews if r.was_correct)
        summary.append(
            DailySummaryPoint(
                day=day,
                reviews=len(day_reviews),
                correct=correct,
                incorrect=len(day_reviews) - correct,
                study_time_ms=sum(r.response_time_ms for r in day_reviews),
                unique_cards=len({r.card_id for r in day_reviews}),
                sessions=len({r.session_id for r in day_reviews if r.session_id}),
                accuracy=ratio(correct, len(day_reviews)),
            )
        )
    return summary
