"""
Pattern detection over review logs.

Detects:
1. Interference: card pairs whose errors cluster when reviewed close together
2. Prerequisite gaps: struggling cards whose declared prerequisites are weak
3. Fatigue decay: where accuracy drops within a session
4. Circadian effects: accuracy and pace by local hour of day

Everything here is deterministic statistics over the events passed in.
"""

import logging
import math
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from kairos.application.config import AnalyticsPolicy
from kairos.domain.analytics.models import (
    PrerequisiteGraph,
    ReviewEvent,
    SessionTracking,
)
from kairos.domain.analytics.results import (
    CircadianAnalysis,
    CircadianBucket,
    Confidence,
    FatigueAnalysis,
    FatigueCurvePoint,
    InterferenceAction,
    InterferencePair,
    PrerequisiteGap,
    PrerequisiteGapReport,
    SessionFatigue,
    TimezoneSource,
)
from kairos.domain.constants import HOURS_PER_DAY

from .stats import mean, median, ols_slope, ratio, split_quartiles

logger = logging.getLogger(__name__)


def group_by_session(events: Sequence[ReviewEvent]) -> dict[str, list[ReviewEvent]]:
    """Group sessioned events, each session ordered by review time."""
    sessions: dict[str, list[ReviewEvent]] = defaultdict(list)
    for event in events:
        if event.session_id:
            sessions[event.session_id].append(event)
    for reviews in sessions.values():
        reviews.sort(key=lambda r: r.reviewed_at)
    return dict(sessions)


def session_offsets(sessions: Sequence[SessionTracking]) -> dict[str, int]:
    """Known UTC offsets (minutes) by session id."""
    return {
        s.session_id: s.utc_offset_minutes
        for s in sessions
        if s.utc_offset_minutes is not None
    }


def local_datetime(event: ReviewEvent, offsets: Mapping[str, int]) -> datetime:
    """Review time shifted to the learner's local clock, UTC when unknown."""
    offset = offsets.get(event.session_id, 0) if event.session_id else 0
    return event.reviewed_at.astimezone(timezone.utc) + timedelta(minutes=offset)


def error_rates(events: Sequence[ReviewEvent]) -> dict[str, float]:
    totals: dict[str, int] = defaultdict(int)
    errors: dict[str, int] = defaultdict(int)
    for event in events:
        totals[event.card_id] += 1
        if not event.was_correct:
            errors[event.card_id] += 1
    return {card_id: errors[card_id] / n for card_id, n in totals.items()}


# ---------------------------------------------------------------------------
# Interference
# ---------------------------------------------------------------------------


@dataclass
class _PairTally:
    co_occurrences: int = 0
    error_co_occurrences: int = 0
    errors: int = 0
    joint_failures: int = 0
    failure_sessions: set[str] = field(default_factory=set)


def detect_interference(
    events: Sequence[ReviewEvent],
    policy: AnalyticsPolicy,
    struggle_scores: Mapping[str, float] | None = None,
) -> list[InterferencePair]:
    """
    Find card pairs the learner appears to confuse.

    Two reviews of distinct cards in the same session with at most
    ``interference_window`` reviews between them are one co-occurrence of the
    pair. The pair's joint error rate is the share of incorrect reviews across
    its co-occurrences; it must reach ``interference_ratio`` times each card's
    own error rate, over at least ``interference_min_co_occurrence``
    co-occurrences, to be reported.
    """
    struggle_scores = struggle_scores or {}
    tallies: dict[tuple[str, str], _PairTally] = defaultdict(_PairTally)
    reach = policy.interference_window + 1

    for session_id, reviews in group_by_session(events).items():
        for i, first in enumerate(reviews):
            for second in reviews[i + 1 : i + 1 + reach]:
                if first.card_id == second.card_id:
                    continue
                key = tuple(sorted((first.card_id, second.card_id)))
                tally = tallies[key]
                tally.co_occurrences += 1
                wrong = (not first.was_correct) + (not second.was_correct)
                if wrong:
                    tally.error_co_occurrences += 1
                    tally.errors += wrong
                if wrong == 2:
                    tally.joint_failures += 1
                    tally.failure_sessions.add(session_id)

    baseline = error_rates(events)
    pairs = []
    for (card_a, card_b), tally in tallies.items():
        if tally.co_occurrences < policy.interference_min_co_occurrence:
            continue
        if tally.error_co_occurrences == 0:
            continue

        joint_rate = tally.errors / (2 * tally.co_occurrences)
        rate_a = baseline.get(card_a, 0.0)
        rate_b = baseline.get(card_b, 0.0)
        if joint_rate < policy.interference_ratio * rate_a:
            continue
        if joint_rate < policy.interference_ratio * rate_b:
            continue

        pairs.append(
            InterferencePair(
                card_a=card_a,
                card_b=card_b,
                co_occurrences=tally.co_occurrences,
                error_co_occurrences=tally.error_co_occurrences,
                joint_failures=tally.joint_failures,
                joint_failure_sessions=len(tally.failure_sessions),
                joint_error_rate=joint_rate,
                error_rate_a=rate_a,
                error_rate_b=rate_b,
                # Errors only come from these two cards, so the max is positive here
                strength=joint_rate / max(rate_a, rate_b),
                struggle_a=struggle_scores.get(card_a),
                struggle_b=struggle_scores.get(card_b),
                recommendation=_interference_action(tally),
            )
        )

    pairs.sort(key=lambda p: (-p.strength, -p.co_occurrences, p.card_a, p.card_b))
    logger.debug(f"Interference: {len(pairs)} of {len(tallies)} candidate pairs qualify")
    return pairs[: policy.interference_limit]


def _interference_action(tally: _PairTally) -> InterferenceAction:
    if tally.joint_failures >= 3:
        return InterferenceAction.SPACE_APART
    if len(tally.failure_sessions) >= 2:
        return InterferenceAction.DIFFERENTIATE
    return InterferenceAction.COMBINE


# ---------------------------------------------------------------------------
# Prerequisite gaps
# ---------------------------------------------------------------------------


def detect_prerequisite_gaps(
    events: Sequence[ReviewEvent],
    graph: PrerequisiteGraph,
    struggle_scores: Mapping[str, float],
    policy: AnalyticsPolicy,
) -> PrerequisiteGapReport:
    """
    Flag struggling cards whose declared prerequisites are also weak.

    Cards with no declared prerequisites are skipped, and so are
    prerequisites the learner has never reviewed (no evidence either way).
    """
    if not graph.available:
        return PrerequisiteGapReport(graph_available=False, gaps=[])

    totals: dict[str, int] = defaultdict(int)
    correct: dict[str, int] = defaultdict(int)
    decks: dict[str, str] = {}
    for event in events:
        totals[event.card_id] += 1
        correct[event.card_id] += event.was_correct
        decks[event.card_id] = event.deck_id

    gaps = []
    for card_id in sorted(struggle_scores):
        prerequisites = graph.prerequisites_of(card_id)
        if not prerequisites:
            continue
        score = struggle_scores[card_id]
        if score < policy.prerequisite_struggle_threshold:
            continue

        accuracy = {
            prereq: correct[prereq] / totals[prereq]
            for prereq in sorted(prerequisites)
            if totals.get(prereq)
        }
        weak = [p for p, acc in accuracy.items() if acc < policy.prerequisite_accuracy_floor]
        if weak:
            gaps.append(
                PrerequisiteGap(
                    card_id=card_id,
                    deck_id=decks.get(card_id, ""),
                    struggle_score=score,
                    weak_prerequisite_ids=weak,
                    prerequisite_accuracy={p: accuracy[p] for p in weak},
                )
            )

    gaps.sort(key=lambda g: (-g.struggle_score, g.card_id))
    return PrerequisiteGapReport(graph_available=True, gaps=gaps)


# ---------------------------------------------------------------------------
# Fatigue
# ---------------------------------------------------------------------------


def analyze_session_fatigue(
    session_id: str,
    reviews: Sequence[ReviewEvent],
    policy: AnalyticsPolicy,
) -> SessionFatigue | None:
    """
    Apply the decay heuristic to one session.

    The baseline is the first quartile's accuracy. Fatigue onset is the first
    position of the earliest later window (one quartile long) whose accuracy
    sits more than ``fatigue_accuracy_drop`` below that baseline.

    Returns:
        None when the session is shorter than ``session_min_reviews``.
    """
    n = len(reviews)
    if n < policy.session_min_reviews:
        return None

    outcomes = [1.0 if r.was_correct else 0.0 for r in reviews]
    times = [float(r.response_time_ms) for r in reviews]
    positions = [float(i + 1) for i in range(n)]

    window = len(split_quartiles(outcomes)[0])
    baseline = sum(outcomes[:window]) / window

    onset = None
    for start in range(window, n - window + 1):
        window_accuracy = sum(outcomes[start : start + window]) / window
        if baseline - window_accuracy > policy.fatigue_accuracy_drop:
            onset = start + 1
            break

    return SessionFatigue(
        session_id=session_id,
        review_count=n,
        baseline_accuracy=baseline,
        onset_position=onset,
        accuracy_slope=ols_slope(positions, outcomes) or 0.0,
        response_time_slope=ols_slope(positions, times) or 0.0,
    )


def analyze_fatigue(
    events: Sequence[ReviewEvent],
    sessions: Sequence[SessionTracking],
    policy: AnalyticsPolicy,
) -> FatigueAnalysis:
    """
    Aggregate per-session decay into a typical session length before fatigue.

    Live sessions are left out. Sessions without an onset contribute their
    full length to the typical onset (they ran that long without degrading).
    """
    live = {s.session_id for s in sessions if s.is_live}
    per_session: list[SessionFatigue] = []
    deciles: dict[int, list[ReviewEvent]] = defaultdict(list)

    for session_id, reviews in sorted(group_by_session(events).items()):
        if session_id in live:
            continue
        fatigue = analyze_session_fatigue(session_id, reviews, policy)
        if fatigue is None:
            continue
        per_session.append(fatigue)
        n = len(reviews)
        for i, review in enumerate(reviews):
            deciles[min(9, (10 * i) // n) + 1].append(review)

    curve = [
        FatigueCurvePoint(
            position_decile=decile,
            accuracy=mean([1.0 if r.was_correct else 0.0 for r in deciles[decile]]),
            mean_response_time_ms=mean([float(r.response_time_ms) for r in deciles[decile]]),
            sample_count=len(deciles[decile]),
        )
        for decile in range(1, 11)
    ]

    if not per_session:
        return FatigueAnalysis(
            sessions_analyzed=0,
            avg_session_length=None,
            typical_onset_position=None,
            recommended_session_length=None,
            fatigued_sessions=0,
            accuracy_slope=None,
            response_time_slope=None,
            curve=curve,
            confidence=Confidence.INSUFFICIENT,
            recommendation=None,
        )

    onsets = [f.onset_position or f.review_count for f in per_session]
    typical = median(onsets) or 0.0
    fatigued = sum(1 for f in per_session if f.onset_position is not None)
    confidence = (
        Confidence.HIGH if len(per_session) >= policy.fatigue_min_sessions else Confidence.LOW
    )

    return FatigueAnalysis(
        sessions_analyzed=len(per_session),
        avg_session_length=mean([float(f.review_count) for f in per_session]),
        typical_onset_position=typical,
        recommended_session_length=max(1, math.floor(policy.fatigue_length_factor * typical)),
        fatigued_sessions=fatigued,
        accuracy_slope=mean([f.accuracy_slope for f in per_session]),
        response_time_slope=mean([f.response_time_slope for f in per_session]),
        curve=curve,
        confidence=confidence,
        recommendation=_fatigue_recommendation(fatigued, len(per_session)),
    )


def _fatigue_recommendation(fatigued: int, analyzed: int) -> str:
    healthy_ratio = 1 - ratio(fatigued, analyzed)
    if healthy_ratio > 0.7:
        return "Your session lengths are working well. Keep it up!"
    if healthy_ratio < 0.5:
        return "Consider shorter sessions or taking breaks. Fatigue is affecting your performance."
    return "Try to maintain consistent session lengths for optimal learning."


# ---------------------------------------------------------------------------
# Circadian
# ---------------------------------------------------------------------------


def analyze_time_of_day(
    events: Sequence[ReviewEvent],
    sessions: Sequence[SessionTracking],
    policy: AnalyticsPolicy,
) -> CircadianAnalysis:
    """
    Bucket reviews by local hour of day.

    The local hour uses the UTC offset recorded on the review's session and
    falls back to UTC when the session (or its offset) is unknown. All 24
    buckets are reported; only buckets with ``circadian_min_samples`` reviews
    compete for best/worst.
    """
    offsets = session_offsets(sessions)

    hours: dict[int, list[ReviewEvent]] = defaultdict(list)
    with_offset = 0
    for event in events:
        if event.session_id in offsets:
            with_offset += 1
        hours[local_datetime(event, offsets).hour].append(event)

    buckets = []
    for hour in range(HOURS_PER_DAY):
        reviews = hours.get(hour, [])
        buckets.append(
            CircadianBucket(
                hour=hour,
                review_count=len(reviews),
                accuracy=mean([1.0 if r.was_correct else 0.0 for r in reviews]),
                mean_response_time_ms=mean([float(r.response_time_ms) for r in reviews]),
                eligible=len(reviews) >= max(1, policy.circadian_min_samples),
            )
        )

    if not events or with_offset == 0:
        source = TimezoneSource.UTC_FALLBACK
    elif with_offset == len(events):
        source = TimezoneSource.SESSION
    else:
        source = TimezoneSource.MIXED

    eligible = [b for b in buckets if b.eligible]
    best = worst = None
    if eligible and len(eligible) >= policy.circadian_min_buckets:
        best = min(eligible, key=lambda b: (-b.accuracy, b.hour)).hour
        worst = min(eligible, key=lambda b: (b.accuracy, b.hour)).hour

    if not events:
        confidence = Confidence.INSUFFICIENT
    elif best is None:
        confidence = Confidence.LOW
    else:
        confidence = Confidence.HIGH

    overall = mean([1.0 if e.was_correct else 0.0 for e in events])
    return CircadianAnalysis(
        buckets=buckets,
        best_hour=best,
        worst_hour=worst,
        overall_accuracy=overall,
        timezone_source=source,
        confidence=confidence,
        recommendation=_circadian_recommendation(buckets, best, worst, overall),
    )


def _circadian_recommendation(
    buckets: list[CircadianBucket],
    best: int | None,
    worst: int | None,
    overall: float | None,
) -> str | None:
    if best is None or worst is None or overall is None:
        return None

    best_acc = buckets[best].accuracy or 0.0
    worst_acc = buckets[worst].accuracy or 0.0
    if best_acc - worst_acc <= 0.05:
        return "Your performance is consistent throughout the day. Study whenever convenient!"
    return (
        f"Your best performance is around {best}:00. "
        f"Avoid studying around {worst}:00 if possible."
    )
