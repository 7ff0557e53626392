"""
Population-level card difficulty and deck rankings.
"""

from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime

from kairos.application.config import AnalyticsPolicy
from kairos.domain.analytics.models import ReviewEvent
from kairos.domain.analytics.results import (
    CardDifficultyMetric,
    CardDifficultyReport,
    Confidence,
    DeckCardDifficulty,
    UserCardMetric,
)

from .stats import mean, median, min_max_normalize, percentile_rank, ratio
from .struggle import StruggleScorer, count_lapses


def _group_by_user(events: Sequence[ReviewEvent]) -> dict[str, list[ReviewEvent]]:
    by_user: dict[str, list[ReviewEvent]] = defaultdict(list)
    for event in events:
        by_user[event.user_id].append(event)
    for reviews in by_user.values():
        reviews.sort(key=lambda r: r.reviewed_at)
    return dict(by_user)


def _lapses_across_users(events: Sequence[ReviewEvent]) -> int:
    """Lapses are counted within each user's own review sequence."""
    return sum(count_lapses(reviews) for reviews in _group_by_user(events).values())


def _accuracy(events: Sequence[ReviewEvent]) -> float:
    return ratio(sum(1 for e in events if e.was_correct), len(events))


def card_population_metric(card_id: str, events: Sequence[ReviewEvent]) -> CardDifficultyMetric:
    return CardDifficultyMetric(
        card_id=card_id,
        review_count=len(events),
        distinct_users=len({e.user_id for e in events}),
        mean_ease_factor=mean([e.ease_factor for e in events]) or 0.0,
        lapse_rate=ratio(_lapses_across_users(events), len(events)),
        accuracy=_accuracy(events),
        mean_response_time_ms=mean([float(e.response_time_ms) for e in events]) or 0.0,
    )


def build_card_difficulty(
    card_id: str,
    events: Sequence[ReviewEvent],
    as_of: datetime,
    policy: AnalyticsPolicy,
    compare_user_id: str | None = None,
) -> CardDifficultyReport:
    """
    Aggregate one card's reviews across every learner.

    With ``compare_user_id``, the learner's own struggle score on the card is
    ranked against every reviewer's score (nearest-rank percentile; higher
    means harder for this learner than for peers). The rank is withheld when
    fewer than ``difficulty_min_population`` distinct learners reviewed it.
    """
    population = card_population_metric(card_id, events)
    if compare_user_id is None:
        return CardDifficultyReport(
            population=population,
            user=None,
            percentile=None,
            performance_vs_population=None,
            confidence=_population_confidence(population, policy),
        )

    scorer = StruggleScorer(policy)
    reference = median([float(e.response_time_ms) for e in events]) or 0.0
    by_user = _group_by_user(events)
    user_scores = {
        user_id: scorer.score_cards(reviews, as_of, reference_response_ms=reference)[0].score
        for user_id, reviews in by_user.items()
    }

    own = by_user.get(compare_user_id)
    if not own:
        return CardDifficultyReport(
            population=population,
            user=None,
            percentile=None,
            performance_vs_population=None,
            confidence=_population_confidence(population, policy),
        )

    user_metric = UserCardMetric(
        user_id=compare_user_id,
        review_count=len(own),
        lapse_rate=ratio(count_lapses(own), len(own)),
        accuracy=_accuracy(own),
        mean_response_time_ms=mean([float(e.response_time_ms) for e in own]) or 0.0,
        struggle_score=user_scores[compare_user_id],
    )

    percentile = None
    if population.distinct_users >= policy.difficulty_min_population:
        percentile = percentile_rank(list(user_scores.values()), user_metric.struggle_score)

    difference = user_metric.accuracy - population.accuracy
    if difference > policy.performance_band:
        performance = "above_average"
    elif difference < -policy.performance_band:
        performance = "below_average"
    else:
        performance = "average"

    return CardDifficultyReport(
        population=population,
        user=user_metric,
        percentile=percentile,
        performance_vs_population=performance,
        confidence=_population_confidence(population, policy),
    )


def _population_confidence(metric: CardDifficultyMetric, policy: AnalyticsPolicy) -> Confidence:
    if metric.distinct_users >= policy.difficulty_min_population:
        return Confidence.HIGH
    return Confidence.LOW


def rank_deck_cards(events: Sequence[ReviewEvent], limit: int) -> list[DeckCardDifficulty]:
    """
    Rank a deck's cards by blended difficulty.

    The blend averages the min-max normalised lapse rate and mean response
    time. Ties go to the less-reviewed card, then card id, so the order is
    stable for a fixed log.
    """
    by_card: dict[str, list[ReviewEvent]] = defaultdict(list)
    for event in events:
        by_card[event.card_id].append(event)

    card_ids = sorted(by_card)
    metrics = [card_population_metric(cid, by_card[cid]) for cid in card_ids]
    lapse_norm = min_max_normalize([m.lapse_rate for m in metrics])
    time_norm = min_max_normalize([m.mean_response_time_ms for m in metrics])

    ranked = [
        DeckCardDifficulty(
            card_id=m.card_id,
            difficulty_score=(lapse + pace) / 2,
            lapse_rate=m.lapse_rate,
            mean_response_time_ms=m.mean_response_time_ms,
            review_count=m.review_count,
            distinct_users=m.distinct_users,
        )
        for m, lapse, pace in zip(metrics, lapse_norm, time_norm)
    ]
    ranked.sort(key=lambda c: (-c.difficulty_score, c.review_count, c.card_id))
    return ranked[:limit]
