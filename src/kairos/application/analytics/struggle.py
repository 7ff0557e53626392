"""
Struggle scoring for cards a learner is having trouble with.

This is a pure computation module with no I/O.
"""

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime

from kairos.application.config import AnalyticsPolicy
from kairos.domain.analytics.models import ReviewEvent
from kairos.domain.analytics.results import (
    DeckStruggleSummary,
    StruggleScore,
    StruggleSummary,
    StruggleType,
)

from .stats import age_in_days, clamp, decay_weight, mean, median, ratio

RECOMMENDATIONS = {
    StruggleType.HIGH_FAIL_RATE: (
        "Review the card content and consider breaking it into simpler concepts"
    ),
    StruggleType.REPEATED_LAPSES: (
        "This card keeps slipping. Try creating a mnemonic or visual association"
    ),
    StruggleType.GETTING_WORSE: (
        "Performance is declining. Consider revising the card or seeking additional context"
    ),
    StruggleType.SLOW_RECALL: (
        "Recall is slow. Practice active recall techniques or add retrieval cues"
    ),
    StruggleType.MODERATE: "Keep practicing. Consider reviewing related concepts",
}


def count_lapses(reviews: Iterable[ReviewEvent]) -> int:
    """Count correct -> incorrect regressions in a time-ordered review sequence."""
    lapses = 0
    previous: bool | None = None
    for review in reviews:
        if previous is True and not review.was_correct:
            lapses += 1
        previous = review.was_correct
    return lapses


def group_by_card(events: Iterable[ReviewEvent]) -> dict[str, list[ReviewEvent]]:
    """Group events per card, each list ordered by review time."""
    by_card: dict[str, list[ReviewEvent]] = defaultdict(list)
    for event in events:
        by_card[event.card_id].append(event)
    for reviews in by_card.values():
        reviews.sort(key=lambda r: r.reviewed_at)
    return dict(by_card)


class StruggleScorer:
    """
    Computes per-card struggle scores from one learner's reviews.

    Stateless and side-effect free.
    """

    def __init__(self, policy: AnalyticsPolicy | None = None):
        self.policy = policy or AnalyticsPolicy()

    def score_cards(
        self,
        events: Sequence[ReviewEvent],
        as_of: datetime,
        reference_response_ms: float | None = None,
    ) -> list[StruggleScore]:
        """
        Score every card that appears in ``events``.

        Args:
            events: One learner's reviews inside the scoring window.
            as_of: The pinned "now" that recency weights are measured from.
            reference_response_ms: Median response time to compare against.
                Defaults to the median over ``events`` (the learner's own).

        Returns:
            One StruggleScore per card, ordered by card id.
        """
        if not events:
            return []

        if reference_response_ms is None:
            reference_response_ms = median([e.response_time_ms for e in events]) or 0.0

        by_card = group_by_card(events)
        return [
            self._score_card(card_id, by_card[card_id], as_of, reference_response_ms)
            for card_id in sorted(by_card)
        ]

    def _score_card(
        self,
        card_id: str,
        reviews: list[ReviewEvent],
        as_of: datetime,
        reference_response_ms: float,
    ) -> StruggleScore:
        error_rate = self._compute_weighted_error_rate(reviews, as_of)
        lapses = count_lapses(reviews)
        card_median = median([r.response_time_ms for r in reviews]) or 0.0
        excess = self._compute_response_time_excess(card_median, reference_response_ms)

        lapse_component = min(1.0, ratio(lapses, self.policy.lapse_saturation))
        score = clamp(
            self.policy.struggle_error_weight * error_rate
            + self.policy.struggle_lapse_weight * lapse_component
            + self.policy.struggle_time_weight * excess,
            0.0,
            1.0,
        )

        struggle_type = self._classify(reviews, lapses, excess)
        return StruggleScore(
            card_id=card_id,
            deck_id=reviews[-1].deck_id,
            score=score,
            error_rate=error_rate,
            lapse_count=lapses,
            response_time_excess=excess,
            review_count=len(reviews),
            incorrect_count=sum(1 for r in reviews if not r.was_correct),
            median_response_time_ms=card_median,
            last_reviewed_at=reviews[-1].reviewed_at,
            struggle_type=struggle_type,
            recommendation=RECOMMENDATIONS[struggle_type],
        )

    def _compute_weighted_error_rate(self, reviews: list[ReviewEvent], as_of: datetime) -> float:
        """
        Recency-weighted error rate: each review weighs exp(-age/half_life).
        """
        half_life = self.policy.struggle_half_life_days
        total = 0.0
        errors = 0.0
        for review in reviews:
            weight = decay_weight(age_in_days(review.reviewed_at, as_of), half_life)
            total += weight
            if not review.was_correct:
                errors += weight
        return ratio(errors, total)

    def _compute_response_time_excess(self, card_median: float, reference: float) -> float:
        """
        How much slower than the reference the card is, as a [0, 1] fraction.

        Twice the reference median or slower saturates at 1.
        """
        if reference <= 0:
            return 0.0
        return clamp(card_median / reference - 1.0, 0.0, 1.0)

    def _classify(self, reviews: list[ReviewEvent], lapses: int, excess: float) -> StruggleType:
        fail_rate = ratio(sum(1 for r in reviews if not r.was_correct), len(reviews))
        if fail_rate >= 0.5:
            return StruggleType.HIGH_FAIL_RATE
        if lapses >= 2:
            return StruggleType.REPEATED_LAPSES
        if len(reviews) >= 4:
            half = len(reviews) // 2
            early = mean([1.0 if r.was_correct else 0.0 for r in reviews[:half]]) or 0.0
            late = mean([1.0 if r.was_correct else 0.0 for r in reviews[half:]]) or 0.0
            if early - late > 0.2:
                return StruggleType.GETTING_WORSE
        if excess >= 0.5:
            return StruggleType.SLOW_RECALL
        return StruggleType.MODERATE

    # ---------- Ranking ----------

    @staticmethod
    def rank(scores: Iterable[StruggleScore]) -> list[StruggleScore]:
        """Score descending, ties by most recent review, then card id."""
        return sorted(
            scores,
            key=lambda s: (-s.score, -s.last_reviewed_at.timestamp(), s.card_id),
        )

    def struggling(
        self, scores: Iterable[StruggleScore], threshold: float, limit: int
    ) -> list[StruggleScore]:
        return self.rank(s for s in scores if s.score >= threshold)[:limit]

    def by_deck(self, scores: Iterable[StruggleScore]) -> list[DeckStruggleSummary]:
        """Top-N cards per deck with no threshold; decks by average score descending."""
        decks: dict[str, list[StruggleScore]] = defaultdict(list)
        for score in scores:
            decks[score.deck_id].append(score)

        summaries = [
            DeckStruggleSummary(
                deck_id=deck_id,
                card_count=len(cards),
                avg_score=sum(c.score for c in cards) / len(cards),
                top_cards=self.rank(cards)[: self.policy.deck_top_n],
            )
            for deck_id, cards in decks.items()
        ]
        summaries.sort(key=lambda d: (-d.avg_score, d.deck_id))
        return summaries

    def summarize(self, scores: Sequence[StruggleScore], threshold: float) -> StruggleSummary:
        struggling = [s for s in scores if s.score >= threshold]
        by_type = Counter(s.struggle_type.value for s in struggling)
        return StruggleSummary(
            cards_scored=len(scores),
            struggling_cards=len(struggling),
            avg_score=mean([s.score for s in scores]),
            by_type=dict(sorted(by_type.items())),
        )
