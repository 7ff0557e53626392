"""
Derived analytics values.

Every analysis returns one of these frozen, behaviour-free records so a
presentation layer can serialise them directly. Low-sample results carry a
Confidence marker instead of raising.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class Confidence(str, Enum):
    HIGH = "high"
    LOW = "low"
    INSUFFICIENT = "insufficient"


class Trend(str, Enum):
    ACCELERATING = "accelerating"
    STABLE = "stable"
    DECELERATING = "decelerating"


class StruggleType(str, Enum):
    HIGH_FAIL_RATE = "high_fail_rate"
    REPEATED_LAPSES = "repeated_lapses"
    GETTING_WORSE = "getting_worse"
    SLOW_RECALL = "slow_recall"
    MODERATE = "moderate_struggle"


class InterferenceAction(str, Enum):
    SPACE_APART = "space_apart"
    DIFFERENTIATE = "differentiate"
    COMBINE = "combine"


class HealthLabel(str, Enum):
    HEALTHY = "healthy"
    DECLINING = "declining"
    POOR = "poor"


class TimezoneSource(str, Enum):
    SESSION = "session"
    UTC_FALLBACK = "utc_fallback"
    MIXED = "mixed"


class SectionStatus(str, Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"


# ---------- Velocity ----------


@dataclass(frozen=True)
class VelocityPoint:
    week_start: date
    mastered_count: int
    total_reviews: int = 0
    correct_reviews: int = 0
    new_cards_learned: int = 0


@dataclass(frozen=True)
class VelocityHistory:
    points: list[VelocityPoint]
    trend: Trend | None  # None = fewer non-empty weeks than the trend needs
    slope: float | None
    rolling_4week_avg: float
    confidence: Confidence


@dataclass(frozen=True)
class DailySummaryPoint:
    day: date
    reviews: int
    correct: int
    incorrect: int
    study_time_ms: int
    unique_cards: int
    sessions: int
    accuracy: float


# ---------- Struggle ----------


@dataclass(frozen=True)
class StruggleScore:
    """
    Struggle composite for one card.

    Attributes:
        score: Weighted composite clamped to [0, 1].
        error_rate: Recency-weighted error rate.
        lapse_count: Correct -> incorrect regressions.
        response_time_excess: Normalised excess of the card's median response
            time over the reference median (0 = not slower).
    """

    card_id: str
    deck_id: str
    score: float
    error_rate: float
    lapse_count: int
    response_time_excess: float
    review_count: int
    incorrect_count: int
    median_response_time_ms: float
    last_reviewed_at: datetime
    struggle_type: StruggleType
    recommendation: str


@dataclass(frozen=True)
class DeckStruggleSummary:
    deck_id: str
    card_count: int
    avg_score: float
    top_cards: list[StruggleScore]


@dataclass(frozen=True)
class StruggleSummary:
    cards_scored: int
    struggling_cards: int
    avg_score: float | None
    by_type: dict[str, int] = field(default_factory=dict)


# ---------- Patterns ----------


@dataclass(frozen=True)
class InterferencePair:
    card_a: str
    card_b: str
    co_occurrences: int
    error_co_occurrences: int
    joint_failures: int
    joint_failure_sessions: int
    joint_error_rate: float
    error_rate_a: float
    error_rate_b: float
    strength: float
    struggle_a: float | None
    struggle_b: float | None
    recommendation: InterferenceAction


@dataclass(frozen=True)
class PrerequisiteGap:
    card_id: str
    deck_id: str
    struggle_score: float
    weak_prerequisite_ids: list[str]
    prerequisite_accuracy: dict[str, float]


@dataclass(frozen=True)
class PrerequisiteGapReport:
    graph_available: bool
    gaps: list[PrerequisiteGap]


@dataclass(frozen=True)
class SessionFatigue:
    """Decay heuristic applied to one session's position-ordered reviews."""

    session_id: str
    review_count: int
    baseline_accuracy: float
    onset_position: int | None  # 1-based; None = no degradation detected
    accuracy_slope: float
    response_time_slope: float


@dataclass(frozen=True)
class FatigueCurvePoint:
    position_decile: int  # 1..10, relative position within the session
    accuracy: float | None
    mean_response_time_ms: float | None
    sample_count: int


@dataclass(frozen=True)
class FatigueAnalysis:
    sessions_analyzed: int
    avg_session_length: float | None
    typical_onset_position: float | None
    recommended_session_length: int | None
    fatigued_sessions: int
    accuracy_slope: float | None
    response_time_slope: float | None
    curve: list[FatigueCurvePoint]
    confidence: Confidence
    recommendation: str | None


@dataclass(frozen=True)
class CircadianBucket:
    hour: int
    review_count: int
    accuracy: float | None
    mean_response_time_ms: float | None
    eligible: bool  # enough reviews to take part in best/worst selection


@dataclass(frozen=True)
class CircadianAnalysis:
    buckets: list[CircadianBucket]
    best_hour: int | None
    worst_hour: int | None
    overall_accuracy: float | None
    timezone_source: TimezoneSource
    confidence: Confidence
    recommendation: str | None


# ---------- Difficulty ----------


@dataclass(frozen=True)
class CardDifficultyMetric:
    card_id: str
    review_count: int
    distinct_users: int
    mean_ease_factor: float
    lapse_rate: float
    accuracy: float
    mean_response_time_ms: float


@dataclass(frozen=True)
class UserCardMetric:
    user_id: str
    review_count: int
    lapse_rate: float
    accuracy: float
    mean_response_time_ms: float
    struggle_score: float


@dataclass(frozen=True)
class CardDifficultyReport:
    population: CardDifficultyMetric
    user: UserCardMetric | None
    percentile: int | None  # None = population too small or no comparison user
    performance_vs_population: str | None
    confidence: Confidence


@dataclass(frozen=True)
class DeckCardDifficulty:
    card_id: str
    difficulty_score: float
    lapse_rate: float
    mean_response_time_ms: float
    review_count: int
    distinct_users: int


# ---------- Session health ----------


@dataclass(frozen=True)
class QuartileStat:
    quartile: int
    review_count: int
    accuracy: float
    mean_response_time_ms: float


@dataclass(frozen=True)
class SessionHealthSnapshot:
    session_id: str
    is_live: bool
    review_count: int
    accuracy: float
    quartiles: list[QuartileStat]
    accuracy_decay: float
    pace_decay: float
    fatigue_onset_position: int | None
    label: HealthLabel
    recommendations: list[str]


# ---------- Profile ----------


@dataclass(frozen=True)
class StudyPatterns:
    total_sessions: int
    total_study_days: int
    preferred_hour: int | None
    preferred_weekday: int | None  # 0 = Monday
    avg_session_minutes: float | None
    avg_cards_per_session: float | None
    device_breakdown: dict[str, int]


@dataclass(frozen=True)
class ProfileSection:
    status: SectionStatus
    data: Any = None
    error_code: str | None = None


@dataclass(frozen=True)
class LearningProfile:
    user_id: str
    as_of: datetime
    velocity: ProfileSection
    struggle: ProfileSection
    interference: ProfileSection
    prerequisites: ProfileSection
    fatigue: ProfileSection
    circadian: ProfileSection
    study_patterns: ProfileSection
