"""
Learning Analytics Service — Application layer orchestrator.

Pins the as-of snapshot and deadline for each call, reads through the
EventRepository port, then hands the rows to the pure analyzers.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from kairos.application.config import AnalyticsPolicy
from kairos.domain.analytics.ports import EventRepository
from kairos.domain.analytics.results import (
    CardDifficultyReport,
    CircadianAnalysis,
    DailySummaryPoint,
    DeckCardDifficulty,
    DeckStruggleSummary,
    FatigueAnalysis,
    InterferencePair,
    LearningProfile,
    PrerequisiteGapReport,
    ProfileSection,
    SectionStatus,
    SessionHealthSnapshot,
    StruggleScore,
    StruggleSummary,
    StudyPatterns,
    VelocityHistory,
)
from kairos.domain.constants import (
    DEFAULT_HARDEST_LIMIT,
    DEFAULT_QUERY_TIMEOUT,
    DEFAULT_STRUGGLE_LIMIT,
    DEFAULT_STRUGGLE_THRESHOLD,
    DEFAULT_SUMMARY_DAYS,
    DEFAULT_VELOCITY_WEEKS,
    MAX_HARDEST_LIMIT,
    MAX_STRUGGLE_LIMIT,
    MAX_SUMMARY_DAYS,
    MAX_VELOCITY_WEEKS,
)
from kairos.domain.errors import AnalyticsError, NotFoundError

from .cache import ResultCache
from .difficulty import build_card_difficulty, rank_deck_cards
from .params import coerce_int, coerce_threshold
from .patterns import (
    analyze_fatigue,
    analyze_time_of_day,
    detect_interference,
    detect_prerequisite_gaps,
)
from .profile import build_study_patterns
from .scope import QueryScope
from .session_health import build_session_health
from .struggle import StruggleScorer
from .velocity import (
    build_daily_summary,
    build_velocity_history,
    daily_window_start,
    velocity_window_start,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LearningAnalyticsService:
    """
    Application service exposing every analytics query.

    Follows Dependency Inversion: depends on the EventRepository abstraction,
    not concrete adapter implementations. Every query accepts ``now`` (the
    as-of instant; defaults to the clock, read once per call) and ``timeout``
    (seconds for the whole call).
    """

    def __init__(
        self,
        repo: EventRepository,
        policy: AnalyticsPolicy | None = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
        cache: ResultCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            repo: The repository (port) for reading the event log.
            policy: Analysis thresholds; defaults if not provided.
            timeout: Default deadline per call, in seconds.
            cache: Optional read-through cache for user-level analyses.
            clock: Source of "now" when a call does not pin one.
        """
        self._repo = repo
        self.policy = policy or AnalyticsPolicy()
        self._timeout = timeout
        self._cache = cache
        self._clock = clock
        self._scorer = StruggleScorer(self.policy)

    # ------------------------------------------------------------------
    # Call plumbing
    # ------------------------------------------------------------------

    def _as_of(self, now: datetime | None) -> datetime:
        moment = now if now is not None else self._clock()
        if moment.tzinfo is None:
            return moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(timezone.utc)

    def _deadline(self, timeout: float | None) -> float:
        if timeout is None or timeout <= 0:
            return self._timeout
        return timeout

    def _scope(self, now: datetime | None, timeout: float | None) -> QueryScope:
        return QueryScope(self._repo, self._as_of(now), self._deadline(timeout))

    async def _cached(
        self,
        key: Hashable,
        compute: Callable[[], Awaitable[T]],
    ) -> T:
        if self._cache is None:
            return await compute()
        hit = self._cache.get(key)
        if hit is not None:
            return hit
        result = await compute()
        self._cache.put(key, result)
        return result

    def _pattern_since(self, scope: QueryScope) -> datetime:
        return scope.as_of - timedelta(days=self.policy.pattern_window_days)

    def _struggle_since(self, scope: QueryScope) -> datetime:
        return scope.as_of - timedelta(days=self.policy.struggle_window_days)

    # ------------------------------------------------------------------
    # Profile & velocity
    # ------------------------------------------------------------------

    async def get_user_learning_profile(
        self,
        user_id: str,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> LearningProfile:
        """
        Composite snapshot of every user-level analysis.

        Each section runs in isolation: a failure of any kind downgrades only
        that section to "unavailable".
        """
        as_of = self._as_of(now)
        deadline = self._deadline(timeout)

        def scope() -> QueryScope:
            return QueryScope(self._repo, as_of, deadline)

        (
            velocity,
            struggle,
            interference,
            prerequisites,
            fatigue,
            circadian,
            patterns,
        ) = await asyncio.gather(
            self._section("velocity", self._velocity(scope(), user_id, DEFAULT_VELOCITY_WEEKS)),
            self._section("struggle", self._struggle_summary(scope(), user_id)),
            self._section("interference", self._interference(scope(), user_id, None)),
            self._section("prerequisites", self._prerequisite_gaps(scope(), user_id, None)),
            self._section("fatigue", self._fatigue(scope(), user_id)),
            self._section("circadian", self._circadian(scope(), user_id)),
            self._section("study_patterns", self._study_patterns(scope(), user_id)),
        )

        return LearningProfile(
            user_id=user_id,
            as_of=as_of,
            velocity=velocity,
            struggle=struggle,
            interference=interference,
            prerequisites=prerequisites,
            fatigue=fatigue,
            circadian=circadian,
            study_patterns=patterns,
        )

    async def _section(self, name: str, work: Awaitable[Any]) -> ProfileSection:
        try:
            return ProfileSection(status=SectionStatus.OK, data=await work)
        except AnalyticsError as e:
            logger.warning(f"Profile section '{name}' unavailable: {e}")
            return ProfileSection(status=SectionStatus.UNAVAILABLE, error_code=e.code)
        except Exception as e:
            logger.exception(f"Profile section '{name}' failed: {e}")
            return ProfileSection(status=SectionStatus.UNAVAILABLE, error_code="internal_error")

    async def get_user_velocity_history(
        self,
        user_id: str,
        weeks: Any = DEFAULT_VELOCITY_WEEKS,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> VelocityHistory:
        weeks = coerce_int(weeks, DEFAULT_VELOCITY_WEEKS, 1, MAX_VELOCITY_WEEKS)
        return await self._cached(
            (user_id, "velocity", (weeks,), now),
            lambda: self._velocity(self._scope(now, timeout), user_id, weeks),
        )

    async def _velocity(self, scope: QueryScope, user_id: str, weeks: int) -> VelocityHistory:
        events = await scope.reviews(
            user_id=user_id, since=velocity_window_start(scope.as_of, weeks)
        )
        return build_velocity_history(events, scope.as_of, weeks, self.policy)

    async def get_daily_summary(
        self,
        user_id: str,
        days: Any = DEFAULT_SUMMARY_DAYS,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> list[DailySummaryPoint]:
        days = coerce_int(days, DEFAULT_SUMMARY_DAYS, 1, MAX_SUMMARY_DAYS)

        async def compute() -> list[DailySummaryPoint]:
            scope = self._scope(now, timeout)
            events = await scope.reviews(
                user_id=user_id, since=daily_window_start(scope.as_of, days)
            )
            return build_daily_summary(events, scope.as_of, days)

        return await self._cached((user_id, "daily_summary", (days,), now), compute)

    async def _study_patterns(self, scope: QueryScope, user_id: str) -> StudyPatterns:
        events, sessions = await asyncio.gather(
            scope.reviews(user_id=user_id, since=self._pattern_since(scope)),
            scope.sessions(user_id=user_id),
        )
        return build_study_patterns(events, sessions)

    # ------------------------------------------------------------------
    # Struggle
    # ------------------------------------------------------------------

    async def _struggle_scores(
        self, scope: QueryScope, user_id: str, deck_id: str | None = None
    ) -> list[StruggleScore]:
        events = await scope.reviews(
            user_id=user_id, deck_id=deck_id, since=self._struggle_since(scope)
        )
        return self._scorer.score_cards(events, scope.as_of)

    async def get_struggling_cards(
        self,
        user_id: str,
        threshold: Any = DEFAULT_STRUGGLE_THRESHOLD,
        limit: Any = DEFAULT_STRUGGLE_LIMIT,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> list[StruggleScore]:
        threshold = coerce_threshold(threshold, DEFAULT_STRUGGLE_THRESHOLD)
        limit = coerce_int(limit, DEFAULT_STRUGGLE_LIMIT, 1, MAX_STRUGGLE_LIMIT)

        async def compute() -> list[StruggleScore]:
            scores = await self._struggle_scores(self._scope(now, timeout), user_id)
            return self._scorer.struggling(scores, threshold, limit)

        return await self._cached((user_id, "struggling", (threshold, limit), now), compute)

    async def get_struggling_cards_by_deck(
        self,
        user_id: str,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> list[DeckStruggleSummary]:
        async def compute() -> list[DeckStruggleSummary]:
            scores = await self._struggle_scores(self._scope(now, timeout), user_id)
            return self._scorer.by_deck(scores)

        return await self._cached((user_id, "struggling_by_deck", (), now), compute)

    async def _struggle_summary(self, scope: QueryScope, user_id: str) -> StruggleSummary:
        scores = await self._struggle_scores(scope, user_id)
        return self._scorer.summarize(scores, DEFAULT_STRUGGLE_THRESHOLD)

    # ------------------------------------------------------------------
    # Pattern detection
    # ------------------------------------------------------------------

    async def detect_interference_patterns(
        self,
        user_id: str,
        deck_id: str | None = None,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> list[InterferencePair]:
        return await self._cached(
            (user_id, "interference", (deck_id,), now),
            lambda: self._interference(self._scope(now, timeout), user_id, deck_id),
        )

    async def _interference(
        self, scope: QueryScope, user_id: str, deck_id: str | None
    ) -> list[InterferencePair]:
        events = await scope.reviews(
            user_id=user_id, deck_id=deck_id, since=self._pattern_since(scope)
        )
        scores = {s.card_id: s.score for s in self._scorer.score_cards(events, scope.as_of)}
        return detect_interference(events, self.policy, scores)

    async def detect_prerequisite_gaps(
        self,
        user_id: str,
        deck_id: str | None = None,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> PrerequisiteGapReport:
        return await self._cached(
            (user_id, "prerequisites", (deck_id,), now),
            lambda: self._prerequisite_gaps(self._scope(now, timeout), user_id, deck_id),
        )

    async def _prerequisite_gaps(
        self, scope: QueryScope, user_id: str, deck_id: str | None
    ) -> PrerequisiteGapReport:
        events, graph = await asyncio.gather(
            scope.reviews(user_id=user_id, deck_id=deck_id, since=self._struggle_since(scope)),
            scope.prerequisite_graph(deck_id),
        )
        scores = {s.card_id: s.score for s in self._scorer.score_cards(events, scope.as_of)}
        return detect_prerequisite_gaps(events, graph, scores, self.policy)

    async def analyze_fatigue_decay(
        self,
        user_id: str,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> FatigueAnalysis:
        return await self._cached(
            (user_id, "fatigue", (), now),
            lambda: self._fatigue(self._scope(now, timeout), user_id),
        )

    async def _fatigue(self, scope: QueryScope, user_id: str) -> FatigueAnalysis:
        events, sessions = await asyncio.gather(
            scope.reviews(user_id=user_id, since=self._pattern_since(scope)),
            scope.sessions(user_id=user_id),
        )
        return analyze_fatigue(events, sessions, self.policy)

    async def analyze_time_of_day_effects(
        self,
        user_id: str,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> CircadianAnalysis:
        return await self._cached(
            (user_id, "circadian", (), now),
            lambda: self._circadian(self._scope(now, timeout), user_id),
        )

    async def _circadian(self, scope: QueryScope, user_id: str) -> CircadianAnalysis:
        events, sessions = await asyncio.gather(
            scope.reviews(user_id=user_id, since=self._pattern_since(scope)),
            scope.sessions(user_id=user_id),
        )
        return analyze_time_of_day(events, sessions, self.policy)

    # ------------------------------------------------------------------
    # Difficulty & ranking
    # ------------------------------------------------------------------

    async def get_card_difficulty_metrics(
        self,
        card_id: str,
        compare_user_id: str | None = None,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> CardDifficultyReport:
        scope = self._scope(now, timeout)
        events = await scope.reviews(card_id=card_id)
        if not events:
            raise NotFoundError("card", card_id)
        return build_card_difficulty(card_id, events, scope.as_of, self.policy, compare_user_id)

    async def get_deck_hardest_cards(
        self,
        deck_id: str,
        limit: Any = DEFAULT_HARDEST_LIMIT,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> list[DeckCardDifficulty]:
        limit = coerce_int(limit, DEFAULT_HARDEST_LIMIT, 1, MAX_HARDEST_LIMIT)
        scope = self._scope(now, timeout)
        events = await scope.reviews(deck_id=deck_id)
        if not events:
            raise NotFoundError("deck", deck_id)
        return rank_deck_cards(events, limit)

    # ------------------------------------------------------------------
    # Session health
    # ------------------------------------------------------------------

    async def get_session_health_indicators(
        self,
        session_id: str,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> SessionHealthSnapshot | None:
        """
        Health of a session from its reviews.

        Returns:
            None when the session has too few reviews to say anything.
        """
        return await self._session_health(self._scope(now, timeout), session_id)

    async def get_live_session_health(
        self,
        session_id: str,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> SessionHealthSnapshot | None:
        """
        Health of an in-progress session over the reviews recorded so far.

        Recomputed from the log on every call; nothing is carried between calls.
        A session that has already ended yields its final health with
        ``is_live=False``, so callers should check that flag.
        """
        scope = self._scope(now, timeout)
        snapshot = await self._session_health(scope, session_id)
        if snapshot is not None and not snapshot.is_live:
            logger.debug(f"Session {session_id} already ended; reporting final health")
        return snapshot

    async def _session_health(
        self, scope: QueryScope, session_id: str
    ) -> SessionHealthSnapshot | None:
        sessions, events = await asyncio.gather(
            scope.sessions(session_id=session_id),
            scope.reviews(session_id=session_id),
        )
        if not sessions:
            raise NotFoundError("session", session_id)
        return build_session_health(sessions[0], events, self.policy)
