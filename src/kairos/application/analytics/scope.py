"""
Per-call query scope.

A QueryScope pins one as-of timestamp for every read made on behalf of a
single analytics call (so sibling queries see the same snapshot) and charges
every read against the call's overall deadline.
"""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import replace
from datetime import datetime
from typing import TypeVar

from kairos.domain.analytics.models import (
    PrerequisiteGraph,
    ReviewEvent,
    ReviewFilter,
    SessionFilter,
    SessionTracking,
)
from kairos.domain.analytics.ports import EventRepository
from kairos.domain.errors import AnalyticsTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueryScope:
    def __init__(self, repo: EventRepository, as_of: datetime, timeout: float):
        self.repo = repo
        self.as_of = as_of
        self.timeout = timeout
        self._deadline = asyncio.get_running_loop().time() + timeout

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        remaining = self._deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise AnalyticsTimeout(self.timeout)
        try:
            return await asyncio.wait_for(awaitable, remaining)
        except asyncio.TimeoutError:
            logger.warning(f"Repository call exceeded the {self.timeout:.2f}s deadline")
            raise AnalyticsTimeout(self.timeout) from None

    async def reviews(
        self,
        user_id: str | None = None,
        deck_id: str | None = None,
        card_id: str | None = None,
        session_id: str | None = None,
        since: datetime | None = None,
    ) -> list[ReviewEvent]:
        review_filter = ReviewFilter(
            user_id=user_id,
            deck_id=deck_id,
            card_id=card_id,
            session_id=session_id,
            since=since,
            until=self.as_of,
        )
        return await self._bounded(self.repo.query_reviews(review_filter))

    async def sessions(
        self,
        user_id: str | None = None,
        session_id: str | None = None,
    ) -> list[SessionTracking]:
        session_filter = SessionFilter(
            user_id=user_id,
            session_id=session_id,
            started_before=self.as_of,
        )
        sessions = await self._bounded(self.repo.query_sessions(session_filter))
        # A session that ended after the as-of instant was still live at that instant
        return [
            replace(s, ended_at=None) if s.ended_at and s.ended_at > self.as_of else s
            for s in sessions
        ]

    async def prerequisite_graph(self, deck_id: str | None = None) -> PrerequisiteGraph:
        return await self._bounded(self.repo.query_prerequisite_graph(deck_id))
