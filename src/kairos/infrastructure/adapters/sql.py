"""
SQL Event Repository — Infrastructure adapter for a relational event store.

Implements EventRepository with SQLAlchemy Core. Every statement is a
read-only SELECT; the blocking driver work runs in a worker thread.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    inspect,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError

from kairos.domain.analytics.models import (
    PrerequisiteGraph,
    ReviewEvent,
    ReviewFilter,
    SessionFilter,
    SessionTracking,
)
from kairos.domain.analytics.ports import EventRepository
from kairos.domain.constants import DEFAULT_ROW_CAP
from kairos.domain.errors import RangeTooLargeError, StoreUnavailable

logger = logging.getLogger(__name__)

metadata = MetaData()

review_events = Table(
    "review_events",
    metadata,
    Column("event_id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String, nullable=False, index=True),
    Column("card_id", String, nullable=False, index=True),
    Column("deck_id", String, nullable=False, index=True),
    Column("session_id", String, nullable=True, index=True),
    Column("reviewed_at", DateTime(timezone=True), nullable=False, index=True),
    Column("response_quality", Integer, nullable=False),
    Column("response_time_ms", Integer, nullable=False),
    Column("interval_before", Float, nullable=False),
    Column("interval_after", Float, nullable=False),
    Column("ease_factor", Float, nullable=False),
    Column("was_correct", Boolean, nullable=False),
)

session_tracking = Table(
    "session_tracking",
    metadata,
    Column("session_id", String, primary_key=True),
    Column("user_id", String, nullable=False, index=True),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("ended_at", DateTime(timezone=True), nullable=True),
    Column("device_category", String, nullable=False, default="unknown"),
    Column("utc_offset_minutes", Integer, nullable=True),
)

card_prerequisites = Table(
    "card_prerequisites",
    metadata,
    Column("card_id", String, primary_key=True),
    Column("prerequisite_id", String, primary_key=True),
    Column("deck_id", String, nullable=True, index=True),
)


def _utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; the store writes UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _review_from_row(row: Any) -> ReviewEvent:
    return ReviewEvent(
        user_id=row.user_id,
        card_id=row.card_id,
        deck_id=row.deck_id,
        session_id=row.session_id,
        reviewed_at=_utc(row.reviewed_at),
        response_quality=row.response_quality,
        response_time_ms=row.response_time_ms,
        interval_before=row.interval_before,
        interval_after=row.interval_after,
        ease_factor=row.ease_factor,
        was_correct=bool(row.was_correct),
    )


def _session_from_row(row: Any) -> SessionTracking:
    return SessionTracking(
        session_id=row.session_id,
        user_id=row.user_id,
        started_at=_utc(row.started_at),
        ended_at=_utc(row.ended_at),
        device_category=row.device_category or "unknown",
        utc_offset_minutes=row.utc_offset_minutes,
    )


class SqlEventRepository(EventRepository):
    """
    Reads review_events, session_tracking and card_prerequisites.

    Accepts either a database URL or a ready Engine (tests pass an in-memory
    SQLite engine with the schema already created).
    """

    def __init__(self, database_url: str | Engine, max_rows: int = DEFAULT_ROW_CAP):
        if isinstance(database_url, Engine):
            self.engine = database_url
        else:
            self.engine = create_engine(database_url)
        self.max_rows = max_rows

    async def _run(self, work, *args):
        try:
            return await asyncio.to_thread(work, *args)
        except (OperationalError, DBAPIError) as e:
            logger.error(f"Event store query failed: {e}")
            raise StoreUnavailable(str(e)) from e

    # --- reviews -------------------------------------------------------

    def _review_statement(self, f: ReviewFilter):
        stmt = select(review_events)
        if f.user_id is not None:
            stmt = stmt.where(review_events.c.user_id == f.user_id)
        if f.deck_id is not None:
            stmt = stmt.where(review_events.c.deck_id == f.deck_id)
        if f.card_id is not None:
            stmt = stmt.where(review_events.c.card_id == f.card_id)
        if f.session_id is not None:
            stmt = stmt.where(review_events.c.session_id == f.session_id)
        if f.since is not None:
            stmt = stmt.where(review_events.c.reviewed_at >= f.since)
        if f.until is not None:
            stmt = stmt.where(review_events.c.reviewed_at <= f.until)
        return stmt.order_by(review_events.c.reviewed_at, review_events.c.event_id)

    def _fetch_reviews(self, f: ReviewFilter) -> list[ReviewEvent]:
        stmt = self._review_statement(f)
        if f.offset:
            stmt = stmt.offset(f.offset)
        # One row past the cap tells us the match set is too large
        stmt = stmt.limit(f.limit if f.limit is not None else self.max_rows + 1)

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()

        if f.limit is None and len(rows) > self.max_rows:
            raise RangeTooLargeError(self.max_rows)
        return [_review_from_row(r) for r in rows]

    async def query_reviews(self, review_filter: ReviewFilter) -> list[ReviewEvent]:
        if review_filter.limit is not None and review_filter.limit > self.max_rows:
            raise RangeTooLargeError(self.max_rows)
        events = await self._run(self._fetch_reviews, review_filter)
        logger.debug(f"Fetched {len(events)} review events")
        return events

    # --- sessions ------------------------------------------------------

    def _fetch_sessions(self, f: SessionFilter) -> list[SessionTracking]:
        stmt = select(session_tracking)
        if f.user_id is not None:
            stmt = stmt.where(session_tracking.c.user_id == f.user_id)
        if f.session_id is not None:
            stmt = stmt.where(session_tracking.c.session_id == f.session_id)
        if f.started_before is not None:
            stmt = stmt.where(session_tracking.c.started_at <= f.started_before)
        stmt = stmt.order_by(session_tracking.c.started_at).limit(self.max_rows + 1)

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()

        if len(rows) > self.max_rows:
            raise RangeTooLargeError(self.max_rows)
        return [_session_from_row(r) for r in rows]

    async def query_sessions(self, session_filter: SessionFilter) -> list[SessionTracking]:
        return await self._run(self._fetch_sessions, session_filter)

    # --- prerequisites -------------------------------------------------

    def _fetch_prerequisites(self, deck_id: str | None) -> PrerequisiteGraph:
        with self.engine.connect() as conn:
            if not inspect(conn).has_table(card_prerequisites.name):
                return PrerequisiteGraph.unavailable()

            first = conn.execute(select(card_prerequisites.c.card_id).limit(1)).first()
            if first is None:
                return PrerequisiteGraph.unavailable()

            stmt = select(card_prerequisites)
            if deck_id is not None:
                stmt = stmt.where(
                    (card_prerequisites.c.deck_id == deck_id)
                    | card_prerequisites.c.deck_id.is_(None)
                )
            rows = conn.execute(stmt).all()

        edges: dict[str, set[str]] = {}
        for row in rows:
            edges.setdefault(row.card_id, set()).add(row.prerequisite_id)
        return PrerequisiteGraph(edges={k: frozenset(v) for k, v in edges.items()})

    async def query_prerequisite_graph(self, deck_id: str | None = None) -> PrerequisiteGraph:
        try:
            return await self._run(self._fetch_prerequisites, deck_id)
        except StoreUnavailable:
            raise
        except SQLAlchemyError as e:
            logger.warning(f"Prerequisite data unreadable, treating as unavailable: {e}")
            return PrerequisiteGraph.unavailable()
