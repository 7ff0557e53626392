"""
Ports (interfaces) for event log retrieval.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod

from .models import (
    PrerequisiteGraph,
    ReviewEvent,
    ReviewFilter,
    SessionFilter,
    SessionTracking,
)


class EventRepository(ABC):
    """
    Port for reading the review/session log.

    Implementations:
        - SqlEventRepository: Queries a relational store via SQLAlchemy.
        - InMemoryEventRepository: Serves events held in memory (tests, demos).

    All implementations are read-only and enforce a hard per-call row cap.
    """

    @abstractmethod
    async def query_reviews(self, review_filter: ReviewFilter) -> list[ReviewEvent]:
        """
        Fetch review events matching the filter.

        Returns:
            ReviewEvents sorted by reviewed_at ascending, then insertion order.

        Raises:
            RangeTooLargeError: The match set (or requested page) exceeds the row cap.
            StoreUnavailable: The store cannot be reached.
        """
        pass

    @abstractmethod
    async def query_sessions(self, session_filter: SessionFilter) -> list[SessionTracking]:
        """
        Fetch session records matching the filter, sorted by started_at ascending.

        Raises:
            RangeTooLargeError: The match set exceeds the row cap.
            StoreUnavailable: The store cannot be reached.
        """
        pass

    @abstractmethod
    async def query_prerequisite_graph(self, deck_id: str | None = None) -> PrerequisiteGraph:
        """
        Fetch declared card prerequisites, optionally restricted to one deck.

        Returns:
            PrerequisiteGraph.unavailable() when the store holds no prerequisite data.
        """
        pass
