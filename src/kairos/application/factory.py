"""
Analytics Factory
Centralizes the logic for selecting the event store adapter and wiring the service.
"""

import logging

from kairos.application.analytics.cache import ResultCache
from kairos.application.analytics.service import LearningAnalyticsService
from kairos.application.config import AppConfig
from kairos.domain.analytics.ports import EventRepository

logger = logging.getLogger(__name__)


def get_event_repository(config: AppConfig) -> EventRepository:
    """
    Returns the appropriate EventRepository implementation based on config.
    """
    if config.backend == "memory":
        from kairos.infrastructure.adapters.memory import InMemoryEventRepository

        if config.fixture_path is None:
            logger.info("Backend: memory (empty)")
            return InMemoryEventRepository(max_rows=config.max_rows_per_query)
        logger.info(f"Backend: memory ({config.fixture_path})")
        return InMemoryEventRepository.from_file(
            config.fixture_path, max_rows=config.max_rows_per_query
        )

    from kairos.infrastructure.adapters.sql import SqlEventRepository

    logger.info(f"Backend: sql ({config.database_url})")
    return SqlEventRepository(config.database_url, max_rows=config.max_rows_per_query)


def build_analytics_service(
    config: AppConfig, repo: EventRepository | None = None
) -> LearningAnalyticsService:
    cache = ResultCache(config.cache_ttl) if config.cache_enabled else None
    return LearningAnalyticsService(
        repo or get_event_repository(config),
        policy=config.policy,
        timeout=config.query_timeout,
        cache=cache,
    )
