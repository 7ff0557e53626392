# Application Analytics Package
from .cache import ResultCache
from .service import LearningAnalyticsService
from .struggle import StruggleScorer

__all__ = ["LearningAnalyticsService", "StruggleScorer", "ResultCache"]
