# Domain Analytics Package
from .models import (
    PrerequisiteGraph,
    ReviewEvent,
    ReviewFilter,
    SessionFilter,
    SessionTracking,
)
from .ports import EventRepository

__all__ = [
    "ReviewEvent",
    "SessionTracking",
    "PrerequisiteGraph",
    "ReviewFilter",
    "SessionFilter",
    "EventRepository",
]
