# Infrastructure Adapters Package
from .memory import InMemoryEventRepository
from .sql import SqlEventRepository

__all__ = ["InMemoryEventRepository", "SqlEventRepository"]
