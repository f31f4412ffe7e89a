"""
Persistence layer.

- Repository: protocol shared by all backends
- InMemoryRepository: thread-safe in-process store
- SqlRepository: SQLAlchemy store with compare-and-swap writes
- BoundedRepository: timeout-bounded proxy used by the engine
"""

from .bounded import BoundedRepository, persistence_deadline
from .repository import InMemoryRepository, Repository

__all__ = [
    "Repository",
    "InMemoryRepository",
    "BoundedRepository",
    "persistence_deadline",
]
