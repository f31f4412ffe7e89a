# SQLAlchemy models
from .base import Base
from .learning import (
    LearnerProfileRow,
    PerformanceRecordRow,
    ReviewItemStateRow,
)

__all__ = [
    "Base",
    "LearnerProfileRow",
    "PerformanceRecordRow",
    "ReviewItemStateRow",
]
