"""
Core Module - Shared domain models and errors.

Components:
- models: PerformanceRecord, ReviewItemState, LearnerProfile and read models
- errors: Error taxonomy surfaced at the boundary
- logging_setup: Loguru sink configuration

All components (src/scheduling/, src/analytics/, src/db/) import from
src/core/ rather than redefining shared concepts.
"""

from src.core.errors import (
    ConflictError,
    LearningAnalyticsError,
    NotFoundError,
    PersistenceTimeoutError,
    PersistenceUnavailableError,
    ValidationError,
)
from src.core.models import (
    DueReview,
    FlowZone,
    ForgettingRisk,
    LearnerProfile,
    LearnerStage,
    PerformanceRecord,
    ReviewItemState,
    ensure_utc,
    normalize_correctness,
)

__all__ = [
    # Errors
    "LearningAnalyticsError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "PersistenceTimeoutError",
    "PersistenceUnavailableError",
    # Models
    "PerformanceRecord",
    "ReviewItemState",
    "LearnerProfile",
    "LearnerStage",
    "FlowZone",
    "DueReview",
    "ForgettingRisk",
    "ensure_utc",
    "normalize_correctness",
]
