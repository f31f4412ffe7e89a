"""
Review Scheduling.

Components:
- ForgettingCurveEstimator: Stability estimation and retention probability
- SpacedRepetitionScheduler: Interval/ease updates per graded attempt
- DueQueueRanker: Review queues ordered by forgetting risk
- KeyedLockRegistry: Per-(learner, content) serialization
"""

from .due_queue import DueQueueRanker, ForgettingCurveSummary
from .forgetting import ForgettingCurveConfig, ForgettingCurveEstimator, retention_at
from .key_locks import KeyedLockRegistry
from .scheduler import SchedulerConfig, SpacedRepetitionScheduler, grade_outcome

__all__ = [
    # Forgetting curve
    "ForgettingCurveConfig",
    "ForgettingCurveEstimator",
    "retention_at",
    # Scheduling
    "SchedulerConfig",
    "SpacedRepetitionScheduler",
    "grade_outcome",
    "KeyedLockRegistry",
    # Ranking
    "DueQueueRanker",
    "ForgettingCurveSummary",
]
