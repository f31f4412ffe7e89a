"""
Learning Analytics.

Components:
- PersonalPatternAnalyzer: Learner profile rebuilds from the performance log
- ProfileRefresher: Background profile rebuilds
- FlowStateGuide: In-session difficulty guidance
- LearningAnalyticsEngine: Boundary facade over the whole core
"""

from .engine import LearningAnalyticsEngine
from .flow_guide import (
    DIFFICULTY_LEVELS,
    FlowConfig,
    FlowGuidance,
    FlowOutcome,
    FlowSession,
    FlowStateGuide,
    FlowStatus,
    classify_status,
    shift_difficulty,
)
from .pattern_analyzer import AnalyzerConfig, PersonalPatternAnalyzer, classify_stage, trimmed_mean
from .profile_refresher import ProfileRefresher, RefreshStatus

__all__ = [
    # Facade
    "LearningAnalyticsEngine",
    # Profiles
    "AnalyzerConfig",
    "PersonalPatternAnalyzer",
    "ProfileRefresher",
    "RefreshStatus",
    "classify_stage",
    "trimmed_mean",
    # Flow
    "DIFFICULTY_LEVELS",
    "FlowConfig",
    "FlowGuidance",
    "FlowOutcome",
    "FlowSession",
    "FlowStateGuide",
    "FlowStatus",
    "classify_status",
    "shift_difficulty",
]
