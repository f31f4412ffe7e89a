"""
Core domain models for adaptive review scheduling.

Design:
- PerformanceRecord: immutable graded attempt, keyed by (learner, content, timestamp)
- ReviewItemState: per (learner, content) scheduling state, owned by the scheduler
- LearnerProfile: aggregate rebuilt wholesale by the pattern analyzer
- DueReview / ForgettingRisk: read models emitted by the due-queue ranker
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum

from src.core.errors import ValidationError


class LearnerStage(str, Enum):
    """How much evidence the analyzer has about a learner."""

    INSUFFICIENT_DATA = "insufficient_data"
    BASIC = "basic"
    MATURE = "mature"


class FlowZone(str, Enum):
    """
    Engagement zone of a learner inside a session.

    Each zone maps to a difficulty recommendation:
    - BOREDOM -> harder (+1)
    - FLOW -> hold (0)
    - ANXIETY -> easier (-1)
    - INSUFFICIENT_SIGNAL -> hold (0)
    """

    INSUFFICIENT_SIGNAL = "insufficient_signal"
    BOREDOM = "boredom"
    FLOW = "flow"
    ANXIETY = "anxiety"

    @property
    def recommended_delta(self) -> int:
        return {
            FlowZone.BOREDOM: 1,
            FlowZone.ANXIETY: -1,
        }.get(self, 0)


def ensure_utc(value: datetime) -> datetime:
    """Return a timezone-aware UTC datetime (naive values are taken as UTC)."""
    if not isinstance(value, datetime):
        raise ValidationError(f"Expected a datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def normalize_correctness(value: bool | float | int) -> float:
    """
    Map a correctness input to a score in [0, 1].

    Booleans map to {0, 1}; numbers must already lie in [0, 1].
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if not isinstance(value, (int, float)):
        raise ValidationError(f"Correctness must be a bool or a number, got {type(value).__name__}")
    score = float(value)
    if math.isnan(score) or score < 0.0 or score > 1.0:
        raise ValidationError(f"Correctness must be in [0, 1], got {value}")
    return score


def days_between(start: datetime, end: datetime) -> float:
    """Elapsed days from start to end (negative if end precedes start)."""
    return (end - start).total_seconds() / 86400.0


@dataclass(frozen=True)
class PerformanceRecord:
    """A single graded attempt. Never mutated once created."""

    learner_id: str
    content_id: str
    content_type: str
    correctness: float
    response_time_ms: int
    timestamp: datetime
    session_id: str | None = None
    topic: str | None = None

    def __post_init__(self) -> None:
        if not self.learner_id:
            raise ValidationError("learner_id is required")
        if not self.content_id:
            raise ValidationError("content_id is required")
        if isinstance(self.response_time_ms, bool) or not isinstance(self.response_time_ms, (int, float)):
            raise ValidationError("response_time_ms must be a number")
        if not math.isfinite(self.response_time_ms):
            raise ValidationError(f"response_time_ms must be finite, got {self.response_time_ms}")
        if self.response_time_ms < 0:
            raise ValidationError(f"response_time_ms must be >= 0, got {self.response_time_ms}")
        object.__setattr__(self, "correctness", normalize_correctness(self.correctness))
        object.__setattr__(self, "response_time_ms", int(self.response_time_ms))
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @property
    def key(self) -> tuple[str, str, datetime]:
        """Identity key used for idempotent replay."""
        return (self.learner_id, self.content_id, self.timestamp)

    def to_dict(self) -> dict:
        return {
            "learner_id": self.learner_id,
            "content_id": self.content_id,
            "content_type": self.content_type,
            "correctness": self.correctness,
            "response_time_ms": self.response_time_ms,
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
            "topic": self.topic,
        }


@dataclass
class ReviewItemState:
    """
    Scheduling state for one (learner, content) pair.

    Invariant: next_due_at == last_reviewed_at + interval_days.
    """

    learner_id: str
    content_id: str
    repetition_count: int = 0
    ease_factor: float = 2.5
    interval_days: float = 1.0
    stability_days: float = 1.0
    last_reviewed_at: datetime | None = None
    next_due_at: datetime | None = None
    lapse_count: int = 0
    review_count: int = 0
    average_response_ms: float = 0.0
    version: int = 0  # 0 = never persisted

    @property
    def key(self) -> tuple[str, str]:
        return (self.learner_id, self.content_id)

    @property
    def interval(self) -> timedelta:
        return timedelta(days=self.interval_days)

    def is_due(self, now: datetime) -> bool:
        """Classically due: the scheduled date has passed."""
        if self.next_due_at is None:
            return True
        return ensure_utc(now) >= self.next_due_at

    def days_since_review(self, now: datetime) -> float:
        """Days elapsed since the last review, never negative."""
        if self.last_reviewed_at is None:
            return 0.0
        return max(0.0, days_between(self.last_reviewed_at, ensure_utc(now)))

    def copy(self, **changes) -> ReviewItemState:
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "learner_id": self.learner_id,
            "content_id": self.content_id,
            "repetition_count": self.repetition_count,
            "ease_factor": round(self.ease_factor, 4),
            "interval_days": round(self.interval_days, 4),
            "stability_days": round(self.stability_days, 4),
            "last_reviewed_at": self.last_reviewed_at.isoformat() if self.last_reviewed_at else None,
            "next_due_at": self.next_due_at.isoformat() if self.next_due_at else None,
            "lapse_count": self.lapse_count,
            "review_count": self.review_count,
            "average_response_ms": round(self.average_response_ms, 1),
            "version": self.version,
        }


@dataclass
class LearnerProfile:
    """
    Aggregate view of a learner, rebuilt wholesale by the analyzer.

    Version 0 marks the placeholder returned before any rebuild.
    """

    learner_id: str
    stage: LearnerStage = LearnerStage.INSUFFICIENT_DATA
    baseline_accuracy: float | None = None
    baseline_response_ms: float | None = None
    topic_strengths: dict[str, float] = field(default_factory=dict)
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)
    days_active: int = 0
    session_count: int = 0
    record_count: int = 0
    optimal_hours: list[int] = field(default_factory=list)
    weekday_accuracy: dict[int, float] = field(default_factory=dict)
    optimal_session_minutes: int = 25
    current_load_level: float = 5.0
    load_tolerance: float = 6.0
    fatigue_threshold_minutes: float = 60.0
    study_streak_days: int = 0
    version: int = 0
    built_at: datetime | None = None

    @classmethod
    def placeholder(cls, learner_id: str) -> LearnerProfile:
        """Profile used when none has been built yet."""
        return cls(learner_id=learner_id)

    @property
    def is_placeholder(self) -> bool:
        return self.version == 0

    @property
    def has_baseline(self) -> bool:
        """Whether baselines are trustworthy enough to personalize with."""
        return (
            self.stage != LearnerStage.INSUFFICIENT_DATA
            and self.baseline_accuracy is not None
            and bool(self.baseline_response_ms)
        )

    def is_stale(self, now: datetime, max_age: timedelta) -> bool:
        if self.built_at is None:
            return True
        return ensure_utc(now) - self.built_at > max_age

    def to_dict(self) -> dict:
        return {
            "learner_id": self.learner_id,
            "stage": self.stage.value,
            "baseline_accuracy": self.baseline_accuracy,
            "baseline_response_ms": self.baseline_response_ms,
            "topic_strengths": dict(self.topic_strengths),
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "days_active": self.days_active,
            "session_count": self.session_count,
            "record_count": self.record_count,
            "optimal_hours": list(self.optimal_hours),
            "weekday_accuracy": {str(k): v for k, v in self.weekday_accuracy.items()},
            "cognitive_load": {
                "optimal_session_minutes": self.optimal_session_minutes,
                "current_load_level": round(self.current_load_level, 2),
                "load_tolerance": round(self.load_tolerance, 2),
                "fatigue_threshold_minutes": round(self.fatigue_threshold_minutes, 1),
            },
            "study_streak_days": self.study_streak_days,
            "version": self.version,
            "built_at": self.built_at.isoformat() if self.built_at else None,
        }


@dataclass(frozen=True)
class DueReview:
    """An item selected for review, with its current retention estimate."""

    content_id: str
    retention_probability: float
    next_due_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "content_id": self.content_id,
            "retention_probability": round(self.retention_probability, 4),
            "next_due_at": self.next_due_at.isoformat() if self.next_due_at else None,
        }


@dataclass(frozen=True)
class ForgettingRisk:
    """Risk of forgetting an item, without any cutoff applied."""

    content_id: str
    risk_score: float
    retention_probability: float
    next_due_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "content_id": self.content_id,
            "risk_score": round(self.risk_score, 4),
            "retention_probability": round(self.retention_probability, 4),
            "next_due_at": self.next_due_at.isoformat() if self.next_due_at else None,
        }
