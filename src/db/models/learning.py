"""
Learning Analytics Models.

SQLAlchemy tables backing the scheduling core:
- Performance records (append-only attempt log)
- Review item state (per learner/content scheduling state, versioned)
- Learner profiles (rebuilt wholesale, versioned)

Timestamps are stored as naive UTC.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PerformanceRecordRow(Base):
    """One graded attempt. Rows are never updated."""

    __tablename__ = "performance_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False)
    content_id: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(Text, nullable=False, default="quiz_question")
    correctness: Mapped[float] = mapped_column(Float, nullable=False)
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    reviewed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    session_id: Mapped[str | None] = mapped_column(Text)
    topic: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("learner_id", "content_id", "reviewed_at", name="uq_record_attempt"),
        Index("idx_records_learner_time", "learner_id", "reviewed_at"),
    )

    def __repr__(self) -> str:
        return f"<PerformanceRecordRow {self.learner_id}/{self.content_id} at {self.reviewed_at}>"


class ReviewItemStateRow(Base):
    """Scheduling state for one (learner, content) pair."""

    __tablename__ = "review_item_states"

    learner_id: Mapped[str] = mapped_column(Text, primary_key=True)
    content_id: Mapped[str] = mapped_column(Text, primary_key=True)

    # SM-2 state
    repetition_count: Mapped[int] = mapped_column(Integer, default=0)
    ease_factor: Mapped[float] = mapped_column(Float, default=2.5)
    interval_days: Mapped[float] = mapped_column(Float, default=1.0)
    stability_days: Mapped[float] = mapped_column(Float, default=1.0)

    # Scheduling
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime)
    next_due_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Counters
    lapse_count: Mapped[int] = mapped_column(Integer, default=0)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    average_response_ms: Mapped[float] = mapped_column(Float, default=0.0)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (Index("idx_item_states_due", "learner_id", "next_due_at"),)

    def __repr__(self) -> str:
        return f"<ReviewItemStateRow {self.learner_id}/{self.content_id} v{self.version}>"


class LearnerProfileRow(Base):
    """Latest committed learner profile."""

    __tablename__ = "learner_profiles"

    learner_id: Mapped[str] = mapped_column(Text, primary_key=True)
    stage: Mapped[str] = mapped_column(Text, nullable=False)

    # Baselines
    baseline_accuracy: Mapped[float | None] = mapped_column(Float)
    baseline_response_ms: Mapped[float | None] = mapped_column(Float)

    # Aggregates
    topic_strengths: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    strengths: Mapped[list[str]] = mapped_column(JSON, default=list)
    weaknesses: Mapped[list[str]] = mapped_column(JSON, default=list)
    optimal_hours: Mapped[list[int]] = mapped_column(JSON, default=list)
    weekday_accuracy: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)  # Keys are weekday numbers as text

    days_active: Mapped[int] = mapped_column(Integer, default=0)
    session_count: Mapped[int] = mapped_column(Integer, default=0)
    record_count: Mapped[int] = mapped_column(Integer, default=0)

    # Cognitive load and habits
    optimal_session_minutes: Mapped[int] = mapped_column(Integer, default=25)
    current_load_level: Mapped[float] = mapped_column(Float, default=5.0)
    load_tolerance: Mapped[float] = mapped_column(Float, default=6.0)
    fatigue_threshold_minutes: Mapped[float] = mapped_column(Float, default=60.0)
    study_streak_days: Mapped[int] = mapped_column(Integer, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    built_at: Mapped[datetime | None] = mapped_column(DateTime)

    def __repr__(self) -> str:
        return f"<LearnerProfileRow {self.learner_id} v{self.version} stage={self.stage}>"
