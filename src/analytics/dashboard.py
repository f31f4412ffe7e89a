"""
Learning dashboard read model.

Combines, for one learner:
- the committed profile (never rebuilt here)
- a learning-stage banner derived from the profile's stage
- the due-review queue and forgetting-curve risks
- headline metrics: sessions, accuracy, streak, reviews due, velocity
"""

from __future__ import annotations

from dataclasses import dataclass, field

from src.core.models import DueReview, ForgettingRisk, LearnerProfile, LearnerStage
from src.scheduling.due_queue import ForgettingCurveSummary

STAGE_BANNERS: dict[LearnerStage, tuple[str, str]] = {
    LearnerStage.INSUFFICIENT_DATA: ("analyzing", "insufficient"),
    LearnerStage.BASIC: ("patterns_emerging", "basic"),
    LearnerStage.MATURE: ("ai_coach_active", "excellent"),
}


@dataclass
class DashboardMetrics:
    """Headline numbers shown at the top of the dashboard."""

    total_sessions: int = 0
    average_accuracy: float | None = None
    study_streak_days: int = 0
    reviews_due: int = 0
    learning_velocity: float = 0.0  # Attempts per active day

    def to_dict(self) -> dict:
        return {
            "total_sessions": self.total_sessions,
            "average_accuracy": round(self.average_accuracy, 4) if self.average_accuracy is not None else None,
            "study_streak_days": self.study_streak_days,
            "reviews_due": self.reviews_due,
            "learning_velocity": round(self.learning_velocity, 2),
        }


@dataclass
class LearningDashboard:
    """Everything a learner's home screen needs in one read."""

    profile: LearnerProfile
    due_reviews: list[DueReview] = field(default_factory=list)
    risks: list[ForgettingRisk] = field(default_factory=list)
    forgetting_summary: ForgettingCurveSummary | None = None
    metrics: DashboardMetrics = field(default_factory=DashboardMetrics)

    @property
    def learning_stage(self) -> dict:
        stage, quality = STAGE_BANNERS[self.profile.stage]
        return {
            "stage": stage,
            "days_active": self.profile.days_active,
            "session_count": self.profile.session_count,
            "data_quality": quality,
        }

    def to_dict(self) -> dict:
        return {
            "profile": self.profile.to_dict(),
            "learning_stage": self.learning_stage,
            "due_reviews": [r.to_dict() for r in self.due_reviews],
            "forgetting_curve": {
                "summary": self.forgetting_summary.to_dict() if self.forgetting_summary else None,
                "risks": [r.to_dict() for r in self.risks],
            },
            "metrics": self.metrics.to_dict(),
        }


def build_dashboard(
    profile: LearnerProfile,
    due_reviews: list[DueReview],
    risks: list[ForgettingRisk],
    summary: ForgettingCurveSummary,
    risk_limit: int,
) -> LearningDashboard:
    """Assemble the dashboard from already-read parts."""
    velocity = profile.record_count / profile.days_active if profile.days_active else 0.0
    metrics = DashboardMetrics(
        total_sessions=profile.session_count,
        average_accuracy=profile.baseline_accuracy,
        study_streak_days=profile.study_streak_days,
        reviews_due=len(due_reviews),
        learning_velocity=velocity,
    )
    return LearningDashboard(
        profile=profile,
        due_reviews=due_reviews,
        risks=risks[:risk_limit],
        forgetting_summary=summary,
        metrics=metrics,
    )
