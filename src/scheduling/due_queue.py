"""
Due-Queue Ranker.

Builds review queues from a point-in-time snapshot of a learner's items.

An item is selected when it is classically due (next_due_at <= now) OR its
modeled retention has already fallen below the risk threshold, so the
forgetting curve can surface items earlier than their nominal due date.

Ordering: ascending retention (most at risk first), then earliest due date,
then content id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from src.core.errors import ValidationError
from src.core.models import DueReview, ForgettingRisk, LearnerProfile, ReviewItemState, ensure_utc
from src.db.repository import Repository
from src.scheduling.forgetting import ForgettingCurveEstimator

_FAR_FUTURE = datetime.max.replace(tzinfo=UTC)


@dataclass
class ForgettingCurveSummary:
    """Learner-level view of the forgetting curve, for UI surfacing."""

    personal_retention_rate: float = 0.0  # Mean retention across items (0-1)
    average_forgetting_rate: float = 0.0  # Mean 1/S per day
    total_items: int = 0
    total_items_to_review: int = 0
    strong_topics: list[str] = field(default_factory=list)
    weak_topics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "personal_retention_rate": round(self.personal_retention_rate, 4),
            "average_forgetting_rate": round(self.average_forgetting_rate, 4),
            "total_items": self.total_items,
            "total_items_to_review": self.total_items_to_review,
            "strong_topics": list(self.strong_topics),
            "weak_topics": list(self.weak_topics),
        }


class DueQueueRanker:
    """Read-only ranking of review candidates by forgetting risk."""

    def __init__(self, repository: Repository, estimator: ForgettingCurveEstimator | None = None):
        self.repository = repository
        self.estimator = estimator if estimator is not None else ForgettingCurveEstimator()

    def _scored(self, learner_id: str, now: datetime) -> list[tuple[ReviewItemState, float]]:
        states = self.repository.list_item_states(learner_id)
        return [(s, self.estimator.retention_probability(s, now)) for s in states]

    def _is_selected(self, state: ReviewItemState, retention: float, now: datetime) -> bool:
        return retention < self.estimator.config.risk_threshold or state.is_due(now)

    @staticmethod
    def _order_key(item: tuple[ReviewItemState, float]) -> tuple[float, datetime, str]:
        state, retention = item
        return (retention, state.next_due_at or _FAR_FUTURE, state.content_id)

    def get_due_reviews(self, learner_id: str, limit: int, now: datetime) -> list[DueReview]:
        """
        Get the items most in need of review.

        Args:
            learner_id: Learner to rank items for
            limit: Maximum number of items (> 0)
            now: Evaluation time

        Returns:
            At most `limit` DueReview entries, ordered by non-decreasing retention

        Raises:
            ValidationError: If limit <= 0
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")
        now = ensure_utc(now)

        selected = [
            (state, retention)
            for state, retention in self._scored(learner_id, now)
            if self._is_selected(state, retention, now)
        ]
        selected.sort(key=self._order_key)

        reviews = [
            DueReview(
                content_id=state.content_id,
                retention_probability=retention,
                next_due_at=state.next_due_at,
            )
            for state, retention in selected[:limit]
        ]
        logger.debug(f"Due queue for {learner_id}: {len(selected)} candidates, returning {len(reviews)}")
        return reviews

    def get_forgetting_curve_recommendations(self, learner_id: str, now: datetime) -> list[ForgettingRisk]:
        """
        Risk score for every item of the learner, without the due cutoff.

        Returns:
            ForgettingRisk entries ordered by descending risk
        """
        now = ensure_utc(now)
        scored = sorted(self._scored(learner_id, now), key=self._order_key)
        return [
            ForgettingRisk(
                content_id=state.content_id,
                risk_score=1.0 - retention,
                retention_probability=retention,
                next_due_at=state.next_due_at,
            )
            for state, retention in scored
        ]

    def summarize(
        self,
        learner_id: str,
        now: datetime,
        profile: LearnerProfile | None = None,
    ) -> ForgettingCurveSummary:
        """Aggregate retention statistics for a learner."""
        now = ensure_utc(now)
        scored = self._scored(learner_id, now)
        summary = ForgettingCurveSummary(total_items=len(scored))
        if profile is not None:
            summary.strong_topics = list(profile.strengths)
            summary.weak_topics = list(profile.weaknesses)
        if not scored:
            return summary

        summary.personal_retention_rate = sum(r for _, r in scored) / len(scored)
        summary.average_forgetting_rate = sum(self.estimator.decay_rate(s) for s, _ in scored) / len(scored)
        summary.total_items_to_review = sum(1 for s, r in scored if self._is_selected(s, r, now))
        return summary
