"""
Spaced-Repetition Scheduler.

SM-2 style interval/ease updates driven by graded attempts:
- outcome quality on a 0-5 scale from correctness and relative response time
- bounded ease updates that shrink as ease approaches its floor or ceiling
- lapses reset repetitions and interval but keep the ease factor
- per-(learner, content) serialization with optimistic-concurrency writes

Quality Scale:
0 - Failed, slower than usual
1 - Failed, at about the usual pace
2 - Failed quickly (almost knew it)
3 - Passed, but struggled (slower than usual)
4 - Passed with some hesitation
5 - Passed quickly with full marks
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

from config import Settings, get_settings
from src.core.errors import ConflictError, ValidationError
from src.core.models import LearnerProfile, PerformanceRecord, ReviewItemState, ensure_utc
from src.db.repository import Repository
from src.scheduling.forgetting import ForgettingCurveConfig, ForgettingCurveEstimator
from src.scheduling.key_locks import KeyedLockRegistry

# =============================================================================
# Configuration
# =============================================================================


@dataclass
class SchedulerConfig:
    """Configuration for the spaced-repetition scheduler."""

    default_ease: float = 2.5
    ease_floor: float = 1.3
    ease_ceiling: float = 3.0
    minimum_interval_days: float = 1.0
    maximum_interval_days: float = 365.0
    pass_score: float = 0.6
    pass_quality: int = 3
    expected_response_ms: int = 10000
    reference_accuracy: float = 0.7  # Baseline accuracy that maps to default ease
    profile_ease_weight: float = 1.0
    max_conflict_retries: int = 3

    def __post_init__(self) -> None:
        if not self.ease_floor < self.ease_ceiling:
            raise ValidationError("ease_floor must be below ease_ceiling")
        if not self.ease_floor <= self.default_ease <= self.ease_ceiling:
            raise ValidationError("default_ease must lie within [ease_floor, ease_ceiling]")
        if self.ease_floor <= 1.0:
            raise ValidationError("ease_floor must exceed 1.0 so successful reviews grow the interval")
        if not 0 < self.minimum_interval_days <= self.maximum_interval_days:
            raise ValidationError("interval bounds must satisfy 0 < minimum <= maximum")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SchedulerConfig:
        settings = settings or get_settings()
        return cls(
            default_ease=settings.sr_default_ease,
            ease_floor=settings.sr_ease_floor,
            ease_ceiling=settings.sr_ease_ceiling,
            minimum_interval_days=settings.sr_minimum_interval_days,
            maximum_interval_days=settings.sr_maximum_interval_days,
            pass_score=settings.sr_pass_score,
            expected_response_ms=settings.sr_expected_response_ms,
            reference_accuracy=settings.flow_default_baseline_accuracy,
            max_conflict_retries=settings.max_conflict_retries,
        )


# =============================================================================
# Outcome Grading
# =============================================================================


def grade_outcome(
    correctness: float,
    response_ms: int,
    reference_ms: float,
    pass_score: float = 0.6,
) -> int:
    """
    Convert an attempt to an ordinal quality grade (0-5).

    Args:
        correctness: Score in [0, 1]
        response_ms: Time taken to respond
        reference_ms: The item's (or learner's) usual response time
        pass_score: Score at or above which the attempt passes

    Returns:
        Grade 0-5; grades >= 3 are passes exactly when correctness >= pass_score
    """
    ratio = response_ms / reference_ms if reference_ms > 0 else 1.0

    if correctness < pass_score:
        # Incorrect responses: 0-2
        if ratio < 0.5:
            return 2  # Quick wrong = almost knew it
        elif ratio < 1.0:
            return 1
        else:
            return 0  # Complete blackout

    # Correct responses: 3-5
    if ratio < 0.5:
        grade = 5
    elif ratio < 1.0:
        grade = 4
    else:
        grade = 3

    # Partial credit never earns a perfect grade
    if correctness < 0.9:
        grade = max(3, grade - 1)
    return grade


# =============================================================================
# Scheduler
# =============================================================================


class SpacedRepetitionScheduler:
    """
    Owns ReviewItemState transitions.

    Each item has:
    - Ease factor: multiplicative interval growth on success, bounded
    - Interval: days until the item is due again
    - Repetitions: consecutive passes since the last lapse
    - Stability: forgetting-curve time scale, re-estimated on every attempt
    """

    def __init__(
        self,
        repository: Repository,
        estimator: ForgettingCurveEstimator | None = None,
        config: SchedulerConfig | None = None,
        locks: KeyedLockRegistry | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            repository: Record/state/profile persistence
            estimator: Forgetting-curve estimator (creates one sharing pass_score if None)
            config: Custom configuration (uses defaults if None)
            locks: Per-item lock registry (creates default if None)

        Raises:
            ValidationError: estimator and config disagree on the pass score
        """
        self.repository = repository
        self.config = config if config is not None else SchedulerConfig()
        if estimator is None:
            estimator = ForgettingCurveEstimator(ForgettingCurveConfig(pass_score=self.config.pass_score))
        elif estimator.config.pass_score != self.config.pass_score:
            raise ValidationError(
                f"Forgetting-curve pass_score {estimator.config.pass_score} differs from "
                f"scheduler pass_score {self.config.pass_score}"
            )
        self.estimator = estimator
        self.locks = locks if locks is not None else KeyedLockRegistry()

    # =========================================================================
    # Pure State Transitions
    # =========================================================================

    def initial_ease(self, profile: LearnerProfile | None) -> float:
        """Ease for a learner's first attempt at an item."""
        cfg = self.config
        if profile is None or not profile.has_baseline:
            return cfg.default_ease
        ease = cfg.default_ease + (profile.baseline_accuracy - cfg.reference_accuracy) * cfg.profile_ease_weight
        return min(cfg.ease_ceiling, max(cfg.ease_floor, ease))

    def update_ease(self, ease: float, quality: int) -> float:
        """
        Apply a bounded SM-2 ease delta.

        EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02)), with negative
        deltas scaled by the distance to the floor and positive deltas by the
        distance to the ceiling.
        """
        cfg = self.config
        delta = 0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)
        span = cfg.ease_ceiling - cfg.ease_floor
        if delta < 0:
            delta *= (ease - cfg.ease_floor) / span
        elif delta > 0:
            delta *= (cfg.ease_ceiling - ease) / span
        return min(cfg.ease_ceiling, max(cfg.ease_floor, ease + delta))

    def reference_response_ms(self, state: ReviewItemState | None, profile: LearnerProfile | None) -> float:
        """Usual response time to grade pace against."""
        if state is not None and state.review_count > 0 and state.average_response_ms > 0:
            return state.average_response_ms
        if profile is not None and profile.has_baseline:
            return float(profile.baseline_response_ms)
        return float(self.config.expected_response_ms)

    def calculate_next_state(
        self,
        state: ReviewItemState | None,
        record: PerformanceRecord,
        profile: LearnerProfile | None = None,
    ) -> tuple[ReviewItemState, int]:
        """
        Compute the item state after `record`, without persisting it.

        Args:
            state: Current state (None on a first attempt)
            record: The graded attempt
            profile: Learner profile, used on first attempts

        Returns:
            Tuple of (new state with stability unset, quality grade)
        """
        cfg = self.config
        now = record.timestamp
        quality = grade_outcome(
            record.correctness,
            record.response_time_ms,
            self.reference_response_ms(state, profile),
            cfg.pass_score,
        )
        passed = quality >= cfg.pass_quality

        if state is None:
            new_state = ReviewItemState(
                learner_id=record.learner_id,
                content_id=record.content_id,
                repetition_count=1 if passed else 0,
                ease_factor=self.initial_ease(profile),
                interval_days=cfg.minimum_interval_days,
                stability_days=self.estimator.config.initial_stability_days,
                lapse_count=0,
                review_count=1,
                average_response_ms=float(record.response_time_ms),
            )
        else:
            new_state = state.copy(
                review_count=state.review_count + 1,
                average_response_ms=(
                    state.average_response_ms * state.review_count + record.response_time_ms
                )
                / (state.review_count + 1),
            )
            if passed:
                new_state.repetition_count = state.repetition_count + 1
                new_state.ease_factor = self.update_ease(state.ease_factor, quality)
                new_state.interval_days = min(
                    cfg.maximum_interval_days,
                    state.interval_days * new_state.ease_factor,
                )
            else:
                # Lapse: reset progress, keep ease
                new_state.lapse_count = state.lapse_count + 1
                new_state.repetition_count = 0
                new_state.interval_days = cfg.minimum_interval_days

        new_state.last_reviewed_at = now
        new_state.next_due_at = now + timedelta(days=new_state.interval_days)
        return new_state, quality

    # =========================================================================
    # Recording Outcomes
    # =========================================================================

    def record_outcome(
        self,
        learner_id: str,
        content_id: str,
        correctness: bool | float,
        response_time_ms: int,
        now: datetime,
        *,
        content_type: str = "quiz_question",
        session_id: str | None = None,
        topic: str | None = None,
    ) -> ReviewItemState:
        """
        Record a graded attempt and update the item's scheduling state.

        Posting the same (learner_id, content_id, now) again returns the
        stored state without applying the attempt twice.

        Args:
            learner_id: Stable learner identifier
            content_id: Content unit identifier
            correctness: Bool or score in [0, 1]
            response_time_ms: Time to answer (>= 0)
            now: Attempt timestamp
            content_type: Catalog content type
            session_id: Learning session the attempt belongs to
            topic: Topic tag for profile aggregation

        Returns:
            The committed ReviewItemState

        Raises:
            ValidationError: Malformed input
            ConflictError: Concurrent writers kept winning past the retry budget
            PersistenceTimeoutError: Lock or repository call timed out
        """
        record = PerformanceRecord(
            learner_id=learner_id,
            content_id=content_id,
            content_type=content_type,
            correctness=correctness,
            response_time_ms=response_time_ms,
            timestamp=ensure_utc(now),
            session_id=session_id,
            topic=topic,
        )

        with self.locks.hold((learner_id, content_id)):
            attempt = 0
            while True:
                attempt += 1
                existing = self.repository.get_record(*record.key)
                current = self.repository.get_item_state(learner_id, content_id)

                if existing is not None and current is not None:
                    logger.debug(f"Duplicate outcome for {record.key}, returning stored state")
                    return current

                if current is not None and current.last_reviewed_at and record.timestamp < current.last_reviewed_at:
                    raise ValidationError(
                        f"Outcome at {record.timestamp.isoformat()} precedes last review "
                        f"at {current.last_reviewed_at.isoformat()}"
                    )

                profile = self.repository.get_profile(learner_id) if current is None else None
                history = self.repository.list_records(learner_id, content_id)

                new_state, quality = self.calculate_next_state(current, record, profile)
                new_state.stability_days = self.estimator.estimate_stability(new_state, [*history, record])

                expected_version = current.version if current else 0
                try:
                    committed = self.repository.commit_outcome(record, new_state, expected_version)
                except ConflictError:
                    if attempt > self.config.max_conflict_retries:
                        logger.error(f"Giving up on {record.key} after {attempt} conflicting attempts")
                        raise
                    logger.warning(f"Version conflict on {record.key} (attempt {attempt}), retrying")
                    continue

                logger.debug(
                    f"Recorded outcome for {learner_id}/{content_id}: quality={quality}, "
                    f"reps={committed.repetition_count}, interval={committed.interval_days:.2f}d, "
                    f"ease={committed.ease_factor:.2f}, S={committed.stability_days:.2f}d"
                )
                return committed
