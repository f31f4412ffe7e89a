"""
Learning Analytics Engine.

Boundary facade over the scheduling core. Wires one repository into:
- SpacedRepetitionScheduler (record_outcome)
- DueQueueRanker (due reviews, forgetting-curve risks and summary)
- PersonalPatternAnalyzer / ProfileRefresher (profiles)
- FlowStateGuide (in-session difficulty guidance)
- LearningDashboard (profile, queues and headline metrics in one read)

Every persistence call made on behalf of a boundary operation is bounded by
the caller's `timeout` (or the configured default) and fails with
PersistenceTimeoutError instead of hanging.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from loguru import logger

from config import Settings, get_settings
from src.analytics.dashboard import LearningDashboard, build_dashboard
from src.analytics.flow_guide import FlowConfig, FlowGuidance, FlowOutcome, FlowStateGuide
from src.analytics.pattern_analyzer import AnalyzerConfig, PersonalPatternAnalyzer
from src.analytics.profile_refresher import ProfileRefresher
from src.core.errors import LearningAnalyticsError, NotFoundError, ValidationError
from src.core.models import DueReview, ForgettingRisk, LearnerProfile, ReviewItemState, ensure_utc
from src.db.bounded import BoundedRepository, persistence_deadline
from src.db.repository import Repository
from src.scheduling.due_queue import DueQueueRanker, ForgettingCurveSummary
from src.scheduling.forgetting import ForgettingCurveConfig, ForgettingCurveEstimator
from src.scheduling.key_locks import KeyedLockRegistry
from src.scheduling.scheduler import SchedulerConfig, SpacedRepetitionScheduler


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _require(value: str, name: str) -> None:
    if not value or not isinstance(value, str):
        raise ValidationError(f"{name} is required")


class LearningAnalyticsEngine:
    """
    Facade exposing the learning-analytics boundary operations.

    Usage:
        with LearningAnalyticsEngine.from_settings() as engine:
            engine.record_outcome("learner-1", "q-42", "quiz_question", True, 4200, now)
            queue = engine.get_due_reviews("learner-1", limit=10)
    """

    def __init__(
        self,
        repository: Repository,
        *,
        scheduler_config: SchedulerConfig | None = None,
        forgetting_config: ForgettingCurveConfig | None = None,
        analyzer_config: AnalyzerConfig | None = None,
        flow_config: FlowConfig | None = None,
        persistence_timeout: float = 5.0,
        lock_timeout: float = 5.0,
        persistence_workers: int = 8,
        refresh_interval_seconds: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the engine.

        Args:
            repository: Backing store (in-memory or SQL)
            scheduler_config: Scheduler parameters (defaults if None)
            forgetting_config: Forgetting-curve parameters (defaults sharing the scheduler's pass_score if None)
            analyzer_config: Profile rebuild parameters (defaults if None)
            flow_config: Flow guide parameters (defaults if None)
            persistence_timeout: Default timeout per repository call, in seconds
            lock_timeout: Maximum wait for a per-item lock, in seconds
            persistence_workers: Threads executing bounded repository calls
            refresh_interval_seconds: Periodic background profile refresh (0 disables)
            clock: Source of "now" when callers omit it
        """
        self.clock = clock
        self.repository = BoundedRepository(repository, persistence_timeout, persistence_workers)
        scheduler_config = scheduler_config if scheduler_config is not None else SchedulerConfig()
        if forgetting_config is None:
            forgetting_config = ForgettingCurveConfig(pass_score=scheduler_config.pass_score)
        self.estimator = ForgettingCurveEstimator(forgetting_config)
        self.locks = KeyedLockRegistry(lock_timeout)
        self.scheduler = SpacedRepetitionScheduler(self.repository, self.estimator, scheduler_config, self.locks)
        self.ranker = DueQueueRanker(self.repository, self.estimator)
        self.analyzer = PersonalPatternAnalyzer(self.repository, analyzer_config)
        self.flow_guide = FlowStateGuide(flow_config)
        self.refresher = ProfileRefresher(
            self.analyzer,
            interval_seconds=refresh_interval_seconds,
            clock=clock,
        )

    @classmethod
    def from_settings(
        cls,
        repository: Repository | None = None,
        settings: Settings | None = None,
    ) -> LearningAnalyticsEngine:
        """Build an engine from settings, backed by the configured database if no repository is given."""
        settings = settings or get_settings()
        if repository is None:
            from src.db.database import make_session_factory
            from src.db.sql_repository import SqlRepository

            repository = SqlRepository(make_session_factory(settings.database_url))

        return cls(
            repository,
            scheduler_config=SchedulerConfig.from_settings(settings),
            forgetting_config=ForgettingCurveConfig.from_settings(settings),
            analyzer_config=AnalyzerConfig.from_settings(settings),
            flow_config=FlowConfig.from_settings(settings),
            persistence_timeout=settings.persistence_timeout_seconds,
            lock_timeout=settings.lock_timeout_seconds,
            persistence_workers=settings.persistence_workers,
            refresh_interval_seconds=settings.profile_refresh_interval_seconds,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start background profile refresh."""
        self.refresher.start()

    def close(self) -> None:
        """Stop background work and release the persistence pool."""
        self.refresher.stop()
        self.repository.shutdown()

    def __enter__(self) -> LearningAnalyticsEngine:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _now(self, now: datetime | None) -> datetime:
        return ensure_utc(now) if now is not None else self.clock()

    # =========================================================================
    # Scheduling
    # =========================================================================

    def record_outcome(
        self,
        learner_id: str,
        content_id: str,
        content_type: str,
        correctness: bool | float,
        response_time_ms: int,
        timestamp: datetime,
        *,
        session_id: str | None = None,
        topic: str | None = None,
        timeout: float | None = None,
    ) -> ReviewItemState:
        """
        Record a graded attempt.

        Idempotent on (learner_id, content_id, timestamp), so callers may
        retry after a timeout.

        Raises:
            ValidationError: Malformed input
            ConflictError: Version conflicts persisted past the retry budget
            PersistenceTimeoutError: A lock or repository call timed out
        """
        with persistence_deadline(timeout):
            return self.scheduler.record_outcome(
                learner_id,
                content_id,
                correctness,
                response_time_ms,
                timestamp,
                content_type=content_type,
                session_id=session_id,
                topic=topic,
            )

    def get_item_state(
        self,
        learner_id: str,
        content_id: str,
        *,
        timeout: float | None = None,
    ) -> ReviewItemState:
        """Current scheduling state of one item. Raises NotFoundError if never reviewed."""
        _require(learner_id, "learner_id")
        _require(content_id, "content_id")
        with persistence_deadline(timeout):
            state = self.repository.get_item_state(learner_id, content_id)
        if state is None:
            raise NotFoundError(f"No review state for {learner_id}/{content_id}")
        return state

    def get_due_reviews(
        self,
        learner_id: str,
        limit: int,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> list[DueReview]:
        """Items due or at risk, most at risk first, at most `limit`."""
        _require(learner_id, "learner_id")
        with persistence_deadline(timeout):
            return self.ranker.get_due_reviews(learner_id, limit, self._now(now))

    def get_forgetting_curve_recommendations(
        self,
        learner_id: str,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> list[ForgettingRisk]:
        """Forgetting risk for every item of the learner, highest first."""
        _require(learner_id, "learner_id")
        with persistence_deadline(timeout):
            return self.ranker.get_forgetting_curve_recommendations(learner_id, self._now(now))

    def get_forgetting_curve_summary(
        self,
        learner_id: str,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> ForgettingCurveSummary:
        """Learner-level retention summary with strong/weak topics from the profile."""
        _require(learner_id, "learner_id")
        with persistence_deadline(timeout):
            profile = self.repository.get_profile(learner_id)
            return self.ranker.summarize(learner_id, self._now(now), profile)

    # =========================================================================
    # Profiles
    # =========================================================================

    def get_user_learning_profile(
        self,
        learner_id: str,
        *,
        timeout: float | None = None,
    ) -> LearnerProfile:
        """Latest committed profile, or a placeholder (version 0). Never recomputes."""
        _require(learner_id, "learner_id")
        with persistence_deadline(timeout):
            profile = self.repository.get_profile(learner_id)
        return profile or LearnerProfile.placeholder(learner_id)

    def analyze_personal_learning_patterns(
        self,
        learner_id: str,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> LearnerProfile:
        """Rebuild and commit the learner's profile synchronously."""
        _require(learner_id, "learner_id")
        with persistence_deadline(timeout):
            return self.analyzer.rebuild_profile(learner_id, self._now(now))

    def get_learning_dashboard(
        self,
        learner_id: str,
        limit: int = 10,
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> LearningDashboard:
        """
        Profile, due queue, forgetting risks and headline metrics in one read.

        Reads the committed profile only; call analyze_personal_learning_patterns
        or request_profile_refresh to bring it up to date.

        Args:
            learner_id: Learner to summarize
            limit: Maximum due reviews and risk entries
        """
        _require(learner_id, "learner_id")
        now = self._now(now)
        with persistence_deadline(timeout):
            profile = self.repository.get_profile(learner_id) or LearnerProfile.placeholder(learner_id)
            reviews = self.ranker.get_due_reviews(learner_id, limit, now)
            risks = self.ranker.get_forgetting_curve_recommendations(learner_id, now)
            summary = self.ranker.summarize(learner_id, now, profile)
        return build_dashboard(profile, reviews, risks, summary, limit)

    def request_profile_refresh(self, learner_id: str) -> bool:
        """Queue a background rebuild. Returns False if one is already pending."""
        _require(learner_id, "learner_id")
        if not self.refresher.is_running:
            self.refresher.start()
        return self.refresher.request_refresh(learner_id)

    # =========================================================================
    # Flow Guidance
    # =========================================================================

    def provide_flow_state_guidance(
        self,
        session_id: str,
        learner_id: str,
        accuracy: float,
        time_elapsed_minutes: float = 0.0,
        recent_response_times: Sequence[float] | None = None,
        current_difficulty: str = "intermediate",
        *,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> FlowGuidance:
        """
        Feed the latest in-session result into the session's flow tracker.

        The session starts on first use with baselines from the learner's
        profile. The newest entry of `recent_response_times` is the pace of
        this outcome; an empty list counts as baseline pace.

        Args:
            session_id: Learning session id
            learner_id: Owner of the session
            accuracy: Correctness of the latest outcome (0-1)
            time_elapsed_minutes: Session length so far
            recent_response_times: Recent response times in ms, oldest first
            current_difficulty: One of basic/intermediate/advanced/expert

        Returns:
            FlowGuidance with zone and recommended difficulty delta
        """
        _require(session_id, "session_id")
        _require(learner_id, "learner_id")
        if isinstance(time_elapsed_minutes, bool) or not isinstance(time_elapsed_minutes, (int, float)):
            raise ValidationError("time_elapsed_minutes must be a number")
        if not math.isfinite(time_elapsed_minutes):
            raise ValidationError(f"time_elapsed_minutes must be finite, got {time_elapsed_minutes}")
        if time_elapsed_minutes < 0:
            raise ValidationError(f"time_elapsed_minutes must be >= 0, got {time_elapsed_minutes}")

        latest = recent_response_times[-1] if recent_response_times else None
        outcome = FlowOutcome(correctness=accuracy, response_time_ms=latest)

        session = self.flow_guide.get_session(session_id)
        if session is None:
            session = self.flow_guide.get_or_start_session(
                learner_id,
                session_id,
                self._flow_baseline_profile(learner_id, timeout),
                self._now(now),
            )
        elif session.learner_id != learner_id:
            raise ValidationError(f"Session {session_id} belongs to another learner")

        return self.flow_guide.observe(
            session_id,
            outcome,
            current_difficulty=current_difficulty,
            time_elapsed_minutes=time_elapsed_minutes,
        )

    def _flow_baseline_profile(self, learner_id: str, timeout: float | None) -> LearnerProfile | None:
        try:
            with persistence_deadline(timeout):
                return self.repository.get_profile(learner_id)
        except LearningAnalyticsError as exc:
            logger.warning(f"Flow session for {learner_id} starts on default baselines: {exc}")
            return None

    def end_flow_session(self, session_id: str) -> bool:
        """Drop a flow session. Returns False if it was not active."""
        _require(session_id, "session_id")
        return self.flow_guide.end_session(session_id)

    # =========================================================================
    # Health
    # =========================================================================

    def status(self) -> dict:
        """Operational snapshot for health checks."""
        refresh = self.refresher.status
        return {
            "active_flow_sessions": len(self.flow_guide),
            "held_item_locks": len(self.locks),
            "refresher_running": refresh.is_running,
            "pending_refreshes": refresh.pending,
            "total_refreshes": refresh.total_refreshes,
            "failed_refreshes": refresh.failed_refreshes,
        }
