"""
Unit tests for the LearningAnalyticsEngine facade.

End-to-end flows over the in-memory repository: recording attempts,
building review queues, reading and rebuilding profiles, flow guidance.
"""

import threading
from datetime import timedelta

import pytest

from src.analytics.engine import LearningAnalyticsEngine
from src.core.errors import NotFoundError, PersistenceTimeoutError, ValidationError
from src.core.models import FlowZone, LearnerStage
from src.db.repository import InMemoryRepository
from src.scheduling.forgetting import ForgettingCurveConfig
from src.scheduling.scheduler import SchedulerConfig


class StalledRepository(InMemoryRepository):
    """Profile reads hang until released."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def get_profile(self, learner_id):
        self.release.wait(timeout=5)
        return super().get_profile(learner_id)


def _study_week(engine, now):
    """Three sessions over three days on two topics."""
    for day in range(3):
        for i, content_id in enumerate(["q-1", "q-2", "q-3"]):
            engine.record_outcome(
                "learner-1",
                content_id,
                "quiz_question",
                content_id != "q-3",
                4000,
                now + timedelta(days=day, minutes=i),
                session_id=f"s{day}",
                topic="routing" if content_id != "q-3" else "subnetting",
            )


class TestRecordAndQueue:
    def test_record_outcome_returns_state(self, engine, now):
        state = engine.record_outcome("learner-1", "q-1", "quiz_question", True, 4000, now)

        assert state.repetition_count == 1
        assert engine.get_item_state("learner-1", "q-1") == state

    def test_unknown_item_is_not_found(self, engine):
        with pytest.raises(NotFoundError):
            engine.get_item_state("learner-1", "missing")

    def test_due_reviews_use_clock_by_default(self, engine, now):
        engine.record_outcome("learner-1", "q-1", "quiz_question", True, 4000, now - timedelta(days=3))

        reviews = engine.get_due_reviews("learner-1", 5)

        assert [r.content_id for r in reviews] == ["q-1"]

    def test_due_reviews_validate_input(self, engine):
        with pytest.raises(ValidationError):
            engine.get_due_reviews("learner-1", 0)
        with pytest.raises(ValidationError):
            engine.get_due_reviews("", 5)

    def test_forgetting_curve_views(self, engine, now):
        engine.record_outcome("learner-1", "q-1", "quiz_question", True, 4000, now - timedelta(days=2))
        engine.record_outcome("learner-1", "q-2", "quiz_question", True, 4000, now)

        risks = engine.get_forgetting_curve_recommendations("learner-1")
        summary = engine.get_forgetting_curve_summary("learner-1")

        assert [r.content_id for r in risks] == ["q-1", "q-2"]
        assert summary.total_items == 2
        assert summary.total_items_to_review == 1


class TestProfiles:
    def test_placeholder_before_any_rebuild(self, engine, now):
        _study_week(engine, now)

        profile = engine.get_user_learning_profile("learner-1")

        assert profile.is_placeholder
        assert profile.stage == LearnerStage.INSUFFICIENT_DATA

    def test_reads_never_recompute(self, engine, now):
        _study_week(engine, now)
        rebuilt = engine.analyze_personal_learning_patterns("learner-1", now=now + timedelta(days=3))

        engine.record_outcome("learner-1", "q-9", "quiz_question", False, 9000, now + timedelta(days=4))

        assert engine.get_user_learning_profile("learner-1") == rebuilt

    def test_rebuild_reflects_history(self, engine, now):
        _study_week(engine, now)

        profile = engine.analyze_personal_learning_patterns("learner-1", now=now + timedelta(days=3))

        assert profile.version == 1
        assert profile.stage == LearnerStage.BASIC
        assert profile.baseline_accuracy == pytest.approx(2 / 3)
        assert profile.strengths == ["routing"]
        assert profile.weaknesses == ["subnetting"]

    def test_background_refresh(self, engine, repo, now):
        _study_week(engine, now)

        assert engine.request_profile_refresh("learner-1") is True
        assert engine.refresher.wait_until_idle(timeout=5)

        assert repo.get_profile("learner-1").version == 1

    def test_profile_personalizes_new_items(self, engine, now):
        _study_week(engine, now)
        engine.analyze_personal_learning_patterns("learner-1", now=now + timedelta(days=3))

        state = engine.record_outcome("learner-1", "q-new", "quiz_question", True, 4000, now + timedelta(days=4))

        # Baseline accuracy 2/3 sits just below the 0.7 reference
        assert state.ease_factor == pytest.approx(2.5 + (2 / 3 - 0.7))


class TestFlowGuidance:
    def test_boredom_on_fifth_evaluation(self, engine):
        results = [
            engine.provide_flow_state_guidance("session-1", "learner-1", 1.0, i, [3000] * (i + 1))
            for i in range(5)
        ]

        assert [g.zone for g in results[:4]] == [FlowZone.INSUFFICIENT_SIGNAL] * 4
        assert results[4].zone == FlowZone.BOREDOM
        assert results[4].recommended_delta == 1
        assert results[4].suggested_difficulty == "advanced"

    def test_session_belongs_to_one_learner(self, engine):
        engine.provide_flow_state_guidance("session-1", "learner-1", 1.0)

        with pytest.raises(ValidationError):
            engine.provide_flow_state_guidance("session-1", "learner-2", 1.0)

    def test_end_flow_session(self, engine):
        engine.provide_flow_state_guidance("session-1", "learner-1", 1.0)

        assert engine.end_flow_session("session-1") is True
        assert engine.end_flow_session("session-1") is False

    def test_invalid_accuracy(self, engine):
        with pytest.raises(ValidationError):
            engine.provide_flow_state_guidance("session-1", "learner-1", 75.0)

    def test_negative_elapsed_time(self, engine):
        with pytest.raises(ValidationError):
            engine.provide_flow_state_guidance("session-1", "learner-1", 1.0, -1)

    def test_profile_outage_falls_back_to_defaults(self, now):
        repo = StalledRepository()
        engine = LearningAnalyticsEngine(repo, persistence_timeout=0.05, clock=lambda: now)
        try:
            guidance = engine.provide_flow_state_guidance("session-1", "learner-1", 1.0, 1, [3000])
        finally:
            repo.release.set()
            engine.close()

        assert guidance.zone == FlowZone.INSUFFICIENT_SIGNAL
        assert engine.flow_guide.get_session("session-1").baseline_response_ms == 10000


class TestTimeouts:
    def test_caller_timeout_bounds_profile_read(self, now):
        repo = StalledRepository()
        engine = LearningAnalyticsEngine(repo, persistence_timeout=30.0, clock=lambda: now)
        try:
            with pytest.raises(PersistenceTimeoutError):
                engine.get_user_learning_profile("learner-1", timeout=0.05)
        finally:
            repo.release.set()
            engine.close()

    def test_retry_after_timeout_is_safe(self, engine, repo, now):
        first = engine.record_outcome("learner-1", "q-1", "quiz_question", True, 4000, now)
        retried = engine.record_outcome("learner-1", "q-1", "quiz_question", True, 4000, now)

        assert retried == first
        assert len(repo.list_records("learner-1")) == 1


class TestStatus:
    def test_status_snapshot(self, engine):
        engine.provide_flow_state_guidance("session-1", "learner-1", 1.0)

        status = engine.status()

        assert status["active_flow_sessions"] == 1
        assert status["refresher_running"] is False


class TestWiring:
    def test_scheduler_uses_engine_lock_registry(self, repo):
        engine = LearningAnalyticsEngine(repo, lock_timeout=0.05)
        try:
            assert engine.scheduler.locks is engine.locks
            assert engine.scheduler.locks.timeout == pytest.approx(0.05)
        finally:
            engine.close()

    def test_estimator_shares_scheduler_pass_score(self, repo):
        engine = LearningAnalyticsEngine(repo, scheduler_config=SchedulerConfig(pass_score=0.7))
        try:
            assert engine.estimator.config.pass_score == pytest.approx(0.7)
        finally:
            engine.close()

    def test_mismatched_pass_scores_are_rejected(self, repo):
        with pytest.raises(ValidationError):
            LearningAnalyticsEngine(
                repo,
                scheduler_config=SchedulerConfig(pass_score=0.7),
                forgetting_config=ForgettingCurveConfig(pass_score=0.6),
            )


class TestNonFiniteInput:
    @pytest.mark.parametrize("response_ms", [float("nan"), float("inf")])
    def test_record_outcome_rejects_non_finite_response_time(self, engine, repo, now, response_ms):
        with pytest.raises(ValidationError):
            engine.record_outcome("learner-1", "q-1", "quiz_question", True, response_ms, now)

        assert repo.get_item_state("learner-1", "q-1") is None

    @pytest.mark.parametrize("elapsed", [float("nan"), float("inf")])
    def test_flow_guidance_rejects_non_finite_elapsed_time(self, engine, elapsed):
        with pytest.raises(ValidationError):
            engine.provide_flow_state_guidance("session-1", "learner-1", 1.0, elapsed)

    def test_flow_guidance_rejects_non_finite_response_time(self, engine):
        with pytest.raises(ValidationError):
            engine.provide_flow_state_guidance("session-1", "learner-1", 1.0, 1, [3000, float("nan")])


class TestDashboard:
    def test_dashboard_reads_committed_profile(self, engine, now):
        _study_week(engine, now)
        engine.analyze_personal_learning_patterns("learner-1", now=now + timedelta(days=3))

        board = engine.get_learning_dashboard("learner-1", now=now + timedelta(days=3))

        assert board.profile.version == 1
        assert board.learning_stage == {
            "stage": "patterns_emerging",
            "days_active": 3,
            "session_count": 3,
            "data_quality": "basic",
        }
        assert board.metrics.total_sessions == 3
        assert board.metrics.study_streak_days == 3
        assert board.metrics.learning_velocity == pytest.approx(3.0)
        assert board.metrics.reviews_due == len(board.due_reviews)
        assert board.forgetting_summary.total_items == 3

    def test_dashboard_before_any_rebuild(self, engine, now):
        engine.record_outcome("learner-1", "q-1", "quiz_question", True, 4000, now - timedelta(days=3))

        data = engine.get_learning_dashboard("learner-1", 5).to_dict()

        assert data["profile"]["version"] == 0
        assert data["learning_stage"]["stage"] == "analyzing"
        assert data["learning_stage"]["data_quality"] == "insufficient"
        assert [r["content_id"] for r in data["due_reviews"]] == ["q-1"]
        assert data["metrics"]["reviews_due"] == 1

    def test_dashboard_limits_queue_and_risks(self, engine, now):
        for i in range(4):
            engine.record_outcome("learner-1", f"q-{i}", "quiz_question", True, 4000, now - timedelta(days=5 + i))

        board = engine.get_learning_dashboard("learner-1", 2)

        assert len(board.due_reviews) == 2
        assert len(board.risks) == 2

    def test_dashboard_validates_limit(self, engine):
        with pytest.raises(ValidationError):
            engine.get_learning_dashboard("learner-1", 0)
