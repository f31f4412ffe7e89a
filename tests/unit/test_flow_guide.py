"""
Unit tests for the flow-state guide.

Zones only change once the window is full and consecutive evaluations
agree; a single outlier never flips a stable zone.
"""

from datetime import timedelta

import pytest

from src.analytics.flow_guide import (
    FlowConfig,
    FlowOutcome,
    FlowStateGuide,
    FlowStatus,
    classify_status,
    shift_difficulty,
)
from src.core.errors import NotFoundError, ValidationError
from src.core.models import FlowZone, LearnerProfile, LearnerStage

FAST = 3000
SLOW = 20000


@pytest.fixture
def guide():
    return FlowStateGuide()


@pytest.fixture
def session(guide, now):
    return guide.start_session("learner-1", "session-1", now=now)


def _feed(guide, outcomes, **kwargs):
    return [guide.observe("session-1", FlowOutcome(c, t), **kwargs) for c, t in outcomes]


class TestZones:
    def test_boredom_only_once_window_fills(self, guide, session):
        results = _feed(guide, [(1, FAST)] * 5)

        assert [g.zone for g in results[:4]] == [FlowZone.INSUFFICIENT_SIGNAL] * 4
        assert all(g.recommended_delta == 0 for g in results[:4])
        assert results[4].zone == FlowZone.BOREDOM
        assert results[4].recommended_delta == 1

    def test_boredom_persists_on_later_evaluations(self, guide, session):
        results = _feed(guide, [(1, FAST)] * 8)

        assert all(g.zone == FlowZone.BOREDOM and g.recommended_delta == 1 for g in results[4:])

    def test_anxiety(self, guide, session):
        results = _feed(guide, [(0, SLOW)] * 5)

        assert results[-1].zone == FlowZone.ANXIETY
        assert results[-1].recommended_delta == -1

    def test_balanced_window_is_flow(self, guide, session):
        results = _feed(guide, [(1, FAST), (0, FAST), (1, FAST), (0, FAST), (1, FAST)] * 2)

        assert results[-1].zone == FlowZone.FLOW
        assert results[-1].recommended_delta == 0

    def test_accurate_but_slow_is_flow(self, guide, session):
        results = _feed(guide, [(1, SLOW)] * 5)

        assert results[-1].zone == FlowZone.FLOW

    def test_missing_response_times_count_as_baseline_pace(self, guide, session):
        results = _feed(guide, [(1, None)] * 5)

        assert results[-1].zone == FlowZone.FLOW
        assert results[-1].pace_ratio == pytest.approx(1.0)

    def test_profile_baseline_sets_pace_reference(self, guide, now):
        profile = LearnerProfile(
            learner_id="learner-1",
            stage=LearnerStage.BASIC,
            baseline_accuracy=0.8,
            baseline_response_ms=2000.0,
        )
        guide.start_session("learner-1", "session-1", profile, now)

        results = _feed(guide, [(1, FAST)] * 5)

        assert results[-1].pace_ratio == pytest.approx(1.5)
        assert results[-1].zone == FlowZone.FLOW


class TestHysteresis:
    def test_single_outlier_does_not_flip_zone(self, guide, session):
        _feed(guide, [(1, FAST)] * 6)

        outlier = guide.observe("session-1", FlowOutcome(0, SLOW))

        assert outlier.zone == FlowZone.BOREDOM
        assert outlier.recommended_delta == 1

    def test_outlier_stays_ignored_while_in_window(self, guide, session):
        _feed(guide, [(1, FAST)] * 8)

        results = _feed(guide, [(0, SLOW)] + [(1, FAST)] * 4)

        assert [g.zone for g in results] == [FlowZone.BOREDOM] * 5

    def test_zone_changes_after_two_outliers_agree(self, guide, session):
        _feed(guide, [(1, FAST)] * 6)
        first, second = _feed(guide, [(0, SLOW), (0, SLOW)])

        third = guide.observe("session-1", FlowOutcome(1, FAST))

        assert first.zone == FlowZone.BOREDOM
        assert second.zone == FlowZone.BOREDOM
        assert third.zone == FlowZone.FLOW
        assert third.recommended_delta == 0

    def test_single_evaluation_config_reacts_to_two_outliers(self, now):
        guide = FlowStateGuide(FlowConfig(hysteresis_evaluations=1))
        guide.start_session("learner-1", "session-1", now=now)
        _feed(guide, [(1, FAST)] * 5)

        first, second = _feed(guide, [(0, SLOW), (0, SLOW)])

        assert first.zone == FlowZone.BOREDOM
        assert second.zone == FlowZone.FLOW

    def test_trimmed_signal_drops_most_deviant_outcome(self, guide, session):
        _feed(guide, [(1, FAST)] * 4 + [(0, SLOW)])

        accuracy, pace = session.trimmed_signal()

        assert accuracy == pytest.approx(1.0)
        assert pace == pytest.approx(FAST / 10000)
        assert session.window_accuracy == pytest.approx(0.8)

    def test_short_window_is_not_trimmed(self, guide, session):
        _feed(guide, [(1, FAST), (0, SLOW)])

        assert session.trimmed_signal() == pytest.approx((0.5, (FAST + SLOW) / 2 / 10000))


class TestGuidanceFields:
    @pytest.mark.parametrize(
        "accuracy,expected",
        [
            (0.95, FlowStatus.EXCELLENT),
            (0.9, FlowStatus.EXCELLENT),
            (0.8, FlowStatus.GOOD),
            (0.6, FlowStatus.MODERATE),
            (0.4, FlowStatus.LOW),
            (0.1, FlowStatus.POOR),
        ],
    )
    def test_status_labels(self, accuracy, expected):
        assert classify_status(accuracy) == expected

    @pytest.mark.parametrize(
        "current,delta,expected",
        [
            ("intermediate", 1, "advanced"),
            ("expert", 1, "expert"),
            ("basic", -1, "basic"),
            ("Advanced", -1, "intermediate"),
            ("advanced", 0, "advanced"),
        ],
    )
    def test_difficulty_ladder(self, current, delta, expected):
        assert shift_difficulty(current, delta) == expected

    def test_unknown_difficulty_rejected_before_window_changes(self, guide, session):
        with pytest.raises(ValidationError):
            guide.observe("session-1", FlowOutcome(1, FAST), current_difficulty="legendary")

        assert len(session.window) == 0

    def test_suggested_difficulty_follows_delta(self, guide, session):
        results = _feed(guide, [(1, FAST)] * 5, current_difficulty="intermediate", time_elapsed_minutes=10)

        assert results[-1].suggested_difficulty == "advanced"
        assert results[-1].status == FlowStatus.EXCELLENT
        assert results[-1].continue_recommendation is True

    def test_fatigue_recommends_break(self, guide, session):
        guidance = guide.observe("session-1", FlowOutcome(1, FAST), time_elapsed_minutes=50)

        assert guidance.fatigue is True
        assert guidance.continue_recommendation is False
        assert "break" in guidance.recommended_action

    def test_poor_accuracy_stops_session(self, guide, session):
        results = _feed(guide, [(0, SLOW)] * 5, time_elapsed_minutes=5)

        assert results[-1].status == FlowStatus.POOR
        assert results[-1].continue_recommendation is False

    def test_to_dict(self, guide, session):
        data = guide.observe("session-1", FlowOutcome(1, FAST), time_elapsed_minutes=1).to_dict()

        assert data["zone"] == "insufficient_signal"
        assert data["status"] == "EXCELLENT"
        assert data["evaluations"] == 1


class TestDegradation:
    def test_evaluation_error_holds(self, guide, session, monkeypatch):
        def broken(accuracy, pace_ratio):
            raise ZeroDivisionError("bad baseline")

        monkeypatch.setattr(guide, "classify", broken)

        guidance = guide.observe("session-1", FlowOutcome(1, FAST), time_elapsed_minutes=1)

        assert guidance.zone == FlowZone.INSUFFICIENT_SIGNAL
        assert guidance.recommended_delta == 0
        assert guidance.degraded is True


class TestSessionLifecycle:
    def test_end_session_drops_state(self, guide, session):
        assert guide.end_session("session-1") is True
        assert guide.end_session("session-1") is False

        with pytest.raises(NotFoundError):
            guide.observe("session-1", FlowOutcome(1, FAST))

    def test_sessions_are_isolated(self, guide, now):
        guide.start_session("learner-1", "a", now=now)
        guide.start_session("learner-2", "b", now=now)

        for _ in range(5):
            guide.observe("a", FlowOutcome(1, FAST), time_elapsed_minutes=1)

        assert guide.get_session("b").evaluations == 0
        assert len(guide) == 2

    def test_session_owned_by_one_learner(self, guide, session, now):
        with pytest.raises(ValidationError):
            guide.get_or_start_session("learner-2", "session-1", now=now)

    def test_get_or_start_reuses_session(self, guide, session, now):
        assert guide.get_or_start_session("learner-1", "session-1", now=now) is session

    def test_elapsed_time_from_start(self, guide, session, now):
        guidance = guide.observe("session-1", FlowOutcome(1, FAST), now=now + timedelta(minutes=46))

        assert guidance.fatigue is True

    def test_rejects_invalid_outcome(self):
        with pytest.raises(ValidationError):
            FlowOutcome(1.2, FAST)
        with pytest.raises(ValidationError):
            FlowOutcome(1, -5)

    @pytest.mark.parametrize("response_ms", [float("nan"), float("inf"), "fast", True])
    def test_rejects_non_finite_or_non_numeric_response_time(self, response_ms):
        with pytest.raises(ValidationError):
            FlowOutcome(1, response_ms)
