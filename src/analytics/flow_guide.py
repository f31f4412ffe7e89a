"""
Flow-State Guide.

Session-scoped state machine that watches a sliding window of in-session
outcomes and recommends difficulty changes:
- BOREDOM: high accuracy at a faster-than-baseline pace -> harder (+1)
- ANXIETY: low accuracy at a slower-than-baseline pace -> easier (-1)
- FLOW: everything in between -> hold (0)
- INSUFFICIENT_SIGNAL: window not yet full -> hold (0)

Each window is classified with its single most deviant outcome dropped
(once it holds 3 or more), so one outlier cannot move the window's signal
for as long as it stays in the window.

Hysteresis: the classification of the current window must agree for a
number of consecutive evaluations before the reported zone changes.

Guidance is advisory. Evaluation errors degrade to INSUFFICIENT_SIGNAL/hold.
"""

from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from loguru import logger

from config import Settings, get_settings
from src.core.errors import NotFoundError, ValidationError
from src.core.models import FlowZone, LearnerProfile, ensure_utc, normalize_correctness

DIFFICULTY_LEVELS = ["basic", "intermediate", "advanced", "expert"]


# =============================================================================
# Status Labels
# =============================================================================


class FlowStatus(str, Enum):
    """Coarse accuracy label shown alongside the zone."""

    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    MODERATE = "MODERATE"
    LOW = "LOW"
    POOR = "POOR"


_STATUS_ADVICE: dict[FlowStatus, tuple[str, str]] = {
    FlowStatus.EXCELLENT: ("Consider increasing difficulty", "Try harder questions for optimal challenge"),
    FlowStatus.GOOD: ("Continue with current pace", "Maintain current difficulty level"),
    FlowStatus.MODERATE: ("Continue with current pace", "Maintain current difficulty level"),
    FlowStatus.LOW: ("Consider easier content", "Focus on foundational concepts"),
    FlowStatus.POOR: ("Take a break or switch to easier content", "Review basic concepts before continuing"),
}


def classify_status(accuracy: float) -> FlowStatus:
    """Map accuracy (0-1) to a status label."""
    if accuracy >= 0.9:
        return FlowStatus.EXCELLENT
    elif accuracy >= 0.75:
        return FlowStatus.GOOD
    elif accuracy >= 0.6:
        return FlowStatus.MODERATE
    elif accuracy >= 0.4:
        return FlowStatus.LOW
    return FlowStatus.POOR


def shift_difficulty(current: str, delta: int) -> str:
    """Move along the difficulty ladder, clamped at both ends."""
    try:
        index = DIFFICULTY_LEVELS.index(current.lower())
    except ValueError as e:
        raise ValidationError(
            f"Unknown difficulty {current!r}, expected one of {', '.join(DIFFICULTY_LEVELS)}"
        ) from e
    index = min(len(DIFFICULTY_LEVELS) - 1, max(0, index + delta))
    return DIFFICULTY_LEVELS[index]


# =============================================================================
# Configuration & Session State
# =============================================================================


@dataclass
class FlowConfig:
    """Configuration for flow-zone detection."""

    window_size: int = 5
    hysteresis_evaluations: int = 2
    high_accuracy: float = 0.85
    low_accuracy: float = 0.5
    default_baseline_ms: int = 10000
    default_baseline_accuracy: float = 0.7
    max_session_minutes: int = 45  # Recommend break after this

    def __post_init__(self) -> None:
        if self.window_size < 1:
            raise ValidationError("window_size must be >= 1")
        if self.hysteresis_evaluations < 1:
            raise ValidationError("hysteresis_evaluations must be >= 1")
        if not 0.0 <= self.low_accuracy < self.high_accuracy <= 1.0:
            raise ValidationError("accuracy band must satisfy 0 <= low < high <= 1")
        if self.default_baseline_ms <= 0:
            raise ValidationError("default_baseline_ms must be positive")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> FlowConfig:
        settings = settings or get_settings()
        return cls(
            window_size=settings.flow_window_size,
            hysteresis_evaluations=settings.flow_hysteresis_evaluations,
            high_accuracy=settings.flow_high_accuracy,
            low_accuracy=settings.flow_low_accuracy,
            default_baseline_ms=settings.flow_default_baseline_ms,
            default_baseline_accuracy=settings.flow_default_baseline_accuracy,
            max_session_minutes=settings.flow_max_session_minutes,
        )


@dataclass(frozen=True)
class FlowOutcome:
    """One in-session attempt. A missing response time counts as baseline pace."""

    correctness: float
    response_time_ms: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "correctness", normalize_correctness(self.correctness))
        if self.response_time_ms is None:
            return
        if isinstance(self.response_time_ms, bool) or not isinstance(self.response_time_ms, (int, float)):
            raise ValidationError("response_time_ms must be a number")
        if not math.isfinite(self.response_time_ms) or self.response_time_ms < 0:
            raise ValidationError(f"response_time_ms must be finite and >= 0, got {self.response_time_ms}")


def _accuracy(outcomes) -> float:
    if not outcomes:
        return 0.0
    return sum(o.correctness for o in outcomes) / len(outcomes)


def _pace_ratio(outcomes, baseline_ms: float) -> float:
    timed = [o.response_time_ms for o in outcomes if o.response_time_ms is not None]
    if not timed:
        return 1.0
    return (sum(timed) / len(timed)) / baseline_ms


@dataclass
class FlowSession:
    """Live state of one learning session. Never persisted, never shared."""

    learner_id: str
    session_id: str
    baseline_response_ms: float
    baseline_accuracy: float
    window_size: int = 5
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    window: deque[FlowOutcome] = field(init=False)
    zone: FlowZone = FlowZone.INSUFFICIENT_SIGNAL
    last_delta: int = 0
    candidate_zone: FlowZone | None = None
    hysteresis_count: int = 0
    evaluations: int = 0

    def __post_init__(self) -> None:
        self.window = deque(maxlen=self.window_size)

    @property
    def is_window_full(self) -> bool:
        return len(self.window) >= self.window_size

    @property
    def window_accuracy(self) -> float:
        return _accuracy(self.window)

    @property
    def pace_ratio(self) -> float:
        """Mean windowed response time relative to baseline (< 1 is faster)."""
        return _pace_ratio(self.window, self.baseline_response_ms)

    def trimmed_signal(self) -> tuple[float, float]:
        """
        Accuracy and pace ratio of the window without its most deviant outcome.

        Deviation is the outcome's distance from the window mean in accuracy
        plus its distance in pace ratio. Windows of fewer than 3 outcomes are
        used as they are.
        """
        outcomes = list(self.window)
        if len(outcomes) >= 3:
            accuracy = _accuracy(outcomes)
            pace = _pace_ratio(outcomes, self.baseline_response_ms)

            def deviation(outcome: FlowOutcome) -> float:
                if outcome.response_time_ms is None:
                    ratio = pace
                else:
                    ratio = outcome.response_time_ms / self.baseline_response_ms
                return abs(outcome.correctness - accuracy) + abs(ratio - pace)

            outcomes.remove(max(outcomes, key=deviation))
        return _accuracy(outcomes), _pace_ratio(outcomes, self.baseline_response_ms)

    def elapsed_minutes(self, now: datetime) -> float:
        return max(0.0, (ensure_utc(now) - self.started_at).total_seconds() / 60.0)


@dataclass
class FlowGuidance:
    """Result of one evaluation."""

    session_id: str
    zone: FlowZone
    recommended_delta: int
    window_accuracy: float
    pace_ratio: float
    evaluations: int
    status: FlowStatus
    recommended_action: str
    adjustment_suggestion: str
    continue_recommendation: bool
    suggested_difficulty: str | None = None
    fatigue: bool = False
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "zone": self.zone.value,
            "recommended_delta": self.recommended_delta,
            "window_accuracy": round(self.window_accuracy, 4),
            "pace_ratio": round(self.pace_ratio, 4),
            "evaluations": self.evaluations,
            "status": self.status.value,
            "recommended_action": self.recommended_action,
            "adjustment_suggestion": self.adjustment_suggestion,
            "continue_recommendation": self.continue_recommendation,
            "suggested_difficulty": self.suggested_difficulty,
            "fatigue": self.fatigue,
            "degraded": self.degraded,
        }


# =============================================================================
# Guide
# =============================================================================


class FlowStateGuide:
    """
    Registry and evaluator of live FlowSessions.

    The registry lock guards only insert/remove/lookup; each session is
    driven by the request that owns it.
    """

    def __init__(self, config: FlowConfig | None = None):
        """
        Initialize the guide.

        Args:
            config: Custom thresholds (uses defaults if None)
        """
        self.config = config if config is not None else FlowConfig()
        self._sessions: dict[str, FlowSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # =========================================================================
    # Session Lifecycle
    # =========================================================================

    def _new_session(
        self,
        learner_id: str,
        session_id: str,
        profile: LearnerProfile | None,
        now: datetime | None,
    ) -> FlowSession:
        cfg = self.config
        has_baseline = profile is not None and profile.has_baseline and profile.baseline_response_ms > 0
        return FlowSession(
            learner_id=learner_id,
            session_id=session_id,
            baseline_response_ms=float(profile.baseline_response_ms if has_baseline else cfg.default_baseline_ms),
            baseline_accuracy=profile.baseline_accuracy if has_baseline else cfg.default_baseline_accuracy,
            window_size=cfg.window_size,
            started_at=ensure_utc(now) if now else datetime.now(UTC),
        )

    def start_session(
        self,
        learner_id: str,
        session_id: str,
        profile: LearnerProfile | None = None,
        now: datetime | None = None,
    ) -> FlowSession:
        """
        Start tracking a session, replacing any session with the same id.

        Args:
            learner_id: Owner of the session
            session_id: Session identifier
            profile: Learner profile supplying baseline pace and accuracy
            now: Session start time

        Returns:
            The new FlowSession
        """
        if not learner_id or not session_id:
            raise ValidationError("learner_id and session_id are required")
        session = self._new_session(learner_id, session_id, profile, now)
        with self._lock:
            self._sessions[session_id] = session
        logger.debug(f"Started flow session {session_id} for {learner_id}")
        return session

    def get_or_start_session(
        self,
        learner_id: str,
        session_id: str,
        profile: LearnerProfile | None = None,
        now: datetime | None = None,
    ) -> FlowSession:
        """Return the live session, starting it on first use."""
        if not learner_id or not session_id:
            raise ValidationError("learner_id and session_id are required")
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = self._new_session(learner_id, session_id, profile, now)
                self._sessions[session_id] = session
                logger.debug(f"Started flow session {session_id} for {learner_id}")
        if session.learner_id != learner_id:
            raise ValidationError(f"Session {session_id} belongs to another learner")
        return session

    def get_session(self, session_id: str) -> FlowSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def end_session(self, session_id: str) -> bool:
        """Drop a session. Returns False if it was not active."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.debug(f"Ended flow session {session_id} after {session.evaluations} evaluations")
        return True

    # =========================================================================
    # Evaluation
    # =========================================================================

    def classify(self, accuracy: float, pace_ratio: float) -> FlowZone:
        """Zone of a window from its accuracy and relative pace."""
        if accuracy >= self.config.high_accuracy and pace_ratio < 1.0:
            return FlowZone.BOREDOM
        if accuracy <= self.config.low_accuracy and pace_ratio > 1.0:
            return FlowZone.ANXIETY
        return FlowZone.FLOW

    def evaluate(self, session: FlowSession) -> FlowZone:
        """Advance the session's hysteresis state and return the reported zone."""
        provisional = self.classify(*session.trimmed_signal())
        if provisional == session.candidate_zone:
            session.hysteresis_count += 1
        else:
            session.candidate_zone = provisional
            session.hysteresis_count = 1

        if session.is_window_full and session.hysteresis_count >= self.config.hysteresis_evaluations:
            if session.zone != provisional:
                logger.debug(f"Session {session.session_id}: {session.zone.value} -> {provisional.value}")
            session.zone = provisional
        return session.zone

    def observe(
        self,
        session_id: str,
        outcome: FlowOutcome,
        *,
        current_difficulty: str | None = None,
        time_elapsed_minutes: float | None = None,
        now: datetime | None = None,
    ) -> FlowGuidance:
        """
        Feed one outcome into a session and get guidance.

        Args:
            session_id: Active session
            outcome: The in-session attempt
            current_difficulty: Difficulty level to shift by the recommendation
            time_elapsed_minutes: Session length (derived from start time if None)
            now: Evaluation time, used when time_elapsed_minutes is None

        Returns:
            FlowGuidance for the updated window

        Raises:
            NotFoundError: If the session is not active
        """
        session = self.get_session(session_id)
        if session is None:
            raise NotFoundError(f"No active flow session {session_id}")
        if current_difficulty:
            shift_difficulty(current_difficulty, 0)

        session.window.append(outcome)
        session.evaluations += 1

        degraded = False
        try:
            zone = self.evaluate(session)
            pace_ratio = session.pace_ratio
        except (ArithmeticError, ValueError) as exc:
            logger.warning(f"Flow evaluation failed for session {session_id}, holding: {exc}")
            zone = FlowZone.INSUFFICIENT_SIGNAL
            pace_ratio = 1.0
            degraded = True

        delta = zone.recommended_delta
        session.last_delta = delta
        accuracy = session.window_accuracy

        if time_elapsed_minutes is None:
            time_elapsed_minutes = session.elapsed_minutes(now or datetime.now(UTC))
        fatigue = time_elapsed_minutes >= self.config.max_session_minutes

        return self._guidance(
            session,
            zone=zone,
            delta=delta,
            accuracy=accuracy,
            pace_ratio=pace_ratio,
            fatigue=fatigue,
            time_elapsed_minutes=time_elapsed_minutes,
            current_difficulty=current_difficulty,
            degraded=degraded,
        )

    def _guidance(
        self,
        session: FlowSession,
        *,
        zone: FlowZone,
        delta: int,
        accuracy: float,
        pace_ratio: float,
        fatigue: bool,
        time_elapsed_minutes: float,
        current_difficulty: str | None,
        degraded: bool,
    ) -> FlowGuidance:
        status = classify_status(accuracy)
        action, suggestion = _STATUS_ADVICE[status]

        if delta > 0:
            suggestion = _STATUS_ADVICE[FlowStatus.EXCELLENT][1]
        elif delta < 0:
            suggestion = _STATUS_ADVICE[FlowStatus.LOW][1]

        if fatigue:
            action = (
                f"You've been studying for {time_elapsed_minutes:.0f} minutes. "
                "Consider taking a 5-10 minute break."
            )

        suggested = shift_difficulty(current_difficulty, delta) if current_difficulty else None

        return FlowGuidance(
            session_id=session.session_id,
            zone=zone,
            recommended_delta=delta,
            window_accuracy=accuracy,
            pace_ratio=pace_ratio,
            evaluations=session.evaluations,
            status=status,
            recommended_action=action,
            adjustment_suggestion=suggestion,
            continue_recommendation=status != FlowStatus.POOR and not fatigue,
            suggested_difficulty=suggested,
            fatigue=fatigue,
            degraded=degraded,
        )
