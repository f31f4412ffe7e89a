"""
Personal Pattern Analyzer.

Folds a learner's performance log into a LearnerProfile:
1. Baselines - trimmed mean of session accuracy, median response time
2. Topic strengths - rolling accuracy over the most recent records per topic
3. Stage - insufficient data / basic / mature from sessions and active days
4. Time patterns - best hours of day and accuracy per weekday
5. Cognitive load - typical session length, load level and tolerance, and
   the session minute at which accuracy starts to fall off
6. Study streak - consecutive active days up to the build time

Profiles are written with compare-and-swap on their version, so a rebuild
never overwrites a newer one; the losing writer discards its result.
"""

from __future__ import annotations

import statistics
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from loguru import logger

from config import Settings, get_settings
from src.core.errors import ConflictError, ValidationError
from src.core.models import LearnerProfile, LearnerStage, PerformanceRecord, ensure_utc
from src.db.repository import Repository


@dataclass
class AnalyzerConfig:
    """Configuration for profile rebuilds."""

    window_days: int | None = 180
    trim_fraction: float = 0.1
    topic_window: int = 20
    strength_threshold: float = 0.75
    weakness_threshold: float = 0.5
    min_sessions: int = 3
    min_days: int = 2
    mature_sessions: int = 20
    mature_days: int = 14
    max_conflict_retries: int = 3
    top_hours: int = 4
    min_sessions_per_hour: int = 2
    default_optimal_hours: list[int] = field(default_factory=lambda: [9, 10, 14, 15])

    # Cognitive load (0-10 scale)
    load_window_days: int = 7
    load_sessions: int = 10
    default_session_minutes: int = 25
    default_load_level: float = 5.0
    default_load_tolerance: float = 6.0
    load_tolerance_margin: float = 1.5

    # Fatigue: accuracy drop within sessions, by elapsed-time bucket
    fatigue_bucket_minutes: int = 15
    fatigue_accuracy_drop: float = 0.15  # Relative to the first bucket
    fatigue_min_samples: int = 10
    default_fatigue_minutes: float = 60.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.trim_fraction < 0.5:
            raise ValidationError("trim_fraction must be in [0, 0.5)")
        if self.mature_sessions < self.min_sessions or self.mature_days < self.min_days:
            raise ValidationError("mature floors must not be below the minimum floors")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> AnalyzerConfig:
        settings = settings or get_settings()
        return cls(
            window_days=settings.pa_analysis_window_days,
            trim_fraction=settings.pa_trim_fraction,
            topic_window=settings.pa_topic_window,
            strength_threshold=settings.pa_strength_threshold,
            weakness_threshold=settings.pa_weakness_threshold,
            min_sessions=settings.pa_min_sessions,
            min_days=settings.pa_min_days,
            mature_sessions=settings.pa_mature_sessions,
            mature_days=settings.pa_mature_days,
            load_window_days=settings.pa_load_window_days,
            load_sessions=settings.pa_load_sessions,
            max_conflict_retries=settings.max_conflict_retries,
        )


def trimmed_mean(values: Sequence[float], fraction: float) -> float:
    """Mean after dropping `fraction` of the values from each end."""
    if not values:
        raise ValidationError("trimmed_mean of an empty sequence")
    ordered = sorted(values)
    cut = int(len(ordered) * fraction)
    kept = ordered[cut : len(ordered) - cut] or ordered
    return sum(kept) / len(kept)


def classify_stage(session_count: int, days_active: int, config: AnalyzerConfig) -> LearnerStage:
    """Stage from (sessions, active days) floors."""
    if session_count < config.min_sessions or days_active < config.min_days:
        return LearnerStage.INSUFFICIENT_DATA
    if session_count >= config.mature_sessions and days_active >= config.mature_days:
        return LearnerStage.MATURE
    return LearnerStage.BASIC


def session_load(records: Sequence[PerformanceRecord], baseline_response_ms: float | None) -> float:
    """
    Cognitive load of one session on a 0-10 scale.

    Half comes from the error rate, half from the median response time
    relative to the learner's baseline (twice the baseline or slower is full).
    """
    accuracy = sum(r.correctness for r in records) / len(records)
    median_ms = statistics.median(r.response_time_ms for r in records)
    ratio = median_ms / baseline_response_ms if baseline_response_ms else 1.0
    return 5.0 * (1.0 - accuracy) + 5.0 * min(1.0, ratio / 2.0)


def study_streak(active_days: set[date], now: datetime) -> int:
    """Consecutive active days ending today, or yesterday if nothing yet today."""
    day = now.date()
    if day not in active_days:
        day -= timedelta(days=1)
    streak = 0
    while day in active_days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def _session_key(record: PerformanceRecord) -> str:
    # Attempts without a session id are grouped per calendar day
    return record.session_id or f"day:{record.timestamp.date().isoformat()}"


class PersonalPatternAnalyzer:
    """
    Exclusive owner of LearnerProfile rebuilds.

    build_profile() is pure; rebuild_profile() reads the log and commits.
    """

    def __init__(self, repository: Repository, config: AnalyzerConfig | None = None):
        """
        Initialize the analyzer.

        Args:
            repository: Record and profile persistence
            config: Custom thresholds (uses defaults if None)
        """
        self.repository = repository
        self.config = config if config is not None else AnalyzerConfig()

    # =========================================================================
    # Aggregation
    # =========================================================================

    def build_profile(
        self,
        learner_id: str,
        records: Sequence[PerformanceRecord],
        now: datetime,
    ) -> LearnerProfile:
        """
        Aggregate records into an uncommitted profile (version 0).

        Args:
            learner_id: Learner the records belong to
            records: Performance records, any order
            now: Build time

        Returns:
            LearnerProfile with baselines, topic strengths, stage, time patterns,
            cognitive load and study streak
        """
        now = ensure_utc(now)
        cfg = self.config
        profile = LearnerProfile(
            learner_id=learner_id,
            built_at=now,
            record_count=len(records),
            optimal_session_minutes=cfg.default_session_minutes,
            current_load_level=cfg.default_load_level,
            load_tolerance=cfg.default_load_tolerance,
            fatigue_threshold_minutes=cfg.default_fatigue_minutes,
        )
        if not records:
            return profile

        ordered = sorted(records, key=lambda r: r.timestamp)

        sessions: dict[str, list[PerformanceRecord]] = defaultdict(list)
        for record in ordered:
            sessions[_session_key(record)].append(record)

        session_accuracies = [sum(r.correctness for r in rs) / len(rs) for rs in sessions.values()]
        profile.baseline_accuracy = trimmed_mean(session_accuracies, cfg.trim_fraction)
        profile.baseline_response_ms = float(statistics.median(r.response_time_ms for r in ordered))

        profile.session_count = len(sessions)
        profile.days_active = len({r.timestamp.date() for r in ordered})
        profile.stage = classify_stage(profile.session_count, profile.days_active, cfg)

        profile.topic_strengths = self._topic_strengths(ordered)
        profile.strengths = sorted(
            t for t, score in profile.topic_strengths.items() if score >= cfg.strength_threshold
        )
        profile.weaknesses = sorted(
            t for t, score in profile.topic_strengths.items() if score <= cfg.weakness_threshold
        )

        profile.optimal_hours = self._optimal_hours(sessions)
        profile.weekday_accuracy = self._weekday_accuracy(ordered)

        self._apply_cognitive_load(profile, sessions, now)
        profile.fatigue_threshold_minutes = self._fatigue_threshold(sessions)
        profile.study_streak_days = study_streak({r.timestamp.date() for r in ordered}, now)
        return profile

    def _apply_cognitive_load(
        self,
        profile: LearnerProfile,
        sessions: dict[str, list[PerformanceRecord]],
        now: datetime,
    ) -> None:
        """Load level, tolerance and session length from the most recent sessions."""
        cfg = self.config
        cutoff = now - timedelta(days=cfg.load_window_days)
        recent = sorted(
            (rs for rs in sessions.values() if rs[0].timestamp >= cutoff),
            key=lambda rs: rs[0].timestamp,
            reverse=True,
        )[: cfg.load_sessions]
        if not recent:
            return

        loads = [session_load(rs, profile.baseline_response_ms) for rs in recent]
        profile.current_load_level = sum(loads) / len(loads)
        profile.load_tolerance = min(10.0, profile.current_load_level + cfg.load_tolerance_margin)

        # Single-attempt sessions have no length
        durations = [
            (rs[-1].timestamp - rs[0].timestamp).total_seconds() / 60.0 for rs in recent if len(rs) > 1
        ]
        if durations:
            profile.optimal_session_minutes = max(1, round(sum(durations) / len(durations)))

    def _fatigue_threshold(self, sessions: dict[str, list[PerformanceRecord]]) -> float:
        """First elapsed-minute bucket whose accuracy falls off against the opening bucket."""
        cfg = self.config
        buckets: dict[int, list[float]] = defaultdict(list)
        for records in sessions.values():
            start = records[0].timestamp
            for record in records:
                elapsed = (record.timestamp - start).total_seconds() / 60.0
                buckets[int(elapsed // cfg.fatigue_bucket_minutes)].append(record.correctness)

        opening = buckets.get(0, [])
        if len(opening) < cfg.fatigue_min_samples:
            return cfg.default_fatigue_minutes
        initial = sum(opening) / len(opening)
        if initial == 0:
            return cfg.default_fatigue_minutes

        for index in sorted(b for b in buckets if b > 0):
            scores = buckets[index]
            if len(scores) < cfg.fatigue_min_samples:
                continue
            drop = (initial - sum(scores) / len(scores)) / initial
            if drop >= cfg.fatigue_accuracy_drop:
                return float(index * cfg.fatigue_bucket_minutes)
        return cfg.default_fatigue_minutes

    def _topic_strengths(self, ordered: list[PerformanceRecord]) -> dict[str, float]:
        by_topic: dict[str, list[float]] = defaultdict(list)
        for record in ordered:
            if record.topic:
                by_topic[record.topic].append(record.correctness)
        window = self.config.topic_window
        return {topic: sum(scores[-window:]) / len(scores[-window:]) for topic, scores in by_topic.items()}

    def _optimal_hours(self, sessions: dict[str, list[PerformanceRecord]]) -> list[int]:
        """Top hours of day by accuracy, among hours with enough sessions."""
        hourly: dict[int, dict[str, float]] = defaultdict(lambda: {"total": 0, "correct": 0.0, "count": 0})
        for records in sessions.values():
            hour = records[0].timestamp.hour
            stats = hourly[hour]
            stats["total"] += len(records)
            stats["correct"] += sum(r.correctness for r in records)
            stats["count"] += 1

        ranked = sorted(
            (
                (stats["correct"] / stats["total"], hour)
                for hour, stats in hourly.items()
                if stats["count"] >= self.config.min_sessions_per_hour
            ),
            key=lambda item: (-item[0], item[1]),
        )
        hours = [hour for _, hour in ranked[: self.config.top_hours]]
        return hours or list(self.config.default_optimal_hours)

    @staticmethod
    def _weekday_accuracy(ordered: list[PerformanceRecord]) -> dict[int, float]:
        by_day: dict[int, list[float]] = defaultdict(list)
        for record in ordered:
            by_day[record.timestamp.weekday()].append(record.correctness)
        return {day: sum(scores) / len(scores) for day, scores in sorted(by_day.items())}

    # =========================================================================
    # Rebuild
    # =========================================================================

    def rebuild_profile(self, learner_id: str, now: datetime) -> LearnerProfile:
        """
        Rebuild and commit the learner's profile.

        Safe to re-run; each commit bumps the version by one.

        Raises:
            ConflictError: If concurrent rebuilds kept winning past the retry budget
        """
        if not learner_id:
            raise ValidationError("learner_id is required")
        now = ensure_utc(now)
        since = now - timedelta(days=self.config.window_days) if self.config.window_days else None

        attempt = 0
        while True:
            attempt += 1
            current = self.repository.get_profile(learner_id)
            expected_version = current.version if current else 0
            records = self.repository.list_records(learner_id, since=since)
            profile = self.build_profile(learner_id, records, now)

            try:
                saved = self.repository.save_profile(profile, expected_version)
            except ConflictError:
                if attempt > self.config.max_conflict_retries:
                    logger.error(f"Profile rebuild for {learner_id} lost {attempt} times, giving up")
                    raise
                logger.warning(f"Profile rebuild for {learner_id} lost a version race, retrying")
                continue

            logger.info(
                f"Rebuilt profile for {learner_id}: v{saved.version}, stage={saved.stage.value}, "
                f"{saved.session_count} sessions over {saved.days_active} days"
            )
            return saved
