"""
Configuration settings for the learning analytics core.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///learning_analytics.db",
        description="SQLAlchemy connection string",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # API Server
    # ========================================
    api_host: str = Field(
        default="127.0.0.1",
        description="API server host",
    )
    api_port: int = Field(
        default=8100,
        description="API server port",
    )

    # ========================================
    # Spaced Repetition Scheduler
    # ========================================
    sr_default_ease: float = Field(
        default=2.5,
        description="Ease factor for new items when the learner has no usable profile",
    )
    sr_ease_floor: float = Field(
        default=1.3,
        description="Lowest ease factor an item can reach",
    )
    sr_ease_ceiling: float = Field(
        default=3.0,
        description="Highest ease factor an item can reach",
    )
    sr_minimum_interval_days: float = Field(
        default=1.0,
        description="Interval after a first attempt or a lapse (days)",
    )
    sr_maximum_interval_days: float = Field(
        default=365.0,
        description="Ceiling for interval growth (days)",
    )
    sr_pass_score: float = Field(
        default=0.6,
        description="Correctness score at or above which an attempt counts as a pass",
    )
    sr_expected_response_ms: int = Field(
        default=10000,
        description="Reference response time when no history exists",
    )

    # ========================================
    # Forgetting Curve
    # ========================================
    fc_initial_stability_days: float = Field(
        default=1.0,
        description="Stability assigned after the first attempt (days)",
    )
    fc_minimum_stability_days: float = Field(
        default=0.1,
        description="Floor for the stability parameter (days)",
    )
    fc_ema_alpha: float = Field(
        default=0.6,
        description="Weight of the most recent success in the stability average",
    )
    fc_consolidation_factor: float = Field(
        default=1.5,
        description="Stability gained relative to the gap of a successful recall",
    )
    fc_lapse_penalty: float = Field(
        default=0.4,
        description="Multiplier applied to stability on a lapse",
    )
    fc_risk_threshold: float = Field(
        default=0.35,
        description="Retention below which an item is surfaced before its due date",
    )

    # ========================================
    # Personal Pattern Analyzer
    # ========================================
    pa_analysis_window_days: int | None = Field(
        default=180,
        description="Only records newer than this feed the profile (None for all)",
    )
    pa_trim_fraction: float = Field(
        default=0.1,
        description="Fraction trimmed from each end of session accuracies",
    )
    pa_topic_window: int = Field(
        default=20,
        description="Number of most recent records per topic for rolling accuracy",
    )
    pa_strength_threshold: float = Field(
        default=0.75,
        description="Topic score at or above which a topic is a strength",
    )
    pa_weakness_threshold: float = Field(
        default=0.5,
        description="Topic score at or below which a topic is a weakness",
    )
    pa_min_sessions: int = Field(
        default=3,
        description="Sessions needed to leave the insufficient-data stage",
    )
    pa_min_days: int = Field(
        default=2,
        description="Active days needed to leave the insufficient-data stage",
    )
    pa_mature_sessions: int = Field(
        default=20,
        description="Sessions needed for the mature stage",
    )
    pa_mature_days: int = Field(
        default=14,
        description="Active days needed for the mature stage",
    )
    pa_load_window_days: int = Field(
        default=7,
        description="Days of recent sessions used for cognitive-load estimates",
    )
    pa_load_sessions: int = Field(
        default=10,
        description="Most recent sessions used for cognitive-load estimates",
    )

    # ========================================
    # Flow-State Guide
    # ========================================
    flow_window_size: int = Field(
        default=5,
        description="Number of in-session outcomes per evaluation window",
    )
    flow_hysteresis_evaluations: int = Field(
        default=2,
        description="Consecutive agreeing evaluations before the zone changes",
    )
    flow_high_accuracy: float = Field(
        default=0.85,
        description="Windowed accuracy at or above which fast learners are bored",
    )
    flow_low_accuracy: float = Field(
        default=0.5,
        description="Windowed accuracy at or below which slow learners are anxious",
    )
    flow_default_baseline_ms: int = Field(
        default=10000,
        description="Baseline pace used when the learner has no profile",
    )
    flow_default_baseline_accuracy: float = Field(
        default=0.7,
        description="Baseline accuracy used when the learner has no profile",
    )
    flow_max_session_minutes: int = Field(
        default=45,
        description="Session length after which a break is recommended",
    )

    # ========================================
    # Concurrency & Persistence
    # ========================================
    max_conflict_retries: int = Field(
        default=3,
        description="Internal retries on optimistic-concurrency conflicts",
    )
    persistence_timeout_seconds: float = Field(
        default=5.0,
        description="Default timeout for a single repository call",
    )
    lock_timeout_seconds: float = Field(
        default=5.0,
        description="Maximum wait for a per-item lock",
    )
    persistence_workers: int = Field(
        default=8,
        description="Worker threads executing bounded repository calls",
    )
    profile_refresh_interval_seconds: int = Field(
        default=0,
        description="Periodic background profile refresh (0 to disable)",
    )

    # ========================================
    # Helper Methods
    # ========================================
    def get_scheduler_config(self) -> dict[str, float | int]:
        """Get spaced repetition parameters as a dictionary."""
        return {
            "default_ease": self.sr_default_ease,
            "ease_floor": self.sr_ease_floor,
            "ease_ceiling": self.sr_ease_ceiling,
            "minimum_interval_days": self.sr_minimum_interval_days,
            "maximum_interval_days": self.sr_maximum_interval_days,
            "pass_score": self.sr_pass_score,
            "expected_response_ms": self.sr_expected_response_ms,
        }

    def get_forgetting_config(self) -> dict[str, float]:
        """Get forgetting curve parameters as a dictionary."""
        return {
            "initial_stability_days": self.fc_initial_stability_days,
            "minimum_stability_days": self.fc_minimum_stability_days,
            "ema_alpha": self.fc_ema_alpha,
            "consolidation_factor": self.fc_consolidation_factor,
            "lapse_penalty": self.fc_lapse_penalty,
            "risk_threshold": self.fc_risk_threshold,
        }

    def is_sqlite(self) -> bool:
        """Check whether the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
