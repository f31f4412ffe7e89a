"""
Forgetting-Curve Estimator.

Exponential forgetting model:

    retention(t) = exp(-t / S)

where t is the time since the last review and S is the stability parameter
(both in days). Larger S means slower decay.

S is re-estimated from an item's review history:
- the first attempt seeds S with the initial stability
- every later success feeds an exponential moving average with a sample of
  gap * consolidation_factor, so recent successes dominate
- every lapse multiplies S by a penalty (< 1), independent of the ease factor

All functions are pure given an item snapshot, its history and the time.
"""

from __future__ import annotations

import math
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from config import Settings, get_settings
from src.core.errors import ValidationError
from src.core.models import PerformanceRecord, ReviewItemState, days_between


@dataclass
class ForgettingCurveConfig:
    """Configuration for the forgetting-curve estimator."""

    initial_stability_days: float = 1.0
    minimum_stability_days: float = 0.1
    ema_alpha: float = 0.6  # Weight of the newest success
    consolidation_factor: float = 1.5
    lapse_penalty: float = 0.4
    pass_score: float = 0.6
    risk_threshold: float = 0.35

    def __post_init__(self) -> None:
        if not 0.0 < self.ema_alpha <= 1.0:
            raise ValidationError("ema_alpha must be in (0, 1]")
        if not 0.0 < self.lapse_penalty < 1.0:
            raise ValidationError("lapse_penalty must be in (0, 1)")
        if self.minimum_stability_days <= 0 or self.initial_stability_days <= 0:
            raise ValidationError("stability parameters must be positive")
        if not 0.0 < self.risk_threshold < 1.0:
            raise ValidationError("risk_threshold must be in (0, 1)")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ForgettingCurveConfig:
        settings = settings or get_settings()
        return cls(
            initial_stability_days=settings.fc_initial_stability_days,
            minimum_stability_days=settings.fc_minimum_stability_days,
            ema_alpha=settings.fc_ema_alpha,
            consolidation_factor=settings.fc_consolidation_factor,
            lapse_penalty=settings.fc_lapse_penalty,
            pass_score=settings.sr_pass_score,
            risk_threshold=settings.fc_risk_threshold,
        )


def retention_at(elapsed_days: float, stability_days: float) -> float:
    """
    Retention probability after elapsed_days for a given stability.

    Always in (0, 1]: 1 at t = 0, non-increasing in t, never exactly 0.
    """
    if stability_days <= 0:
        raise ValidationError(f"Stability must be positive, got {stability_days}")
    t = max(0.0, elapsed_days)
    return max(math.exp(-t / stability_days), sys.float_info.min)


class ForgettingCurveEstimator:
    """
    Converts review history into a stability parameter and a retention curve.
    """

    def __init__(self, config: ForgettingCurveConfig | None = None):
        """
        Initialize the estimator.

        Args:
            config: Custom configuration (uses defaults if None)
        """
        self.config = config if config is not None else ForgettingCurveConfig()

    def retention_probability(self, item_state: ReviewItemState, now: datetime) -> float:
        """
        Modeled probability that the learner still recalls the item at `now`.

        Args:
            item_state: Snapshot of the item's scheduling state
            now: Evaluation time

        Returns:
            Float in (0, 1]
        """
        return retention_at(item_state.days_since_review(now), item_state.stability_days)

    def risk_score(self, item_state: ReviewItemState, now: datetime) -> float:
        """Probability of having forgotten the item (1 - retention)."""
        return 1.0 - self.retention_probability(item_state, now)

    def is_at_risk(self, item_state: ReviewItemState, now: datetime) -> bool:
        return self.retention_probability(item_state, now) < self.config.risk_threshold

    def estimate_stability(
        self,
        item_state: ReviewItemState,
        history: Iterable[PerformanceRecord],
    ) -> float:
        """
        Re-estimate the stability parameter from the item's review history.

        Args:
            item_state: Current snapshot (its stability is returned when history is empty)
            history: Records for this (learner, content) pair, any order

        Returns:
            Stability in days, at least the configured minimum
        """
        records = sorted(history, key=lambda r: r.timestamp)
        if not records:
            return max(item_state.stability_days, self.config.minimum_stability_days)

        cfg = self.config
        stability = cfg.initial_stability_days
        previous = records[0]

        for record in records[1:]:
            gap = max(0.0, days_between(previous.timestamp, record.timestamp))
            if record.correctness >= cfg.pass_score:
                sample = max(gap * cfg.consolidation_factor, cfg.minimum_stability_days)
                stability = cfg.ema_alpha * sample + (1.0 - cfg.ema_alpha) * stability
            else:
                stability *= cfg.lapse_penalty
            stability = max(stability, cfg.minimum_stability_days)
            previous = record

        return stability

    def decay_rate(self, item_state: ReviewItemState) -> float:
        """Per-day forgetting rate (1 / S)."""
        return 1.0 / item_state.stability_days
