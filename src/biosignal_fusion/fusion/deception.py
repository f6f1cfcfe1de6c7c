"""Deception scoring — baseline-relative z-scores fused into a 0-100 estimate.

Each live metric is compared against the active :class:`Baseline` as an
absolute z-score.  Z-scores saturate at two standard deviations
(``clamp(z/2, 0, 1)``) and are combined with fixed weights summing to 1.

This is a probabilistic anomaly indicator relative to the person's own
calibration, not a lie detector.
"""

from __future__ import annotations

import math

import structlog

from biosignal_fusion.fusion.models import Baseline, DeceptionEstimate, DeceptionSignals
from biosignal_fusion.fusion.stats import clamp

logger = structlog.get_logger(__name__)

# ── Weights & floors ──────────────────────────────────────────

WEIGHTS: dict[str, float] = {
    "attention": 0.28,
    "blink_rate": 0.22,
    "fatigue": 0.16,
    "head_motion": 0.18,
    "emotion_volatility": 0.16,
}

# Minimum std per metric; blink and fatigue are count-like, volatility is a fraction
STD_FLOORS: dict[str, float] = {
    "attention": 0.1,
    "blink_rate": 1.0,
    "fatigue": 1.0,
    "head_motion": 0.1,
    "emotion_volatility": 0.01,
}

Z_SATURATION = 2.0


def z_score(value: float, mean: float, std: float, floor: float) -> float:
    """``|value - mean| / max(std, floor)``; non-finite input yields 0."""
    z = abs(value - mean) / max(std, floor)
    return z if math.isfinite(z) else 0.0


def normalise_z(z: float) -> float:
    return clamp(z / Z_SATURATION, 0.0, 1.0)


class DeceptionScorer:
    """Combine baseline-relative deviations into a composite score."""

    def __init__(
        self,
        weights: dict[str, float] | None = None,
        std_floors: dict[str, float] | None = None,
    ) -> None:
        self.weights = dict(weights or WEIGHTS)
        self.std_floors = dict(std_floors or STD_FLOORS)

    def z_scores(self, signals: DeceptionSignals, baseline: Baseline) -> dict[str, float]:
        out: dict[str, float] = {}
        for metric in self.weights:
            ref = baseline.stats_for(metric)
            out[metric] = z_score(getattr(signals, metric), ref.mean, ref.std, self.std_floors[metric])
        return out

    def estimate(self, signals: DeceptionSignals, baseline: Baseline | None) -> DeceptionEstimate:
        """Full breakdown; a missing baseline yields probability 0."""
        if baseline is None:
            return DeceptionEstimate(probability=0, baseline_is_default=True)

        z = self.z_scores(signals, baseline)
        contributions = {m: self.weights[m] * normalise_z(z[m]) for m in self.weights}
        probability = int(round(100 * clamp(sum(contributions.values()), 0.0, 1.0)))

        logger.debug("deception.scored", probability=probability, baseline_default=baseline.is_default)
        return DeceptionEstimate(
            probability=probability,
            z_scores={m: round(v, 3) for m, v in z.items()},
            contributions={m: round(v, 4) for m, v in contributions.items()},
            baseline_is_default=baseline.is_default,
        )

    def score(self, signals: DeceptionSignals, baseline: Baseline | None) -> int:
        return self.estimate(signals, baseline).probability
