"""Attention and fatigue estimators.

Both are deterministic formulas over normalised per-frame features whose
output is EMA-smoothed so the displayed value moves gradually.

Fatigue components
------------------
==========================  =====================================  ======
Component                   Signal                                 Weight
==========================  =====================================  ======
Closed-eye fraction         share of EAR history below 0.20        40
Prolonged closure           current EAR distance below 0.20        15
Blink rate                  blinks/min normalised to 30            15
Low blink rate              blinks/min below 8 (staring)           8
Micro-sleep risk            minimum recent EAR below 0.15          12
Yawning                     current frame MAR test                 10
Sad emotion                 stabilised emotion is Sad              5
==========================  =====================================  ======
"""

from __future__ import annotations

from biosignal_fusion.fusion.models import (
    AttentionResult,
    EmotionLabel,
    FatigueLevel,
    FatigueResult,
)
from biosignal_fusion.fusion.stats import ExponentialSmoother, RollingStats, clamp

# ── Attention constants ───────────────────────────────────────

ATTENTION_ALPHA = 0.15
ATTENTION_FLOOR = 20.0
ATTENTION_CEILING = 99.0
GAZE_AWAY_CUTOFF = 55.0
DEFAULT_ATTENTION = 75

_GAZE_WEIGHT = 0.6
_HEAD_WEIGHT = 0.4

# ── Fatigue constants ─────────────────────────────────────────

FATIGUE_ALPHA = 0.18
CLOSED_EYE_THRESHOLD = 0.20
FALLBACK_FATIGUE_SCORE = 35.0

_HIGH_FATIGUE = 67.0
_MEDIUM_FATIGUE = 34.0

_W_CLOSED_FRACTION = 40.0
_W_PROLONGED = 15.0
_W_BLINK_RATE = 15.0
_W_LOW_BLINK = 8.0
_W_MICRO_SLEEP = 12.0
_W_YAWN = 10.0
_W_SAD = 5.0

_BLINK_RATE_SCALE = 30.0
_LOW_BLINK_RATE = 8.0
_MICRO_SLEEP_EAR = 0.15
_MICRO_SLEEP_SPAN = 0.10


def instant_attention(gaze_deviation: float, head_deviation: float) -> float:
    """Unsmoothed attention level in [0, 100]."""
    return 100.0 * (1.0 - clamp(_GAZE_WEIGHT * gaze_deviation + _HEAD_WEIGHT * head_deviation, 0.0, 1.0))


def fatigue_level(score: float) -> FatigueLevel:
    if score >= _HIGH_FATIGUE:
        return FatigueLevel.HIGH
    if score >= _MEDIUM_FATIGUE:
        return FatigueLevel.MEDIUM
    return FatigueLevel.LOW


class AttentionEstimator:
    """Gaze + head-pose attention score with EMA smoothing."""

    def __init__(self, alpha: float = ATTENTION_ALPHA) -> None:
        self._smoother = ExponentialSmoother(alpha)
        self._current = AttentionResult(level=DEFAULT_ATTENTION, gazing_away=False)

    @property
    def current(self) -> AttentionResult:
        return self._current

    def update(self, gaze_deviation: float, head_deviation: float) -> AttentionResult:
        instant = instant_attention(gaze_deviation, head_deviation)
        smoothed = clamp(self._smoother.update(instant), ATTENTION_FLOOR, ATTENTION_CEILING)
        self._current = AttentionResult(level=round(smoothed), gazing_away=instant < GAZE_AWAY_CUTOFF)
        return self._current

    def fallback(self) -> AttentionResult:
        """No face this frame: keep the last level, not flagged as gazing away."""
        self._current = AttentionResult(level=self._current.level, gazing_away=False)
        return self._current

    def reset(self) -> None:
        self._smoother.reset()
        self._current = AttentionResult(level=DEFAULT_ATTENTION, gazing_away=False)


class FatigueEstimator:
    """Weighted eye-closure / blink / yawn fatigue score with EMA smoothing."""

    def __init__(self, alpha: float = FATIGUE_ALPHA) -> None:
        self._smoother = ExponentialSmoother(alpha)

    def raw_score(
        self,
        ear: float,
        ear_history: RollingStats,
        blink_rate: float,
        yawning: bool,
        emotion: EmotionLabel,
    ) -> float:
        """Unsmoothed fatigue score in [0, 100]."""
        closed_fraction = ear_history.fraction_below(CLOSED_EYE_THRESHOLD)
        prolonged = clamp((CLOSED_EYE_THRESHOLD - ear) / CLOSED_EYE_THRESHOLD, 0.0, 1.0)
        blink_norm = clamp(blink_rate / _BLINK_RATE_SCALE, 0.0, 1.0)
        low_blink = clamp((_LOW_BLINK_RATE - blink_rate) / _LOW_BLINK_RATE, 0.0, 1.0)
        min_ear = ear_history.min(default=ear)
        micro_sleep = clamp((_MICRO_SLEEP_EAR - min_ear) / _MICRO_SLEEP_SPAN, 0.0, 1.0)

        score = (
            _W_CLOSED_FRACTION * closed_fraction
            + _W_PROLONGED * prolonged
            + _W_BLINK_RATE * blink_norm
            + _W_LOW_BLINK * low_blink
            + _W_MICRO_SLEEP * micro_sleep
            + (_W_YAWN if yawning else 0.0)
            + (_W_SAD if emotion == EmotionLabel.SAD else 0.0)
        )
        return clamp(score, 0.0, 100.0)

    def update(
        self,
        ear: float,
        ear_history: RollingStats,
        blink_rate: float,
        yawning: bool,
        emotion: EmotionLabel,
    ) -> FatigueResult:
        smoothed = self._smoother.update(self.raw_score(ear, ear_history, blink_rate, yawning, emotion))
        return FatigueResult(
            level=fatigue_level(smoothed),
            score=round(smoothed, 2),
            blink_rate=round(blink_rate, 1),
            eye_aspect_ratio=round(ear, 2),
            yawning=yawning,
        )

    def fallback(self) -> FatigueResult:
        """No face this frame: documented default, smoother left untouched."""
        return FatigueResult(level=FatigueLevel.LOW, score=FALLBACK_FATIGUE_SCORE)

    def reset(self) -> None:
        self._smoother.reset()
