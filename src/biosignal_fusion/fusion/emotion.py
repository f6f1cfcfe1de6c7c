"""Emotion stabilisation — decay-weighted voting over noisy per-frame labels.

Each frame, every accumulated label score is multiplied by a decay factor
(< 1) and the raw classifier score is added to the observed label.  The
dominant label is the argmax of the accumulator, so a single misclassified
frame cannot flip the output; a new emotion has to out-vote the decayed
history first.
"""

from __future__ import annotations

from itertools import pairwise
from typing import Collection, Mapping

import structlog

from biosignal_fusion.fusion.models import EmotionLabel, EmotionResult, RawEmotionGuess
from biosignal_fusion.fusion.stats import clamp

logger = structlog.get_logger(__name__)

# ── Constants ─────────────────────────────────────────────────

DEFAULT_DECAY = 0.92
SCORE_OFFSET = 0.4
SCORE_FLOOR = 0.55
SCORE_CEILING = 0.98
FALLBACK_SCORE = 0.75

# Blendshape heuristic thresholds
_HAPPY_MIN = 0.35
_SAD_MIN = 0.35
_SURPRISE_MIN = 0.45
_NEUTRAL_SCORE = 0.62


class EmotionStabilizer:
    """Leaky-integrator vote over emotion labels.

    Parameters
    ----------
    decay : float
        Multiplier applied to every accumulated score before each update.
    offset, floor, ceiling : float
        Display shaping for the output score:
        ``clamp(best/total + offset, floor, ceiling)``.
    """

    def __init__(
        self,
        decay: float = DEFAULT_DECAY,
        offset: float = SCORE_OFFSET,
        floor: float = SCORE_FLOOR,
        ceiling: float = SCORE_CEILING,
    ) -> None:
        if not 0.0 < decay < 1.0:
            raise ValueError(f"decay must be in (0, 1), got {decay}")
        self.decay = decay
        self.offset = offset
        self.floor = floor
        self.ceiling = ceiling
        self._scores: dict[EmotionLabel, float] = {}
        self._current = EmotionResult()

    @property
    def scores(self) -> dict[EmotionLabel, float]:
        return dict(self._scores)

    @property
    def current(self) -> EmotionResult:
        return self._current

    def update(self, label: EmotionLabel, score: float) -> EmotionResult:
        for key in self._scores:
            self._scores[key] *= self.decay
        self._scores[label] = self._scores.get(label, 0.0) + score

        best_label = label
        best_score = 0.0
        total = 0.0
        for key, value in self._scores.items():
            total += value
            if value > best_score:
                best_label = key
                best_score = value

        if total > 0:
            shaped = clamp(best_score / total + self.offset, self.floor, self.ceiling)
        else:
            shaped = FALLBACK_SCORE

        if best_label != self._current.label:
            logger.debug("emotion.dominant_changed", previous=self._current.label.value, current=best_label.value)
        self._current = EmotionResult(label=best_label, score=shaped)
        return self._current

    def reset(self) -> None:
        self._scores.clear()
        self._current = EmotionResult()


def emotion_volatility(labels: Collection[EmotionLabel]) -> float:
    """Fraction of adjacent label pairs that differ (0 = stable, 1 = flipping)."""
    if len(labels) < 2:
        return 0.0
    changes = sum(1 for a, b in pairwise(labels) if a != b)
    return changes / (len(labels) - 1)


def infer_emotion(blend: Mapping[str, float]) -> RawEmotionGuess:
    """Heuristic raw emotion guess from expression blendshapes.

    Used when the tracker supplies blendshapes but no classifier output.
    Only Happy / Sad / Surprised are separable this way; anything else is
    reported as Neutral.
    """
    smile = blend.get("mouthSmileLeft", 0.0) + blend.get("mouthSmileRight", 0.0)
    frown = blend.get("mouthFrownLeft", 0.0) + blend.get("mouthFrownRight", 0.0)
    brow_inner_up = blend.get("browInnerUp", 0.0)
    jaw_open = blend.get("jawOpen", 0.0)
    cheek_squint = blend.get("cheekSquintLeft", 0.0) + blend.get("cheekSquintRight", 0.0)

    happy = smile * 0.95 + cheek_squint * 0.35 - frown * 0.45
    sad = frown * 0.9 + brow_inner_up * 0.5 - smile * 0.35
    surprise = jaw_open * 0.9 + brow_inner_up * 0.45

    if happy > sad and happy > surprise and happy > _HAPPY_MIN:
        return RawEmotionGuess(label=EmotionLabel.HAPPY, score=clamp(0.62 + happy * 0.32, 0.62, 0.97))
    if sad > happy and sad > surprise and sad > _SAD_MIN:
        return RawEmotionGuess(label=EmotionLabel.SAD, score=clamp(0.6 + sad * 0.28, 0.6, 0.94))
    if surprise > _SURPRISE_MIN:
        return RawEmotionGuess(label=EmotionLabel.SURPRISED, score=clamp(0.6 + surprise * 0.25, 0.6, 0.94))
    return RawEmotionGuess(label=EmotionLabel.NEUTRAL, score=_NEUTRAL_SCORE)
