"""Age stabilisation — median-of-buffer target, EMA-smoothed display value.

Per-frame age guesses are occasionally far off, so the smoothing target is
the median of a bounded sample buffer rather than its mean.  Confidence
falls as the spread (max - min) of the buffered guesses widens.
"""

from __future__ import annotations

from biosignal_fusion.fusion.models import AgeResult
from biosignal_fusion.fusion.stats import ExponentialSmoother, RollingStats, clamp

# ── Constants ─────────────────────────────────────────────────

AGE_MIN = 18.0
AGE_MAX = 48.0
SAMPLE_CAPACITY = 45
DEFAULT_ALPHA = 0.12
DEFAULT_AGE = 28
DEFAULT_CONFIDENCE = 0.8

_MIN_SAMPLES_FOR_SPREAD = 5
_CONFIDENCE_FLOOR = 0.62
_CONFIDENCE_CEILING = 0.92


def age_confidence(samples: RollingStats) -> float:
    """``clamp(0.9 - spread/60, 0.62, 0.92)`` once enough samples exist."""
    if len(samples) < _MIN_SAMPLES_FOR_SPREAD:
        return DEFAULT_CONFIDENCE
    return clamp(0.9 - samples.spread() / 60, _CONFIDENCE_FLOOR, _CONFIDENCE_CEILING)


class AgeStabilizer:
    """Slow-moving age estimate from noisy per-frame guesses.

    The display EMA starts from ``default_age`` so a single early guess
    cannot jump the estimate.  Its state is kept unrounded; only the
    reported age is rounded.
    """

    def __init__(
        self,
        alpha: float = DEFAULT_ALPHA,
        capacity: int = SAMPLE_CAPACITY,
        min_age: float = AGE_MIN,
        max_age: float = AGE_MAX,
        default_age: int = DEFAULT_AGE,
    ) -> None:
        self.min_age = min_age
        self.max_age = max_age
        self.default_age = default_age
        self._samples = RollingStats(capacity)
        self._smoother = ExponentialSmoother(alpha, initial=float(default_age))
        self._current = AgeResult(age=default_age, confidence=DEFAULT_CONFIDENCE)

    @property
    def samples(self) -> RollingStats:
        return self._samples

    @property
    def current(self) -> AgeResult:
        return self._current

    def update(self, guess: float | None) -> AgeResult:
        """Feed one raw guess; ``None`` leaves the estimate unchanged."""
        if guess is None:
            return self._current

        self._samples.push(clamp(guess, self.min_age, self.max_age))
        smoothed = self._smoother.update(self._samples.median())
        self._current = AgeResult(age=round(smoothed), confidence=round(age_confidence(self._samples), 3))
        return self._current

    def reset(self) -> None:
        self._samples.clear()
        self._smoother.reset()
        self._current = AgeResult(age=self.default_age, confidence=DEFAULT_CONFIDENCE)
