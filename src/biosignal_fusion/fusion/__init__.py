"""Signal fusion — turn noisy per-frame face features into stable readings.

The package consumes the opaque feature bundle emitted by an upstream face
tracker (eye/mouth aspect ratios, head pose, gaze, raw emotion and age
guesses) and produces smoothed, bounded estimates.

Architecture
------------
1. **Primitives** (`stats.py`, `features.py`)
   - Bounded rolling buffers and exponential smoothing
   - Derivation of EAR / MAR / pose / gaze from raw landmarks and matrices

2. **Stabilisers** (`blink.py`, `emotion.py`, `age.py`, `estimators.py`)
   - Time-windowed blink and yawn detection, frame-rate independent
   - Decaying emotion accumulator with hysteresis
   - Median + EMA age stabilisation
   - Attention and fatigue scores

3. **Baseline & scoring** (`calibration.py`, `deception.py`,
   `personality.py`)
   - Timed calibration session producing a personal baseline
   - Baseline-relative composite deception estimate
   - Ten-item Big-Five questionnaire scoring

4. **Session** (`session.py`)
   - :class:`AnalysisSession` owns all runtime state for one person

Limitations
-----------
- Every output is a heuristic estimate.  The deception score is an anomaly
  indicator relative to the person's own calibration, not a lie detector.
- Nothing here detects faces or landmarks; that is the tracker's job.
"""

from biosignal_fusion.fusion.calibration import CalibrationInProgressError, Calibrator
from biosignal_fusion.fusion.models import (
    AnalysisFrame,
    Baseline,
    BigFiveProfile,
    DeceptionEstimate,
    EmotionLabel,
    FatigueLevel,
    RawFeatures,
)
from biosignal_fusion.fusion.personality import InvalidAnswersError
from biosignal_fusion.fusion.session import AnalysisSession, SessionRegistry

__all__ = [
    "AnalysisFrame",
    "AnalysisSession",
    "Baseline",
    "BigFiveProfile",
    "CalibrationInProgressError",
    "Calibrator",
    "DeceptionEstimate",
    "EmotionLabel",
    "FatigueLevel",
    "InvalidAnswersError",
    "RawFeatures",
    "SessionRegistry",
]
