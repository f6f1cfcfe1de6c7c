"""Pydantic models for the signal-fusion core.

These models represent:
- The nullable per-frame feature bundle supplied by the face tracker
- Stabilised per-signal results and the composite analysis frame
- Baseline statistics produced by calibration
- Deception scoring inputs / outputs
- Big-Five personality profile
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ─────────────────────────────────────────────────────


class EmotionLabel(str, Enum):
    """Emotion categories emitted by the upstream classifier."""

    NEUTRAL = "Neutral"
    HAPPY = "Happy"
    SAD = "Sad"
    ANGRY = "Angry"
    SURPRISED = "Surprised"
    FEARFUL = "Fearful"
    DISGUSTED = "Disgusted"


_FATIGUE_LABELS_ES = {"Low": "Baja", "Medium": "Media", "High": "Alta"}


class FatigueLevel(str, Enum):
    """Three-tier fatigue classification."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    def display_label(self, locale: str = "en") -> str:
        """Presentation text for *locale* (``"en"`` or ``"es"``)."""
        if locale == "es":
            return _FATIGUE_LABELS_ES[self.value]
        return self.value


class CalibrationState(str, Enum):
    IDLE = "idle"
    CALIBRATING = "calibrating"


# ── Raw input ─────────────────────────────────────────────────


class HeadPose(BaseModel):
    """Head orientation in degrees."""

    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0


class GazeFeatures(BaseModel):
    """Directional eye-look scores in [0, 1] (max of left/right eye)."""

    look_in: float = 0.0
    look_out: float = 0.0
    look_up: float = 0.0
    look_down: float = 0.0


class RawEmotionGuess(BaseModel):
    label: EmotionLabel
    score: float = Field(ge=0.0, le=1.0)


class RawFeatures(BaseModel):
    """Opaque per-frame features produced by an external face tracker.

    Every field is optional: a missing value means the tracker could not
    provide it this frame.  When possible, derivable values are filled in
    from ``landmarks``, ``transform_matrix`` or ``blendshapes``.
    """

    eye_aspect_ratio: float | None = None
    mouth_aspect_ratio: float | None = None
    head_pose: HeadPose | None = None
    gaze_features: GazeFeatures | None = None
    raw_emotion: RawEmotionGuess | None = None
    age_guess: float | None = None
    blendshapes: dict[str, float] = Field(default_factory=dict)
    landmarks: list[list[float]] | None = None
    transform_matrix: list[float] | None = None
    timestamp_ms: float | None = None


# ── Stabilised results ───────────────────────────────────────


class EmotionResult(BaseModel):
    label: EmotionLabel = EmotionLabel.NEUTRAL
    score: float = 0.75


class AgeResult(BaseModel):
    age: int = 28
    confidence: float = 0.8


class AttentionResult(BaseModel):
    level: int = Field(75, description="Attention level, 0-100.")
    gazing_away: bool = False


class FatigueResult(BaseModel):
    level: FatigueLevel = FatigueLevel.LOW
    score: float = 35.0
    blink_rate: float = Field(14.0, description="Blinks per minute.")
    eye_aspect_ratio: float = 0.34
    yawning: bool = False


class AnalysisFrame(BaseModel):
    """Composite stabilised output for one analysis cycle."""

    emotion: EmotionResult = Field(default_factory=EmotionResult)
    age: AgeResult = Field(default_factory=AgeResult)
    attention: AttentionResult = Field(default_factory=AttentionResult)
    fatigue: FatigueResult = Field(default_factory=FatigueResult)
    head_pose: HeadPose = Field(default_factory=HeadPose)
    face_detected: bool = False
    timestamp_ms: float | None = None


# ── Baseline ──────────────────────────────────────────────────


class MetricStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    mean: float
    std: float


class Baseline(BaseModel):
    """Reference statistics used to interpret live signals.

    Immutable: a new calibration replaces the whole object.
    """

    model_config = ConfigDict(frozen=True)

    attention: MetricStats
    blink_rate: MetricStats
    fatigue: MetricStats
    head_motion: MetricStats
    emotion_volatility: MetricStats
    is_default: bool = False
    sample_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def stats_for(self, metric: str) -> MetricStats:
        return getattr(self, metric)


class CalibrationSample(BaseModel):
    """One frame's worth of calibration inputs."""

    attention: float
    blink_rate: float
    fatigue: float
    head_motion: float
    emotion_volatility: float


# ── Deception ─────────────────────────────────────────────────


class DeceptionSignals(BaseModel):
    """Live metrics compared against the baseline."""

    attention: float = 0.0
    blink_rate: float = 0.0
    fatigue: float = 0.0
    head_motion: float = 0.0
    emotion_volatility: float = 0.0


class DeceptionEstimate(BaseModel):
    probability: int = Field(0, ge=0, le=100)
    z_scores: dict[str, float] = Field(default_factory=dict)
    contributions: dict[str, float] = Field(default_factory=dict)
    baseline_is_default: bool = True


# ── Personality ──────────────────────────────────────────────


class BigFiveProfile(BaseModel):
    """Big-Five trait scores on the 1-5 Likert scale."""

    model_config = ConfigDict(frozen=True)

    openness: float = Field(ge=1.0, le=5.0)
    conscientiousness: float = Field(ge=1.0, le=5.0)
    extraversion: float = Field(ge=1.0, le=5.0)
    agreeableness: float = Field(ge=1.0, le=5.0)
    neuroticism: float = Field(ge=1.0, le=5.0)

    def as_percentages(self) -> dict[str, int]:
        from biosignal_fusion.fusion.personality import to_percent

        return {trait: to_percent(value) for trait, value in self.model_dump().items()}

    def summary(self) -> str:
        """Compact ``O:75 C:50 ...`` string for display."""
        pct = self.as_percentages()
        return " ".join(f"{trait[0].upper()}:{value}" for trait, value in pct.items())
