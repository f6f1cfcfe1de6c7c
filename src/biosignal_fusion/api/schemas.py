"""Request / response models for the session API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from biosignal_fusion.fusion.models import (
    Baseline,
    BigFiveProfile,
    CalibrationState,
    DeceptionEstimate,
    RawFeatures,
)


class SessionCreateRequest(BaseModel):
    """Open a session; reusing an id restores its persisted baseline."""
    session_id: str | None = Field(None, max_length=64)


class SessionResponse(BaseModel):
    session_id: str
    calibration_state: CalibrationState
    baseline_is_default: bool
    frames_processed: int = 0


class FrameRequest(BaseModel):
    """One frame of tracker output; ``features=None`` means no face."""
    features: RawFeatures | None = None
    timestamp_ms: float | None = None


class CalibrationRequest(BaseModel):
    restart: bool = False


class CalibrationStatus(BaseModel):
    state: CalibrationState
    remaining_seconds: float
    samples: int = 0
    baseline: Baseline


class PersonalityRequest(BaseModel):
    answers: list[int]


class PersonalityResponse(BaseModel):
    profile: BigFiveProfile
    percentages: dict[str, int]
    summary: str
    behavioural: dict[str, int]


class DeceptionResponse(DeceptionEstimate):
    session_id: str


class DeceptionHistoryItem(BaseModel):
    probability: int
    z_scores: dict[str, float]
    baseline_is_default: bool
    timestamp: str
