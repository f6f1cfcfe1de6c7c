"""Feature helpers — derive geometric features from tracker outputs.

The face tracker is an external collaborator.  Depending on how it is
configured it may hand over ready-made EAR/MAR/pose values or only its raw
outputs (468-point landmarks, ARKit-style blendshapes, a 4x4 facial
transformation matrix).  This module fills the gaps so the estimators always
see the same normalised inputs.
"""

from __future__ import annotations

import math
from typing import Mapping, Sequence

from biosignal_fusion.fusion.models import GazeFeatures, HeadPose, RawFeatures
from biosignal_fusion.fusion.stats import clamp

# ── Constants ─────────────────────────────────────────────────

# Pose clamps (degrees); also used to normalise head deviation
YAW_LIMIT = 45.0
PITCH_LIMIT = 35.0
ROLL_LIMIT = 35.0

# Landmark indices (MediaPipe face mesh)
_LEFT_EYE = {"up": 158, "down": 163, "inner": 133, "outer": 33}
_RIGHT_EYE = {"up": 385, "down": 390, "inner": 362, "outer": 263}
_MOUTH = {"top": 13, "bottom": 14, "left": 78, "right": 308}

_EPS = 0.001

# Returned when landmarks are too sparse to measure
DEFAULT_EAR = 0.3
DEFAULT_MAR = 0.0


# ── Head pose ────────────────────────────────────────────────


def pose_from_matrix(matrix: Sequence[float] | None) -> HeadPose:
    """Extract yaw/pitch/roll (degrees) from a column-major 4x4 transform."""
    if not matrix or len(matrix) < 16:
        return HeadPose()

    r01, r11 = matrix[1], matrix[5]
    r20, r21, r22 = matrix[8], matrix[9], matrix[10]

    yaw = math.degrees(math.atan2(r20, r22))
    pitch = math.degrees(math.asin(clamp(-r21, -1.0, 1.0)))
    roll = math.degrees(math.atan2(r01, r11))

    return HeadPose(
        yaw=clamp(yaw, -YAW_LIMIT, YAW_LIMIT),
        pitch=clamp(pitch, -PITCH_LIMIT, PITCH_LIMIT),
        roll=clamp(roll, -ROLL_LIMIT, ROLL_LIMIT),
    )


def head_motion(pose: HeadPose) -> float:
    """Euclidean norm of (yaw, pitch, roll)."""
    return math.sqrt(pose.yaw ** 2 + pose.pitch ** 2 + pose.roll ** 2)


def head_deviation(pose: HeadPose) -> float:
    """Normalised yaw/pitch magnitude in [0, 1]."""
    return clamp(math.hypot(pose.yaw / YAW_LIMIT, pose.pitch / PITCH_LIMIT), 0.0, 1.0)


# ── Gaze ─────────────────────────────────────────────────────


def gaze_from_blendshapes(blend: Mapping[str, float]) -> GazeFeatures:
    """Collapse per-eye look blendshapes into directional scores."""
    return GazeFeatures(
        look_in=max(blend.get("eyeLookInLeft", 0.0), blend.get("eyeLookInRight", 0.0)),
        look_out=max(blend.get("eyeLookOutLeft", 0.0), blend.get("eyeLookOutRight", 0.0)),
        look_up=max(blend.get("eyeLookUpLeft", 0.0), blend.get("eyeLookUpRight", 0.0)),
        look_down=max(blend.get("eyeLookDownLeft", 0.0), blend.get("eyeLookDownRight", 0.0)),
    )


def gaze_deviation(gaze: GazeFeatures) -> float:
    """Max of the directional eye-look scores, in [0, 1]."""
    return clamp(max(gaze.look_in, gaze.look_out, gaze.look_up, gaze.look_down), 0.0, 1.0)


# ── Eye / mouth aspect ratios ────────────────────────────────


def _dist(p1: Sequence[float], p2: Sequence[float]) -> float:
    return math.hypot(p1[0] - p2[0], p1[1] - p2[1])


def _eye_ratio(landmarks: Sequence[Sequence[float]], idx: dict[str, int]) -> float:
    vertical = _dist(landmarks[idx["up"]], landmarks[idx["down"]])
    horizontal = _dist(landmarks[idx["inner"]], landmarks[idx["outer"]])
    return (2 * vertical) / (2 * horizontal + _EPS)


def eye_aspect_ratio(landmarks: Sequence[Sequence[float]] | None) -> float:
    """Mean EAR of both eyes; :data:`DEFAULT_EAR` when landmarks are missing."""
    needed = max(*_LEFT_EYE.values(), *_RIGHT_EYE.values())
    if not landmarks or len(landmarks) <= needed:
        return DEFAULT_EAR
    return (_eye_ratio(landmarks, _LEFT_EYE) + _eye_ratio(landmarks, _RIGHT_EYE)) / 2


def mouth_aspect_ratio(landmarks: Sequence[Sequence[float]] | None) -> float:
    if not landmarks or len(landmarks) <= max(_MOUTH.values()):
        return DEFAULT_MAR
    vertical = _dist(landmarks[_MOUTH["top"]], landmarks[_MOUTH["bottom"]])
    horizontal = _dist(landmarks[_MOUTH["left"]], landmarks[_MOUTH["right"]])
    return vertical / (horizontal + _EPS)


# ── Frame normalisation ──────────────────────────────────────


def complete_features(raw: RawFeatures) -> RawFeatures:
    """Return a copy of *raw* with derivable fields filled in.

    Explicit values always win over derived ones.
    """
    updates: dict = {}
    if raw.eye_aspect_ratio is None and raw.landmarks:
        updates["eye_aspect_ratio"] = eye_aspect_ratio(raw.landmarks)
    if raw.mouth_aspect_ratio is None and raw.landmarks:
        updates["mouth_aspect_ratio"] = mouth_aspect_ratio(raw.landmarks)
    if raw.head_pose is None and raw.transform_matrix:
        updates["head_pose"] = pose_from_matrix(raw.transform_matrix)
    if raw.gaze_features is None and raw.blendshapes:
        updates["gaze_features"] = gaze_from_blendshapes(raw.blendshapes)
    if not updates:
        return raw
    return raw.model_copy(update=updates)


def has_face(raw: RawFeatures | None) -> bool:
    """True when the tracker reported any face feature this frame.

    Estimators whose own inputs are missing still fall back individually.
    """
    if raw is None:
        return False
    return any(
        (
            raw.eye_aspect_ratio is not None,
            raw.mouth_aspect_ratio is not None,
            raw.head_pose is not None,
            raw.gaze_features is not None,
            raw.raw_emotion is not None,
            raw.age_guess is not None,
            bool(raw.landmarks),
            bool(raw.blendshapes),
            bool(raw.transform_matrix),
        )
    )
