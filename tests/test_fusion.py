"""Tests for the signal primitives, stabilisers and estimators."""

from __future__ import annotations

import math
from collections import deque

import pytest

from biosignal_fusion.fusion.age import AgeStabilizer, age_confidence
from biosignal_fusion.fusion.blink import BlinkWindowDetector
from biosignal_fusion.fusion.emotion import EmotionStabilizer, emotion_volatility, infer_emotion
from biosignal_fusion.fusion.estimators import (
    FALLBACK_FATIGUE_SCORE,
    AttentionEstimator,
    FatigueEstimator,
    fatigue_level,
    instant_attention,
)
from biosignal_fusion.fusion.features import (
    DEFAULT_EAR,
    complete_features,
    gaze_deviation,
    has_face,
    head_deviation,
    head_motion,
    pose_from_matrix,
)
from biosignal_fusion.fusion.models import (
    EmotionLabel,
    FatigueLevel,
    GazeFeatures,
    HeadPose,
    RawFeatures,
)
from biosignal_fusion.fusion.stats import ExponentialSmoother, RollingStats, clamp, ema


# ── Rolling statistics ───────────────────────────────────────


class TestRollingStats:
    def test_capacity_evicts_oldest(self):
        stats = RollingStats(3)
        for v in (1, 2, 3, 4):
            stats.push(v)
        assert stats.values() == [2.0, 3.0, 4.0]
        assert stats.mean() == pytest.approx(3.0)
        assert stats.median() == pytest.approx(3.0)
        assert stats.spread() == pytest.approx(2.0)

    def test_population_stddev(self):
        stats = RollingStats(5, [2, 3, 4])
        assert stats.stddev() == pytest.approx(math.sqrt(2 / 3))

    def test_empty_buffer_is_zero(self):
        stats = RollingStats(4)
        assert stats.mean() == 0.0
        assert stats.stddev() == 0.0
        assert stats.median() == 0.0
        assert stats.min(default=7.0) == 7.0
        assert len(stats) == 0

    def test_fraction_below(self):
        stats = RollingStats(4, [0.1, 0.3, 0.15, 0.4])
        assert stats.fraction_below(0.2) == pytest.approx(0.5)

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            RollingStats(0)


class TestExponentialSmoother:
    def test_first_value_seeds(self):
        s = ExponentialSmoother(0.5)
        assert s.update(10) == 10
        assert s.update(20) == pytest.approx(15)

    def test_reset(self):
        s = ExponentialSmoother(0.5)
        s.update(4)
        s.reset()
        assert s.value is None

    @pytest.mark.parametrize("alpha", [0.05, 0.12, 0.5, 1.0])
    @pytest.mark.parametrize("x", [-3.0, 0.0, 42.5])
    def test_ema_fixed_point(self, alpha, x):
        assert ema(x, x, alpha) == pytest.approx(x)

    @pytest.mark.parametrize("alpha", [0.12, 0.18, 0.7])
    def test_converges_monotonically(self, alpha):
        s = ExponentialSmoother(alpha, initial=0.0)
        distance = 100.0
        for _ in range(200):
            step = abs(100.0 - s.update(100.0))
            assert step <= distance
            distance = step
        assert distance < 1e-3

    @pytest.mark.parametrize("alpha", [0.0, -0.1, 1.5])
    def test_invalid_alpha(self, alpha):
        with pytest.raises(ValueError):
            ExponentialSmoother(alpha)

    def test_clamp(self):
        assert clamp(5, 0, 1) == 1
        assert clamp(-5, 0, 1) == 0


# ── Feature derivation ──────────────────────────────────────


class TestFeatures:
    def test_identity_matrix_is_frontal(self):
        identity = [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1]
        pose = pose_from_matrix(identity)
        assert pose.yaw == pytest.approx(0.0)
        assert pose.pitch == pytest.approx(0.0)
        assert pose.roll == pytest.approx(0.0)

    def test_missing_matrix_is_frontal(self):
        assert pose_from_matrix(None) == HeadPose()

    def test_head_deviation_saturates(self):
        assert head_deviation(HeadPose()) == 0.0
        assert head_deviation(HeadPose(yaw=45, pitch=35)) == 1.0

    def test_head_motion_is_norm(self):
        assert head_motion(HeadPose(yaw=3, pitch=4)) == pytest.approx(5.0)

    def test_gaze_deviation_takes_max(self):
        assert gaze_deviation(GazeFeatures(look_in=0.2, look_down=0.7)) == pytest.approx(0.7)

    def test_complete_features_keeps_explicit_values(self):
        raw = RawFeatures(eye_aspect_ratio=0.25, blendshapes={"eyeLookOutLeft": 0.6})
        done = complete_features(raw)
        assert done.eye_aspect_ratio == 0.25
        assert done.gaze_features is not None
        assert done.gaze_features.look_out == pytest.approx(0.6)

    def test_short_landmarks_fall_back_to_default(self):
        done = complete_features(RawFeatures(landmarks=[[0.0, 0.0]] * 10))
        assert done.eye_aspect_ratio == DEFAULT_EAR

    def test_has_face(self):
        assert not has_face(None)
        assert not has_face(RawFeatures())
        assert has_face(RawFeatures(eye_aspect_ratio=0.3))
        assert has_face(RawFeatures(age_guess=40))
        assert has_face(RawFeatures(head_pose=HeadPose(yaw=10)))


# ── Blink / yawn window ─────────────────────────────────────


def _simulate_blinks(fps: float, duration_ms: float = 60_000.0) -> BlinkWindowDetector:
    """Eyes close for 200 ms at the start of every 4 s cycle."""
    detector = BlinkWindowDetector()
    for k in range(int(duration_ms * fps / 1000)):
        t = k * 1000.0 / fps
        ear = 0.1 if t % 4000 < 200 else 0.3
        detector.update(ear, 0.0, t)
    return detector


def _alternate_eyes(fps: float, duration_ms: float = 60_000.0) -> BlinkWindowDetector:
    """Eyes open for the first half of every second, closed for the second."""
    detector = BlinkWindowDetector()
    for k in range(int(duration_ms * fps / 1000)):
        t = k * 1000.0 / fps
        ear = 0.3 if t % 1000 < 500 else 0.1
        detector.update(ear, 0.0, t)
    return detector


class TestBlinkWindowDetector:
    @pytest.mark.parametrize("fps", [10, 30])
    def test_one_blink_per_second_reads_sixty(self, fps):
        assert _alternate_eyes(fps).blink_rate() == pytest.approx(60.0)

    def test_rate_is_frame_rate_independent(self):
        slow = _simulate_blinks(fps=10)
        fast = _simulate_blinks(fps=30)
        assert slow.blink_rate() == pytest.approx(14.0)
        assert fast.blink_rate() == pytest.approx(slow.blink_rate())

    def test_threshold_is_strict(self):
        detector = BlinkWindowDetector()
        detector.update(0.19, 0.0, 0)
        reading = detector.update(0.18, 0.0, 33)
        assert reading.is_blinking
        assert reading.blink_count == 1

    def test_first_frame_never_blinks(self):
        detector = BlinkWindowDetector()
        reading = detector.update(0.05, 0.0, 0)
        assert reading.blink_count == 0

    def test_old_blinks_leave_the_window(self):
        detector = BlinkWindowDetector(window_ms=1000)
        detector.update(0.3, 0.0, 0)
        detector.update(0.1, 0.0, 100)
        assert detector.blink_rate() == pytest.approx(60.0)
        reading = detector.update(0.3, 0.0, 1100)
        assert reading.blink_count == 0
        assert reading.blink_rate == 0.0

    def test_long_yawn_counts_once(self):
        detector = BlinkWindowDetector()
        for i in range(60):
            reading = detector.update(0.3, 0.8, i * 33)
        assert reading.is_yawning
        assert reading.yawn_count == 1

    def test_yawn_cooldown(self):
        detector = BlinkWindowDetector(yawn_cooldown_ms=3000)
        detector.update(0.3, 0.8, 0)
        detector.update(0.3, 0.1, 500)
        detector.update(0.3, 0.8, 1000)
        assert detector.yawn_count == 1
        detector.update(0.3, 0.1, 3500)
        detector.update(0.3, 0.8, 4000)
        assert detector.yawn_count == 2

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            BlinkWindowDetector(window_ms=0)


# ── Emotion ─────────────────────────────────────────────────


class TestEmotionStabilizer:
    def test_dominance_flips_on_third_neutral_frame(self):
        stab = EmotionStabilizer(decay=0.9)
        labels = [stab.update(EmotionLabel.HAPPY, 1.0).label]
        for _ in range(3):
            labels.append(stab.update(EmotionLabel.NEUTRAL, 0.3).label)
        assert labels == [
            EmotionLabel.HAPPY,
            EmotionLabel.HAPPY,
            EmotionLabel.HAPPY,
            EmotionLabel.NEUTRAL,
        ]

    def test_single_label_score_hits_ceiling(self):
        result = EmotionStabilizer().update(EmotionLabel.SAD, 0.8)
        assert result.label == EmotionLabel.SAD
        assert result.score == pytest.approx(0.98)

    def test_score_bounded(self):
        stab = EmotionStabilizer(decay=0.5)
        for label in (EmotionLabel.HAPPY, EmotionLabel.SAD, EmotionLabel.ANGRY, EmotionLabel.FEARFUL):
            result = stab.update(label, 0.5)
            assert 0.55 <= result.score <= 0.98

    def test_zero_scores_use_fallback(self):
        result = EmotionStabilizer().update(EmotionLabel.ANGRY, 0.0)
        assert result.score == pytest.approx(0.75)

    @pytest.mark.parametrize("decay", [0.0, 1.0])
    def test_invalid_decay(self, decay):
        with pytest.raises(ValueError):
            EmotionStabilizer(decay=decay)

    def test_reset(self):
        stab = EmotionStabilizer()
        stab.update(EmotionLabel.SAD, 1.0)
        stab.reset()
        assert stab.scores == {}
        assert stab.current.label == EmotionLabel.NEUTRAL


class TestEmotionHelpers:
    def test_volatility(self):
        h, n = EmotionLabel.HAPPY, EmotionLabel.NEUTRAL
        assert emotion_volatility([h, h, n, n]) == pytest.approx(1 / 3)
        assert emotion_volatility([h]) == 0.0
        assert emotion_volatility(deque([h, n, h], maxlen=5)) == pytest.approx(1.0)

    def test_infer_happy_from_smile(self):
        guess = infer_emotion({"mouthSmileLeft": 0.5, "mouthSmileRight": 0.5})
        assert guess.label == EmotionLabel.HAPPY
        assert guess.score == pytest.approx(0.924)

    def test_infer_neutral_default(self):
        guess = infer_emotion({})
        assert guess.label == EmotionLabel.NEUTRAL
        assert guess.score == pytest.approx(0.62)


# ── Age ─────────────────────────────────────────────────────


class TestAgeStabilizer:
    def test_missing_guess_keeps_default(self):
        result = AgeStabilizer().update(None)
        assert result.age == 28
        assert result.confidence == pytest.approx(0.8)

    def test_first_guess_is_smoothed_from_default(self):
        # 0.12 * 48 + 0.88 * 28
        assert AgeStabilizer().update(48).age == 30

    def test_guess_clamped_to_range(self):
        assert AgeStabilizer().update(80).age == 30
        assert AgeStabilizer().update(5).age == 27
        stab = AgeStabilizer()
        for _ in range(100):
            result = stab.update(80)
        assert result.age == 48

    def test_converges_to_new_age(self):
        stab = AgeStabilizer()
        for _ in range(45):
            stab.update(25)
        for _ in range(200):
            result = stab.update(35)
        assert result.age == 35

    def test_slow_response_to_outlier(self):
        stab = AgeStabilizer()
        for _ in range(20):
            stab.update(30)
        assert stab.update(48).age == 30

    def test_confidence_from_spread(self):
        samples = RollingStats(45, [30] * 5)
        assert age_confidence(samples) == pytest.approx(0.9)
        samples = RollingStats(45, [18, 48, 30, 30, 30])
        assert age_confidence(samples) == pytest.approx(0.62)
        assert age_confidence(RollingStats(45, [30] * 4)) == pytest.approx(0.8)


# ── Attention / fatigue ─────────────────────────────────────


class TestAttention:
    def test_instant_attention_bounds(self):
        assert instant_attention(0.0, 0.0) == pytest.approx(100.0)
        assert instant_attention(1.0, 1.0) == pytest.approx(0.0)

    def test_level_clamped(self):
        assert AttentionEstimator().update(0.0, 0.0).level == 99
        away = AttentionEstimator().update(1.0, 1.0)
        assert away.level == 20
        assert away.gazing_away

    def test_smoothing(self):
        est = AttentionEstimator(alpha=0.15)
        est.update(0.0, 0.0)
        result = est.update(1.0, 0.0)
        # 0.15 * 40 + 0.85 * 100
        assert result.level == 91
        assert result.gazing_away

    def test_fallback_keeps_level(self):
        est = AttentionEstimator()
        est.update(1.0, 1.0)
        result = est.fallback()
        assert result.level == 20
        assert not result.gazing_away


class TestFatigue:
    @pytest.mark.parametrize(
        "score, level",
        [(67, FatigueLevel.HIGH), (66.9, FatigueLevel.MEDIUM), (34, FatigueLevel.MEDIUM), (33.9, FatigueLevel.LOW)],
    )
    def test_levels(self, score, level):
        assert fatigue_level(score) == level

    def test_rested_score(self):
        history = RollingStats(60, [0.3] * 10)
        score = FatigueEstimator().raw_score(0.3, history, 15.0, False, EmotionLabel.NEUTRAL)
        assert score == pytest.approx(7.5)

    def test_yawn_and_sad_add_up(self):
        history = RollingStats(60, [0.3] * 10)
        score = FatigueEstimator().raw_score(0.3, history, 15.0, True, EmotionLabel.SAD)
        assert score == pytest.approx(22.5)

    def test_closed_eyes_score_high(self):
        history = RollingStats(60, [0.05] * 60)
        result = FatigueEstimator().update(0.05, history, 2.0, True, EmotionLabel.SAD)
        assert result.level == FatigueLevel.HIGH
        assert 0 <= result.score <= 100

    def test_fallback(self):
        result = FatigueEstimator().fallback()
        assert result.level == FatigueLevel.LOW
        assert result.score == FALLBACK_FATIGUE_SCORE

    def test_display_label_locale(self):
        assert FatigueLevel.MEDIUM.display_label("es") == "Media"
        assert FatigueLevel.MEDIUM.display_label() == "Medium"
