"""Tests for calibration, deception scoring and personality scoring."""

from __future__ import annotations

import pytest

from biosignal_fusion.fusion.calibration import (
    DEFAULT_BASELINE,
    STD_FLOOR,
    CalibrationInProgressError,
    Calibrator,
)
from biosignal_fusion.fusion.deception import DeceptionScorer, normalise_z, z_score
from biosignal_fusion.fusion.models import (
    Baseline,
    BigFiveProfile,
    CalibrationSample,
    CalibrationState,
    DeceptionSignals,
    EmotionLabel,
    MetricStats,
)
from biosignal_fusion.fusion.personality import (
    InvalidAnswersError,
    PersonalityAggregator,
    behavioural_traits,
    to_percent,
)


def _sample(attention: float = 80.0, **overrides) -> CalibrationSample:
    values = dict(attention=attention, blink_rate=15.0, fatigue=20.0, head_motion=3.0, emotion_volatility=0.1)
    values.update(overrides)
    return CalibrationSample(**values)


def _signals_at_mean(baseline: Baseline) -> DeceptionSignals:
    return DeceptionSignals(
        attention=baseline.attention.mean,
        blink_rate=baseline.blink_rate.mean,
        fatigue=baseline.fatigue.mean,
        head_motion=baseline.head_motion.mean,
        emotion_volatility=baseline.emotion_volatility.mean,
    )


# ── Calibration ─────────────────────────────────────────────


class TestCalibrator:
    def test_default_baseline_before_calibration(self, clock):
        cal = Calibrator(clock=clock)
        assert cal.state == CalibrationState.IDLE
        assert cal.baseline is DEFAULT_BASELINE
        assert cal.baseline.is_default
        assert cal.baseline.attention.mean == 75.0

    def test_constant_samples_floor_std(self, clock):
        cal = Calibrator(duration_s=5.0, clock=clock)
        cal.start()
        for _ in range(20):
            cal.feed(_sample(80.0))
            clock.advance(0.2)
        assert cal.is_calibrating
        assert cal.sample_count == 20
        clock.advance(1.0)
        baseline = cal.poll()

        assert baseline is not None
        assert cal.state == CalibrationState.IDLE
        assert baseline.attention.mean == pytest.approx(80.0)
        assert baseline.attention.std == pytest.approx(STD_FLOOR)
        assert baseline.sample_count == 20
        assert not baseline.is_default
        assert cal.baseline is baseline
        assert baseline.created_at.tzinfo is not None
        assert cal.sample_count == 0

    def test_population_std(self, clock):
        cal = Calibrator(clock=clock)
        cal.start()
        for value in (70.0, 90.0):
            cal.feed(_sample(value))
        clock.advance(5.0)
        baseline = cal.poll()
        assert baseline.attention.mean == pytest.approx(80.0)
        assert baseline.attention.std == pytest.approx(10.0)

    def test_feed_after_deadline_completes(self, clock):
        cal = Calibrator(clock=clock)
        cal.start()
        cal.feed(_sample())
        clock.advance(5.0)
        cal.feed(_sample(10.0))
        assert not cal.is_calibrating
        assert cal.baseline.sample_count == 1
        assert cal.baseline.attention.mean == pytest.approx(80.0)

    def test_second_start_raises(self, clock):
        cal = Calibrator(clock=clock)
        cal.start()
        with pytest.raises(CalibrationInProgressError):
            cal.start()

    def test_restart_discards_samples(self, clock):
        cal = Calibrator(clock=clock)
        cal.start()
        cal.feed(_sample(10.0))
        clock.advance(1.0)
        cal.start(restart=True)
        cal.feed(_sample(90.0))
        clock.advance(4.5)
        assert cal.poll() is None
        clock.advance(0.5)
        baseline = cal.poll()
        assert baseline.attention.mean == pytest.approx(90.0)

    def test_no_samples_keeps_prior_baseline(self, clock):
        cal = Calibrator(clock=clock)
        cal.start()
        clock.advance(6.0)
        assert cal.poll() is None
        assert cal.state == CalibrationState.IDLE
        assert cal.baseline.is_default

    def test_cancel_keeps_baseline(self, clock):
        cal = Calibrator(clock=clock)
        cal.start()
        cal.feed(_sample(60.0))
        clock.advance(5.0)
        first = cal.poll()
        cal.start()
        cal.feed(_sample(20.0))
        cal.cancel()
        assert cal.baseline is first
        assert cal.remaining() == 0.0

    def test_scheduled_completion(self, clock, scheduler):
        completed: list[Baseline] = []
        cal = Calibrator(duration_s=5.0, clock=clock, scheduler=scheduler, on_complete=completed.append)
        cal.start()
        cal.feed(_sample())
        scheduler.fire_all()
        assert scheduler.handles[0][0] == 5.0
        assert not cal.is_calibrating
        assert len(completed) == 1

    def test_restart_ignores_stale_timer(self, clock, scheduler):
        cal = Calibrator(clock=clock, scheduler=scheduler)
        cal.start()
        cal.feed(_sample(10.0))
        cal.start(restart=True)
        stale = scheduler.handles[0][1]
        assert stale.cancelled

        stale.callback()
        assert cal.is_calibrating

        cal.feed(_sample(50.0))
        scheduler.handles[1][1].callback()
        assert cal.baseline.attention.mean == pytest.approx(50.0)

    def test_restore(self, clock):
        cal = Calibrator(clock=clock)
        stored = DEFAULT_BASELINE.model_copy(update={"is_default": False, "sample_count": 12})
        cal.restore(stored)
        assert not cal.is_default
        assert cal.baseline.sample_count == 12
        with pytest.raises(ValueError):
            cal.restore(DEFAULT_BASELINE)


# ── Deception ───────────────────────────────────────────────


class TestDeceptionScorer:
    def test_z_score_floor(self):
        assert z_score(5.0, 4.0, 0.0, 0.5) == pytest.approx(2.0)
        assert z_score(3.0, 4.0, 2.0, 0.5) == pytest.approx(0.5)

    def test_non_finite_z_is_zero(self):
        assert z_score(float("inf"), 1.0, 1.0, 0.1) == 0.0

    def test_normalise_saturates(self):
        assert normalise_z(1.0) == pytest.approx(0.5)
        assert normalise_z(7.0) == 1.0

    def test_signals_at_baseline_score_zero(self):
        estimate = DeceptionScorer().estimate(_signals_at_mean(DEFAULT_BASELINE), DEFAULT_BASELINE)
        assert estimate.probability == 0
        assert all(z == 0.0 for z in estimate.z_scores.values())
        assert estimate.baseline_is_default

    def test_missing_baseline_scores_zero(self):
        assert DeceptionScorer().score(DeceptionSignals(attention=5.0), None) == 0

    def test_all_metrics_saturated(self):
        b = DEFAULT_BASELINE
        signals = DeceptionSignals(
            attention=b.attention.mean + 10 * b.attention.std,
            blink_rate=b.blink_rate.mean + 10 * b.blink_rate.std,
            fatigue=b.fatigue.mean + 10 * b.fatigue.std,
            head_motion=b.head_motion.mean + 10 * b.head_motion.std,
            emotion_volatility=b.emotion_volatility.mean + 10 * b.emotion_volatility.std,
        )
        assert DeceptionScorer().score(signals, b) == 100

    def test_monotonic_in_deviation(self):
        scorer = DeceptionScorer()
        base = _signals_at_mean(DEFAULT_BASELINE)
        previous = -1
        for drop in range(0, 40, 4):
            signals = base.model_copy(update={"attention": base.attention - drop})
            score = scorer.score(signals, DEFAULT_BASELINE)
            assert score >= previous
            previous = score
        assert previous == 28

    def test_deviation_direction_is_ignored(self):
        scorer = DeceptionScorer()
        base = _signals_at_mean(DEFAULT_BASELINE)
        up = scorer.score(base.model_copy(update={"blink_rate": 23.0}), DEFAULT_BASELINE)
        down = scorer.score(base.model_copy(update={"blink_rate": 7.0}), DEFAULT_BASELINE)
        assert up == down == 22

    def test_calibrated_baseline_uses_floor(self):
        stats = {m: MetricStats(mean=0.0, std=0.0) for m in ("blink_rate", "fatigue", "head_motion", "emotion_volatility")}
        baseline = Baseline(attention=MetricStats(mean=80.0, std=0.0), **stats)
        estimate = DeceptionScorer().estimate(DeceptionSignals(attention=80.2), baseline)
        assert estimate.z_scores["attention"] == pytest.approx(2.0)
        assert estimate.probability == 28


# ── Personality ─────────────────────────────────────────────


class TestPersonalityAggregator:
    def test_reverse_keyed_maximum(self):
        profile = PersonalityAggregator().score([5, 1] * 5)
        assert profile == BigFiveProfile(
            openness=5, conscientiousness=5, extraversion=5, agreeableness=5, neuroticism=5
        )
        assert profile.summary() == "O:100 C:100 E:100 A:100 N:100"

    def test_neutral_answers(self):
        profile = PersonalityAggregator().score([3] * 10)
        assert profile.as_percentages() == {
            "openness": 50,
            "conscientiousness": 50,
            "extraversion": 50,
            "agreeableness": 50,
            "neuroticism": 50,
        }

    def test_all_ones_cancel_out(self):
        profile = PersonalityAggregator().score([1] * 10)
        assert profile.openness == pytest.approx(3.0)

    def test_traits_follow_item_order(self):
        profile = PersonalityAggregator().score([5, 1, 1, 5, 3, 3, 4, 2, 2, 4])
        assert profile.openness == 5
        assert profile.conscientiousness == 1
        assert profile.extraversion == 3
        assert profile.agreeableness == 4
        assert profile.neuroticism == 2

    @pytest.mark.parametrize(
        "answers",
        [[3] * 9, [3] * 11, [0] + [3] * 9, [6] + [3] * 9, [True] + [3] * 9, [2.5] + [3] * 9],
    )
    def test_invalid_answers(self, answers):
        with pytest.raises(InvalidAnswersError):
            PersonalityAggregator().score(answers)

    def test_to_percent(self):
        assert to_percent(1.0) == 0
        assert to_percent(3.0) == 50
        assert to_percent(5.0) == 100


class TestBehaviouralTraits:
    def test_empty_histories(self):
        traits = behavioural_traits([], [], [])
        assert traits == {
            "openness": 45,
            "conscientiousness": 20,
            "extraversion": 40,
            "agreeableness": 70,
            "neuroticism": 35,
        }

    def test_happy_attentive_session(self):
        traits = behavioural_traits([90.0] * 5, [10.0] * 5, [EmotionLabel.HAPPY] * 4)
        assert traits["conscientiousness"] == 90
        assert traits["extraversion"] == 95
        assert traits["neuroticism"] == 40
