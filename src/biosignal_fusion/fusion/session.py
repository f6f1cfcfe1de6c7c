"""Analysis session — owns all per-user runtime state and runs the frame loop.

One :class:`AnalysisSession` exists per monitored person.  It is an explicit
object handed to every call, never a module-level singleton, so several
sessions can run side by side and tests stay deterministic.

Each :meth:`AnalysisSession.analyze_frame` call processes exactly one frame
to completion:

1. Fill derivable features (EAR/MAR from landmarks, pose from matrix, ...)
2. Blink / yawn window update
3. Emotion stabilisation
4. Age stabilisation
5. Attention and fatigue estimation
6. Rolling histories
7. Calibration sampling (while calibrating)

Sessions are **not** thread-safe.  Calls from several threads need external
synchronisation; the API serialises access per session on the event loop.
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from typing import Callable, Sequence

import structlog

from biosignal_fusion.config import Settings, get_settings
from biosignal_fusion.fusion.age import AgeStabilizer
from biosignal_fusion.fusion.blink import BlinkWindowDetector
from biosignal_fusion.fusion.calibration import Calibrator, Scheduler
from biosignal_fusion.fusion.deception import DeceptionScorer
from biosignal_fusion.fusion.emotion import EmotionStabilizer, emotion_volatility, infer_emotion
from biosignal_fusion.fusion.estimators import AttentionEstimator, FatigueEstimator
from biosignal_fusion.fusion.features import (
    DEFAULT_MAR,
    complete_features,
    gaze_deviation,
    has_face,
    head_deviation,
    head_motion,
)
from biosignal_fusion.fusion.models import (
    AnalysisFrame,
    Baseline,
    BigFiveProfile,
    CalibrationSample,
    CalibrationState,
    DeceptionEstimate,
    DeceptionSignals,
    EmotionLabel,
    HeadPose,
    RawFeatures,
)
from biosignal_fusion.fusion.personality import PersonalityAggregator, behavioural_traits
from biosignal_fusion.fusion.stats import RollingStats

logger = structlog.get_logger(__name__)

# ── History capacities ────────────────────────────────────────

ATTENTION_HISTORY = 30
FATIGUE_HISTORY = 30
HEAD_MOTION_HISTORY = 30
EMOTION_HISTORY = 40
EAR_HISTORY = 60


class AnalysisSession:
    """Runtime state for one monitoring session.

    Parameters
    ----------
    session_id : str | None
        Identifier used in logs and persistence; generated if omitted.
    settings : Settings | None
        Tuning constants; defaults to :func:`get_settings`.
    clock : callable
        Monotonic time source in seconds, shared with the calibrator.
    scheduler : Scheduler | None
        Schedules the calibration closing transition (see
        :mod:`biosignal_fusion.fusion.calibration`).
    """

    def __init__(
        self,
        session_id: str | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Scheduler | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.session_id = session_id or str(uuid.uuid4())
        self._clock = clock
        self._log = logger.bind(session_id=self.session_id)

        self._blink = BlinkWindowDetector(
            ear_threshold=settings.ear_threshold,
            mar_threshold=settings.mar_threshold,
            window_ms=settings.blink_window_seconds * 1000,
            yawn_cooldown_ms=settings.yawn_cooldown_seconds * 1000,
        )
        self._emotion = EmotionStabilizer(decay=settings.emotion_decay)
        self._age = AgeStabilizer(alpha=settings.age_alpha)
        self._attention = AttentionEstimator(alpha=settings.attention_alpha)
        self._fatigue = FatigueEstimator(alpha=settings.fatigue_alpha)
        self._calibrator = Calibrator(
            duration_s=settings.calibration_duration_seconds,
            clock=clock,
            scheduler=scheduler,
            on_complete=self._on_baseline,
        )
        self._scorer = DeceptionScorer()
        self._personality = PersonalityAggregator()

        self._attention_history = RollingStats(ATTENTION_HISTORY)
        self._fatigue_history = RollingStats(FATIGUE_HISTORY)
        self._head_motion_history = RollingStats(HEAD_MOTION_HISTORY)
        self._ear_history = RollingStats(EAR_HISTORY)
        self._emotion_history: deque[EmotionLabel] = deque(maxlen=EMOTION_HISTORY)

        self._current = AnalysisFrame()
        self._profile: BigFiveProfile | None = None
        self._baseline_listeners: list[Callable[[Baseline], None]] = []
        self.frames_processed = 0

    # ── Read-only views ───────────────────────────────────────

    @property
    def current(self) -> AnalysisFrame:
        return self._current

    @property
    def baseline(self) -> Baseline:
        return self._calibrator.baseline

    @property
    def calibrator(self) -> Calibrator:
        return self._calibrator

    @property
    def calibration_state(self) -> CalibrationState:
        return self._calibrator.state

    @property
    def profile(self) -> BigFiveProfile | None:
        return self._profile

    @property
    def emotion_history(self) -> list[EmotionLabel]:
        return list(self._emotion_history)

    @property
    def attention_history(self) -> RollingStats:
        return self._attention_history

    @property
    def fatigue_history(self) -> RollingStats:
        return self._fatigue_history

    @property
    def yawn_count(self) -> int:
        return self._blink.yawn_count

    def add_baseline_listener(self, fn: Callable[[Baseline], None]) -> None:
        """Register a callback that receives every newly calibrated baseline."""
        self._baseline_listeners.append(fn)

    # ── Frame loop ────────────────────────────────────────────

    def analyze_frame(self, raw: RawFeatures | None, now_ms: float | None = None) -> AnalysisFrame:
        """Process one frame of raw features and return the stabilised output.

        ``raw=None`` (no face detected) never raises: every estimator falls
        back to its documented default.
        """
        if now_ms is None:
            now_ms = raw.timestamp_ms if raw is not None and raw.timestamp_ms is not None else self._clock() * 1000
        self.frames_processed += 1

        if not has_face(raw):
            self._current = AnalysisFrame(
                emotion=self._emotion.current,
                age=self._age.current,
                attention=self._attention.fallback(),
                fatigue=self._fatigue.fallback(),
                head_pose=HeadPose(),
                face_detected=False,
                timestamp_ms=now_ms,
            )
            self._calibrator.poll()
            self._log.debug("session.no_face")
            return self._current

        raw = complete_features(raw)

        # Eye geometry drives blink and fatigue; without it both fall back.
        ear = raw.eye_aspect_ratio
        blink = None
        if ear is not None:
            mar = raw.mouth_aspect_ratio if raw.mouth_aspect_ratio is not None else DEFAULT_MAR
            blink = self._blink.update(ear, mar, now_ms)
            self._ear_history.push(ear)
        blink_rate = blink.blink_rate if blink is not None else self._blink.blink_rate()

        guess = raw.raw_emotion
        if guess is None and raw.blendshapes:
            guess = infer_emotion(raw.blendshapes)
        emotion = self._emotion.update(guess.label, guess.score) if guess is not None else self._emotion.current
        self._emotion_history.append(emotion.label)

        age = self._age.update(raw.age_guess)

        pose = raw.head_pose or HeadPose()
        if raw.head_pose is not None or raw.gaze_features is not None:
            gaze = gaze_deviation(raw.gaze_features) if raw.gaze_features is not None else 0.0
            attention = self._attention.update(gaze, head_deviation(pose))
        else:
            attention = self._attention.fallback()

        if blink is not None:
            fatigue = self._fatigue.update(ear, self._ear_history, blink.blink_rate, blink.is_yawning, emotion.label)
            self._fatigue_history.push(fatigue.score)
        else:
            fatigue = self._fatigue.fallback()

        motion = head_motion(pose)
        self._attention_history.push(attention.level)
        if raw.head_pose is not None:
            self._head_motion_history.push(motion)

        self._current = AnalysisFrame(
            emotion=emotion,
            age=age,
            attention=attention,
            fatigue=fatigue,
            head_pose=pose,
            face_detected=True,
            timestamp_ms=now_ms,
        )

        if self._calibrator.is_calibrating:
            self._calibrator.feed(
                CalibrationSample(
                    attention=attention.level,
                    blink_rate=blink_rate,
                    fatigue=fatigue.score,
                    head_motion=motion,
                    emotion_volatility=emotion_volatility(self._emotion_history),
                )
            )
        self._log.debug(
            "session.frame_analyzed",
            attention=attention.level,
            fatigue=fatigue.score,
            emotion=emotion.label.value,
        )
        return self._current

    # ── Calibration ───────────────────────────────────────────

    def start_calibration(self, *, restart: bool = False) -> None:
        """Begin a calibration session and clear the reset-on-calibrate state.

        Raises :class:`CalibrationInProgressError` when a session is already
        running and ``restart`` is false.
        """
        self._calibrator.start(restart=restart)
        self._attention_history.clear()
        self._fatigue_history.clear()
        self._head_motion_history.clear()
        self._emotion_history.clear()
        self._emotion.reset()

    def cancel_calibration(self) -> None:
        self._calibrator.cancel()

    def _on_baseline(self, baseline: Baseline) -> None:
        self._log.info("session.baseline_updated", samples=baseline.sample_count)
        for fn in self._baseline_listeners:
            fn(baseline)

    # ── Personality ───────────────────────────────────────────

    def submit_personality_answers(self, answers: Sequence[int]) -> BigFiveProfile:
        """Score the questionnaire; raises :class:`InvalidAnswersError` on bad input."""
        self._profile = self._personality.score(answers)
        return self._profile

    def restore_profile(self, profile: BigFiveProfile) -> None:
        self._profile = profile

    def behavioural_traits(self) -> dict[str, int]:
        return behavioural_traits(
            self._attention_history.values(),
            self._fatigue_history.values(),
            self.emotion_history,
        )

    # ── Deception ─────────────────────────────────────────────

    def deception_signals(self) -> DeceptionSignals:
        """Live metrics from the rolling histories (current frame if empty)."""
        current = self._current
        return DeceptionSignals(
            attention=self._attention_history.mean() if len(self._attention_history) else current.attention.level,
            blink_rate=self._blink.blink_rate(),
            fatigue=self._fatigue_history.mean() if len(self._fatigue_history) else current.fatigue.score,
            head_motion=self._head_motion_history.mean() if len(self._head_motion_history) else head_motion(current.head_pose),
            emotion_volatility=emotion_volatility(self._emotion_history),
        )

    def deception_estimate(self) -> DeceptionEstimate:
        self._calibrator.poll()
        return self._scorer.estimate(self.deception_signals(), self._calibrator.baseline)

    def compute_deception_estimate(self) -> int:
        """Composite 0-100 deception estimate against the active baseline."""
        return self.deception_estimate().probability

    # ── Lifecycle ─────────────────────────────────────────────

    def reset(self) -> None:
        """Return to a fresh session state (keeps id and listeners)."""
        self._calibrator.reset()
        self._blink.reset()
        self._emotion.reset()
        self._age.reset()
        self._attention.reset()
        self._fatigue.reset()
        for history in (
            self._attention_history,
            self._fatigue_history,
            self._head_motion_history,
            self._ear_history,
        ):
            history.clear()
        self._emotion_history.clear()
        self._current = AnalysisFrame()
        self._profile = None
        self.frames_processed = 0
        self._log.info("session.reset")


class SessionRegistry:
    """In-memory map of live sessions, keyed by id."""

    def __init__(self, max_sessions: int = 64, factory: Callable[[str], AnalysisSession] | None = None) -> None:
        self._sessions: dict[str, AnalysisSession] = {}
        self._max_sessions = max_sessions
        self._factory = factory or (lambda sid: AnalysisSession(session_id=sid))

    def create(self, session_id: str | None = None) -> AnalysisSession:
        if len(self._sessions) >= self._max_sessions:
            raise RuntimeError(f"Session limit reached ({self._max_sessions}).")
        sid = session_id or str(uuid.uuid4())
        session = self._factory(sid)
        self._sessions[sid] = session
        logger.info("registry.session_created", session_id=sid, active=len(self._sessions))
        return session

    def get(self, session_id: str) -> AnalysisSession | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.cancel_calibration()
        logger.info("registry.session_removed", session_id=session_id, active=len(self._sessions))
        return True

    def ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
