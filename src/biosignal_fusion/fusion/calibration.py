"""Calibration — timed sampling session that produces a personal Baseline.

State machine
-------------
``idle → calibrating → idle``.  :meth:`Calibrator.start` opens a
:class:`CalibrationSession`; every analysed frame contributes one
:class:`CalibrationSample`; once the configured duration has elapsed the
session is reduced to a :class:`Baseline` which replaces the previous one
wholesale.

The closing transition is a scheduled callback.  Pass a ``scheduler``
(``(delay_seconds, callback) -> handle`` where ``handle.cancel()`` exists,
e.g. ``asyncio.get_running_loop().call_later``) to have it fire on time even
when no frames arrive; without one the deadline is checked lazily on every
:meth:`Calibrator.feed` / :meth:`Calibrator.poll`.

Only one session may be active.  A second :meth:`start` raises
:class:`CalibrationInProgressError` unless ``restart=True`` is passed, in
which case the pending transition is cancelled and sampling starts over.
"""

from __future__ import annotations

import statistics
import time
from typing import Any, Callable, Protocol

import structlog

from biosignal_fusion.fusion.models import (
    Baseline,
    CalibrationSample,
    CalibrationState,
    MetricStats,
)

logger = structlog.get_logger(__name__)

# ── Constants ─────────────────────────────────────────────────

CALIBRATION_DURATION_S = 5.0
STD_FLOOR = 0.1

METRICS: tuple[str, ...] = (
    "attention",
    "blink_rate",
    "fatigue",
    "head_motion",
    "emotion_volatility",
)

DEFAULT_BASELINE = Baseline(
    attention=MetricStats(mean=75.0, std=12.0),
    blink_rate=MetricStats(mean=15.0, std=4.0),
    fatigue=MetricStats(mean=25.0, std=8.0),
    head_motion=MetricStats(mean=5.0, std=2.0),
    emotion_volatility=MetricStats(mean=0.15, std=0.08),
    is_default=True,
)


class CalibrationInProgressError(RuntimeError):
    """Raised when a calibration is requested while one is already running."""


class Cancellable(Protocol):
    def cancel(self) -> Any: ...


Scheduler = Callable[[float, Callable[[], None]], Cancellable]


# ── Session ──────────────────────────────────────────────────


class CalibrationSession:
    """Per-metric sample accumulators for one calibration run."""

    def __init__(self, started_at: float, duration_s: float) -> None:
        self.started_at = started_at
        self.duration_s = duration_s
        self.samples: dict[str, list[float]] = {m: [] for m in METRICS}

    @property
    def deadline(self) -> float:
        return self.started_at + self.duration_s

    @property
    def sample_count(self) -> int:
        return len(self.samples["attention"])

    def expired(self, now: float) -> bool:
        return now >= self.deadline

    def add(self, sample: CalibrationSample) -> None:
        for metric in METRICS:
            self.samples[metric].append(getattr(sample, metric))

    def to_baseline(self) -> Baseline | None:
        """Reduce accumulators to mean / population std (floored)."""
        if self.sample_count == 0:
            return None
        stats: dict[str, MetricStats] = {}
        for metric, values in self.samples.items():
            std = statistics.pstdev(values) if len(values) > 1 else 0.0
            stats[metric] = MetricStats(
                mean=statistics.fmean(values),
                std=std if std > 0 else STD_FLOOR,
            )
        return Baseline(**stats, is_default=False, sample_count=self.sample_count)


# ── Calibrator ───────────────────────────────────────────────


class Calibrator:
    """Owns the active :class:`Baseline` and the calibration state machine.

    Parameters
    ----------
    duration_s : float
        Length of a calibration session.
    clock : callable
        Monotonic time source in seconds.
    scheduler : Scheduler | None
        Schedules the closing transition; see module docstring.
    on_complete : callable | None
        Receives each newly computed :class:`Baseline`.
    """

    def __init__(
        self,
        duration_s: float = CALIBRATION_DURATION_S,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Scheduler | None = None,
        on_complete: Callable[[Baseline], None] | None = None,
    ) -> None:
        self.duration_s = duration_s
        self._clock = clock
        self._scheduler = scheduler
        self._on_complete = on_complete
        self._session: CalibrationSession | None = None
        self._handle: Cancellable | None = None
        self._baseline: Baseline | None = None

    # ── State ─────────────────────────────────────────────────

    @property
    def state(self) -> CalibrationState:
        return CalibrationState.CALIBRATING if self._session is not None else CalibrationState.IDLE

    @property
    def is_calibrating(self) -> bool:
        return self._session is not None

    @property
    def baseline(self) -> Baseline:
        """The calibrated baseline, or :data:`DEFAULT_BASELINE` if none yet."""
        return self._baseline or DEFAULT_BASELINE

    @property
    def is_default(self) -> bool:
        return self._baseline is None

    @property
    def sample_count(self) -> int:
        """Frames sampled by the running session (0 when idle)."""
        return self._session.sample_count if self._session is not None else 0

    def remaining(self) -> float:
        if self._session is None:
            return 0.0
        return max(0.0, self._session.deadline - self._clock())

    # ── Transitions ───────────────────────────────────────────

    def start(self, *, restart: bool = False) -> None:
        if self._session is not None:
            if not restart:
                raise CalibrationInProgressError("A calibration session is already running.")
            self.cancel()

        session = CalibrationSession(started_at=self._clock(), duration_s=self.duration_s)
        self._session = session
        if self._scheduler is not None:
            self._handle = self._scheduler(self.duration_s, lambda: self._on_timer(session))
        logger.info("calibration.started", duration_s=self.duration_s, restart=restart)

    def cancel(self) -> None:
        """Abort the running session; the active baseline is kept."""
        if self._session is None:
            return
        self._cancel_handle()
        self._session = None
        logger.info("calibration.cancelled")

    def feed(self, sample: CalibrationSample) -> None:
        """Add one frame's sample; completes the session if its time is up."""
        if self._session is None:
            return
        if self._session.expired(self._clock()):
            self._complete()
            return
        self._session.add(sample)

    def poll(self) -> Baseline | None:
        """Complete the session if its deadline passed; returns the new baseline."""
        if self._session is None or not self._session.expired(self._clock()):
            return None
        return self._complete()

    def _on_timer(self, session: CalibrationSession) -> None:
        # A restarted session owns a new timer; ignore stale ones.
        if self._session is session:
            self._handle = None
            self._complete()

    def _complete(self) -> Baseline | None:
        session = self._session
        self._cancel_handle()
        self._session = None
        if session is None:
            return None

        baseline = session.to_baseline()
        if baseline is None:
            logger.warning("calibration.no_samples", duration_s=session.duration_s)
            return None

        self._baseline = baseline
        logger.info(
            "calibration.completed",
            samples=baseline.sample_count,
            attention_mean=round(baseline.attention.mean, 2),
            blink_rate_mean=round(baseline.blink_rate.mean, 2),
        )
        if self._on_complete is not None:
            self._on_complete(baseline)
        return baseline

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def restore(self, baseline: Baseline) -> None:
        """Adopt a previously persisted baseline without calibrating."""
        if baseline.is_default:
            raise ValueError("Refusing to restore the default baseline as a calibrated one.")
        self._baseline = baseline
        logger.info("calibration.restored", samples=baseline.sample_count)

    def reset(self) -> None:
        """Cancel any session and fall back to the default baseline."""
        self.cancel()
        self._baseline = None
