"""Blink and yawn detection over a trailing time window.

Eye openness is a threshold test on the eye aspect ratio (EAR); an
open→closed transition between consecutive frames is one blink.  The blink
rate is the number of blink events inside the trailing window scaled to one
minute, so it does not depend on the frame rate.

Yawns are counted once per yawning episode (a rising edge of the MAR test)
and never more often than once per ``yawn_cooldown_ms``; a single wide-mouth
yawn that spans dozens of frames therefore counts as one yawn.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)

# ── Constants ─────────────────────────────────────────────────

EAR_THRESHOLD = 0.18
MAR_THRESHOLD = 0.5
WINDOW_MS = 60_000.0
YAWN_COOLDOWN_MS = 3_000.0


@dataclass(frozen=True)
class BlinkFrame:
    timestamp: float
    eye_open: bool
    yawning: bool


@dataclass(frozen=True)
class BlinkReading:
    """Result of one :meth:`BlinkWindowDetector.update` call."""

    blink_rate: float  # blinks per minute
    blink_count: int  # blink events inside the window
    is_blinking: bool  # eyes closed on this frame
    is_yawning: bool  # raw MAR test on this frame
    yawn_count: int  # yawns counted since the last reset


class BlinkWindowDetector:
    """Sliding time-window edge detector for blinks and yawns.

    Parameters
    ----------
    ear_threshold : float
        Eye is open iff ``ear > ear_threshold``.
    mar_threshold : float
        Mouth is yawning iff ``mar > mar_threshold``.
    window_ms : float
        Trailing window length; entries satisfy ``now - ts < window_ms``.
    yawn_cooldown_ms : float
        Minimum spacing between two counted yawns.
    """

    def __init__(
        self,
        ear_threshold: float = EAR_THRESHOLD,
        mar_threshold: float = MAR_THRESHOLD,
        window_ms: float = WINDOW_MS,
        yawn_cooldown_ms: float = YAWN_COOLDOWN_MS,
    ) -> None:
        if window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {window_ms}")
        self.ear_threshold = ear_threshold
        self.mar_threshold = mar_threshold
        self.window_ms = window_ms
        self.yawn_cooldown_ms = yawn_cooldown_ms

        self._frames: deque[BlinkFrame] = deque()
        self._blink_times: deque[float] = deque()
        self._yawn_count = 0
        self._last_yawn_at: float | None = None

    # ── Update ────────────────────────────────────────────────

    def update(self, ear: float, mar: float, now_ms: float) -> BlinkReading:
        eye_open = ear > self.ear_threshold
        yawning = mar > self.mar_threshold

        self._frames.append(BlinkFrame(timestamp=now_ms, eye_open=eye_open, yawning=yawning))
        self._evict(now_ms)
        previous = self._frames[-2] if len(self._frames) >= 2 else None

        if previous is not None and previous.eye_open and not eye_open:
            self._blink_times.append(now_ms)

        if yawning and (previous is None or not previous.yawning):
            self._count_yawn(now_ms)

        return BlinkReading(
            blink_rate=self.blink_rate(),
            blink_count=len(self._blink_times),
            is_blinking=not eye_open,
            is_yawning=yawning,
            yawn_count=self._yawn_count,
        )

    def _count_yawn(self, now_ms: float) -> None:
        if self._last_yawn_at is not None and now_ms - self._last_yawn_at < self.yawn_cooldown_ms:
            return
        self._yawn_count += 1
        self._last_yawn_at = now_ms
        logger.debug("blink.yawn_detected", yawn_count=self._yawn_count)

    def _evict(self, now_ms: float) -> None:
        while self._frames and now_ms - self._frames[0].timestamp >= self.window_ms:
            self._frames.popleft()
        while self._blink_times and now_ms - self._blink_times[0] >= self.window_ms:
            self._blink_times.popleft()

    # ── Queries ───────────────────────────────────────────────

    def blink_rate(self) -> float:
        """Blinks per minute inside the trailing window."""
        return len(self._blink_times) * (60_000.0 / self.window_ms)

    @property
    def yawn_count(self) -> int:
        return self._yawn_count

    def reset(self) -> None:
        self._frames.clear()
        self._blink_times.clear()
        self._yawn_count = 0
        self._last_yawn_at = None
