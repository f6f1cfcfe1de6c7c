"""Shared pytest fixtures."""

from __future__ import annotations

from typing import Callable

import pytest

from biosignal_fusion.config import Settings, get_settings
from biosignal_fusion.fusion.models import (
    EmotionLabel,
    GazeFeatures,
    HeadPose,
    RawEmotionGuess,
    RawFeatures,
)
from biosignal_fusion.fusion.session import AnalysisSession


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def now_ms(self) -> float:
        return self.now * 1000.0


class FakeHandle:
    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Records ``call_later`` requests so tests can fire them on demand."""

    def __init__(self) -> None:
        self.handles: list[tuple[float, FakeHandle]] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(callback)
        self.handles.append((delay, handle))
        return handle

    def fire_all(self) -> None:
        for _, handle in list(self.handles):
            if not handle.cancelled:
                handle.callback()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")


@pytest.fixture
def session(settings: Settings, clock: FakeClock) -> AnalysisSession:
    return AnalysisSession(session_id="S001", settings=settings, clock=clock)


@pytest.fixture
def steady_frame() -> RawFeatures:
    """Open eyes, closed mouth, facing the camera, smiling, age 30."""
    return RawFeatures(
        eye_aspect_ratio=0.3,
        mouth_aspect_ratio=0.1,
        head_pose=HeadPose(),
        gaze_features=GazeFeatures(),
        raw_emotion=RawEmotionGuess(label=EmotionLabel.HAPPY, score=0.9),
        age_guess=30,
    )


@pytest.fixture
def api_env(tmp_path, monkeypatch):
    """Point the app at a throwaway database and a short calibration."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("CALIBRATION_DURATION_SECONDS", "0.3")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
