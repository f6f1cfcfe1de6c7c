"""Centralised application settings loaded from environment / .env file."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _resolve_db_dir() -> Path:
    """Return (and create) the directory that holds the SQLite file."""
    d = Path(os.getenv("BIOSIGNAL_DATA_DIR", str(_PROJECT_ROOT / "data")))
    d.mkdir(parents=True, exist_ok=True)
    return d


_DB_DIR = _resolve_db_dir()
_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{_DB_DIR / 'biosignal_fusion.db'}"


class Settings(BaseSettings):
    """All runtime configuration for the signal-fusion engine and its API.

    Values are read from environment variables first, then from a *.env* file
    located at the project root.  Every variable lives in a flat namespace
    (``EMOTION_DECAY=0.88``, ``CALIBRATION_DURATION_SECONDS=5`` ...).
    """

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ──────────────────────────────────────────────
    database_url: str = _DEFAULT_DB_URL

    # ── API server ────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = int(os.getenv("PORT", "8000"))
    cors_origins: str = "*"  # comma-separated origins, or "*" for all
    max_sessions: int = 64

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ── Blink / yawn detection ────────────────────────────────
    ear_threshold: float = 0.18  # eye open iff EAR > threshold
    mar_threshold: float = 0.5  # yawning iff MAR > threshold
    blink_window_seconds: float = 60.0
    yawn_cooldown_seconds: float = 3.0

    # ── Stabilisers ───────────────────────────────────────────
    emotion_decay: float = 0.92
    age_alpha: float = 0.12
    attention_alpha: float = 0.15
    fatigue_alpha: float = 0.18

    # ── Calibration ───────────────────────────────────────────
    calibration_duration_seconds: float = 5.0


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
