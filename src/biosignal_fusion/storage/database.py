"""SQLAlchemy async engine, session factory, and ORM table definitions."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from sqlalchemy import DateTime, Float, Integer, String, Text, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from biosignal_fusion.config import get_settings


# ── Base ──────────────────────────────────────────────────────

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


# ── ORM tables ────────────────────────────────────────────────

class BaselineRow(Base):
    """Latest calibrated baseline for a session (one row per session)."""

    __tablename__ = "baselines"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    attention_mean: Mapped[float] = mapped_column(Float)
    attention_std: Mapped[float] = mapped_column(Float)
    blink_rate_mean: Mapped[float] = mapped_column(Float)
    blink_rate_std: Mapped[float] = mapped_column(Float)
    fatigue_mean: Mapped[float] = mapped_column(Float)
    fatigue_std: Mapped[float] = mapped_column(Float)
    head_motion_mean: Mapped[float] = mapped_column(Float)
    head_motion_std: Mapped[float] = mapped_column(Float)
    emotion_volatility_mean: Mapped[float] = mapped_column(Float)
    emotion_volatility_std: Mapped[float] = mapped_column(Float)
    sample_count: Mapped[int] = mapped_column(Integer, default=0)
    calibrated_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class PersonalityProfileRow(Base):
    """Questionnaire-derived Big-Five profile (1-5 scale)."""

    __tablename__ = "personality_profiles"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    openness: Mapped[float] = mapped_column(Float)
    conscientiousness: Mapped[float] = mapped_column(Float)
    extraversion: Mapped[float] = mapped_column(Float)
    agreeableness: Mapped[float] = mapped_column(Float)
    neuroticism: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class DeceptionEstimateRow(Base):
    """One computed deception estimate with its per-metric breakdown."""

    __tablename__ = "deception_estimates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), index=True)
    probability: Mapped[int] = mapped_column(Integer)
    z_scores_json: Mapped[str] = mapped_column(Text, default="{}")
    baseline_is_default: Mapped[int] = mapped_column(Integer, default=1)
    timestamp: Mapped[datetime] = mapped_column(DateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


# ── Engine & session ──────────────────────────────────────────

_engine = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _get_engine():
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(settings.database_url, echo=False)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(_get_engine(), expire_on_commit=False)
    return _session_factory


async def init_db() -> None:
    """Create all tables (idempotent)."""
    url = get_settings().database_url
    if url.startswith("sqlite"):
        # URL format: sqlite+aiosqlite:///path/to/db
        db_path = Path(url.split("///", 1)[-1])
        db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = _get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine (shutdown / tests)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
