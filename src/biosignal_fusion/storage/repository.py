"""Data-access layer — thin async wrappers around SQLAlchemy queries."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from biosignal_fusion.fusion.calibration import METRICS
from biosignal_fusion.fusion.models import Baseline, BigFiveProfile, DeceptionEstimate, MetricStats
from biosignal_fusion.storage.database import (
    BaselineRow,
    DeceptionEstimateRow,
    PersonalityProfileRow,
    get_session_factory,
)


class BaseRepository:
    """Shared base with session management for all repositories."""

    def __init__(self, session: AsyncSession | None = None) -> None:
        self._external_session = session

    async def _session(self) -> AsyncSession:
        if self._external_session is not None:
            return self._external_session
        return get_session_factory()()

    async def _release(self, session: AsyncSession) -> None:
        if session is not self._external_session:
            await session.close()


class BaselineRepository(BaseRepository):
    """Upsert / load the calibrated :class:`Baseline` of a session."""

    async def get_row(self, session_id: str) -> BaselineRow | None:
        session = await self._session()
        try:
            result = await session.execute(select(BaselineRow).where(BaselineRow.session_id == session_id))
            return result.scalar_one_or_none()
        finally:
            await self._release(session)

    async def get(self, session_id: str) -> Baseline | None:
        row = await self.get_row(session_id)
        return row_to_baseline(row) if row is not None else None

    async def upsert(self, session_id: str, baseline: Baseline) -> None:
        session = await self._session()
        try:
            result = await session.execute(select(BaselineRow).where(BaselineRow.session_id == session_id))
            row = result.scalar_one_or_none()
            if row is None:
                row = BaselineRow(session_id=session_id)
                session.add(row)
            for metric in METRICS:
                stats = baseline.stats_for(metric)
                setattr(row, f"{metric}_mean", stats.mean)
                setattr(row, f"{metric}_std", stats.std)
            row.sample_count = baseline.sample_count
            row.calibrated_at = baseline.created_at
            row.updated_at = datetime.now(timezone.utc)
            await session.commit()
        finally:
            await self._release(session)


class ProfileRepository(BaseRepository):
    """Persist questionnaire-based :class:`BigFiveProfile` results."""

    async def get(self, session_id: str) -> BigFiveProfile | None:
        session = await self._session()
        try:
            stmt = select(PersonalityProfileRow).where(PersonalityProfileRow.session_id == session_id)
            row = (await session.execute(stmt)).scalar_one_or_none()
        finally:
            await self._release(session)
        if row is None:
            return None
        return BigFiveProfile(
            openness=row.openness,
            conscientiousness=row.conscientiousness,
            extraversion=row.extraversion,
            agreeableness=row.agreeableness,
            neuroticism=row.neuroticism,
        )

    async def upsert(self, session_id: str, profile: BigFiveProfile) -> None:
        session = await self._session()
        try:
            await session.execute(
                delete(PersonalityProfileRow).where(PersonalityProfileRow.session_id == session_id)
            )
            session.add(PersonalityProfileRow(session_id=session_id, **profile.model_dump()))
            await session.commit()
        finally:
            await self._release(session)


class EstimateRepository(BaseRepository):
    """Append-only log of :class:`DeceptionEstimate` results."""

    async def save(self, session_id: str, estimate: DeceptionEstimate, timestamp: datetime | None = None) -> None:
        session = await self._session()
        try:
            session.add(
                DeceptionEstimateRow(
                    session_id=session_id,
                    probability=estimate.probability,
                    z_scores_json=json.dumps(estimate.z_scores),
                    baseline_is_default=int(estimate.baseline_is_default),
                    timestamp=timestamp or datetime.now(timezone.utc),
                )
            )
            await session.commit()
        finally:
            await self._release(session)

    async def get_latest(self, session_id: str, limit: int = 20) -> Sequence[DeceptionEstimateRow]:
        session = await self._session()
        try:
            stmt = (
                select(DeceptionEstimateRow)
                .where(DeceptionEstimateRow.session_id == session_id)
                .order_by(DeceptionEstimateRow.timestamp.desc(), DeceptionEstimateRow.id.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return result.scalars().all()
        finally:
            await self._release(session)


# ── Helpers ───────────────────────────────────────────────────


def row_to_baseline(row: BaselineRow) -> Baseline:
    stats = {
        metric: MetricStats(mean=getattr(row, f"{metric}_mean"), std=getattr(row, f"{metric}_std"))
        for metric in METRICS
    }
    return Baseline(**stats, is_default=False, sample_count=row.sample_count, created_at=row.calibrated_at)
