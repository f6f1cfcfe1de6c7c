"""FastAPI application — session REST endpoints, WebSocket stream, persistence.

This module wires together all infrastructure:
- CORS, request logging and error middleware
- In-memory session registry (one :class:`AnalysisSession` per person)
- Calibration timers on the event loop
- Baseline / personality / deception persistence
- Real-time WebSocket frame streaming
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Coroutine

import structlog
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from biosignal_fusion import __version__
from biosignal_fusion.api.middleware import setup_middleware
from biosignal_fusion.api.schemas import (
    CalibrationRequest,
    CalibrationStatus,
    DeceptionHistoryItem,
    DeceptionResponse,
    FrameRequest,
    PersonalityRequest,
    PersonalityResponse,
    SessionCreateRequest,
    SessionResponse,
)
from biosignal_fusion.api.websocket import ws_manager
from biosignal_fusion.config import get_settings
from biosignal_fusion.fusion.calibration import CalibrationInProgressError
from biosignal_fusion.fusion.models import AnalysisFrame, Baseline
from biosignal_fusion.fusion.personality import InvalidAnswersError
from biosignal_fusion.fusion.session import AnalysisSession, SessionRegistry
from biosignal_fusion.logger import bind_session, unbind_session
from biosignal_fusion.storage.database import dispose_engine, init_db
from biosignal_fusion.storage.repository import (
    BaselineRepository,
    EstimateRepository,
    ProfileRepository,
)

logger = structlog.get_logger(__name__)

# ── Shared state (initialised in lifespan) ────────────────────

_registry: SessionRegistry | None = None
_background: set[asyncio.Task] = set()


def _spawn(coro: Coroutine[Any, Any, None]) -> None:
    task = asyncio.get_running_loop().create_task(coro)
    _background.add(task)
    task.add_done_callback(_on_task_done)


def _on_task_done(task: asyncio.Task) -> None:
    _background.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("server.background_failed", error=str(task.exception()))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hooks."""
    global _registry

    settings = get_settings()

    # 1. Database
    await init_db()
    logger.info("server.db_ready")

    # 2. Session registry; calibration deadlines fire on this loop
    loop = asyncio.get_running_loop()

    def _new_session(session_id: str) -> AnalysisSession:
        session = AnalysisSession(session_id=session_id, settings=settings, scheduler=loop.call_later)
        session.add_baseline_listener(lambda baseline: _spawn(_on_baseline(session_id, baseline)))
        return session

    _registry = SessionRegistry(max_sessions=settings.max_sessions, factory=_new_session)
    logger.info("server.started", port=settings.api_port)

    yield  # ← application runs

    # Shutdown
    for session_id in _registry.ids():
        _registry.remove(session_id)
    if _background:
        await asyncio.gather(*_background, return_exceptions=True)
    await dispose_engine()
    _registry = None
    logger.info("server.stopped")


async def _on_baseline(session_id: str, baseline: Baseline) -> None:
    """Persist a freshly calibrated baseline and notify stream clients."""
    await BaselineRepository().upsert(session_id, baseline)
    await ws_manager.publish(session_id, "baseline", baseline.model_dump(mode="json"))


app = FastAPI(
    title="Biosignal Fusion API",
    description="Stabilised emotion, age, attention and fatigue estimates from face-tracker features.",
    version=__version__,
    lifespan=lifespan,
)

# ── Middleware ────────────────────────────────────────────────
setup_middleware(app)


# ── Helpers ───────────────────────────────────────────────────


def _get_registry() -> SessionRegistry:
    if _registry is None:
        raise HTTPException(503, "Session registry not ready.")
    return _registry


def _get_session(session_id: str) -> AnalysisSession:
    session = _get_registry().get(session_id)
    if session is None:
        raise HTTPException(404, f"Session '{session_id}' not found.")
    return session


def _session_response(session: AnalysisSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        calibration_state=session.calibration_state,
        baseline_is_default=session.baseline.is_default,
        frames_processed=session.frames_processed,
    )


def _calibration_status(session: AnalysisSession) -> CalibrationStatus:
    return CalibrationStatus(
        state=session.calibration_state,
        remaining_seconds=round(session.calibrator.remaining(), 3),
        samples=session.calibrator.sample_count,
        baseline=session.baseline,
    )


# ── Health ────────────────────────────────────────────────────

@app.get("/health", tags=["system"])
async def health():
    return {
        "status": "ok",
        "sessions": len(_registry) if _registry is not None else 0,
        "websocket_clients": ws_manager.client_count,
        "stream": ws_manager.stats.snapshot(),
    }


# ── Sessions ──────────────────────────────────────────────────

@app.post("/sessions", status_code=201, response_model=SessionResponse, tags=["sessions"])
async def create_session(req: SessionCreateRequest | None = None):
    """Open an analysis session, restoring a persisted baseline if one exists."""
    registry = _get_registry()
    session_id = req.session_id if req is not None else None
    if session_id is not None and session_id in registry:
        raise HTTPException(409, f"Session '{session_id}' already exists.")
    try:
        session = registry.create(session_id)
    except RuntimeError as exc:
        raise HTTPException(503, str(exc)) from exc

    stored = await BaselineRepository().get(session.session_id)
    if stored is not None:
        session.calibrator.restore(stored)
    profile = await ProfileRepository().get(session.session_id)
    if profile is not None:
        session.restore_profile(profile)
    return _session_response(session)


@app.get("/sessions/{session_id}", response_model=SessionResponse, tags=["sessions"])
async def get_session(session_id: str):
    return _session_response(_get_session(session_id))


@app.delete("/sessions/{session_id}", status_code=204, tags=["sessions"])
async def delete_session(session_id: str):
    if not _get_registry().remove(session_id):
        raise HTTPException(404, f"Session '{session_id}' not found.")
    await ws_manager.close_session(session_id)


# ── Frames ────────────────────────────────────────────────────

@app.post("/sessions/{session_id}/frames", response_model=AnalysisFrame, tags=["frames"])
async def analyze_frame(session_id: str, req: FrameRequest):
    """Process one frame; ``features`` null means no face this frame."""
    session = _get_session(session_id)
    frame = session.analyze_frame(req.features, now_ms=req.timestamp_ms)
    ws_manager.stats.frames_in += 1
    await ws_manager.publish(session_id, "frame", frame.model_dump(mode="json"))
    return frame


@app.get("/sessions/{session_id}/frame", response_model=AnalysisFrame, tags=["frames"])
async def current_frame(session_id: str):
    return _get_session(session_id).current


# ── Calibration ───────────────────────────────────────────────

@app.post("/sessions/{session_id}/calibration", status_code=202, response_model=CalibrationStatus, tags=["calibration"])
async def start_calibration(session_id: str, req: CalibrationRequest | None = None):
    session = _get_session(session_id)
    try:
        session.start_calibration(restart=req.restart if req is not None else False)
    except CalibrationInProgressError as exc:
        raise HTTPException(409, str(exc)) from exc
    status = _calibration_status(session)
    await ws_manager.publish(session_id, "calibration", status.model_dump(mode="json"))
    return status


@app.delete("/sessions/{session_id}/calibration", response_model=CalibrationStatus, tags=["calibration"])
async def cancel_calibration(session_id: str):
    session = _get_session(session_id)
    session.cancel_calibration()
    return _calibration_status(session)


@app.get("/sessions/{session_id}/calibration", response_model=CalibrationStatus, tags=["calibration"])
async def calibration_status(session_id: str):
    session = _get_session(session_id)
    session.calibrator.poll()
    return _calibration_status(session)


# ── Personality ───────────────────────────────────────────────

@app.post("/sessions/{session_id}/personality", response_model=PersonalityResponse, tags=["personality"])
async def submit_personality(session_id: str, req: PersonalityRequest):
    session = _get_session(session_id)
    try:
        profile = session.submit_personality_answers(req.answers)
    except InvalidAnswersError as exc:
        raise HTTPException(422, str(exc)) from exc
    await ProfileRepository().upsert(session_id, profile)
    return PersonalityResponse(
        profile=profile,
        percentages=profile.as_percentages(),
        summary=profile.summary(),
        behavioural=session.behavioural_traits(),
    )


@app.get("/sessions/{session_id}/personality", response_model=PersonalityResponse, tags=["personality"])
async def get_personality(session_id: str):
    session = _get_session(session_id)
    profile = session.profile
    if profile is None:
        raise HTTPException(404, "No questionnaire submitted for this session.")
    return PersonalityResponse(
        profile=profile,
        percentages=profile.as_percentages(),
        summary=profile.summary(),
        behavioural=session.behavioural_traits(),
    )


# ── Deception ─────────────────────────────────────────────────

@app.get("/sessions/{session_id}/deception", response_model=DeceptionResponse, tags=["deception"])
async def deception(session_id: str, persist: bool = Query(True)):
    """Composite estimate against the active baseline, with per-metric breakdown."""
    session = _get_session(session_id)
    estimate = session.deception_estimate()
    if persist:
        await EstimateRepository().save(session_id, estimate)
    return DeceptionResponse(session_id=session_id, **estimate.model_dump())


@app.get("/sessions/{session_id}/deception/history", response_model=list[DeceptionHistoryItem], tags=["deception"])
async def deception_history(session_id: str, limit: int = Query(20, ge=1, le=500)):
    rows = await EstimateRepository().get_latest(session_id, limit=limit)
    return [
        DeceptionHistoryItem(
            probability=r.probability,
            z_scores=json.loads(r.z_scores_json),
            baseline_is_default=bool(r.baseline_is_default),
            timestamp=r.timestamp.isoformat(),
        )
        for r in rows
    ]


# ── WebSocket (real-time frame stream) ───────────────────────

@app.websocket("/ws/sessions/{session_id}")
async def ws_session(ws: WebSocket, session_id: str):
    """Bidirectional stream for one session.

    Clients may send :class:`FrameRequest` JSON messages; each is analysed
    and the resulting frame is published to every client of the session,
    together with baseline and calibration events.
    """
    registry = _registry
    if registry is None or session_id not in registry:
        await ws.close(code=4404)
        return

    await ws_manager.connect(ws, session_id)
    bind_session(session_id)
    try:
        while True:
            text = await ws.receive_text()
            session = registry.get(session_id)
            if session is None:
                break
            try:
                req = FrameRequest.model_validate_json(text)
            except ValidationError as exc:
                await ws.send_text(json.dumps({"type": "error", "data": {"detail": exc.errors(include_url=False, include_context=False)}}))
                continue
            frame = session.analyze_frame(req.features, now_ms=req.timestamp_ms)
            ws_manager.stats.frames_in += 1
            await ws_manager.publish(session_id, "frame", frame.model_dump(mode="json"))
    except WebSocketDisconnect:
        pass
    finally:
        await ws_manager.disconnect(ws, session_id)
        unbind_session()
