"""WebSocket connection manager — per-session fan-out of analysis events."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from fastapi import WebSocket

logger = structlog.get_logger(__name__)


# ── Streaming statistics ─────────────────────────────────────

@dataclass
class StreamStats:
    """Aggregate counters reported by ``/health``."""
    frames_in: int = 0
    messages_out: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def snapshot(self) -> dict[str, Any]:
        return {
            "uptime_seconds": round(time.monotonic() - self.started_at),
            "frames_in": self.frames_in,
            "messages_out": self.messages_out,
        }


class ConnectionManager:
    """Track WebSocket clients per analysis session and broadcast to them.

    A client connected to ``/ws/sessions/{id}`` receives every event
    published for that session (analysis frames, baseline updates,
    calibration state changes).
    """

    def __init__(self) -> None:
        self._connections: dict[str, list[WebSocket]] = {}
        self._lock = asyncio.Lock()
        self.stats = StreamStats()

    # ── Connection lifecycle ──────────────────────────────────

    async def connect(self, ws: WebSocket, session_id: str) -> None:
        await ws.accept()
        async with self._lock:
            self._connections.setdefault(session_id, []).append(ws)
        logger.info("ws.connected", session_id=session_id, total=self.client_count)

    async def disconnect(self, ws: WebSocket, session_id: str) -> None:
        async with self._lock:
            clients = self._connections.get(session_id, [])
            if ws in clients:
                clients.remove(ws)
            if not clients:
                self._connections.pop(session_id, None)
        logger.info("ws.disconnected", session_id=session_id, total=self.client_count)

    async def close_session(self, session_id: str) -> None:
        """Close every client of a removed session."""
        async with self._lock:
            clients = self._connections.pop(session_id, [])
        for ws in clients:
            await ws.close(code=1000)

    @property
    def client_count(self) -> int:
        return sum(len(c) for c in self._connections.values())

    # ── Broadcasting ──────────────────────────────────────────

    async def publish(self, session_id: str, msg_type: str, data: dict[str, Any]) -> None:
        """Send ``{"type": msg_type, "data": data}`` to all clients of a session."""
        targets = list(self._connections.get(session_id, []))
        if not targets:
            return

        payload = json.dumps({"type": msg_type, "data": data}, default=_json_default)
        dead: list[WebSocket] = []
        for ws in targets:
            try:
                await ws.send_text(payload)
            except (RuntimeError, ConnectionError) as exc:
                logger.debug("ws.send_failed", session_id=session_id, error=str(exc))
                dead.append(ws)
            else:
                self.stats.messages_out += 1

        for ws in dead:
            await self.disconnect(ws, session_id)


# ── Shared instance ──────────────────────────────────────────

ws_manager = ConnectionManager()


def _json_default(obj: Any) -> Any:
    """Fallback JSON serialiser for datetime etc."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Not serialisable: {type(obj)}")
