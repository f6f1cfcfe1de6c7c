"""Application entrypoint — start the API server or run one-off commands."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import uvicorn

from biosignal_fusion.config import get_settings
from biosignal_fusion.logger import setup_logging


class _ReplayClock:
    """Session clock driven by recorded frame timestamps."""

    def __init__(self) -> None:
        self.now_s = 0.0

    def __call__(self) -> float:
        return self.now_s


def replay(path: Path, *, fps: float = 30.0, calibrate: bool = False, out=sys.stdout) -> int:
    """Feed a JSON-lines frame recording through a fresh session.

    Each line is a frame request (``{"features": {...} | null,
    "timestamp_ms": ...}``); frames without a timestamp are spaced at *fps*.
    Every analysis frame is written as one JSON line, followed by the final
    deception estimate.  Returns the number of frames processed.
    """
    from biosignal_fusion.api.schemas import FrameRequest
    from biosignal_fusion.fusion.session import AnalysisSession

    clock = _ReplayClock()
    session = AnalysisSession(session_id=f"replay:{path.name}", clock=clock)
    step_ms = 1000.0 / fps
    count = 0

    with path.open(encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            req = FrameRequest.model_validate_json(line)
            now_ms = req.timestamp_ms if req.timestamp_ms is not None else count * step_ms
            clock.now_s = now_ms / 1000.0
            if calibrate and count == 0:
                session.start_calibration()
            frame = session.analyze_frame(req.features, now_ms=now_ms)
            out.write(frame.model_dump_json() + "\n")
            count += 1

    estimate = session.deception_estimate()
    out.write(estimate.model_dump_json() + "\n")
    return count


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="biosignal-fusion",
        description="Stabilised affect, attention and fatigue estimates from face-tracker features.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── serve ─────────────────────────────────────────────────
    serve_parser = sub.add_parser("serve", help="Start the API server.")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # ── init-db ───────────────────────────────────────────────
    sub.add_parser("init-db", help="Create database tables.")

    # ── replay ────────────────────────────────────────────────
    replay_parser = sub.add_parser("replay", help="Run a recorded JSON-lines frame stream through a session.")
    replay_parser.add_argument("frames", type=Path)
    replay_parser.add_argument("--fps", type=float, default=30.0, help="Frame spacing when timestamps are missing.")
    replay_parser.add_argument("--calibrate", action="store_true", help="Calibrate on the opening frames.")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "serve":
        uvicorn.run(
            "biosignal_fusion.api.server:app",
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
            reload=args.reload,
        )
    elif args.command == "init-db":
        from biosignal_fusion.storage.database import init_db

        asyncio.run(init_db())
        print("Database tables created.")
    elif args.command == "replay":
        if not args.frames.is_file():
            parser.error(f"no such file: {args.frames}")
        replay(args.frames, fps=args.fps, calibrate=args.calibrate)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
