"""
IntroSpect — FastAPI Server

================================================================================
Architecture:
  • One SessionController per server process (one monitoring screen)
  • Collaborators constructed once in `create_app` and injected:
      - AnalysisClient       → remote analyze / summary / TTS service
      - VitalsSource         → capture source (simulated by default)
      - HistoryStore         → in-memory, or JSON file when configured
      - AudioPlayer          → decoded clips written to disk
  • Live feedback pushed to every connected WebSocket
================================================================================

Endpoints:
  GET   /health           — server health
  POST  /session/start    — IDLE → RECORDING
  POST  /session/stop     — RECORDING → SUMMARIZING → IDLE (+ summary)
  GET   /session          — state, live feedback, telemetry
  GET   /history          — saved summaries, newest first
  GET   /settings         — feedback settings
  PATCH /settings         — update feedback settings
  WS    /ws/feedback      — live feedback stream

Server → Client messages (WS):
  { type: "feedback", data: {...} }          → live insight + expression
  { type: "summary", data: {...} }           → saved session summary
  { type: "pong" }                           → keepalive ack
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, FrozenSet, List, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .core.config import ServerConfig, api_cfg, server_cfg
from .core.interfaces import AnalysisBackend, AudioPlayer, HistoryStore, VitalsSource
from .core.models import (
    FEEDBACK_CONTENT_OPTIONS,
    FEEDBACK_FORMAT_OPTIONS,
    FeedbackSettings,
    LiveFeedback,
    SessionSummary,
)
from .processing.vitals_source import SimulatedVitalsSource
from .services.analysis_client import AnalysisClient
from .services.audio import FileAudioPlayer
from .services.history import InMemoryHistoryStore, JsonFileHistoryStore
from .services.session_controller import SessionController

logger = logging.getLogger("introspect")

VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class SettingsPatch(BaseModel):
    pulse_rate_enabled: Optional[bool] = None
    breath_rate_enabled: Optional[bool] = None
    expressions_enabled: Optional[bool] = None
    selected_feedback_content: Optional[str] = None
    selected_feedback_formats: Optional[List[str]] = None


# ---------------------------------------------------------------------------
# Feedback fan-out
# ---------------------------------------------------------------------------

class FeedbackBroadcaster:
    """Pushes controller updates to every connected WebSocket."""

    def __init__(self) -> None:
        self._clients: Set[WebSocket] = set()

    def add(self, ws: WebSocket) -> None:
        self._clients.add(ws)

    def discard(self, ws: WebSocket) -> None:
        self._clients.discard(ws)

    @property
    def count(self) -> int:
        return len(self._clients)

    async def send(self, data: Dict[str, Any]) -> None:
        text = json.dumps(data)
        for ws in list(self._clients):
            try:
                await ws.send_text(text)
            except (WebSocketDisconnect, RuntimeError):
                self._clients.discard(ws)

    async def on_feedback(self, feedback: LiveFeedback) -> None:
        await self.send({"type": "feedback", "data": feedback.to_dict()})

    async def on_summary(self, summary: SessionSummary) -> None:
        await self.send({"type": "summary", "data": summary.to_dict()})


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    backend: Optional[AnalysisBackend] = None,
    source: Optional[VitalsSource] = None,
    history: Optional[HistoryStore] = None,
    player: Optional[AudioPlayer] = None,
    settings: Optional[FeedbackSettings] = None,
    config: ServerConfig = server_cfg,
) -> FastAPI:
    owned_client: Optional[AnalysisClient] = None
    if backend is None:
        owned_client = AnalysisClient(api_cfg)
        backend = owned_client
    if history is None:
        history = (
            JsonFileHistoryStore(config.history_path)
            if config.history_path
            else InMemoryHistoryStore()
        )

    broadcaster = FeedbackBroadcaster()
    controller = SessionController(
        backend=backend,
        source=source or SimulatedVitalsSource(),
        history=history,
        settings=settings or FeedbackSettings(),
        player=player or FileAudioPlayer(config.audio_dir),
        voice_id=api_cfg.voice_id,
        on_feedback=broadcaster.on_feedback,
        on_summary=broadcaster.on_summary,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 IntroSpect backend starting...")
        logger.info(f"   Analysis service: {api_cfg.base_url}")
        yield
        logger.info("🛑 Shutting down — stopping any active session...")
        await controller.stop()
        if owned_client is not None:
            await owned_client.aclose()
        logger.info("🛑 IntroSpect backend stopped")

    app = FastAPI(
        title="IntroSpect — Live Vitals Monitor",
        version=VERSION,
        description=(
            "Streams camera-derived vitals to an analysis service, relays live "
            "insights, and saves an end-of-session summary."
        ),
        lifespan=lifespan,
    )
    app.state.controller = controller
    app.state.history = history
    app.state.broadcaster = broadcaster

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── REST ────────────────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "version": VERSION,
            "session_state": controller.state.value,
            "feedback_clients": broadcaster.count,
        }

    @app.post("/session/start")
    async def start_session():
        try:
            started = await controller.start()
        except Exception as e:
            logger.error(f"Session start failed: {e}")
            return JSONResponse(
                status_code=503,
                content={"error": f"Vitals source unavailable: {str(e)[:200]}"},
            )
        if not started:
            return JSONResponse(
                status_code=409,
                content={"error": f"session is {controller.state.value}"},
            )
        return {"started": True, **controller.status()}

    @app.post("/session/stop")
    async def stop_session():
        session_id = controller.session_id
        outcome = await controller.stop()
        if outcome is None:
            return {"stopped": False, "state": controller.state.value}
        return {
            "stopped": True,
            "session_id": session_id,
            "message": outcome.message,
            "summary": outcome.summary.to_dict() if outcome.summary else None,
        }

    @app.get("/session")
    async def session_status():
        return controller.status()

    @app.get("/history")
    async def list_history():
        return [s.to_dict() for s in history.list()]

    @app.get("/settings")
    async def get_settings():
        return {
            **controller.settings.to_dict(),
            "feedback_content_options": list(FEEDBACK_CONTENT_OPTIONS),
            "feedback_format_options": list(FEEDBACK_FORMAT_OPTIONS),
        }

    @app.patch("/settings")
    async def patch_settings(patch: SettingsPatch):
        current = controller.settings
        if (
            patch.selected_feedback_content is not None
            and patch.selected_feedback_content not in FEEDBACK_CONTENT_OPTIONS
        ):
            return JSONResponse(
                status_code=422,
                content={"error": f"unknown feedback content {patch.selected_feedback_content!r}"},
            )
        formats: Optional[FrozenSet[str]] = None
        if patch.selected_feedback_formats is not None:
            formats = frozenset(patch.selected_feedback_formats)
            unknown = formats - set(FEEDBACK_FORMAT_OPTIONS)
            if unknown or not formats:
                return JSONResponse(
                    status_code=422,
                    content={"error": "choose one or two of " + ", ".join(FEEDBACK_FORMAT_OPTIONS)},
                )

        for name in ("pulse_rate_enabled", "breath_rate_enabled", "expressions_enabled",
                     "selected_feedback_content"):
            value = getattr(patch, name)
            if value is not None:
                setattr(current, name, value)
        if formats is not None:
            current.selected_feedback_formats = formats

        logger.info(f"Settings updated: {current.to_dict()}")
        return current.to_dict()

    # ── WebSocket ───────────────────────────────────────────────────────

    @app.websocket("/ws/feedback")
    async def feedback_stream(ws: WebSocket):
        await ws.accept()
        broadcaster.add(ws)
        await ws.send_text(json.dumps({"type": "feedback", "data": controller.feedback.to_dict()}))
        try:
            while True:
                raw = await ws.receive_text()
                try:
                    msg = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    await ws.send_text(json.dumps({"type": "pong"}))
        except WebSocketDisconnect:
            logger.info("Feedback WebSocket disconnected")
        finally:
            broadcaster.discard(ws)

    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    uvicorn.run(
        "introspect.server:create_app",
        factory=True,
        host=server_cfg.host,
        port=server_cfg.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
