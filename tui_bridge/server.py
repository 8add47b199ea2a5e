"""
FastAPI server for TUI Bridge.

Provides:
- WebSocket endpoint bridging one client to one freshly spawned program
- Health check
- Session listing and terminal resize
- Optional token authentication
"""

import asyncio
import logging
import os
import secrets
from typing import Optional

from fastapi import FastAPI, Query, WebSocket
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from . import __version__
from .config import Config
from .process import spawn_program
from .session import CLOSE_GOING_AWAY, MODES, SessionBridge, Spawner

logger = logging.getLogger(__name__)

CLOSE_UNAUTHORIZED = 4001
CLOSE_BAD_MODE = 4400
MAX_REASON_BYTES = 123  # RFC 6455 close frame limit


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the bridge's Connection protocol."""

    def __init__(self, websocket: WebSocket):
        self._ws = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return (
            self._closed
            or self._ws.client_state == WebSocketState.DISCONNECTED
            or self._ws.application_state == WebSocketState.DISCONNECTED
        )

    async def send(self, message: dict) -> None:
        await self._ws.send_json(message)

    async def receive(self) -> Optional[str]:
        while not self._closed:
            message = await self._ws.receive()
            msg_type = message.get("type", "")
            if msg_type == "websocket.disconnect":
                self._closed = True
                return None
            if message.get("text") is not None:
                return message["text"]
            if message.get("bytes") is not None:
                return message["bytes"].decode("utf-8", errors="replace")
        return None

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self._closed = True
        reason = reason.encode("utf-8")[:MAX_REASON_BYTES].decode("utf-8", errors="ignore")
        await self._ws.close(code=code, reason=reason)


def create_app(config: Config, spawner: Optional[Spawner] = None) -> FastAPI:
    """
    Create FastAPI application with configured routes.

    Args:
        config: Configuration instance.
        spawner: Program spawner, defaults to spawn_program.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="TUI Bridge",
        description="Bridge an interactive terminal program to websocket clients",
        version=__version__,
    )

    # Store config and state on app
    app.state.config = config
    app.state.no_auth = config.no_auth
    app.state.token = None if config.no_auth else (config.token or secrets.token_urlsafe(16))
    app.state.classifier = config.filter.classifier()
    app.state.spawner = spawner or spawn_program
    app.state.sessions = {}  # session id -> SessionBridge

    def authorized(token: Optional[str]) -> bool:
        return app.state.no_auth or token == app.state.token

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"ok": True, "pid": os.getpid()}

    @app.get("/config")
    async def get_config(token: Optional[str] = Query(None)):
        """Return the resolved configuration."""
        if not authorized(token):
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return app.state.config.to_dict()

    @app.get("/api/sessions")
    async def list_sessions(token: Optional[str] = Query(None)):
        """List live sessions."""
        if not authorized(token):
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return {"sessions": [s.info() for s in app.state.sessions.values()]}

    @app.post("/api/sessions/{session_id}/resize")
    async def resize_session(
        session_id: str,
        cols: int = Query(..., ge=1, le=1000),
        rows: int = Query(..., ge=1, le=1000),
        token: Optional[str] = Query(None),
    ):
        """Resize a session's terminal."""
        if not authorized(token):
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        session = app.state.sessions.get(session_id)
        if session is None:
            return JSONResponse({"error": "Session not found"}, status_code=404)
        try:
            session.resize(cols, rows)
        except OSError as e:
            return JSONResponse({"error": str(e)}, status_code=500)
        return {"status": "ok", "cols": cols, "rows": rows}

    async def bridge_websocket(
        websocket: WebSocket,
        token: Optional[str] = Query(None),
        mode: Optional[str] = Query(None),
    ):
        """WebSocket endpoint: one connection, one program."""
        if not authorized(token):
            await websocket.close(code=CLOSE_UNAUTHORIZED)
            return

        await websocket.accept()
        if mode is not None and mode not in MODES:
            await websocket.close(code=CLOSE_BAD_MODE, reason=f"unknown-mode:{mode}"[:MAX_REASON_BYTES])
            return

        session = SessionBridge(
            WebSocketConnection(websocket),
            config.program_spec(),
            classifier=app.state.classifier,
            settings=config.session_settings(mode),
            spawner=app.state.spawner,
        )
        app.state.sessions[session.id] = session
        logger.info(f"WebSocket connection accepted, session {session.id}")

        try:
            await session.run()
        finally:
            app.state.sessions.pop(session.id, None)
            logger.info(f"WebSocket connection closed, session {session.id}")

    # Clients may connect on either path
    app.add_api_websocket_route("/", bridge_websocket)
    app.add_api_websocket_route("/ws", bridge_websocket)

    @app.on_event("startup")
    async def startup():
        url = f"ws://localhost:{config.port}/"
        if not app.state.no_auth:
            url += f"?token={app.state.token}"
        print(f"\n{'=' * 60}")
        print(f"TUI Bridge v{__version__}")
        print(f"{'=' * 60}")
        print(f"Command: {' '.join(config.program_spec().argv())}")
        print(f"Mode:    {config.mode} ({config.transport}, profile {config.filter.profile})")
        print(f"Auth:    {'DISABLED' if app.state.no_auth else 'token'}")
        print(f"URL:     {url}")
        print(f"{'=' * 60}\n")

    @app.on_event("shutdown")
    async def shutdown():
        """Close every live session."""
        sessions = list(app.state.sessions.values())
        if sessions:
            logger.info(f"Closing {len(sessions)} session(s)")
        await asyncio.gather(
            *(s.close("server-shutdown", code=CLOSE_GOING_AWAY) for s in sessions),
            return_exceptions=True,
        )

    return app
