from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from src.api.config import RelaySettings, load_settings
from src.api.logging_config import get_logger
from src.api.rooms import RoomRegistry
from src.api.router import MessageRouter
from src.api.ws_manager import (
    INTERNAL_ERROR_CODE,
    INTERNAL_ERROR_REASON,
    INVALID_AUTH_REASON,
    POLICY_VIOLATION_CODE,
    REPLACED_CODE,
    REPLACED_REASON,
    PairingConnectionManager,
)


logger = get_logger(__name__)

HEALTH_BODY = "WebSocket relay is running"
PLAIN_HTTP_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

openapi_tags = [
    {"name": "Health", "description": "Service health endpoints."},
    {"name": "WebSockets", "description": "Token-scoped pairing channel between one desktop and one web client."},
    {"name": "Docs", "description": "Developer-facing usage helpers."},
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the in-memory room state for this run and drive the idle-room sweeper."""
    settings: RelaySettings = app.state.settings
    registry = RoomRegistry(idle_grace_seconds=settings.room_idle_grace_seconds)
    ws_manager = PairingConnectionManager(registry)
    app.state.registry = registry
    app.state.ws_manager = ws_manager
    app.state.message_router = MessageRouter(registry, ws_manager)

    sweeper: Optional[asyncio.Task] = None
    if settings.sweeper_enabled:
        sweeper = asyncio.create_task(registry.run_sweeper(settings.room_sweep_interval_seconds))
        logger.info(
            "Room sweeper started (interval=%ss, grace=%ss)",
            settings.room_sweep_interval_seconds,
            settings.room_idle_grace_seconds,
        )
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper


settings = load_settings()

app = FastAPI(
    title="Signal Relay API",
    description=(
        "Pairs one desktop and one web client under a shared token and relays signals between them.\n\n"
        "WebSocket usage:\n"
        "- Connect to: /?token={token}&role={desktop|web} (any path is accepted)\n"
        "- Server broadcasts presence status whenever either side connects or disconnects.\n"
        "- State is in-memory only; a restart drops every pairing.\n"
    ),
    version="0.1.0",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allow_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.settings = settings


# PUBLIC_INTERFACE
@app.get("/", tags=["Health"], summary="Health check", operation_id="health_check", response_class=PlainTextResponse)
def health_check() -> PlainTextResponse:
    """Plain-text liveness check served on the relay's own endpoint."""
    return PlainTextResponse(HEALTH_BODY)


# PUBLIC_INTERFACE
@app.get("/docs/ws", tags=["Docs"], summary="WebSocket usage help", operation_id="websocket_usage_help")
def websocket_usage_help() -> dict[str, Any]:
    """
    Developer help for WebSocket usage.

    Returns:
      Connection URL pattern, example frames and close codes.
    """
    return {
        "connectTo": "/?token={token}&role={desktop|web}",
        "serverSends": [
            {"type": "connected", "role": "desktop", "token": "abc"},
            {"type": "status", "desktop": True, "web": False},
            {"type": "signal", "name": "signal-1"},
            {"type": "pong"},
            {"type": "error", "message": "Peer not connected"},
        ],
        "clientMaySend": [
            {"type": "signal", "name": "signal-1"},
            {"type": "signal", "name": "signal-2"},
            {"type": "ping"},
        ],
        "closeCodes": {
            str(POLICY_VIOLATION_CODE): INVALID_AUTH_REASON,
            str(REPLACED_CODE): REPLACED_REASON,
        },
        "note": "One connection per role per token; a newer connection replaces the older one.",
    }


# PUBLIC_INTERFACE
@app.websocket("/")
@app.websocket("/{path:path}")
async def ws_relay(websocket: WebSocket, token: Optional[str] = None, role: Optional[str] = None) -> None:
    """
    WebSocket pairing channel.

    Usage:
      - Connect to /?token=<shared token>&role=desktop|web (the path itself is not interpreted)
      - Server sends 'connected' then a 'status' snapshot; 'status' is re-sent
        whenever either role connects or disconnects.
      - Client may send:
          {"type":"signal","name":"signal-1"|"signal-2"}  (relayed to the other role)
          {"type":"ping"}                                   (answered with pong)
    """
    manager: PairingConnectionManager = websocket.app.state.ws_manager
    message_router: MessageRouter = websocket.app.state.message_router

    conn = await manager.admit(websocket, token, role)
    if conn is None:
        return
    try:
        while True:
            message = await websocket.receive()
            # An evicted connection's late frames are never routed.
            if message["type"] == "websocket.disconnect" or not conn.is_open:
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            await message_router.handle(conn, raw)
    except WebSocketDisconnect:
        # normal disconnect
        pass
    except Exception:
        logger.exception("Connection %r failed", conn)
        conn.state = "closed"
        await manager.close(websocket, INTERNAL_ERROR_CODE, INTERNAL_ERROR_REASON)
    finally:
        await manager.release(conn)


# Registered last: any other plain HTTP request is answered like the health check.
@app.api_route("/{path:path}", methods=PLAIN_HTTP_METHODS, include_in_schema=False, response_class=PlainTextResponse)
def plain_http_fallback(path: str) -> PlainTextResponse:
    return PlainTextResponse(HEALTH_BODY)
