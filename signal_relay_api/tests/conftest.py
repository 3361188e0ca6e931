import asyncio
import json
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState

from src.api.config import RelaySettings
from src.api.rooms import RoomRegistry
from src.api.router import MessageRouter
from src.api.ws_manager import PairingConnectionManager


class FakeWebSocket:
    """In-memory stand-in for fastapi.WebSocket that records what the server sends."""

    def __init__(self, name: str = "ws") -> None:
        self.name = name
        self.application_state = WebSocketState.CONNECTING
        self.client_state = WebSocketState.CONNECTING
        self.sent: list[dict[str, Any]] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None

    async def accept(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.client_state = WebSocketState.CONNECTED

    async def send_text(self, data: str) -> None:
        if self.application_state != WebSocketState.CONNECTED:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        # Yield so concurrent handlers interleave the way they would on a real loop.
        await asyncio.sleep(0)
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        if self.application_state == WebSocketState.DISCONNECTED:
            raise RuntimeError("Unexpected ASGI message 'websocket.close'")
        self.application_state = WebSocketState.DISCONNECTED
        self.close_code = code
        self.close_reason = reason
        await asyncio.sleep(0)

    def drop(self) -> None:
        """Simulate the client going away without a close handshake."""
        self.client_state = WebSocketState.DISCONNECTED

    def frames(self, frame_type: str) -> list[dict[str, Any]]:
        return [f for f in self.sent if f.get("type") == frame_type]

    def __repr__(self) -> str:
        return f"FakeWebSocket({self.name})"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def registry():
    return RoomRegistry(idle_grace_seconds=60)


@pytest.fixture
def manager(registry):
    return PairingConnectionManager(registry)


@pytest.fixture
def message_router(registry, manager):
    return MessageRouter(registry, manager)


@pytest.fixture
def settings():
    return RelaySettings(room_sweep_interval_seconds=0)


@pytest.fixture
def app(settings, monkeypatch):
    from src.api.main import app as relay_app

    # Room state is rebuilt by the lifespan each time a TestClient starts.
    monkeypatch.setattr(relay_app.state, "settings", settings)
    return relay_app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
