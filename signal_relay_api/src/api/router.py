from __future__ import annotations

import json
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError

from src.api.logging_config import get_logger
from src.api.rooms import Connection, RoomRegistry, peer_role
from src.api.ws_manager import PairingConnectionManager


logger = get_logger(__name__)

SignalName = Literal["signal-1", "signal-2"]

INVALID_JSON_MESSAGE = "Invalid JSON"
PEER_NOT_CONNECTED_MESSAGE = "Peer not connected"


class SignalFrame(BaseModel):
    type: Literal["signal"] = Field(..., description="Frame discriminator.")
    name: SignalName = Field(..., description="Opaque signal identifier relayed to the peer.")


def _decode(raw: Union[str, bytes]) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw)


class MessageRouter:
    """Interprets inbound frames from an authenticated connection."""

    def __init__(self, registry: RoomRegistry, manager: PairingConnectionManager) -> None:
        self.registry = registry
        self.manager = manager

    async def handle(self, conn: Connection, raw: Union[str, bytes]) -> None:
        try:
            msg = _decode(raw)
        except (ValueError, UnicodeDecodeError, RecursionError):
            logger.warning("Unparseable frame from %r", conn)
            await self.manager.send(conn.websocket, {"type": "error", "message": INVALID_JSON_MESSAGE})
            return

        # Non-objects and unknown types are ignored so newer clients can add frame types.
        if not isinstance(msg, dict):
            return
        msg_type = msg.get("type")

        if msg_type == "signal":
            try:
                frame = SignalFrame.model_validate(msg)
            except ValidationError:
                return
            await self._forward_signal(conn, frame)
            return

        if msg_type == "ping":
            await self.manager.send(conn.websocket, {"type": "pong"})
            return

    async def _forward_signal(self, conn: Connection, frame: SignalFrame) -> None:
        room = self.registry.lookup(conn.token)
        if room is None:
            await self.manager.send(conn.websocket, {"type": "error", "message": PEER_NOT_CONNECTED_MESSAGE})
            return
        async with room.lock:
            peer = room.open_occupant(peer_role(conn.role))
            if peer is None:
                logger.info("Dropped %s from %r: peer not connected", frame.name, conn)
                await self.manager.send(conn.websocket, {"type": "error", "message": PEER_NOT_CONNECTED_MESSAGE})
                return
            await self.manager.send(peer.websocket, {"type": "signal", "name": frame.name})
