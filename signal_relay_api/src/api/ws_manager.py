from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import WebSocket

from src.api.logging_config import get_logger
from src.api.rooms import Connection, Room, RoomRegistry, is_role


logger = get_logger(__name__)

POLICY_VIOLATION_CODE = 1008
INVALID_AUTH_REASON = "Invalid token/role"
INVALID_AUTH_MESSAGE = "Invalid token or role"

REPLACED_CODE = 4000
REPLACED_REASON = "Replaced by new connection"

INTERNAL_ERROR_CODE = 1011
INTERNAL_ERROR_REASON = "Internal error"


class PairingConnectionManager:
    """Admits connections into their role slot, tears them down, and broadcasts presence."""

    def __init__(self, registry: RoomRegistry) -> None:
        self.registry = registry

    async def admit(self, websocket: WebSocket, token: Optional[str], role: Optional[str]) -> Optional[Connection]:
        """
        Accept the transport and try to seat it in the room for token.

        Returns the authenticated Connection, or None when the token/role pair was
        rejected (the transport is closed with 1008 in that case).
        """
        await websocket.accept()
        if not token or not is_role(role):
            logger.info("Rejected connection: token=%r role=%r", token, role)
            await self.send(websocket, {"type": "error", "message": INVALID_AUTH_MESSAGE})
            await self.close(websocket, POLICY_VIOLATION_CODE, INVALID_AUTH_REASON)
            return None

        conn = Connection(websocket=websocket, token=token, role=role)  # type: ignore[arg-type]
        room = self.registry.get_or_create(token)
        async with room.lock:
            prior = room.occupant(conn.role)
            if prior is not None and prior.is_open:
                logger.info("Evicting %r in favour of connection %d", prior, conn.conn_id)
                prior.state = "closed"
                await self.close(prior.websocket, REPLACED_CODE, REPLACED_REASON)
            elif prior is not None:
                prior.state = "closed"
            room.install(conn)
            conn.state = "authenticated"
            logger.info("Admitted %r", conn)
            await self.send(websocket, {"type": "connected", "role": conn.role, "token": conn.token})
            await self._broadcast_locked(room)
        return conn

    async def release(self, conn: Connection) -> None:
        """Tear down an admitted connection after close or transport error."""
        if conn.state == "connecting":
            conn.state = "closed"
            return
        conn.state = "closed"
        room = self.registry.lookup(conn.token)
        if room is None:
            return
        async with room.lock:
            cleared = room.clear(conn, self.registry.now())
            logger.info("Released %r (slot cleared=%s)", conn, cleared)
            await self._broadcast_locked(room)

    # PUBLIC_INTERFACE
    async def broadcast_status(self, token: str) -> None:
        """Push the presence snapshot for token to every open connection in its room."""
        room = self.registry.lookup(token)
        if room is None:
            return
        async with room.lock:
            await self._broadcast_locked(room)

    async def _broadcast_locked(self, room: Room) -> None:
        # Sent under the room lock so no admission or teardown interleaves with the snapshot.
        payload = json.dumps(room.to_status())
        for conn in room.open_connections():
            await self.send_text(conn.websocket, payload)

    async def send(self, websocket: WebSocket, payload: Any) -> None:
        await self.send_text(websocket, json.dumps(payload))

    async def send_text(self, websocket: WebSocket, text: str) -> None:
        # Fire-and-forget: a dead peer surfaces through its own receive loop.
        try:
            await websocket.send_text(text)
        except Exception as e:
            logger.debug("Dropped outbound frame: %s", e)

    async def close(self, websocket: WebSocket, code: int, reason: str) -> None:
        try:
            await websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug("Close with code %d failed: %s", code, e)
