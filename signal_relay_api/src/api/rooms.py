from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional

from fastapi.websockets import WebSocketState

from src.api.logging_config import get_logger


logger = get_logger(__name__)

Role = Literal["desktop", "web"]
ConnectionState = Literal["connecting", "authenticated", "closed"]

ROLES: tuple[Role, ...] = ("desktop", "web")

_conn_ids = itertools.count(1)


def is_role(value: Any) -> bool:
    return isinstance(value, str) and value in ROLES


def peer_role(role: Role) -> Role:
    return "web" if role == "desktop" else "desktop"


@dataclass(eq=False)
class Connection:
    """
    One accepted transport endpoint.

    conn_id is unique for the life of the process; slots are compared by
    identity, so a stale connection can never clear its replacement's slot.
    """

    websocket: Any
    token: str
    role: Role
    state: ConnectionState = "connecting"
    conn_id: int = field(default_factory=lambda: next(_conn_ids))

    @property
    def is_open(self) -> bool:
        if self.state != "authenticated":
            return False
        ws = self.websocket
        return ws.application_state == WebSocketState.CONNECTED and ws.client_state == WebSocketState.CONNECTED

    def __repr__(self) -> str:
        return f"Connection(id={self.conn_id}, role={self.role}, token={self.token!r}, state={self.state})"


@dataclass(eq=False)
class Room:
    token: str
    created_at: float
    empty_since: Optional[float] = None
    slots: dict[str, Optional[Connection]] = field(default_factory=lambda: {r: None for r in ROLES})
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def occupant(self, role: Role) -> Optional[Connection]:
        return self.slots[role]

    def open_occupant(self, role: Role) -> Optional[Connection]:
        conn = self.slots[role]
        if conn is not None and conn.is_open:
            return conn
        return None

    def is_present(self, role: Role) -> bool:
        return self.open_occupant(role) is not None

    def is_empty(self) -> bool:
        return all(conn is None for conn in self.slots.values())

    def install(self, conn: Connection) -> Optional[Connection]:
        """Put conn into its role's slot and return the previous occupant."""
        prior = self.slots[conn.role]
        self.slots[conn.role] = conn
        self.empty_since = None
        return prior

    def clear(self, conn: Connection, now: float) -> bool:
        """Empty conn's slot only if conn is still the occupant."""
        if self.slots[conn.role] is not conn:
            return False
        self.slots[conn.role] = None
        if self.is_empty():
            self.empty_since = now
        return True

    def open_connections(self) -> list[Connection]:
        return [conn for conn in self.slots.values() if conn is not None and conn.is_open]

    def to_status(self) -> dict[str, Any]:
        return {"type": "status", "desktop": self.is_present("desktop"), "web": self.is_present("web")}


class RoomRegistry:
    """
    Token -> Room map.

    Rooms are created on first reference. Rooms whose slots have both been empty
    for idle_grace_seconds are dropped by sweep(); everything is in-memory, so a
    restart forgets every pairing.
    """

    def __init__(self, idle_grace_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.idle_grace_seconds = idle_grace_seconds
        self._clock = clock
        self._rooms: dict[str, Room] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, token: object) -> bool:
        return token in self._rooms

    def get_or_create(self, token: str) -> Room:
        now = self._clock()
        room = self._rooms.get(token)
        if room is None:
            room = Room(token=token, created_at=now, empty_since=now)
            self._rooms[token] = room
            logger.debug("Room created for token %r (rooms=%d)", token, len(self._rooms))
        elif room.is_empty():
            # About to be occupied; restart the idle timer so sweep() leaves it alone.
            room.empty_since = now
        return room

    def lookup(self, token: str) -> Optional[Room]:
        return self._rooms.get(token)

    def now(self) -> float:
        return self._clock()

    def sweep(self, now: Optional[float] = None) -> list[str]:
        """Remove rooms idle past the grace period. Returns removed tokens."""
        if now is None:
            now = self._clock()
        removed: list[str] = []
        for token, room in list(self._rooms.items()):
            if room.lock.locked() or not room.is_empty() or room.empty_since is None:
                continue
            if now - room.empty_since >= self.idle_grace_seconds:
                del self._rooms[token]
                removed.append(token)
        if removed:
            logger.info("Swept %d idle room(s); %d remaining", len(removed), len(self._rooms))
        return removed

    async def run_sweeper(self, interval: float) -> None:
        """Call sweep() every interval seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Room sweep failed")
