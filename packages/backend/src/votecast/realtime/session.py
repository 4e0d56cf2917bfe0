"""Per-connection state.

Learn: every connection walks through a small state machine:

    CONNECTED ──authenticate──▶ AUTHENTICATED ──close/error──▶ CLOSED
        │                         │  ▲
        │                         └──┘ subscribe / unsubscribe
        └──────────────close/error───────────────────────────▶ CLOSED

"Subscribed to N meetings" is not a separate state: it is AUTHENTICATED
plus N entries in the registry. Only the connection's own control
messages move it between states, and only the server touches sessions.
"""

import asyncio
import enum
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from votecast.realtime.rooms import RoomRegistry


class Transport(Protocol):
    """The part of a WebSocket the server needs. Starlette's WebSocket fits."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class ConnectionState(str, enum.Enum):
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass
class ConnectionSession:
    connection_id: str
    transport: Transport
    registry: RoomRegistry = field(repr=False)
    state: ConnectionState = ConnectionState.CONNECTED
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Replies and broadcasts come from different tasks; one frame at a time
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @property
    def authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    @property
    def closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    @property
    def subscriptions(self) -> frozenset[str]:
        """Rooms this connection belongs to (read-only view of the registry)."""
        return self.registry.rooms_of(self.connection_id)

    async def send_text(self, text: str) -> None:
        async with self._send_lock:
            await self.transport.send_text(text)

    async def send_json(self, payload: dict[str, Any]) -> None:
        await self.send_text(json.dumps(payload))
