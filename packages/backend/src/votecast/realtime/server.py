"""Broadcast server — connections, control messages, and queue fan-out.

Learn: everything here runs on one asyncio event loop. There is one task
per WebSocket connection (see websocket.py) plus two timer tasks:

1. Drain loop — every ~100ms, take all queued events and send each one
   to the members of its room.
2. Stats loop — every 30s, log connection and room counts.

Registry and session mutations never span an await, so no locks are
needed: whichever callback runs first wins. A subscribe racing a drain
can at worst miss the one event already being delivered.

Per-connection failures stay per-connection. A dead socket during
fan-out is logged and cleaned up; the other members still get the event.
"""

import asyncio
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog

from votecast.auth.ws_token import TokenError, verify_token
from votecast.config import Settings, settings as default_settings
from votecast.events import QueuedEvent
from votecast.realtime import protocol
from votecast.realtime.protocol import (
    AuthenticateMessage,
    PingMessage,
    ProtocolError,
    SubscribeMessage,
    UnsubscribeMessage,
)
from votecast.realtime.queue import EventQueue, QueueUnavailableError
from votecast.realtime.rooms import RoomRegistry, meeting_room, tenant_room
from votecast.realtime.session import ConnectionSession, ConnectionState, Transport

logger = structlog.get_logger()

# WebSocket close codes
CLOSE_GOING_AWAY = 1001
CLOSE_INTERNAL_ERROR = 1011


@dataclass
class ServerStats:
    """Runtime counters for monitoring."""
    events_drained: int = 0
    messages_sent: int = 0
    send_failures: int = 0
    drain_errors: int = 0
    started_at: Optional[datetime] = None


class BroadcastServer:
    """Owns the room registry and every connection session.

    Usage:
        server = BroadcastServer(build_queue(settings), settings)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(self, queue: EventQueue, settings: Optional[Settings] = None):
        self.queue = queue
        self.settings = settings or default_settings
        self.registry = RoomRegistry()
        self.sessions: dict[str, ConnectionSession] = {}
        self.stats = ServerStats()
        self._tasks: list[asyncio.Task] = []
        self._running = False

    # ─── Connection lifecycle ─────────────────────────────

    async def open_connection(self, transport: Transport) -> ConnectionSession:
        """Register a new connection and greet it."""
        connection_id = str(uuid.uuid4())
        session = ConnectionSession(
            connection_id=connection_id,
            transport=transport,
            registry=self.registry,
        )
        self.sessions[connection_id] = session
        logger.info("ws.connected", connection_id=connection_id)
        try:
            await session.send_json(protocol.connected(connection_id))
        except Exception:
            await self.close_connection(session)
            raise
        return session

    async def close_connection(
        self,
        session: ConnectionSession,
        code: Optional[int] = None,
    ) -> None:
        """Move a session to CLOSED and drop it from every room.

        Safe to call more than once. Pass a close code to also close the
        underlying socket (used when the server is the one hanging up).
        """
        if session.closed:
            return
        session.state = ConnectionState.CLOSED
        self.registry.remove_connection(session.connection_id)
        self.sessions.pop(session.connection_id, None)
        logger.info("ws.closed", connection_id=session.connection_id)

        if code is not None:
            try:
                await session.transport.close(code=code)
            except Exception as e:
                # Socket already gone
                logger.debug("ws.close_failed", connection_id=session.connection_id, error=str(e))

    # ─── Control messages ─────────────────────────────────

    async def handle_message(self, session: ConnectionSession, raw: Optional[str]) -> None:
        """Apply one client control message to its session."""
        if session.closed:
            return

        try:
            message = protocol.parse_control_message(raw)
        except ProtocolError as e:
            await session.send_json(e.to_reply())
            return

        if isinstance(message, AuthenticateMessage):
            await self._authenticate(session, message)
        elif isinstance(message, SubscribeMessage):
            await self._subscribe(session, message)
        elif isinstance(message, UnsubscribeMessage):
            await self._unsubscribe(session, message)
        elif isinstance(message, PingMessage):
            await session.send_json(protocol.pong())

    async def _authenticate(self, session: ConnectionSession, message: AuthenticateMessage) -> None:
        try:
            claims = verify_token(
                message.token,
                message.tenant_id,
                secret=self.settings.app_secret,
                ttl=self.settings.token_ttl_seconds,
            )
        except TokenError as e:
            # The reason stays in the log; the client gets a generic error
            logger.info("ws.auth_failed", connection_id=session.connection_id, reason=str(e))
            await session.send_json(protocol.auth_error())
            return

        if session.authenticated and session.tenant_id != claims.tenant_id:
            # Switching identity: nothing from the old tenant may leak through
            self.registry.remove_connection(session.connection_id)

        session.state = ConnectionState.AUTHENTICATED
        session.tenant_id = claims.tenant_id
        session.user_id = claims.user_id
        self.registry.join(session.connection_id, tenant_room(claims.tenant_id))

        logger.info(
            "ws.authenticated",
            connection_id=session.connection_id,
            tenant_id=claims.tenant_id,
            user_id=claims.user_id,
        )
        await session.send_json(protocol.authenticated(claims.tenant_id))

    async def _subscribe(self, session: ConnectionSession, message: SubscribeMessage) -> None:
        if not session.authenticated:
            await session.send_json(protocol.error("Not authenticated"))
            return

        self.registry.join(session.connection_id, meeting_room(message.meeting_id))
        logger.info("ws.subscribed", connection_id=session.connection_id, meeting_id=message.meeting_id)
        await session.send_json(protocol.subscribed(message.meeting_id))

    async def _unsubscribe(self, session: ConnectionSession, message: UnsubscribeMessage) -> None:
        if not session.authenticated:
            await session.send_json(protocol.error("Not authenticated"))
            return

        self.registry.leave(session.connection_id, meeting_room(message.meeting_id))
        logger.info("ws.unsubscribed", connection_id=session.connection_id, meeting_id=message.meeting_id)
        await session.send_json(protocol.unsubscribed(message.meeting_id))

    # ─── Queue fan-out ────────────────────────────────────

    async def drain_once(self) -> int:
        """Drain the queue and deliver every event. Returns events drained.

        If the queue can't be reached this cycle is skipped; the next tick
        tries again.
        """
        try:
            events = await self.queue.adrain_all()
        except QueueUnavailableError as e:
            self.stats.drain_errors += 1
            logger.warning("ws.drain_skipped", error=str(e))
            return 0

        for event in events:
            await self._deliver(event)

        self.stats.events_drained += len(events)
        return len(events)

    def _recipients(self, event: QueuedEvent) -> list[ConnectionSession]:
        if event.target == "meeting":
            ids = self.registry.members_of(meeting_room(event.meeting_id))
        elif event.target == "tenant":
            ids = self.registry.members_of(tenant_room(event.tenant_id))
        else:
            # "all" means every open connection, authenticated or not
            return list(self.sessions.values())
        return [self.sessions[cid] for cid in ids if cid in self.sessions]

    async def _deliver(self, event: QueuedEvent) -> None:
        recipients = self._recipients(event)
        if not recipients:
            return

        text = json.dumps(event.to_message(protocol.utc_timestamp()))
        results = await asyncio.gather(*(self._send(session, text) for session in recipients))

        logger.debug(
            "ws.broadcast",
            event_type=event.type,
            target=event.target,
            meeting_id=event.meeting_id,
            tenant_id=event.tenant_id,
            delivered=sum(results),
            recipients=len(recipients),
        )

    async def _send(self, session: ConnectionSession, text: str) -> bool:
        """Send to one recipient. Failures close that connection only."""
        try:
            await asyncio.wait_for(
                session.send_text(text),
                timeout=self.settings.send_timeout_seconds,
            )
        except Exception as e:
            self.stats.send_failures += 1
            logger.warning(
                "ws.send_failed",
                connection_id=session.connection_id,
                error=repr(e),
            )
            await self.close_connection(session, code=CLOSE_INTERNAL_ERROR)
            return False
        self.stats.messages_sent += 1
        return True

    # ─── Timers ───────────────────────────────────────────

    async def start(self) -> None:
        """Start the drain and stats timers on the running loop."""
        self._running = True
        self.stats.started_at = datetime.now(timezone.utc)
        self._tasks = [
            asyncio.create_task(self._drain_loop()),
            asyncio.create_task(self._stats_loop()),
        ]
        logger.info(
            "ws.server_started",
            drain_interval=self.settings.drain_interval_seconds,
            queue_max_size=self.queue.max_size,
        )

    async def _drain_loop(self) -> None:
        while self._running:
            try:
                await self.drain_once()
            except Exception:
                logger.exception("ws.drain_error")
            await asyncio.sleep(self.settings.drain_interval_seconds)

    async def _stats_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.stats_interval_seconds)
            logger.info(
                "ws.stats",
                connections=len(self.sessions),
                rooms=len(self.registry),
            )

    async def stop(self) -> None:
        """Cancel the timers and hang up on every remaining client."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        for session in list(self.sessions.values()):
            await self.close_connection(session, code=CLOSE_GOING_AWAY)
        logger.info("ws.server_stopped", stats=self.get_stats())

    def get_stats(self) -> dict:
        """Return server statistics for monitoring."""
        return {
            "total_connections": len(self.sessions),
            "authenticated_connections": sum(
                1 for s in self.sessions.values() if s.authenticated
            ),
            "rooms": self.registry.room_counts(),
            "events_drained": self.stats.events_drained,
            "messages_sent": self.stats.messages_sent,
            "send_failures": self.stats.send_failures,
            "drain_errors": self.stats.drain_errors,
            "started_at": (
                self.stats.started_at.isoformat()
                if self.stats.started_at
                else None
            ),
        }
