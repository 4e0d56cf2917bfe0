"""Test fixtures — isolated queue files and an in-memory transport.

Learn: every test gets its own queue/lock/pid files under tmp_path, so
nothing touches /tmp defaults and tests can't see each other's events.
Connections are FakeTransport objects: they record what the server sent
and can be told to fail or hang, which is how fan-out isolation is
tested without real sockets.
"""

import asyncio
import json
from typing import Optional

import pytest

from votecast.auth.ws_token import issue_token
from votecast.config import Settings
from votecast.realtime.broadcaster import EventBroadcaster
from votecast.realtime.queue import FileEventQueue
from votecast.realtime.server import BroadcastServer

TEST_SECRET = "test-secret"


class FakeTransport:
    """Records frames sent by the server. Can simulate broken clients."""

    def __init__(self, fail: bool = False, hang: bool = False):
        self.fail = fail
        self.hang = hang
        self.sent: list[str] = []
        self.close_code: Optional[int] = None

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("client went away")
        if self.hang:
            await asyncio.sleep(3600)
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.close_code = code

    @property
    def messages(self) -> list[dict]:
        return [json.loads(frame) for frame in self.sent]

    @property
    def last(self) -> dict:
        return self.messages[-1]

    def of_type(self, message_type: str) -> list[dict]:
        return [m for m in self.messages if m["type"] == message_type]


@pytest.fixture()
def test_settings(tmp_path):
    return Settings(
        app_secret=TEST_SECRET,
        queue_file=str(tmp_path / "queue.json"),
        queue_lock_file=str(tmp_path / "queue.lock"),
        pid_file=str(tmp_path / "votecast.pid"),
        drain_interval_seconds=0.01,
        stats_interval_seconds=60.0,
        send_timeout_seconds=0.2,
    )


@pytest.fixture()
def file_queue(test_settings):
    return FileEventQueue(
        queue_file=test_settings.queue_file,
        lock_file=test_settings.queue_lock_file,
        max_size=test_settings.queue_max_size,
    )


@pytest.fixture()
def broadcaster(file_queue):
    return EventBroadcaster(file_queue)


@pytest.fixture()
def server(file_queue, test_settings):
    return BroadcastServer(file_queue, test_settings)


@pytest.fixture()
def make_token():
    """Build a valid token signed with the test secret."""
    def _make(tenant_id: str = "t1", user_id: str = "u1", issued_at: Optional[int] = None) -> str:
        return issue_token(tenant_id, user_id, issued_at=issued_at, secret=TEST_SECRET)
    return _make


@pytest.fixture()
def connect(server, make_token):
    """Open a fake connection, optionally authenticating and subscribing it.

    Returns (session, transport). The transport's recorded frames are
    cleared after setup so tests only see what happens next.
    """
    async def _connect(
        tenant_id: Optional[str] = None,
        meetings: tuple = (),
        transport: Optional[FakeTransport] = None,
    ):
        transport = transport or FakeTransport()
        session = await server.open_connection(transport)
        if tenant_id is not None:
            await server.handle_message(session, json.dumps({
                "action": "authenticate",
                "token": make_token(tenant_id),
                "tenant_id": tenant_id,
            }))
        for meeting_id in meetings:
            await server.handle_message(session, json.dumps({
                "action": "subscribe",
                "meeting_id": meeting_id,
            }))
        transport.sent.clear()
        return session, transport
    return _connect
