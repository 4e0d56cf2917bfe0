"""Redis-backed event queue tests.

Learn: no live Redis here — the client is a MagicMock whose pipeline
records calls. What matters is the command sequence (RPUSH+LTRIM and
LRANGE+DEL, each in one MULTI) and the fallback behavior when Redis
raises.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import redis

from votecast.events import QueuedEvent
from votecast.realtime.queue import (
    FileEventQueue,
    QueueUnavailableError,
    RedisEventQueue,
    build_queue,
)

KEY = "votecast:ws:event_queue"


def _client_with_pipeline(execute_result=None, execute_error=None):
    client = MagicMock()
    pipe = MagicMock()
    if execute_error is not None:
        pipe.execute.side_effect = execute_error
    else:
        pipe.execute.return_value = execute_result
    client.pipeline.return_value = pipe
    return client, pipe


def _async_client_with_pipeline(execute_result=None, execute_error=None):
    client = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=execute_result, side_effect=execute_error)
    client.pipeline.return_value = pipe
    return client, pipe


def _broken_fallback(tmp_path):
    return FileEventQueue(
        queue_file=str(tmp_path / "queue.json"),
        lock_file=str(tmp_path / "gone" / "queue.lock"),
    )


def test_append_pushes_and_trims_in_one_transaction():
    client, pipe = _client_with_pipeline(execute_result=[1, True])
    queue = RedisEventQueue(client, KEY, max_size=1000)
    event = QueuedEvent.for_meeting("M1", "motion.opened", {"motion_id": "X"})

    queue.append(event)

    client.pipeline.assert_called_once_with(transaction=True)
    pipe.rpush.assert_called_once_with(KEY, event.model_dump_json())
    pipe.ltrim.assert_called_once_with(KEY, -1000, -1)
    pipe.execute.assert_called_once()


def test_drain_reads_and_deletes_in_one_transaction():
    events = [QueuedEvent.for_meeting("M1", "vote.cast", {"n": n}) for n in range(3)]
    client, pipe = _client_with_pipeline(
        execute_result=[[e.model_dump_json() for e in events], 1],
    )
    queue = RedisEventQueue(client, KEY)

    drained = queue.drain_all()

    pipe.lrange.assert_called_once_with(KEY, 0, -1)
    pipe.delete.assert_called_once_with(KEY)
    assert [e.data["n"] for e in drained] == [0, 1, 2]


def test_drain_of_missing_key():
    client, _ = _client_with_pipeline(execute_result=[[], 0])
    assert RedisEventQueue(client, KEY).drain_all() == []


def test_append_without_fallback_raises_when_redis_down():
    client, _ = _client_with_pipeline(execute_error=redis.ConnectionError("down"))
    queue = RedisEventQueue(client, KEY)
    with pytest.raises(QueueUnavailableError):
        queue.append(QueuedEvent.for_all("notice"))


def test_drain_without_fallback_raises_when_redis_down():
    client, _ = _client_with_pipeline(execute_error=redis.ConnectionError("down"))
    with pytest.raises(QueueUnavailableError):
        RedisEventQueue(client, KEY).drain_all()


def test_outage_parks_events_in_fallback(file_queue):
    client, _ = _client_with_pipeline(execute_error=redis.ConnectionError("down"))
    queue = RedisEventQueue(client, KEY, fallback=file_queue)

    queue.append(QueuedEvent.for_meeting("M1", "vote.cast", {"n": 1}))

    drained = queue.drain_all()
    assert [e.data["n"] for e in drained] == [1]


def test_parked_events_drained_after_recovery(file_queue):
    """Events parked during an outage merge with Redis ones in queued_at order."""
    parked = QueuedEvent(target="meeting", meeting_id="M1", type="vote.cast", data={"n": 1}, queued_at=100.0)
    live = QueuedEvent(target="meeting", meeting_id="M1", type="vote.cast", data={"n": 2}, queued_at=200.0)
    file_queue.append(parked)

    client, _ = _client_with_pipeline(execute_result=[[live.model_dump_json()], 1])
    queue = RedisEventQueue(client, KEY, fallback=file_queue)

    assert [e.data["n"] for e in queue.drain_all()] == [1, 2]
    assert file_queue.drain_all() == []


def test_build_queue_selects_backend(test_settings):
    assert isinstance(build_queue(test_settings), FileEventQueue)

    redis_settings = test_settings.model_copy(update={"queue_backend": "redis"})
    queue = build_queue(redis_settings)
    assert isinstance(queue, RedisEventQueue)
    assert queue.key == redis_settings.redis_queue_key
    assert isinstance(queue.fallback, FileEventQueue)
    assert queue.fallback.queue_file == test_settings.queue_file
    assert queue.async_client is not None
    assert queue.client.connection_pool.connection_kwargs["socket_timeout"] == 1.0
    assert queue.async_client.connection_pool.connection_kwargs["socket_connect_timeout"] == 1.0


def test_fallback_failure_keeps_drained_redis_events(tmp_path):
    event = QueuedEvent.for_meeting("M1", "vote.cast", {"n": 1})
    client, pipe = _client_with_pipeline(execute_result=[[event.model_dump_json()], 1])
    queue = RedisEventQueue(client, KEY, fallback=_broken_fallback(tmp_path))

    drained = queue.drain_all()

    pipe.delete.assert_called_once_with(KEY)
    assert drained == [event]


def test_drain_raises_when_redis_and_fallback_both_fail(tmp_path):
    client, _ = _client_with_pipeline(execute_error=redis.ConnectionError("down"))
    queue = RedisEventQueue(client, KEY, fallback=_broken_fallback(tmp_path))
    with pytest.raises(QueueUnavailableError):
        queue.drain_all()


def test_merged_drain_keeps_newest_max_size(file_queue):
    for ts in (1.0, 2.0, 3.0):
        file_queue.append(QueuedEvent(target="all", type="notice", data={"ts": ts}, queued_at=ts))
    live = [QueuedEvent(target="all", type="notice", data={"ts": ts}, queued_at=ts) for ts in (4.0, 5.0)]
    client, _ = _client_with_pipeline(execute_result=[[e.model_dump_json() for e in live], 1])
    queue = RedisEventQueue(client, KEY, max_size=3, fallback=file_queue)

    assert [e.data["ts"] for e in queue.drain_all()] == [3.0, 4.0, 5.0]


# ═══════════════════════════════════════════════════════════
# Server-side drain over redis.asyncio
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_async_drain_uses_async_client(file_queue):
    event = QueuedEvent.for_tenant("t1", "meeting.status_changed", {"status": "open"})
    client, _ = _client_with_pipeline()
    async_client, pipe = _async_client_with_pipeline(execute_result=[[event.model_dump_json()], 1])
    queue = RedisEventQueue(client, KEY, fallback=file_queue, async_client=async_client)

    assert await queue.adrain_all() == [event]
    async_client.pipeline.assert_called_once_with(transaction=True)
    pipe.lrange.assert_called_once_with(KEY, 0, -1)
    pipe.delete.assert_called_once_with(KEY)
    client.pipeline.assert_not_called()


@pytest.mark.asyncio
async def test_async_drain_falls_back_when_redis_down(file_queue):
    parked = QueuedEvent.for_meeting("M1", "vote.cast", {"n": 1})
    file_queue.append(parked)
    client, _ = _client_with_pipeline()
    async_client, _ = _async_client_with_pipeline(execute_error=redis.TimeoutError("timed out"))
    queue = RedisEventQueue(client, KEY, fallback=file_queue, async_client=async_client)

    assert await queue.adrain_all() == [parked]


@pytest.mark.asyncio
async def test_ping_and_close_use_async_client():
    client, _ = _client_with_pipeline()
    async_client = MagicMock()
    async_client.ping = AsyncMock(return_value=True)
    async_client.aclose = AsyncMock()
    queue = RedisEventQueue(client, KEY, async_client=async_client)

    await queue.ping()
    await queue.aclose()

    async_client.ping.assert_awaited_once()
    client.ping.assert_not_called()
    async_client.aclose.assert_awaited_once()
    client.close.assert_called_once()
