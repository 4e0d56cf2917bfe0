"""Durable event queue — hand-off between producer processes and the server.

Learn: request handlers run in their own processes and can't talk to the
broadcast server's sockets. Instead they append events to a shared,
bounded queue, and the server drains it on a timer.

Two backends:
1. File — a JSON array guarded by an exclusive flock() on a lock file.
   flock() serializes access across processes, not just threads.
2. Redis — RPUSH/LTRIM and LRANGE/DEL inside MULTI transactions.
   If Redis is down, producers park events in a fallback file queue and
   the server drains both, so an outage doesn't strand events. The
   server side talks to Redis through redis.asyncio.

Both are bounded with drop-oldest backpressure: a live UI cares about the
most recent state, not the full history.
"""

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from typing import Iterator, Optional, Protocol

import redis
import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError

from votecast.config import Settings
from votecast.events import QueuedEvent

logger = structlog.get_logger()


class QueueUnavailableError(Exception):
    """Raised when the queue's storage or lock can't be used."""


class EventQueue(Protocol):
    max_size: int

    def append(self, event: QueuedEvent) -> None: ...

    def drain_all(self) -> list[QueuedEvent]: ...

    async def adrain_all(self) -> list[QueuedEvent]: ...

    async def aclose(self) -> None: ...


def _decode_events(raw_items: list, source: str) -> list[QueuedEvent]:
    """Validate stored entries, skipping any that don't parse."""
    events = []
    for item in raw_items:
        try:
            if isinstance(item, (str, bytes)):
                events.append(QueuedEvent.model_validate_json(item))
            else:
                events.append(QueuedEvent.model_validate(item))
        except ValidationError as e:
            logger.warning("queue.invalid_entry", source=source, error=str(e))
    return events


# ─── File backend ───────────────────────────────────────────


class FileEventQueue:
    """Bounded FIFO stored as a JSON array, locked with flock()."""

    def __init__(self, queue_file: str, lock_file: str, max_size: int = 1000):
        self.queue_file = queue_file
        self.lock_file = lock_file
        self.max_size = max_size

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the exclusive cross-process lock. Blocks until acquired."""
        try:
            fd = os.open(self.lock_file, os.O_RDWR | os.O_CREAT, 0o666)
        except OSError as e:
            raise QueueUnavailableError(f"cannot open lock file {self.lock_file}: {e}") from e
        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
            except OSError as e:
                raise QueueUnavailableError(f"cannot lock {self.lock_file}: {e}") from e
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def _read(self) -> list:
        try:
            with open(self.queue_file, encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError:
            return []
        if not content.strip():
            return []
        try:
            items = json.loads(content)
        except json.JSONDecodeError:
            # A crash mid-write on a non-atomic filesystem; start over
            logger.warning("queue.corrupt_file", path=self.queue_file)
            return []
        if not isinstance(items, list):
            logger.warning("queue.corrupt_file", path=self.queue_file)
            return []
        return items

    def _write(self, items: list) -> None:
        """Replace the queue file atomically (temp file + rename)."""
        directory = os.path.dirname(os.path.abspath(self.queue_file))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".votecast-queue-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                # Producers may run as a different user than the server
                os.fchmod(f.fileno(), 0o664)
                json.dump(items, f)
            os.replace(tmp_path, self.queue_file)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def append(self, event: QueuedEvent) -> None:
        """Append an event, evicting the oldest ones past max_size."""
        with self._locked():
            try:
                items = self._read()
                items.append(event.model_dump(mode="json"))
                if len(items) > self.max_size:
                    items = items[-self.max_size:]
                self._write(items)
            except OSError as e:
                raise QueueUnavailableError(f"cannot write {self.queue_file}: {e}") from e

    def drain_all(self) -> list[QueuedEvent]:
        """Take every pending event and leave the queue empty."""
        with self._locked():
            try:
                items = self._read()
                if items:
                    self._write([])
            except OSError as e:
                raise QueueUnavailableError(f"cannot drain {self.queue_file}: {e}") from e
        return _decode_events(items, source="file")

    async def adrain_all(self) -> list[QueuedEvent]:
        # The lock is only held for one read and one rename
        return self.drain_all()

    async def aclose(self) -> None:
        pass


# ─── Redis backend ──────────────────────────────────────────


class RedisEventQueue:
    """Bounded FIFO in a Redis list, with an optional file fallback.

    Producers use the blocking client. The broadcast server drains through
    the asyncio client so a slow Redis never stalls its event loop.
    """

    def __init__(
        self,
        client: redis.Redis,
        key: str,
        max_size: int = 1000,
        fallback: Optional[FileEventQueue] = None,
        async_client: Optional[aioredis.Redis] = None,
    ):
        self.client = client
        self.key = key
        self.max_size = max_size
        self.fallback = fallback
        self.async_client = async_client

    def append(self, event: QueuedEvent) -> None:
        payload = event.model_dump_json()
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.rpush(self.key, payload)
            pipe.ltrim(self.key, -self.max_size, -1)
            pipe.execute()
        except redis.RedisError as e:
            if self.fallback is None:
                raise QueueUnavailableError(f"redis push failed: {e}") from e
            logger.warning("queue.redis_push_failed", error=str(e), fallback=self.fallback.queue_file)
            self.fallback.append(event)

    def drain_all(self) -> list[QueuedEvent]:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.lrange(self.key, 0, -1)
            pipe.delete(self.key)
            raw, _ = pipe.execute()
        except redis.RedisError as e:
            logger.warning("queue.redis_drain_failed", error=str(e))
            return self._merge_fallback([], e)
        return self._merge_fallback(raw or [], None)

    async def adrain_all(self) -> list[QueuedEvent]:
        if self.async_client is None:
            return self.drain_all()
        try:
            pipe = self.async_client.pipeline(transaction=True)
            pipe.lrange(self.key, 0, -1)
            pipe.delete(self.key)
            raw, _ = await pipe.execute()
        except redis.RedisError as e:
            logger.warning("queue.redis_drain_failed", error=str(e))
            return self._merge_fallback([], e)
        return self._merge_fallback(raw or [], None)

    def _merge_fallback(
        self,
        raw: list,
        redis_error: Optional[Exception],
    ) -> list[QueuedEvent]:
        """Add events parked in the fallback file, oldest first.

        Events already taken out of Redis are returned even when the
        fallback can't be drained; they are gone from Redis either way.
        """
        events = _decode_events(raw, source="redis")
        if self.fallback is None:
            if redis_error is not None:
                raise QueueUnavailableError(f"redis drain failed: {redis_error}") from redis_error
            return events

        try:
            parked = self.fallback.drain_all()
        except QueueUnavailableError as e:
            if redis_error is not None:
                raise QueueUnavailableError(
                    f"redis drain failed: {redis_error}; fallback: {e}"
                ) from e
            logger.warning("queue.fallback_drain_failed", error=str(e))
            return events

        if parked:
            events.extend(parked)
            events.sort(key=lambda ev: ev.queued_at)
            if len(events) > self.max_size:
                logger.warning("queue.merge_overflow", dropped=len(events) - self.max_size)
                events = events[-self.max_size:]
        return events

    async def ping(self) -> None:
        """Round-trip to Redis. Raises redis.RedisError when unreachable."""
        if self.async_client is None:
            self.client.ping()
        else:
            await self.async_client.ping()

    async def aclose(self) -> None:
        if self.async_client is not None:
            await self.async_client.aclose()
        self.client.close()


def build_queue(settings: Settings) -> EventQueue:
    """Build the queue backend selected by settings."""
    file_queue = FileEventQueue(
        queue_file=settings.queue_file,
        lock_file=settings.queue_lock_file,
        max_size=settings.queue_max_size,
    )
    if settings.queue_backend == "redis":
        # Bounded socket waits: a blackholed Redis fails fast instead of hanging
        timeouts = {
            "socket_timeout": settings.redis_socket_timeout_seconds,
            "socket_connect_timeout": settings.redis_socket_timeout_seconds,
        }
        return RedisEventQueue(
            redis.Redis.from_url(settings.redis_url, decode_responses=True, **timeouts),
            key=settings.redis_queue_key,
            max_size=settings.queue_max_size,
            fallback=file_queue,
            async_client=aioredis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                **timeouts,
            ),
        )
    return file_queue
