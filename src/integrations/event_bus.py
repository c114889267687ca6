"""
Cross-process push relay over PostgreSQL LISTEN/NOTIFY.

Every process publishes the events it delivers locally and relays the events
published by its peers to its own websocket subscribers. Envelopes carry the
publishing process id so a process never re-delivers its own events.

Ordering: publishes for one chatroom are serialized by a per-room lock and
each NOTIFY completes before the next starts, while different rooms publish in
parallel over a small connection pool. Received notifications are handled one
at a time from a queue, so a room's events arrive at peers in the order they
were published.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
import weakref

from collections.abc import Awaitable, Callable
from typing import Any

import asyncpg

from pydantic import ValidationError

from core.constants import BUS_PAYLOAD_MAX_BYTES, BUS_PUBLISH_CONNECTIONS
from models.event_models import BusEnvelope
from utils.json_utils import json_compact
from utils.logger import logger

TRUNCATED_CONTENT_MARKER = "[truncated]"

EnvelopeHandler = Callable[[BusEnvelope], Awaitable[None]]


def encode_envelope(envelope: BusEnvelope, max_bytes: int = BUS_PAYLOAD_MAX_BYTES) -> str:
    """Serialize an envelope, shrinking it to fit the NOTIFY payload limit.

    An oversized ``content`` field is replaced by a marker first; if the
    payload is still too large the data is dropped entirely.
    """
    encoded = json_compact(envelope.model_dump())
    if len(encoded.encode("utf-8")) <= max_bytes:
        return encoded

    data = dict(envelope.data)
    if "content" in data:
        data["content"] = TRUNCATED_CONTENT_MARKER
        shrunk = envelope.model_copy(update={"data": data, "truncated": True})
        encoded = json_compact(shrunk.model_dump())
        if len(encoded.encode("utf-8")) <= max_bytes:
            return encoded

    logger.warning(f"Bus payload for {envelope.type} exceeds {max_bytes} bytes, sending without data")
    bare = envelope.model_copy(update={"data": {}, "truncated": True})
    return json_compact(bare.model_dump())


def decode_envelope(payload: str) -> BusEnvelope | None:
    try:
        return BusEnvelope.model_validate(json.loads(payload))
    except (ValueError, ValidationError) as e:
        logger.warning(f"Ignoring malformed bus payload: {e}")
        return None


class PostgresEventBus:
    """Publish/subscribe over PostgreSQL notifications.

    Usage:
        bus = PostgresEventBus(settings.database_url)
        bus.subscribe(BUS_CHANNEL_EVENTS, relay_to_websockets)
        await bus.start()
        await bus.publish(BUS_CHANNEL_EVENTS, chatroom_id, "conversation_chunk", {"content": "..."})
        await bus.stop()
    """

    def __init__(
        self,
        dsn: str,
        origin_id: str | None = None,
        connect_timeout: float = 10.0,
        publish_connections: int = BUS_PUBLISH_CONNECTIONS,
    ) -> None:
        self.dsn = dsn
        self.origin_id = origin_id or uuid.uuid4().hex
        self.connect_timeout = connect_timeout
        self.publish_connections = publish_connections
        self._handlers: dict[str, list[EnvelopeHandler]] = {}
        self._listen_conn: asyncpg.Connection | None = None
        self._publish_pool: asyncpg.Pool | None = None
        self._room_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._queue: asyncio.Queue[tuple[str, str]] = asyncio.Queue()
        self._consumer_task: asyncio.Task[None] | None = None

    def subscribe(self, channel: str, handler: EnvelopeHandler) -> None:
        """Register a handler for peer envelopes on ``channel`` (call before start)."""
        self._handlers.setdefault(channel, []).append(handler)

    @property
    def is_running(self) -> bool:
        return self._publish_pool is not None

    def _room_lock(self, chatroom_id: str) -> asyncio.Lock:
        lock = self._room_locks.get(chatroom_id)
        if lock is None:
            lock = asyncio.Lock()
            self._room_locks[chatroom_id] = lock
        return lock

    async def start(self) -> None:
        """Open the listen connection and publish pool, then start the relay consumer."""
        self._listen_conn = await asyncpg.connect(self.dsn, timeout=self.connect_timeout)
        self._publish_pool = await asyncpg.create_pool(
            self.dsn,
            min_size=1,
            max_size=self.publish_connections,
            timeout=self.connect_timeout,
        )
        for channel in self._handlers:
            await self._listen_conn.add_listener(channel, self._on_notification)
        self._consumer_task = asyncio.create_task(self._consume())
        logger.info(
            f"Event bus started (origin {self.origin_id[:8]}, channels: {', '.join(self._handlers) or 'none'})"
        )

    async def stop(self) -> None:
        """Stop relaying, close the listen connection and drain the publish pool."""
        if self._consumer_task is not None:
            self._consumer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer_task
            self._consumer_task = None

        if self._listen_conn is not None:
            for channel in self._handlers:
                with contextlib.suppress(Exception):
                    await self._listen_conn.remove_listener(channel, self._on_notification)
            await self._listen_conn.close()
            self._listen_conn = None

        pool, self._publish_pool = self._publish_pool, None
        if pool is not None:
            await pool.close()
        logger.info("Event bus stopped")

    async def publish(self, channel: str, chatroom_id: str, event_type: str, data: dict[str, Any]) -> bool:
        """Publish one envelope to peers.

        Returns:
            False when the bus is not running or the NOTIFY failed
        """
        envelope = BusEnvelope(origin=self.origin_id, chatroom_id=chatroom_id, type=event_type, data=data)
        payload = encode_envelope(envelope)

        async with self._room_lock(chatroom_id):
            pool = self._publish_pool
            if pool is None:
                return False
            try:
                async with pool.acquire() as conn:
                    await conn.execute("SELECT pg_notify($1, $2)", channel, payload)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
                logger.warning(f"Bus publish of {event_type} to {channel} failed: {e}")
                return False
        return True

    def _on_notification(self, connection: Any, pid: int, channel: str, payload: str) -> None:
        self._queue.put_nowait((channel, payload))

    async def _consume(self) -> None:
        while True:
            channel, payload = await self._queue.get()
            try:
                await self.dispatch(channel, payload)
            finally:
                self._queue.task_done()

    async def dispatch(self, channel: str, payload: str) -> int:
        """Hand one received payload to the channel's handlers.

        Returns:
            Number of handlers invoked (0 for own or malformed envelopes)
        """
        envelope = decode_envelope(payload)
        if envelope is None or envelope.origin == self.origin_id:
            return 0

        handlers = self._handlers.get(channel, [])
        for handler in handlers:
            try:
                await handler(envelope)
            except Exception as e:  # noqa: PERF203
                logger.error(f"Bus handler for {channel} failed: {e}", exc_info=True)
        return len(handlers)

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "origin": self.origin_id,
            "channels": list(self._handlers),
            "pending": self._queue.qsize(),
        }


__all__ = [
    "TRUNCATED_CONTENT_MARKER",
    "PostgresEventBus",
    "decode_envelope",
    "encode_envelope",
]
