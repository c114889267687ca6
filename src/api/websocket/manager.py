from __future__ import annotations

import asyncio
import contextlib
import time

from typing import Any

from fastapi import WebSocket

from api.websocket.errors import WSCloseCode
from core.constants import EVENT_SERVER_SHUTDOWN
from models.event_models import PushEvent
from utils.logger import logger
from utils.metrics import ws_connections_active, ws_connections_total

# Let the shutdown notice reach clients before sockets are closed
SHUTDOWN_NOTICE_GRACE_SECONDS = 0.5


class ChatroomConnectionManager:
    """Registry of push subscribers, keyed by chatroom.

    ``rooms`` maps a chatroom id to its sockets and the monotonic time each
    one was last active. A background sweeper closes sockets idle longer than
    ``idle_timeout``.
    """

    def __init__(
        self,
        idle_timeout_seconds: float = 600.0,
        max_connections: int = 200,
        max_connections_per_chatroom: int = 5,
    ) -> None:
        self.rooms: dict[str, dict[WebSocket, float]] = {}
        self.idle_timeout = idle_timeout_seconds
        self.max_connections = max_connections
        self.max_connections_per_chatroom = max_connections_per_chatroom
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None
        self._shutting_down = False

    @property
    def connection_count(self) -> int:
        return sum(len(room) for room in self.rooms.values())

    def _rejection_reason(self, chatroom_id: str) -> str | None:
        if self._shutting_down:
            return "server is shutting down"
        if self.connection_count >= self.max_connections:
            return f"server limit of {self.max_connections} reached"
        if len(self.rooms.get(chatroom_id, {})) >= self.max_connections_per_chatroom:
            return f"chatroom limit of {self.max_connections_per_chatroom} reached"
        return None

    async def connect(self, websocket: WebSocket, chatroom_id: str) -> bool:
        """Accept ``websocket`` as a subscriber of ``chatroom_id``.

        Returns:
            False without accepting when a limit is hit or shutdown has begun
        """
        async with self._lock:
            reason = self._rejection_reason(chatroom_id)
            if reason is not None:
                logger.warning(f"Subscription rejected: {reason}", chatroom_id=chatroom_id)
                return False

            await websocket.accept()
            room = self.rooms.setdefault(chatroom_id, {})
            room[websocket] = time.monotonic()
            ws_connections_total.inc()
            ws_connections_active.inc()

        logger.info(
            f"Subscriber joined ({len(room)} in room, {self.connection_count} total)",
            chatroom_id=chatroom_id,
        )
        return True

    async def disconnect(self, websocket: WebSocket, chatroom_id: str) -> None:
        """Drop a subscriber. Unknown sockets are ignored."""
        async with self._lock:
            room = self.rooms.get(chatroom_id)
            if room is None or room.pop(websocket, None) is None:
                return
            ws_connections_active.dec()
            if not room:
                del self.rooms[chatroom_id]

    async def touch(self, websocket: WebSocket) -> None:
        async with self._lock:
            for room in self.rooms.values():
                if websocket in room:
                    room[websocket] = time.monotonic()
                    return

    async def send(self, chatroom_id: str, event_type: str, payload: dict[str, Any]) -> int:
        """Deliver one push event to every subscriber of a chatroom.

        Sockets that fail to receive are dropped.

        Returns:
            Number of subscribers the event reached
        """
        subscribers = list(self.rooms.get(chatroom_id, ()))
        if not subscribers:
            return 0

        frame = PushEvent(type=event_type, chatroom_id=chatroom_id, data=payload).to_dict()
        delivered = 0
        for ws in subscribers:
            try:
                await ws.send_json(frame)
            except Exception as e:  # noqa: PERF203
                logger.debug(f"Dropping unreachable subscriber: {e}", chatroom_id=chatroom_id)
                await self.disconnect(ws, chatroom_id)
            else:
                delivered += 1
        return delivered

    def _snapshot(self) -> list[tuple[WebSocket, str]]:
        return [(ws, chatroom_id) for chatroom_id, room in self.rooms.items() for ws in room]

    async def _close(self, websocket: WebSocket, chatroom_id: str, code: WSCloseCode, reason: str) -> None:
        with contextlib.suppress(Exception):
            await websocket.close(code=code, reason=reason)
        await self.disconnect(websocket, chatroom_id)

    async def start_idle_checker(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever())
            logger.info(f"Idle subscriber sweep every {self._sweep_interval:.0f}s")

    async def stop_idle_checker(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    @property
    def _sweep_interval(self) -> float:
        return min(60.0, self.idle_timeout / 2)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            await self.close_idle_connections()

    async def close_idle_connections(self) -> int:
        """Close subscribers idle longer than ``idle_timeout``; returns how many."""
        cutoff = time.monotonic() - self.idle_timeout
        async with self._lock:
            stale = [
                (ws, chatroom_id)
                for chatroom_id, room in self.rooms.items()
                for ws, last_seen in room.items()
                if last_seen < cutoff
            ]

        for ws, chatroom_id in stale:
            logger.info("Closing idle subscriber", chatroom_id=chatroom_id)
            await self._close(ws, chatroom_id, WSCloseCode.IDLE_TIMEOUT, "Idle timeout")
        return len(stale)

    async def graceful_shutdown(self, timeout: float = 10.0) -> None:
        """Refuse new subscribers, tell current ones, then close them within ``timeout``."""
        self._shutting_down = True
        await self.stop_idle_checker()

        subscribers = self._snapshot()
        notice = {"type": EVENT_SERVER_SHUTDOWN, "message": "Server is shutting down"}
        for ws, _ in subscribers:
            with contextlib.suppress(Exception):
                await ws.send_json(notice)
        await asyncio.sleep(SHUTDOWN_NOTICE_GRACE_SECONDS)

        if not subscribers:
            return
        closing = [self._close(ws, cid, WSCloseCode.GOING_AWAY, "Server shutdown") for ws, cid in subscribers]
        try:
            await asyncio.wait_for(asyncio.gather(*closing), timeout=timeout)
        except TimeoutError:
            logger.warning(f"Gave up closing {len(subscribers)} subscriber(s) after {timeout}s")
        else:
            logger.info(f"Closed {len(subscribers)} subscriber(s) on shutdown")

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_connections": self.connection_count,
            "total_chatrooms": len(self.rooms),
            "max_connections": self.max_connections,
            "max_per_chatroom": self.max_connections_per_chatroom,
            "idle_timeout": self.idle_timeout,
            "shutting_down": self._shutting_down,
        }
