"""Tests for the PostgreSQL LISTEN/NOTIFY event bus."""

from __future__ import annotations

import asyncio
import json

from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from core.constants import BUS_CHANNEL_EVENTS
from integrations.event_bus import (
    TRUNCATED_CONTENT_MARKER,
    PostgresEventBus,
    decode_envelope,
    encode_envelope,
)
from models.event_models import BusEnvelope


def _envelope(origin: str = "peer", **data: object) -> BusEnvelope:
    return BusEnvelope(origin=origin, chatroom_id="room-1", type="conversation_chunk", data=dict(data))


class TestEncodeEnvelope:
    def test_small_payload_unchanged(self) -> None:
        encoded = encode_envelope(_envelope(content="안녕"))
        decoded = json.loads(encoded)

        assert decoded["data"] == {"content": "안녕"}
        assert decoded["truncated"] is False

    def test_oversized_content_replaced(self) -> None:
        encoded = encode_envelope(_envelope(content="가" * 5000, messageId="m-1"), max_bytes=1000)
        decoded = json.loads(encoded)

        assert len(encoded.encode("utf-8")) <= 1000
        assert decoded["data"] == {"content": TRUNCATED_CONTENT_MARKER, "messageId": "m-1"}
        assert decoded["truncated"] is True

    def test_oversized_without_content_drops_data(self) -> None:
        encoded = encode_envelope(_envelope(words=["x" * 2000]), max_bytes=500)
        decoded = json.loads(encoded)

        assert decoded["data"] == {}
        assert decoded["truncated"] is True

    def test_decode_rejects_malformed(self) -> None:
        assert decode_envelope("not json") is None
        assert decode_envelope('{"origin": "x"}') is None

    def test_decode_valid(self) -> None:
        envelope = decode_envelope(encode_envelope(_envelope(content="hi")))
        assert envelope is not None
        assert envelope.to_push_event().to_dict() == {
            "type": "conversation_chunk",
            "chatroomId": "room-1",
            "data": {"content": "hi"},
        }


class TestDispatch:
    @pytest.mark.asyncio
    async def test_peer_envelope_delivered(self) -> None:
        bus = PostgresEventBus("postgresql://test", origin_id="self")
        handler = AsyncMock()
        bus.subscribe(BUS_CHANNEL_EVENTS, handler)

        invoked = await bus.dispatch(BUS_CHANNEL_EVENTS, encode_envelope(_envelope(origin="peer", content="a")))

        assert invoked == 1
        handler.assert_awaited_once()
        assert handler.await_args.args[0].data == {"content": "a"}

    @pytest.mark.asyncio
    async def test_own_envelope_ignored(self) -> None:
        bus = PostgresEventBus("postgresql://test", origin_id="self")
        handler = AsyncMock()
        bus.subscribe(BUS_CHANNEL_EVENTS, handler)

        invoked = await bus.dispatch(BUS_CHANNEL_EVENTS, encode_envelope(_envelope(origin="self")))

        assert invoked == 0
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_failure_isolated(self) -> None:
        bus = PostgresEventBus("postgresql://test", origin_id="self")
        failing = AsyncMock(side_effect=RuntimeError("handler broke"))
        healthy = AsyncMock()
        bus.subscribe(BUS_CHANNEL_EVENTS, failing)
        bus.subscribe(BUS_CHANNEL_EVENTS, healthy)

        await bus.dispatch(BUS_CHANNEL_EVENTS, encode_envelope(_envelope()))

        healthy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unsubscribed_channel(self) -> None:
        bus = PostgresEventBus("postgresql://test", origin_id="self")
        assert await bus.dispatch("other", encode_envelope(_envelope())) == 0


@pytest.fixture
def notify_conn(mock_db_pool: MagicMock) -> AsyncMock:
    return mock_db_pool.acquire.return_value.__aenter__.return_value


class TestPublish:
    @pytest.mark.asyncio
    async def test_not_running_returns_false(self) -> None:
        bus = PostgresEventBus("postgresql://test")
        assert await bus.publish(BUS_CHANNEL_EVENTS, "room-1", "x", {}) is False

    @pytest.mark.asyncio
    async def test_publish_notifies_with_origin(self, mock_db_pool: MagicMock, notify_conn: AsyncMock) -> None:
        bus = PostgresEventBus("postgresql://test", origin_id="me")
        bus._publish_pool = mock_db_pool

        assert await bus.publish(BUS_CHANNEL_EVENTS, "room-1", "conversation_chunk", {"content": "hi"}) is True

        sql, channel, payload = notify_conn.execute.await_args.args
        assert sql == "SELECT pg_notify($1, $2)"
        assert channel == BUS_CHANNEL_EVENTS
        assert json.loads(payload)["origin"] == "me"

    @pytest.mark.asyncio
    async def test_publish_failure_returns_false(self, mock_db_pool: MagicMock, notify_conn: AsyncMock) -> None:
        bus = PostgresEventBus("postgresql://test")
        notify_conn.execute.side_effect = asyncpg.InterfaceError("closed")
        bus._publish_pool = mock_db_pool

        assert await bus.publish(BUS_CHANNEL_EVENTS, "room-1", "x", {}) is False

    @pytest.mark.asyncio
    async def test_slow_room_does_not_hold_up_others(self, mock_db_pool: MagicMock, notify_conn: AsyncMock) -> None:
        bus = PostgresEventBus("postgresql://test", origin_id="me")
        bus._publish_pool = mock_db_pool
        other_room_sent = asyncio.Event()
        sent: list[tuple[str, int]] = []

        async def notify(sql: str, channel: str, payload: str) -> None:
            envelope = decode_envelope(payload)
            assert envelope is not None
            if envelope.chatroom_id == "room-1" and envelope.data["n"] == 0:
                await asyncio.wait_for(other_room_sent.wait(), timeout=1.0)
            if envelope.chatroom_id == "room-2":
                other_room_sent.set()
            sent.append((envelope.chatroom_id, envelope.data["n"]))

        notify_conn.execute.side_effect = notify

        results = await asyncio.gather(
            bus.publish(BUS_CHANNEL_EVENTS, "room-1", "conversation_chunk", {"n": 0}),
            bus.publish(BUS_CHANNEL_EVENTS, "room-1", "conversation_chunk", {"n": 1}),
            bus.publish(BUS_CHANNEL_EVENTS, "room-2", "conversation_chunk", {"n": 0}),
        )

        assert results == [True, True, True]
        assert sent == [("room-2", 0), ("room-1", 0), ("room-1", 1)]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_listens_and_stop_closes(self, mock_db_pool: MagicMock) -> None:
        listen_conn = AsyncMock()
        mock_db_pool.close = AsyncMock()
        bus = PostgresEventBus("postgresql://test", publish_connections=2)
        bus.subscribe(BUS_CHANNEL_EVENTS, AsyncMock())
        create_pool = AsyncMock(return_value=mock_db_pool)

        with (
            patch("integrations.event_bus.asyncpg.connect", AsyncMock(return_value=listen_conn)),
            patch("integrations.event_bus.asyncpg.create_pool", create_pool),
        ):
            await bus.start()

        assert bus.is_running
        listen_conn.add_listener.assert_awaited_once_with(BUS_CHANNEL_EVENTS, bus._on_notification)
        assert create_pool.await_args.kwargs["max_size"] == 2

        await bus.stop()

        assert not bus.is_running
        listen_conn.close.assert_awaited_once()
        mock_db_pool.close.assert_awaited_once()
        assert bus.get_stats()["running"] is False
