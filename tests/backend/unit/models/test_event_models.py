"""Tests for event models module.

Tests Pydantic models used for push event validation and serialization.
"""

from __future__ import annotations

import pytest

from pydantic import ValidationError

from models.error_models import ErrorCode, ErrorEvent, ErrorResponse, WebSocketError, get_status_code
from models.event_models import (
    AIResponseCompleteNotification,
    BusEnvelope,
    ConnectedMessage,
    PushEvent,
    UsagePayload,
)


class TestPushEvent:
    """Tests for PushEvent model."""

    def test_wire_format(self) -> None:
        event = PushEvent(type="conversation_chunk", chatroom_id="room-1", data={"content": "안"})
        assert event.to_dict() == {"type": "conversation_chunk", "chatroomId": "room-1", "data": {"content": "안"}}

    def test_accepts_alias(self) -> None:
        event = PushEvent.model_validate({"type": "x", "chatroomId": "room-2"})
        assert event.chatroom_id == "room-2"
        assert event.data == {}

    def test_type_required(self) -> None:
        with pytest.raises(ValidationError):
            PushEvent.model_validate({"chatroomId": "room-1"})


class TestBusEnvelope:
    def test_to_push_event(self) -> None:
        envelope = BusEnvelope(origin="p1", chatroom_id="room-1", type="ai_response", data={"content": "a"})
        event = envelope.to_push_event()

        assert event.type == "ai_response"
        assert event.chatroom_id == "room-1"
        assert envelope.truncated is False


class TestSmallPayloads:
    def test_ai_response_complete(self) -> None:
        note = AIResponseCompleteNotification(chatroom_id="r", message_id="m", content="안녕", total_tokens=12)
        assert note.to_dict() == {"chatroomId": "r", "messageId": "m", "content": "안녕", "totalTokens": 12}

    def test_usage_payload_omits_missing_model(self) -> None:
        payload = UsagePayload(input_tokens=3, output_tokens=4, cost_in="0.000001", cost_out="0.000002")
        assert payload.to_dict() == {
            "inputTokens": 3,
            "outputTokens": 4,
            "costIn": "0.000001",
            "costOut": "0.000002",
        }

    def test_connected_message(self) -> None:
        message = ConnectedMessage(chatroom_id="r", connection_id="c")
        assert message.to_dict() == {"type": "connected", "chatroomId": "r", "connectionId": "c"}


class TestErrorModels:
    """Tests for error payloads pushed to subscribers and returned over REST."""

    def test_error_event_payload(self) -> None:
        payload = ErrorEvent(code=ErrorCode.AGENT_FAILED, message="vocabulary failed", agent="vocabulary").to_payload()

        assert payload["code"] == "PIPE_10001"
        assert payload["agent"] == "vocabulary"
        assert payload["recoverable"] is True
        assert "timestamp" in payload

    def test_error_event_without_agent(self) -> None:
        payload = ErrorEvent(code=ErrorCode.GENERATION_FAILED, message="x").to_payload()
        assert "agent" not in payload

    def test_error_response_envelope(self) -> None:
        response = ErrorResponse(code=ErrorCode.CHATROOM_NOT_FOUND, message="missing", debug={"trace": "t"})

        assert "debug" not in response.to_dict()["error"]
        assert response.to_dict(include_debug=True)["error"]["debug"] == {"trace": "t"}

    def test_websocket_error(self) -> None:
        frame = WebSocketError(code=ErrorCode.WS_MESSAGE_INVALID, message="bad", recoverable=False).to_dict()
        assert frame["type"] == "error"
        assert frame["code"] == "WS_6002"
        assert frame["recoverable"] is False

    @pytest.mark.parametrize(
        ("code", "status"),
        [
            (ErrorCode.CHATROOM_NOT_FOUND, 404),
            (ErrorCode.OPENAI_ERROR, 502),
            (ErrorCode.EXTERNAL_RATE_LIMITED, 429),
            (ErrorCode.EXTERNAL_TIMEOUT, 503),
            (ErrorCode.WS_MESSAGE_INVALID, 400),
            (ErrorCode.SUMMARY_MERGE_FAILED, 500),
        ],
    )
    def test_status_mapping(self, code: ErrorCode, status: int) -> None:
        assert get_status_code(code) == status
