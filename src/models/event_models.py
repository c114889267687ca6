"""
Push event models for the chatroom push channel.

Provides validation for events sent to websocket subscribers and for the
envelopes relayed between processes over the PostgreSQL notification bus.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from core.constants import EVENT_CONNECTED


class PushEvent(BaseModel):
    """Event delivered to every subscriber of a chatroom."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    chatroom_id: str = Field(alias="chatroomId")
    data: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Wire format: {"type", "chatroomId", "data"}."""
        return self.model_dump(by_alias=True)


class BusEnvelope(BaseModel):
    """Cross-process wrapper around a push event.

    ``origin`` is the publishing process id; a process drops envelopes it
    published itself because it already delivered them locally.
    """

    origin: str
    chatroom_id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    truncated: bool = False

    def to_push_event(self) -> PushEvent:
        return PushEvent(type=self.type, chatroom_id=self.chatroom_id, data=self.data)


class AIResponseCompleteNotification(BaseModel):
    """Cross-process notice that a single-agent reply was persisted."""

    model_config = ConfigDict(populate_by_name=True)

    chatroom_id: str = Field(alias="chatroomId")
    message_id: str = Field(alias="messageId")
    content: str
    total_tokens: int = Field(default=0, alias="totalTokens")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class UsagePayload(BaseModel):
    """Body of ai_usage and ai_usage_total events."""

    model_config = ConfigDict(populate_by_name=True)

    input_tokens: int = Field(default=0, alias="inputTokens")
    output_tokens: int = Field(default=0, alias="outputTokens")
    cost_in: str = Field(default="0", alias="costIn")
    cost_out: str = Field(default="0", alias="costOut")
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ConnectedMessage(BaseModel):
    """First frame sent after a websocket subscription is accepted."""

    type: str = EVENT_CONNECTED
    chatroom_id: str = Field(alias="chatroomId")
    connection_id: str = Field(alias="connectionId")

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


__all__ = [
    "AIResponseCompleteNotification",
    "BusEnvelope",
    "ConnectedMessage",
    "PushEvent",
    "UsagePayload",
]
