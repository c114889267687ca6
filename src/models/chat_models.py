"""
Persistence models for chatrooms, chatbots, messages and billing rows.

Rows come from asyncpg as Records; jsonb columns arrive as text and are
decoded here so callers see plain dicts. progress_data is the exception: text
that is not a JSON object is kept as-is.
"""

from __future__ import annotations

import json

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

SenderType = Literal["user", "bot", "system"]


def _decode_json_object(value: Any) -> dict[str, Any]:
    """Decode a jsonb column into a dict; anything malformed becomes {}."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str | bytes):
        try:
            decoded = json.loads(value)
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


class Chatbot(BaseModel):
    """Bot metadata used for prompt composition (read-only here)."""

    id: UUID
    name: str = ""
    system_prompt: str | None = None
    intimacy_system_prompt: str | None = None
    personality: dict[str, Any] = Field(default_factory=dict, description="Persona descriptor")
    capabilities: dict[str, Any] = Field(default_factory=dict, description="Response style and safety descriptor")

    @field_validator("personality", "capabilities", mode="before")
    @classmethod
    def decode_descriptor(cls, v: Any) -> dict[str, Any]:
        return _decode_json_object(v)


class ChatRoom(BaseModel):
    """A user's chatroom with its bot (read-only here)."""

    id: UUID
    user_id: UUID
    bot_id: UUID | None = None
    name: str = ""
    settings: dict[str, Any] = Field(default_factory=dict)
    context_data: dict[str, Any] = Field(default_factory=dict)
    is_deleted: bool = False
    chatbot: Chatbot | None = None

    @field_validator("settings", "context_data", mode="before")
    @classmethod
    def decode_json(cls, v: Any) -> dict[str, Any]:
        return _decode_json_object(v)

    @property
    def concept(self) -> str | None:
        """Conversation concept from room settings (FRIEND, HONEY, ...)."""
        value = self.settings.get("concept")
        return str(value) if value else None


class Message(BaseModel):
    """A persisted chat message with its per-room sequence number."""

    id: UUID
    chatroom_id: UUID
    sender_type: SenderType
    sender_id: UUID | None = None
    content: str
    content_type: str = "text"
    sequence_number: int
    token_count: int | None = None
    processing_time_ms: int | None = None
    is_edited: bool = False
    is_deleted: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Message:
        return cls.model_validate(dict(record))


class IntimacyProgressRow(BaseModel):
    """One IntimacyProgress row; progress_data stays raw for the document model."""

    chatroom_id: UUID
    user_id: UUID | None = None
    intimacy_level: int = 1
    total_corrections: int = 0
    last_feedback: str | None = None
    last_updated: datetime | None = None
    progress_data: dict[str, Any] | str = Field(default_factory=dict)

    @field_validator("progress_data", mode="before")
    @classmethod
    def decode_progress(cls, v: Any) -> Any:
        # Text that is not a JSON object stays raw so ProgressDocument.parse refuses it
        if isinstance(v, bytes):
            v = v.decode("utf-8", errors="replace")
        if isinstance(v, str):
            decoded = _decode_json_object(v)
            return decoded if decoded or v.strip() in ("", "{}", "null") else v
        return _decode_json_object(v)


class AiUsageEvent(BaseModel):
    """Append-only ledger row for one LLM call."""

    id: UUID
    event_time: datetime
    user_id: UUID
    chatroom_id: UUID
    provider: str
    model: str
    request_id: str
    input_tokens: int
    output_tokens: int
    cost_in: Decimal
    cost_out: Decimal


class MonthlyUserCost(BaseModel):
    """Incrementally accumulated cost for one user and billing month."""

    user_id: UUID
    billing_month: date
    input_tokens: int = 0
    output_tokens: int = 0
    cost_in: Decimal = Decimal("0")
    cost_out: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    last_aggregated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> MonthlyUserCost:
        return cls.model_validate(dict(record))
