"""
Error payloads shared by the REST surface and chatroom push events.

Codes are prefixed by category; the prefix decides the HTTP status unless a
code overrides it.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


class ErrorCode(str, Enum):
    # Request validation
    VALIDATION_ERROR = "VAL_2001"

    # Missing resources
    RESOURCE_NOT_FOUND = "RES_3001"
    CHATROOM_NOT_FOUND = "RES_3010"

    # Subscription protocol
    WS_MESSAGE_INVALID = "WS_6002"

    # LLM provider
    EXTERNAL_SERVICE_ERROR = "EXT_7001"
    EXTERNAL_TIMEOUT = "EXT_7002"
    EXTERNAL_RATE_LIMITED = "EXT_7003"
    OPENAI_ERROR = "EXT_7010"

    # PostgreSQL writes
    DATABASE_ERROR = "DB_8001"
    MESSAGE_PERSISTENCE_FAILED = "DB_8010"
    PROGRESS_WRITE_FAILED = "DB_8011"
    BILLING_WRITE_FAILED = "DB_8012"

    # Agent pipeline
    AGENT_FAILED = "PIPE_10001"
    GENERATION_FAILED = "PIPE_10002"
    SUMMARY_MERGE_FAILED = "PIPE_10003"

    INTERNAL_ERROR = "INT_9001"
    INTERNAL_UNEXPECTED = "INT_9999"

    @property
    def category(self) -> str:
        return self.value.split("_", 1)[0]


CATEGORY_STATUS: dict[str, int] = {
    "VAL": 422,
    "RES": 404,
    "WS": 400,
    "EXT": 502,
    "DB": 500,
    "PIPE": 500,
    "INT": 500,
}

STATUS_OVERRIDES: dict[ErrorCode, int] = {
    ErrorCode.EXTERNAL_RATE_LIMITED: 429,
    ErrorCode.EXTERNAL_TIMEOUT: 503,
}


def get_status_code(error_code: ErrorCode) -> int:
    """HTTP status for ``error_code``."""
    if error_code in STATUS_OVERRIDES:
        return STATUS_OVERRIDES[error_code]
    return CATEGORY_STATUS.get(error_code.category, 500)


class ErrorDetail(BaseModel):
    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Body of every REST error, wrapped as ``{"error": {...}}``.

    ``debug`` is never serialized unless explicitly requested.
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    path: str | None = None
    details: list[ErrorDetail] | None = None
    timestamp: str = Field(default_factory=_utc_now)
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        body = self.model_dump(mode="json", exclude_none=True)
        if include_debug and self.debug:
            body["debug"] = self.debug
        return {"error": body}


class ErrorEvent(BaseModel):
    """Payload of every error push event (conversation_error, agent_error, ai_error).

    ``agent`` names the branch that failed so clients can tell a failed
    vocabulary lookup from a failed reply.
    """

    code: ErrorCode
    message: str
    agent: str | None = None
    recoverable: bool = True
    timestamp: str = Field(default_factory=_utc_now)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class WebSocketError(BaseModel):
    """Error frame written straight to one subscriber's socket."""

    type: str = "error"
    code: ErrorCode
    message: str
    request_id: str | None = None
    chatroom_id: str | None = None
    recoverable: bool = True
    timestamp: str = Field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
