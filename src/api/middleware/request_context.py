"""Correlation ids for HTTP requests, WebSocket subscriptions and pipeline turns.

A ``RequestContext`` lives in a ContextVar; the logger reads it and stamps
every record with the ids it carries. Background tasks copy the ContextVar
at creation, so a turn context set inside a task never reaches its caller.
"""

from __future__ import annotations

import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_current: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)

REQUEST_ID_PREFIX = "req_"
WEBSOCKET_ID_PREFIX = "ws_"
TURN_ID_PREFIX = "turn_"

_OPTIONAL_LOG_FIELDS = ("client_ip", "user_id", "chatroom_id", "message_id")


@dataclass
class RequestContext:
    request_id: str
    kind: str = "http"
    path: str = ""
    client_ip: str | None = None
    user_id: str | None = None
    chatroom_id: str | None = None
    message_id: str | None = None
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def to_log_context(self) -> dict[str, Any]:
        """Fields merged into every log record emitted under this context."""
        fields: dict[str, Any] = {
            "request_id": self.request_id,
            "kind": self.kind,
            "path": self.path,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        for name in _OPTIONAL_LOG_FIELDS:
            value = getattr(self, name)
            if value:
                fields[name] = value
        return fields


def generate_request_id(prefix: str = REQUEST_ID_PREFIX) -> str:
    """``prefix`` followed by 16 hex characters, e.g. ``turn_9f1c0a7be2d43c85``."""
    return f"{prefix}{secrets.token_hex(8)}"


def get_request_context() -> RequestContext | None:
    return _current.get()


def get_request_id() -> str | None:
    ctx = _current.get()
    return ctx.request_id if ctx else None


def set_request_context(context: RequestContext) -> None:
    _current.set(context)


def clear_request_context() -> None:
    _current.set(None)


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Open a context per HTTP request and echo its id and latency in headers.

    An incoming ``X-Request-ID`` is reused so ids line up with the upstream proxy.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = RequestContext(
            request_id=request.headers.get("X-Request-ID") or generate_request_id(),
            path=request.url.path,
            client_ip=_client_ip(request),
        )
        set_request_context(context)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        response.headers["X-Request-ID"] = context.request_id
        response.headers["X-Response-Time"] = f"{context.elapsed_ms:.2f}ms"
        return response


def create_websocket_context(chatroom_id: str | None = None, client_ip: str | None = None) -> RequestContext:
    """One context per subscription; it lasts as long as the socket."""
    context = RequestContext(
        request_id=generate_request_id(WEBSOCKET_ID_PREFIX),
        kind="websocket",
        path="/ws/chatrooms",
        client_ip=client_ip,
        chatroom_id=chatroom_id,
    )
    set_request_context(context)
    return context


def create_turn_context(
    chatroom_id: str,
    user_id: str | None = None,
    message_id: str | None = None,
) -> RequestContext:
    """Context for one pipeline turn. Call it from inside the turn's task."""
    context = RequestContext(
        request_id=generate_request_id(TURN_ID_PREFIX),
        kind="turn",
        path="pipeline",
        user_id=user_id,
        chatroom_id=chatroom_id,
        message_id=message_id,
    )
    set_request_context(context)
    return context
