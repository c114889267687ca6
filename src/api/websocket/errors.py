"""Close codes and error frames for chatroom subscriptions."""

from __future__ import annotations

from enum import IntEnum

from fastapi import WebSocket

from api.middleware.request_context import get_request_id
from models.error_models import ErrorCode, WebSocketError
from utils.logger import logger


class WSCloseCode(IntEnum):
    # RFC 6455
    GOING_AWAY = 1001
    TRY_AGAIN_LATER = 1013
    # Application range
    IDLE_TIMEOUT = 4000
    CHATROOM_NOT_FOUND = 4404


async def send_ws_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    chatroom_id: str | None = None,
    recoverable: bool = True,
) -> None:
    """Push an error frame to one subscriber.

    The subscription stays open; a socket that is already gone is only logged.
    """
    frame = WebSocketError(
        code=code,
        message=message,
        request_id=get_request_id(),
        chatroom_id=chatroom_id,
        recoverable=recoverable,
    )
    try:
        await websocket.send_json(frame.to_dict())
    except Exception as e:
        logger.warning(f"Could not deliver error frame {code.value}: {e}", chatroom_id=chatroom_id)
