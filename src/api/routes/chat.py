from __future__ import annotations

import asyncio
import contextlib

from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from api.middleware.request_context import create_websocket_context
from api.services.chatroom_service import ChatroomService
from api.websocket.errors import WSCloseCode, send_ws_error
from api.websocket.manager import ChatroomConnectionManager
from models.error_models import ErrorCode
from models.event_models import ConnectedMessage
from utils.logger import logger

router = APIRouter()

KEEPALIVE_INTERVAL_SECONDS = 30


@router.websocket("/chatrooms/{chatroom_id}")
async def chatroom_websocket(websocket: WebSocket, chatroom_id: str) -> None:
    """Push channel for one chatroom.

    The server only pushes pipeline events; the client may send
    ``{"type": "ping"}`` to keep an otherwise quiet subscription alive.
    """
    ws_manager: ChatroomConnectionManager = websocket.app.state.ws_manager
    chatroom_service: ChatroomService = websocket.app.state.chatroom_service

    client_ip = websocket.client.host if websocket.client else None
    create_websocket_context(chatroom_id=chatroom_id, client_ip=client_ip)

    try:
        room = await chatroom_service.find_chatroom(UUID(chatroom_id))
    except ValueError:
        room = None
    if room is None:
        logger.info("Rejecting subscription to unknown chatroom", chatroom_id=chatroom_id)
        await websocket.close(code=WSCloseCode.CHATROOM_NOT_FOUND)
        return

    if not await ws_manager.connect(websocket, chatroom_id):
        await websocket.close(code=WSCloseCode.TRY_AGAIN_LATER)
        return

    keepalive_task: asyncio.Task[None] | None = None
    try:
        connection_id = f"{chatroom_id}:{id(websocket):x}"
        await websocket.send_json(ConnectedMessage(chatroom_id=chatroom_id, connection_id=connection_id).to_dict())
        keepalive_task = asyncio.create_task(_keepalive(websocket))

        async for data in websocket.iter_json():
            # Update activity timestamp on any message
            await ws_manager.touch(websocket)
            msg_type = data.get("type") if isinstance(data, dict) else None

            if msg_type == "ping":
                await websocket.send_json({"type": "pong"})
            elif msg_type == "pong":
                continue
            else:
                await send_ws_error(
                    websocket,
                    code=ErrorCode.WS_MESSAGE_INVALID,
                    message=f"Unsupported message type: {msg_type}",
                    chatroom_id=chatroom_id,
                )
    except WebSocketDisconnect:
        pass  # Normal client disconnect
    except RuntimeError as e:
        # Handle "WebSocket is not connected" errors gracefully
        if "not connected" not in str(e).lower():
            raise
    finally:
        if keepalive_task is not None:
            keepalive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await keepalive_task
        await ws_manager.disconnect(websocket, chatroom_id)


async def _keepalive(websocket: WebSocket) -> None:
    """Send periodic ping frames."""
    while True:
        await asyncio.sleep(KEEPALIVE_INTERVAL_SECONDS)
        try:
            await websocket.send_json({"type": "ping"})
        except Exception:
            break
