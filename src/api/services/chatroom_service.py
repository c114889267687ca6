from __future__ import annotations

from uuid import UUID

import asyncpg

from api.middleware.exception_handlers import ChatRoomNotFoundError
from models.chat_models import Chatbot, ChatRoom


class ChatroomService:
    """Read-only chatroom and chatbot lookups backed by PostgreSQL."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def find_chatroom(self, chatroom_id: UUID) -> ChatRoom | None:
        """Get a chatroom with its bot; soft-deleted rooms read as missing."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT
                    r.id, r.user_id, r.bot_id, r.name, r.settings, r.context_data, r.is_deleted,
                    b.id AS b_id, b.name AS b_name, b.system_prompt AS b_system_prompt,
                    b.intimacy_system_prompt AS b_intimacy_system_prompt,
                    b.personality AS b_personality, b.capabilities AS b_capabilities
                FROM chatrooms r
                LEFT JOIN chatbots b ON b.id = r.bot_id
                WHERE r.id = $1 AND r.is_deleted = FALSE
                """,
                chatroom_id,
            )
        if not row:
            return None

        chatbot = None
        if row["b_id"] is not None:
            chatbot = Chatbot(
                id=row["b_id"],
                name=row["b_name"] or "",
                system_prompt=row["b_system_prompt"],
                intimacy_system_prompt=row["b_intimacy_system_prompt"],
                personality=row["b_personality"],
                capabilities=row["b_capabilities"],
            )

        return ChatRoom(
            id=row["id"],
            user_id=row["user_id"],
            bot_id=row["bot_id"],
            name=row["name"] or "",
            settings=row["settings"],
            context_data=row["context_data"],
            is_deleted=row["is_deleted"],
            chatbot=chatbot,
        )

    async def get_chatroom(self, chatroom_id: UUID) -> ChatRoom:
        """Get a chatroom or raise ChatRoomNotFoundError."""
        room = await self.find_chatroom(chatroom_id)
        if room is None:
            raise ChatRoomNotFoundError(str(chatroom_id))
        return room
