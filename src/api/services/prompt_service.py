from __future__ import annotations

from uuid import UUID

from api.services.chatroom_service import ChatroomService
from api.services.progress_service import ProgressService
from core import prompts
from core.constants import DEFAULT_INTIMACY_LEVEL
from core.prompt_composer import compose_intimacy_prompt, compose_system_prompt
from utils.logger import logger


class PromptService:
    """Loads room, bot and progress, then composes prompts.

    Missing or unreadable data never aborts generation: every failure falls
    back to the default prompt.
    """

    def __init__(
        self,
        chatroom_service: ChatroomService,
        progress_service: ProgressService,
        max_chars: int | None = None,
    ):
        self.chatroom_service = chatroom_service
        self.progress_service = progress_service
        self.max_chars = max_chars

    async def _level(self, chatroom_id: UUID, intimacy_level: int | None) -> int:
        if intimacy_level is not None:
            return intimacy_level
        return await self.progress_service.get_intimacy_level(chatroom_id)

    async def build_system_prompt(self, chatroom_id: UUID, intimacy_level: int | None = None) -> str:
        try:
            room = await self.chatroom_service.find_chatroom(chatroom_id)
            if room is None:
                logger.warning("Chatroom not found, using default system prompt", chatroom_id=str(chatroom_id))
                return prompts.DEFAULT_SYSTEM_PROMPT
            level = await self._level(chatroom_id, intimacy_level)
            if self.max_chars:
                return compose_system_prompt(room.chatbot, room, level, self.max_chars)
            return compose_system_prompt(room.chatbot, room, level)
        except Exception as e:
            logger.error(
                f"System prompt composition failed, using default: {e}",
                exc_info=True,
                chatroom_id=str(chatroom_id),
            )
            return prompts.DEFAULT_SYSTEM_PROMPT

    async def build_intimacy_prompt(self, chatroom_id: UUID, intimacy_level: int | None = None) -> str:
        try:
            room = await self.chatroom_service.find_chatroom(chatroom_id)
            level = await self._level(chatroom_id, intimacy_level)
            if room is None:
                return compose_intimacy_prompt(None, None, level)
            return compose_intimacy_prompt(room.chatbot, room.concept, level)
        except Exception as e:
            logger.error(
                f"Intimacy prompt composition failed, using default: {e}",
                exc_info=True,
                chatroom_id=str(chatroom_id),
            )
            return compose_intimacy_prompt(None, None, intimacy_level or DEFAULT_INTIMACY_LEVEL)
