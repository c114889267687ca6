from __future__ import annotations

from uuid import UUID

from api.services.chatroom_service import ChatroomService
from api.services.event_publisher import EventPublisher
from api.services.message_service import MessageService
from api.services.progress_service import ProgressService
from core import prompts
from core.constants import DEFAULT_INTIMACY_LEVEL, EVENT_CONVERSATION_COMPLETE, SENDER_BOT
from models.agent_models import ConversationResult
from models.chat_models import Message
from utils.logger import logger


def default_level_for(concept: str | None) -> int:
    return prompts.CONCEPT_DEFAULT_LEVELS.get(prompts.normalize_concept(concept), DEFAULT_INTIMACY_LEVEL)


def build_greeting(concept: str | None, intimacy_level: int) -> str:
    """Concept greeting followed by the register hint for ``intimacy_level``."""
    base = prompts.CONCEPT_GREETINGS.get(prompts.normalize_concept(concept), prompts.DEFAULT_CONCEPT_GREETING)
    suffix = prompts.INTIMACY_GREETING_SUFFIXES.get(intimacy_level, prompts.DEFAULT_INTIMACY_GREETING_SUFFIX)
    return f"{base} {suffix}"


class GreetingService:
    """Sends the bot's first message into a freshly created chatroom."""

    def __init__(
        self,
        chatroom_service: ChatroomService,
        message_service: MessageService,
        progress_service: ProgressService,
        publisher: EventPublisher,
    ):
        self.chatroom_service = chatroom_service
        self.message_service = message_service
        self.progress_service = progress_service
        self.publisher = publisher

    async def send_greeting(
        self,
        chatroom_id: UUID,
        user_id: UUID | None,
        intimacy_level: int | None = None,
    ) -> Message | None:
        """Persist and push the greeting, then start the room's progress at that level.

        Failures are logged, never raised.
        """
        room_id = str(chatroom_id)
        try:
            room = await self.chatroom_service.get_chatroom(chatroom_id)
            level = intimacy_level if intimacy_level is not None else default_level_for(room.concept)
            text = build_greeting(room.concept, level)

            greeting = await self.message_service.create_message(chatroom_id, SENDER_BOT, None, text)
            result = ConversationResult(message_id=str(greeting.id), content=text)
            await self.publisher.send(room_id, EVENT_CONVERSATION_COMPLETE, result.to_event())

            created = await self.progress_service.initialize(chatroom_id, user_id or room.user_id, level)
        except Exception as e:
            logger.error(f"Greeting failed: {e}", exc_info=True, chatroom_id=room_id)
            return None

        logger.info(
            f"Greeting sent (concept {prompts.normalize_concept(room.concept)}, level {level}, "
            f"progress {'created' if created else 'kept'})",
            chatroom_id=room_id,
            message_id=str(greeting.id),
        )
        return greeting
