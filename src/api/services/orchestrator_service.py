"""
Multi-agent orchestration for one inbound user message.

Per turn:
    1. Read the room's intimacy level (default 1)
    2. Intimacy and vocabulary analyses run concurrently; each pushes its own
       result event, intimacy also persists progress
    3. The conversation agent streams chunks, the reply is persisted once, and
       ``conversation_complete`` is pushed
    4. After the conversation succeeds, the window is summarized and merged
       into the progress document
    5. After both analyses finish, ``aggregated_complete`` is pushed

Branches are isolated: a failure is logged and surfaced as an error event,
and never retried or allowed to cancel a sibling.
"""

from __future__ import annotations

import asyncio
import time

from typing import Any, assert_never
from uuid import UUID

from api.middleware.request_context import create_turn_context
from api.services.event_publisher import EventPublisher
from api.services.message_service import MessageService
from api.services.progress_service import ProgressService
from api.websocket.task_manager import TaskSupervisor
from core.agents import ConversationAgent, IntimacyAgent, SummarizerAgent, VocabularyAgent
from core.constants import (
    DEFAULT_INTIMACY_LEVEL,
    EVENT_AGENT_ERROR,
    EVENT_AGGREGATED_COMPLETE,
    EVENT_CONVERSATION_CHUNK,
    EVENT_CONVERSATION_COMPLETE,
    EVENT_CONVERSATION_ERROR,
    EVENT_INTIMACY_ANALYSIS,
    EVENT_VOCABULARY_EXTRACTED,
    SENDER_BOT,
    SUMMARY_WINDOW_SIZE,
)
from models.agent_models import AgentResult, ConversationResult, IntimacyResult, VocabularyResult
from models.chat_models import Message
from models.error_models import ErrorCode
from utils.logger import logger
from utils.token_utils import estimate_tokens


def aggregate_results(results: list[AgentResult]) -> dict[str, Any]:
    """Build the ``aggregated_complete`` digest from the finished analyses.

    A missing analysis contributes its safe default.
    """
    intimacy = IntimacyResult.fallback()
    word_count = 0
    for result in results:
        match result:
            case IntimacyResult():
                intimacy = result
            case VocabularyResult():
                word_count = len(result.words)
            case ConversationResult():
                continue
            case _:
                assert_never(result)

    return {
        "intimacy": {
            "detectedLevel": intimacy.detected_level,
            "correctedSentence": intimacy.corrected_sentence,
            "feedback": intimacy.feedback.model_dump(),
        },
        "vocabulary": {"words": word_count},
    }


def result_event(result: AgentResult) -> tuple[str, dict[str, Any]]:
    """Push event type and payload for one agent result."""
    match result:
        case IntimacyResult():
            return EVENT_INTIMACY_ANALYSIS, result.to_event()
        case VocabularyResult():
            return EVENT_VOCABULARY_EXTRACTED, result.to_event()
        case ConversationResult():
            return EVENT_CONVERSATION_COMPLETE, result.to_event()
        case _:
            assert_never(result)


class OrchestratorService:
    def __init__(
        self,
        publisher: EventPublisher,
        message_service: MessageService,
        progress_service: ProgressService,
        conversation_agent: ConversationAgent,
        intimacy_agent: IntimacyAgent,
        vocabulary_agent: VocabularyAgent,
        summarizer_agent: SummarizerAgent,
        supervisor: TaskSupervisor | None = None,
        summary_window: int = SUMMARY_WINDOW_SIZE,
    ):
        self.publisher = publisher
        self.message_service = message_service
        self.progress_service = progress_service
        self.conversation_agent = conversation_agent
        self.intimacy_agent = intimacy_agent
        self.vocabulary_agent = vocabulary_agent
        self.summarizer_agent = summarizer_agent
        self.supervisor = supervisor or TaskSupervisor()
        self.summary_window = summary_window

    def dispatch(self, chatroom_id: UUID, user_id: UUID | None, message: Message) -> asyncio.Task[None] | None:
        """Submit a turn to the supervisor and return without waiting."""
        room = str(chatroom_id)

        async def notify_failure(exc: BaseException) -> None:
            await self.publisher.send_error(
                room,
                EVENT_AGENT_ERROR,
                ErrorCode.INTERNAL_UNEXPECTED,
                f"Turn processing failed: {type(exc).__name__}",
                recoverable=True,
            )

        return self.supervisor.submit(
            self.process_user_message(chatroom_id, user_id, message),
            name=f"turn:{room}:{message.sequence_number}",
            on_error=notify_failure,
        )

    async def process_user_message(self, chatroom_id: UUID, user_id: UUID | None, message: Message) -> None:
        create_turn_context(str(chatroom_id), str(user_id) if user_id else None, str(message.id))
        level = await self._read_level(chatroom_id)
        logger.info(
            f"Turn started (level {level}, message #{message.sequence_number})",
            chatroom_id=str(chatroom_id),
        )
        await asyncio.gather(
            self._run_analyses(chatroom_id, user_id, message.content, level),
            self._run_conversation(chatroom_id, user_id, message.content, level),
        )

    async def _read_level(self, chatroom_id: UUID) -> int:
        try:
            return await self.progress_service.get_intimacy_level(chatroom_id)
        except Exception as e:
            logger.warning(f"Intimacy level unavailable, using default: {e}", chatroom_id=str(chatroom_id))
            return DEFAULT_INTIMACY_LEVEL

    # ------------------------------------------------------------------
    # Analyses (step 2 and the step 5 barrier)
    # ------------------------------------------------------------------

    async def _run_analyses(self, chatroom_id: UUID, user_id: UUID | None, content: str, level: int) -> None:
        outcomes = await asyncio.gather(
            self._run_intimacy(chatroom_id, user_id, content, level),
            self._run_vocabulary(chatroom_id, content, level),
        )
        results: list[AgentResult] = [r for r in outcomes if r is not None]
        await self.publisher.send(str(chatroom_id), EVENT_AGGREGATED_COMPLETE, aggregate_results(results))

    async def _run_intimacy(
        self,
        chatroom_id: UUID,
        user_id: UUID | None,
        content: str,
        level: int,
    ) -> IntimacyResult | None:
        room = str(chatroom_id)
        try:
            result = await self.intimacy_agent.analyze(chatroom_id, content, level)
        except Exception as e:
            logger.error(f"Intimacy branch failed: {e}", exc_info=True, chatroom_id=room)
            await self.publisher.send_error(room, EVENT_AGENT_ERROR, ErrorCode.AGENT_FAILED, str(e), agent="intimacy")
            return None

        await self._push_result(room, result)
        try:
            await self.progress_service.apply_intimacy_result(chatroom_id, user_id, result)
        except Exception as e:
            logger.error(f"Intimacy progress write failed: {e}", exc_info=True, chatroom_id=room)
            await self.publisher.send_error(
                room, EVENT_AGENT_ERROR, ErrorCode.PROGRESS_WRITE_FAILED, str(e), agent="intimacy"
            )
        return result

    async def _run_vocabulary(self, chatroom_id: UUID, content: str, level: int) -> VocabularyResult | None:
        room = str(chatroom_id)
        try:
            result = await self.vocabulary_agent.extract(content, level, room)
        except Exception as e:
            logger.error(f"Vocabulary branch failed: {e}", exc_info=True, chatroom_id=room)
            await self.publisher.send_error(room, EVENT_AGENT_ERROR, ErrorCode.AGENT_FAILED, str(e), agent="vocabulary")
            return None

        await self._push_result(room, result)
        return result

    async def _push_result(self, room: str, result: AgentResult) -> None:
        event_type, payload = result_event(result)
        await self.publisher.send(room, event_type, payload)

    # ------------------------------------------------------------------
    # Conversation (step 3) and summary merge (step 4)
    # ------------------------------------------------------------------

    async def _run_conversation(self, chatroom_id: UUID, user_id: UUID | None, content: str, level: int) -> None:
        room = str(chatroom_id)
        started = time.perf_counter()
        parts: list[str] = []
        try:
            async for fragment in self.conversation_agent.stream_reply(chatroom_id, content, level):
                parts.append(fragment)
                await self.publisher.send(room, EVENT_CONVERSATION_CHUNK, {"content": fragment})

            reply = "".join(parts)
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            bot_message = await self.message_service.create_message(
                chatroom_id,
                SENDER_BOT,
                None,
                reply,
                token_count=estimate_tokens(reply),
                processing_time_ms=elapsed_ms,
            )
        except Exception as e:
            logger.error(f"Conversation branch failed: {e}", exc_info=True, chatroom_id=room)
            await self.publisher.send_error(
                room,
                EVENT_CONVERSATION_ERROR,
                ErrorCode.GENERATION_FAILED,
                str(e) or type(e).__name__,
                agent="conversation",
            )
            return

        await self._push_result(room, ConversationResult(message_id=str(bot_message.id), content=reply))
        logger.log_conversation_turn(
            chatroom_id=room,
            user_input=content,
            response=reply,
            duration_ms=(time.perf_counter() - started) * 1000,
            tokens_used=bot_message.token_count,
        )

        await self._merge_summary(chatroom_id, user_id)

    async def _merge_summary(self, chatroom_id: UUID, user_id: UUID | None) -> None:
        room = str(chatroom_id)
        try:
            previous = await self.progress_service.get_previous_summary(chatroom_id)
            summary = await self.summarizer_agent.summarize(chatroom_id, self.summary_window, previous)
            if summary.is_empty:
                logger.debug("Summarizer returned nothing to merge", chatroom_id=room)
                return
            await self.progress_service.apply_summary(chatroom_id, user_id, summary)
        except Exception as e:
            logger.error(f"Summary merge failed: {e}", exc_info=True, chatroom_id=room)
            await self.publisher.send_error(
                room, EVENT_AGENT_ERROR, ErrorCode.SUMMARY_MERGE_FAILED, str(e), agent="summarizer"
            )
