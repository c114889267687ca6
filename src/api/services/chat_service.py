"""
Single-agent streaming path.

One completion per user message, pushed fragment by fragment, wrapped in a
bounded retry that only covers transient transport errors. Every usage frame
is billed immediately. The reply is persisted only after the stream finished
cleanly; when retries are exhausted an ``ai_error`` event is pushed and
nothing is persisted.
"""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from api.middleware.request_context import create_turn_context, get_request_id
from api.services.billing_service import BillingService, compute_cost
from api.services.chatroom_service import ChatroomService
from api.services.event_publisher import EventPublisher
from api.services.message_service import MessageService
from api.services.prompt_service import PromptService
from core.constants import (
    EVENT_AI_ERROR,
    EVENT_AI_RESPONSE,
    EVENT_AI_RESPONSE_DONE,
    EVENT_AI_USAGE,
    EVENT_AI_USAGE_TOTAL,
    LLM_MAX_RETRIES,
    LLM_RETRY_BACKOFF_FACTOR,
    LLM_RETRY_INITIAL_DELAY,
    PROMPT_MAX_CHARS,
    PROVIDER_OPENAI,
    SENDER_BOT,
    get_settings,
)
from core.prompt_composer import truncate
from integrations.completion_client import (
    TRANSIENT_LLM_EXCEPTIONS,
    ModelConfig,
    StreamingCompletionClient,
    TokenUsage,
)
from models.chat_models import Message
from models.error_models import ErrorCode
from models.event_models import UsagePayload
from utils.logger import logger
from utils.metrics import llm_stream_retries_total
from utils.retry import call_with_retry


@dataclass
class StreamAccumulator:
    """Text and usage gathered by one streaming attempt."""

    parts: list[str] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    cost_in: Decimal = Decimal("0")
    cost_out: Decimal = Decimal("0")

    @property
    def text(self) -> str:
        return "".join(self.parts)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add_usage(self, usage: TokenUsage, cost_in: Decimal, cost_out: Decimal) -> None:
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.cost_in += cost_in
        self.cost_out += cost_out


class ChatService:
    """Direct completion streamer with retry and per-frame billing."""

    def __init__(
        self,
        client: StreamingCompletionClient,
        prompt_service: PromptService,
        chatroom_service: ChatroomService,
        message_service: MessageService,
        billing_service: BillingService,
        publisher: EventPublisher,
        config: ModelConfig | None = None,
    ):
        self.client = client
        self.prompt_service = prompt_service
        self.chatroom_service = chatroom_service
        self.message_service = message_service
        self.billing_service = billing_service
        self.publisher = publisher
        self.config = config or client.default_config

    async def _resolve_user(self, message: Message) -> UUID | None:
        if message.sender_id is not None:
            return message.sender_id
        room = await self.chatroom_service.find_chatroom(message.chatroom_id)
        return room.user_id if room else None

    async def _record_usage(
        self,
        message: Message,
        user_id: UUID | None,
        usage: TokenUsage,
        acc: StreamAccumulator,
    ) -> None:
        settings = get_settings()
        room = str(message.chatroom_id)
        cost_in = compute_cost(usage.input_tokens, settings.llm_price_per_1k_input)
        cost_out = compute_cost(usage.output_tokens, settings.llm_price_per_1k_output)
        acc.add_usage(usage, cost_in, cost_out)

        if user_id is None:
            logger.warning("Usage not billed: chatroom has no owning user", chatroom_id=room)
        else:
            try:
                await self.billing_service.record_usage(
                    user_id=user_id,
                    chatroom_id=message.chatroom_id,
                    provider=PROVIDER_OPENAI,
                    model=self.config.model,
                    request_id=get_request_id() or str(message.id),
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    cost_in=cost_in,
                    cost_out=cost_out,
                )
            except Exception as e:
                logger.error(
                    f"Billing write failed ({ErrorCode.BILLING_WRITE_FAILED.value}): {e}",
                    exc_info=True,
                    chatroom_id=room,
                )

        payload = UsagePayload(
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cost_in=str(cost_in),
            cost_out=str(cost_out),
            model=self.config.model,
        )
        await self.publisher.send(room, EVENT_AI_USAGE, payload.to_dict())

    async def _stream_once(
        self,
        message: Message,
        user_id: UUID | None,
        system_prompt: str,
        content: str,
    ) -> StreamAccumulator:
        acc = StreamAccumulator()
        room = str(message.chatroom_id)
        async for frame in self.client.stream(system_prompt, content, self.config):
            if frame.text:
                acc.parts.append(frame.text)
                await self.publisher.send(room, EVENT_AI_RESPONSE, {"content": frame.text})
            if frame.usage is not None:
                await self._record_usage(message, user_id, frame.usage, acc)
        return acc

    async def stream_ai_response(self, message: Message) -> Message | None:
        """Generate, push and persist the bot reply to a persisted user message.

        Returns:
            The persisted bot message, or None when generation failed
        """
        room = str(message.chatroom_id)
        create_turn_context(room, str(message.sender_id) if message.sender_id else None, str(message.id))
        started = time.perf_counter()

        max_chars = get_settings().llm_max_prompt_chars or PROMPT_MAX_CHARS
        content = truncate(message.content, max_chars)
        system_prompt = await self.prompt_service.build_system_prompt(message.chatroom_id)
        user_id = await self._resolve_user(message)

        def on_retry(attempt: int, exc: BaseException) -> None:
            llm_stream_retries_total.inc()

        try:
            acc = await call_with_retry(
                lambda: self._stream_once(message, user_id, system_prompt, content),
                max_attempts=LLM_MAX_RETRIES + 1,
                base_delay=LLM_RETRY_INITIAL_DELAY,
                max_delay=LLM_RETRY_INITIAL_DELAY * LLM_RETRY_BACKOFF_FACTOR**LLM_MAX_RETRIES,
                retryable_exceptions=TRANSIENT_LLM_EXCEPTIONS,
                factor=LLM_RETRY_BACKOFF_FACTOR,
                jitter=False,
                operation=f"AI response stream for chatroom {room}",
                on_retry=on_retry,
            )
            reply = acc.text
            bot_message = await self.message_service.create_message(
                message.chatroom_id,
                SENDER_BOT,
                None,
                reply,
                token_count=acc.output_tokens or None,
                processing_time_ms=int((time.perf_counter() - started) * 1000),
            )
        except Exception as e:
            logger.error(f"AI response failed: {e}", exc_info=True, chatroom_id=room)
            await self.publisher.send_error(
                room,
                EVENT_AI_ERROR,
                ErrorCode.GENERATION_FAILED,
                str(e) or type(e).__name__,
                recoverable=True,
            )
            return None

        message_id = str(bot_message.id)
        await self.publisher.send(room, EVENT_AI_RESPONSE_DONE, {"messageId": message_id})
        total = UsagePayload(
            input_tokens=acc.input_tokens,
            output_tokens=acc.output_tokens,
            cost_in=str(acc.cost_in),
            cost_out=str(acc.cost_out),
            model=self.config.model,
        )
        await self.publisher.send(room, EVENT_AI_USAGE_TOTAL, total.to_dict())
        await self.publisher.publish_ai_response_complete(room, message_id, reply, acc.total_tokens)

        logger.log_conversation_turn(
            chatroom_id=room,
            user_input=message.content,
            response=reply,
            duration_ms=(time.perf_counter() - started) * 1000,
            tokens_used=acc.total_tokens,
            pipeline="single_agent",
        )
        return bot_message
