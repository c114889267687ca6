"""
Conversation agent: streams the bot reply for one user message.

The agent only produces fragments. Pushing them, persisting the final text and
reporting errors belong to the orchestrator, which owns the push channel.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING
from uuid import UUID

from core.agents.base import AgentCall
from core.prompt_composer import truncate
from integrations.completion_client import ModelConfig, StreamingCompletionClient

if TYPE_CHECKING:
    from api.services.prompt_service import PromptService


class ConversationAgent:
    def __init__(
        self,
        client: StreamingCompletionClient,
        prompt_service: PromptService,
        config: ModelConfig | None = None,
        max_content_chars: int | None = None,
    ):
        self.client = client
        self.prompt_service = prompt_service
        self.config = config
        self.max_content_chars = max_content_chars

    async def stream_reply(
        self,
        chatroom_id: UUID,
        content: str,
        intimacy_level: int | None = None,
    ) -> AsyncIterator[str]:
        """Yield reply text fragments in generation order.

        Transport errors propagate to the caller after the failure is recorded.
        """
        call = AgentCall("conversation", str(chatroom_id))
        system_prompt = await self.prompt_service.build_system_prompt(chatroom_id, intimacy_level)
        if self.max_content_chars:
            content = truncate(content, self.max_content_chars)

        chars = 0
        try:
            async for frame in self.client.stream(system_prompt, content, self.config):
                if frame.text:
                    chars += len(frame.text)
                    yield frame.text
        except Exception:
            call.finish("error", chars=chars)
            raise
        call.finish("success", chars=chars)
