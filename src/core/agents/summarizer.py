"""
Summarizer agent: rolling structured summary over the latest message window.

Message content is PII-masked before it is put in the prompt. The stream is
drained completely before parsing. Any failure while loading, calling or
parsing yields :func:`empty_summary` so summarization never holds up delivery.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from core import prompts
from core.agents.base import AgentCall
from core.constants import SUMMARY_KEYWORD_MAX_LENGTH, SUMMARY_MAX_KEYWORDS, TRUNCATION_MARKER
from integrations.completion_client import ModelConfig, StreamingCompletionClient
from models.agent_models import SummaryResult
from models.chat_models import Message
from utils.json_utils import json_compact, load_model_json
from utils.logger import logger
from utils.pii import mask_pii
from utils.token_utils import estimate_tokens

if TYPE_CHECKING:
    from api.services.message_service import MessageService

EMPTY_SUMMARY = "{}"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def empty_summary() -> SummaryResult:
    return SummaryResult(timestamp=_now_iso())


def clip_keyword(keyword: str) -> str:
    if len(keyword) > SUMMARY_KEYWORD_MAX_LENGTH:
        return keyword[: SUMMARY_KEYWORD_MAX_LENGTH - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
    return keyword


def build_user_prompt(messages: Sequence[Message], previous_summary: str | None) -> str:
    lines = [
        prompts.SUMMARIZER_PREVIOUS_SUMMARY + (previous_summary or EMPTY_SUMMARY) + "\n\n",
        prompts.SUMMARIZER_RECENT_HEADER,
    ]
    for m in messages:
        lines.append(f"[{m.sequence_number}] {m.sender_type}: {mask_pii(m.content)}\n")
    lines.append(prompts.SUMMARIZER_RESPONSE_FORMAT)
    return "".join(lines)


def parse_summary_node(node: Any) -> tuple[str, list[str]]:
    """Extract (compact summary JSON, clipped keywords) from the parsed output.

    Raises:
        ValueError: If the output is not a JSON object
    """
    if not isinstance(node, dict):
        raise ValueError(f"summary output is a {type(node).__name__}, expected an object")

    summary = json_compact(node["summary"]) if "summary" in node else EMPTY_SUMMARY
    keywords: list[str] = []
    raw_keywords = node.get("keywords")
    if isinstance(raw_keywords, list):
        keywords = [clip_keyword(str(k)) for k in raw_keywords if k is not None]
    return summary, keywords[:SUMMARY_MAX_KEYWORDS]


class SummarizerAgent:
    def __init__(
        self,
        client: StreamingCompletionClient,
        message_service: MessageService,
        config: ModelConfig | None = None,
    ):
        self.client = client
        self.message_service = message_service
        self.config = config

    async def summarize(self, chatroom_id: UUID, window: int, previous_summary: str | None) -> SummaryResult:
        """Summarize the last ``window`` messages of a room, never raising."""
        call = AgentCall("summarizer", str(chatroom_id))
        try:
            recent = await self.message_service.list_recent_messages(chatroom_id, window)
            if not recent:
                call.finish("success", messages=0)
                return empty_summary()

            system_prompt = prompts.SUMMARIZER_SYSTEM_PROMPT
            user_prompt = build_user_prompt(recent, previous_summary)
            completion = await self.client.complete(system_prompt, user_prompt, self.config)

            summary, keywords = parse_summary_node(load_model_json(completion.text))
            tokens = estimate_tokens(system_prompt + user_prompt) + estimate_tokens(completion.text)
        except Exception as e:
            logger.warning(f"Summarizer failed, returning empty summary: {e}", chatroom_id=str(chatroom_id))
            call.finish("default")
            return empty_summary()

        result = SummaryResult(
            timestamp=_now_iso(),
            summary=summary,
            keywords=keywords,
            window_start_seq=recent[0].sequence_number,
            window_end_seq=recent[-1].sequence_number,
            tokens=tokens,
        )
        call.finish("success", messages=len(recent), keywords=len(keywords), tokens=tokens)
        return result
