"""
Intimacy agent: classifies the register of a learner's message.

One buffered completion per message. The model is asked for JSON; whatever
comes back is parsed leniently and anything unusable becomes
:meth:`IntimacyResult.fallback`. The agent never raises.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from core.agents.base import AgentCall
from core.constants import DEFAULT_INTIMACY_LEVEL, INTIMACY_LEVEL_MAX, INTIMACY_LEVEL_MIN
from integrations.completion_client import ModelConfig, StreamingCompletionClient
from models.agent_models import FeedbackText, IntimacyResult
from utils.json_utils import load_model_json
from utils.logger import logger

if TYPE_CHECKING:
    from api.services.prompt_service import PromptService

CORRECTIONS_SEPARATOR = "; "


def _parse_level(value: Any) -> int:
    try:
        level = int(value)
    except (TypeError, ValueError):
        return DEFAULT_INTIMACY_LEVEL
    return max(INTIMACY_LEVEL_MIN, min(INTIMACY_LEVEL_MAX, level))


def _parse_feedback(value: Any) -> FeedbackText:
    if isinstance(value, dict):
        return FeedbackText(ko=str(value.get("ko") or ""), en=str(value.get("en") or ""))
    if isinstance(value, str):
        return FeedbackText(ko=value)
    return FeedbackText()


def _parse_corrections(value: Any) -> str:
    if isinstance(value, list):
        return CORRECTIONS_SEPARATOR.join(str(item).strip() for item in value if str(item).strip())
    if isinstance(value, str):
        return value.strip()
    return ""


def parse_intimacy_response(text: str) -> IntimacyResult:
    """Turn raw model output into an IntimacyResult.

    Empty output gives the plain default.

    Raises:
        ValueError: If the output is not a JSON object
    """
    if not text.strip():
        return IntimacyResult()

    node = load_model_json(text)
    if not isinstance(node, dict):
        raise ValueError(f"intimacy output is a {type(node).__name__}, expected an object")

    corrected = node.get("correctedSentence", node.get("corrected_sentence", ""))
    return IntimacyResult(
        detected_level=_parse_level(node.get("detectedLevel", node.get("detected_level"))),
        corrected_sentence=corrected if isinstance(corrected, str) else "",
        feedback=_parse_feedback(node.get("feedback")),
        corrections=_parse_corrections(node.get("corrections")),
    )


class IntimacyAgent:
    def __init__(
        self,
        client: StreamingCompletionClient,
        prompt_service: PromptService,
        config: ModelConfig | None = None,
    ):
        self.client = client
        self.prompt_service = prompt_service
        self.config = config

    async def analyze(self, chatroom_id: UUID, content: str, intimacy_level: int | None = None) -> IntimacyResult:
        """Analyze one message against the room's target level.

        Args:
            chatroom_id: Room whose bot, concept and level shape the prompt
            content: The learner's message
            intimacy_level: Target level if already known; read from progress otherwise
        """
        call = AgentCall("intimacy", str(chatroom_id))
        try:
            system_prompt = await self.prompt_service.build_intimacy_prompt(chatroom_id, intimacy_level)
            completion = await self.client.complete(system_prompt, content, self.config)
        except Exception as e:
            logger.warning(f"Intimacy analysis call failed, using default: {e}", chatroom_id=str(chatroom_id))
            call.finish("default", reason="transport")
            return IntimacyResult.fallback()

        try:
            result = parse_intimacy_response(completion.text)
        except ValueError as e:
            logger.warning(
                f"Intimacy analysis output unparseable ({len(completion.text)} chars), using default: {e}",
                chatroom_id=str(chatroom_id),
            )
            call.finish("default", reason="parse")
            return IntimacyResult.fallback()

        call.finish("success", detected_level=result.detected_level, corrected=result.has_corrections)
        return result
