"""
Vocabulary agent: picks at most one difficult word out of a message.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from core.agents.base import AgentCall
from core.prompts import build_vocabulary_prompt
from integrations.completion_client import ModelConfig, StreamingCompletionClient
from models.agent_models import VocabularyResult, VocabularyWord
from utils.json_utils import load_model_json
from utils.logger import logger

MIN_WORD_DIFFICULTY = 2
MAX_WORDS = 1


def _candidate_items(node: Any) -> list[Any]:
    if isinstance(node, list):
        return node
    if isinstance(node, dict):
        words = node.get("words")
        if isinstance(words, list):
            return words
        # A single bare word object is accepted as a one-item list
        if "word" in node:
            return [node]
    return []


def parse_vocabulary_response(text: str) -> VocabularyResult:
    """Parse a JSON array or ``{"words": [...]}``; ``{}`` and ``[]`` are empty results.

    Raises:
        ValueError: If the output holds no JSON value
    """
    if not text.strip():
        return VocabularyResult()

    words: list[VocabularyWord] = []
    for item in _candidate_items(load_model_json(text)):
        if not isinstance(item, dict) or not isinstance(item.get("context"), dict):
            continue
        word = item.get("word")
        if not isinstance(word, str) or not word.strip():
            continue
        try:
            parsed = VocabularyWord.model_validate({**item, "word": word.strip()})
        except ValidationError:
            continue
        if parsed.difficulty < MIN_WORD_DIFFICULTY:
            continue
        words.append(parsed)
        if len(words) >= MAX_WORDS:
            break
    return VocabularyResult(words=words)


class VocabularyAgent:
    def __init__(self, client: StreamingCompletionClient, config: ModelConfig | None = None):
        self.client = client
        self.config = config

    async def extract(self, content: str, level: int, chatroom_id: str | None = None) -> VocabularyResult:
        """Extract a difficult word for a learner at ``level``; failures give an empty result."""
        call = AgentCall("vocabulary", chatroom_id)
        try:
            completion = await self.client.complete(build_vocabulary_prompt(level), content, self.config)
            result = parse_vocabulary_response(completion.text)
        except Exception as e:
            logger.warning(f"Vocabulary extraction failed, returning no words: {e}", chatroom_id=chatroom_id)
            call.finish("default")
            return VocabularyResult()

        call.finish("success", words=len(result.words))
        return result
