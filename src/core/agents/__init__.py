"""
Single-purpose LLM agents driven by the orchestrator.

Modules:
    conversation: Streams the bot reply
    intimacy: Register classification and sentence correction
    vocabulary: Difficult-word extraction
    summarizer: Rolling structured summary and keywords
"""

from __future__ import annotations

from core.agents.conversation import ConversationAgent
from core.agents.intimacy import IntimacyAgent
from core.agents.summarizer import SummarizerAgent
from core.agents.vocabulary import VocabularyAgent

__all__ = ["ConversationAgent", "IntimacyAgent", "SummarizerAgent", "VocabularyAgent"]
