"""
System prompt composition.

Pure functions: given a chatbot, a chatroom and the learner's intimacy level,
build the bounded system prompt used by the conversation agent and the
streamer, or the analysis prompt used by the intimacy agent.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from core import prompts
from core.constants import PROMPT_MAX_CHARS, TRUNCATION_MARKER
from models.chat_models import Chatbot, ChatRoom


def truncate(text: str, max_chars: int = PROMPT_MAX_CHARS) -> str:
    """Cap text at ``max_chars``, ending with the truncation marker when cut."""
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - len(TRUNCATION_MARKER))] + TRUNCATION_MARKER


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def _join(values: Any) -> str:
    if not isinstance(values, list):
        return ""
    return ", ".join(_as_text(v) for v in values)


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, Mapping) else {}


def persona_directives(personality: Mapping[str, Any]) -> str:
    """Directives derived from the bot's personality descriptor."""
    parts: list[str] = []

    if "traits" in personality:
        parts.append(prompts.PERSONA_TRAITS + _join(personality["traits"]) + "\n")

    style = _section(personality, "speakingStyle")
    if style.get("honorific") is True:
        parts.append(prompts.PERSONA_HONORIFIC)
    if "formality" in style:
        parts.append(prompts.PERSONA_FORMALITY + _as_text(style["formality"]) + "\n")
    if "length" in style:
        parts.append(prompts.PERSONA_LENGTH + _as_text(style["length"]) + "\n")

    guardrails = _section(personality, "guardrails")
    if "refuseTopics" in guardrails:
        parts.append(prompts.PERSONA_REFUSE_TOPICS + _join(guardrails["refuseTopics"]) + "\n")
    if "escalationHint" in guardrails:
        parts.append(prompts.PERSONA_ESCALATION_HINT + _as_text(guardrails["escalationHint"]) + "\n")

    if "domainKnowledge" in personality:
        parts.append(prompts.PERSONA_DOMAIN_KNOWLEDGE + _join(personality["domainKnowledge"]) + "\n")

    few_shot = personality.get("fewShot")
    if isinstance(few_shot, list):
        parts.append(prompts.FEW_SHOT_HEADER)
        for example in few_shot:
            if not isinstance(example, Mapping):
                continue
            user, assistant = example.get("user"), example.get("assistant")
            if user is not None and assistant is not None:
                parts.append(prompts.FEW_SHOT_USER + _as_text(user) + "\n")
                parts.append(prompts.FEW_SHOT_ASSISTANT + _as_text(assistant) + "\n")

    return "".join(parts)


def capability_directives(capabilities: Mapping[str, Any]) -> str:
    """Response-style and safety directives from the bot's capability descriptor."""
    parts: list[str] = []

    style = _section(capabilities, "responseStyle")
    if "format" in style:
        parts.append(prompts.CAPABILITY_FORMAT + _as_text(style["format"]) + "\n")
    if "bulletPreference" in style:
        parts.append(prompts.CAPABILITY_BULLETS + _as_text(style["bulletPreference"]) + "\n")
    if "maxLength" in style:
        try:
            max_length = int(style["maxLength"])
        except (TypeError, ValueError):
            max_length = 0
        parts.append(prompts.CAPABILITY_MAX_LENGTH + str(max_length) + "\n")

    safety = _section(capabilities, "safety")
    if safety.get("profanityFilter") is True:
        parts.append(prompts.CAPABILITY_PROFANITY_FILTER)
    if safety.get("piiRedaction") is True:
        parts.append(prompts.CAPABILITY_PII_REDACTION)

    return "".join(parts)


def room_context(context_data: Mapping[str, Any]) -> str:
    """Summary, preferences and current topic from the room's context data."""
    if not context_data:
        return ""
    parts: list[str] = []

    if "conversationSummary" in context_data:
        parts.append(prompts.CONTEXT_SUMMARY_HEADER + _as_text(context_data["conversationSummary"]) + "\n")

    if "userPreferences" in context_data:
        preferences = _section(context_data, "userPreferences")
        parts.append(prompts.CONTEXT_PREFERENCES_HEADER)
        if "responseLength" in preferences:
            parts.append(prompts.CONTEXT_PREFERRED_LENGTH + _as_text(preferences["responseLength"]) + "\n")
        if "language" in preferences:
            parts.append(prompts.CONTEXT_LANGUAGE + _as_text(preferences["language"]) + "\n")
        if "topics" in preferences:
            parts.append(prompts.CONTEXT_TOPICS + _join(preferences["topics"]) + "\n")

    session_data = _section(context_data, "sessionData")
    if "currentTopic" in session_data:
        parts.append(prompts.CONTEXT_CURRENT_TOPIC + _as_text(session_data["currentTopic"]) + "\n")

    return "".join(parts)


def compose_system_prompt(
    bot: Chatbot | None,
    room: ChatRoom | None,
    intimacy_level: int,
    max_chars: int = PROMPT_MAX_CHARS,
) -> str:
    """Build the conversation system prompt for a room.

    Order: bot system prompt, persona, capabilities, room context, concept and
    intimacy guidelines, closing instruction. A missing room yields the
    default prompt.
    """
    if room is None:
        return prompts.DEFAULT_SYSTEM_PROMPT

    parts: list[str] = []
    if bot is not None:
        if bot.system_prompt and bot.system_prompt.strip():
            parts.append(bot.system_prompt.strip() + "\n\n")
        parts.append(persona_directives(bot.personality))
        parts.append(capability_directives(bot.capabilities))

    parts.append(room_context(room.context_data))

    parts.append(prompts.CONCEPT_SECTION_HEADER + prompts.concept_guideline(room.concept))
    parts.append(prompts.INTIMACY_SECTION_HEADER + prompts.intimacy_guideline(intimacy_level))
    parts.append(prompts.CLOSING_INSTRUCTION)

    return truncate("".join(parts), max_chars)


def compose_intimacy_prompt(bot: Chatbot | None, concept: str | None, intimacy_level: int) -> str:
    """Build the register-analysis prompt: base prompt, learner context, response format."""
    base = bot.intimacy_system_prompt if bot is not None and bot.intimacy_system_prompt else None
    concept_name = prompts.normalize_concept(concept)
    directives = prompts.INTIMACY_ANALYSIS_DIRECTIVES.format(
        level=intimacy_level,
        concept=concept_name,
        guideline=prompts.intimacy_concept_guideline(concept_name),
        response_format=prompts.INTIMACY_RESPONSE_FORMAT,
    )
    return (base or prompts.DEFAULT_INTIMACY_BASE_PROMPT) + directives
