"""
Streaming chat-completion client.

Thin non-blocking wrapper over the OpenAI chat-completions streaming endpoint.
Frames are read as raw SSE lines so a single malformed frame can be dropped
without aborting the visible stream. This layer never retries; callers decide
whether a failure is worth another attempt via :func:`is_transient_error`.
"""

from __future__ import annotations

import json

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx

from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)

from core.constants import DEFAULT_MAX_OUTPUT_TOKENS, DEFAULT_MODEL, DEFAULT_TEMPERATURE
from utils.logger import logger
from utils.metrics import llm_tokens_total

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"

TRANSIENT_LLM_EXCEPTIONS: tuple[type[BaseException], ...] = (
    APIConnectionError,  # APITimeoutError is a subclass
    APITimeoutError,
    RateLimitError,
    InternalServerError,
    httpx.TransportError,
)


@dataclass(frozen=True)
class ModelConfig:
    """Model id and sampling parameters for one call."""

    model: str = DEFAULT_MODEL
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    temperature: float = DEFAULT_TEMPERATURE


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class StreamFrame:
    """One parsed frame: a text delta, a usage report, or both."""

    text: str = ""
    usage: TokenUsage | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text and self.usage is None


@dataclass
class CompletionResult:
    text: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)


def parse_frame(raw: str) -> StreamFrame | None:
    """Extract text and usage from one SSE data payload.

    Returns None when the payload is not a JSON object of the expected shape.
    """
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    parts: list[str] = []
    choices = data.get("choices") or []
    if not isinstance(choices, list):
        return None
    for choice in choices:
        if not isinstance(choice, dict):
            continue
        delta = choice.get("delta")
        if isinstance(delta, dict):
            content = delta.get("content")
            if isinstance(content, str) and content:
                parts.append(content)

    usage: TokenUsage | None = None
    raw_usage = data.get("usage")
    if isinstance(raw_usage, dict):
        try:
            usage = TokenUsage(
                input_tokens=int(raw_usage.get("prompt_tokens") or 0),
                output_tokens=int(raw_usage.get("completion_tokens") or 0),
            )
        except (TypeError, ValueError):
            return None

    return StreamFrame(text="".join(parts), usage=usage)


def is_transient_error(exc: BaseException) -> bool:
    """Whether a failed call may succeed if simply attempted again."""
    return isinstance(exc, TRANSIENT_LLM_EXCEPTIONS)


def build_messages(system_prompt: str, user_content: str) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_content})
    return messages


class StreamingCompletionClient:
    """Issues streaming chat-completion calls and yields parsed frames."""

    def __init__(self, client: AsyncOpenAI, default_config: ModelConfig | None = None):
        self.client = client
        self.default_config = default_config or ModelConfig()

    async def stream_raw(
        self,
        system_prompt: str,
        user_content: str,
        config: ModelConfig | None = None,
    ) -> AsyncIterator[str]:
        """Yield raw SSE data payloads for one call, lazily and in order."""
        cfg = config or self.default_config
        request: dict[str, Any] = {
            "model": cfg.model,
            "messages": build_messages(system_prompt, user_content),
            "stream": True,
            "stream_options": {"include_usage": True},
            "max_tokens": cfg.max_output_tokens,
            "temperature": cfg.temperature,
        }

        async with self.client.chat.completions.with_streaming_response.create(**request) as response:
            async for line in response.iter_lines():
                line = line.strip()
                if not line:
                    continue
                if line.startswith(SSE_DATA_PREFIX):
                    line = line[len(SSE_DATA_PREFIX) :].strip()
                if line == SSE_DONE:
                    break
                yield line

    async def stream(
        self,
        system_prompt: str,
        user_content: str,
        config: ModelConfig | None = None,
    ) -> AsyncIterator[StreamFrame]:
        """Yield frames carrying text or usage; malformed frames are dropped."""
        cfg = config or self.default_config
        async for raw in self.stream_raw(system_prompt, user_content, cfg):
            frame = parse_frame(raw)
            if frame is None:
                logger.debug(f"Dropped malformed stream frame ({len(raw)} chars)")
                continue
            if frame.is_empty:
                continue
            if frame.usage is not None:
                llm_tokens_total.labels(model=cfg.model, type="input").inc(frame.usage.input_tokens)
                llm_tokens_total.labels(model=cfg.model, type="output").inc(frame.usage.output_tokens)
            yield frame

    async def complete(
        self,
        system_prompt: str,
        user_content: str,
        config: ModelConfig | None = None,
    ) -> CompletionResult:
        """Drain the stream into one buffered result."""
        parts: list[str] = []
        usage = TokenUsage()
        async for frame in self.stream(system_prompt, user_content, config):
            if frame.text:
                parts.append(frame.text)
            if frame.usage is not None:
                usage = frame.usage
        return CompletionResult(text="".join(parts), usage=usage)


__all__ = [
    "TRANSIENT_LLM_EXCEPTIONS",
    "CompletionResult",
    "ModelConfig",
    "StreamFrame",
    "StreamingCompletionClient",
    "TokenUsage",
    "build_messages",
    "is_transient_error",
    "parse_frame",
]
