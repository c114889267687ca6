"""Centralized JSON serialization and model-output parsing utilities.

Pre-created partial functions for common JSON serialization patterns, plus a
lenient loader for JSON produced by language models.
"""

from __future__ import annotations

import json
import re

from collections.abc import Callable
from functools import partial
from typing import Any

# Compact JSON serialization (no spaces) with fallback to str for non-serializable types.
# Use for bus payloads where size matters.
json_compact: Callable[..., str] = partial(json.dumps, separators=(",", ":"), default=str, ensure_ascii=False)

# Standard JSON serialization with fallback to str for non-serializable types.
json_safe: Callable[..., str] = partial(json.dumps, default=str, ensure_ascii=False)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def safe_json_dumps(obj: Any, **kwargs: Any) -> str:
    """JSON serialization with error handling and fallback.

    Returns a JSON error object instead of raising when serialization fails.
    """
    try:
        if "separators" not in kwargs:
            kwargs["separators"] = (",", ":")
        if "default" not in kwargs:
            kwargs["default"] = str
        kwargs.setdefault("ensure_ascii", False)

        return json.dumps(obj, **kwargs)

    except (TypeError, ValueError) as e:
        return json.dumps({"error": f"Serialization failed: {e}"})


def load_model_json(text: str) -> Any:
    """Parse JSON emitted by a model.

    Strips surrounding markdown code fences and any prose before the first
    bracket or after the matching last bracket.

    Raises:
        ValueError: If no JSON value can be decoded (json.JSONDecodeError included).
    """
    stripped = _CODE_FENCE.sub("", text.strip()).strip()
    if not stripped:
        raise ValueError("empty model output")

    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    starts = [i for i in (stripped.find("{"), stripped.find("[")) if i != -1]
    if not starts:
        raise ValueError("no JSON value in model output")
    start = min(starts)
    end = max(stripped.rfind("}"), stripped.rfind("]"))
    if end <= start:
        raise ValueError("unterminated JSON value in model output")
    return json.loads(stripped[start : end + 1])
