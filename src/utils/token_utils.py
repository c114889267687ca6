"""
Heuristic token estimation for local cost accounting.

Not billing-grade: billed usage always comes from the provider's usage frames.
"""

from __future__ import annotations

from core.constants import (
    HANGUL_SYLLABLE_END,
    HANGUL_SYLLABLE_START,
    KOREAN_TOKENS_PER_CHAR,
    OTHER_TOKENS_PER_CHAR,
)


def count_korean_chars(text: str) -> int:
    """Count Hangul syllables in text."""
    return sum(1 for ch in text if HANGUL_SYLLABLE_START <= ord(ch) <= HANGUL_SYLLABLE_END)


def estimate_tokens(text: str | None) -> int:
    """Estimate token count: ~1.5 tokens per Korean syllable, ~0.25 per other character."""
    if not text:
        return 0
    korean = count_korean_chars(text)
    other = len(text) - korean
    return int(korean * KOREAN_TOKENS_PER_CHAR + other * OTHER_TOKENS_PER_CHAR)
