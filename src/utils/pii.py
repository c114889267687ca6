"""PII masking for content that leaves the process.

Patterns replace email addresses, Korean phone numbers, national ID numbers and
card numbers with fixed placeholders. Placeholders contain no digits or '@', so
masking already-masked text is a no-op.
"""

from __future__ import annotations

import re

EMAIL_PLACEHOLDER = "[EMAIL]"
PHONE_PLACEHOLDER = "[PHONE]"
ID_NUMBER_PLACEHOLDER = "[ID_NUMBER]"
CARD_NUMBER_PLACEHOLDER = "[CARD_NUMBER]"

# Longer digit runs first so a card or ID number is never half-eaten by the phone patterns.
# Lookarounds instead of \b: Korean particles attach directly to numbers ("010-1234-5678입니다").
PII_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?<![A-Za-z0-9._%+-])[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}(?![A-Za-z])"), EMAIL_PLACEHOLDER),
    (re.compile(r"(?<!\d)\d{4}-?\d{4}-?\d{4}-?\d{4}(?!\d)"), CARD_NUMBER_PLACEHOLDER),
    (re.compile(r"(?<!\d)\d{6}-?\d{7}(?!\d)"), ID_NUMBER_PLACEHOLDER),
    (re.compile(r"(?<!\d)(?:010|011|016|017|018|019)-?\d{3,4}-?\d{4}(?!\d)"), PHONE_PLACEHOLDER),
    (re.compile(r"(?<!\d)\d{2,3}-?\d{3,4}-?\d{4}(?!\d)"), PHONE_PLACEHOLDER),
)


def mask_pii(text: str | None) -> str:
    """Replace every PII match in text with its placeholder."""
    if not text:
        return ""

    masked = text
    for pattern, placeholder in PII_PATTERNS:
        masked = pattern.sub(placeholder, masked)
    return masked
