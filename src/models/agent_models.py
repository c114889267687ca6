"""
Agent result models.

Every agent returns one member of the ``AgentResult`` tagged union; the
``agent`` field is the discriminator. Consumers match on the concrete class
and end with ``assert_never`` so a new member cannot be silently ignored.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from core.constants import DEFAULT_INTIMACY_LEVEL

INTIMACY_PARSE_FAILURE_FEEDBACK = "분석 중 오류가 발생했습니다."


class FeedbackText(BaseModel):
    """Bilingual feedback shown to the learner."""

    ko: str = ""
    en: str = ""


class IntimacyResult(BaseModel):
    """Register classification and correction for one user message."""

    agent: Literal["intimacy"] = "intimacy"
    detected_level: int = Field(default=DEFAULT_INTIMACY_LEVEL, ge=1, le=3)
    corrected_sentence: str = ""
    feedback: FeedbackText = Field(default_factory=FeedbackText)
    corrections: str = Field(default="", description="Free-text note of what was corrected")

    @classmethod
    def fallback(cls) -> IntimacyResult:
        """Safe default used when the model output cannot be parsed."""
        return cls(feedback=FeedbackText(ko=INTIMACY_PARSE_FAILURE_FEEDBACK, en="An error occurred during analysis."))

    @property
    def has_corrections(self) -> bool:
        return bool(self.corrections.strip())

    def to_event(self) -> dict[str, Any]:
        return {
            "detectedLevel": self.detected_level,
            "correctedSentence": self.corrected_sentence,
            "feedback": self.feedback.model_dump(),
            "corrections": self.corrections,
        }


class WordContext(BaseModel):
    """Romanization plus Korean and English explanation of a word."""

    roma: str = ""
    ko: str = ""
    en: str = ""


class VocabularyWord(BaseModel):
    word: str
    difficulty: int = Field(ge=1, le=3)
    context: WordContext


class VocabularyResult(BaseModel):
    """Difficult words found in a message; empty is valid and common."""

    agent: Literal["vocabulary"] = "vocabulary"
    words: list[VocabularyWord] = Field(default_factory=list)

    def to_event(self) -> dict[str, Any]:
        return {"words": [w.model_dump() for w in self.words]}


class ConversationResult(BaseModel):
    """Persisted bot reply produced by the conversation agent."""

    agent: Literal["conversation"] = "conversation"
    message_id: str
    content: str

    def to_event(self) -> dict[str, Any]:
        return {"messageId": self.message_id, "content": self.content}


AgentResult = Annotated[
    IntimacyResult | VocabularyResult | ConversationResult,
    Field(discriminator="agent"),
]

agent_result_adapter: TypeAdapter[IntimacyResult | VocabularyResult | ConversationResult] = TypeAdapter(AgentResult)


class SummaryResult(BaseModel):
    """Output of one summarizer run over a message window."""

    timestamp: str
    summary: str = Field(default="{}", description="Compact JSON of the structured summary")
    keywords: list[str] = Field(default_factory=list)
    window_start_seq: int = 0
    window_end_seq: int = 0
    tokens: int = 0

    @property
    def is_empty(self) -> bool:
        return self.summary == "{}" and not self.keywords
