"""
Typed, versioned progress document stored in intimacy_progress.progress_data.

Field names serialize in camelCase so the stored JSON stays readable by the
other services sharing the table. Parsing tolerates missing keys and legacy
documents (``{}`` or partially populated blobs). Keys this module does not
know are carried through untouched, and a malformed history entry costs only
that entry.
"""

from __future__ import annotations

import json

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from core.constants import DEFAULT_INTIMACY_LEVEL, PROGRESS_DOCUMENT_VERSION
from utils.logger import logger


class UnreadableProgressError(ValueError):
    """Stored progressData exists but is not a progress document."""


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        # null in a stored blob means unset; the field default applies
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SequenceWindow(_CamelModel):
    start_seq: int = Field(default=0, alias="startSeq")
    end_seq: int = Field(default=0, alias="endSeq")


class CorrectionEntry(_CamelModel):
    """One intimacy analysis appended to correctionsHistory."""

    timestamp: str
    detected_level: int = Field(default=DEFAULT_INTIMACY_LEVEL, alias="detectedLevel")
    corrected_sentence: str = Field(default="", alias="correctedSentence")
    corrections: str = ""
    feedback: dict[str, str] = Field(default_factory=dict)


class SummaryEntry(_CamelModel):
    id: str
    timestamp: str
    summary: str = "{}"
    keywords: list[str] = Field(default_factory=list)
    window: SequenceWindow = Field(default_factory=SequenceWindow)
    tokens: int = 0


class KeywordItem(_CamelModel):
    keyword: str
    score: int = 1
    updated_at: str = Field(default="", alias="updatedAt")


def _valid_entries(model: type[_CamelModel], entries: Any, field: str) -> list[Any]:
    if not isinstance(entries, list):
        return []
    kept = []
    for entry in entries:
        try:
            kept.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Dropping malformed {field} entry: {e.error_count()} errors")
    return kept


class KeywordIndex(_CamelModel):
    items: list[KeywordItem] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def keep_valid_items(cls, v: Any) -> Any:
        return _valid_entries(KeywordItem, v, "keywordIndex")


class ContextSnapshot(_CamelModel):
    used_at: str = Field(alias="usedAt")
    intimacy_level: int = Field(default=DEFAULT_INTIMACY_LEVEL, alias="intimacyLevel")
    window: SequenceWindow = Field(default_factory=SequenceWindow)
    summary_id: str | None = Field(default=None, alias="summaryId")


class ProgressDocument(_CamelModel):
    """progressData for one chatroom."""

    version: int = PROGRESS_DOCUMENT_VERSION
    corrections_history: list[CorrectionEntry] = Field(default_factory=list, alias="correctionsHistory")
    summary_history: list[SummaryEntry] = Field(default_factory=list, alias="summaryHistory")
    keyword_index: KeywordIndex = Field(default_factory=KeywordIndex, alias="keywordIndex")
    last_context_snapshot: ContextSnapshot | None = Field(default=None, alias="lastContextSnapshot")

    @field_validator("corrections_history", mode="before")
    @classmethod
    def keep_valid_corrections(cls, v: Any) -> Any:
        return _valid_entries(CorrectionEntry, v, "correctionsHistory")

    @field_validator("summary_history", mode="before")
    @classmethod
    def keep_valid_summaries(cls, v: Any) -> Any:
        return _valid_entries(SummaryEntry, v, "summaryHistory")

    @field_validator("keyword_index", mode="before")
    @classmethod
    def coerce_index(cls, v: Any) -> Any:
        # Legacy blobs stored the index as a bare list of items
        if isinstance(v, list):
            return {"items": v}
        return v if isinstance(v, dict) else {}

    @field_validator("last_context_snapshot", mode="before")
    @classmethod
    def drop_bad_snapshot(cls, v: Any) -> Any:
        try:
            return ContextSnapshot.model_validate(v)
        except ValidationError:
            logger.warning("Dropping malformed lastContextSnapshot")
            return None

    @classmethod
    def parse(cls, raw: str | dict[str, Any] | None) -> ProgressDocument:
        """Parse stored JSON. A missing document starts empty.

        Raises:
            UnreadableProgressError: The stored value is not a JSON object, or
                its top-level fields are invalid. It must not be overwritten.
        """
        if raw is None or raw == "":
            return cls()
        data: Any = raw
        if isinstance(raw, str):
            try:
                data = json.loads(raw)
            except ValueError as e:
                raise UnreadableProgressError(f"progressData is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise UnreadableProgressError(f"progressData is a {type(data).__name__}, not an object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise UnreadableProgressError(f"progressData failed validation: {e.error_count()} errors") from e

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @property
    def latest_summary(self) -> SummaryEntry | None:
        return self.summary_history[-1] if self.summary_history else None


__all__ = [
    "ContextSnapshot",
    "CorrectionEntry",
    "KeywordIndex",
    "KeywordItem",
    "ProgressDocument",
    "SequenceWindow",
    "SummaryEntry",
    "UnreadableProgressError",
]
