"""
Pure merge functions for the per-chatroom progress document.

Both functions return a new document and leave their input untouched, so the
store can replay them safely when a locked write has to be retried.
"""

from __future__ import annotations

from datetime import datetime

from core.constants import KEYWORD_INDEX_CAP, SUMMARY_HISTORY_CAP
from models.agent_models import IntimacyResult, SummaryResult
from models.progress_models import (
    ContextSnapshot,
    CorrectionEntry,
    KeywordItem,
    ProgressDocument,
    SequenceWindow,
    SummaryEntry,
)


def _timestamp(now: datetime) -> str:
    return now.isoformat()


def append_correction(doc: ProgressDocument, result: IntimacyResult, now: datetime) -> ProgressDocument:
    """Append one intimacy analysis to correctionsHistory."""
    updated = doc.model_copy(deep=True)
    updated.corrections_history.append(
        CorrectionEntry(
            timestamp=_timestamp(now),
            detected_level=result.detected_level,
            corrected_sentence=result.corrected_sentence,
            corrections=result.corrections,
            feedback=result.feedback.model_dump(),
        )
    )
    return updated


def upsert_keywords(
    items: list[KeywordItem],
    keywords: list[str],
    now: datetime,
    cap: int = KEYWORD_INDEX_CAP,
) -> list[KeywordItem]:
    """Score keywords into the index and trim it to the ``cap`` highest scores.

    Matching is case-insensitive and a keyword counts once per call. Among
    equal scores the most recently updated items are kept.
    """
    stamp = _timestamp(now)
    merged = [item.model_copy() for item in items]
    by_key = {item.keyword.casefold(): item for item in merged}

    seen: set[str] = set()
    for raw in keywords:
        keyword = raw.strip()
        key = keyword.casefold()
        if not keyword or key in seen:
            continue
        seen.add(key)

        existing = by_key.get(key)
        if existing is not None:
            existing.score += 1
            existing.updated_at = stamp
        else:
            item = KeywordItem(keyword=keyword, score=1, updated_at=stamp)
            merged.append(item)
            by_key[key] = item

    # Two stable sorts: score descending, then recency within equal scores
    ranked = sorted(merged, key=lambda item: item.updated_at, reverse=True)
    ranked.sort(key=lambda item: item.score, reverse=True)
    return ranked[:cap]


def merge_summary(
    doc: ProgressDocument,
    summary: SummaryResult,
    intimacy_level: int,
    now: datetime,
    summary_id: str,
    history_cap: int = SUMMARY_HISTORY_CAP,
    keyword_cap: int = KEYWORD_INDEX_CAP,
) -> ProgressDocument:
    """Fold one summarizer result into the document.

    Appends a summaryHistory entry (keeping the last ``history_cap``), scores
    its keywords into keywordIndex and refreshes lastContextSnapshot.
    """
    updated = doc.model_copy(deep=True)
    window = SequenceWindow(start_seq=summary.window_start_seq, end_seq=summary.window_end_seq)

    updated.summary_history.append(
        SummaryEntry(
            id=summary_id,
            timestamp=summary.timestamp,
            summary=summary.summary,
            keywords=list(summary.keywords),
            window=window,
            tokens=summary.tokens,
        )
    )
    updated.summary_history = updated.summary_history[-history_cap:]

    updated.keyword_index.items = upsert_keywords(updated.keyword_index.items, summary.keywords, now, keyword_cap)

    updated.last_context_snapshot = ContextSnapshot(
        used_at=_timestamp(now),
        intimacy_level=intimacy_level,
        window=window,
        summary_id=summary_id,
    )
    return updated
