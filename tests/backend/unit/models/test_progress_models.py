"""Tests for the progress document and persistence row models."""

from __future__ import annotations

import json
import uuid

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from core.progress import append_correction
from models.agent_models import (
    ConversationResult,
    IntimacyResult,
    SummaryResult,
    VocabularyResult,
    agent_result_adapter,
)
from models.chat_models import ChatRoom, IntimacyProgressRow, Message, MonthlyUserCost
from models.progress_models import ProgressDocument, UnreadableProgressError


class TestProgressDocumentParse:
    @pytest.mark.parametrize("raw", [None, "", "{}", {}])
    def test_missing_document_starts_empty(self, raw: object) -> None:
        doc = ProgressDocument.parse(raw)  # type: ignore[arg-type]

        assert doc.version == 1
        assert doc.corrections_history == []
        assert doc.keyword_index.items == []

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"text"', {"version": "two"}])
    def test_unreadable_document_refused(self, raw: object) -> None:
        with pytest.raises(UnreadableProgressError):
            ProgressDocument.parse(raw)  # type: ignore[arg-type]

    def test_legacy_shapes_coerced(self) -> None:
        doc = ProgressDocument.parse(
            {
                "correctionsHistory": "oops",
                "keywordIndex": [{"keyword": "여행", "score": 3, "updatedAt": "t"}],
            }
        )

        assert doc.corrections_history == []
        assert doc.keyword_index.items[0].keyword == "여행"

    def test_malformed_entry_dropped_alone(self) -> None:
        doc = ProgressDocument.parse(
            {
                "correctionsHistory": [
                    {"timestamp": "t1", "detectedLevel": 2, "corrections": None},
                    {"detectedLevel": "formal"},
                    {"timestamp": "t3", "correctedSentence": "네"},
                ],
                "summaryHistory": [{"summary": "no id"}, {"id": "s1", "timestamp": "t"}],
                "keywordIndex": {"items": [{"keyword": "여행", "score": 7}, {"score": 2}]},
                "lastContextSnapshot": {"intimacyLevel": 2},
                "sharedByOtherService": {"streak": 4},
            }
        )

        assert [c.timestamp for c in doc.corrections_history] == ["t1", "t3"]
        assert doc.corrections_history[0].corrections == ""
        assert [s.id for s in doc.summary_history] == ["s1"]
        assert [(k.keyword, k.score) for k in doc.keyword_index.items] == [("여행", 7)]
        assert doc.last_context_snapshot is None
        assert doc.to_dict()["sharedByOtherService"] == {"streak": 4}

    def test_history_survives_correction_append(self) -> None:
        stored = {
            "correctionsHistory": [{"timestamp": "t1", "corrections": None}],
            "summaryHistory": [{"id": "s1", "timestamp": "t"}],
            "keywordIndex": {"items": [{"keyword": "여행", "score": 7}]},
            "sharedByOtherService": True,
        }

        doc = append_correction(ProgressDocument.parse(stored), IntimacyResult(corrections="x"), datetime.now(UTC))
        data = json.loads(doc.to_json())

        assert len(data["correctionsHistory"]) == 2
        assert [s["id"] for s in data["summaryHistory"]] == ["s1"]
        assert data["keywordIndex"]["items"][0]["score"] == 7
        assert data["sharedByOtherService"] is True

    def test_round_trip_keeps_camel_case(self) -> None:
        stored = json.dumps(
            {
                "version": 1,
                "summaryHistory": [{"id": "s1", "timestamp": "t", "window": {"startSeq": 1, "endSeq": 5}}],
                "lastContextSnapshot": {"usedAt": "t", "intimacyLevel": 2, "summaryId": "s1"},
                "unknownKey": True,
            }
        )

        doc = ProgressDocument.parse(stored)
        data = json.loads(doc.to_json())

        assert data["summaryHistory"][0]["window"] == {"startSeq": 1, "endSeq": 5}
        assert data["lastContextSnapshot"]["intimacyLevel"] == 2
        assert data["unknownKey"] is True
        assert doc.latest_summary is not None and doc.latest_summary.id == "s1"


class TestAgentResults:
    def test_discriminated_union(self) -> None:
        parsed = agent_result_adapter.validate_python({"agent": "vocabulary", "words": []})
        assert isinstance(parsed, VocabularyResult)

    def test_intimacy_event_shape(self) -> None:
        event = IntimacyResult(detected_level=3, corrected_sentence="응").to_event()
        assert set(event) == {"detectedLevel", "correctedSentence", "feedback", "corrections"}

    def test_intimacy_fallback_is_level_one(self) -> None:
        fallback = IntimacyResult.fallback()
        assert fallback.detected_level == 1
        assert not fallback.has_corrections

    def test_conversation_event(self) -> None:
        assert ConversationResult(message_id="m", content="c").to_event() == {"messageId": "m", "content": "c"}

    def test_summary_is_empty(self) -> None:
        assert SummaryResult(timestamp="t").is_empty
        assert not SummaryResult(timestamp="t", keywords=["a"]).is_empty


class TestRowModels:
    def test_room_decodes_jsonb_text(self) -> None:
        room = ChatRoom(
            id=uuid.uuid4(),
            user_id=uuid.uuid4(),
            settings='{"concept": "HONEY"}',
            context_data="not json",
        )

        assert room.concept == "HONEY"
        assert room.context_data == {}

    def test_room_without_concept(self) -> None:
        assert ChatRoom(id=uuid.uuid4(), user_id=uuid.uuid4()).concept is None

    def test_message_from_record(self) -> None:
        record = {
            "id": uuid.uuid4(),
            "chatroom_id": uuid.uuid4(),
            "sender_type": "bot",
            "sender_id": None,
            "content": "안녕",
            "content_type": "text",
            "sequence_number": 4,
        }
        assert Message.from_record(record).sequence_number == 4

    def test_progress_row_decodes(self) -> None:
        row = IntimacyProgressRow(chatroom_id=uuid.uuid4(), progress_data='{"version": 1}')
        assert row.progress_data == {"version": 1}

    @pytest.mark.parametrize("raw", ["[1, 2]", "{truncated"])
    def test_progress_row_keeps_undecodable_text(self, raw: str) -> None:
        row = IntimacyProgressRow(chatroom_id=uuid.uuid4(), progress_data=raw)
        assert row.progress_data == raw

    def test_monthly_cost_defaults(self) -> None:
        cost = MonthlyUserCost(user_id=uuid.uuid4(), billing_month="2025-03-01")
        assert cost.total_cost == Decimal("0")
