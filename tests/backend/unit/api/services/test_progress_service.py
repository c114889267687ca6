"""Tests for the IntimacyProgress store."""

from __future__ import annotations

import json
import uuid

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from api.services.progress_service import ProgressService, clamp_level
from models.agent_models import FeedbackText, IntimacyResult, SummaryResult
from models.progress_models import ProgressDocument, UnreadableProgressError


def _progress_row(chatroom_id: uuid.UUID, level: int = 1, corrections: int = 0, doc: str = "{}") -> dict[str, Any]:
    return {
        "chatroom_id": chatroom_id,
        "user_id": None,
        "intimacy_level": level,
        "total_corrections": corrections,
        "last_feedback": None,
        "last_updated": datetime.now(UTC),
        "progress_data": doc,
    }


def _update_args(conn: AsyncMock) -> tuple[Any, ...]:
    update_calls = [c for c in conn.execute.await_args_list if "UPDATE intimacy_progress" in c.args[0]]
    assert update_calls, "expected an UPDATE"
    return update_calls[-1].args


@pytest.fixture
def conn(mock_db_pool: MagicMock) -> AsyncMock:
    return mock_db_pool.acquire.return_value.__aenter__.return_value


@pytest.fixture(autouse=True)
def no_retry_sleep() -> Any:
    with patch("utils.retry.asyncio.sleep", new=AsyncMock()):
        yield


class TestReads:
    def test_clamp_level(self) -> None:
        assert [clamp_level(v) for v in (-1, 1, 2, 3, 8)] == [1, 1, 2, 3, 3]

    @pytest.mark.asyncio
    async def test_level_defaults_without_row(self, mock_db_pool: MagicMock, conn: AsyncMock) -> None:
        conn.fetchval.return_value = None
        assert await ProgressService(mock_db_pool).get_intimacy_level(uuid.uuid4()) == 1

    @pytest.mark.asyncio
    async def test_level_clamped(self, mock_db_pool: MagicMock, conn: AsyncMock) -> None:
        conn.fetchval.return_value = 5
        assert await ProgressService(mock_db_pool).get_intimacy_level(uuid.uuid4()) == 3

    @pytest.mark.asyncio
    async def test_previous_summary(self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID) -> None:
        doc = {"summaryHistory": [{"id": "a", "timestamp": "t", "summary": '{"facts":[]}'}]}
        conn.fetchrow.return_value = _progress_row(chatroom_id, doc=json.dumps(doc))

        assert await ProgressService(mock_db_pool).get_previous_summary(chatroom_id) == '{"facts":[]}'

    @pytest.mark.asyncio
    async def test_previous_summary_none_without_row(self, mock_db_pool: MagicMock, conn: AsyncMock) -> None:
        conn.fetchrow.return_value = None
        assert await ProgressService(mock_db_pool).get_previous_summary(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_previous_summary_none_when_unreadable(
        self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID
    ) -> None:
        conn.fetchrow.return_value = _progress_row(chatroom_id, doc="[1, 2]")
        assert await ProgressService(mock_db_pool).get_previous_summary(chatroom_id) is None


class TestApplyIntimacyResult:
    @pytest.mark.asyncio
    async def test_updates_level_count_and_history(
        self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        conn.fetchrow.return_value = _progress_row(chatroom_id, level=1, corrections=4)
        result = IntimacyResult(
            detected_level=2,
            corrected_sentence="밥 먹었어요?",
            feedback=FeedbackText(ko="좋아요"),
            corrections="어미 수정",
        )

        updated = await ProgressService(mock_db_pool).apply_intimacy_result(chatroom_id, user_id, result)

        assert updated.intimacy_level == 2
        assert updated.total_corrections == 5
        assert updated.last_feedback == "좋아요"
        args = _update_args(conn)
        assert args[1:4] == (chatroom_id, 2, 5)
        stored = ProgressDocument.parse(args[6])
        assert stored.corrections_history[0].corrected_sentence == "밥 먹었어요?"

    @pytest.mark.asyncio
    async def test_row_created_then_locked(
        self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID
    ) -> None:
        conn.fetchrow.return_value = _progress_row(chatroom_id)

        await ProgressService(mock_db_pool).apply_intimacy_result(chatroom_id, None, IntimacyResult())

        insert_sql = conn.execute.await_args_list[0].args[0]
        assert "ON CONFLICT (chatroom_id) DO NOTHING" in insert_sql
        assert "FOR UPDATE" in conn.fetchrow.await_args.args[0]
        conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_corrections_keeps_count(
        self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID
    ) -> None:
        conn.fetchrow.return_value = _progress_row(chatroom_id, corrections=2)

        updated = await ProgressService(mock_db_pool).apply_intimacy_result(chatroom_id, None, IntimacyResult())

        assert updated.total_corrections == 2

    @pytest.mark.asyncio
    async def test_serialization_failure_replayed(
        self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID
    ) -> None:
        conn.fetchrow.side_effect = [
            asyncpg.SerializationError("could not serialize access"),
            _progress_row(chatroom_id, corrections=1),
        ]

        updated = await ProgressService(mock_db_pool).apply_intimacy_result(
            chatroom_id, None, IntimacyResult(corrections="x")
        )

        assert updated.total_corrections == 2
        assert conn.transaction.call_count == 2

    @pytest.mark.asyncio
    async def test_conflicts_exhausted(self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID) -> None:
        conn.fetchrow.side_effect = asyncpg.DeadlockDetectedError("deadlock")

        with pytest.raises(asyncpg.DeadlockDetectedError):
            await ProgressService(mock_db_pool, max_attempts=3).apply_intimacy_result(
                chatroom_id, None, IntimacyResult()
            )

        assert conn.fetchrow.await_count == 3

    @pytest.mark.asyncio
    async def test_unreadable_document_not_overwritten(
        self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID
    ) -> None:
        conn.fetchrow.return_value = _progress_row(chatroom_id, doc='{"correctionsHistory": [truncated')

        with pytest.raises(UnreadableProgressError):
            await ProgressService(mock_db_pool).apply_intimacy_result(chatroom_id, None, IntimacyResult())

        assert not [c for c in conn.execute.await_args_list if "UPDATE intimacy_progress" in c.args[0]]
        assert conn.fetchrow.await_count == 1


class TestApplySummary:
    @pytest.mark.asyncio
    async def test_merges_summary(self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID) -> None:
        conn.fetchrow.return_value = _progress_row(chatroom_id, level=3)
        summary = SummaryResult(timestamp="t", summary='{"facts":["a"]}', keywords=["여행"], window_end_seq=20)

        updated = await ProgressService(mock_db_pool).apply_summary(chatroom_id, None, summary)

        doc = ProgressDocument.parse(updated.progress_data)
        assert doc.latest_summary is not None
        assert doc.latest_summary.summary == '{"facts":["a"]}'
        assert doc.last_context_snapshot is not None
        assert doc.last_context_snapshot.intimacy_level == 3
        assert updated.intimacy_level == 3

    @pytest.mark.asyncio
    async def test_existing_history_kept(
        self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID
    ) -> None:
        stored = {
            "correctionsHistory": [{"timestamp": "t0", "corrections": None}],
            "keywordIndex": {"items": [{"keyword": "여행", "score": 7}]},
            "streak": 3,
        }
        conn.fetchrow.return_value = _progress_row(chatroom_id, doc=json.dumps(stored))
        summary = SummaryResult(timestamp="t", summary="{}", keywords=["음식"], window_end_seq=20)

        await ProgressService(mock_db_pool).apply_summary(chatroom_id, None, summary)

        written = json.loads(_update_args(conn)[6])
        assert len(written["correctionsHistory"]) == 1
        assert {item["keyword"]: item["score"] for item in written["keywordIndex"]["items"]} == {"여행": 7, "음식": 1}
        assert written["streak"] == 3


class TestInitialize:
    @pytest.mark.asyncio
    async def test_created(self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID) -> None:
        conn.execute.return_value = "INSERT 0 1"

        assert await ProgressService(mock_db_pool).initialize(chatroom_id, None, 3) is True
        args = conn.execute.await_args.args
        assert args[3] == 3
        assert args[4] == "AI 인사말 발송"

    @pytest.mark.asyncio
    async def test_existing_row_untouched(
        self, mock_db_pool: MagicMock, conn: AsyncMock, chatroom_id: uuid.UUID
    ) -> None:
        conn.execute.return_value = "INSERT 0 0"

        assert await ProgressService(mock_db_pool).initialize(chatroom_id, None, 2) is False
