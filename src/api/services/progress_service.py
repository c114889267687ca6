from __future__ import annotations

import uuid

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from uuid import UUID

import asyncpg

from core.constants import DEFAULT_INTIMACY_LEVEL, INTIMACY_LEVEL_MAX, INTIMACY_LEVEL_MIN, PROGRESS_WRITE_MAX_ATTEMPTS
from core.progress import append_correction, merge_summary
from core.prompts import GREETING_PROGRESS_FEEDBACK
from models.agent_models import IntimacyResult, SummaryResult
from models.chat_models import IntimacyProgressRow
from models.progress_models import ProgressDocument, UnreadableProgressError
from utils.db_utils import WRITE_CONFLICT_EXCEPTIONS
from utils.logger import logger
from utils.metrics import progress_write_conflicts_total
from utils.retry import call_with_retry

ProgressMutation = Callable[[asyncpg.Connection, IntimacyProgressRow, datetime], Awaitable[IntimacyProgressRow]]


def clamp_level(level: int) -> int:
    return max(INTIMACY_LEVEL_MIN, min(INTIMACY_LEVEL_MAX, level))


class ProgressService:
    """IntimacyProgress store.

    Two writers touch the same row: per-message intimacy results and
    post-conversation summary merges. Both create the row on demand, then lock
    it with SELECT ... FOR UPDATE for the read-modify-write, and replay the
    whole transaction on serialization failure or deadlock. A stored document
    that cannot be parsed aborts the write and is left in place.
    """

    def __init__(self, pool: asyncpg.Pool, max_attempts: int = PROGRESS_WRITE_MAX_ATTEMPTS):
        self.pool = pool
        self.max_attempts = max_attempts

    async def get_progress(self, chatroom_id: UUID) -> IntimacyProgressRow | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT chatroom_id, user_id, intimacy_level, total_corrections,
                       last_feedback, last_updated, progress_data
                FROM intimacy_progress
                WHERE chatroom_id = $1
                """,
                chatroom_id,
            )
        return IntimacyProgressRow.model_validate(dict(row)) if row else None

    async def get_intimacy_level(self, chatroom_id: UUID) -> int:
        """Current target level; rooms without progress start at the default."""
        async with self.pool.acquire() as conn:
            level = await conn.fetchval(
                "SELECT intimacy_level FROM intimacy_progress WHERE chatroom_id = $1",
                chatroom_id,
            )
        return clamp_level(int(level)) if level is not None else DEFAULT_INTIMACY_LEVEL

    async def get_previous_summary(self, chatroom_id: UUID) -> str | None:
        """Compact JSON of the latest summary, or None before the first merge."""
        progress = await self.get_progress(chatroom_id)
        if progress is None:
            return None
        try:
            latest = ProgressDocument.parse(progress.progress_data).latest_summary
        except UnreadableProgressError as e:
            logger.warning(f"Previous summary unavailable: {e}", chatroom_id=str(chatroom_id))
            return None
        return latest.summary if latest else None

    async def _locked_write(
        self,
        chatroom_id: UUID,
        user_id: UUID | None,
        writer: str,
        mutate: ProgressMutation,
    ) -> IntimacyProgressRow:
        """Ensure the row exists, lock it, and apply ``mutate`` in one transaction."""

        async def attempt() -> IntimacyProgressRow:
            async with self.pool.acquire() as conn, conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO intimacy_progress (
                        chatroom_id, user_id, intimacy_level, total_corrections,
                        last_feedback, last_updated, progress_data
                    )
                    VALUES ($1, $2, $3, 0, NULL, NOW(), $4::jsonb)
                    ON CONFLICT (chatroom_id) DO NOTHING
                    """,
                    chatroom_id,
                    user_id,
                    DEFAULT_INTIMACY_LEVEL,
                    ProgressDocument().to_json(),
                )
                row = await conn.fetchrow(
                    """
                    SELECT chatroom_id, user_id, intimacy_level, total_corrections,
                           last_feedback, last_updated, progress_data
                    FROM intimacy_progress
                    WHERE chatroom_id = $1
                    FOR UPDATE
                    """,
                    chatroom_id,
                )
                current = IntimacyProgressRow.model_validate(dict(row))
                return await mutate(conn, current, datetime.now(UTC))

        def on_retry(attempt_number: int, exc: BaseException) -> None:
            progress_write_conflicts_total.labels(writer=writer).inc()

        return await call_with_retry(
            attempt,
            max_attempts=self.max_attempts,
            base_delay=0.05,
            max_delay=1.0,
            retryable_exceptions=WRITE_CONFLICT_EXCEPTIONS,
            operation=f"Progress {writer} write for chatroom {chatroom_id}",
            on_retry=on_retry,
        )

    async def _store(
        self,
        conn: asyncpg.Connection,
        current: IntimacyProgressRow,
        now: datetime,
        doc: ProgressDocument,
        *,
        intimacy_level: int | None = None,
        corrections_delta: int = 0,
        last_feedback: str | None = None,
    ) -> IntimacyProgressRow:
        updated = current.model_copy(
            update={
                "intimacy_level": intimacy_level if intimacy_level is not None else current.intimacy_level,
                "total_corrections": current.total_corrections + corrections_delta,
                "last_feedback": last_feedback if last_feedback is not None else current.last_feedback,
                "last_updated": now,
                "progress_data": doc.to_dict(),
            }
        )
        await conn.execute(
            """
            UPDATE intimacy_progress
            SET intimacy_level = $2,
                total_corrections = $3,
                last_feedback = $4,
                last_updated = $5,
                progress_data = $6::jsonb
            WHERE chatroom_id = $1
            """,
            current.chatroom_id,
            updated.intimacy_level,
            updated.total_corrections,
            updated.last_feedback,
            now,
            doc.to_json(),
        )
        return updated

    async def apply_intimacy_result(
        self,
        chatroom_id: UUID,
        user_id: UUID | None,
        result: IntimacyResult,
    ) -> IntimacyProgressRow:
        """Record one analysis: level, correction count, feedback and history entry."""

        async def mutate(conn: asyncpg.Connection, current: IntimacyProgressRow, now: datetime) -> IntimacyProgressRow:
            doc = append_correction(ProgressDocument.parse(current.progress_data), result, now)
            return await self._store(
                conn,
                current,
                now,
                doc,
                intimacy_level=clamp_level(result.detected_level),
                corrections_delta=1 if result.has_corrections else 0,
                last_feedback=result.feedback.ko or result.feedback.en,
            )

        updated = await self._locked_write(chatroom_id, user_id, "intimacy", mutate)
        logger.debug(
            f"Intimacy progress updated (level {updated.intimacy_level}, corrections {updated.total_corrections})",
            chatroom_id=str(chatroom_id),
        )
        return updated

    async def apply_summary(
        self,
        chatroom_id: UUID,
        user_id: UUID | None,
        summary: SummaryResult,
    ) -> IntimacyProgressRow:
        """Merge one summarizer result into progressData."""
        summary_id = uuid.uuid4().hex

        async def mutate(conn: asyncpg.Connection, current: IntimacyProgressRow, now: datetime) -> IntimacyProgressRow:
            doc = merge_summary(
                ProgressDocument.parse(current.progress_data),
                summary,
                intimacy_level=current.intimacy_level,
                now=now,
                summary_id=summary_id,
            )
            return await self._store(conn, current, now, doc)

        updated = await self._locked_write(chatroom_id, user_id, "summary", mutate)
        logger.debug(
            f"Summary {summary_id[:8]} merged (window {summary.window_start_seq}-{summary.window_end_seq})",
            chatroom_id=str(chatroom_id),
        )
        return updated

    async def initialize(
        self,
        chatroom_id: UUID,
        user_id: UUID | None,
        intimacy_level: int,
        last_feedback: str = GREETING_PROGRESS_FEEDBACK,
    ) -> bool:
        """Create the progress row for a new room.

        Returns:
            False if the room already had progress (left untouched)
        """
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                """
                INSERT INTO intimacy_progress (
                    chatroom_id, user_id, intimacy_level, total_corrections,
                    last_feedback, last_updated, progress_data
                )
                VALUES ($1, $2, $3, 0, $4, NOW(), $5::jsonb)
                ON CONFLICT (chatroom_id) DO NOTHING
                """,
                chatroom_id,
                user_id,
                clamp_level(intimacy_level),
                last_feedback,
                ProgressDocument().to_json(),
            )
        return status.endswith(" 1")
