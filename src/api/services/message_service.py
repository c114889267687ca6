from __future__ import annotations

import asyncio
import uuid
import weakref

from uuid import UUID

import asyncpg

from api.middleware.exception_handlers import MessagePersistenceError
from core.constants import CONTENT_TYPE_TEXT, SEQUENCE_ASSIGN_MAX_ATTEMPTS
from models.chat_models import Message, SenderType
from utils.db_utils import ConnectionPoolExhausted, advisory_xact_lock
from utils.logger import logger
from utils.retry import call_with_retry

PERSISTENCE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    ConnectionPoolExhausted,
    OSError,
)


class MessageService:
    """Message persistence with gapless per-room sequence numbers.

    Sequence assignment is serialized three ways: an in-process lock per room,
    a transaction-scoped advisory lock shared by every process, and the
    UNIQUE (chatroom_id, sequence_number) constraint as the last line, whose
    violations are retried.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool
        self._room_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _room_lock(self, chatroom_id: str) -> asyncio.Lock:
        lock = self._room_locks.get(chatroom_id)
        if lock is None:
            lock = asyncio.Lock()
            self._room_locks[chatroom_id] = lock
        return lock

    async def _insert_next(
        self,
        chatroom_id: UUID,
        sender_type: SenderType,
        sender_id: UUID | None,
        content: str,
        content_type: str,
        token_count: int | None,
        processing_time_ms: int | None,
    ) -> Message:
        async with self._room_lock(str(chatroom_id)):
            async with self.pool.acquire() as conn, conn.transaction():
                await advisory_xact_lock(conn, str(chatroom_id))
                sequence_number = await conn.fetchval(
                    "SELECT COALESCE(MAX(sequence_number), 0) + 1 FROM messages WHERE chatroom_id = $1",
                    chatroom_id,
                )
                row = await conn.fetchrow(
                    """
                    INSERT INTO messages (
                        id, chatroom_id, sender_type, sender_id, content, content_type,
                        sequence_number, token_count, processing_time_ms,
                        is_edited, is_deleted, created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, FALSE, FALSE, NOW(), NOW())
                    RETURNING *
                    """,
                    uuid.uuid4(),
                    chatroom_id,
                    sender_type,
                    sender_id,
                    content,
                    content_type,
                    sequence_number,
                    token_count,
                    processing_time_ms,
                )
        return Message.from_record(row)

    async def create_message(
        self,
        chatroom_id: UUID,
        sender_type: SenderType,
        sender_id: UUID | None,
        content: str,
        content_type: str = CONTENT_TYPE_TEXT,
        token_count: int | None = None,
        processing_time_ms: int | None = None,
    ) -> Message:
        """Persist one message at the next sequence number of its room.

        Raises:
            MessagePersistenceError: If the row cannot be written
        """
        try:
            message = await call_with_retry(
                lambda: self._insert_next(
                    chatroom_id,
                    sender_type,
                    sender_id,
                    content,
                    content_type,
                    token_count,
                    processing_time_ms,
                ),
                max_attempts=SEQUENCE_ASSIGN_MAX_ATTEMPTS,
                base_delay=0.05,
                max_delay=1.0,
                retryable_exceptions=(asyncpg.UniqueViolationError,),
                operation=f"Sequence assignment in chatroom {chatroom_id}",
            )
        except PERSISTENCE_EXCEPTIONS as e:
            raise MessagePersistenceError(str(chatroom_id), cause=e) from e

        logger.debug(
            f"Stored {sender_type} message #{message.sequence_number}",
            chatroom_id=str(chatroom_id),
            message_id=str(message.id),
        )
        return message

    async def list_recent_messages(self, chatroom_id: UUID, limit: int) -> list[Message]:
        """Last ``limit`` non-deleted messages in ascending sequence order."""
        if limit <= 0:
            return []
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE chatroom_id = $1 AND is_deleted = FALSE
                ORDER BY sequence_number DESC
                LIMIT $2
                """,
                chatroom_id,
                limit,
            )
        return [Message.from_record(r) for r in reversed(rows)]
