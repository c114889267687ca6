"""Tests for database utilities: pool factory, transactions, locks and health."""

from __future__ import annotations

import asyncio

from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from utils.db_utils import (
    WRITE_CONFLICT_EXCEPTIONS,
    ConnectionPoolExhausted,
    acquire_connection,
    advisory_xact_lock,
    check_pool_health,
    create_database_pool,
    graceful_pool_close,
    transaction,
)


class TestCreateDatabasePool:
    @pytest.mark.asyncio
    async def test_pool_created_with_session_timeouts(self) -> None:
        """Each new connection gets timeouts and a UTC session."""
        mock_pool = AsyncMock(spec=asyncpg.Pool)

        with patch("asyncpg.create_pool", new_callable=AsyncMock) as mock_create:
            mock_create.return_value = mock_pool
            pool = await create_database_pool("postgres://dsn", command_timeout=2.5)

            assert pool is mock_pool
            init_func = mock_create.call_args.kwargs["init"]
            assert mock_create.call_args.kwargs["server_settings"] == {"application_name": "dorandoran-pipeline"}

        conn = AsyncMock()
        await init_func(conn)

        statements = [c.args[0] for c in conn.execute.call_args_list]
        assert statements == [
            "SET statement_timeout = '2500'",
            "SET lock_timeout = '2500'",
            "SET TIME ZONE 'UTC'",
        ]

    @pytest.mark.asyncio
    async def test_timeout_becomes_pool_exhausted(self) -> None:
        with (
            patch("asyncpg.create_pool", side_effect=asyncio.TimeoutError),
            pytest.raises(ConnectionPoolExhausted, match="timed out"),
        ):
            await create_database_pool("postgres://dsn", connection_timeout=0.1)

    @pytest.mark.asyncio
    async def test_other_failure_wrapped(self) -> None:
        with (
            patch("asyncpg.create_pool", side_effect=OSError("refused")),
            pytest.raises(ConnectionPoolExhausted, match="refused"),
        ):
            await create_database_pool("postgres://dsn")


class TestConnections:
    @pytest.mark.asyncio
    async def test_acquire_timeout(self) -> None:
        pool = MagicMock()
        pool.acquire.side_effect = asyncio.TimeoutError

        with pytest.raises(ConnectionPoolExhausted, match="Could not acquire"):
            async with acquire_connection(pool, timeout=1.0):
                pass

    @pytest.mark.asyncio
    async def test_transaction_uses_isolation_level(self, mock_db_pool: MagicMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value

        async with transaction(mock_db_pool, timeout=3.0, isolation="serializable") as tx_conn:
            assert tx_conn is conn

        mock_db_pool.acquire.assert_called_once_with(timeout=3.0)
        conn.transaction.assert_called_once_with(isolation="serializable")
        tx_cm = conn.transaction.return_value
        tx_cm.__aenter__.assert_awaited_once()
        tx_cm.__aexit__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_advisory_lock_hashes_key(self) -> None:
        conn = AsyncMock()
        await advisory_xact_lock(conn, "room-1")
        conn.execute.assert_awaited_once_with("SELECT pg_advisory_xact_lock(hashtext($1))", "room-1")


class TestPoolHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, mock_db_pool: MagicMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetchval.return_value = 1

        health = await check_pool_health(mock_db_pool)

        assert health["healthy"] is True
        assert health["pool_size"] == 10
        assert health["used_connections"] == 2

    @pytest.mark.asyncio
    async def test_unhealthy_when_acquire_fails(self, mock_db_pool: MagicMock) -> None:
        mock_db_pool.acquire.side_effect = OSError("db down")

        health = await check_pool_health(mock_db_pool)

        assert health["healthy"] is False

    @pytest.mark.asyncio
    async def test_graceful_close_waits_for_active(self) -> None:
        pool = MagicMock()
        pool.close = AsyncMock()
        pool.get_size.return_value = 4
        pool.get_idle_size.side_effect = [2, 4]

        with patch("utils.db_utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await graceful_pool_close(pool, timeout=5.0)

        mock_sleep.assert_awaited_once()
        pool.close.assert_awaited_once()
