"""asyncpg pool lifecycle and transaction helpers for the chat pipeline.

Every session runs in UTC so ``NOW()`` and month boundaries used for billing
line up across processes. Pool and acquire timeouts surface as
``ConnectionPoolExhausted``.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from utils.logger import logger

APPLICATION_NAME = "dorandoran-pipeline"
HEALTH_PROBE_TIMEOUT = 5.0
DRAIN_POLL_INTERVAL = 0.1


class ConnectionPoolExhausted(Exception):
    """No connection could be obtained within the configured timeout."""


#: Concurrent writers collided; the whole transaction must be replayed
WRITE_CONFLICT_EXCEPTIONS: tuple[type[Exception], ...] = (
    asyncpg.SerializationError,
    asyncpg.DeadlockDetectedError,
)


def _session_settings(command_timeout: float) -> list[str]:
    timeout_ms = int(command_timeout * 1000)
    return [
        f"SET statement_timeout = '{timeout_ms}'",
        f"SET lock_timeout = '{timeout_ms}'",
        "SET TIME ZONE 'UTC'",
    ]


async def create_database_pool(
    dsn: str,
    *,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    connection_timeout: float = 10.0,
    statement_cache_size: int = 100,
    max_inactive_connection_lifetime: float = 300.0,
) -> asyncpg.Pool:
    """Open the shared pool used by every service.

    Args:
        dsn: PostgreSQL connection string
        min_size: Connections opened eagerly
        max_size: Upper bound on checked-out connections
        command_timeout: Per-query timeout, also applied as statement and lock timeout
        connection_timeout: Deadline for the initial connections
        statement_cache_size: Prepared statements cached per connection
        max_inactive_connection_lifetime: Idle connections are recycled after this many seconds

    Raises:
        ConnectionPoolExhausted: The pool could not be opened in time or at all
    """
    statements = _session_settings(command_timeout)

    async def setup_session(conn: asyncpg.Connection) -> None:
        for statement in statements:
            await conn.execute(statement)

    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=command_timeout,
                statement_cache_size=statement_cache_size,
                max_inactive_connection_lifetime=max_inactive_connection_lifetime,
                server_settings={"application_name": APPLICATION_NAME},
                init=setup_session,
            ),
            timeout=connection_timeout,
        )
    except asyncio.TimeoutError as e:
        raise ConnectionPoolExhausted(f"Opening the database pool timed out after {connection_timeout}s") from e
    except Exception as e:
        raise ConnectionPoolExhausted(f"Could not open the database pool: {e}") from e

    if pool is None:
        raise ConnectionPoolExhausted("asyncpg returned no pool")
    logger.info(f"Database pool open ({min_size}-{max_size} connections)")
    return pool


@asynccontextmanager
async def acquire_connection(
    pool: asyncpg.Pool,
    *,
    timeout: float | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    try:
        async with pool.acquire(timeout=timeout) as conn:
            yield conn
    except asyncio.TimeoutError as e:
        raise ConnectionPoolExhausted(f"Could not acquire a database connection within {timeout}s") from e


@asynccontextmanager
async def transaction(
    pool: asyncpg.Pool,
    *,
    timeout: float | None = None,
    isolation: str = "read_committed",
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Check out a connection and hold one transaction open on it.

    Example:
        async with transaction(pool) as conn:
            await advisory_xact_lock(conn, str(chatroom_id))
            await conn.execute("INSERT INTO messages ...")
    """
    async with acquire_connection(pool, timeout=timeout) as conn, conn.transaction(isolation=isolation):
        yield conn


async def advisory_xact_lock(conn: asyncpg.Connection, key: str) -> None:
    """Serialize writers sharing ``key`` until the surrounding transaction ends."""
    await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", key)


async def check_pool_health(pool: asyncpg.Pool) -> dict[str, Any]:
    """Probe the pool with ``SELECT 1`` and report its occupancy."""
    healthy = False
    try:
        async with acquire_connection(pool, timeout=HEALTH_PROBE_TIMEOUT) as conn:
            healthy = await conn.fetchval("SELECT 1") == 1
    except Exception as e:
        logger.warning(f"Database probe failed: {e}")

    size = pool.get_size()
    idle = pool.get_idle_size()
    return {
        "healthy": healthy,
        "pool_size": size,
        "pool_min_size": pool.get_min_size(),
        "pool_max_size": pool.get_max_size(),
        "free_connections": idle,
        "used_connections": size - idle,
    }


async def graceful_pool_close(pool: asyncpg.Pool, timeout: float = 10.0) -> None:
    """Wait for checked-out connections to come back, then close the pool."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while (busy := pool.get_size() - pool.get_idle_size()) > 0:
        if loop.time() >= deadline:
            logger.warning(f"Closing database pool with {busy} connection(s) still in use")
            break
        await asyncio.sleep(DRAIN_POLL_INTERVAL)

    await pool.close()
    logger.info("Database pool closed")
