"""Connection pool and transaction helpers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

import asyncpg

from pgversion.config import DatabaseConfig
from pgversion.exceptions import ConnectionError, MigrationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ISOLATION_LEVEL = "serializable"

# Errors the driver raises on top of SQL failures themselves.
DRIVER_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


async def create_pool(config: DatabaseConfig) -> asyncpg.Pool:
    """Create an asyncpg connection pool.

    Args:
        config: Database configuration

    Returns:
        asyncpg.Pool

    Raises:
        ConnectionError: If the pool cannot be created
    """
    logger.info(
        f"Creating connection pool (min={config.min_connections}, "
        f"max={config.max_connections})"
    )

    try:
        pool = await asyncpg.create_pool(
            config.url,
            min_size=config.min_connections,
            max_size=config.max_connections,
            timeout=config.timeout,
            command_timeout=config.command_timeout,
            max_inactive_connection_lifetime=config.max_inactive_connection_lifetime,
            ssl=config.ssl_mode,
        )
    except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
        logger.error(f"Failed to connect to database: {e}")
        raise ConnectionError(f"Failed to connect to database: {e}") from e

    if pool is None:
        raise ConnectionError("Failed to connect to database: no pool returned")

    return pool


async def close_pool(pool: Optional[asyncpg.Pool]) -> None:
    """Close a connection pool, if there is one."""
    if pool is None:
        return
    await pool.close()
    logger.info("Connection pool closed")


def split_statements(sql: str) -> list[str]:
    """Split a SQL script into individual statements.

    Semicolons inside quoted strings, quoted identifiers, dollar-quoted
    bodies and comments do not end a statement. Statements holding only
    whitespace or comments are dropped.
    """
    statements = []
    start = 0
    has_code = False
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]

        if ch in ("'", '"'):
            end = sql.find(ch, i + 1)
            # doubled quotes are escapes; keep scanning past them
            while end != -1 and end + 1 < n and sql[end + 1] == ch:
                end = sql.find(ch, end + 2)
            i = n if end == -1 else end + 1
            has_code = True
        elif sql.startswith("--", i):
            end = sql.find("\n", i)
            i = n if end == -1 else end + 1
        elif sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
        elif ch == "$" and (tag := _dollar_tag(sql, i)):
            end = sql.find(tag, i + len(tag))
            i = n if end == -1 else end + len(tag)
            has_code = True
        elif ch == ";":
            if has_code:
                statements.append(sql[start:i].strip())
            start = i + 1
            has_code = False
            i += 1
        else:
            has_code = has_code or not ch.isspace()
            i += 1

    if has_code:
        statements.append(sql[start:].strip())
    return statements


def _dollar_tag(sql: str, pos: int) -> str:
    """Return the dollar-quote tag opening at pos ("$$", "$body$"), or ""."""
    end = sql.find("$", pos + 1)
    if end == -1:
        return ""
    name = sql[pos + 1 : end]
    if name and not (name[0].isalpha() or name[0] == "_"):
        return ""
    if not all(c.isalnum() or c == "_" for c in name):
        return ""
    return sql[pos : end + 1]


class Database:
    """Transaction primitives over an asyncpg pool.

    Every transaction runs at the serializable isolation level and commits
    when the callback returns, rolling back if it raises.

    Args:
        pool: asyncpg connection pool
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def _run(
        self,
        callback: Callable[[asyncpg.Connection], Awaitable[T]],
        readonly: bool,
    ) -> T:
        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation=ISOLATION_LEVEL, readonly=readonly):
                return await callback(conn)

    async def read_transaction(
        self, callback: Callable[[asyncpg.Connection], Awaitable[T]]
    ) -> T:
        """Run callback inside a read-only transaction."""
        return await self._run(callback, readonly=True)

    async def write_transaction(
        self, callback: Callable[[asyncpg.Connection], Awaitable[T]]
    ) -> T:
        """Run callback inside a read-write transaction."""
        return await self._run(callback, readonly=False)

    async def exec_statements(self, sql: str) -> None:
        """Execute a SQL script statement by statement in one transaction.

        Raises:
            MigrationError: If any statement fails or the transaction cannot
                commit (the whole script is rolled back)
        """
        statements = split_statements(sql)

        async def _exec(conn: asyncpg.Connection) -> None:
            for index, statement in enumerate(statements, start=1):
                try:
                    await conn.execute(statement)
                except asyncpg.PostgresError as e:
                    raise MigrationError(
                        f"Failed to execute statement {index} of {len(statements)}: {e}"
                    ) from e

        try:
            await self.write_transaction(_exec)
        except DRIVER_ERRORS as e:
            raise MigrationError(f"Failed to run migration script: {e}") from e

    async def ping(self) -> None:
        """Check the database is reachable.

        Raises:
            ConnectionError: If a connection cannot be acquired or used
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except DRIVER_ERRORS as e:
            raise ConnectionError(f"Database ping failed: {e}") from e

    async def close(self) -> None:
        await close_pool(self.pool)


async def connect(config: DatabaseConfig) -> Database:
    """Create a pool and wrap it in a Database."""
    return Database(await create_pool(config))
