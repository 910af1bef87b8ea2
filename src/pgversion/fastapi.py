"""FastAPI integration for pgversion."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import asyncpg
from fastapi import FastAPI, Request

from pgversion.config import DatabaseConfig
from pgversion.connection import Database, close_pool, create_pool
from pgversion.schema import SchemaManager

logger = logging.getLogger(__name__)


def create_lifespan(config: DatabaseConfig, migrate: bool = True):
    """Create a lifespan context manager that migrates on startup.

    The pool is created, pending migrations are applied (unless
    ``migrate`` is False), and the pool is stored on ``app.state.db_pool``.
    A failing migration aborts startup with the underlying error.

    Example:
        from fastapi import FastAPI
        from pgversion import DatabaseConfig
        from pgversion.fastapi import create_lifespan

        config = DatabaseConfig(url="postgresql://localhost/mydb")

        app = FastAPI(lifespan=create_lifespan(config))

    Args:
        config: Database configuration
        migrate: Apply pending migrations before serving requests

    Returns:
        An async context manager function for FastAPI lifespan
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage database connection pool lifecycle."""
        logger.info("Initializing database connection pool")
        pool = await create_pool(config)

        try:
            if migrate:
                manager = SchemaManager(
                    Database(pool),
                    migrations_dir=config.migrations_dir,
                    allow_drift=config.allow_drift,
                )
                status = await manager.schema_up()
                app.state.migration_status = status
                logger.info(
                    f"Schema at version {status.latest} "
                    f"({status.applied} migration(s) applied on startup)"
                )
        except BaseException:
            await close_pool(pool)
            raise

        app.state.db_pool = pool

        yield

        logger.info("Shutting down database connection pool")
        pool_instance: Optional[asyncpg.Pool] = getattr(app.state, "db_pool", None)
        await close_pool(pool_instance)
        logger.info("Database connection pool shut down")

    return lifespan


async def get_db_pool(request: Request) -> asyncpg.Pool:
    """Dependency to get database pool from request.

    Usage:
        @app.get("/users")
        async def get_users(pool: asyncpg.Pool = Depends(get_db_pool)):
            async with pool.acquire() as conn:
                return await conn.fetch("SELECT * FROM users")
    """
    return request.app.state.db_pool
