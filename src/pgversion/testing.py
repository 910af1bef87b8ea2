"""Testing utilities for pgversion.

Creates throwaway PostgreSQL databases so migrations can be applied
against a clean checkpoint in each test.
"""

import logging
import uuid
from typing import Optional
from urllib.parse import urlparse

import asyncpg

from pgversion.config import DatabaseConfig
from pgversion.connection import Database, close_pool, create_pool
from pgversion.exceptions import TestDatabaseError

logger = logging.getLogger(__name__)

# Database names keyed by pool id(); asyncpg pools don't take attributes
_pool_db_names: dict[int, str] = {}


class DatabaseTestManager:
    """Manages test database lifecycle.

    Example:
        manager = DatabaseTestManager(config)
        database = await manager.create_test_db()
        # Run tests...
        await manager.cleanup_test_db(database)
    """

    def __init__(self, config: DatabaseConfig):
        """Initialize test database manager.

        Args:
            config: Database configuration (should point to an admin db)
        """
        self.config = config

    def _admin_dsn(self) -> str:
        try:
            return urlparse(self.config.url)._replace(path="/postgres").geturl()
        except ValueError as e:
            raise TestDatabaseError(f"Failed to parse database URL: {e}") from e

    async def create_test_db(self, db_name: Optional[str] = None) -> Database:
        """Create an empty, isolated test database.

        Args:
            db_name: Database name to create (auto-generated if None)

        Returns:
            Database wrapping a pool to the new test database

        Raises:
            TestDatabaseError: If database creation fails
        """
        if db_name is None:
            db_name = f"pgversion_test_{uuid.uuid4().hex[:8]}"

        logger.info(f"Creating test database: {db_name}")

        admin_conn = None
        try:
            admin_conn = await asyncpg.connect(self._admin_dsn(), timeout=self.config.timeout)

            # Use format() with %I for safe identifier escaping
            query = await admin_conn.fetchval(
                "SELECT format('CREATE DATABASE %I', $1::text)", db_name
            )
            await admin_conn.execute(query)

            test_dsn = urlparse(self.config.url)._replace(path=f"/{db_name}").geturl()
            test_config = self.config.model_copy(update={"url": test_dsn})

            pool = await create_pool(test_config)
            _pool_db_names[id(pool)] = db_name

            logger.info(f"Test database created successfully: {db_name}")
            return Database(pool)

        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Failed to create test database: {e}")
            raise TestDatabaseError(f"Failed to create test database: {e}") from e
        finally:
            if admin_conn:
                await admin_conn.close()

    async def cleanup_test_db(self, database: Database) -> None:
        """Close the pool and drop the test database.

        Raises:
            TestDatabaseError: If cleanup fails
        """
        db_name = _pool_db_names.get(id(database.pool))
        if not db_name:
            raise TestDatabaseError(
                "Pool not found in database registry. "
                "Was it created with DatabaseTestManager?"
            )

        logger.info(f"Cleaning up test database: {db_name}")
        await close_pool(database.pool)

        admin_conn = None
        try:
            admin_conn = await asyncpg.connect(self._admin_dsn(), timeout=self.config.timeout)

            await admin_conn.execute(
                """
                SELECT pg_terminate_backend(pid)
                FROM pg_stat_activity
                WHERE datname = $1 AND pid <> pg_backend_pid()
                """,
                db_name,
            )

            query = await admin_conn.fetchval(
                "SELECT format('DROP DATABASE IF EXISTS %I', $1::text)", db_name
            )
            await admin_conn.execute(query)

            _pool_db_names.pop(id(database.pool), None)
            logger.info(f"Test database cleaned up successfully: {db_name}")

        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Failed to cleanup test database: {e}")
            raise TestDatabaseError(f"Failed to cleanup test database: {e}") from e
        finally:
            if admin_conn:
                await admin_conn.close()
