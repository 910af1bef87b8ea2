"""pytest fixtures for pgversion testing.

Usage in conftest.py:
    from pgversion.pytest import *  # Import all fixtures

Or selectively:
    from pgversion.pytest import isolated_db, schema_manager
"""

import os
from typing import AsyncGenerator

import pytest

from pgversion.config import DatabaseConfig
from pgversion.connection import Database
from pgversion.schema import SchemaManager
from pgversion.testing import DatabaseTestManager


@pytest.fixture(scope="session")
def db_config():
    """Database configuration for tests.

    Override this in your conftest.py to customize.
    """
    url = os.getenv("TEST_DATABASE_URL", "postgresql://localhost/postgres")
    return DatabaseConfig(
        url=url,
        min_connections=1,
        max_connections=5,
    )


@pytest.fixture
async def isolated_db(db_config) -> AsyncGenerator[Database, None]:
    """Provide a fresh, empty database for each test."""
    manager = DatabaseTestManager(db_config)
    database = await manager.create_test_db()

    yield database

    await manager.cleanup_test_db(database)


@pytest.fixture
def migrations_dir(tmp_path):
    """Empty directory for the test's migration files."""
    path = tmp_path / "migrations"
    path.mkdir()
    return path


@pytest.fixture
def schema_manager(isolated_db, migrations_dir) -> SchemaManager:
    """SchemaManager over the isolated database and migrations_dir."""
    return SchemaManager(isolated_db, migrations_dir=migrations_dir)


__all__ = [
    "db_config",
    "isolated_db",
    "migrations_dir",
    "schema_manager",
]
