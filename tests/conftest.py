import getpass
import os

import pytest

from pgversion import DatabaseConfig

# Import all standard fixtures from pgversion.pytest
from pgversion.pytest import (
    db_config as base_db_config,
)
from pgversion.pytest import (
    isolated_db,
    migrations_dir,
    schema_manager,
)

# Make fixtures available to all tests (avoid F401 warning)
__all__ = [
    "base_db_config",
    "isolated_db",
    "migrations_dir",
    "schema_manager",
]


@pytest.fixture(scope="session")
def db_config():
    """Test database configuration.

    Uses TEST_DATABASE_URL or the current user on localhost.
    """
    default_url = f"postgresql://{getpass.getuser()}@localhost/postgres"
    url = os.getenv("TEST_DATABASE_URL", default_url)
    return DatabaseConfig(
        url=url,
        min_connections=1,
        max_connections=5,
    )


@pytest.fixture
def write_migration(migrations_dir):
    """Write ``<version>.sql`` into migrations_dir and return its path."""

    def _write(version, sql: str = "SELECT 1;"):
        path = migrations_dir / f"{version}.sql"
        path.write_text(sql)
        return path

    return _write
