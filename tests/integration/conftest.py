import pytest

from pgversion.exceptions import PgversionError
from pgversion.schema import SchemaManager
from pgversion.testing import DatabaseTestManager
from pgversion.version_store import VersionStore


@pytest.fixture
async def isolated_db(db_config):
    """Fresh database per test; skips when PostgreSQL isn't reachable."""
    manager = DatabaseTestManager(db_config)
    try:
        database = await manager.create_test_db()
    except PgversionError as e:
        pytest.skip(f"PostgreSQL not available: {e}")

    yield database

    await manager.cleanup_test_db(database)


@pytest.fixture
def version_store(isolated_db):
    return VersionStore(isolated_db)


@pytest.fixture
def manager(isolated_db, migrations_dir):
    return SchemaManager(isolated_db, migrations_dir=migrations_dir)
