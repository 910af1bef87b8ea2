"""pgversion - Checkpointed SQL migrations for PostgreSQL.

pgversion applies numbered ``.sql`` files in order, recording progress in a
single ``db_version`` row so interrupted or modified migrations are caught
before anything else runs.
"""

from pgversion.config import DatabaseConfig
from pgversion.connection import Database, close_pool, connect, create_pool
from pgversion.exceptions import (
    ConfigurationError,
    ConnectionError,
    DriftError,
    MigrationError,
    MigrationParseError,
    PgversionError,
    SchemaError,
    StepError,
    UnresolvedMigrationError,
    VersionStoreError,
)
from pgversion.migrations import (
    Migration,
    MigrationStatus,
    VersionState,
    discover_migrations,
    sort_migrations,
)
from pgversion.schema import SchemaManager, diff_migrations, run_migrations
from pgversion.version_store import InMemoryVersionStore, VersionStore

__all__ = [
    "DatabaseConfig",
    "Database",
    "connect",
    "create_pool",
    "close_pool",
    "PgversionError",
    "ConnectionError",
    "SchemaError",
    "ConfigurationError",
    "VersionStoreError",
    "MigrationError",
    "MigrationParseError",
    "DriftError",
    "UnresolvedMigrationError",
    "StepError",
    "Migration",
    "MigrationStatus",
    "VersionState",
    "discover_migrations",
    "sort_migrations",
    "diff_migrations",
    "run_migrations",
    "SchemaManager",
    "VersionStore",
    "InMemoryVersionStore",
]
