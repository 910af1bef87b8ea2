import inspect

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
from pgversion.migrations import MigrationStatus


def test_base_exception_hierarchy():
    """PgversionError should be base for all pgversion exceptions."""
    assert issubclass(ConnectionError, PgversionError)
    assert issubclass(SchemaError, PgversionError)
    assert issubclass(ConfigurationError, PgversionError)
    assert issubclass(VersionStoreError, PgversionError)


def test_migration_errors_share_a_base():
    for cls in (MigrationParseError, DriftError, UnresolvedMigrationError, StepError):
        assert issubclass(cls, MigrationError)


def test_exceptions_include_message():
    """All exceptions should support error messages."""
    error = PgversionError("test error")
    assert str(error) == "test error"

    conn_error = ConnectionError("connection failed")
    assert "connection failed" in str(conn_error)


def test_unresolved_error_names_version_and_file():
    error = UnresolvedMigrationError(4, "db/migrations/4.sql")

    assert error.version == 4
    assert error.file == "db/migrations/4.sql"
    assert "migration 4 in file db/migrations/4.sql appears to have failed" in str(
        error
    ).lower()


def test_drift_error_carries_hashes():
    error = DriftError(3, "3.sql", "a" * 64, "b" * 64)

    assert error.expected == "a" * 64
    assert error.actual == "b" * 64
    assert "Migration 3 (3.sql) has been modified" in str(error)


def test_step_error_carries_partial_status():
    status = MigrationStatus(applied=1, failed=1, latest=1)
    error = StepError("boom", version=2, file="2.sql", stage="apply", status=status)

    assert error.status.applied == 1
    assert error.stage == "apply"
    assert str(error) == "boom"


def test_step_error_status_is_annotated():
    parameters = inspect.signature(StepError.__init__).parameters

    assert parameters["status"].annotation == "MigrationStatus"
    assert parameters["status"].kind is inspect.Parameter.KEYWORD_ONLY


def test_exceptions_can_wrap_cause():
    """Exceptions should preserve original cause."""
    original = ValueError("original error")

    try:
        raise SchemaError("schema failed") from original
    except SchemaError as wrapped:
        assert wrapped.__cause__ == original
        assert isinstance(wrapped.__cause__, ValueError)
        assert str(wrapped.__cause__) == "original error"
