from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pgversion.migrations import MigrationStatus


class PgversionError(Exception):
    """Base exception for all pgversion errors."""

    ...


class ConnectionError(PgversionError):
    """Raised when database connection fails."""

    ...


class SchemaError(PgversionError):
    """Raised when the migrations directory or tracking table is unusable."""

    ...


class ConfigurationError(PgversionError):
    """Raised when configuration is invalid."""

    ...


class VersionStoreError(PgversionError):
    """Raised when the version row cannot be created, read or updated."""

    ...


class MigrationError(PgversionError):
    """Raised when migration operations fail."""

    ...


class MigrationParseError(MigrationError):
    """Raised when a migration filename does not yield a usable version."""

    ...


class DriftError(MigrationError):
    """Raised when an applied migration's file changed after it was applied."""

    def __init__(self, version: int, file: str, expected: str, actual: str):
        self.version = version
        self.file = file
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Migration {version} ({file}) has been modified since it was applied "
            f"(recorded hash {expected[:12]}, current hash {actual[:12]})"
        )


class UnresolvedMigrationError(MigrationError):
    """Raised when a previous run left the version row incomplete."""

    def __init__(self, version: int, file: str):
        self.version = version
        self.file = file
        super().__init__(
            f"Migration {version} in file {file} appears to have failed, "
            "please rectify manually"
        )


class StepError(MigrationError):
    """Raised when a single migration step fails.

    Carries the partial run status so callers can report how far it got.
    """

    def __init__(
        self,
        message: str,
        *,
        version: int,
        file: str,
        stage: str,
        status: "MigrationStatus",
    ):
        self.version = version
        self.file = file
        self.stage = stage
        self.status = status
        super().__init__(message)


class TestDatabaseError(PgversionError):
    """Raised when test database operations fail."""

    ...
