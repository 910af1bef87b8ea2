"""Migration records, ordering and discovery."""

import hashlib
import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from pgversion.exceptions import MigrationParseError, SchemaError

logger = logging.getLogger(__name__)

MIGRATION_SUFFIX = ".sql"


class Migration(BaseModel):
    """Represents a database migration."""

    version: int = Field(ge=0)
    file: Path
    hash: str
    complete: bool = False
    last_run: datetime | None = None

    def read_sql(self) -> str:
        """Read the migration script.

        Raises:
            OSError: If the file can no longer be read
            UnicodeDecodeError: If the file is not valid UTF-8
        """
        return self.file.read_text(encoding="utf-8")


class VersionState(BaseModel):
    """The persisted checkpoint row."""

    version: int = Field(default=0, ge=0)
    hash: str = ""
    file: str = ""
    last_run: datetime | None = None
    complete: bool = True


class MigrationStatus(BaseModel):
    """Outcome counts for a single runner invocation."""

    applied: int = 0
    skipped: int = 0
    failed: int = 0
    latest: int = 0


def sort_migrations(migrations: Iterable[Migration]) -> list[Migration]:
    """Order migrations by ascending version."""
    return sorted(migrations, key=lambda m: m.version)


def compute_hash(path: Path) -> str:
    """SHA-256 hex digest of a file's contents."""
    return hashlib.sha256(path.read_bytes()).hexdigest()


def parse_version(path: Path) -> int:
    """Parse the version number from a migration filename.

    Raises:
        MigrationParseError: If the stem is not a base-10 unsigned integer
    """
    stem = path.stem
    # int() would also accept "+1", " 1" and "1_000"
    if not stem.isascii() or not stem.isdigit():
        raise MigrationParseError(f"Invalid version in filename: {path.name}")
    return int(stem)


def discover_migrations(directory: Path | str) -> list[Migration]:
    """Discover all migrations directly inside a directory.

    Files are named ``<version>.sql``. Other extensions and subdirectories
    are ignored.

    Returns:
        List of Migration objects sorted by version

    Raises:
        SchemaError: If the directory doesn't exist
        MigrationParseError: If a filename is malformed or two files share
            a version
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise SchemaError(f"Migrations directory not found: {directory}")

    by_version: dict[int, Migration] = {}
    for path in directory.iterdir():
        if not path.is_file() or path.suffix != MIGRATION_SUFFIX:
            continue

        version = parse_version(path)
        if version in by_version:
            raise MigrationParseError(
                f"Duplicate migration version {version}: "
                f"{by_version[version].file.name} and {path.name}"
            )

        by_version[version] = Migration(
            version=version, file=path, hash=compute_hash(path)
        )

    migrations = sort_migrations(by_version.values())
    logger.debug(f"Discovered {len(migrations)} migration(s) in {directory}")
    return migrations
