"""Schema management for pgversion."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from pgversion.connection import DRIVER_ERRORS, Database
from pgversion.exceptions import (
    DriftError,
    MigrationError,
    PgversionError,
    StepError,
    UnresolvedMigrationError,
)
from pgversion.migrations import (
    MIGRATION_SUFFIX,
    Migration,
    MigrationStatus,
    VersionState,
    discover_migrations,
    sort_migrations,
)
from pgversion.version_store import VersionStore

logger = logging.getLogger(__name__)

# Anything a step can fail with short of a programming error. Decoding a
# non-UTF-8 script raises UnicodeDecodeError, a ValueError.
STEP_ERRORS = (PgversionError, ValueError) + DRIVER_ERRORS


def diff_migrations(
    state: VersionState,
    candidates: list[Migration],
    allow_drift: bool = False,
) -> list[Migration]:
    """Classify discovered migrations against the checkpoint.

    Anything at or below the checkpoint version is complete, anything above
    it is pending.

    Args:
        state: Current checkpoint
        candidates: Migrations from discovery
        allow_drift: Log a hash mismatch at the checkpoint version instead
            of raising

    Returns:
        New Migration objects with ``complete`` set, sorted by version

    Raises:
        UnresolvedMigrationError: If the checkpoint is not complete
        DriftError: If the checkpoint's file changed since it was applied
    """
    if not state.complete:
        raise UnresolvedMigrationError(state.version, state.file)

    classified = []
    for candidate in candidates:
        if (
            state.version > 0
            and candidate.version == state.version
            and candidate.hash != state.hash
        ):
            if not allow_drift:
                raise DriftError(
                    candidate.version, str(candidate.file), state.hash, candidate.hash
                )
            logger.warning(
                f"Migration {candidate.version} ({candidate.file}) was modified "
                "after being applied; continuing because drift is allowed"
            )

        classified.append(
            candidate.model_copy(update={"complete": candidate.version <= state.version})
        )

    return sort_migrations(classified)


async def run_migrations(
    store: VersionStore,
    executor: Database,
    state: VersionState,
    migrations: list[Migration],
) -> MigrationStatus:
    """Apply pending migrations in version order, stopping at the first failure.

    Each pending migration is bracketed by ``begin_step`` (checkpoint moves
    to the new version with complete = false) and ``complete_step``. A
    failure in between leaves the checkpoint incomplete on purpose.
    ``begin_step`` is told which completed checkpoint this run last saw, so a
    runner that lost a race to another one fails instead of rewinding it.

    Args:
        store: Checkpoint store
        executor: Anything with an async ``exec_statements(sql)``
        state: Checkpoint the migrations were diffed against
        migrations: Classified migrations

    Returns:
        MigrationStatus for this invocation

    Raises:
        StepError: On the first failing step; ``error.status`` holds the
            counts up to that point
    """
    status = MigrationStatus(latest=state.version)
    checkpoint = state.version

    for migration in sort_migrations(migrations):
        if migration.complete:
            status.skipped += 1
            continue

        version = migration.version
        file = str(migration.file)

        def _fail(stage: str, message: str, error: Exception) -> StepError:
            status.failed += 1
            logger.error(f"{message} {version} ({file}): {error}")
            return StepError(
                f"{message} {version} ({file}): {error}",
                version=version,
                file=file,
                stage=stage,
                status=status,
            )

        try:
            await store.begin_step(version, migration.hash, file, checkpoint)
        except STEP_ERRORS as e:
            raise _fail("begin", "Failed to start migration", e) from e

        logger.info(f"Applying migration {version}: {migration.file.name}")

        try:
            await executor.exec_statements(migration.read_sql())
        except STEP_ERRORS as e:
            raise _fail("apply", "Failed to apply migration", e) from e

        try:
            await store.complete_step(version)
        except STEP_ERRORS as e:
            raise _fail("complete", "Failed to complete migration", e) from e

        logger.info(f"Successfully applied migration {version}")
        status.applied += 1
        status.latest = version
        checkpoint = version

    return status


class SchemaManager:
    """Manages database migrations.

    Args:
        database: Database to migrate
        migrations_dir: Directory containing ``<version>.sql`` files
        allow_drift: Tolerate edits to the most recently applied migration
        store: Checkpoint store (defaults to a VersionStore on ``database``)
    """

    def __init__(
        self,
        database: Database,
        migrations_dir: str | Path = "db/migrations",
        allow_drift: bool = False,
        store: Optional[VersionStore] = None,
    ):
        self.database = database
        self.migrations_dir = Path(migrations_dir)
        self.allow_drift = allow_drift
        self.store = store if store is not None else VersionStore(database)

    async def initialize(self) -> VersionState:
        """Ensure the tracking row exists and return it."""
        return await self.store.initialize()

    async def get_current_version(self) -> int:
        """Get the checkpoint version (0 on a fresh database)."""
        state = await self.initialize()
        return state.version

    def discover(self) -> list[Migration]:
        """Discover migration files on disk."""
        return discover_migrations(self.migrations_dir)

    async def diff(self) -> tuple[VersionState, list[Migration]]:
        """Classify every migration on disk against the checkpoint.

        Returns:
            Tuple of (checkpoint, classified migrations)
        """
        state = await self.initialize()
        migrations = diff_migrations(state, self.discover(), self.allow_drift)
        return state, migrations

    async def get_pending_migrations(self) -> list[Migration]:
        """Get migrations newer than the checkpoint."""
        _, migrations = await self.diff()
        return [m for m in migrations if not m.complete]

    async def schema_up(self, dry_run: bool = False) -> MigrationStatus:
        """Apply all pending migrations.

        Args:
            dry_run: Only report what would be applied

        Returns:
            MigrationStatus for this run

        Raises:
            MigrationError: If diffing fails or a step fails
        """
        state, migrations = await self.diff()
        pending = [m for m in migrations if not m.complete]

        if not pending:
            logger.info("No pending migrations to apply")

        if dry_run:
            for migration in pending:
                logger.info(f"Would apply migration {migration.version}: {migration.file}")
            return MigrationStatus(
                skipped=len(migrations) - len(pending), latest=state.version
            )

        status = await run_migrations(self.store, self.database, state, migrations)
        logger.info(
            f"Migrations finished: applied={status.applied} skipped={status.skipped} "
            f"latest={status.latest}"
        )
        return status

    async def resolve(self, expected_version: int) -> VersionState:
        """Mark a failed checkpoint as complete after a manual fix.

        Args:
            expected_version: Version the operator believes is stuck

        Raises:
            MigrationError: If the checkpoint is complete or at another version
        """
        state = await self.initialize()
        if state.complete:
            raise MigrationError(
                f"Migration {state.version} is already complete; nothing to resolve"
            )
        if state.version != expected_version:
            raise MigrationError(
                f"Checkpoint is at migration {state.version} ({state.file}), "
                f"not {expected_version}"
            )

        await self.store.mark_resolved(expected_version)
        logger.warning(f"Migration {expected_version} manually marked as complete")
        return await self.initialize()

    async def get_status(self) -> dict:
        """Summarise the checkpoint and the applied/pending migrations.

        The checkpoint is returned even if it is incomplete; in that case
        ``applied`` and ``pending`` are empty.
        """
        state = await self.initialize()
        if not state.complete:
            return {"current": state, "applied": [], "pending": []}

        _, migrations = await self.diff()
        return {
            "current": state,
            "applied": [m for m in migrations if m.complete],
            "pending": [m for m in migrations if not m.complete],
        }

    def create_migration(self, description: str = "") -> Path:
        """Create the next numbered migration file.

        Args:
            description: Optional text for the header comment

        Returns:
            Path to the new file
        """
        if not self.migrations_dir.exists():
            self.migrations_dir.mkdir(parents=True, exist_ok=True)

        existing = discover_migrations(self.migrations_dir)
        version = existing[-1].version + 1 if existing else 1
        path = self.migrations_dir / f"{version}{MIGRATION_SUFFIX}"

        header = f"-- Migration {version}"
        if description:
            header += f": {description}"

        path.write_text(f"""{header}
-- Created: {datetime.now().isoformat()}
--
-- Add your migration SQL here

""")

        logger.info(f"Created migration file: {path.name}")
        return path
