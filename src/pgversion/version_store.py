"""Persistence of the single migration checkpoint row."""

import logging
from datetime import datetime, timezone
from typing import Optional

import asyncpg

from pgversion.connection import DRIVER_ERRORS, Database
from pgversion.exceptions import VersionStoreError
from pgversion.migrations import VersionState

logger = logging.getLogger(__name__)

VERSION_TABLE = "db_version"
ROW_ID = "1"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VersionStore:
    """Reads and writes the ``db_version`` checkpoint row.

    All writes run in serializable transactions so two runners started at
    the same time cannot interleave their updates.

    Args:
        database: Database providing the transaction primitives
    """

    def __init__(self, database: Database):
        self.database = database

    async def ensure_table(self) -> None:
        """Create the tracking table if it doesn't exist."""

        async def _create(conn: asyncpg.Connection) -> None:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {VERSION_TABLE} (
                    id VARCHAR(1) PRIMARY KEY,
                    version BIGINT NOT NULL,
                    hash TEXT NOT NULL,
                    file TEXT NOT NULL,
                    last_run TIMESTAMPTZ,
                    complete BOOLEAN NOT NULL
                )
            """)

        try:
            await self.database.write_transaction(_create)
        except DRIVER_ERRORS as e:
            raise VersionStoreError(f"Failed to create {VERSION_TABLE} table: {e}") from e

    async def get_current(self) -> Optional[VersionState]:
        """Read the checkpoint row.

        Returns:
            The current VersionState, or None if the row doesn't exist yet

        Raises:
            VersionStoreError: If the row cannot be read
        """

        async def _fetch(conn: asyncpg.Connection) -> Optional[asyncpg.Record]:
            return await conn.fetchrow(
                f"""
                SELECT version, hash, file, last_run, complete
                FROM {VERSION_TABLE} WHERE id = $1
                """,
                ROW_ID,
            )

        try:
            row = await self.database.read_transaction(_fetch)
        except DRIVER_ERRORS as e:
            raise VersionStoreError(
                f"Failed to fetch current migration status: {e}"
            ) from e

        if row is None:
            return None
        return VersionState(**dict(row))

    async def initialize(self) -> VersionState:
        """Create the table and bootstrap row on first contact.

        Returns:
            The current VersionState (version 0 on a fresh database)
        """
        await self.ensure_table()

        state = await self.get_current()
        if state is not None:
            return state

        logger.info(f"Bootstrapping {VERSION_TABLE} at version 0")

        async def _insert(conn: asyncpg.Connection) -> None:
            await conn.execute(
                f"""
                INSERT INTO {VERSION_TABLE} (id, version, hash, file, last_run, complete)
                VALUES ($1, 0, '', '', $2, TRUE)
                ON CONFLICT (id) DO NOTHING
                """,
                ROW_ID,
                _utcnow(),
            )

        try:
            await self.database.write_transaction(_insert)
        except DRIVER_ERRORS as e:
            raise VersionStoreError(f"Failed to bootstrap {VERSION_TABLE}: {e}") from e

        state = await self.get_current()
        if state is None:
            raise VersionStoreError(f"{VERSION_TABLE} row missing after bootstrap")
        return state

    async def begin_step(
        self, version: int, hash: str, file: str, expected_version: int
    ) -> None:
        """Record that a migration is about to run (complete = false).

        The update only applies while the row still holds the completed
        ``expected_version`` checkpoint the caller diffed against.

        Raises:
            VersionStoreError: If the row has moved since it was read
        """

        async def _update(conn: asyncpg.Connection) -> str:
            return await conn.execute(
                f"""
                UPDATE {VERSION_TABLE}
                SET version = $1, hash = $2, file = $3, last_run = $4, complete = FALSE
                WHERE id = $5 AND version = $6 AND complete = TRUE
                """,
                version,
                hash,
                file,
                _utcnow(),
                ROW_ID,
                expected_version,
            )

        try:
            result = await self.database.write_transaction(_update)
        except DRIVER_ERRORS as e:
            raise VersionStoreError(f"Failed to open migration step: {e}") from e

        if result != "UPDATE 1":
            raise VersionStoreError(
                f"Failed to open migration step {version}: {VERSION_TABLE} is no "
                f"longer at completed version {expected_version}"
            )

    async def complete_step(self, version: int) -> None:
        """Mark the in-progress migration as finished.

        Raises:
            VersionStoreError: If the row no longer holds ``version``
        """

        async def _update(conn: asyncpg.Connection) -> str:
            return await conn.execute(
                f"""
                UPDATE {VERSION_TABLE}
                SET complete = TRUE, last_run = $1
                WHERE id = $2 AND version = $3
                """,
                _utcnow(),
                ROW_ID,
                version,
            )

        try:
            result = await self.database.write_transaction(_update)
        except DRIVER_ERRORS as e:
            raise VersionStoreError(f"Failed to complete migration step: {e}") from e

        if result != "UPDATE 1":
            raise VersionStoreError(
                f"Failed to complete migration step: {VERSION_TABLE} no longer "
                f"at version {version}"
            )

    async def mark_resolved(self, version: int) -> None:
        """Flip an incomplete checkpoint back to complete after a manual fix."""

        async def _update(conn: asyncpg.Connection) -> str:
            return await conn.execute(
                f"""
                UPDATE {VERSION_TABLE}
                SET complete = TRUE, last_run = $1
                WHERE id = $2 AND version = $3 AND complete = FALSE
                """,
                _utcnow(),
                ROW_ID,
                version,
            )

        try:
            result = await self.database.write_transaction(_update)
        except DRIVER_ERRORS as e:
            raise VersionStoreError(f"Failed to resolve migration {version}: {e}") from e

        if result != "UPDATE 1":
            raise VersionStoreError(
                f"Migration {version} is not the incomplete checkpoint"
            )


class InMemoryVersionStore:
    """Process-local stand-in for VersionStore.

    Holds the checkpoint in memory with the same interface and checks.
    ``fail_on`` maps an operation name ("begin", "complete") to a version
    that should raise, which is how the runner's failure paths are tested.
    """

    def __init__(self, state: Optional[VersionState] = None):
        self.state = state
        self.fail_on: dict[str, int] = {}
        self.history: list[tuple[str, int]] = []

    async def ensure_table(self) -> None:
        return None

    async def get_current(self) -> Optional[VersionState]:
        return self.state.model_copy() if self.state is not None else None

    async def initialize(self) -> VersionState:
        if self.state is None:
            self.state = VersionState(last_run=_utcnow())
        return self.state.model_copy()

    async def begin_step(
        self, version: int, hash: str, file: str, expected_version: int
    ) -> None:
        if self.fail_on.get("begin") == version:
            raise VersionStoreError(f"Failed to open migration step {version}")
        if (
            self.state is None
            or self.state.version != expected_version
            or not self.state.complete
        ):
            raise VersionStoreError(
                f"Failed to open migration step {version}: no longer at "
                f"completed version {expected_version}"
            )
        self.state = VersionState(
            version=version, hash=hash, file=file, last_run=_utcnow(), complete=False
        )
        self.history.append(("begin", version))

    async def complete_step(self, version: int) -> None:
        if self.fail_on.get("complete") == version:
            raise VersionStoreError(f"Failed to complete migration step {version}")
        if self.state is None or self.state.version != version:
            raise VersionStoreError(
                f"Failed to complete migration step: no longer at version {version}"
            )
        self.state = self.state.model_copy(
            update={"complete": True, "last_run": _utcnow()}
        )
        self.history.append(("complete", version))

    async def mark_resolved(self, version: int) -> None:
        if self.state is None or self.state.version != version or self.state.complete:
            raise VersionStoreError(
                f"Migration {version} is not the incomplete checkpoint"
            )
        self.state = self.state.model_copy(update={"complete": True})
