"""Unit tests for the fail-fast migration runner."""

import asyncpg
import pytest

from pgversion.exceptions import StepError, UnresolvedMigrationError, VersionStoreError
from pgversion.migrations import Migration, VersionState, compute_hash
from pgversion.schema import diff_migrations, run_migrations


def load(path, complete=False) -> Migration:
    return Migration(
        version=int(path.stem), file=path, hash=compute_hash(path), complete=complete
    )


async def test_applies_pending_in_order(store, executor, write_migration):
    state = await store.initialize()
    migrations = [
        load(write_migration(3, "SELECT 3;")),
        load(write_migration(1, "SELECT 1;")),
        load(write_migration(2, "SELECT 2;")),
    ]

    status = await run_migrations(store, executor, state, migrations)

    assert executor.executed == ["SELECT 1;", "SELECT 2;", "SELECT 3;"]
    assert (status.applied, status.skipped, status.failed, status.latest) == (3, 0, 0, 3)
    assert store.history == [
        ("begin", 1),
        ("complete", 1),
        ("begin", 2),
        ("complete", 2),
        ("begin", 3),
        ("complete", 3),
    ]


async def test_checkpoint_records_last_migration(store, executor, write_migration):
    state = await store.initialize()
    path = write_migration(1, "SELECT 1;")

    await run_migrations(store, executor, state, [load(path)])

    current = await store.get_current()
    assert current.version == 1
    assert current.hash == compute_hash(path)
    assert current.file == str(path)
    assert current.complete is True
    assert current.last_run is not None


async def test_complete_migrations_are_skipped(store, executor, write_migration):
    state = await store.initialize()
    migrations = [load(write_migration(1), complete=True), load(write_migration(2), complete=True)]

    status = await run_migrations(store, executor, state, migrations)

    assert executor.executed == []
    assert store.history == []
    assert (status.applied, status.skipped, status.latest) == (0, 2, 0)


async def test_latest_starts_at_checkpoint(store, executor):
    store.state = VersionState(version=7, hash="h", file="7.sql")

    status = await run_migrations(store, executor, await store.get_current(), [])

    assert status.latest == 7


async def test_stops_at_first_failing_script(store, executor, write_migration):
    state = await store.initialize()
    migrations = [
        load(write_migration(1, "SELECT 1;")),
        load(write_migration(2, "-- FAIL\nSELEC 2;")),
        load(write_migration(3, "SELECT 3;")),
    ]

    with pytest.raises(StepError) as exc_info:
        await run_migrations(store, executor, state, migrations)

    error = exc_info.value
    assert error.stage == "apply"
    assert error.version == 2
    assert error.file.endswith("2.sql")
    assert (error.status.applied, error.status.failed, error.status.skipped) == (1, 1, 0)
    assert error.status.latest == 1
    assert executor.executed == ["SELECT 1;"]

    current = await store.get_current()
    assert current.version == 2
    assert current.complete is False


async def test_failed_run_blocks_next_diff(store, executor, write_migration):
    state = await store.initialize()
    migrations = [load(write_migration(1, "-- FAIL"))]

    with pytest.raises(StepError):
        await run_migrations(store, executor, state, migrations)

    with pytest.raises(UnresolvedMigrationError):
        diff_migrations(await store.get_current(), migrations)

    await store.mark_resolved(1)
    result = diff_migrations(await store.get_current(), migrations)
    assert result[0].complete is True


async def test_begin_failure_leaves_checkpoint_untouched(store, executor, write_migration):
    state = await store.initialize()
    store.fail_on["begin"] = 2
    migrations = [load(write_migration(1)), load(write_migration(2)), load(write_migration(3))]

    with pytest.raises(StepError) as exc_info:
        await run_migrations(store, executor, state, migrations)

    assert exc_info.value.stage == "begin"
    assert (exc_info.value.status.applied, exc_info.value.status.failed) == (1, 1)
    assert len(executor.executed) == 1

    current = await store.get_current()
    assert (current.version, current.complete) == (1, True)


async def test_complete_failure_is_reported(store, executor, write_migration):
    state = await store.initialize()
    store.fail_on["complete"] = 1
    migrations = [load(write_migration(1)), load(write_migration(2))]

    with pytest.raises(StepError) as exc_info:
        await run_migrations(store, executor, state, migrations)

    assert exc_info.value.stage == "complete"
    assert exc_info.value.status.applied == 0
    assert exc_info.value.status.failed == 1
    # The script ran but the checkpoint could not be closed
    assert len(executor.executed) == 1
    assert (await store.get_current()).complete is False


async def test_missing_file_fails_apply_stage(store, executor, write_migration):
    state = await store.initialize()
    path = write_migration(1)
    migration = load(path)
    path.unlink()

    with pytest.raises(StepError) as exc_info:
        await run_migrations(store, executor, state, [migration])

    assert exc_info.value.stage == "apply"
    assert isinstance(exc_info.value.__cause__, OSError)


async def test_step_error_chains_cause(store, executor, write_migration):
    state = await store.initialize()

    with pytest.raises(StepError) as exc_info:
        await run_migrations(store, executor, state, [load(write_migration(1, "-- FAIL"))])

    assert "FAIL" in str(exc_info.value.__cause__)


async def test_non_utf8_script_fails_apply_stage(store, executor, write_migration):
    state = await store.initialize()
    path = write_migration(2)
    path.write_bytes(b"SELECT '\xff\xfe';")
    migrations = [load(write_migration(1)), load(path)]

    with pytest.raises(StepError) as exc_info:
        await run_migrations(store, executor, state, migrations)

    error = exc_info.value
    assert error.stage == "apply"
    assert error.version == 2
    assert isinstance(error.__cause__, UnicodeDecodeError)
    assert (error.status.applied, error.status.failed) == (1, 1)

    current = await store.get_current()
    assert (current.version, current.complete) == (2, False)


class DriverErrorExecutor:
    """Fails the way asyncpg does when a deferred constraint trips at COMMIT."""

    async def exec_statements(self, sql: str) -> None:
        raise asyncpg.exceptions.ForeignKeyViolationError(
            "insert or update on table \"child\" violates foreign key constraint"
        )


async def test_raw_driver_error_fails_apply_stage(store, write_migration):
    state = await store.initialize()

    with pytest.raises(StepError) as exc_info:
        await run_migrations(store, DriverErrorExecutor(), state, [load(write_migration(1))])

    error = exc_info.value
    assert error.stage == "apply"
    assert isinstance(error.__cause__, asyncpg.exceptions.ForeignKeyViolationError)
    assert error.status.failed == 1
    assert (await store.get_current()).complete is False


class FlakyStore:
    """Wraps a store and raises a raw connection error on one operation."""

    def __init__(self, store, operation: str, error: Exception):
        self.store = store
        self.operation = operation
        self.error = error

    async def begin_step(self, *args) -> None:
        if self.operation == "begin":
            raise self.error
        await self.store.begin_step(*args)

    async def complete_step(self, version: int) -> None:
        if self.operation == "complete":
            raise self.error
        await self.store.complete_step(version)


@pytest.mark.parametrize(
    "operation, error",
    [
        ("begin", ConnectionResetError("connection reset by peer")),
        ("complete", asyncpg.InterfaceError("connection is closed")),
    ],
)
async def test_connection_errors_are_counted(store, executor, write_migration, operation, error):
    state = await store.initialize()
    flaky = FlakyStore(store, operation, error)

    with pytest.raises(StepError) as exc_info:
        await run_migrations(flaky, executor, state, [load(write_migration(1))])

    assert exc_info.value.stage == operation
    assert exc_info.value.__cause__ is error
    assert exc_info.value.status.failed == 1


async def test_stale_runner_cannot_rewind_checkpoint(store, executor, write_migration):
    await store.initialize()
    migrations = [load(write_migration(1)), load(write_migration(2)), load(write_migration(3))]
    stale_state = await store.get_current()

    # Another runner gets there first
    await run_migrations(store, executor, stale_state, migrations)
    assert (await store.get_current()).version == 3

    with pytest.raises(StepError) as exc_info:
        await run_migrations(store, executor, stale_state, migrations)

    assert exc_info.value.stage == "begin"
    assert exc_info.value.version == 1
    assert isinstance(exc_info.value.__cause__, VersionStoreError)
    assert len(executor.executed) == 3

    current = await store.get_current()
    assert (current.version, current.complete) == (3, True)


async def test_begin_step_requires_expected_checkpoint(store):
    await store.initialize()
    await store.begin_step(1, "h1", "1.sql", 0)
    await store.complete_step(1)

    with pytest.raises(VersionStoreError, match="no longer at completed version 0"):
        await store.begin_step(2, "h2", "2.sql", 0)

    await store.begin_step(2, "h2", "2.sql", 1)

    # Incomplete checkpoints can't be stepped past either
    with pytest.raises(VersionStoreError):
        await store.begin_step(3, "h3", "3.sql", 2)
