"""CLI interface for pgversion."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from pgversion.config import DatabaseConfig
from pgversion.connection import Database, connect
from pgversion.exceptions import PgversionError, StepError
from pgversion.migrations import MigrationStatus, discover_migrations
from pgversion.schema import SchemaManager

# ANSI color codes
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"


def print_table(headers: list[str], rows: list[list[str]]) -> None:
    """Print a simple aligned table."""
    if not rows:
        return

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(str(cell)))

    header_row = "  ".join(h.ljust(w) for h, w in zip(headers, widths))
    print(f"{BOLD}{header_row}{RESET}")
    print("-" * (len(header_row) + len(headers) * 2))

    for row in rows:
        print("  ".join(str(cell).ljust(w) for cell, w in zip(row, widths)))


def print_status(status: MigrationStatus) -> None:
    """Print the outcome counts of a run."""
    failed_color = RED if status.failed else DIM
    print(
        f"  {GREEN}Applied:{RESET} {status.applied}  "
        f"{DIM}Skipped:{RESET} {status.skipped}  "
        f"{failed_color}Failed:{RESET} {status.failed}  "
        f"{BOLD}Latest:{RESET} {status.latest}"
    )


def get_config() -> DatabaseConfig:
    """Get database configuration from the environment."""
    try:
        return DatabaseConfig.from_env(require_url=True)
    except ValueError as e:
        print(f"{RED}ERROR:{RESET} {e}")
        sys.exit(1)


async def open_database(config: DatabaseConfig) -> Database:
    """Connect and ping, exiting with an error message on failure."""
    database = None
    try:
        database = await connect(config)
        await database.ping()
    except PgversionError as e:
        if database is not None:
            await database.close()
        print(f"{RED}ERROR:{RESET} {e}")
        sys.exit(1)
    return database


def get_migrations_dir(args: argparse.Namespace, config: DatabaseConfig) -> Path:
    return Path(args.migrations_dir or config.migrations_dir)


def local_migrations_dir(args: argparse.Namespace) -> Path:
    """Migrations directory for commands that don't need a database."""
    return Path(
        args.migrations_dir or os.getenv("PGVERSION_MIGRATIONS_DIR", "db/migrations")
    )


def cmd_init(args: argparse.Namespace) -> None:
    """Initialize pgversion directory structure."""
    migrations_dir = local_migrations_dir(args)
    migrations_dir.mkdir(parents=True, exist_ok=True)
    print(f"✓ Created directory: {migrations_dir}")

    print(f"\n{GREEN}Initialization complete!{RESET}")
    print("\nNext steps:")
    print("  1. Set DATABASE_URL environment variable")
    print("  2. Run 'pgversion schema create' to create your first migration")
    print("  3. Edit the migration file and run 'pgversion schema up'")


def cmd_schema_create(args: argparse.Namespace) -> None:
    """Create the next numbered migration file."""
    try:
        # No database needed for file operations
        migrations_dir = local_migrations_dir(args)
        manager = SchemaManager(database=None, migrations_dir=migrations_dir)  # type: ignore

        path = manager.create_migration(args.description or "")

        print(f"\n{GREEN}✓ Created migration file:{RESET} {path}")
        print("\nEdit this file to add your migration SQL.")

    except PgversionError as e:
        print(f"{RED}ERROR:{RESET} {e}")
        sys.exit(1)


def cmd_schema_up(args: argparse.Namespace) -> None:
    """Apply pending migrations."""

    async def _run():
        config = get_config()
        database = await open_database(config)

        try:
            manager = SchemaManager(
                database,
                migrations_dir=get_migrations_dir(args, config),
                allow_drift=args.allow_drift or config.allow_drift,
            )

            if args.dry_run:
                print(f"{BOLD}DRY RUN MODE - No changes will be made{RESET}\n")

                pending = await manager.get_pending_migrations()
                if not pending:
                    print(f"{YELLOW}No pending migrations to apply.{RESET}")
                    return

                print(f"{BOLD}Would apply {len(pending)} migration(s):{RESET}\n")
                for migration in pending:
                    print(f"{CYAN}Migration {migration.version}:{RESET} {migration.file}")
                    print(f"  Hash: {migration.hash[:16]}...")
                return

            print("Checking for pending migrations...")
            status = await manager.schema_up()

            if status.applied:
                print(f"\n{GREEN}✓ Applied {status.applied} migration(s){RESET}")
            else:
                print(f"{YELLOW}No pending migrations to apply.{RESET}")
            print_status(status)

        except StepError as e:
            print(f"\n{RED}ERROR:{RESET} {e}")
            print_status(e.status)
            if e.stage != "begin":
                print(
                    f"\nMigration {e.version} is marked incomplete. Fix the database, "
                    f"then run 'pgversion schema resolve {e.version}'."
                )
            sys.exit(1)
        except PgversionError as e:
            print(f"\n{RED}ERROR:{RESET} {e}")
            sys.exit(1)
        finally:
            await database.close()

    asyncio.run(_run())


def cmd_schema_status(args: argparse.Namespace) -> None:
    """Show migration status."""

    async def _run():
        config = get_config()
        database = await open_database(config)

        try:
            manager = SchemaManager(
                database,
                migrations_dir=get_migrations_dir(args, config),
                allow_drift=config.allow_drift,
            )

            status = await manager.get_status()
            current = status["current"]

            state_str = f"{GREEN}complete{RESET}" if current.complete else f"{RED}INCOMPLETE{RESET}"
            print(f"\n{BOLD}Current Version:{RESET} {current.version} ({state_str})")
            if current.file:
                print(f"{BOLD}File:{RESET} {current.file}")
            if current.last_run:
                print(f"{BOLD}Last Run:{RESET} {current.last_run.isoformat()}")

            if not current.complete:
                print(
                    f"\n{RED}Migration {current.version} did not finish.{RESET} "
                    f"Fix the database, then run 'pgversion schema resolve {current.version}'."
                )
                return

            print(f"{BOLD}Applied Migrations:{RESET} {len(status['applied'])}")
            print(f"{BOLD}Pending Migrations:{RESET} {len(status['pending'])}")

            if status["pending"]:
                print(f"\n{BOLD}Pending:{RESET}")
                rows = [
                    [str(m.version), m.file.name, m.hash[:16]]
                    for m in status["pending"]
                ]
                print_table(["Version", "File", "Hash"], rows)

        except PgversionError as e:
            print(f"\n{RED}ERROR:{RESET} {e}")
            sys.exit(1)
        finally:
            await database.close()

    asyncio.run(_run())


def cmd_schema_resolve(args: argparse.Namespace) -> None:
    """Mark a failed migration as complete after a manual fix."""

    async def _run():
        config = get_config()
        database = await open_database(config)

        try:
            manager = SchemaManager(
                database, migrations_dir=get_migrations_dir(args, config)
            )
            state = await manager.resolve(args.version)
            print(f"{GREEN}✓ Migration {state.version} marked as complete{RESET}")

        except PgversionError as e:
            print(f"\n{RED}ERROR:{RESET} {e}")
            sys.exit(1)
        finally:
            await database.close()

    asyncio.run(_run())


def cmd_schema_list(args: argparse.Namespace) -> None:
    """List migration files without touching the database."""
    migrations_dir = local_migrations_dir(args)
    try:
        migrations = discover_migrations(migrations_dir)
    except PgversionError as e:
        print(f"{RED}ERROR:{RESET} {e}")
        sys.exit(1)

    if not migrations:
        print(f"{YELLOW}No migrations found in {migrations_dir}{RESET}")
        return

    print_table(
        ["Version", "File", "Hash"],
        [[str(m.version), m.file.name, m.hash[:16]] for m in migrations],
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for pgversion CLI."""
    parser = argparse.ArgumentParser(
        prog="pgversion",
        description="pgversion - Checkpointed SQL migrations for PostgreSQL",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command")

    # Top-level: pgversion init
    init_parser = subparsers.add_parser(
        "init", help="Initialize pgversion directory structure"
    )
    init_parser.add_argument(
        "--migrations-dir",
        "-m",
        help="Migrations directory path (default: db/migrations)",
    )
    init_parser.set_defaults(func=cmd_init)

    # Schema group: pgversion schema [subcommand]
    schema_parser = subparsers.add_parser("schema", help="Schema management commands")
    schema_parser.add_argument(
        "--migrations-dir",
        "-m",
        help="Migrations directory (default: PGVERSION_MIGRATIONS_DIR or db/migrations)",
    )
    schema_subparsers = schema_parser.add_subparsers(
        dest="schema_command", required=True, help="Schema command"
    )

    # schema create
    create_parser = schema_subparsers.add_parser(
        "create", help="Create the next numbered migration file"
    )
    create_parser.add_argument(
        "description", nargs="?", help="Description for the header comment"
    )
    create_parser.set_defaults(func=cmd_schema_create)

    # schema up
    up_parser = schema_subparsers.add_parser("up", help="Apply pending migrations")
    up_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be applied without executing",
    )
    up_parser.add_argument(
        "--allow-drift",
        action="store_true",
        help="Continue when the latest applied migration file was modified",
    )
    up_parser.set_defaults(func=cmd_schema_up)

    # schema status
    status_parser = schema_subparsers.add_parser("status", help="Show migration status")
    status_parser.set_defaults(func=cmd_schema_status)

    # schema list
    list_parser = schema_subparsers.add_parser(
        "list", help="List migration files on disk"
    )
    list_parser.set_defaults(func=cmd_schema_list)

    # schema resolve
    resolve_parser = schema_subparsers.add_parser(
        "resolve", help="Mark a failed migration as complete after fixing it"
    )
    resolve_parser.add_argument("version", type=int, help="Version that failed")
    resolve_parser.set_defaults(func=cmd_schema_resolve)

    return parser


def main():
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Call the appropriate command function
    args.func(args)


if __name__ == "__main__":
    main()
