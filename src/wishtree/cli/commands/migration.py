"""Migration commands for Wishtree CLI.

Provides:
  wishtree migrate up [--to VERSION] [--dry-run]
  wishtree migrate down [--to VERSION] [--dry-run]
  wishtree migrate status
  wishtree migrate create NAME
  wishtree migrate bootstrap [--dry-run]
"""

from __future__ import annotations

import argparse
import logging
import sys

from ...core.exceptions import DatabaseException
from ...core.migrations import DEFAULT_MIGRATIONS_DIR, MigrationRunner
from ..utils import get_db_connection, output_error

logger = logging.getLogger(__name__)


def register(subparsers: argparse._SubParsersAction) -> None:
    """Register the migrate command on the CLI parser."""
    migrate_parser = subparsers.add_parser("migrate", help="Database migration management")
    migrate_subparsers = migrate_parser.add_subparsers(dest="migrate_command", required=True)

    migrate_up = migrate_subparsers.add_parser("up", help="Apply pending migrations")
    migrate_up.add_argument("--to", help="Apply up to this version (inclusive)")
    migrate_up.add_argument("--dry-run", action="store_true", help="Show what would be applied")

    migrate_down = migrate_subparsers.add_parser("down", help="Roll back migrations")
    migrate_down.add_argument("--to", help="Roll back to this version (it stays applied)")
    migrate_down.add_argument("--dry-run", action="store_true", help="Show what would be rolled back")

    migrate_subparsers.add_parser("status", help="Show migration status")

    migrate_create = migrate_subparsers.add_parser("create", help="Scaffold a new migration")
    migrate_create.add_argument("name", help="Migration name (e.g. add_comments_table)")

    migrate_bootstrap = migrate_subparsers.add_parser("bootstrap", help="Bootstrap a fresh database")
    migrate_bootstrap.add_argument("--dry-run", action="store_true", help="Show what would be applied")

    migrate_parser.set_defaults(func=cmd_migrate)


def _make_runner() -> MigrationRunner:
    return MigrationRunner(
        migrations_dir=DEFAULT_MIGRATIONS_DIR,
        connection_factory=get_db_connection,
    )


def cmd_migrate(args: argparse.Namespace) -> int:
    """Dispatch migrate subcommands."""
    handlers = {
        "up": cmd_migrate_up,
        "down": cmd_migrate_down,
        "status": cmd_migrate_status,
        "create": cmd_migrate_create,
        "bootstrap": cmd_migrate_bootstrap,
    }
    handler = handlers.get(getattr(args, "migrate_command", None) or "")
    if handler is None:
        print("Usage: wishtree migrate {up|down|status|create|bootstrap}", file=sys.stderr)
        return 1
    return handler(args)


def _print_versions(title: str, versions: list[str], dry_run: bool, mark: str = "✓") -> None:
    prefix = "[DRY RUN] " if dry_run else ""
    print(f"\n{prefix}{title} {len(versions)} migration(s):")
    for v in versions:
        print(f"  {mark} {v}")


def cmd_migrate_up(args: argparse.Namespace) -> int:
    dry_run = getattr(args, "dry_run", False)
    try:
        applied = _make_runner().up(target=getattr(args, "to", None), dry_run=dry_run)
    except Exception as e:
        output_error(f"Migration failed: {e}")
        return 1
    if not applied:
        print("No pending migrations.")
    else:
        _print_versions("Applied", applied, dry_run)
    return 0


def cmd_migrate_down(args: argparse.Namespace) -> int:
    dry_run = getattr(args, "dry_run", False)
    try:
        rolled_back = _make_runner().down(target=getattr(args, "to", None), dry_run=dry_run)
    except Exception as e:
        output_error(f"Rollback failed: {e}")
        return 1
    if not rolled_back:
        print("Nothing to roll back.")
    else:
        _print_versions("Rolled back", rolled_back, dry_run, mark="↩")
    return 0


def cmd_migrate_status(args: argparse.Namespace) -> int:
    try:
        statuses = _make_runner().status()
    except Exception as e:
        output_error(f"Failed to get status: {e}")
        return 1

    if not statuses:
        print("No migrations found.")
        return 0

    icons = {"applied": "✓", "pending": "•", "checksum_mismatch": "⚠"}
    print(f"\n{'Version':<10} {'Description':<30} {'State':<20} {'Applied At'}")
    print("─" * 85)
    for s in statuses:
        applied_str = s.applied_at.strftime("%Y-%m-%d %H:%M:%S") if s.applied_at else ""
        print(f"  {icons.get(s.state, '?')} {s.version:<8} {s.description:<30} {s.state:<20} {applied_str}")
    print()
    return 0


def cmd_migrate_create(args: argparse.Namespace) -> int:
    try:
        path = MigrationRunner.create_migration(DEFAULT_MIGRATIONS_DIR, args.name)
    except OSError as e:
        output_error(f"Failed to create migration: {e}")
        return 1
    print(f"Created migration: {path.name}")
    print(f"   Edit: {path}")
    return 0


def cmd_migrate_bootstrap(args: argparse.Namespace) -> int:
    dry_run = getattr(args, "dry_run", False)
    try:
        applied = _make_runner().bootstrap(dry_run=dry_run)
    except DatabaseException as e:
        output_error(e.message)
        return 1
    except Exception as e:
        output_error(f"Bootstrap failed: {e}")
        return 1
    if not applied:
        print("No migrations to apply.")
    else:
        _print_versions("Bootstrapped with", applied, dry_run)
    return 0
