"""
Wishtree CLI.

Commands:
  wishtree migrate ...        Manage the database schema
  wishtree votes finalize     Close voting sessions past their deadline
  wishtree ladder             Preview the support distribution split
"""

from __future__ import annotations

import argparse
import logging
import sys

from ..core.exceptions import ConfigException
from ..core.logging import configure_logging
from .commands import COMMAND_MODULES

logger = logging.getLogger(__name__)


def app() -> argparse.ArgumentParser:
    """Build the argument parser with every command module registered."""
    parser = argparse.ArgumentParser(
        prog="wishtree",
        description="Wish and proposal lifecycle with hierarchical token distribution",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    for module in COMMAND_MODULES:
        module.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        configure_logging("DEBUG" if args.verbose else "INFO")
    except ConfigException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
