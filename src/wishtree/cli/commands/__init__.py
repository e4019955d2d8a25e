"""CLI command modules for Wishtree.

Each module exposes a ``register(subparsers)`` function that wires up
its argparse sub-commands and sets ``parser.set_defaults(func=handler)``.
"""

from . import ladder, migration, votes
from .ladder import cmd_ladder
from .migration import cmd_migrate
from .votes import cmd_votes

# Registration order is the order shown in --help.
COMMAND_MODULES = [
    migration,
    votes,
    ladder,
]

__all__ = [
    "COMMAND_MODULES",
    "cmd_ladder",
    "cmd_migrate",
    "cmd_votes",
]
