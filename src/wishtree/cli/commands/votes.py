"""Voting commands for Wishtree CLI.

Provides:
  wishtree votes finalize [--dry-run] [--json]

``finalize`` is meant to run from cron or another scheduler: it closes
every voting session whose deadline has passed.
"""

from __future__ import annotations

import argparse
import logging

from ...core.postgres_store import PostgresTreeStore
from ...core.service import WishService
from ..utils import output_error, output_json

logger = logging.getLogger(__name__)


def register(subparsers: argparse._SubParsersAction) -> None:
    votes_parser = subparsers.add_parser("votes", help="Community voting sessions")
    votes_subparsers = votes_parser.add_subparsers(dest="votes_command", required=True)

    finalize = votes_subparsers.add_parser("finalize", help="Finalize voting sessions past their deadline")
    finalize.add_argument("--dry-run", action="store_true", help="List sessions without closing them")
    finalize.add_argument("--json", action="store_true", help="Output as JSON")

    votes_parser.set_defaults(func=cmd_votes)


def _make_service() -> WishService:
    return WishService(PostgresTreeStore())


def cmd_votes(args: argparse.Namespace) -> int:
    if getattr(args, "votes_command", None) == "finalize":
        return cmd_votes_finalize(args)
    output_error("Usage: wishtree votes finalize [--dry-run]")
    return 1


def cmd_votes_finalize(args: argparse.Namespace) -> int:
    dry_run = getattr(args, "dry_run", False)
    try:
        nodes = _make_service().finalize_expired_votes(dry_run=dry_run)
    except Exception as e:
        output_error(f"Finalize failed: {e}")
        return 1

    if getattr(args, "json", False):
        output_json({"dry_run": dry_run, "nodes": [{"id": n.id, "status": n.status.value} for n in nodes]})
        return 0

    if not nodes:
        print("No expired voting sessions.")
        return 0

    verb = "Would finalize" if dry_run else "Finalized"
    print(f"{verb} {len(nodes)} voting session(s):")
    for node in nodes:
        print(f"  {node.id}  {node.status.value:<18} {node.title}")
    return 0
