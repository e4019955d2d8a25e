"""Distribution preview for Wishtree CLI.

Provides:
  wishtree ladder [--amount N] [--depth D] [--ladder 60,20,10,5,5] [--json]

Shows how ``amount`` tokens injected at a node would be split over a chain
of ``depth`` nodes (the node itself plus its ancestors). Touches no database.
"""

from __future__ import annotations

import argparse

from ...core.config import get_config, parse_ladder
from ...core.distribution import distribute
from ...core.exceptions import WishTreeException
from ..utils import output_error, output_json


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("ladder", help="Preview how support is split up a chain")
    parser.add_argument("--amount", type=int, default=1000, help="Tokens injected at the origin (default: 1000)")
    parser.add_argument("--depth", type=int, help="Nodes in the chain, origin included (default: ladder length)")
    parser.add_argument("--ladder", help="Override the configured ladder, e.g. 60,20,10,5,5")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.set_defaults(func=cmd_ladder)


def cmd_ladder(args: argparse.Namespace) -> int:
    try:
        levels = parse_ladder(args.ladder) if args.ladder else get_config().ladder
        depth = args.depth if args.depth is not None else len(levels)
        if depth < 1:
            output_error("--depth must be at least 1")
            return 1
        chain = [f"level-{i}" for i in range(1, depth)]
        plan = distribute("level-0", args.amount, chain, ladder=levels, event_id="preview")
    except WishTreeException as e:
        output_error(e.message)
        return 1

    if args.json:
        output_json(
            {
                "amount": plan.amount,
                "ladder": list(levels),
                "depth": depth,
                "shares": [{"level": s.level, "percentage": s.percentage, "amount": s.amount} for s in plan.shares],
                "total_paid": plan.total_paid,
                "forfeited": plan.shortfall,
            }
        )
        return 0

    print(f"Splitting {plan.amount} tokens over {depth} node(s) with ladder {','.join(map(str, levels))}\n")
    print(f"  {'Level':<7} {'Percent':>8} {'Amount':>10}")
    for share in plan.shares:
        print(f"  {share.level:<7} {share.percentage:>7}% {share.amount:>10}")
    print(f"\n  Paid:      {plan.total_paid}")
    print(f"  Forfeited: {plan.shortfall}")
    return 0
