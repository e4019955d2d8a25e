# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Hierarchical token distribution.

A unit of support injected at a node is split up its ancestor chain with a
fixed percentage ladder indexed by distance from the origin:

    level 0 (the origin itself)  60%
    level 1 (its parent)         20%
    level 2                      10%
    level 3                       5%
    level 4                       5%

Rules:
- Each level is paid ``floor(amount * pct / 100)``. Tokens are discrete, so
  the truncation remainder is not reconciled and the total paid may be less
  than ``amount``.
- A chain shorter than the ladder forfeits the unused levels; nothing is
  redistributed to the levels that do exist.
- Levels that round down to zero produce no share.

``distribute`` is pure: it reads nothing and writes nothing. Callers
persist the returned shares in the same unit of work as the balance
changes that caused them.

Caps on proposal payouts:
- Partial acceptance (parent stays open): at most ``floor(token_count * 0.5)``.
- Full settlement (parent closes): up to the whole ``token_count``.
- Equal split across proposals accepted over time:
  ``floor(floor(available * 0.5) / (already_accepted + 1))``, recomputed on
  every acceptance because ``available`` shrinks as tokens are paid out.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Any

from .config import get_config
from .exceptions import ValidationException
from .models import DistributionShare, LedgerKind, new_id, utcnow

logger = logging.getLogger(__name__)

DEFAULT_LADDER: tuple[int, ...] = (60, 20, 10, 5, 5)
DEFAULT_PARTIAL_CAP = Decimal("0.5")


@dataclass(frozen=True)
class DistributionPlan:
    """Result of splitting one support event."""

    event_id: str
    origin_node_id: str
    amount: int
    shares: tuple[DistributionShare, ...]

    @property
    def total_paid(self) -> int:
        return sum(share.amount for share in self.shares)

    @property
    def shortfall(self) -> int:
        """Tokens not allocated (forfeited levels plus truncation)."""
        return self.amount - self.total_paid

    def pairs(self) -> list[tuple[str, int]]:
        """(recipient, amount) pairs in level order."""
        return [(share.recipient_node_id, share.amount) for share in self.shares]

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "origin_node_id": self.origin_node_id,
            "amount": self.amount,
            "total_paid": self.total_paid,
            "shortfall": self.shortfall,
            "shares": [share.to_dict() for share in self.shares],
        }


def _resolve_ladder(ladder: Sequence[int] | None) -> tuple[int, ...]:
    if ladder is not None:
        return tuple(ladder)
    return get_config().ladder


def _resolve_cap(cap: Decimal | float | None) -> Decimal:
    if cap is None:
        return Decimal(str(get_config().partial_settlement_cap))
    return Decimal(str(cap))


def floor_fraction(value: int, fraction: Decimal) -> int:
    return int((Decimal(value) * fraction).to_integral_value(rounding=ROUND_FLOOR))


def recipient_chain(origin_id: str, ancestor_ids: Sequence[str], depth: int) -> list[str]:
    """Origin followed by its ancestors, nearest first, at most ``depth`` long.

    Tolerates a chain that already starts with the origin, and stops at the
    first repeated id so a malformed cycle can't pay a node twice.
    """
    chain = [origin_id]
    seen = {origin_id}
    for node_id in ancestor_ids:
        if len(chain) >= depth:
            break
        if node_id in seen:
            if node_id != origin_id or len(chain) > 1:
                logger.warning("Cycle in ancestor chain of %s at %s; truncating", origin_id, node_id)
                break
            continue
        seen.add(node_id)
        chain.append(node_id)
    return chain


def distribute(
    origin_id: str,
    amount: int,
    ancestor_ids: Sequence[str],
    *,
    ladder: Sequence[int] | None = None,
    kind: LedgerKind = LedgerKind.SUPPORT_SHARE,
    event_id: str | None = None,
) -> DistributionPlan:
    """Split ``amount`` over ``origin_id`` and its ancestors.

    Args:
        origin_id: Node the support was injected at (level 0).
        amount: Whole number of tokens (or minor currency units).
        ancestor_ids: Ancestor ids, nearest first, as returned by the store.
        ladder: Percent per level; defaults to the configured ladder.
        kind: Ledger kind stamped on every share.
        event_id: Id grouping the shares; generated when omitted.

    Returns:
        DistributionPlan whose shares are ordered by level.
    """
    validate_amount(amount)
    levels = _resolve_ladder(ladder)
    event_id = event_id or new_id()
    created_at = utcnow()

    shares: list[DistributionShare] = []
    for level, recipient in enumerate(recipient_chain(origin_id, ancestor_ids, len(levels))):
        pct = levels[level]
        paid = amount * pct // 100
        if paid <= 0:
            continue
        shares.append(
            DistributionShare(
                event_id=event_id,
                origin_node_id=origin_id,
                recipient_node_id=recipient,
                level=level,
                percentage=pct,
                amount=paid,
                kind=kind,
                created_at=created_at,
            )
        )

    plan = DistributionPlan(event_id=event_id, origin_node_id=origin_id, amount=amount, shares=tuple(shares))
    if plan.shortfall:
        logger.info(
            "Distribution %s from %s paid %d of %d (forfeited %d)",
            event_id,
            origin_id,
            plan.total_paid,
            amount,
            plan.shortfall,
        )
    return plan


# ============================================================================
# Validation and caps
# ============================================================================


def validate_amount(amount: Any, *, allow_zero: bool = True) -> int:
    """Reject non-integer and negative amounts."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationException("Token amount must be a whole number", field="amount", value=amount)
    if amount < 0:
        raise ValidationException("Token amount cannot be negative", field="amount", value=amount)
    if amount == 0 and not allow_zero:
        raise ValidationException("Token amount must be positive", field="amount", value=amount)
    return amount


def max_distributable(
    current_tokens: int,
    is_full_settlement: bool,
    *,
    cap: Decimal | float | None = None,
) -> int:
    """Most a single acceptance may take from a wish holding ``current_tokens``."""
    if is_full_settlement:
        return current_tokens
    return floor_fraction(current_tokens, _resolve_cap(cap))


def validate_token_distribution(
    amount: Any,
    available: int,
    is_full_settlement: bool,
    *,
    cap: Decimal | float | None = None,
) -> int:
    """Check a payout against the wish's balance and the partial cap.

    Returns:
        The validated amount.

    Raises:
        ValidationException: negative, fractional, over balance, or over cap.
    """
    validate_amount(amount)
    if amount > available:
        raise ValidationException(
            f"Insufficient tokens available: requested {amount}, available {available}",
            field="amount",
            value=amount,
        )
    if not is_full_settlement:
        limit = max_distributable(available, False, cap=cap)
        if amount > limit:
            pct = int(_resolve_cap(cap) * 100)
            raise ValidationException(
                f"Cannot distribute more than {pct}% ({limit} tokens) when keeping wish open",
                field="amount",
                value=amount,
            )
    return amount


def equal_split_amount(
    available: int,
    accepted_proposals_count: int,
    *,
    cap: Decimal | float | None = None,
) -> int:
    """Per-proposal payout when splitting the capped balance evenly.

    ``accepted_proposals_count`` is the number already accepted; the
    proposal being processed now is counted on top of it.
    """
    if accepted_proposals_count < 0:
        raise ValidationException(
            "Accepted proposal count cannot be negative",
            field="accepted_proposals_count",
            value=accepted_proposals_count,
        )
    return max_distributable(available, False, cap=cap) // (accepted_proposals_count + 1)
