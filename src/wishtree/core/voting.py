"""Community voting sessions.

A node in ``voting`` resolves to ``approved_by_vote`` once its tally meets
the session's threshold:

    total_votes >= required_votes  AND  approve% >= approval_percentage

Ties and low turnout leave the node in ``voting``. Nothing in this package
runs a clock: once ``voting_ends_at`` has passed, an external scheduler
calls ``WishService.finalize_expired_votes`` (``wishtree votes finalize``),
which resolves passing sessions and rejects the rest.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum

from .config import get_config
from .exceptions import ValidationException
from .models import Node, NodeStatus, VoteTally, VotingConfig


class VoteOutcome(StrEnum):
    PASSING = "passing"
    FAILING = "failing"
    PENDING = "pending"  # turnout below required_votes


def build_voting_config(
    required_votes: int | None = None,
    approval_percentage: float | None = None,
    voting_duration_hours: int | None = None,
) -> VotingConfig:
    """Build a validated VotingConfig, filling gaps from settings."""
    config = get_config()
    required_votes = config.default_required_votes if required_votes is None else required_votes
    approval_percentage = config.default_approval_percentage if approval_percentage is None else approval_percentage
    voting_duration_hours = config.default_voting_duration_hours if voting_duration_hours is None else voting_duration_hours

    if isinstance(required_votes, bool) or not isinstance(required_votes, int) or required_votes <= 0:
        raise ValidationException("required_votes must be a positive integer", field="required_votes", value=required_votes)
    if not 0 < approval_percentage <= 100:
        raise ValidationException(
            "approval_percentage must be in (0, 100]",
            field="approval_percentage",
            value=approval_percentage,
        )
    if isinstance(voting_duration_hours, bool) or not isinstance(voting_duration_hours, int) or voting_duration_hours <= 0:
        raise ValidationException(
            "voting_duration_hours must be a positive integer",
            field="voting_duration_hours",
            value=voting_duration_hours,
        )

    return VotingConfig(
        required_votes=required_votes,
        approval_percentage=float(approval_percentage),
        voting_duration_hours=voting_duration_hours,
    )


def evaluate(tally: VoteTally, config: VotingConfig) -> VoteOutcome:
    """Classify a tally against its session config."""
    if tally.total_votes < config.required_votes:
        return VoteOutcome.PENDING
    # Integer-safe form of approve/total >= pct/100
    if tally.approve_votes * 100 >= config.approval_percentage * tally.total_votes:
        return VoteOutcome.PASSING
    return VoteOutcome.FAILING


def is_passing(tally: VoteTally, config: VotingConfig) -> bool:
    return evaluate(tally, config) == VoteOutcome.PASSING


def voting_deadline(now: datetime, config: VotingConfig) -> datetime:
    return now + timedelta(hours=config.voting_duration_hours)


def is_voting_expired(node: Node, now: datetime) -> bool:
    """True when the node is in voting and its deadline has passed."""
    if node.status != NodeStatus.VOTING or node.voting_ends_at is None:
        return False
    return now >= node.voting_ends_at


def approval_reason(tally: VoteTally) -> str:
    return f"Approved by vote: {tally.approval_percentage:.2f}% approval ({tally.approve_votes}/{tally.total_votes} votes)"


def rejection_reason(tally: VoteTally, config: VotingConfig) -> str:
    return (
        f"Rejected by vote: {tally.approval_percentage:.2f}% approval "
        f"({tally.approve_votes}/{tally.total_votes} votes), "
        f"required {config.approval_percentage:g}% with {config.required_votes} votes"
    )
