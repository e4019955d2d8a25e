# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Data models for wishes, proposals, votes and token movements.

A wish and a proposal are the same entity (``Node``) discriminated by
``node_type``. Nodes form a forest through ``parent_id``; the store is the
single source of truth for the tree, so nodes never hold references to
other node objects, only ids.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from .exceptions import ClosureAlreadyRecorded


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a UUID string for new records."""
    return str(uuid4())


# ============================================================================
# Enums
# ============================================================================


class NodeType(StrEnum):
    WISH = "wish"
    PROPOSAL = "proposal"


class NodeStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    VOTING = "voting"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RETRACTED = "retracted"
    CANCELLED = "cancelled"
    APPROVED_BY_VOTE = "approved_by_vote"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[NodeStatus] = frozenset(
    {
        NodeStatus.ACCEPTED,
        NodeStatus.REJECTED,
        NodeStatus.RETRACTED,
        NodeStatus.CANCELLED,
        NodeStatus.APPROVED_BY_VOTE,
    }
)


class SettlementType(StrEnum):
    """Advisory intent declared by a proposal's author."""

    FULL_SETTLEMENT = "full_settlement"
    PARTIAL_CONTRIBUTION = "partial_contribution"


class ActorRole(StrEnum):
    """Role of the actor relative to the node being acted on.

    Precomputed by the identity layer; the core never resolves identity.
    """

    CREATOR = "creator"
    PARENT_CREATOR = "parent_creator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    MEMBER = "member"  # authenticated, no relationship to the node

    @property
    def is_admin(self) -> bool:
        return self in (ActorRole.ADMIN, ActorRole.SUPER_ADMIN)


class Action(StrEnum):
    PUBLISH = "publish"
    ACCEPT = "accept"
    REJECT = "reject"
    ENABLE_VOTING = "enable_voting"
    VOTE_RESOLVE = "vote_resolve"
    VOTE_EXPIRE = "vote_expire"
    RETRACT = "retract"
    ADMIN_CANCEL = "admin_cancel"
    ADMIN_DELETE = "admin_delete"


class VoteType(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"


class LedgerKind(StrEnum):
    """Why tokens moved."""

    SUPPORT = "support"  # supporter sent tokens to a node
    SUPPORT_SHARE = "support_share"  # ladder share of a support event
    ACCEPTANCE = "acceptance"  # parent wish paid an accepted proposal
    ACCEPTANCE_SHARE = "acceptance_share"  # ladder share of an acceptance payout
    DONATION_SHARE = "donation_share"  # ladder share of a tracked donation
    GRANT = "grant"  # administrator grant
    INITIAL = "initial"  # opening balance of a user account


# ============================================================================
# Actors
# ============================================================================


@dataclass(frozen=True)
class Actor:
    """Who is performing an action, with their role relative to the node."""

    actor_id: str
    role: ActorRole = ActorRole.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role.is_admin


# ============================================================================
# Nodes
# ============================================================================


@dataclass
class Node:
    """A wish or a proposal."""

    id: str
    creator_id: str
    title: str
    node_type: NodeType = NodeType.WISH
    status: NodeStatus = NodeStatus.DRAFT
    parent_id: str | None = None
    description: str | None = None
    settlement_type: SettlementType | None = None
    token_count: int = 0
    tokens_distributed: int = 0
    tokens_received_on_acceptance: int = 0
    expires_at: datetime | None = None
    voting_enabled: bool = False
    voting_ends_at: datetime | None = None
    closed_at: datetime | None = None
    closed_by: str | None = None
    closure_reason: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_proposal(self) -> bool:
        return self.node_type == NodeType.PROPOSAL

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or utcnow())

    def close(
        self,
        status: NodeStatus,
        closed_by: str,
        reason: str | None,
        now: datetime | None = None,
    ) -> Node:
        """Return a copy moved into a terminal status with closure fields set.

        Raises:
            ClosureAlreadyRecorded: If closure fields were already written.
        """
        if self.closed_at is not None or self.is_terminal:
            raise ClosureAlreadyRecorded(self.id, self.status.value)
        now = now or utcnow()
        return replace(
            self,
            status=status,
            closed_at=now,
            closed_by=closed_by,
            closure_reason=reason,
            updated_at=now,
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Node:
        settlement = row.get("settlement_type")
        return cls(
            id=str(row["id"]),
            creator_id=str(row["creator_id"]),
            title=row["title"],
            node_type=NodeType(row.get("node_type", "wish")),
            status=NodeStatus(row.get("status", "draft")),
            parent_id=str(row["parent_id"]) if row.get("parent_id") else None,
            description=row.get("description"),
            settlement_type=SettlementType(settlement) if settlement else None,
            token_count=int(row.get("token_count") or 0),
            tokens_distributed=int(row.get("tokens_distributed") or 0),
            tokens_received_on_acceptance=int(row.get("tokens_received_on_acceptance") or 0),
            expires_at=row.get("expires_at"),
            voting_enabled=bool(row.get("voting_enabled", False)),
            voting_ends_at=row.get("voting_ends_at"),
            closed_at=row.get("closed_at"),
            closed_by=str(row["closed_by"]) if row.get("closed_by") else None,
            closure_reason=row.get("closure_reason"),
            created_at=row.get("created_at") or utcnow(),
            updated_at=row.get("updated_at") or utcnow(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "creator_id": self.creator_id,
            "title": self.title,
            "node_type": self.node_type.value,
            "status": self.status.value,
            "parent_id": self.parent_id,
            "description": self.description,
            "settlement_type": self.settlement_type.value if self.settlement_type else None,
            "token_count": self.token_count,
            "tokens_distributed": self.tokens_distributed,
            "tokens_received_on_acceptance": self.tokens_received_on_acceptance,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "voting_enabled": self.voting_enabled,
            "voting_ends_at": self.voting_ends_at.isoformat() if self.voting_ends_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "closed_by": self.closed_by,
            "closure_reason": self.closure_reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ============================================================================
# Voting
# ============================================================================


@dataclass(frozen=True)
class VotingConfig:
    """Conditions a voting session must meet to pass."""

    required_votes: int = 10
    approval_percentage: float = 60.0
    voting_duration_hours: int = 168

    def to_dict(self) -> dict[str, Any]:
        return {
            "required_votes": self.required_votes,
            "approval_percentage": self.approval_percentage,
            "voting_duration_hours": self.voting_duration_hours,
        }


@dataclass(frozen=True)
class VoteTally:
    approve_votes: int = 0
    reject_votes: int = 0

    @property
    def total_votes(self) -> int:
        return self.approve_votes + self.reject_votes

    @property
    def approval_percentage(self) -> float:
        """Percent of votes that approve (0 when nobody voted)."""
        if self.total_votes == 0:
            return 0.0
        return self.approve_votes * 100 / self.total_votes


# ============================================================================
# Token movements and audit records
# ============================================================================


@dataclass(frozen=True)
class DistributionShare:
    """One line of a distribution: ``amount`` paid to ``recipient_id`` at ``level``."""

    event_id: str
    origin_node_id: str
    recipient_node_id: str
    level: int
    percentage: int
    amount: int
    kind: LedgerKind = LedgerKind.SUPPORT_SHARE
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "origin_node_id": self.origin_node_id,
            "recipient_node_id": self.recipient_node_id,
            "level": self.level,
            "percentage": self.percentage,
            "amount": self.amount,
            "kind": self.kind.value,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class LedgerEntry:
    """A credit or debit against a token account (node or user)."""

    id: str
    holder_id: str
    amount: int
    direction: str  # "credit" or "debit"
    kind: LedgerKind
    source_id: str | None = None
    message: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StatusChange:
    """Audit row written for every status change."""

    node_id: str
    old_status: NodeStatus | None
    new_status: NodeStatus
    changed_by: str
    reason: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Donation:
    """Money support tracked in minor currency units; capture is disabled."""

    id: str
    node_id: str
    donor_id: str
    amount_minor: int
    message: str | None = None
    status: str = "tracked"
    created_at: datetime = field(default_factory=utcnow)
