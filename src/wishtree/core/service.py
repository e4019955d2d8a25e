# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""WishService: one method per user intent.

Every method:
- runs inside its own correlation context, so all log lines of the intent
  share an id;
- logs the intent and its outcome through ``intent_logger``;
- performs all reads and writes in a single ``store.unit_of_work()``, so a
  failure anywhere leaves nothing applied.

Authorization relies on ``Actor.role`` as supplied by the identity layer.

Example:
    service = WishService(InMemoryTreeStore())
    wish = service.create_node("alice", "Community garden")
    proposal = service.create_node("bob", "Use the old lot", node_type=NodeType.PROPOSAL, parent_id=wish.id)
    service.accept(proposal.id, Actor("alice", ActorRole.PARENT_CREATOR), close_parent=True)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, TypeVar

from .cascade import CascadeResult, close_with_children, count_open_descendants, iter_descendants
from .config import get_config
from .distribution import (
    DistributionPlan,
    distribute,
    equal_split_amount,
    max_distributable,
    validate_amount,
    validate_token_distribution,
)
from .exceptions import (
    AlreadyTerminal,
    InvalidTransition,
    NotFoundError,
    PreconditionFailed,
    Unauthorized,
    ValidationException,
)
from .logging import correlation_context, intent_logger
from .models import (
    Action,
    Actor,
    ActorRole,
    Donation,
    LedgerKind,
    Node,
    NodeStatus,
    NodeType,
    SettlementType,
    StatusChange,
    VoteTally,
    VoteType,
    new_id,
    utcnow,
)
from .settlement import SettlementDecision, resolve_settlement
from .store import StoreSession, TreeStore
from .transitions import TransitionContext, transition
from .voting import build_voting_config, is_passing, is_voting_expired

logger = logging.getLogger(__name__)

TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 200

# Actor recorded as closer when the vote itself resolves a node
SYSTEM_ACTOR = Actor("system", ActorRole.MEMBER)

E = TypeVar("E", NodeType, SettlementType)


# ============================================================================
# Results
# ============================================================================


@dataclass
class AcceptanceResult:
    proposal: Node
    parent: Node | None = None
    settlement: SettlementDecision | None = None
    distribution: DistributionPlan | None = None

    @property
    def parent_closed(self) -> bool:
        return self.parent is not None and self.parent.is_terminal

    @property
    def shortfall(self) -> int:
        return self.distribution.shortfall if self.distribution else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "proposal": self.proposal.to_dict(),
            "parent": self.parent.to_dict() if self.parent else None,
            "parent_closed": self.parent_closed,
            "settlement": self.settlement.to_dict() if self.settlement else None,
            "distribution": self.distribution.to_dict() if self.distribution else None,
        }


@dataclass
class SupportResult:
    node: Node
    distribution: DistributionPlan
    supporter_balance: int


@dataclass
class VoteResult:
    node: Node
    tally: VoteTally
    resolved: bool = False


@dataclass
class DistributionSummary:
    """Token position of a wish, as shown before accepting a proposal."""

    wish_id: str
    current_tokens: int
    tokens_distributed: int
    max_distributable_per_proposal: int
    accepted_proposals_count: int
    next_equal_split: int
    proposal_payouts: dict[str, int] = field(default_factory=dict)

    @property
    def original_tokens(self) -> int:
        return self.current_tokens + self.tokens_distributed

    def to_dict(self) -> dict[str, Any]:
        return {
            "wish_id": self.wish_id,
            "current_tokens": self.current_tokens,
            "tokens_distributed": self.tokens_distributed,
            "original_tokens": self.original_tokens,
            "max_distributable_per_proposal": self.max_distributable_per_proposal,
            "accepted_proposals_count": self.accepted_proposals_count,
            "next_equal_split": self.next_equal_split,
            "proposal_payouts": dict(self.proposal_payouts),
        }


# ============================================================================
# Service
# ============================================================================


class WishService:
    """Applies user intents to a :class:`TreeStore`.

    Args:
        store: Storage backend.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(self, store: TreeStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _intent(self, action: str, **arguments: Any) -> Generator[str, None, None]:
        with correlation_context() as cid, intent_logger.track(action, arguments):
            yield cid

    @staticmethod
    def _load(session: StoreSession, node_id: str, *, for_update: bool = False) -> Node:
        node = session.get_for_update(node_id) if for_update else session.get(node_id)
        if node is None:
            raise NotFoundError("Node", node_id)
        return node

    def _apply(
        self,
        session: StoreSession,
        node: Node,
        action: Action,
        actor: Actor,
        reason: str | None = None,
        context: TransitionContext | None = None,
    ) -> Node:
        """Run the state machine, persist the result, and write the history row."""
        ctx = context or TransitionContext(now=self.clock())
        updated = transition(node, action, actor, reason, ctx)
        session.save(updated)
        self._record_change(session, node.status, updated, actor)
        return updated

    @staticmethod
    def _record_change(session: StoreSession, old_status: NodeStatus | None, node: Node, actor: Actor) -> None:
        session.record_status_change(
            StatusChange(
                node_id=node.id,
                old_status=old_status,
                new_status=node.status,
                changed_by=actor.actor_id,
                reason=node.closure_reason,
                created_at=node.updated_at,
            )
        )

    def _pay_shares(self, session: StoreSession, plan: DistributionPlan, message: str) -> None:
        """Credit each share to the creator of the recipient node and log it in the ledger."""
        for share in plan.shares:
            recipient = self._load(session, share.recipient_node_id)
            session.credit(
                recipient.creator_id,
                share.amount,
                plan.event_id,
                share.kind,
                f"Level {share.level} {message}",
            )
        session.record_distribution(plan.shares)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_node(
        self,
        creator_id: str,
        title: str,
        *,
        node_type: NodeType = NodeType.WISH,
        parent_id: str | None = None,
        publish: bool = True,
        settlement_type: SettlementType | None = None,
        expires_at: datetime | None = None,
        description: str | None = None,
    ) -> Node:
        """Create a wish, sub-wish, or proposal.

        Raises:
            ValidationException: Bad title, or a proposal without a parent.
            NotFoundError: ``parent_id`` does not exist.
            AlreadyTerminal: The parent is closed.
            PreconditionFailed: The parent has expired or is a proposal.
        """
        with self._intent("create_node", creator_id=creator_id, title=title, node_type=node_type, parent_id=parent_id):
            node_type = _coerce(NodeType, node_type, "node_type")
            if settlement_type is not None:
                settlement_type = _coerce(SettlementType, settlement_type, "settlement_type")
            title = (title or "").strip()
            if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
                raise ValidationException(
                    f"Title must be between {TITLE_MIN_LENGTH} and {TITLE_MAX_LENGTH} characters",
                    field="title",
                    value=title,
                )
            if node_type == NodeType.PROPOSAL and parent_id is None:
                raise ValidationException("A proposal must reference a parent wish", field="parent_id")
            if node_type == NodeType.WISH and settlement_type is not None:
                raise ValidationException("Only proposals declare a settlement type", field="settlement_type")

            now = self.clock()
            with self.store.unit_of_work() as s:
                if parent_id is not None:
                    parent = self._load(s, parent_id, for_update=True)
                    if parent.is_terminal:
                        raise AlreadyTerminal(
                            parent.id,
                            parent.status.value,
                            message=f"Cannot add to a closed wish ({parent.status.value})",
                        )
                    if parent.is_expired(now):
                        raise PreconditionFailed("Parent wish has expired", precondition="parent_not_expired")
                    if parent.is_proposal:
                        raise PreconditionFailed("Proposals cannot have children", precondition="parent_is_wish")

                node = Node(
                    id=new_id(),
                    creator_id=creator_id,
                    title=title,
                    node_type=node_type,
                    status=NodeStatus.ACTIVE if publish else NodeStatus.DRAFT,
                    parent_id=parent_id,
                    description=description,
                    settlement_type=settlement_type,
                    expires_at=expires_at,
                    created_at=now,
                    updated_at=now,
                )
                s.insert(node)
                self._record_change(s, None, node, Actor(creator_id, ActorRole.CREATOR))
            return node

    # ------------------------------------------------------------------
    # State machine intents
    # ------------------------------------------------------------------

    def publish(self, node_id: str, actor: Actor) -> Node:
        with self._intent("publish", node_id=node_id, actor_id=actor.actor_id):
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                return self._apply(s, node, Action.PUBLISH, actor)

    def reject(self, node_id: str, actor: Actor, reason: str) -> Node:
        with self._intent("reject", node_id=node_id, actor_id=actor.actor_id, reason=reason):
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                return self._apply(s, node, Action.REJECT, actor, reason)

    def retract(self, node_id: str, actor: Actor, reason: str | None = None) -> Node:
        with self._intent("retract", node_id=node_id, actor_id=actor.actor_id, reason=reason):
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                ctx = TransitionContext(
                    now=self.clock(),
                    parent=s.get(node.parent_id) if node.parent_id else None,
                    open_descendants=count_open_descendants(s, node.id),
                )
                return self._apply(s, node, Action.RETRACT, actor, reason, ctx)

    def admin_cancel(self, node_id: str, actor: Actor, reason: str) -> Node:
        with self._intent("admin_cancel", node_id=node_id, actor_id=actor.actor_id, reason=reason):
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                return self._apply(s, node, Action.ADMIN_CANCEL, actor, reason)

    def admin_delete(self, node_id: str, actor: Actor) -> None:
        """Hard-delete a node; not a status change.

        Raises:
            Unauthorized: Actor is not an administrator.
            AlreadyTerminal: The node is closed.
            PreconditionFailed: The node still has children.
        """
        with self._intent("admin_delete", node_id=node_id, actor_id=actor.actor_id):
            if not actor.is_admin:
                raise Unauthorized(Action.ADMIN_DELETE.value, actor.actor_id, ["admin", "super_admin"])
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                if node.is_terminal:
                    raise AlreadyTerminal(node.id, node.status.value)
                children = s.get_children(node.id)
                if children:
                    raise PreconditionFailed(
                        f"Cannot delete: node has {len(children)} child node(s)",
                        precondition="no_children",
                    )
                s.delete(node.id)
                logger.info("Node %s deleted by %s", node.id, actor.actor_id)

    def accept(
        self,
        node_id: str,
        actor: Actor,
        *,
        reason: str | None = None,
        close_parent: bool = False,
        token_amount: int = 0,
        equal_split: bool = False,
    ) -> AcceptanceResult:
        """Accept a wish or a proposal.

        For a proposal, ``token_amount`` tokens move from the parent wish to
        the proposal and are split up the proposal's chain. ``close_parent``
        decides whether the parent wish closes as solved; it also lifts the
        partial cap. With ``equal_split`` the amount is computed from the
        number of proposals already accepted instead.

        Raises:
            ValidationException: Amount is negative, fractional, over the
                parent's balance, or over the partial cap.
            AlreadyTerminal: The node or its parent is closed.
        """
        with self._intent(
            "accept",
            node_id=node_id,
            actor_id=actor.actor_id,
            close_parent=close_parent,
            token_amount=token_amount,
            equal_split=equal_split,
        ):
            if equal_split and token_amount:
                raise ValidationException(
                    "Pass either token_amount or equal_split, not both",
                    field="token_amount",
                    value=token_amount,
                )
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                now = self.clock()

                if not node.is_proposal:
                    if token_amount:
                        raise ValidationException(
                            "Tokens can only be paid to an accepted proposal",
                            field="token_amount",
                            value=token_amount,
                        )
                    return AcceptanceResult(proposal=self._apply(s, node, Action.ACCEPT, actor, reason))

                parent = self._load(s, node.parent_id, for_update=True)  # type: ignore[arg-type]
                if parent.is_terminal:
                    raise AlreadyTerminal(
                        parent.id,
                        parent.status.value,
                        message=f"Parent wish is already closed ({parent.status.value})",
                    )

                accepted = transition(node, Action.ACCEPT, actor, reason, TransitionContext(now=now))
                decision = resolve_settlement(accepted, close_parent)

                if equal_split:
                    token_amount = equal_split_amount(parent.token_count, s.count_accepted_proposals(parent.id))
                amount = validate_token_distribution(token_amount, parent.token_count, decision.is_full_settlement)

                plan = None
                if amount > 0:
                    parent = replace(
                        parent,
                        token_count=parent.token_count - amount,
                        tokens_distributed=parent.tokens_distributed + amount,
                        updated_at=now,
                    )
                    accepted = replace(accepted, tokens_received_on_acceptance=amount)
                    plan = distribute(
                        accepted.id,
                        amount,
                        s.get_ancestor_chain(accepted.id),
                        kind=LedgerKind.ACCEPTANCE_SHARE,
                    )

                s.save(accepted)
                self._record_change(s, node.status, accepted, actor)

                if decision.close_parent:
                    closed_parent = parent.close(NodeStatus.ACCEPTED, actor.actor_id, decision.parent_reason, now=now)
                    s.save(closed_parent)
                    self._record_change(s, parent.status, closed_parent, actor)
                    parent = closed_parent
                else:
                    s.save(parent)

                if plan is not None:
                    self._pay_shares(s, plan, f"share of acceptance of {accepted.id}")

                if decision.honours_declaration is False:
                    logger.info(
                        "Proposal %s declared %s but was accepted with close_parent=%s",
                        accepted.id,
                        decision.declared,
                        close_parent,
                    )

                return AcceptanceResult(proposal=accepted, parent=parent, settlement=decision, distribution=plan)

    def close_with_children(
        self,
        node_id: str,
        actor: Actor,
        reason: str,
        *,
        cascade: bool = False,
        status: NodeStatus = NodeStatus.ACCEPTED,
    ) -> CascadeResult:
        with self._intent(
            "close_with_children",
            node_id=node_id,
            actor_id=actor.actor_id,
            reason=reason,
            cascade=cascade,
            status=status,
        ):
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                return close_with_children(s, node, actor, reason, cascade=cascade, status=status, now=self.clock())

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    def enable_voting(
        self,
        node_id: str,
        actor: Actor,
        *,
        required_votes: int | None = None,
        approval_percentage: float | None = None,
        voting_duration_hours: int | None = None,
    ) -> Node:
        with self._intent("enable_voting", node_id=node_id, actor_id=actor.actor_id):
            config = build_voting_config(required_votes, approval_percentage, voting_duration_hours)
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                updated = self._apply(
                    s,
                    node,
                    Action.ENABLE_VOTING,
                    actor,
                    context=TransitionContext(now=self.clock(), voting_config=config),
                )
                s.save_voting_config(node.id, config)
                return updated

    def cast_vote(self, node_id: str, voter_id: str, vote_type: VoteType) -> VoteResult:
        """Record a vote; resolve the node at once if the threshold is met.

        A voter's repeat vote replaces the earlier one.
        """
        with self._intent("cast_vote", node_id=node_id, voter_id=voter_id, vote_type=vote_type):
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                now = self.clock()
                if node.is_terminal:
                    raise AlreadyTerminal(node.id, node.status.value)
                if node.status != NodeStatus.VOTING:
                    raise InvalidTransition(node.status.value, "vote", node.id)
                if is_voting_expired(node, now):
                    raise PreconditionFailed("Voting period has ended", precondition="voting_open")

                s.upsert_vote(node.id, voter_id, vote_type)
                tally = s.get_tally(node.id)
                config = s.get_voting_config(node.id)
                if config is None:
                    raise NotFoundError("VotingConfig", node.id)

                if not is_passing(tally, config):
                    return VoteResult(node=node, tally=tally)

                ctx = TransitionContext(now=now, tally=tally, voting_config=config)
                resolved = self._apply(s, node, Action.VOTE_RESOLVE, SYSTEM_ACTOR, context=ctx)
                return VoteResult(node=resolved, tally=tally, resolved=True)

    def finalize_voting(self, node_id: str) -> Node:
        """Close a voting session whose deadline has passed.

        Passing sessions become ``approved_by_vote``; the rest ``rejected``
        with a reason quoting the tally.
        """
        with self._intent("finalize_voting", node_id=node_id):
            with self.store.unit_of_work() as s:
                return self._finalize(s, self._load(s, node_id, for_update=True))

    def _finalize(self, session: StoreSession, node: Node) -> Node:
        config = session.get_voting_config(node.id)
        if config is None:
            raise NotFoundError("VotingConfig", node.id)
        tally = session.get_tally(node.id)
        now = self.clock()
        if node.status == NodeStatus.VOTING and (node.voting_ends_at is None or now < node.voting_ends_at):
            raise PreconditionFailed("Voting period has not ended yet", precondition="voting_deadline")
        action = Action.VOTE_RESOLVE if is_passing(tally, config) else Action.VOTE_EXPIRE
        ctx = TransitionContext(now=now, tally=tally, voting_config=config)
        return self._apply(session, node, action, SYSTEM_ACTOR, context=ctx)

    def finalize_expired_votes(self, *, dry_run: bool = False) -> list[Node]:
        """Finalize every session past its deadline, each in its own unit of work.

        A session another worker closed in the meantime is skipped.
        """
        with self._intent("finalize_expired_votes", dry_run=dry_run):
            with self.store.unit_of_work() as s:
                expired = [self._load(s, node_id) for node_id in s.list_expired_votings(self.clock())]
            if dry_run:
                return expired

            finalized: list[Node] = []
            for candidate in expired:
                try:
                    with self.store.unit_of_work() as s:
                        finalized.append(self._finalize(s, self._load(s, candidate.id, for_update=True)))
                except (AlreadyTerminal, InvalidTransition, NotFoundError) as e:
                    logger.warning("Skipping voting session %s: %s", candidate.id, e.message)
            logger.info("Finalized %d of %d expired voting sessions", len(finalized), len(expired))
            return finalized

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def open_account(self, user_id: str) -> int:
        """Give a new user the initial token grant; no-op for existing accounts.

        Returns:
            The account balance.
        """
        with self._intent("open_account", user_id=user_id):
            with self.store.unit_of_work() as s:
                if not s.account_exists(user_id):
                    s.credit(user_id, get_config().initial_user_tokens, None, LedgerKind.INITIAL, "Initial tokens")
                return s.get_balance(user_id)

    def grant_tokens(self, holder_id: str, amount: int, actor: Actor, message: str | None = None) -> int:
        with self._intent("grant_tokens", holder_id=holder_id, amount=amount, actor_id=actor.actor_id):
            if not actor.is_admin:
                raise Unauthorized("grant_tokens", actor.actor_id, ["admin", "super_admin"])
            validate_amount(amount, allow_zero=False)
            with self.store.unit_of_work() as s:
                s.credit(holder_id, amount, actor.actor_id, LedgerKind.GRANT, message or "Admin grant")
                return s.get_balance(holder_id)

    def support(self, node_id: str, supporter_id: str, amount: int, message: str | None = None) -> SupportResult:
        """Send tokens from a user's account to a node.

        The node's ``token_count`` grows by ``amount``; ladder shares of the
        same amount are credited to the creators along the node's chain.

        Raises:
            ValidationException: Amount not a positive integer, or over the
                supporter's balance.
            NotFoundError: Unknown node or supporter account.
            AlreadyTerminal: The node is closed.
            PreconditionFailed: The node is a draft or has expired.
        """
        with self._intent("support", node_id=node_id, supporter_id=supporter_id, amount=amount, message=message):
            validate_amount(amount, allow_zero=False)
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                now = self.clock()
                self._check_supportable(node, now)
                if not s.account_exists(supporter_id):
                    raise NotFoundError("Token account", supporter_id)

                s.debit(supporter_id, amount, node.id, LedgerKind.SUPPORT, message or "Sent tokens to wish")
                node = replace(node, token_count=node.token_count + amount, updated_at=now)
                s.save(node)

                plan = distribute(node.id, amount, s.get_ancestor_chain(node.id), kind=LedgerKind.SUPPORT_SHARE)
                self._pay_shares(s, plan, "distribution from wish support")
                return SupportResult(node=node, distribution=plan, supporter_balance=s.get_balance(supporter_id))

    def track_donation(
        self,
        node_id: str,
        donor_id: str,
        amount_minor: int,
        message: str | None = None,
    ) -> tuple[Donation, DistributionPlan]:
        """Record money support in minor currency units.

        Payment capture is disabled: the donation and its ladder split are
        recorded for accounting only and no token balance changes.
        """
        with self._intent("track_donation", node_id=node_id, donor_id=donor_id, amount_minor=amount_minor):
            validate_amount(amount_minor, allow_zero=False)
            with self.store.unit_of_work() as s:
                node = self._load(s, node_id, for_update=True)
                self._check_supportable(node, self.clock())
                donation = Donation(
                    id=new_id(),
                    node_id=node.id,
                    donor_id=donor_id,
                    amount_minor=amount_minor,
                    message=message,
                    created_at=self.clock(),
                )
                s.record_donation(donation)
                plan = distribute(
                    node.id,
                    amount_minor,
                    s.get_ancestor_chain(node.id),
                    kind=LedgerKind.DONATION_SHARE,
                    event_id=donation.id,
                )
                s.record_distribution(plan.shares)
                return donation, plan

    @staticmethod
    def _check_supportable(node: Node, now: datetime) -> None:
        if node.is_terminal:
            raise AlreadyTerminal(node.id, node.status.value, message=f"Cannot support a closed wish ({node.status.value})")
        if node.status == NodeStatus.DRAFT:
            raise PreconditionFailed("Cannot support an unpublished wish", precondition="published")
        if node.is_expired(now):
            raise PreconditionFailed("Wish has expired", precondition="not_expired")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def distribution_summary(self, wish_id: str) -> DistributionSummary:
        with self.store.unit_of_work() as s:
            wish = self._load(s, wish_id)
            accepted = s.count_accepted_proposals(wish.id)
            payouts = {
                child.id: child.tokens_received_on_acceptance
                for child in s.get_children(wish.id)
                if child.is_proposal and child.status == NodeStatus.ACCEPTED
            }
        open_wish = not wish.is_terminal
        return DistributionSummary(
            wish_id=wish.id,
            current_tokens=wish.token_count,
            tokens_distributed=wish.tokens_distributed,
            max_distributable_per_proposal=max_distributable(wish.token_count, False) if open_wish else 0,
            accepted_proposals_count=accepted,
            next_equal_split=equal_split_amount(wish.token_count, accepted) if open_wish else 0,
            proposal_payouts=payouts,
        )

    def hierarchy(self, node_id: str) -> list[Node]:
        """Nodes from the root down to ``node_id``."""
        with self.store.unit_of_work() as s:
            node = self._load(s, node_id)
            ancestors = [self._load(s, ancestor_id) for ancestor_id in s.get_ancestor_chain(node_id)]
        return list(reversed(ancestors)) + [node]

    def descendants(self, node_id: str) -> list[Node]:
        with self.store.unit_of_work() as s:
            self._load(s, node_id)
            return list(iter_descendants(s, node_id))


def _coerce(enum_type: type[E], value: Any, field_name: str) -> E:
    try:
        return enum_type(value)
    except ValueError as e:
        raise ValidationException(f"Invalid {field_name}: {value!r}", field=field_name, value=value) from e
