# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Status state machine for wishes and proposals.

Legal moves live in one table, ``TRANSITIONS``, keyed by
``(status, action)``. ``transition`` looks the pair up, runs the guard for
the action, and returns an updated copy of the node; the input node is
never mutated, so a caller that fails later in the same unit of work has
nothing to undo.

Guards that need more than the node itself (the parent, the number of open
descendants, the vote tally) read them from a ``TransitionContext`` the
caller loads from the store.

``admin_delete`` is deliberately absent from the table: it is a hard
delete handled by the service layer, not a status change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime

from .exceptions import (
    AlreadyTerminal,
    InvalidTransition,
    NotFoundError,
    PreconditionFailed,
    Unauthorized,
)
from .models import (
    Action,
    Actor,
    ActorRole,
    Node,
    NodeStatus,
    VoteTally,
    VotingConfig,
    utcnow,
)
from .voting import (
    VoteOutcome,
    approval_reason,
    evaluate,
    rejection_reason,
    voting_deadline,
)

logger = logging.getLogger(__name__)

S = NodeStatus
A = Action

TRANSITIONS: dict[tuple[NodeStatus, Action], NodeStatus] = {
    (S.DRAFT, A.PUBLISH): S.ACTIVE,
    (S.ACTIVE, A.ACCEPT): S.ACCEPTED,
    (S.ACTIVE, A.REJECT): S.REJECTED,
    (S.VOTING, A.REJECT): S.REJECTED,
    (S.ACTIVE, A.ENABLE_VOTING): S.VOTING,
    (S.VOTING, A.VOTE_RESOLVE): S.APPROVED_BY_VOTE,
    (S.VOTING, A.VOTE_EXPIRE): S.REJECTED,
    (S.ACTIVE, A.RETRACT): S.RETRACTED,
    (S.DRAFT, A.ADMIN_CANCEL): S.CANCELLED,
    (S.ACTIVE, A.ADMIN_CANCEL): S.CANCELLED,
    (S.VOTING, A.ADMIN_CANCEL): S.CANCELLED,
}

DEFAULT_REASONS: dict[Action, str] = {
    A.ACCEPT: "Accepted by creator",
    A.RETRACT: "Retracted by creator",
}

ADMIN_ROLES = (ActorRole.ADMIN, ActorRole.SUPER_ADMIN)


@dataclass(frozen=True)
class TransitionContext:
    """Facts about the node's surroundings that guards depend on."""

    now: datetime
    parent: Node | None = None
    open_descendants: int = 0
    tally: VoteTally | None = None
    voting_config: VotingConfig | None = None


def target_status(status: NodeStatus, action: Action) -> NodeStatus | None:
    """Status the pair leads to, or None when the pair is illegal."""
    return TRANSITIONS.get((status, action))


def allowed_actions(status: NodeStatus) -> list[Action]:
    """Actions with a table entry for ``status`` (guards not evaluated)."""
    return [action for (s, action) in TRANSITIONS if s == status]


def responder_roles(node: Node) -> tuple[ActorRole, ...]:
    """Who answers a node: the parent's creator for proposals, else its own creator."""
    if node.is_proposal:
        return (ActorRole.PARENT_CREATOR,)
    return (ActorRole.CREATOR,)


def require_role(action: Action, actor: Actor, roles: tuple[ActorRole, ...]) -> None:
    if actor.role not in roles:
        raise Unauthorized(action.value, actor.actor_id, [r.value for r in roles])


def require_reason(action: Action, reason: str | None) -> str:
    if reason is None or not reason.strip():
        raise PreconditionFailed(f"A reason is required to {action.value}", precondition="reason_required")
    return reason.strip()


# ============================================================================
# Guards
# ============================================================================
#
# Each guard validates the actor and preconditions and returns the closure
# reason to record (ignored for non-terminal targets).


def _guard_publish(node: Node, actor: Actor, reason: str | None, ctx: TransitionContext) -> str | None:
    require_role(A.PUBLISH, actor, (ActorRole.CREATOR,))
    return None


def _guard_accept(node: Node, actor: Actor, reason: str | None, ctx: TransitionContext) -> str | None:
    require_role(A.ACCEPT, actor, responder_roles(node))
    return reason or DEFAULT_REASONS[A.ACCEPT]


def _guard_reject(node: Node, actor: Actor, reason: str | None, ctx: TransitionContext) -> str | None:
    require_role(A.REJECT, actor, responder_roles(node) + ADMIN_ROLES)
    return require_reason(A.REJECT, reason)


def _guard_enable_voting(node: Node, actor: Actor, reason: str | None, ctx: TransitionContext) -> str | None:
    require_role(A.ENABLE_VOTING, actor, responder_roles(node))
    if ctx.voting_config is None:
        raise PreconditionFailed("Voting configuration is required", precondition="voting_config")
    return None


def _guard_vote_resolve(node: Node, actor: Actor, reason: str | None, ctx: TransitionContext) -> str | None:
    tally, config = _require_tally(ctx)
    if evaluate(tally, config) != VoteOutcome.PASSING:
        raise PreconditionFailed(
            f"Vote threshold not met: {tally.approve_votes}/{tally.total_votes} approve, "
            f"need {config.required_votes} votes at {config.approval_percentage:g}%",
            precondition="vote_threshold",
        )
    return reason or approval_reason(tally)


def _guard_vote_expire(node: Node, actor: Actor, reason: str | None, ctx: TransitionContext) -> str | None:
    tally, config = _require_tally(ctx)
    if node.voting_ends_at is None or ctx.now < node.voting_ends_at:
        raise PreconditionFailed("Voting period has not ended yet", precondition="voting_deadline")
    if evaluate(tally, config) == VoteOutcome.PASSING:
        raise PreconditionFailed("Vote passed; resolve it instead of expiring it", precondition="vote_threshold")
    return reason or rejection_reason(tally, config)


def _guard_retract(node: Node, actor: Actor, reason: str | None, ctx: TransitionContext) -> str | None:
    require_role(A.RETRACT, actor, (ActorRole.CREATOR,))
    if ctx.open_descendants > 0:
        raise PreconditionFailed(
            "Cannot retract: this wish has active proposals or sub-wishes. Resolve or retract them first.",
            precondition="open_descendants",
        )
    if node.is_proposal:
        if ctx.parent is None:
            raise NotFoundError("Node", node.parent_id or "<none>")
        if ctx.parent.is_terminal:
            raise PreconditionFailed(
                f"Cannot retract: parent wish is already {ctx.parent.status.value}",
                precondition="parent_open",
            )
    return reason or DEFAULT_REASONS[A.RETRACT]


def _guard_admin_cancel(node: Node, actor: Actor, reason: str | None, ctx: TransitionContext) -> str | None:
    require_role(A.ADMIN_CANCEL, actor, ADMIN_ROLES)
    return require_reason(A.ADMIN_CANCEL, reason)


def _require_tally(ctx: TransitionContext) -> tuple[VoteTally, VotingConfig]:
    if ctx.tally is None or ctx.voting_config is None:
        raise PreconditionFailed("Vote tally and voting configuration are required", precondition="voting_config")
    return ctx.tally, ctx.voting_config


Guard = Callable[[Node, Actor, str | None, TransitionContext], str | None]

GUARDS: dict[Action, Guard] = {
    A.PUBLISH: _guard_publish,
    A.ACCEPT: _guard_accept,
    A.REJECT: _guard_reject,
    A.ENABLE_VOTING: _guard_enable_voting,
    A.VOTE_RESOLVE: _guard_vote_resolve,
    A.VOTE_EXPIRE: _guard_vote_expire,
    A.RETRACT: _guard_retract,
    A.ADMIN_CANCEL: _guard_admin_cancel,
}


# ============================================================================
# Entry point
# ============================================================================


def transition(
    node: Node,
    action: Action,
    actor: Actor,
    reason: str | None = None,
    context: TransitionContext | None = None,
) -> Node:
    """Apply ``action`` to ``node`` and return the updated copy.

    Raises:
        AlreadyTerminal: The node is already closed.
        InvalidTransition: ``(node.status, action)`` is not in the table.
        Unauthorized: The actor's role does not permit the action.
        PreconditionFailed: A guard did not hold.
    """
    ctx = context or TransitionContext(now=utcnow())

    if node.is_terminal:
        raise AlreadyTerminal(node.id, node.status.value)

    target = target_status(node.status, action)
    if target is None:
        raise InvalidTransition(node.status.value, action.value, node.id)

    closure_reason = GUARDS[action](node, actor, reason, ctx)

    if target.is_terminal:
        updated = node.close(target, actor.actor_id, closure_reason, now=ctx.now)
    else:
        updated = replace(node, status=target, updated_at=ctx.now)

    if action == A.ENABLE_VOTING:
        assert ctx.voting_config is not None
        updated = replace(
            updated,
            voting_enabled=True,
            voting_ends_at=voting_deadline(ctx.now, ctx.voting_config),
        )

    logger.debug(
        "Node %s: %s --%s--> %s by %s",
        node.id,
        node.status.value,
        action.value,
        updated.status.value,
        actor.actor_id,
    )
    return updated
