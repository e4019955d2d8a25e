"""Tests for wishtree.core.transitions - the status state machine."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from wishtree.core.exceptions import (
    AlreadyTerminal,
    InvalidTransition,
    NotFoundError,
    PreconditionFailed,
    Unauthorized,
)
from wishtree.core.models import (
    Action,
    Actor,
    ActorRole,
    NodeStatus,
    NodeType,
    VoteTally,
    VotingConfig,
)
from wishtree.core.transitions import (
    TRANSITIONS,
    TransitionContext,
    allowed_actions,
    target_status,
    transition,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
CTX = TransitionContext(now=NOW)

CREATOR = Actor("alice", ActorRole.CREATOR)
PARENT_CREATOR = Actor("alice", ActorRole.PARENT_CREATOR)
ADMIN = Actor("root", ActorRole.ADMIN)
MEMBER = Actor("mallory", ActorRole.MEMBER)

OPEN = [NodeStatus.DRAFT, NodeStatus.ACTIVE, NodeStatus.VOTING]
TERMINAL = [s for s in NodeStatus if s.is_terminal]

ILLEGAL_PAIRS = [(status, action) for status in OPEN for action in Action if (status, action) not in TRANSITIONS]


# ============================================================================
# Table
# ============================================================================


class TestTable:
    def test_targets(self):
        assert target_status(NodeStatus.DRAFT, Action.PUBLISH) == NodeStatus.ACTIVE
        assert target_status(NodeStatus.VOTING, Action.VOTE_EXPIRE) == NodeStatus.REJECTED
        assert target_status(NodeStatus.ACTIVE, Action.PUBLISH) is None

    def test_allowed_actions(self):
        assert set(allowed_actions(NodeStatus.DRAFT)) == {Action.PUBLISH, Action.ADMIN_CANCEL}
        assert allowed_actions(NodeStatus.ACCEPTED) == []

    def test_no_entries_leave_terminal_states(self):
        assert not any(status.is_terminal for status, _ in TRANSITIONS)

    @pytest.mark.parametrize("status,action", ILLEGAL_PAIRS)
    def test_illegal_pairs_raise_invalid_transition(self, make_node, status, action):
        with pytest.raises(InvalidTransition):
            transition(make_node(status=status), action, ADMIN, "reason", CTX)

    @pytest.mark.parametrize("status", TERMINAL)
    @pytest.mark.parametrize("action", list(Action))
    def test_terminal_nodes_raise_already_terminal(self, make_node, status, action):
        node = make_node(status=status, closed_at=NOW)
        with pytest.raises(AlreadyTerminal):
            transition(node, action, ADMIN, "reason", CTX)


# ============================================================================
# Guards
# ============================================================================


class TestPublish:
    def test_creator_publishes(self, make_node):
        updated = transition(make_node(status=NodeStatus.DRAFT), Action.PUBLISH, CREATOR, context=CTX)
        assert updated.status == NodeStatus.ACTIVE
        assert updated.updated_at == NOW
        assert updated.closed_at is None

    def test_other_actor_unauthorized(self, make_node):
        with pytest.raises(Unauthorized):
            transition(make_node(status=NodeStatus.DRAFT), Action.PUBLISH, MEMBER, context=CTX)

    def test_input_not_mutated(self, make_node):
        node = make_node(status=NodeStatus.DRAFT)
        transition(node, Action.PUBLISH, CREATOR, context=CTX)
        assert node.status == NodeStatus.DRAFT


class TestAccept:
    def test_wish_accepted_by_creator(self, make_node):
        updated = transition(make_node(), Action.ACCEPT, CREATOR, context=CTX)

        assert updated.status == NodeStatus.ACCEPTED
        assert updated.closed_by == "alice"
        assert updated.closed_at == NOW
        assert updated.closure_reason == "Accepted by creator"

    def test_custom_reason(self, make_node):
        updated = transition(make_node(), Action.ACCEPT, CREATOR, "Done and dusted", CTX)
        assert updated.closure_reason == "Done and dusted"

    def test_proposal_needs_parent_creator(self, make_node):
        proposal = make_node(node_type=NodeType.PROPOSAL, parent_id="w1", creator_id="bob")
        with pytest.raises(Unauthorized):
            transition(proposal, Action.ACCEPT, Actor("bob", ActorRole.CREATOR), context=CTX)

        updated = transition(proposal, Action.ACCEPT, PARENT_CREATOR, context=CTX)
        assert updated.status == NodeStatus.ACCEPTED

    def test_admin_cannot_accept(self, make_node):
        with pytest.raises(Unauthorized):
            transition(make_node(), Action.ACCEPT, ADMIN, context=CTX)


class TestReject:
    def test_requires_reason(self, make_node):
        with pytest.raises(PreconditionFailed):
            transition(make_node(), Action.REJECT, CREATOR, "   ", CTX)

    def test_reason_is_stripped(self, make_node):
        updated = transition(make_node(), Action.REJECT, CREATOR, "  not now ", CTX)
        assert updated.status == NodeStatus.REJECTED
        assert updated.closure_reason == "not now"

    def test_admin_may_reject(self, make_node):
        updated = transition(make_node(), Action.REJECT, ADMIN, "spam", CTX)
        assert updated.closed_by == "root"

    def test_reject_during_voting(self, make_node):
        updated = transition(make_node(status=NodeStatus.VOTING), Action.REJECT, CREATOR, "changed my mind", CTX)
        assert updated.status == NodeStatus.REJECTED

    def test_member_unauthorized(self, make_node):
        with pytest.raises(Unauthorized):
            transition(make_node(), Action.REJECT, MEMBER, "no", CTX)


class TestVoting:
    """enable_voting, vote_resolve and vote_expire guards."""

    config = VotingConfig(required_votes=3, approval_percentage=60.0, voting_duration_hours=48)

    def test_enable_requires_config(self, make_node):
        with pytest.raises(PreconditionFailed):
            transition(make_node(), Action.ENABLE_VOTING, CREATOR, context=CTX)

    def test_enable_sets_deadline(self, make_node):
        ctx = TransitionContext(now=NOW, voting_config=self.config)
        updated = transition(make_node(), Action.ENABLE_VOTING, CREATOR, context=ctx)

        assert updated.status == NodeStatus.VOTING
        assert updated.voting_enabled is True
        assert updated.voting_ends_at == NOW + timedelta(hours=48)

    def test_resolve_below_threshold(self, make_node):
        ctx = TransitionContext(now=NOW, tally=VoteTally(2, 0), voting_config=self.config)
        with pytest.raises(PreconditionFailed):
            transition(make_node(status=NodeStatus.VOTING), Action.VOTE_RESOLVE, MEMBER, context=ctx)

    def test_resolve_passing(self, make_node):
        ctx = TransitionContext(now=NOW, tally=VoteTally(3, 0), voting_config=self.config)
        updated = transition(make_node(status=NodeStatus.VOTING), Action.VOTE_RESOLVE, Actor("system"), context=ctx)

        assert updated.status == NodeStatus.APPROVED_BY_VOTE
        assert updated.closure_reason == "Approved by vote: 100.00% approval (3/3 votes)"

    def test_resolve_without_tally(self, make_node):
        with pytest.raises(PreconditionFailed):
            transition(make_node(status=NodeStatus.VOTING), Action.VOTE_RESOLVE, MEMBER, context=CTX)

    def test_expire_before_deadline(self, make_node):
        node = make_node(status=NodeStatus.VOTING, voting_ends_at=NOW + timedelta(hours=1))
        ctx = TransitionContext(now=NOW, tally=VoteTally(0, 1), voting_config=self.config)
        with pytest.raises(PreconditionFailed):
            transition(node, Action.VOTE_EXPIRE, Actor("system"), context=ctx)

    def test_expire_after_deadline(self, make_node):
        node = make_node(status=NodeStatus.VOTING, voting_ends_at=NOW - timedelta(hours=1))
        ctx = TransitionContext(now=NOW, tally=VoteTally(1, 2), voting_config=self.config)
        updated = transition(node, Action.VOTE_EXPIRE, Actor("system"), context=ctx)

        assert updated.status == NodeStatus.REJECTED
        assert updated.closure_reason.startswith("Rejected by vote: 33.33% approval")

    def test_expire_refuses_passing_vote(self, make_node):
        node = make_node(status=NodeStatus.VOTING, voting_ends_at=NOW - timedelta(hours=1))
        ctx = TransitionContext(now=NOW, tally=VoteTally(3, 0), voting_config=self.config)
        with pytest.raises(PreconditionFailed):
            transition(node, Action.VOTE_EXPIRE, Actor("system"), context=ctx)


class TestRetract:
    def test_blocked_by_open_descendants(self, make_node):
        ctx = TransitionContext(now=NOW, open_descendants=2)
        with pytest.raises(PreconditionFailed, match="active proposals or sub-wishes"):
            transition(make_node(), Action.RETRACT, CREATOR, context=ctx)

    def test_retract_wish(self, make_node):
        updated = transition(make_node(), Action.RETRACT, CREATOR, context=CTX)
        assert updated.status == NodeStatus.RETRACTED
        assert updated.closure_reason == "Retracted by creator"

    def test_proposal_needs_open_parent(self, make_node):
        proposal = make_node(id="p1", node_type=NodeType.PROPOSAL, parent_id="w1")
        closed_parent = make_node(id="w1", status=NodeStatus.ACCEPTED)
        ctx = TransitionContext(now=NOW, parent=closed_parent)
        with pytest.raises(PreconditionFailed):
            transition(proposal, Action.RETRACT, CREATOR, context=ctx)

    def test_proposal_missing_parent(self, make_node):
        proposal = make_node(id="p1", node_type=NodeType.PROPOSAL, parent_id="w1")
        with pytest.raises(NotFoundError):
            transition(proposal, Action.RETRACT, CREATOR, context=CTX)

    def test_only_creator(self, make_node):
        with pytest.raises(Unauthorized):
            transition(make_node(), Action.RETRACT, ADMIN, context=CTX)


class TestAdminCancel:
    @pytest.mark.parametrize("status", OPEN)
    def test_cancel_from_open_states(self, make_node, status):
        updated = transition(make_node(status=status), Action.ADMIN_CANCEL, ADMIN, "policy", CTX)
        assert updated.status == NodeStatus.CANCELLED
        assert updated.closure_reason == "policy"

    def test_non_admin_unauthorized(self, make_node):
        with pytest.raises(Unauthorized):
            transition(make_node(), Action.ADMIN_CANCEL, CREATOR, "policy", CTX)

    def test_requires_reason(self, make_node):
        with pytest.raises(PreconditionFailed):
            transition(make_node(), Action.ADMIN_CANCEL, ADMIN, None, CTX)
