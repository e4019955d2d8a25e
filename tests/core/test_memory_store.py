"""Tests for wishtree.core.memory_store module."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from wishtree.core.exceptions import ValidationException
from wishtree.core.memory_store import InMemoryTreeStore
from wishtree.core.models import (
    LedgerKind,
    NodeStatus,
    NodeType,
    VoteType,
    VotingConfig,
)
from wishtree.core.store import StoreSession, TreeStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class TestProtocols:
    def test_satisfies_protocols(self, store):
        assert isinstance(store, TreeStore)
        with store.unit_of_work() as s:
            assert isinstance(s, StoreSession)


class TestTree:
    def test_insert_and_get_copies(self, store, make_node):
        node = make_node()
        with store.unit_of_work() as s:
            s.insert(node)
            node.title = "Changed outside"
            loaded = s.get("node-1")
            loaded.token_count = 99
            assert s.get("node-1").title == "Community garden"
            assert s.get("node-1").token_count == 0

    def test_duplicate_insert(self, store, make_node):
        with store.unit_of_work() as s:
            s.insert(make_node())
            with pytest.raises(ValidationException):
                s.insert(make_node())

    def test_ancestor_chain_nearest_first(self, store, make_node):
        with store.unit_of_work() as s:
            s.insert(make_node(id="root"))
            s.insert(make_node(id="mid", parent_id="root"))
            s.insert(make_node(id="leaf", parent_id="mid"))
            assert s.get_ancestor_chain("leaf") == ["mid", "root"]
            assert s.get_ancestor_chain("root") == []

    def test_ancestor_chain_stops_at_cycle(self, store, make_node):
        with store.unit_of_work() as s:
            s.insert(make_node(id="A", parent_id="B"))
            s.insert(make_node(id="B", parent_id="A"))
            assert s.get_ancestor_chain("A") == ["B"]

    def test_delete_removes_votes(self, store, make_node):
        with store.unit_of_work() as s:
            s.insert(make_node(status=NodeStatus.VOTING))
            s.save_voting_config("node-1", VotingConfig())
            s.upsert_vote("node-1", "v1", VoteType.APPROVE)
            assert s.delete("node-1") is True
            assert s.get("node-1") is None
            assert s.get_voting_config("node-1") is None
            assert s.get_tally("node-1").total_votes == 0
            assert s.delete("node-1") is False

    def test_count_accepted_proposals(self, store, make_node):
        with store.unit_of_work() as s:
            s.insert(make_node(id="W"))
            s.insert(make_node(id="P1", node_type=NodeType.PROPOSAL, parent_id="W", status=NodeStatus.ACCEPTED))
            s.insert(make_node(id="P2", node_type=NodeType.PROPOSAL, parent_id="W"))
            s.insert(make_node(id="S1", parent_id="W", status=NodeStatus.ACCEPTED))
            assert s.count_accepted_proposals("W") == 1

    def test_list_expired_votings(self, store, make_node):
        with store.unit_of_work() as s:
            s.insert(make_node(id="due", status=NodeStatus.VOTING, voting_ends_at=NOW))
            s.insert(make_node(id="later", status=NodeStatus.VOTING, voting_ends_at=NOW + timedelta(hours=1)))
            s.insert(make_node(id="active", voting_ends_at=NOW - timedelta(hours=1)))
            assert s.list_expired_votings(NOW) == ["due"]


class TestVotes:
    def test_repeat_vote_replaces(self, store, make_node):
        with store.unit_of_work() as s:
            s.insert(make_node())
            s.upsert_vote("node-1", "v1", VoteType.APPROVE)
            s.upsert_vote("node-1", "v1", VoteType.REJECT)
            s.upsert_vote("node-1", "v2", VoteType.APPROVE)
            tally = s.get_tally("node-1")
        assert (tally.approve_votes, tally.reject_votes) == (1, 1)


class TestLedger:
    def test_credit_and_debit(self, store):
        with store.unit_of_work() as s:
            assert not s.account_exists("alice")
            s.credit("alice", 100, None, LedgerKind.INITIAL)
            entry = s.debit("alice", 30, "node-1", LedgerKind.SUPPORT, "go team")
            assert s.get_balance("alice") == 70
            assert s.account_exists("alice")
            assert entry.direction == "debit"
            assert [e.amount for e in s.transactions("alice")] == [100, 30]

    def test_overdraw_rejected(self, store):
        with store.unit_of_work() as s:
            s.credit("alice", 10, None, LedgerKind.INITIAL)
            with pytest.raises(ValidationException, match="Insufficient balance: requested 11, available 10"):
                s.debit("alice", 11, None, LedgerKind.SUPPORT)
            assert s.get_balance("alice") == 10


class TestUnitOfWork:
    """Atomicity of the in-memory store."""

    def test_rollback_on_error(self, store, make_node):
        with pytest.raises(RuntimeError):
            with store.unit_of_work() as s:
                s.insert(make_node())
                s.credit("alice", 50, None, LedgerKind.GRANT)
                raise RuntimeError("boom")

        with store.unit_of_work() as s:
            assert s.get("node-1") is None
            assert s.get_balance("alice") == 0
            assert s.transactions("alice") == []

    def test_commit_on_success(self, store, make_node):
        with store.unit_of_work() as s:
            s.insert(make_node())
        with store.unit_of_work() as s:
            assert s.get("node-1") is not None

    def test_nested_units_roll_back_together(self, store, make_node):
        with pytest.raises(RuntimeError):
            with store.unit_of_work() as outer:
                outer.insert(make_node(id="a"))
                with store.unit_of_work() as inner:
                    inner.insert(make_node(id="b"))
                raise RuntimeError("boom")

        with store.unit_of_work() as s:
            assert s.get("a") is None
            assert s.get("b") is None

    def test_separate_stores_isolated(self, make_node):
        first, second = InMemoryTreeStore(), InMemoryTreeStore()
        with first.unit_of_work() as s:
            s.insert(make_node())
        with second.unit_of_work() as s:
            assert s.get("node-1") is None
