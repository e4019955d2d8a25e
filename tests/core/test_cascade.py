"""Tests for wishtree.core.cascade - closing subtrees."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from wishtree.core.cascade import (
    cascade_reason,
    close_with_children,
    count_open_descendants,
    iter_descendants,
)
from wishtree.core.exceptions import AlreadyTerminal, PreconditionFailed, Unauthorized
from wishtree.core.models import Actor, ActorRole, NodeStatus, NodeType

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
CREATOR = Actor("alice", ActorRole.CREATOR)


@pytest.fixture
def tree(store, make_node):
    """W with open sub-wishes S1, S2 (S1 has child S1a) and a rejected proposal P0."""
    with store.unit_of_work() as s:
        s.insert(make_node(id="W", title="Root wish"))
        s.insert(make_node(id="S1", title="Sub one", parent_id="W"))
        s.insert(make_node(id="S2", title="Sub two", parent_id="W", status=NodeStatus.DRAFT))
        s.insert(make_node(id="S1a", title="Grandchild", parent_id="S1"))
        s.insert(
            make_node(
                id="P0",
                title="Old idea",
                node_type=NodeType.PROPOSAL,
                parent_id="W",
                creator_id="bob",
                status=NodeStatus.REJECTED,
                closed_at=NOW,
                closure_reason="Not feasible",
            )
        )
    return store


class TestIterDescendants:
    def test_breadth_first(self, tree):
        with tree.unit_of_work() as s:
            ids = [n.id for n in iter_descendants(s, "W")]
        assert set(ids) == {"S1", "S2", "P0", "S1a"}
        assert ids[-1] == "S1a"

    def test_leaf_has_none(self, tree):
        with tree.unit_of_work() as s:
            assert list(iter_descendants(s, "S2")) == []

    def test_cycle_visits_each_node_once(self, store, make_node):
        with store.unit_of_work() as s:
            s.insert(make_node(id="A", parent_id="B"))
            s.insert(make_node(id="B", parent_id="A"))
            assert [n.id for n in iter_descendants(s, "A")] == ["B"]

    def test_count_open_descendants(self, tree):
        with tree.unit_of_work() as s:
            assert count_open_descendants(s, "W") == 3
            assert count_open_descendants(s, "S1") == 1


class TestCloseWithChildren:
    def test_cascade_closes_open_descendants(self, tree):
        with tree.unit_of_work() as s:
            result = close_with_children(s, s.get("W"), CREATOR, "Garden built", cascade=True, now=NOW)

        assert result.root.status == NodeStatus.ACCEPTED
        assert result.root.closure_reason == "Garden built"
        assert set(result.closed_ids) == {"W", "S1", "S2", "S1a"}
        assert result.skipped == ["P0"]

        with tree.unit_of_work() as s:
            for node_id in ("S1", "S2", "S1a"):
                node = s.get(node_id)
                assert node.status == NodeStatus.CANCELLED
                assert node.closure_reason == "Parent wish was closed: Garden built"
                assert node.closed_by == "alice"
            untouched = s.get("P0")
            assert untouched.status == NodeStatus.REJECTED
            assert untouched.closure_reason == "Not feasible"

    def test_without_cascade_children_stay_open(self, tree):
        with tree.unit_of_work() as s:
            result = close_with_children(s, s.get("W"), CREATOR, "Done", now=NOW)
            assert result.cascaded == []
            assert s.get("S1").status == NodeStatus.ACTIVE

    def test_descendant_changed_after_traversal_is_reloaded(self, tree, monkeypatch):
        """Support landing on a sub-wish after the children were listed survives the cascade."""
        with tree.unit_of_work() as s:
            read_children = s.get_children

            def concurrent_support(parent_id):
                children = read_children(parent_id)
                if parent_id == "W":
                    s._t["nodes"]["S1"].token_count += 100
                    s._t["nodes"]["S2"].status = NodeStatus.CANCELLED
                return children

            monkeypatch.setattr(s, "get_children", concurrent_support)
            result = close_with_children(s, s.get("W"), CREATOR, "Garden built", cascade=True, now=NOW)

        assert "S2" in result.skipped
        with tree.unit_of_work() as s:
            assert s.get("S1").token_count == 100
            assert s.get("S1").status == NodeStatus.CANCELLED

    def test_descendants_locked_before_close(self, tree):
        with tree.unit_of_work() as s:
            locked = []
            original = s.get_for_update

            def tracking(node_id):
                locked.append(node_id)
                return original(node_id)

            s.get_for_update = tracking
            close_with_children(s, s.get("W"), CREATOR, "Done", cascade=True, now=NOW)
        assert set(locked) == {"S1", "S2", "S1a", "P0"}

    def test_records_status_history(self, tree):
        with tree.unit_of_work() as s:
            close_with_children(s, s.get("W"), CREATOR, "Done", cascade=True, now=NOW)
            history = s.status_history("S1")
        assert len(history) == 1
        assert history[0].old_status == NodeStatus.ACTIVE
        assert history[0].new_status == NodeStatus.CANCELLED

    def test_root_status_choice(self, tree):
        with tree.unit_of_work() as s:
            result = close_with_children(s, s.get("S1"), CREATOR, "Out of scope", status=NodeStatus.REJECTED, now=NOW)
        assert result.root.status == NodeStatus.REJECTED

    def test_admin_allowed(self, tree):
        with tree.unit_of_work() as s:
            result = close_with_children(s, s.get("W"), Actor("root", ActorRole.ADMIN), "Cleanup", now=NOW)
        assert result.root.closed_by == "root"

    def test_terminal_root(self, tree):
        with tree.unit_of_work() as s, pytest.raises(AlreadyTerminal):
            close_with_children(s, s.get("P0"), CREATOR, "again")

    def test_unauthorized(self, tree):
        with tree.unit_of_work() as s, pytest.raises(Unauthorized):
            close_with_children(s, s.get("W"), Actor("bob", ActorRole.MEMBER), "mine now")

    def test_requires_reason(self, tree):
        with tree.unit_of_work() as s, pytest.raises(PreconditionFailed):
            close_with_children(s, s.get("W"), CREATOR, "  ")

    def test_rejects_non_closing_status(self, tree):
        with tree.unit_of_work() as s, pytest.raises(PreconditionFailed):
            close_with_children(s, s.get("W"), CREATOR, "x", status=NodeStatus.RETRACTED)

    def test_cascade_reason(self):
        assert cascade_reason("Solved") == "Parent wish was closed: Solved"
