"""Tests for wishtree.core.settlement module."""

from __future__ import annotations

import pytest

from wishtree.core.models import NodeType, SettlementType
from wishtree.core.settlement import parent_closure_reason, resolve_settlement


@pytest.fixture
def proposal(make_node):
    return make_node(id="p1", title="Raised beds", node_type=NodeType.PROPOSAL, parent_id="w1", creator_id="bob")


class TestResolveSettlement:
    def test_close_parent(self, proposal):
        decision = resolve_settlement(proposal, close_parent=True)
        assert decision.close_parent
        assert decision.is_full_settlement
        assert decision.parent_reason == 'Solved: accepted proposal "Raised beds"'

    def test_keep_parent_open(self, proposal):
        decision = resolve_settlement(proposal, close_parent=False)
        assert not decision.is_full_settlement
        assert decision.parent_reason is None

    def test_flag_wins_over_declaration(self, proposal):
        proposal.settlement_type = SettlementType.FULL_SETTLEMENT
        decision = resolve_settlement(proposal, close_parent=False)

        assert decision.close_parent is False
        assert decision.declared == SettlementType.FULL_SETTLEMENT
        assert decision.honours_declaration is False

    @pytest.mark.parametrize(
        "declared,close_parent,expected",
        [
            (SettlementType.FULL_SETTLEMENT, True, True),
            (SettlementType.PARTIAL_CONTRIBUTION, False, True),
            (SettlementType.PARTIAL_CONTRIBUTION, True, False),
            (None, True, None),
        ],
    )
    def test_honours_declaration(self, proposal, declared, close_parent, expected):
        proposal.settlement_type = declared
        assert resolve_settlement(proposal, close_parent).honours_declaration is expected

    def test_to_dict(self, proposal):
        proposal.settlement_type = SettlementType.PARTIAL_CONTRIBUTION
        assert resolve_settlement(proposal, False).to_dict() == {
            "close_parent": False,
            "declared_settlement_type": "partial_contribution",
            "honours_declaration": True,
            "parent_reason": None,
        }

    def test_parent_closure_reason(self, proposal):
        assert parent_closure_reason(proposal) == 'Solved: accepted proposal "Raised beds"'
