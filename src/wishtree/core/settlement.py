"""Settlement resolution for accepted proposals.

A proposal may *declare* a ``settlement_type`` when it is written, but the
person accepting it decides what actually happens through the
``close_parent`` flag. The resolver never infers one from the other; it
records both so the outcome can be audited later.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .models import Node, SettlementType


@dataclass(frozen=True)
class SettlementDecision:
    """What accepting a proposal does to its parent."""

    close_parent: bool
    declared: SettlementType | None
    parent_reason: str | None = None

    @property
    def honours_declaration(self) -> bool | None:
        """Whether the acceptor's choice matches the declared intent.

        None when the proposal declared nothing.
        """
        if self.declared is None:
            return None
        return self.close_parent == (self.declared == SettlementType.FULL_SETTLEMENT)

    @property
    def is_full_settlement(self) -> bool:
        """Full settlement lifts the partial cap on the payout."""
        return self.close_parent

    def to_dict(self) -> dict[str, Any]:
        return {
            "close_parent": self.close_parent,
            "declared_settlement_type": self.declared.value if self.declared else None,
            "honours_declaration": self.honours_declaration,
            "parent_reason": self.parent_reason,
        }


def parent_closure_reason(proposal: Node) -> str:
    return f'Solved: accepted proposal "{proposal.title}"'


def resolve_settlement(proposal: Node, close_parent: bool) -> SettlementDecision:
    """Decide the parent's fate when ``proposal`` is accepted.

    ``close_parent`` is authoritative. When True the parent wish moves to
    ``accepted`` with a reason naming the proposal; when False it stays
    open for further proposals.
    """
    return SettlementDecision(
        close_parent=close_parent,
        declared=proposal.settlement_type,
        parent_reason=parent_closure_reason(proposal) if close_parent else None,
    )
