"""In-memory implementation of :class:`~wishtree.core.store.TreeStore`.

Used by the test suite and by callers that embed the engine without a
database. A unit of work holds a re-entrant lock for its whole duration,
which serializes concurrent intents the way row locks do in PostgreSQL,
and restores a snapshot of every table if the block raises.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any

from .exceptions import ValidationException
from .models import (
    DistributionShare,
    Donation,
    LedgerEntry,
    LedgerKind,
    Node,
    NodeStatus,
    NodeType,
    StatusChange,
    VoteTally,
    VoteType,
    VotingConfig,
    new_id,
)
from .voting import is_voting_expired

logger = logging.getLogger(__name__)


class InMemorySession:
    """Session over the dict tables of an :class:`InMemoryTreeStore`.

    Nodes are copied on the way in and out so a caller holding a ``Node``
    cannot change stored state without calling ``save``.
    """

    def __init__(self, store: InMemoryTreeStore) -> None:
        self._store = store

    @property
    def _t(self) -> dict[str, Any]:
        return self._store._tables

    # -- tree ---------------------------------------------------------------

    def get(self, node_id: str) -> Node | None:
        node = self._t["nodes"].get(node_id)
        return replace(node) if node else None

    def get_for_update(self, node_id: str) -> Node | None:
        # The unit-of-work lock already serializes writers.
        return self.get(node_id)

    def get_children(self, parent_id: str) -> list[Node]:
        return [replace(n) for n in self._t["nodes"].values() if n.parent_id == parent_id]

    def get_ancestor_chain(self, node_id: str) -> list[str]:
        chain: list[str] = []
        seen = {node_id}
        node = self._t["nodes"].get(node_id)
        while node is not None and node.parent_id is not None:
            if node.parent_id in seen:
                logger.warning("Cycle detected above node %s at %s", node_id, node.parent_id)
                break
            seen.add(node.parent_id)
            chain.append(node.parent_id)
            node = self._t["nodes"].get(node.parent_id)
        return chain

    def insert(self, node: Node) -> None:
        if node.id in self._t["nodes"]:
            raise ValidationException(f"Node already exists: {node.id}", field="id", value=node.id)
        self._t["nodes"][node.id] = replace(node)

    def save(self, node: Node) -> None:
        self._t["nodes"][node.id] = replace(node)

    def delete(self, node_id: str) -> bool:
        if self._t["nodes"].pop(node_id, None) is None:
            return False
        self._t["voting_configs"].pop(node_id, None)
        for key in [k for k in self._t["votes"] if k[0] == node_id]:
            del self._t["votes"][key]
        return True

    def count_accepted_proposals(self, parent_id: str) -> int:
        return sum(
            1
            for n in self._t["nodes"].values()
            if n.parent_id == parent_id and n.node_type == NodeType.PROPOSAL and n.status == NodeStatus.ACCEPTED
        )

    def list_expired_votings(self, now: datetime) -> list[str]:
        return [
            n.id
            for n in self._t["nodes"].values()
            if is_voting_expired(n, now)
        ]

    # -- votes --------------------------------------------------------------

    def get_voting_config(self, node_id: str) -> VotingConfig | None:
        return self._t["voting_configs"].get(node_id)

    def save_voting_config(self, node_id: str, config: VotingConfig) -> None:
        self._t["voting_configs"][node_id] = config

    def upsert_vote(self, node_id: str, voter_id: str, vote_type: VoteType) -> None:
        self._t["votes"][(node_id, voter_id)] = vote_type

    def get_tally(self, node_id: str) -> VoteTally:
        votes = [v for (nid, _), v in self._t["votes"].items() if nid == node_id]
        return VoteTally(
            approve_votes=sum(1 for v in votes if v == VoteType.APPROVE),
            reject_votes=sum(1 for v in votes if v == VoteType.REJECT),
        )

    # -- ledger -------------------------------------------------------------

    def account_exists(self, holder_id: str) -> bool:
        return holder_id in self._t["balances"]

    def _entry(
        self,
        holder_id: str,
        amount: int,
        direction: str,
        source_id: str | None,
        kind: LedgerKind,
        message: str | None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            id=new_id(),
            holder_id=holder_id,
            amount=amount,
            direction=direction,
            kind=kind,
            source_id=source_id,
            message=message,
        )
        self._t["transactions"].append(entry)
        return entry

    def credit(
        self,
        holder_id: str,
        amount: int,
        source_id: str | None,
        kind: LedgerKind,
        message: str | None = None,
    ) -> LedgerEntry:
        balances = self._t["balances"]
        balances[holder_id] = balances.get(holder_id, 0) + amount
        return self._entry(holder_id, amount, "credit", source_id, kind, message)

    def debit(
        self,
        holder_id: str,
        amount: int,
        source_id: str | None,
        kind: LedgerKind,
        message: str | None = None,
    ) -> LedgerEntry:
        balance = self._t["balances"].get(holder_id, 0)
        if amount > balance:
            raise ValidationException(
                f"Insufficient balance: requested {amount}, available {balance}",
                field="amount",
                value=amount,
            )
        self._t["balances"][holder_id] = balance - amount
        return self._entry(holder_id, amount, "debit", source_id, kind, message)

    def get_balance(self, holder_id: str) -> int:
        return self._t["balances"].get(holder_id, 0)

    def transactions(self, holder_id: str) -> list[LedgerEntry]:
        """Ledger history for one holder, oldest first."""
        return [e for e in self._t["transactions"] if e.holder_id == holder_id]

    def record_distribution(self, shares: Sequence[DistributionShare]) -> None:
        self._t["distributions"].extend(shares)

    def get_distributions(self, event_id: str) -> list[DistributionShare]:
        return sorted(
            (s for s in self._t["distributions"] if s.event_id == event_id),
            key=lambda s: s.level,
        )

    # -- audit --------------------------------------------------------------

    def record_status_change(self, change: StatusChange) -> None:
        self._t["status_history"].append(change)

    def status_history(self, node_id: str) -> list[StatusChange]:
        return [c for c in self._t["status_history"] if c.node_id == node_id]

    def record_donation(self, donation: Donation) -> None:
        self._t["donations"].append(donation)


class InMemoryTreeStore:
    """Dict-backed store with snapshot rollback."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._tables: dict[str, Any] = {
            "nodes": {},
            "voting_configs": {},
            "votes": {},
            "balances": {},
            "transactions": [],
            "distributions": [],
            "status_history": [],
            "donations": [],
        }

    @contextmanager
    def unit_of_work(self) -> Generator[InMemorySession, None, None]:
        """Run a block atomically.

        Nested units join the outermost one; only the outermost restores
        the snapshot on failure.
        """
        with self._lock:
            outermost = self._depth == 0
            snapshot = copy.deepcopy(self._tables) if outermost else None
            self._depth += 1
            try:
                yield InMemorySession(self)
            except Exception:
                if outermost:
                    self._tables = snapshot  # type: ignore[assignment]
                    logger.debug("Rolled back in-memory unit of work")
                raise
            finally:
                self._depth -= 1
