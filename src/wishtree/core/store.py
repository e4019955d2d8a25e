"""Storage protocols for the wish tree and the token ledger.

Everything the core reads or writes goes through a ``StoreSession``
obtained from ``TreeStore.unit_of_work()``. A unit of work commits when
its block exits normally and rolls back when it raises, so one user intent
is applied entirely or not at all.

Implementations:
- ``wishtree.core.memory_store.InMemoryTreeStore`` (tests, embedding)
- ``wishtree.core.postgres_store.PostgresTreeStore`` (production)
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol, runtime_checkable

from .models import (
    DistributionShare,
    Donation,
    LedgerEntry,
    LedgerKind,
    Node,
    StatusChange,
    VoteTally,
    VoteType,
    VotingConfig,
)


@runtime_checkable
class StoreSession(Protocol):
    """Operations available inside one unit of work."""

    # -- tree ---------------------------------------------------------------

    def get(self, node_id: str) -> Node | None: ...

    def get_for_update(self, node_id: str) -> Node | None:
        """Load a node and hold its row until the unit of work ends.

        Concurrent read-modify-write of ``token_count`` serializes here.
        """
        ...

    def get_children(self, parent_id: str) -> list[Node]: ...

    def get_ancestor_chain(self, node_id: str) -> list[str]:
        """Ancestor ids of ``node_id``, nearest first, excluding the node itself."""
        ...

    def insert(self, node: Node) -> None: ...

    def save(self, node: Node) -> None: ...

    def delete(self, node_id: str) -> bool: ...

    def count_accepted_proposals(self, parent_id: str) -> int: ...

    def list_expired_votings(self, now: datetime) -> list[str]: ...

    # -- votes --------------------------------------------------------------

    def get_voting_config(self, node_id: str) -> VotingConfig | None: ...

    def save_voting_config(self, node_id: str, config: VotingConfig) -> None: ...

    def upsert_vote(self, node_id: str, voter_id: str, vote_type: VoteType) -> None: ...

    def get_tally(self, node_id: str) -> VoteTally: ...

    # -- ledger -------------------------------------------------------------

    def account_exists(self, holder_id: str) -> bool: ...

    def credit(
        self,
        holder_id: str,
        amount: int,
        source_id: str | None,
        kind: LedgerKind,
        message: str | None = None,
    ) -> LedgerEntry: ...

    def debit(
        self,
        holder_id: str,
        amount: int,
        source_id: str | None,
        kind: LedgerKind,
        message: str | None = None,
    ) -> LedgerEntry: ...

    def get_balance(self, holder_id: str) -> int: ...

    def record_distribution(self, shares: Sequence[DistributionShare]) -> None: ...

    def get_distributions(self, event_id: str) -> list[DistributionShare]: ...

    # -- audit --------------------------------------------------------------

    def record_status_change(self, change: StatusChange) -> None: ...

    def record_donation(self, donation: Donation) -> None: ...


@runtime_checkable
class TreeStore(Protocol):
    """Factory for units of work."""

    def unit_of_work(self) -> AbstractContextManager[StoreSession]: ...
