# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""PostgreSQL implementation of :class:`~wishtree.core.store.TreeStore`.

A unit of work is one ``get_cursor()`` transaction: it commits on normal
exit and rolls back on any exception. Writers that read-modify-write a
balance first take the row lock with ``SELECT ... FOR UPDATE``, so two
concurrent supports on one node serialize instead of losing an update.

Schema: ``migrations/001_initial_schema.py``.
"""

from __future__ import annotations

import logging
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from .db import get_cursor
from .exceptions import ValidationException
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
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)

NODE_COLUMNS = (
    "id",
    "parent_id",
    "creator_id",
    "title",
    "description",
    "node_type",
    "status",
    "settlement_type",
    "token_count",
    "tokens_distributed",
    "tokens_received_on_acceptance",
    "expires_at",
    "voting_enabled",
    "voting_ends_at",
    "closed_at",
    "closed_by",
    "closure_reason",
    "created_at",
    "updated_at",
)

_SELECT_NODE = f"SELECT {', '.join(NODE_COLUMNS)} FROM nodes"

# Ancestor ids nearest-first; the path array stops a malformed cycle.
_ANCESTOR_CHAIN_SQL = """
    WITH RECURSIVE chain AS (
        SELECT parent_id, 1 AS depth, ARRAY[id] AS path
        FROM nodes
        WHERE id = %s
        UNION ALL
        SELECT n.parent_id, c.depth + 1, c.path || n.id
        FROM nodes n
        JOIN chain c ON n.id = c.parent_id
        WHERE NOT n.id = ANY(c.path)
    )
    SELECT parent_id AS id
    FROM chain
    WHERE parent_id IS NOT NULL AND NOT parent_id = ANY(path)
    ORDER BY depth
"""


def _node_params(node: Node) -> dict[str, Any]:
    row = node.to_dict()
    # Keep datetimes as objects; psycopg2 adapts them.
    for key in ("expires_at", "voting_ends_at", "closed_at", "created_at", "updated_at"):
        row[key] = getattr(node, key)
    return row


class PostgresSession:
    """Session bound to one open cursor."""

    def __init__(self, cur: Any) -> None:
        self._cur = cur

    # -- tree ---------------------------------------------------------------

    def _fetch_node(self, sql: str, params: tuple) -> Node | None:
        self._cur.execute(sql, params)
        row = self._cur.fetchone()
        return Node.from_row(row) if row else None

    def get(self, node_id: str) -> Node | None:
        return self._fetch_node(f"{_SELECT_NODE} WHERE id = %s", (node_id,))

    def get_for_update(self, node_id: str) -> Node | None:
        return self._fetch_node(f"{_SELECT_NODE} WHERE id = %s FOR UPDATE", (node_id,))

    def get_children(self, parent_id: str) -> list[Node]:
        self._cur.execute(f"{_SELECT_NODE} WHERE parent_id = %s ORDER BY created_at", (parent_id,))
        return [Node.from_row(row) for row in self._cur.fetchall()]

    def get_ancestor_chain(self, node_id: str) -> list[str]:
        self._cur.execute(_ANCESTOR_CHAIN_SQL, (node_id,))
        return [str(row["id"]) for row in self._cur.fetchall()]

    def insert(self, node: Node) -> None:
        columns = ", ".join(NODE_COLUMNS)
        placeholders = ", ".join(f"%({c})s" for c in NODE_COLUMNS)
        self._cur.execute(f"INSERT INTO nodes ({columns}) VALUES ({placeholders})", _node_params(node))

    def save(self, node: Node) -> None:
        assignments = ", ".join(f"{c} = %({c})s" for c in NODE_COLUMNS if c not in ("id", "parent_id", "created_at"))
        self._cur.execute(f"UPDATE nodes SET {assignments} WHERE id = %(id)s", _node_params(node))

    def delete(self, node_id: str) -> bool:
        self._cur.execute("DELETE FROM nodes WHERE id = %s", (node_id,))
        return self._cur.rowcount > 0

    def count_accepted_proposals(self, parent_id: str) -> int:
        self._cur.execute(
            """
            SELECT COUNT(*) AS count FROM nodes
            WHERE parent_id = %s AND node_type = 'proposal' AND status = 'accepted'
            """,
            (parent_id,),
        )
        row = self._cur.fetchone()
        return int(row["count"]) if row else 0

    def list_expired_votings(self, now: datetime) -> list[str]:
        self._cur.execute(
            """
            SELECT id FROM nodes
            WHERE status = 'voting' AND voting_ends_at IS NOT NULL AND voting_ends_at <= %s
            ORDER BY voting_ends_at
            """,
            (now,),
        )
        return [str(row["id"]) for row in self._cur.fetchall()]

    # -- votes --------------------------------------------------------------

    def get_voting_config(self, node_id: str) -> VotingConfig | None:
        self._cur.execute(
            "SELECT required_votes, approval_percentage, voting_duration_hours FROM voting_configs WHERE node_id = %s",
            (node_id,),
        )
        row = self._cur.fetchone()
        if not row:
            return None
        return VotingConfig(
            required_votes=int(row["required_votes"]),
            approval_percentage=float(row["approval_percentage"]),
            voting_duration_hours=int(row["voting_duration_hours"]),
        )

    def save_voting_config(self, node_id: str, config: VotingConfig) -> None:
        self._cur.execute(
            """
            INSERT INTO voting_configs (node_id, required_votes, approval_percentage, voting_duration_hours)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (node_id) DO UPDATE SET
                required_votes = EXCLUDED.required_votes,
                approval_percentage = EXCLUDED.approval_percentage,
                voting_duration_hours = EXCLUDED.voting_duration_hours
            """,
            (node_id, config.required_votes, config.approval_percentage, config.voting_duration_hours),
        )

    def upsert_vote(self, node_id: str, voter_id: str, vote_type: VoteType) -> None:
        self._cur.execute(
            """
            INSERT INTO votes (node_id, voter_id, vote_type)
            VALUES (%s, %s, %s)
            ON CONFLICT (node_id, voter_id) DO UPDATE SET
                vote_type = EXCLUDED.vote_type,
                updated_at = NOW()
            """,
            (node_id, voter_id, vote_type.value),
        )

    def get_tally(self, node_id: str) -> VoteTally:
        self._cur.execute(
            """
            SELECT
                COUNT(*) FILTER (WHERE vote_type = 'approve') AS approve_votes,
                COUNT(*) FILTER (WHERE vote_type = 'reject') AS reject_votes
            FROM votes WHERE node_id = %s
            """,
            (node_id,),
        )
        row = self._cur.fetchone() or {}
        return VoteTally(
            approve_votes=int(row.get("approve_votes") or 0),
            reject_votes=int(row.get("reject_votes") or 0),
        )

    # -- ledger -------------------------------------------------------------

    def account_exists(self, holder_id: str) -> bool:
        self._cur.execute("SELECT 1 FROM token_accounts WHERE holder_id = %s", (holder_id,))
        return self._cur.fetchone() is not None

    def _record_transaction(
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
            created_at=utcnow(),
        )
        self._cur.execute(
            """
            INSERT INTO token_transactions (id, holder_id, amount, direction, kind, source_id, message, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (entry.id, holder_id, amount, direction, kind.value, source_id, message, entry.created_at),
        )
        return entry

    def credit(
        self,
        holder_id: str,
        amount: int,
        source_id: str | None,
        kind: LedgerKind,
        message: str | None = None,
    ) -> LedgerEntry:
        self._cur.execute(
            """
            INSERT INTO token_accounts (holder_id, balance)
            VALUES (%s, %s)
            ON CONFLICT (holder_id) DO UPDATE SET
                balance = token_accounts.balance + EXCLUDED.balance,
                updated_at = NOW()
            """,
            (holder_id, amount),
        )
        return self._record_transaction(holder_id, amount, "credit", source_id, kind, message)

    def debit(
        self,
        holder_id: str,
        amount: int,
        source_id: str | None,
        kind: LedgerKind,
        message: str | None = None,
    ) -> LedgerEntry:
        self._cur.execute(
            """
            UPDATE token_accounts
            SET balance = balance - %s, updated_at = NOW()
            WHERE holder_id = %s AND balance >= %s
            RETURNING balance
            """,
            (amount, holder_id, amount),
        )
        if self._cur.fetchone() is None:
            available = self.get_balance(holder_id)
            raise ValidationException(
                f"Insufficient balance: requested {amount}, available {available}",
                field="amount",
                value=amount,
            )
        return self._record_transaction(holder_id, amount, "debit", source_id, kind, message)

    def get_balance(self, holder_id: str) -> int:
        self._cur.execute("SELECT balance FROM token_accounts WHERE holder_id = %s FOR UPDATE", (holder_id,))
        row = self._cur.fetchone()
        return int(row["balance"]) if row else 0

    def record_distribution(self, shares: Sequence[DistributionShare]) -> None:
        for share in shares:
            self._cur.execute(
                """
                INSERT INTO distribution_ledger
                    (event_id, origin_node_id, recipient_node_id, level, percentage, amount, kind, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    share.event_id,
                    share.origin_node_id,
                    share.recipient_node_id,
                    share.level,
                    share.percentage,
                    share.amount,
                    share.kind.value,
                    share.created_at,
                ),
            )

    def get_distributions(self, event_id: str) -> list[DistributionShare]:
        self._cur.execute(
            """
            SELECT event_id, origin_node_id, recipient_node_id, level, percentage, amount, kind, created_at
            FROM distribution_ledger WHERE event_id = %s ORDER BY level
            """,
            (event_id,),
        )
        return [
            DistributionShare(
                event_id=str(row["event_id"]),
                origin_node_id=str(row["origin_node_id"]),
                recipient_node_id=str(row["recipient_node_id"]),
                level=int(row["level"]),
                percentage=int(row["percentage"]),
                amount=int(row["amount"]),
                kind=LedgerKind(row["kind"]),
                created_at=row["created_at"],
            )
            for row in self._cur.fetchall()
        ]

    # -- audit --------------------------------------------------------------

    def record_status_change(self, change: StatusChange) -> None:
        self._cur.execute(
            """
            INSERT INTO node_status_history (node_id, old_status, new_status, changed_by, reason, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                change.node_id,
                change.old_status.value if change.old_status else None,
                change.new_status.value,
                change.changed_by,
                change.reason,
                change.created_at,
            ),
        )

    def record_donation(self, donation: Donation) -> None:
        self._cur.execute(
            """
            INSERT INTO donations (id, node_id, donor_id, amount_minor, message, status, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                donation.id,
                donation.node_id,
                donation.donor_id,
                donation.amount_minor,
                donation.message,
                donation.status,
                donation.created_at,
            ),
        )


class PostgresTreeStore:
    """Store backed by the pooled connection in :mod:`wishtree.core.db`."""

    @contextmanager
    def unit_of_work(self) -> Generator[PostgresSession, None, None]:
        with get_cursor() as cur:
            yield PostgresSession(cur)
