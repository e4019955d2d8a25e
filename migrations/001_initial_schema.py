"""Migration 001: Initial schema.

Tables:
- nodes                  wishes and proposals (self-referencing tree)
- voting_configs         per-node voting thresholds
- votes                  one row per (node, voter)
- token_accounts         balances for users and nodes
- token_transactions     credit/debit history
- distribution_ledger    per-level shares of every support event
- donations              tracked money support (capture disabled)
- node_status_history    one row per status change
"""

version = "001"
description = "initial_schema"


def up(conn) -> None:
    with conn.cursor() as cur:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS nodes (
                id TEXT PRIMARY KEY,
                parent_id TEXT REFERENCES nodes(id) ON DELETE RESTRICT,
                creator_id TEXT NOT NULL,
                title TEXT NOT NULL CHECK (char_length(title) BETWEEN 3 AND 200),
                description TEXT,
                node_type TEXT NOT NULL DEFAULT 'wish' CHECK (node_type IN ('wish', 'proposal')),
                status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN (
                    'draft', 'active', 'voting', 'accepted', 'rejected',
                    'retracted', 'cancelled', 'approved_by_vote'
                )),
                settlement_type TEXT CHECK (settlement_type IN ('full_settlement', 'partial_contribution')),
                token_count BIGINT NOT NULL DEFAULT 0 CHECK (token_count >= 0),
                tokens_distributed BIGINT NOT NULL DEFAULT 0 CHECK (tokens_distributed >= 0),
                tokens_received_on_acceptance BIGINT NOT NULL DEFAULT 0,
                expires_at TIMESTAMPTZ,
                voting_enabled BOOLEAN NOT NULL DEFAULT FALSE,
                voting_ends_at TIMESTAMPTZ,
                closed_at TIMESTAMPTZ,
                closed_by TEXT,
                closure_reason TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                CHECK (node_type = 'wish' OR parent_id IS NOT NULL)
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes(parent_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_nodes_status ON nodes(status)")
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_nodes_voting_ends ON nodes(voting_ends_at) WHERE status = 'voting'"
        )

        cur.execute("""
            CREATE TABLE IF NOT EXISTS voting_configs (
                node_id TEXT PRIMARY KEY REFERENCES nodes(id) ON DELETE CASCADE,
                required_votes INTEGER NOT NULL DEFAULT 10 CHECK (required_votes > 0),
                approval_percentage NUMERIC(5, 2) NOT NULL DEFAULT 60
                    CHECK (approval_percentage > 0 AND approval_percentage <= 100),
                voting_duration_hours INTEGER NOT NULL DEFAULT 168 CHECK (voting_duration_hours > 0),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS votes (
                node_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
                voter_id TEXT NOT NULL,
                vote_type TEXT NOT NULL CHECK (vote_type IN ('approve', 'reject')),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                PRIMARY KEY (node_id, voter_id)
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS token_accounts (
                holder_id TEXT PRIMARY KEY,
                balance BIGINT NOT NULL DEFAULT 0 CHECK (balance >= 0),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS token_transactions (
                id TEXT PRIMARY KEY,
                holder_id TEXT NOT NULL,
                amount BIGINT NOT NULL CHECK (amount >= 0),
                direction TEXT NOT NULL CHECK (direction IN ('credit', 'debit')),
                kind TEXT NOT NULL,
                source_id TEXT,
                message TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_token_tx_holder ON token_transactions(holder_id, created_at)")

        cur.execute("""
            CREATE TABLE IF NOT EXISTS distribution_ledger (
                id BIGSERIAL PRIMARY KEY,
                event_id TEXT NOT NULL,
                origin_node_id TEXT NOT NULL,
                recipient_node_id TEXT NOT NULL,
                level INTEGER NOT NULL CHECK (level >= 0),
                percentage INTEGER NOT NULL,
                amount BIGINT NOT NULL CHECK (amount > 0),
                kind TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                UNIQUE (event_id, level)
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_distribution_recipient ON distribution_ledger(recipient_node_id)")

        cur.execute("""
            CREATE TABLE IF NOT EXISTS donations (
                id TEXT PRIMARY KEY,
                node_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
                donor_id TEXT NOT NULL,
                amount_minor BIGINT NOT NULL CHECK (amount_minor > 0),
                message TEXT,
                status TEXT NOT NULL DEFAULT 'tracked',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS node_status_history (
                id BIGSERIAL PRIMARY KEY,
                node_id TEXT NOT NULL,
                old_status TEXT,
                new_status TEXT NOT NULL,
                changed_by TEXT NOT NULL,
                reason TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_status_history_node ON node_status_history(node_id, created_at)")


def down(conn) -> None:
    with conn.cursor() as cur:
        for table in (
            "node_status_history",
            "donations",
            "distribution_ledger",
            "token_transactions",
            "token_accounts",
            "votes",
            "voting_configs",
            "nodes",
        ):
            cur.execute(f"DROP TABLE IF EXISTS {table}")
