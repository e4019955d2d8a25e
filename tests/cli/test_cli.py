"""Tests for the wishtree CLI: parsing, ladder preview, migrate, votes."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest

from wishtree.cli.commands import cmd_ladder, cmd_migrate, cmd_votes
from wishtree.cli.main import app, main
from wishtree.core.exceptions import DatabaseException
from wishtree.core.migrations import MigrationStatus
from wishtree.core.models import Node, NodeStatus

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


# ============================================================================
# Parsing
# ============================================================================


class TestParsing:
    def test_ladder_defaults(self):
        args = app().parse_args(["ladder"])
        assert args.amount == 1000
        assert args.depth is None
        assert args.func is cmd_ladder

    def test_migrate_up(self):
        args = app().parse_args(["migrate", "up", "--to", "001", "--dry-run"])
        assert args.migrate_command == "up"
        assert args.to == "001"
        assert args.dry_run is True
        assert args.func is cmd_migrate

    def test_votes_finalize(self):
        args = app().parse_args(["votes", "finalize", "--json"])
        assert args.votes_command == "finalize"
        assert args.json is True
        assert args.func is cmd_votes

    def test_migrate_requires_subcommand(self):
        with pytest.raises(SystemExit):
            app().parse_args(["migrate"])


class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage: wishtree" in capsys.readouterr().out

    def test_dispatches(self, capsys, clean_env):
        with patch("wishtree.cli.main.configure_logging") as configure:
            assert main(["-v", "ladder", "--amount", "100", "--json"]) == 0
        configure.assert_called_once_with("DEBUG")
        assert json.loads(capsys.readouterr().out)["total_paid"] == 100


# ============================================================================
# ladder
# ============================================================================


class TestLadder:
    """Distribution preview."""

    def test_json_output(self, capsys, clean_env):
        args = app().parse_args(["ladder", "--amount", "1000", "--json"])
        assert cmd_ladder(args) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["ladder"] == [60, 20, 10, 5, 5]
        assert [s["amount"] for s in data["shares"]] == [600, 200, 100, 50, 50]
        assert data["forfeited"] == 0

    def test_short_chain_forfeits(self, capsys, clean_env):
        args = app().parse_args(["ladder", "--depth", "2", "--json"])
        assert cmd_ladder(args) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["total_paid"] == 800
        assert data["forfeited"] == 200

    def test_text_output(self, capsys, clean_env):
        args = app().parse_args(["ladder", "--amount", "7"])
        assert cmd_ladder(args) == 0
        out = capsys.readouterr().out
        assert "Paid:      5" in out
        assert "Forfeited: 2" in out

    def test_custom_ladder(self, capsys, clean_env):
        args = app().parse_args(["ladder", "--ladder", "50,50", "--json"])
        assert cmd_ladder(args) == 0
        assert [s["amount"] for s in json.loads(capsys.readouterr().out)["shares"]] == [500, 500]

    def test_invalid_ladder(self, capsys, clean_env):
        args = app().parse_args(["ladder", "--ladder", "90,20"])
        assert cmd_ladder(args) == 1
        assert "exceeds 100%" in capsys.readouterr().err

    def test_bad_depth(self, capsys, clean_env):
        args = app().parse_args(["ladder", "--depth", "0"])
        assert cmd_ladder(args) == 1

    def test_negative_amount(self, capsys, clean_env):
        args = app().parse_args(["ladder", "--amount", "-5"])
        assert cmd_ladder(args) == 1
        assert "cannot be negative" in capsys.readouterr().err


# ============================================================================
# migrate
# ============================================================================


class TestMigrate:
    def test_up(self, capsys):
        runner = MagicMock()
        runner.up.return_value = ["001"]
        with patch("wishtree.cli.commands.migration._make_runner", return_value=runner):
            assert cmd_migrate(app().parse_args(["migrate", "up"])) == 0
        runner.up.assert_called_once_with(target=None, dry_run=False)
        assert "Applied 1 migration(s)" in capsys.readouterr().out

    def test_up_failure(self, capsys):
        runner = MagicMock()
        runner.up.side_effect = RuntimeError("connection refused")
        with patch("wishtree.cli.commands.migration._make_runner", return_value=runner):
            assert cmd_migrate(app().parse_args(["migrate", "up"])) == 1
        assert "Migration failed: connection refused" in capsys.readouterr().err

    def test_down_to(self):
        runner = MagicMock()
        runner.down.return_value = []
        with patch("wishtree.cli.commands.migration._make_runner", return_value=runner):
            assert cmd_migrate(app().parse_args(["migrate", "down", "--to", "001"])) == 0
        runner.down.assert_called_once_with(target="001", dry_run=False)

    def test_status(self, capsys):
        runner = MagicMock()
        runner.status.return_value = [
            MigrationStatus("001", "initial_schema", "applied", applied_at=NOW),
            MigrationStatus("002", "add_pledges", "pending"),
        ]
        with patch("wishtree.cli.commands.migration._make_runner", return_value=runner):
            assert cmd_migrate(app().parse_args(["migrate", "status"])) == 0
        out = capsys.readouterr().out
        assert "initial_schema" in out
        assert "2026-03-01 12:00:00" in out
        assert "pending" in out

    def test_create(self, capsys, tmp_path):
        with patch("wishtree.cli.commands.migration.DEFAULT_MIGRATIONS_DIR", tmp_path):
            assert cmd_migrate(app().parse_args(["migrate", "create", "add pledges"])) == 0
        assert (tmp_path / "001_add_pledges.py").exists()
        assert "Created migration: 001_add_pledges.py" in capsys.readouterr().out

    def test_bootstrap_refused(self, capsys):
        runner = MagicMock()
        runner.bootstrap.side_effect = DatabaseException("Cannot bootstrap: 1 migration(s) already applied.")
        with patch("wishtree.cli.commands.migration._make_runner", return_value=runner):
            assert cmd_migrate(app().parse_args(["migrate", "bootstrap"])) == 1
        assert "Cannot bootstrap" in capsys.readouterr().err


# ============================================================================
# votes
# ============================================================================


class TestVotes:
    def _node(self, status=NodeStatus.REJECTED):
        return Node(id="p1", creator_id="bob", title="Raised beds", status=status)

    def test_finalize_json(self, capsys):
        service = MagicMock()
        service.finalize_expired_votes.return_value = [self._node()]
        with patch("wishtree.cli.commands.votes._make_service", return_value=service):
            assert cmd_votes(app().parse_args(["votes", "finalize", "--json"])) == 0

        service.finalize_expired_votes.assert_called_once_with(dry_run=False)
        data = json.loads(capsys.readouterr().out)
        assert data == {"dry_run": False, "nodes": [{"id": "p1", "status": "rejected"}]}

    def test_finalize_dry_run_text(self, capsys):
        service = MagicMock()
        service.finalize_expired_votes.return_value = [self._node(NodeStatus.VOTING)]
        with patch("wishtree.cli.commands.votes._make_service", return_value=service):
            assert cmd_votes(app().parse_args(["votes", "finalize", "--dry-run"])) == 0
        out = capsys.readouterr().out
        assert "Would finalize 1 voting session(s)" in out
        assert "Raised beds" in out

    def test_finalize_nothing(self, capsys):
        service = MagicMock()
        service.finalize_expired_votes.return_value = []
        with patch("wishtree.cli.commands.votes._make_service", return_value=service):
            assert cmd_votes(app().parse_args(["votes", "finalize"])) == 0
        assert "No expired voting sessions." in capsys.readouterr().out

    def test_finalize_error(self, capsys):
        with patch("wishtree.cli.commands.votes._make_service", side_effect=DatabaseException("down")):
            assert cmd_votes(app().parse_args(["votes", "finalize"])) == 1
        assert "Finalize failed: down" in capsys.readouterr().err
