"""Versioned schema migrations for the Wishtree PostgreSQL store.

Each file in the migrations directory is named ``NNN_description.py`` and
defines:

    version: str       e.g. "001"
    description: str   human-readable name
    def up(conn)       apply (receives a psycopg2 connection)
    def down(conn)     revert

Applied versions are tracked in ``_migrations`` together with a checksum of
the file, so a migration edited after it ran shows up as
``checksum_mismatch`` in :meth:`MigrationRunner.status`.

Usage:
    runner = MigrationRunner()
    runner.up()              # apply all pending
    runner.down(target="001")
    runner.status()
"""

from __future__ import annotations

import hashlib
import importlib.util
import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from types import ModuleType
from typing import Any

from psycopg2.extras import RealDictCursor

from .exceptions import DatabaseException

logger = logging.getLogger(__name__)

MIGRATIONS_TABLE = "_migrations"

# <repo_root>/migrations
DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parent.parent.parent.parent / "migrations"


@dataclass
class MigrationInfo:
    """A migration file found on disk."""

    version: str
    description: str
    checksum: str
    file_path: Path
    module: ModuleType

    def __lt__(self, other: MigrationInfo) -> bool:
        return self.version < other.version


@dataclass
class AppliedMigration:
    version: str
    description: str
    checksum: str
    applied_at: datetime


@dataclass
class MigrationStatus:
    """Status of a single migration: applied, pending, or checksum mismatch."""

    version: str
    description: str
    state: str  # "applied", "pending", "checksum_mismatch"
    applied_at: datetime | None = None
    file_checksum: str | None = None
    db_checksum: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "state": self.state,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
        }


class MigrationRunner:
    """Discovers, tracks, and applies migrations.

    Args:
        migrations_dir: Directory holding ``NNN_description.py`` files.
            Defaults to the repository's ``migrations/``.
        connection_factory: Zero-argument callable returning a psycopg2
            connection, closed after use. When omitted, connections are
            borrowed from the pool in :mod:`wishtree.core.db`.
    """

    def __init__(
        self,
        migrations_dir: str | Path | None = None,
        connection_factory: Callable[[], Any] | None = None,
    ):
        self.migrations_dir = Path(migrations_dir) if migrations_dir is not None else DEFAULT_MIGRATIONS_DIR
        self._connection_factory = connection_factory
        self._migrations: list[MigrationInfo] | None = None

    @contextmanager
    def _connection(self) -> Generator[Any, None, None]:
        if self._connection_factory is not None:
            conn = self._connection_factory()
            try:
                yield conn
            finally:
                conn.close()
            return

        from .db import get_connection

        with get_connection() as conn:
            yield conn

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    @staticmethod
    def _compute_checksum(file_path: Path) -> str:
        return hashlib.sha256(file_path.read_bytes()).hexdigest()[:16]

    @staticmethod
    def _load_module(file_path: Path) -> ModuleType:
        module_name = f"wishtree_migration_{file_path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if spec is None or spec.loader is None:
            raise ValueError(f"Cannot load migration: {file_path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    def discover(self) -> list[MigrationInfo]:
        """All migration files in ``migrations_dir``, sorted by version."""
        if self._migrations is not None:
            return self._migrations

        if not self.migrations_dir.is_dir():
            logger.warning("Migrations directory not found: %s", self.migrations_dir)
            self._migrations = []
            return []

        migrations: list[MigrationInfo] = []
        for path in sorted(self.migrations_dir.glob("*.py")):
            if path.name.startswith("__"):
                continue
            prefix = path.stem.split("_", 1)
            if len(prefix) < 2 or not prefix[0].isdigit():
                logger.debug("Skipping non-migration file: %s", path.name)
                continue

            module = self._load_module(path)
            missing = [attr for attr in ("version", "description", "up", "down") if not hasattr(module, attr)]
            if missing:
                raise ValueError(f"Migration {path.name} missing required attribute(s): {', '.join(missing)}")

            migrations.append(
                MigrationInfo(
                    version=module.version,
                    description=module.description,
                    checksum=self._compute_checksum(path),
                    file_path=path,
                    module=module,
                )
            )

        migrations.sort()
        self._migrations = migrations
        return migrations

    def invalidate_cache(self) -> None:
        self._migrations = None

    # ------------------------------------------------------------------
    # Tracking table
    # ------------------------------------------------------------------

    def _ensure_table(self, conn: Any) -> None:
        with conn.cursor() as cur:
            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
                    version TEXT PRIMARY KEY,
                    description TEXT NOT NULL,
                    checksum TEXT NOT NULL,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
        conn.commit()

    def _get_applied(self, conn: Any) -> list[AppliedMigration]:
        self._ensure_table(conn)
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT version, description, checksum, applied_at FROM {MIGRATIONS_TABLE} ORDER BY version")
            return [
                AppliedMigration(
                    version=row["version"],
                    description=row["description"],
                    checksum=row["checksum"],
                    applied_at=row["applied_at"],
                )
                for row in cur.fetchall()
            ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def status(self) -> list[MigrationStatus]:
        """Status of every discovered migration."""
        migrations = self.discover()
        with self._connection() as conn:
            applied = {m.version: m for m in self._get_applied(conn)}

        result: list[MigrationStatus] = []
        for m in migrations:
            record = applied.get(m.version)
            if record is None:
                result.append(MigrationStatus(m.version, m.description, "pending", file_checksum=m.checksum))
                continue
            result.append(
                MigrationStatus(
                    version=m.version,
                    description=m.description,
                    state="applied" if record.checksum == m.checksum else "checksum_mismatch",
                    applied_at=record.applied_at,
                    file_checksum=m.checksum,
                    db_checksum=record.checksum,
                )
            )
        return result

    def pending(self) -> list[MigrationInfo]:
        migrations = self.discover()
        with self._connection() as conn:
            applied = {m.version for m in self._get_applied(conn)}
        return [m for m in migrations if m.version not in applied]

    def up(self, *, target: str | None = None, dry_run: bool = False) -> list[str]:
        """Apply pending migrations up to ``target`` (inclusive), or all.

        Each migration commits on its own; a failing one is rolled back and
        the error re-raised, leaving earlier ones applied.
        """
        migrations = self.discover()
        done: list[str] = []

        with self._connection() as conn:
            applied = {m.version for m in self._get_applied(conn)}
            to_apply = [m for m in migrations if m.version not in applied and (target is None or m.version <= target)]

            if not to_apply:
                logger.info("No pending migrations to apply")
                return []

            for migration in to_apply:
                if dry_run:
                    logger.info("[DRY RUN] Would apply %s: %s", migration.version, migration.description)
                    done.append(migration.version)
                    continue

                logger.info("Applying migration %s: %s", migration.version, migration.description)
                try:
                    migration.module.up(conn)
                    with conn.cursor() as cur:
                        cur.execute(
                            f"INSERT INTO {MIGRATIONS_TABLE} (version, description, checksum) VALUES (%s, %s, %s)",
                            (migration.version, migration.description, migration.checksum),
                        )
                    conn.commit()
                except Exception:
                    conn.rollback()
                    logger.exception("Migration %s failed", migration.version)
                    raise
                done.append(migration.version)

        return done

    def down(self, *, target: str | None = None, dry_run: bool = False) -> list[str]:
        """Revert migrations newer than ``target``, or only the latest one."""
        migration_map = {m.version: m for m in self.discover()}
        done: list[str] = []

        with self._connection() as conn:
            applied = sorted((m.version for m in self._get_applied(conn)), reverse=True)
            to_revert = [v for v in applied if v > target] if target else applied[:1]

            if not to_revert:
                logger.info("No migrations to roll back")
                return []

            for version in to_revert:
                migration = migration_map.get(version)
                if migration is None:
                    logger.warning("Migration file for version %s not found, skipping rollback", version)
                    continue

                if dry_run:
                    logger.info("[DRY RUN] Would roll back %s: %s", version, migration.description)
                    done.append(version)
                    continue

                logger.info("Rolling back migration %s: %s", version, migration.description)
                try:
                    migration.module.down(conn)
                    with conn.cursor() as cur:
                        cur.execute(f"DELETE FROM {MIGRATIONS_TABLE} WHERE version = %s", (version,))
                    conn.commit()
                except Exception:
                    conn.rollback()
                    logger.exception("Rollback of %s failed", version)
                    raise
                done.append(version)

        return done

    def bootstrap(self, *, dry_run: bool = False) -> list[str]:
        """Apply every migration to an empty database.

        Raises:
            DatabaseException: If any migration is already applied.
        """
        with self._connection() as conn:
            applied = self._get_applied(conn)
        if applied:
            raise DatabaseException(
                f"Cannot bootstrap: {len(applied)} migration(s) already applied. Use 'migrate up' instead.",
                {"applied": [m.version for m in applied]},
            )
        return self.up(dry_run=dry_run)

    @staticmethod
    def create_migration(migrations_dir: str | Path, name: str) -> Path:
        """Write an empty ``NNN_name.py`` with the next free version number."""
        migrations_dir = Path(migrations_dir)
        migrations_dir.mkdir(parents=True, exist_ok=True)

        next_num = 1
        for f in migrations_dir.glob("*.py"):
            prefix = f.stem.split("_", 1)[0]
            if prefix.isdigit():
                next_num = max(next_num, int(prefix) + 1)

        safe_name = name.lower().replace(" ", "_").replace("-", "_")
        version = f"{next_num:03d}"
        file_path = migrations_dir / f"{version}_{safe_name}.py"

        file_path.write_text(
            f'''"""Migration {version}: {name}."""

version = "{version}"
description = "{safe_name}"


def up(conn) -> None:
    with conn.cursor() as cur:
        cur.execute("SELECT 1")


def down(conn) -> None:
    with conn.cursor() as cur:
        cur.execute("SELECT 1")
'''
        )
        return file_path
