"""Global test fixtures for the Wishtree test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta

import pytest

from wishtree.core.config import clear_config_cache
from wishtree.core.memory_store import InMemoryTreeStore
from wishtree.core.models import Actor, ActorRole, Node, NodeStatus, NodeType
from wishtree.core.service import WishService

# ============================================================================
# PostgreSQL Availability Detection
# ============================================================================


def _check_postgres_available() -> tuple[bool, str | None]:
    """Check if PostgreSQL is reachable with the WISHTREE_DB_* settings.

    Returns:
        Tuple of (is_available, error_message)
    """
    import psycopg2

    try:
        conn = psycopg2.connect(
            host=os.environ.get("WISHTREE_DB_HOST", "localhost"),
            port=int(os.environ.get("WISHTREE_DB_PORT", "5432")),
            dbname=os.environ.get("WISHTREE_DB_NAME", "wishtree"),
            user=os.environ.get("WISHTREE_DB_USER", "wishtree"),
            password=os.environ.get("WISHTREE_DB_PASSWORD", ""),
            connect_timeout=3,
        )
        conn.close()
        return True, None
    except psycopg2.OperationalError as e:
        return False, f"PostgreSQL connection failed: {e}"


POSTGRES_AVAILABLE, POSTGRES_ERROR = _check_postgres_available()


def pytest_configure(config):
    config.addinivalue_line("markers", "requires_postgres: mark test as requiring a real PostgreSQL database")


def pytest_collection_modifyitems(config, items):
    """Skip requires_postgres tests when no database is reachable."""
    if POSTGRES_AVAILABLE:
        return

    skip_postgres = pytest.mark.skip(reason=f"PostgreSQL not available: {POSTGRES_ERROR}")
    for item in items:
        if "requires_postgres" in item.keywords:
            item.add_marker(skip_postgres)


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_config():
    """Every test starts and ends with a fresh settings singleton."""
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all WISHTREE_ environment variables."""
    for key in list(os.environ.keys()):
        if key.startswith("WISHTREE_"):
            monkeypatch.delenv(key, raising=False)


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Settable clock for deterministic deadlines."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Store and Service Fixtures
# ============================================================================


@pytest.fixture
def store() -> InMemoryTreeStore:
    return InMemoryTreeStore()


@pytest.fixture
def service(store, clock) -> WishService:
    return WishService(store, clock=clock)


@pytest.fixture
def alice() -> Actor:
    """Creator of the root wish."""
    return Actor("alice", ActorRole.CREATOR)


@pytest.fixture
def alice_as_parent() -> Actor:
    """Alice acting on a proposal under her wish."""
    return Actor("alice", ActorRole.PARENT_CREATOR)


@pytest.fixture
def bob() -> Actor:
    """Author of proposals."""
    return Actor("bob", ActorRole.CREATOR)


@pytest.fixture
def admin() -> Actor:
    return Actor("root", ActorRole.ADMIN)


def _make_node(**overrides) -> Node:
    defaults = {
        "id": "node-1",
        "creator_id": "alice",
        "title": "Community garden",
        "node_type": NodeType.WISH,
        "status": NodeStatus.ACTIVE,
    }
    defaults.update(overrides)
    return Node(**defaults)


@pytest.fixture
def make_node():
    """Factory building a Node with sensible defaults for store-less tests."""
    return _make_node
