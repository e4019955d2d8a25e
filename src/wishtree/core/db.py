# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""PostgreSQL connection management for Wishtree.

Connection settings come from ``WISHTREE_DB_*`` via :func:`get_config`.
One lazily created ``ThreadedConnectionPool`` is shared per process.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2 import pool as psycopg2_pool
from psycopg2.extras import RealDictCursor
from psycopg2.pool import PoolError

from .config import get_config
from .exceptions import DatabaseException

logger = logging.getLogger(__name__)

# Connection pool (lazy init, thread-safe)
_pool: psycopg2_pool.ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> psycopg2_pool.ThreadedConnectionPool:
    """Get or create the connection pool."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                config = get_config()
                try:
                    _pool = psycopg2_pool.ThreadedConnectionPool(
                        **config.pool_config,
                        **config.connection_params,
                    )
                except psycopg2.OperationalError as e:
                    raise DatabaseException(
                        f"Cannot connect to {config.db_host}:{config.db_port}/{config.db_name}",
                        {"error": str(e)},
                    ) from e
                logger.debug("Created connection pool (%s)", config.pool_config)
    return _pool


def _get_conn_with_timeout(pool: psycopg2_pool.ThreadedConnectionPool, timeout: int) -> Any:
    """Get a connection from the pool, giving up after ``timeout`` seconds.

    Raises:
        PoolError: If no connection became available in time.
    """
    result_queue: queue.Queue = queue.Queue()

    def _get_conn() -> None:
        try:
            result_queue.put(("success", pool.getconn()))
        except Exception as e:
            result_queue.put(("error", e))

    thread = threading.Thread(target=_get_conn, daemon=True)
    thread.start()

    try:
        result_type, result_value = result_queue.get(timeout=timeout)
    except queue.Empty:
        raise PoolError(f"Connection pool timeout after {timeout} seconds")
    if result_type == "error":
        raise result_value
    return result_value


def _validate_connection(conn: Any) -> bool:
    """True if ``conn`` is open and answers ``SELECT 1``."""
    if conn.closed:
        return False
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        return True
    except psycopg2.Error:
        return False


def _get_healthy_connection(pool: psycopg2_pool.ThreadedConnectionPool, timeout: int) -> Any:
    """Get a connection, discarding stale ones (up to three attempts)."""
    max_attempts = 3
    for _ in range(max_attempts):
        conn = _get_conn_with_timeout(pool, timeout)
        if _validate_connection(conn):
            return conn
        logger.debug("Discarding stale pooled connection")
        pool.putconn(conn, close=True)
    raise PoolError("Failed to get healthy connection after multiple attempts")


@contextmanager
def get_cursor() -> Generator[Any, None, None]:
    """Yield a dict cursor inside one transaction.

    Commits on normal exit, rolls back and re-raises on any exception.

    Usage:
        with get_cursor() as cur:
            cur.execute("SELECT * FROM nodes WHERE id = %s", (node_id,))
            row = cur.fetchone()
    """
    pool = _get_pool()
    conn = _get_healthy_connection(pool, get_config().db_pool_timeout)
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


@contextmanager
def get_connection() -> Generator[Any, None, None]:
    """Yield a raw pooled connection, for callers that manage transactions (migrations)."""
    pool = _get_pool()
    conn = _get_healthy_connection(pool, get_config().db_pool_timeout)
    try:
        yield conn
    finally:
        pool.putconn(conn)


def close_pool() -> None:
    """Close the connection pool."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None


def check_connection() -> bool:
    """Check if the database is reachable."""
    try:
        with get_cursor() as cur:
            cur.execute("SELECT 1")
        return True
    except (psycopg2.Error, PoolError, DatabaseException) as e:
        logger.debug("Database check failed: %s", e)
        return False
