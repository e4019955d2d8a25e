"""Shared helpers for CLI commands."""

from __future__ import annotations

import json
import sys
from typing import Any


def get_db_connection():
    """Open a standalone connection using config (closed by the caller)."""
    import psycopg2
    from psycopg2.extras import RealDictCursor

    from ..core.config import get_config

    config = get_config()
    return psycopg2.connect(
        **config.connection_params,
        cursor_factory=RealDictCursor,
    )


def output_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def output_error(message: str) -> None:
    """Print error message to stderr."""
    print(f"Error: {message}", file=sys.stderr)
