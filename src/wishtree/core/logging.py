# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Structured logging configuration for Wishtree.

Provides:
- JSON formatter for production (one object per line, machine-parseable)
- Standard formatter for development (human-readable, optionally colored)
- Correlation IDs so every line of one unit of work can be grouped
- The name of the running intent on every line logged inside it
- Sanitized intent logging for user actions (see :class:`IntentLogger`)

Typical use from an entry point::

    configure_logging()
    with correlation_context():
        service.accept(proposal_id, actor, token_amount=400)
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .exceptions import ClosureAlreadyRecorded, WishTreeException

# Context variables are per thread and per task
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_current_intent: ContextVar[str | None] = ContextVar("current_intent", default=None)


def get_correlation_id() -> str | None:
    """Return the correlation ID of the current context.

    Returns:
        The active correlation ID, or None outside any
        :func:`correlation_context`.
    """
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context.

    Prefer :func:`correlation_context`, which restores the previous value.

    Args:
        correlation_id: The correlation ID to set, or None to clear.
    """
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    """Return a new random correlation ID (a UUID4 string)."""
    return str(uuid.uuid4())


def get_current_intent() -> str | None:
    """Return the intent being tracked in this context, if any."""
    return _current_intent.get()


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
) -> Generator[str, None, None]:
    """Scope a correlation ID to a block.

    Nested scopes shadow the outer ID and restore it on exit.

    Args:
        correlation_id: ID to use, for example one received from a caller.
            A new one is generated when None.

    Yields:
        The correlation ID in effect inside the block.

    Example:
        with correlation_context() as cid:
            logger.info("Accepting proposal %s", proposal_id)  # tagged with cid
    """
    cid = correlation_id or generate_correlation_id()
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers.

    Fields: ``timestamp`` (UTC, ISO 8601), ``level``, ``logger`` and
    ``message``, plus when available:

    - ``correlation_id`` and ``intent`` from the current context
    - ``source`` (file, line, function) for WARNING and above
    - ``exception`` with the formatted traceback
    - ``extra`` from a record's ``extra_data`` attribute
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data["correlation_id"] = correlation_id
        intent = get_current_intent()
        if intent:
            log_data["intent"] = intent

        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Readable single-line format for a terminal.

    Lines look like ``2026-03-01 12:00:00 - wishtree.core.service - INFO -
    [1a2b3c4d accept] message``: the bracket holds the first eight characters
    of the correlation ID and, inside an intent, its name. Colors are only
    used when stderr is a TTY.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    CORRELATION_COLOR = "\033[90m"

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers see the untouched record
        record = logging.makeLogRecord(record.__dict__)

        correlation_id = get_correlation_id()
        if correlation_id:
            tag = correlation_id[:8]
            intent = get_current_intent()
            if intent:
                tag = f"{tag} {intent}"
            prefix = f"{self.CORRELATION_COLOR}[{tag}]{self.RESET} " if self.use_colors else f"[{tag}] "
            record.msg = prefix + str(record.msg)

        if self.use_colors:
            record.levelname = f"{self.COLORS.get(record.levelname, '')}{record.levelname}{self.RESET}"

        return super().format(record)


def configure_logging(
    level: str | int = "INFO",
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Install Wishtree's handlers on the root logger.

    Existing root handlers are removed, so calling this twice does not
    duplicate output. Settings come from :func:`~wishtree.core.config.get_config`
    unless passed explicitly.

    Args:
        level: Log level name or number. The default "INFO" defers to
            ``WISHTREE_LOG_LEVEL``.
        json_format: Force JSON (True) or text (False). When None,
            ``WISHTREE_LOG_FORMAT`` decides, falling back to JSON whenever
            stderr is not a terminal.
        log_file: Extra file to append to, always in JSON. Defaults to
            ``WISHTREE_LOG_FILE``.
    """
    from .config import get_config

    config = get_config()

    level = config.log_level if level == "INFO" else level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        format_env = config.log_format.lower()
        if format_env in ("json", "text"):
            json_format = format_env == "json"
        else:
            json_format = not sys.stderr.isatty()

    log_file = config.log_file if log_file is None else log_file

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(JSONFormatter() if json_format else StandardFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # Connection chatter from the driver is rarely useful
    logging.getLogger("psycopg2").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return the named logger.

    Modules normally call ``logging.getLogger(__name__)`` directly; this
    exists for callers that only import from ``wishtree.core``.
    """
    return logging.getLogger(name)


class IntentLogger:
    """Audit trail of user intents (accept, reject, support, cast_vote, ...).

    Every :class:`~wishtree.core.service.WishService` method runs inside
    :meth:`track`, which emits one ``Intent: <action>`` line with the
    arguments and one ``Intent result`` line with the outcome and timing.
    Reasons, messages and other free text are truncated; anything that
    looks like a credential or payment detail is redacted.
    """

    SENSITIVE_PARAMS = {
        "password",
        "secret",
        "api_key",
        "auth",
        "credential",
        "card_number",
        "iban",
    }
    MAX_TEXT_LENGTH = 200

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("wishtree.intents")

    @contextmanager
    def track(self, action: str, arguments: dict[str, Any]) -> Generator[None, None, None]:
        """Log ``action`` on entry and its outcome on exit.

        Log lines emitted inside the block carry the action name. Domain
        errors are logged at WARNING, except a second closure of the same
        node, which breaks a storage invariant and is logged at ERROR.
        Exceptions always propagate.

        Args:
            action: Intent name, usually the service method.
            arguments: Call arguments; sanitized before logging.
        """
        token = _current_intent.set(action)
        self.log_intent(action, arguments)
        start = time.perf_counter()
        try:
            yield
        except ClosureAlreadyRecorded as e:
            self.log_outcome(action, False, _elapsed_ms(start), e.message, level=logging.ERROR)
            raise
        except WishTreeException as e:
            self.log_outcome(action, False, _elapsed_ms(start), e.message, level=logging.WARNING)
            raise
        except Exception as e:
            self.log_outcome(action, False, _elapsed_ms(start), f"{type(e).__name__}: {e}", level=logging.ERROR)
            raise
        else:
            self.log_outcome(action, True, _elapsed_ms(start))
        finally:
            _current_intent.reset(token)

    def log_intent(
        self,
        action: str,
        arguments: dict[str, Any],
        level: int = logging.INFO,
    ) -> None:
        """Log that ``action`` was requested, with sanitized arguments."""
        self.logger.log(
            level,
            f"Intent: {action}",
            extra={"extra_data": {"action": action, "arguments": self._sanitize(arguments)}},
        )

    def log_outcome(
        self,
        action: str,
        success: bool,
        duration_ms: float | None = None,
        error: str | None = None,
        level: int = logging.INFO,
    ) -> None:
        """Log how ``action`` ended.

        Args:
            action: Intent name.
            success: Whether the unit of work committed.
            duration_ms: Wall time of the intent.
            error: Error message for a failed intent.
            level: Log level; callers pass WARNING or ERROR for failures.
        """
        msg = f"Intent result: {action} -> {'success' if success else 'failure'}"
        if duration_ms is not None:
            msg += f" ({duration_ms:.1f}ms)"
        if error:
            msg += f": {error}"

        self.logger.log(
            level,
            msg,
            extra={
                "extra_data": {
                    "action": action,
                    "success": success,
                    "duration_ms": duration_ms,
                    "error": error,
                }
            },
        )

    def _sanitize(self, data: Any) -> Any:
        """Redact sensitive keys and truncate long text, recursively.

        Enum members are logged by value so JSON output stays readable.
        """
        if isinstance(data, dict):
            return {
                key: "[REDACTED]" if any(s in key.lower() for s in self.SENSITIVE_PARAMS) else self._sanitize(value)
                for key, value in data.items()
            }
        if isinstance(data, (list, tuple)):
            return [self._sanitize(item) for item in data]
        if isinstance(data, Enum):
            return data.value
        if isinstance(data, str) and len(data) > self.MAX_TEXT_LENGTH:
            return data[: self.MAX_TEXT_LENGTH] + "..."
        return data


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


intent_logger = IntentLogger()
