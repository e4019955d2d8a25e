# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Custom exception hierarchy for Wishtree.

Every error a user action can produce is a recoverable, user-facing
``WishTreeException``. The service layer raises them from inside a unit of
work, so the enclosing transaction is rolled back before the caller sees
the error.
"""

from __future__ import annotations

from typing import Any


class WishTreeException(Exception):  # noqa: N818
    """Base exception for all Wishtree errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class DatabaseException(WishTreeException):
    """Exception for database-related errors.

    Raised when:
    - Database connection fails
    - Query execution fails
    - Transaction errors occur
    """

    pass


class ConfigException(WishTreeException):
    """Exception for configuration errors.

    Raised when:
    - Required environment variables are missing
    - A setting cannot be parsed (e.g. a malformed distribution ladder)
    """

    def __init__(self, message: str, missing_vars: list[str] | None = None):
        details = {}
        if missing_vars:
            details["missing_vars"] = missing_vars
        super().__init__(message, details)
        self.missing_vars = missing_vars or []


class ValidationException(WishTreeException):
    """Exception for bad input values.

    Raised when:
    - A token amount is negative, fractional, over the balance or over the cap
    - A title or reason fails its length checks
    - A voting configuration is out of range
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class NotFoundError(WishTreeException):
    """Exception for resource not found errors.

    Raised when:
    - Requested node doesn't exist
    - A proposal's parent doesn't exist
    - A voting configuration is missing for a node in voting
    """

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidTransition(WishTreeException):  # noqa: N818
    """The (status, action) pair is not in the transition table."""

    def __init__(self, status: str, action: str, node_id: str | None = None):
        message = f"Cannot {action} a node in status '{status}'"
        details = {"status": status, "action": action}
        if node_id:
            details["node_id"] = node_id
        super().__init__(message, details)
        self.status = status
        self.action = action
        self.node_id = node_id


class Unauthorized(WishTreeException):  # noqa: N818
    """The actor lacks the role or relationship the action requires."""

    def __init__(self, action: str, actor_id: str, required: list[str] | tuple[str, ...]):
        required = list(required)
        message = f"Actor {actor_id} may not {action} (requires one of: {', '.join(required)})"
        details = {"action": action, "actor_id": actor_id, "required": required}
        super().__init__(message, details)
        self.action = action
        self.actor_id = actor_id
        self.required = required


class PreconditionFailed(WishTreeException):  # noqa: N818
    """A guard on an otherwise legal transition did not hold.

    Examples: retracting while descendants are still open, rejecting
    without a reason, resolving a vote that has not met its threshold.
    """

    def __init__(self, message: str, precondition: str | None = None):
        details = {}
        if precondition:
            details["precondition"] = precondition
        super().__init__(message, details)
        self.precondition = precondition


class AlreadyTerminal(WishTreeException):  # noqa: N818
    """A mutation was attempted on a node that is already closed."""

    def __init__(self, node_id: str, status: str, message: str | None = None):
        message = message or f"Node {node_id} is already closed ({status})"
        super().__init__(message, {"node_id": node_id, "status": status})
        self.node_id = node_id
        self.status = status


class ClosureAlreadyRecorded(AlreadyTerminal):
    """Closure fields were about to be written a second time.

    This is an internal invariant violation, not a user error: callers log
    it at ERROR and never retry.
    """

    def __init__(self, node_id: str, status: str):
        super().__init__(
            node_id,
            status,
            message=f"Closure already recorded for node {node_id} ({status})",
        )
