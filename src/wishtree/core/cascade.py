"""Closing a node together with its open descendants.

The subtree is walked breadth-first over ids fetched from the store, with
an explicit queue and a visited set: no recursion, and a malformed cycle
in ``parent_id`` cannot make the walk revisit a node.

Descendants that are still open are cancelled with a reason derived from
the caller's, so closure records show which nodes were closed directly and
which were closed because their parent was. Descendants already in a
terminal status are left exactly as they are.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime

from .exceptions import AlreadyTerminal, PreconditionFailed, Unauthorized
from .models import Actor, ActorRole, Node, NodeStatus, StatusChange, utcnow
from .store import StoreSession

logger = logging.getLogger(__name__)

CASCADE_REASON_PREFIX = "Parent wish was closed"

# Statuses a caller may close the root into
CLOSE_STATUSES = (NodeStatus.ACCEPTED, NodeStatus.REJECTED, NodeStatus.CANCELLED)


def cascade_reason(reason: str) -> str:
    return f"{CASCADE_REASON_PREFIX}: {reason}"


@dataclass
class CascadeResult:
    root: Node
    cascaded: list[Node] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)  # descendants already terminal

    @property
    def closed_ids(self) -> list[str]:
        return [self.root.id] + [n.id for n in self.cascaded]


def iter_descendants(session: StoreSession, node_id: str) -> Iterator[Node]:
    """Yield every descendant of ``node_id`` once, breadth-first."""
    visited = {node_id}
    queue: deque[str] = deque([node_id])
    while queue:
        current = queue.popleft()
        for child in session.get_children(current):
            if child.id in visited:
                logger.warning("Cycle in tree below %s at %s; skipping", node_id, child.id)
                continue
            visited.add(child.id)
            queue.append(child.id)
            yield child


def count_open_descendants(session: StoreSession, node_id: str) -> int:
    return sum(1 for node in iter_descendants(session, node_id) if not node.is_terminal)


def close_with_children(
    session: StoreSession,
    node: Node,
    actor: Actor,
    reason: str,
    *,
    cascade: bool = False,
    status: NodeStatus = NodeStatus.ACCEPTED,
    now: datetime | None = None,
) -> CascadeResult:
    """Close ``node`` and, when ``cascade`` is set, every open descendant.

    Must run inside the caller's unit of work; nothing here commits.

    Args:
        session: Open store session.
        node: Node to close; must not be terminal.
        actor: Its creator or an administrator.
        reason: Closure reason recorded on ``node``.
        cascade: Also cancel open descendants.
        status: Terminal status for ``node`` (accepted, rejected or cancelled).
        now: Clock override.

    Raises:
        AlreadyTerminal: ``node`` is already closed.
        Unauthorized: Actor is neither the creator nor an administrator.
        PreconditionFailed: Empty reason or unsupported status.
    """
    if node.is_terminal:
        raise AlreadyTerminal(node.id, node.status.value)
    if actor.role != ActorRole.CREATOR and not actor.is_admin:
        raise Unauthorized("close", actor.actor_id, [ActorRole.CREATOR.value, "admin"])
    if status not in CLOSE_STATUSES:
        raise PreconditionFailed(
            f"Cannot close a node into status '{status.value}'",
            precondition="close_status",
        )
    if not reason or not reason.strip():
        raise PreconditionFailed("A reason is required to close a node", precondition="reason_required")

    now = now or utcnow()
    reason = reason.strip()

    closed = node.close(status, actor.actor_id, reason, now=now)
    _persist(session, node, closed, actor, reason, now)
    result = CascadeResult(root=closed)

    if not cascade:
        return result

    derived = cascade_reason(reason)
    for found in iter_descendants(session, node.id):
        # Re-read under lock; the traversal snapshot may be stale.
        child = session.get_for_update(found.id)
        if child is None:
            continue
        if child.is_terminal:
            result.skipped.append(child.id)
            continue
        cancelled = child.close(NodeStatus.CANCELLED, actor.actor_id, derived, now=now)
        _persist(session, child, cancelled, actor, derived, now)
        result.cascaded.append(cancelled)

    logger.info(
        "Closed %s as %s, cascaded to %d descendants (%d already closed)",
        node.id,
        status.value,
        len(result.cascaded),
        len(result.skipped),
    )
    return result


def _persist(session: StoreSession, before: Node, after: Node, actor: Actor, reason: str, now: datetime) -> None:
    session.save(after)
    session.record_status_change(
        StatusChange(
            node_id=after.id,
            old_status=before.status,
            new_status=after.status,
            changed_by=actor.actor_id,
            reason=reason,
            created_at=now,
        )
    )
