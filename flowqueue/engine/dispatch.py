#!/usr/bin/env python3
"""
Dispatch Service: Atomic Claiming

Hands the next eligible work item of a queue to a requesting agent:
  BEGIN IMMEDIATE + count in_progress + UPDATE ... WHERE status = 'queued' RETURNING *

Concurrent dispatchers (separate processes sharing the database file) are
serialized by the reserved lock taken at BEGIN IMMEDIATE, and the claim
itself is a single guarded UPDATE that re-checks both the item status and the
queue's in-progress count. No interleaving can push a queue past its
max_parallel_items.

Dispatch order within a queue:
1. priority ascending (lower = more urgent)
2. enqueue_seq ascending (admission order)

queued_at is informational; ordering never depends on the wall clock.

"Nothing to do" outcomes are data, not errors: ClaimNone carries one of the
reasons in NoWorkReason (paused, empty, parallel-limit-reached).
"""

import logging
import sqlite3

from . import audit
from .models import ItemStatus, NoWorkReason, WorkItem
from .registry import get_queue
from .schema import NOW_SQL, immediate_transaction

logger = logging.getLogger(__name__)

# Guarded updates that lose a race are retried this many times
MAX_CLAIM_ATTEMPTS = 3


# ---------------------------------------------------------------------------
# Claim result types
# ---------------------------------------------------------------------------


class ClaimSuccess:
    """Agent successfully claimed a work item."""

    def __init__(self, item: WorkItem):
        self.item = item
        self.success = True

    def __str__(self) -> str:
        return (
            f"Claimed {self.item.item_type} {self.item.item_id} "
            f"(work item {self.item.id}) for agent '{self.item.agent_id}'"
        )


class ClaimNone:
    """No work was handed out; `reason` says why."""

    def __init__(
        self,
        queue_id: int,
        reason: str,
        in_progress: int | None = None,
        max_parallel_items: int | None = None,
    ):
        self.queue_id = queue_id
        self.reason = reason
        self.in_progress = in_progress
        self.max_parallel_items = max_parallel_items
        self.success = False

    def __str__(self) -> str:
        if self.reason == NoWorkReason.PAUSED:
            return f"Queue {self.queue_id} is paused"
        if self.reason == NoWorkReason.PARALLEL_LIMIT_REACHED:
            return (
                f"Queue {self.queue_id} is at its parallel limit "
                f"({self.in_progress}/{self.max_parallel_items} in progress)"
            )
        return f"Queue {self.queue_id} has no queued items"


# ---------------------------------------------------------------------------
# Atomic claim query
# ---------------------------------------------------------------------------

_CLAIM_NEXT_SQL = f"""
UPDATE work_items
SET status        = 'in_progress',
    agent_id      = :agent_id,
    started_at    = {NOW_SQL},
    attempt_count = attempt_count + 1,
    updated_at    = datetime('now')
WHERE id = (
    SELECT id FROM work_items
    WHERE queue_id = :queue_id
      AND status = 'queued'
    ORDER BY priority ASC, enqueue_seq ASC
    LIMIT 1
)
  AND status = 'queued'
  AND (
      SELECT COUNT(*) FROM work_items
      WHERE queue_id = :queue_id AND status = 'in_progress'
  ) < :max_parallel_items
RETURNING *
"""


def _count(conn: sqlite3.Connection, queue_id: int, status: str) -> int:
    return conn.execute(
        "SELECT COUNT(*) FROM work_items WHERE queue_id = ? AND status = ?",
        (queue_id, status),
    ).fetchone()[0]


def get_next(
    conn: sqlite3.Connection,
    queue_id: int,
    agent_id: str,
) -> ClaimSuccess | ClaimNone:
    """
    Atomically claim the next eligible item of a queue for agent_id.

    The caller must NOT already be in a transaction.

    Returns:
        ClaimSuccess with the claimed WorkItem, or ClaimNone with a reason.

    Raises:
        QueueNotFoundError: queue does not exist
        ValueError: empty agent_id
    """
    if not agent_id:
        raise ValueError("agent_id must be a non-empty string")

    for attempt in range(1, MAX_CLAIM_ATTEMPTS + 1):
        with immediate_transaction(conn, "get_next"):
            queue = get_queue(conn, queue_id)
            if not queue.is_active:
                return ClaimNone(queue_id, NoWorkReason.PAUSED)

            in_progress = _count(conn, queue_id, ItemStatus.IN_PROGRESS)
            if in_progress >= queue.max_parallel_items:
                return ClaimNone(
                    queue_id,
                    NoWorkReason.PARALLEL_LIMIT_REACHED,
                    in_progress,
                    queue.max_parallel_items,
                )

            row = conn.execute(
                _CLAIM_NEXT_SQL,
                {
                    "agent_id": agent_id,
                    "queue_id": queue_id,
                    "max_parallel_items": queue.max_parallel_items,
                },
            ).fetchone()

            if row is None:
                if _count(conn, queue_id, ItemStatus.QUEUED) == 0:
                    return ClaimNone(queue_id, NoWorkReason.EMPTY)
                logger.debug("Claim attempt %d on queue %s lost a race, retrying",
                             attempt, queue_id)
                continue

            item = WorkItem.from_row(row)
            audit.log(
                conn,
                actor=agent_id,
                action="claim_item",
                entity_type="work_item",
                entity_id=item.id,
                old_state=ItemStatus.QUEUED,
                new_state=ItemStatus.IN_PROGRESS,
                details={
                    "queue_id": queue_id,
                    "item_type": item.item_type,
                    "item_id": item.item_id,
                    "attempt_count": item.attempt_count,
                },
            )

        logger.info("Agent %s claimed %s %s from queue %s",
                    agent_id, item.item_type, item.item_id, queue_id)
        return ClaimSuccess(item)

    return ClaimNone(queue_id, NoWorkReason.EMPTY)


def peek_next(
    conn: sqlite3.Connection,
    queue_id: int,
    limit: int = 20,
) -> list[WorkItem]:
    """
    List a queue's queued items in dispatch order.

    Does NOT claim: read-only preview of what get_next would hand out.
    """
    get_queue(conn, queue_id)
    rows = conn.execute(
        """
        SELECT * FROM work_items
        WHERE queue_id = :queue_id AND status = 'queued'
        ORDER BY priority ASC, enqueue_seq ASC
        LIMIT :limit
        """,
        {"queue_id": queue_id, "limit": limit},
    ).fetchall()
    return [WorkItem.from_row(r) for r in rows]
