#!/usr/bin/env python3
"""
Queue Statistics

Read-side views over work_items. Queue aggregates (total_completed_items,
average_processing_time) are always recomputed from the items themselves,
never incremented, so a crashed agent can never leave them drifted.
"""

import logging
import sqlite3
from typing import Any

from .errors import InvalidReferenceError
from .models import ItemStatus, ItemType
from .registry import get_queue
from .schema import immediate_transaction

logger = logging.getLogger(__name__)


def get_queue_stats(conn: sqlite3.Connection, queue_id: int) -> dict[str, Any]:
    """Per-status item counts and the agents currently holding items."""
    queue = get_queue(conn, queue_id)

    counts = {status: 0 for status in ItemStatus.ALL}
    for row in conn.execute(
        "SELECT status, COUNT(*) AS n FROM work_items WHERE queue_id = ? GROUP BY status",
        (queue_id,),
    ):
        counts[row["status"]] = row["n"]

    agents = [
        row["agent_id"]
        for row in conn.execute(
            """
            SELECT DISTINCT agent_id FROM work_items
            WHERE queue_id = ? AND status = 'in_progress'
            ORDER BY agent_id
            """,
            (queue_id,),
        )
    ]

    return {
        "queue_id": queue.id,
        "name": queue.name,
        "is_active": queue.is_active,
        "max_parallel_items": queue.max_parallel_items,
        "total_items": sum(counts.values()),
        "queued": counts[ItemStatus.QUEUED],
        "in_progress": counts[ItemStatus.IN_PROGRESS],
        "completed": counts[ItemStatus.COMPLETED],
        "failed": counts[ItemStatus.FAILED],
        "cancelled": counts[ItemStatus.CANCELLED],
        "agents": agents,
        "total_completed_items": queue.total_completed_items,
        "average_processing_time": queue.average_processing_time,
    }


def get_processing_stats(
    conn: sqlite3.Connection,
    queue_id: int,
    since: str | None = None,
    until: str | None = None,
) -> dict[str, Any]:
    """
    Throughput figures for a queue, optionally limited to items created
    within [since, until] (SQLite datetime strings).

    success_rate is the percentage of counted items that completed.
    average_processing_time is over completed items only (ms).
    """
    get_queue(conn, queue_id)

    conditions = ["queue_id = :queue_id"]
    if since is not None:
        conditions.append("created_at >= :since")
    if until is not None:
        conditions.append("created_at <= :until")

    row = conn.execute(
        f"""
        SELECT COUNT(*) AS total_items,
               COALESCE(SUM(status = 'completed'), 0) AS completed_items,
               COALESCE(SUM(status = 'failed'), 0) AS failed_items,
               COALESCE(SUM(CASE WHEN status = 'completed'
                                 THEN COALESCE(actual_processing_time, 0) END), 0)
                   AS total_processing_time
        FROM work_items
        WHERE {" AND ".join(conditions)}
        """,
        {"queue_id": queue_id, "since": since, "until": until},
    ).fetchone()

    total = row["total_items"]
    completed = row["completed_items"]
    total_time = row["total_processing_time"]
    return {
        "queue_id": queue_id,
        "total_items": total,
        "completed_items": completed,
        "failed_items": row["failed_items"],
        "success_rate": (completed / total) * 100 if total else 0.0,
        "average_processing_time": total_time / completed if completed else 0.0,
        "total_processing_time": total_time,
    }


def _refresh(conn: sqlite3.Connection, queue_ids: list[int] | None) -> int:
    """Recompute aggregates inside the caller's transaction."""
    if queue_ids is None:
        queue_ids = [r["id"] for r in conn.execute("SELECT id FROM queues")]

    refreshed = 0
    for queue_id in queue_ids:
        refreshed += conn.execute(
            """
            UPDATE queues
            SET total_completed_items = (
                    SELECT COUNT(*) FROM work_items
                    WHERE queue_id = :queue_id AND status = 'completed'
                ),
                average_processing_time = (
                    SELECT AVG(actual_processing_time) FROM work_items
                    WHERE queue_id = :queue_id AND status = 'completed'
                      AND actual_processing_time IS NOT NULL
                ),
                stats_updated_at = datetime('now')
            WHERE id = :queue_id
            """,
            {"queue_id": queue_id},
        ).rowcount
    return refreshed


def refresh_queue_statistics(
    conn: sqlite3.Connection,
    queue_ids: list[int] | None = None,
) -> int:
    """
    Recompute total_completed_items and average_processing_time.

    Args:
        queue_ids: Queues to refresh (default: all queues)

    Returns:
        Number of queues refreshed.
    """
    with immediate_transaction(conn, "refresh_queue_statistics"):
        refreshed = _refresh(conn, queue_ids)
    logger.debug("Refreshed statistics for %d queue(s)", refreshed)
    return refreshed


def get_item_queue_state(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
) -> dict[str, Any]:
    """
    Derived queue state of an owner (ticket, task, chat, prompt).

    Owners carry no queue columns; this reads their work item. An owner that
    was never enqueued reports status None. `position` is the 1-based place
    in dispatch order while the item is queued.
    """
    if item_type not in ItemType.ALL:
        raise InvalidReferenceError("item type", item_type, "unknown item type")

    row = conn.execute(
        """
        SELECT w.*, q.name AS queue_name
        FROM work_items w
        LEFT JOIN queues q ON q.id = w.queue_id
        WHERE w.item_type = ? AND w.item_id = ?
        """,
        (item_type, item_id),
    ).fetchone()

    if row is None:
        return {"item_type": item_type, "item_id": item_id, "status": None,
                "queue_id": None, "queue_name": None, "position": None}

    position = None
    if row["status"] == ItemStatus.QUEUED:
        position = conn.execute(
            """
            SELECT COUNT(*) + 1 FROM work_items
            WHERE queue_id = :queue_id AND status = 'queued'
              AND (priority < :priority
                   OR (priority = :priority AND enqueue_seq < :enqueue_seq))
            """,
            {
                "queue_id": row["queue_id"],
                "priority": row["priority"],
                "enqueue_seq": row["enqueue_seq"],
            },
        ).fetchone()[0]

    return {
        "item_type": item_type,
        "item_id": item_id,
        "work_item_id": row["id"],
        "status": row["status"],
        "queue_id": row["queue_id"],
        "queue_name": row["queue_name"],
        "priority": row["priority"],
        "position": position,
        "agent_id": row["agent_id"],
        "error_message": row["error_message"],
        "queued_at": row["queued_at"],
        "started_at": row["started_at"],
        "completed_at": row["completed_at"],
        "attempt_count": row["attempt_count"],
    }
