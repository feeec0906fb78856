#!/usr/bin/env python3
"""
Queue Health Monitor

Read-only health report for a project's queues. Detects orphaned items,
items stuck in processing past a threshold, projects without queues and
projects whose queues are all paused.

The core never times out an in_progress item on its own. Stuck items are
surfaced here for an operator to fail and requeue.
"""

import logging
import sqlite3
from typing import Any

from .models import WorkItem

logger = logging.getLogger(__name__)

DEFAULT_STUCK_THRESHOLD_MINUTES = 60

_EMPTY_STATS = {
    "total_queues": 0,
    "active_queues": 0,
    "total_items": 0,
    "queued_items": 0,
    "in_progress_items": 0,
    "orphaned_items": 0,
    "stuck_items": 0,
    "dead_letter_items": 0,
}

_STUCK_CONDITION = """
    status = 'in_progress'
    AND started_at IS NOT NULL
    AND started_at < strftime('%Y-%m-%d %H:%M:%f', 'now', :threshold)
"""


def _threshold(minutes: int) -> str:
    return f"-{int(minutes)} minutes"


def get_queue_health(
    conn: sqlite3.Connection,
    project_id: int,
    stuck_threshold_minutes: int = DEFAULT_STUCK_THRESHOLD_MINUTES,
) -> dict[str, Any]:
    """
    Summarize queue health for a project.

    Returns:
        {"healthy": bool, "issues": [str, ...], "stats": {...}}

    A storage error does not propagate: it is logged and reported as an
    unhealthy result with the issue "Failed to check queue health".
    """
    issues: list[str] = []
    try:
        queue_row = conn.execute(
            """
            SELECT COUNT(*) AS total, COALESCE(SUM(is_active), 0) AS active
            FROM queues WHERE project_id = ?
            """,
            (project_id,),
        ).fetchone()

        item_row = conn.execute(
            f"""
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(status = 'queued'), 0) AS queued,
                   COALESCE(SUM(status = 'in_progress'), 0) AS in_progress,
                   COALESCE(SUM({_STUCK_CONDITION}), 0) AS stuck
            FROM work_items
            WHERE queue_id IN (SELECT id FROM queues WHERE project_id = :project_id)
            """,
            {"project_id": project_id, "threshold": _threshold(stuck_threshold_minutes)},
        ).fetchone()

        # Orphans have no queue and so no project; they are counted database-wide
        orphaned = conn.execute(
            """
            SELECT COUNT(*) FROM work_items
            WHERE queue_id IS NULL OR queue_id NOT IN (SELECT id FROM queues)
            """
        ).fetchone()[0]

        dead_letters = conn.execute(
            """
            SELECT COUNT(*) FROM dead_letter_items
            WHERE queue_id IN (SELECT id FROM queues WHERE project_id = ?)
            """,
            (project_id,),
        ).fetchone()[0]
    except sqlite3.Error as exc:
        logger.error("Error checking queue health for project %s: %s", project_id, exc)
        issues.append("Failed to check queue health")
        return {"healthy": False, "issues": issues, "stats": dict(_EMPTY_STATS)}

    stats = {
        "total_queues": queue_row["total"],
        "active_queues": queue_row["active"],
        "total_items": item_row["total"],
        "queued_items": item_row["queued"],
        "in_progress_items": item_row["in_progress"],
        "orphaned_items": orphaned,
        "stuck_items": item_row["stuck"],
        "dead_letter_items": dead_letters,
    }

    if stats["orphaned_items"] > 0:
        issues.append(f"{stats['orphaned_items']} orphaned queue items found")
    if stats["stuck_items"] > 0:
        issues.append(f"{stats['stuck_items']} items stuck in processing")
    if stats["total_queues"] == 0:
        issues.append("No queues exist for this project")
    if stats["active_queues"] == 0 and stats["total_queues"] > 0:
        issues.append("All queues are paused or inactive")

    return {"healthy": not issues, "issues": issues, "stats": stats}


def find_stuck_items(
    conn: sqlite3.Connection,
    project_id: int | None = None,
    threshold_minutes: int = DEFAULT_STUCK_THRESHOLD_MINUTES,
) -> list[WorkItem]:
    """In-progress items whose started_at is older than threshold_minutes, oldest first."""
    sql = f"SELECT * FROM work_items WHERE {_STUCK_CONDITION}"
    params: dict[str, Any] = {"threshold": _threshold(threshold_minutes)}
    if project_id is not None:
        sql += " AND queue_id IN (SELECT id FROM queues WHERE project_id = :project_id)"
        params["project_id"] = project_id
    sql += " ORDER BY started_at ASC"
    return [WorkItem.from_row(r) for r in conn.execute(sql, params).fetchall()]
