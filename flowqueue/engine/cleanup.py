#!/usr/bin/env python3
"""
Cleanup / Reconciliation Service

Repairs persisted queue state after crashes, deletions and plain ageing.
cleanup_queue_data() runs these steps in one BEGIN IMMEDIATE transaction,
each under its own SAVEPOINT:

1. orphans        - items whose queue no longer exists
2. expired        - terminal items older than max_age_ms
3. dangling refs  - task/ticket/chat/prompt items whose owner was deleted
4. dead letter    - failed items that reached dead_letter_max_attempts
5. statistics     - recompute per-queue aggregates

A failing step is rolled back to its savepoint and recorded in
CleanupResult.errors; the remaining steps still run. cleanup_queue_data()
never raises. Every step is idempotent: a second run reports zeros.

Dead-lettered items are relocated to dead_letter_items, not removed, so they
are counted separately from total_removed.
"""

import logging
import sqlite3
from collections.abc import Callable
from typing import Any

from . import audit
from .enqueue import _upsert_work_item
from .errors import InvalidReferenceError, PersistenceError, QueueError
from .models import CleanupResult, DeadLetterItem, ItemType, WorkItem
from .registry import get_queue
from .schema import immediate_transaction
from .stats import _refresh

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_MS = 7 * 24 * 60 * 60 * 1000

_PROJECT_QUEUES_SQL = "SELECT id FROM queues WHERE project_id = :project_id"


# ---------------------------------------------------------------------------
# Dead-letter relocation (runs inside the caller's transaction)
# ---------------------------------------------------------------------------


def _last_agent(conn: sqlite3.Connection, work_item_id: int) -> str | None:
    row = conn.execute(
        """
        SELECT actor FROM audit_log
        WHERE action = 'claim_item' AND entity_type = 'work_item' AND entity_id = ?
        ORDER BY id DESC LIMIT 1
        """,
        (str(work_item_id),),
    ).fetchone()
    return row["actor"] if row else None


def _move_to_dead_letter(
    conn: sqlite3.Connection,
    queue_id: int | None,
    project_id: int | None,
    max_attempts: int | None,
    reason: str,
    actor: str,
) -> int:
    conditions = ["status = 'failed'"]
    params: dict[str, Any] = {}
    if queue_id is not None:
        conditions.append("queue_id = :queue_id")
        params["queue_id"] = queue_id
    if project_id is not None:
        conditions.append(f"queue_id IN ({_PROJECT_QUEUES_SQL})")
        params["project_id"] = project_id
    if max_attempts is not None:
        conditions.append("attempt_count >= :max_attempts")
        params["max_attempts"] = max_attempts

    rows = conn.execute(
        f"SELECT * FROM work_items WHERE {' AND '.join(conditions)} ORDER BY id",
        params,
    ).fetchall()

    for row in rows:
        item = WorkItem.from_row(row)
        dead = conn.execute(
            """
            INSERT INTO dead_letter_items (
                original_item_id, queue_id, item_type, item_id, priority,
                error_message, agent_id, attempt_count, queued_at, started_at,
                failed_at, reason
            ) VALUES (
                :original_item_id, :queue_id, :item_type, :item_id, :priority,
                :error_message, :agent_id, :attempt_count, :queued_at, :started_at,
                :failed_at, :reason
            )
            RETURNING id
            """,
            {
                "original_item_id": item.id,
                "queue_id": item.queue_id,
                "item_type": item.item_type,
                "item_id": item.item_id,
                "priority": item.priority,
                "error_message": item.error_message,
                "agent_id": _last_agent(conn, item.id),
                "attempt_count": item.attempt_count,
                "queued_at": item.queued_at,
                "started_at": item.started_at,
                "failed_at": item.completed_at,
                "reason": reason,
            },
        ).fetchone()
        conn.execute("DELETE FROM work_items WHERE id = ?", (item.id,))

        audit.log(
            conn,
            actor=actor,
            action="dead_letter_item",
            entity_type="work_item",
            entity_id=item.id,
            old_state=item.status,
            details={
                "queue_id": item.queue_id,
                "item_type": item.item_type,
                "item_id": item.item_id,
                "dead_letter_id": dead["id"],
                "attempt_count": item.attempt_count,
                "error_message": item.error_message,
            },
        )
        logger.warning(
            "Dead-lettered %s %s from queue %s after %d attempt(s): %s",
            item.item_type, item.item_id, item.queue_id, item.attempt_count,
            item.error_message,
        )

    return len(rows)


# ---------------------------------------------------------------------------
# Cleanup steps
# ---------------------------------------------------------------------------


def _remove_orphans(conn: sqlite3.Connection) -> int:
    return conn.execute(
        """
        DELETE FROM work_items
        WHERE queue_id IS NULL
           OR queue_id NOT IN (SELECT id FROM queues)
        """
    ).rowcount


def _expire_terminal(conn: sqlite3.Connection, project_id: int | None, max_age_ms: int) -> int:
    sql = """
        DELETE FROM work_items
        WHERE status IN ('completed', 'failed', 'cancelled')
          AND COALESCE(completed_at, queued_at)
              < strftime('%Y-%m-%d %H:%M:%f', 'now', :delta)
    """
    params: dict[str, Any] = {"delta": f"-{max_age_ms / 1000} seconds"}
    if project_id is not None:
        sql += f" AND queue_id IN ({_PROJECT_QUEUES_SQL})"
        params["project_id"] = project_id
    return conn.execute(sql, params).rowcount


def _remove_dangling(conn: sqlite3.Connection, item_type: str) -> int:
    table = ItemType.TABLES[item_type]
    return conn.execute(
        f"""
        DELETE FROM work_items
        WHERE item_type = ?
          AND item_id NOT IN (SELECT id FROM {table})
        """,
        (item_type,),
    ).rowcount


def _refresh_statistics(conn: sqlite3.Connection, project_id: int | None) -> int:
    if project_id is None:
        return _refresh(conn, None)
    queue_ids = [r["id"] for r in conn.execute(_PROJECT_QUEUES_SQL, {"project_id": project_id})]
    return _refresh(conn, queue_ids)


def _run_step(
    conn: sqlite3.Connection,
    name: str,
    step: Callable[[], int],
    result: CleanupResult,
    field_name: str,
) -> None:
    conn.execute(f"SAVEPOINT {name}")
    try:
        count = step()
    except (sqlite3.Error, QueueError) as exc:
        conn.execute(f"ROLLBACK TO {name}")
        conn.execute(f"RELEASE {name}")
        logger.error("Cleanup step '%s' failed: %s", name, exc)
        result.errors.append(f"{name}: {exc}")
        return
    conn.execute(f"RELEASE {name}")
    setattr(result, field_name, count)


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------


def cleanup_queue_data(
    conn: sqlite3.Connection,
    project_id: int | None = None,
    max_age_ms: int = DEFAULT_MAX_AGE_MS,
    dead_letter_max_attempts: int | None = None,
    actor: str = "cleanup",
) -> CleanupResult:
    """
    Reconcile queue state. Step failures land in result.errors; only a
    negative max_age_ms raises (ValueError).

    Args:
        project_id: Limit expiry, dead-lettering and statistics to this
                    project's queues (orphans and dangling references are
                    always reconciled globally)
        max_age_ms: Terminal items older than this are removed
        dead_letter_max_attempts: Failed items with at least this many
                    attempts are dead-lettered (None: skip the step)
    """
    if max_age_ms < 0:
        raise ValueError(f"max_age_ms must be >= 0, got {max_age_ms}")

    result = CleanupResult()

    steps: list[tuple[str, str, Callable[[], int]]] = [
        ("orphans", "orphaned_items_removed",
         lambda: _remove_orphans(conn)),
        ("expired", "old_completed_items_removed",
         lambda: _expire_terminal(conn, project_id, max_age_ms)),
        ("dangling_tasks", "invalid_tasks_removed",
         lambda: _remove_dangling(conn, ItemType.TASK)),
        ("dangling_tickets", "invalid_tickets_removed",
         lambda: _remove_dangling(conn, ItemType.TICKET)),
        ("dangling_chats", "invalid_chats_removed",
         lambda: _remove_dangling(conn, ItemType.CHAT)),
        ("dangling_prompts", "invalid_prompts_removed",
         lambda: _remove_dangling(conn, ItemType.PROMPT)),
    ]
    if dead_letter_max_attempts is not None:
        steps.append((
            "dead_letter", "dead_lettered",
            lambda: _move_to_dead_letter(
                conn, None, project_id, dead_letter_max_attempts,
                f"attempt_count >= {dead_letter_max_attempts}", actor,
            ),
        ))
    steps.append(("statistics", "queues_refreshed",
                  lambda: _refresh_statistics(conn, project_id)))

    try:
        with immediate_transaction(conn, "cleanup_queue_data"):
            for name, field_name, step in steps:
                _run_step(conn, name, step, result, field_name)

            audit.log(
                conn,
                actor=actor,
                action="cleanup",
                entity_type="project" if project_id is not None else "database",
                entity_id=project_id if project_id is not None else "*",
                details=result.to_dict(),
            )
    except PersistenceError as exc:
        # Nothing was committed; discard the step counts
        logger.error("Queue cleanup failed: %s", exc)
        return CleanupResult(errors=result.errors + [str(exc)])

    logger.info("Queue cleanup completed: %s", result.to_dict())
    return result


def reset_queue(conn: sqlite3.Connection, queue_id: int, actor: str = "api") -> int:
    """
    Remove every item of a queue and zero its aggregates.

    Raises:
        QueueNotFoundError: queue does not exist
        PersistenceError: storage failure (nothing removed)
    """
    with immediate_transaction(conn, "reset_queue"):
        get_queue(conn, queue_id)
        removed = conn.execute(
            "DELETE FROM work_items WHERE queue_id = ?", (queue_id,)
        ).rowcount
        conn.execute(
            """
            UPDATE queues
            SET total_completed_items = 0,
                average_processing_time = NULL,
                stats_updated_at = datetime('now'),
                updated_at = datetime('now')
            WHERE id = ?
            """,
            (queue_id,),
        )
        audit.log(
            conn,
            actor=actor,
            action="reset_queue",
            entity_type="queue",
            entity_id=queue_id,
            details={"items_removed": removed},
        )

    logger.info("Reset queue %s, removed %d item(s)", queue_id, removed)
    return removed


def move_failed_to_dead_letter(
    conn: sqlite3.Connection,
    queue_id: int | None = None,
    max_attempts: int | None = None,
    actor: str = "api",
) -> int:
    """
    Relocate failed items to dead_letter_items in one transaction.

    Args:
        queue_id: Limit to one queue (default: all queues)
        max_attempts: Only items with attempt_count >= max_attempts
                      (default: every failed item)

    Returns:
        Number of items moved.
    """
    with immediate_transaction(conn, "move_failed_to_dead_letter"):
        if queue_id is not None:
            get_queue(conn, queue_id)
        reason = (
            f"attempt_count >= {max_attempts}" if max_attempts is not None
            else "moved by operator"
        )
        moved = _move_to_dead_letter(conn, queue_id, None, max_attempts, reason, actor)

    if moved:
        logger.info("Moved %d failed item(s) to dead letter", moved)
    else:
        logger.info("No failed items to move to dead letter")
    return moved


def list_dead_letters(
    conn: sqlite3.Connection,
    queue_id: int | None = None,
    limit: int = 100,
) -> list[DeadLetterItem]:
    """Dead-lettered items, most recently moved first."""
    if queue_id is None:
        rows = conn.execute(
            "SELECT * FROM dead_letter_items ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM dead_letter_items WHERE queue_id = ? ORDER BY id DESC LIMIT ?",
            (queue_id, limit),
        ).fetchall()
    return [DeadLetterItem.from_row(r) for r in rows]


def replay_dead_letter(
    conn: sqlite3.Connection,
    dead_letter_id: int,
    queue_id: int | None = None,
    actor: str = "api",
) -> WorkItem:
    """
    Re-admit a dead-lettered item as queued and drop its dead-letter record.

    The item goes back to its original queue unless queue_id is given.

    Raises:
        InvalidReferenceError: unknown dead-letter id, or the owner is gone
        QueueNotFoundError: target queue does not exist
    """
    with immediate_transaction(conn, "replay_dead_letter"):
        row = conn.execute(
            "SELECT * FROM dead_letter_items WHERE id = ?", (dead_letter_id,)
        ).fetchone()
        if row is None:
            raise InvalidReferenceError("dead letter item", dead_letter_id)
        dead = DeadLetterItem.from_row(row)
        target = queue_id if queue_id is not None else dead.queue_id

        item = _upsert_work_item(
            conn, dead.item_type, dead.item_id, target, dead.priority, None, actor
        )
        conn.execute("DELETE FROM dead_letter_items WHERE id = ?", (dead_letter_id,))
        audit.log(
            conn,
            actor=actor,
            action="replay_dead_letter",
            entity_type="dead_letter",
            entity_id=dead_letter_id,
            new_state=item.status,
            details={"queue_id": target, "work_item_id": item.id,
                     "item_type": dead.item_type, "item_id": dead.item_id},
        )

    logger.info("Replayed dead letter %s as work item %s in queue %s",
                dead_letter_id, item.id, target)
    return item


def clear_finished_items(conn: sqlite3.Connection, queue_id: int, actor: str = "api") -> int:
    """Delete a queue's completed and failed items. Returns the count removed."""
    with immediate_transaction(conn, "clear_finished_items"):
        get_queue(conn, queue_id)
        removed = conn.execute(
            """
            DELETE FROM work_items
            WHERE queue_id = ? AND status IN ('completed', 'failed')
            """,
            (queue_id,),
        ).rowcount
        audit.log(
            conn,
            actor=actor,
            action="clear_finished_items",
            entity_type="queue",
            entity_id=queue_id,
            details={"items_removed": removed},
        )

    logger.info("Cleared %d finished item(s) from queue %s", removed, queue_id)
    return removed
