#!/usr/bin/env python3
"""
Completion Service

Terminal transitions reported by agents (complete, fail) and the
administrative transitions around them (requeue, cancel).

Every transition is a guarded UPDATE inside BEGIN IMMEDIATE, so a second
complete() of the same item finds nothing in_progress and raises
NotInProgressError instead of double-counting.

There is no automatic retry. A failed item stays failed until someone calls
requeue_item(); attempt limits and backoff belong to the caller.
"""

import logging
import sqlite3

from . import audit
from .enqueue import get_work_item
from .errors import InvalidReferenceError, NotInProgressError, QueueNotFoundError
from .models import ItemStatus, ItemType, WorkItem
from .registry import get_queue
from .schema import NOW_SQL, immediate_transaction
from .state_machine import InvalidTransitionError, validate_transition

logger = logging.getLogger(__name__)

# Elapsed milliseconds between started_at and now
_ELAPSED_MS_SQL = (
    "CAST(ROUND((julianday('now') - julianday(started_at)) * 86400000) AS INTEGER)"
)


def _require_in_progress(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
    agent_id: str | None,
) -> WorkItem:
    item = get_work_item(conn, item_type, item_id)
    if item is None:
        raise NotInProgressError(item_type, item_id)
    if item.status != ItemStatus.IN_PROGRESS:
        raise NotInProgressError(item_type, item_id, item.status)
    if agent_id is not None and item.agent_id != agent_id:
        raise NotInProgressError(item_type, item_id, item.status, item.agent_id)
    return item


def _finish(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
    new_status: str,
    error_message: str | None,
    agent_id: str | None,
) -> WorkItem:
    action = "complete_item" if new_status == ItemStatus.COMPLETED else "fail_item"
    with immediate_transaction(conn, action):
        current = _require_in_progress(conn, item_type, item_id, agent_id)
        validate_transition(current.status, new_status, current.id)

        row = conn.execute(
            f"""
            UPDATE work_items
            SET status                 = :status,
                error_message          = :error_message,
                completed_at           = {NOW_SQL},
                actual_processing_time = {_ELAPSED_MS_SQL},
                agent_id               = NULL,
                updated_at             = datetime('now')
            WHERE id = :id AND status = 'in_progress'
            RETURNING *
            """,
            {"status": new_status, "error_message": error_message, "id": current.id},
        ).fetchone()
        item = WorkItem.from_row(row)

        if new_status == ItemStatus.COMPLETED and item_type == ItemType.TASK:
            conn.execute(
                "UPDATE tasks SET done = 1, updated_at = datetime('now') WHERE id = ?",
                (item_id,),
            )

        details = {
            "queue_id": item.queue_id,
            "item_type": item_type,
            "item_id": item_id,
            "actual_processing_time": item.actual_processing_time,
        }
        if error_message is not None:
            details["error_message"] = error_message
        audit.log(
            conn,
            actor=agent_id or current.agent_id,
            action=action,
            entity_type="work_item",
            entity_id=item.id,
            old_state=ItemStatus.IN_PROGRESS,
            new_state=new_status,
            details=details,
        )
    return item


def complete_item(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
    agent_id: str | None = None,
) -> WorkItem:
    """
    Mark an in_progress item completed.

    Sets completed_at, records actual_processing_time (ms) and releases the
    agent. A completed task is also marked done on its tasks row. When
    agent_id is given, the item must be held by that agent.

    Raises:
        NotInProgressError: no matching in_progress item (including a second
            completion of the same item)
    """
    item = _finish(conn, item_type, item_id, ItemStatus.COMPLETED, None, agent_id)
    logger.info("Completed %s %s in %s ms", item_type, item_id, item.actual_processing_time)
    return item


def fail_item(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
    error_message: str,
    agent_id: str | None = None,
) -> WorkItem:
    """Mark an in_progress item failed with error_message."""
    item = _finish(conn, item_type, item_id, ItemStatus.FAILED, error_message, agent_id)
    logger.warning("Failed %s %s (attempt %d): %s",
                   item_type, item_id, item.attempt_count, error_message)
    return item


def requeue_item(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
    actor: str = "api",
) -> WorkItem:
    """
    Put a failed or cancelled item back in its queue.

    Clears the agent, error and timing fields and gives the item a fresh
    queued_at / enqueue_seq, so it goes to the back of its priority band.
    attempt_count is kept for the dead-letter policy.

    Raises:
        InvalidReferenceError: the owner has no work item
        InvalidTransitionError: item is not failed or cancelled
        QueueNotFoundError: the item's queue no longer exists
    """
    with immediate_transaction(conn, "requeue_item"):
        current = get_work_item(conn, item_type, item_id)
        if current is None:
            raise InvalidReferenceError("work item", f"{item_type}:{item_id}")
        if current.status not in (ItemStatus.FAILED, ItemStatus.CANCELLED):
            raise InvalidTransitionError(current.status, ItemStatus.QUEUED, current.id)
        if current.queue_id is None:
            raise QueueNotFoundError(current.queue_id)
        get_queue(conn, current.queue_id)

        row = conn.execute(
            f"""
            UPDATE work_items
            SET status                 = 'queued',
                agent_id               = NULL,
                error_message          = NULL,
                started_at             = NULL,
                completed_at           = NULL,
                actual_processing_time = NULL,
                queued_at              = {NOW_SQL},
                enqueue_seq            = (SELECT COALESCE(MAX(enqueue_seq), 0) + 1
                                          FROM work_items),
                updated_at             = datetime('now')
            WHERE id = :id
            RETURNING *
            """,
            {"id": current.id},
        ).fetchone()
        item = WorkItem.from_row(row)

        audit.log(
            conn,
            actor=actor,
            action="requeue_item",
            entity_type="work_item",
            entity_id=item.id,
            old_state=current.status,
            new_state=ItemStatus.QUEUED,
            details={"queue_id": item.queue_id, "item_type": item_type, "item_id": item_id,
                     "previous_error": current.error_message},
        )

    logger.info("Requeued %s %s into queue %s", item_type, item_id, item.queue_id)
    return item


def cancel_item(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
    actor: str = "api",
) -> WorkItem:
    """Cancel a queued item. Claimed or finished items cannot be cancelled."""
    with immediate_transaction(conn, "cancel_item"):
        current = get_work_item(conn, item_type, item_id)
        if current is None:
            raise InvalidReferenceError("work item", f"{item_type}:{item_id}")
        validate_transition(current.status, ItemStatus.CANCELLED, current.id)

        row = conn.execute(
            f"""
            UPDATE work_items
            SET status       = 'cancelled',
                completed_at = {NOW_SQL},
                updated_at   = datetime('now')
            WHERE id = :id AND status = 'queued'
            RETURNING *
            """,
            {"id": current.id},
        ).fetchone()
        item = WorkItem.from_row(row)

        audit.log(
            conn,
            actor=actor,
            action="cancel_item",
            entity_type="work_item",
            entity_id=item.id,
            old_state=ItemStatus.QUEUED,
            new_state=ItemStatus.CANCELLED,
            details={"queue_id": item.queue_id, "item_type": item_type, "item_id": item_id},
        )

    logger.info("Cancelled %s %s", item_type, item_id)
    return item
