#!/usr/bin/env python3
"""
Enqueue Service

Admits work items into queues. Each owner (ticket, task, chat, prompt) has at
most one work item, so enqueueing an owner that already has one re-admits it:
status goes back to queued with a fresh queued_at and enqueue_seq, and the
agent, error and completion fields are cleared.

An owner whose item is in_progress cannot be re-admitted: the claiming agent
owns it until it reports completion or failure.

Cascade operations (ticket with all of its tasks, batches) run in a single
BEGIN IMMEDIATE transaction: either every item is admitted or none is.
"""

import logging
import sqlite3
from typing import Any

from . import audit
from .errors import InvalidReferenceError
from .models import ItemStatus, ItemType, WorkItem
from .owners import get_ticket_tasks, require_owner
from .registry import get_queue
from .schema import NOW_SQL, immediate_transaction
from .state_machine import InvalidTransitionError, validate_transition

logger = logging.getLogger(__name__)

DEFAULT_TASK_PRIORITY_OFFSET = 1

_UPSERT_SQL = f"""
INSERT INTO work_items (item_type, item_id, queue_id, priority, status, queued_at,
                        estimated_processing_time, enqueue_seq)
VALUES (:item_type, :item_id, :queue_id, :priority, 'queued', {NOW_SQL},
        :estimated_processing_time,
        (SELECT COALESCE(MAX(enqueue_seq), 0) + 1 FROM work_items))
ON CONFLICT(item_type, item_id) DO UPDATE SET
    queue_id                  = excluded.queue_id,
    priority                  = excluded.priority,
    status                    = 'queued',
    agent_id                  = NULL,
    error_message             = NULL,
    queued_at                 = excluded.queued_at,
    started_at                = NULL,
    completed_at              = NULL,
    actual_processing_time    = NULL,
    estimated_processing_time = excluded.estimated_processing_time,
    enqueue_seq               = excluded.enqueue_seq,
    updated_at                = datetime('now')
RETURNING *
"""


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_work_item(conn: sqlite3.Connection, item_type: str, item_id: int) -> WorkItem | None:
    """Return the owner's work item, or None if it was never enqueued."""
    row = conn.execute(
        "SELECT * FROM work_items WHERE item_type = ? AND item_id = ?",
        (item_type, item_id),
    ).fetchone()
    return WorkItem.from_row(row) if row else None


# ---------------------------------------------------------------------------
# Internal helpers (run inside the caller's transaction)
# ---------------------------------------------------------------------------


def _upsert_work_item(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
    queue_id: int,
    priority: int,
    estimated_processing_time: int | None,
    actor: str,
) -> WorkItem:
    require_owner(conn, item_type, item_id)
    get_queue(conn, queue_id)

    existing = get_work_item(conn, item_type, item_id)
    old_status = existing.status if existing else None
    if existing is not None:
        validate_transition(existing.status, ItemStatus.QUEUED, existing.id)

    row = conn.execute(
        _UPSERT_SQL,
        {
            "item_type": item_type,
            "item_id": item_id,
            "queue_id": queue_id,
            "priority": priority,
            "estimated_processing_time": estimated_processing_time,
        },
    ).fetchone()
    item = WorkItem.from_row(row)

    audit.log(
        conn,
        actor=actor,
        action="enqueue_item",
        entity_type="work_item",
        entity_id=item.id,
        old_state=old_status,
        new_state=ItemStatus.QUEUED,
        details={
            "queue_id": queue_id,
            "item_type": item_type,
            "item_id": item_id,
            "priority": priority,
        },
    )
    return item


def _delete_work_item(conn: sqlite3.Connection, item: WorkItem, actor: str) -> None:
    if item.status == ItemStatus.IN_PROGRESS:
        raise InvalidTransitionError(item.status, "removed", item.id)
    conn.execute("DELETE FROM work_items WHERE id = ?", (item.id,))
    audit.log(
        conn,
        actor=actor,
        action="dequeue_item",
        entity_type="work_item",
        entity_id=item.id,
        old_state=item.status,
        details={"queue_id": item.queue_id, "item_type": item.item_type,
                 "item_id": item.item_id},
    )


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------


def enqueue_item(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
    queue_id: int,
    priority: int = 0,
    estimated_processing_time: int | None = None,
    actor: str = "api",
) -> WorkItem:
    """
    Admit (or re-admit) an owner's work item as queued.

    Raises:
        InvalidReferenceError: unknown item type or missing owner
        QueueNotFoundError: queue does not exist
        InvalidTransitionError: the item is currently in_progress
    """
    with immediate_transaction(conn, "enqueue_item"):
        item = _upsert_work_item(
            conn, item_type, item_id, queue_id, priority, estimated_processing_time, actor
        )
    logger.info("Enqueued %s %s into queue %s (priority=%s)",
                item_type, item_id, queue_id, priority)
    return item


def enqueue_ticket(
    conn: sqlite3.Connection,
    ticket_id: int,
    queue_id: int,
    priority: int = 0,
    actor: str = "api",
) -> WorkItem:
    return enqueue_item(conn, ItemType.TICKET, ticket_id, queue_id, priority, actor=actor)


def enqueue_task(
    conn: sqlite3.Connection,
    task_id: int,
    queue_id: int,
    priority: int = 0,
    actor: str = "api",
) -> WorkItem:
    return enqueue_item(conn, ItemType.TASK, task_id, queue_id, priority, actor=actor)


def enqueue_ticket_with_all_tasks(
    conn: sqlite3.Connection,
    queue_id: int,
    ticket_id: int,
    priority: int = 0,
    task_priority_offset: int = DEFAULT_TASK_PRIORITY_OFFSET,
    actor: str = "api",
) -> dict[str, Any]:
    """
    Admit a ticket and every one of its tasks in one transaction.

    Tasks are admitted in order_index order at priority + task_priority_offset,
    so they dispatch after their parent ticket and in their listed order.

    Returns:
        {"ticket": WorkItem, "tasks": [WorkItem, ...]}
    """
    with immediate_transaction(conn, "enqueue_ticket_with_all_tasks"):
        ticket_item = _upsert_work_item(
            conn, ItemType.TICKET, ticket_id, queue_id, priority, None, actor
        )
        task_items = [
            _upsert_work_item(
                conn, ItemType.TASK, task["id"], queue_id,
                priority + task_priority_offset, None, actor,
            )
            for task in get_ticket_tasks(conn, ticket_id)
        ]

    logger.info("Enqueued ticket %s with %d task(s) into queue %s",
                ticket_id, len(task_items), queue_id)
    return {"ticket": ticket_item, "tasks": task_items}


def batch_enqueue_items(
    conn: sqlite3.Connection,
    items: list[dict[str, Any]],
    actor: str = "api",
) -> list[WorkItem]:
    """
    Admit a heterogeneous list of items atomically.

    Each entry needs item_type, item_id and queue_id; priority defaults to 0.
    List order becomes FIFO order among equal priorities.
    """
    for entry in items:
        missing = [k for k in ("item_type", "item_id", "queue_id") if entry.get(k) is None]
        if missing:
            raise ValueError(f"Batch entry {entry!r} is missing {', '.join(missing)}")

    with immediate_transaction(conn, "batch_enqueue_items"):
        admitted = [
            _upsert_work_item(
                conn,
                entry["item_type"],
                entry["item_id"],
                entry["queue_id"],
                entry.get("priority", 0),
                entry.get("estimated_processing_time"),
                actor,
            )
            for entry in items
        ]

    logger.info("Batch-enqueued %d item(s)", len(admitted))
    return admitted


def dequeue_item(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
    actor: str = "api",
) -> bool:
    """
    Remove an owner's work item from its queue.

    Returns False if the owner has no work item. An in_progress item cannot be
    removed (InvalidTransitionError).
    """
    if item_type not in ItemType.ALL:
        raise InvalidReferenceError("item type", item_type, "unknown item type")

    with immediate_transaction(conn, "dequeue_item"):
        item = get_work_item(conn, item_type, item_id)
        if item is None:
            return False
        _delete_work_item(conn, item, actor)

    logger.info("Dequeued %s %s from queue %s", item_type, item_id, item.queue_id)
    return True


def dequeue_ticket_with_tasks(
    conn: sqlite3.Connection,
    ticket_id: int,
    actor: str = "api",
) -> int:
    """Remove a ticket's work item and those of its tasks. Returns the count removed."""
    removed = 0
    with immediate_transaction(conn, "dequeue_ticket_with_tasks"):
        owners = [(ItemType.TICKET, ticket_id)] + [
            (ItemType.TASK, task["id"]) for task in get_ticket_tasks(conn, ticket_id)
        ]
        for item_type, item_id in owners:
            item = get_work_item(conn, item_type, item_id)
            if item is not None:
                _delete_work_item(conn, item, actor)
                removed += 1

    logger.info("Dequeued ticket %s with tasks (%d item(s))", ticket_id, removed)
    return removed


def move_item(
    conn: sqlite3.Connection,
    item_type: str,
    item_id: int,
    target_queue_id: int | None,
    priority: int | None = None,
    include_tasks: bool = False,
    task_priority_offset: int = DEFAULT_TASK_PRIORITY_OFFSET,
    actor: str = "api",
) -> list[WorkItem]:
    """
    Re-enqueue an owner into another queue, or dequeue it when target is None.

    With include_tasks and a ticket, the ticket's tasks follow it. Priority
    defaults to the item's current priority (0 if it has none).

    Returns:
        The re-admitted work items (empty when dequeued).
    """
    if target_queue_id is None:
        if include_tasks and item_type == ItemType.TICKET:
            dequeue_ticket_with_tasks(conn, item_id, actor)
        else:
            dequeue_item(conn, item_type, item_id, actor)
        return []

    with immediate_transaction(conn, "move_item"):
        if priority is None:
            existing = get_work_item(conn, item_type, item_id)
            priority = existing.priority if existing else 0

        moved = [
            _upsert_work_item(conn, item_type, item_id, target_queue_id, priority, None, actor)
        ]
        if include_tasks and item_type == ItemType.TICKET:
            moved.extend(
                _upsert_work_item(
                    conn, ItemType.TASK, task["id"], target_queue_id,
                    priority + task_priority_offset, None, actor,
                )
                for task in get_ticket_tasks(conn, item_id)
            )

    logger.info("Moved %s %s to queue %s (%d item(s))",
                item_type, item_id, target_queue_id, len(moved))
    return moved
