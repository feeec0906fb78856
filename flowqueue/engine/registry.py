#!/usr/bin/env python3
"""
Queue Registry

CRUD over queue entities and their configuration (max parallel items, active
flag). A paused queue (is_active = 0) keeps accepting enqueues but dispatch
refuses to hand out work from it, returning the explicit "paused" reason.

Pausing never touches in-progress items: the agent that claimed an item owns
it until complete/fail.
"""

import logging
import sqlite3

from . import audit
from .errors import InvalidReferenceError, QueueNotFoundError
from .models import Queue
from .owners import project_exists
from .schema import NOW_SQL, immediate_transaction

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_queue(conn: sqlite3.Connection, queue_id: int) -> Queue:
    """Return the queue, or raise QueueNotFoundError."""
    row = conn.execute("SELECT * FROM queues WHERE id = ?", (queue_id,)).fetchone()
    if row is None:
        raise QueueNotFoundError(queue_id)
    return Queue.from_row(row)


def list_queues(conn: sqlite3.Connection, project_id: int | None = None) -> list[Queue]:
    """List queues, newest first, optionally for a single project."""
    if project_id is None:
        rows = conn.execute("SELECT * FROM queues ORDER BY id DESC").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM queues WHERE project_id = ? ORDER BY id DESC",
            (project_id,),
        ).fetchall()
    return [Queue.from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def create_queue(
    conn: sqlite3.Connection,
    name: str,
    project_id: int,
    max_parallel_items: int = 1,
    description: str | None = None,
    actor: str = "api",
) -> Queue:
    """
    Create a queue for a project.

    Raises:
        ValueError: max_parallel_items < 1
        InvalidReferenceError: project does not exist
    """
    if max_parallel_items < 1:
        raise ValueError(f"max_parallel_items must be >= 1, got {max_parallel_items}")
    if not project_exists(conn, project_id):
        raise InvalidReferenceError("project", project_id)

    with immediate_transaction(conn, "create_queue"):
        row = conn.execute(
            """
            INSERT INTO queues (project_id, name, description, max_parallel_items, is_active)
            VALUES (:project_id, :name, :description, :max_parallel_items, 1)
            RETURNING *
            """,
            {
                "project_id": project_id,
                "name": name,
                "description": description,
                "max_parallel_items": max_parallel_items,
            },
        ).fetchone()
        queue = Queue.from_row(row)

        audit.log(
            conn,
            actor=actor,
            action="create_queue",
            entity_type="queue",
            entity_id=queue.id,
            new_state="active",
            details={"project_id": project_id, "name": name,
                     "max_parallel_items": max_parallel_items},
        )

    logger.info("Created queue %s '%s' (project=%s, max_parallel=%s)",
                queue.id, name, project_id, max_parallel_items)
    return queue


def update_queue(
    conn: sqlite3.Connection,
    queue_id: int,
    name: str | None = None,
    description: str | None = None,
    max_parallel_items: int | None = None,
    actor: str = "api",
) -> Queue:
    """Update a queue's name, description or concurrency ceiling."""
    if max_parallel_items is not None and max_parallel_items < 1:
        raise ValueError(f"max_parallel_items must be >= 1, got {max_parallel_items}")

    with immediate_transaction(conn, "update_queue"):
        current = get_queue(conn, queue_id)
        row = conn.execute(
            f"""
            UPDATE queues
            SET name = :name,
                description = :description,
                max_parallel_items = :max_parallel_items,
                updated_at = {NOW_SQL}
            WHERE id = :queue_id
            RETURNING *
            """,
            {
                "queue_id": queue_id,
                "name": name if name is not None else current.name,
                "description": description if description is not None else current.description,
                "max_parallel_items": (
                    max_parallel_items if max_parallel_items is not None
                    else current.max_parallel_items
                ),
            },
        ).fetchone()
        queue = Queue.from_row(row)

        audit.log(
            conn,
            actor=actor,
            action="update_queue",
            entity_type="queue",
            entity_id=queue_id,
            details={"name": queue.name, "max_parallel_items": queue.max_parallel_items},
        )

    return queue


def _set_active(conn: sqlite3.Connection, queue_id: int, is_active: bool, actor: str) -> Queue:
    action = "resume_queue" if is_active else "pause_queue"
    with immediate_transaction(conn, action):
        current = get_queue(conn, queue_id)
        row = conn.execute(
            f"""
            UPDATE queues SET is_active = :is_active, updated_at = {NOW_SQL}
            WHERE id = :queue_id
            RETURNING *
            """,
            {"is_active": int(is_active), "queue_id": queue_id},
        ).fetchone()

        audit.log(
            conn,
            actor=actor,
            action=action,
            entity_type="queue",
            entity_id=queue_id,
            old_state="active" if current.is_active else "paused",
            new_state="active" if is_active else "paused",
        )

    logger.info("%s queue %s", "Resumed" if is_active else "Paused", queue_id)
    return Queue.from_row(row)


def pause_queue(conn: sqlite3.Connection, queue_id: int, actor: str = "api") -> Queue:
    """Stop dispatching from a queue. Claimed items are left with their agents."""
    return _set_active(conn, queue_id, False, actor)


def resume_queue(conn: sqlite3.Connection, queue_id: int, actor: str = "api") -> Queue:
    """Resume dispatching from a paused queue."""
    return _set_active(conn, queue_id, True, actor)


def delete_queue(conn: sqlite3.Connection, queue_id: int, actor: str = "api") -> int:
    """
    Delete a queue and every work item referencing it, atomically.

    Returns:
        Number of work items removed with the queue.
    """
    with immediate_transaction(conn, "delete_queue"):
        queue = get_queue(conn, queue_id)
        removed = conn.execute(
            "DELETE FROM work_items WHERE queue_id = ?", (queue_id,)
        ).rowcount
        conn.execute("DELETE FROM queues WHERE id = ?", (queue_id,))

        audit.log(
            conn,
            actor=actor,
            action="delete_queue",
            entity_type="queue",
            entity_id=queue_id,
            old_state="active" if queue.is_active else "paused",
            details={"name": queue.name, "items_removed": removed},
        )

    logger.info("Deleted queue %s '%s' with %d item(s)", queue_id, queue.name, removed)
    return removed
