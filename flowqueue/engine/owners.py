#!/usr/bin/env python3
"""
Owning Entities

Minimal CRUD for the entities that own work items: projects, tickets, tasks,
chats and prompts. Only the fields the queue needs are modelled: enough to
validate a work item's reference, cascade a ticket's tasks in order, and scope
queues by project.

Deleting an owner does NOT touch its work item. The dangling reference is
left for cleanup_queue_data() to reconcile.
"""

import logging
import sqlite3
from typing import Any

from .errors import InvalidReferenceError
from .models import ItemType
from .schema import immediate_transaction

logger = logging.getLogger(__name__)


def _insert(conn: sqlite3.Connection, action: str, sql: str, params: dict[str, Any]) -> int:
    with immediate_transaction(conn, action):
        cursor = conn.execute(sql, params)
    return cursor.lastrowid


def project_exists(conn: sqlite3.Connection, project_id: int) -> bool:
    return conn.execute(
        "SELECT 1 FROM projects WHERE id = ?", (project_id,)
    ).fetchone() is not None


def owner_exists(conn: sqlite3.Connection, item_type: str, item_id: int) -> bool:
    """Return True if the owning entity of a work item exists."""
    table = ItemType.TABLES.get(item_type)
    if table is None:
        raise InvalidReferenceError("item type", item_type, "unknown item type")
    return conn.execute(
        f"SELECT 1 FROM {table} WHERE id = ?", (item_id,)
    ).fetchone() is not None


def require_owner(conn: sqlite3.Connection, item_type: str, item_id: int) -> None:
    """Raise InvalidReferenceError unless the owning entity exists."""
    if not owner_exists(conn, item_type, item_id):
        raise InvalidReferenceError(item_type, item_id)


def create_project(conn: sqlite3.Connection, name: str, path: str | None = None) -> int:
    return _insert(
        conn,
        "create_project",
        "INSERT INTO projects (name, path) VALUES (:name, :path)",
        {"name": name, "path": path},
    )


def create_ticket(
    conn: sqlite3.Connection,
    project_id: int,
    title: str,
    overview: str | None = None,
    priority: str = "normal",
) -> int:
    if not project_exists(conn, project_id):
        raise InvalidReferenceError("project", project_id)
    return _insert(
        conn,
        "create_ticket",
        """
        INSERT INTO tickets (project_id, title, overview, priority)
        VALUES (:project_id, :title, :overview, :priority)
        """,
        {"project_id": project_id, "title": title, "overview": overview, "priority": priority},
    )


def create_task(
    conn: sqlite3.Connection,
    ticket_id: int,
    content: str,
    description: str | None = None,
    order_index: int | None = None,
) -> int:
    """Create a task; order_index defaults to one past the ticket's last task."""
    if not owner_exists(conn, ItemType.TICKET, ticket_id):
        raise InvalidReferenceError(ItemType.TICKET, ticket_id)

    with immediate_transaction(conn, "create_task"):
        if order_index is None:
            order_index = conn.execute(
                "SELECT COALESCE(MAX(order_index), 0) + 1 FROM tasks WHERE ticket_id = ?",
                (ticket_id,),
            ).fetchone()[0]
        cursor = conn.execute(
            """
            INSERT INTO tasks (ticket_id, content, description, order_index)
            VALUES (:ticket_id, :content, :description, :order_index)
            """,
            {
                "ticket_id": ticket_id,
                "content": content,
                "description": description,
                "order_index": order_index,
            },
        )
    return cursor.lastrowid


def create_chat(conn: sqlite3.Connection, project_id: int, title: str) -> int:
    if not project_exists(conn, project_id):
        raise InvalidReferenceError("project", project_id)
    return _insert(
        conn,
        "create_chat",
        "INSERT INTO chats (project_id, title) VALUES (:project_id, :title)",
        {"project_id": project_id, "title": title},
    )


def create_prompt(
    conn: sqlite3.Connection,
    project_id: int,
    title: str,
    content: str | None = None,
) -> int:
    if not project_exists(conn, project_id):
        raise InvalidReferenceError("project", project_id)
    return _insert(
        conn,
        "create_prompt",
        "INSERT INTO prompts (project_id, title, content) VALUES (:project_id, :title, :content)",
        {"project_id": project_id, "title": title, "content": content},
    )


def get_ticket_tasks(conn: sqlite3.Connection, ticket_id: int) -> list[dict[str, Any]]:
    """Return a ticket's tasks in order_index order."""
    rows = conn.execute(
        """
        SELECT id, ticket_id, content, description, order_index, done
        FROM tasks WHERE ticket_id = ?
        ORDER BY order_index ASC, id ASC
        """,
        (ticket_id,),
    ).fetchall()
    return [dict(r) for r in rows]


def delete_owner(conn: sqlite3.Connection, item_type: str, item_id: int) -> bool:
    """
    Delete an owning entity. Returns True if a row was deleted.

    Deleting a ticket cascades to its tasks; work items are left dangling.
    """
    table = ItemType.TABLES.get(item_type)
    if table is None:
        raise InvalidReferenceError("item type", item_type, "unknown item type")
    with immediate_transaction(conn, f"delete_{item_type}"):
        cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (item_id,))
    if cursor.rowcount:
        logger.info("Deleted %s %s", item_type, item_id)
    return cursor.rowcount > 0
