#!/usr/bin/env python3
"""
Queue Engine Audit Log Helpers

All state transitions in the queue engine are recorded in the audit_log table.
The audit trail is append-only and never modified after insertion.

Actors:
- Agent IDs (e.g. "agent-3f2a9c") for claims, completions and failures
- "human:{name}" for CLI actions
- "api" for service-facade callers that do not identify themselves
- "cleanup" for reconciliation runs

Actions:
- create_queue / update_queue / pause_queue / resume_queue / delete_queue
- reset_queue        - all items of a queue removed
- enqueue_item       - work item admitted (or re-admitted) as queued
- dequeue_item       - work item removed before being claimed
- claim_item         - agent atomically claims the next queued item
- complete_item      - agent reports successful completion
- fail_item          - agent reports failure
- requeue_item       - failed/cancelled item reset to queued
- cancel_item        - queued item administratively cancelled
- dead_letter_item   - failed item relocated to dead_letter_items
- replay_dead_letter - dead-lettered item re-admitted as queued
- clear_finished_items - completed and failed items of a queue removed
- cleanup            - summary of one cleanup_queue_data() run
"""

import json
import sqlite3
from typing import Any


def log(
    conn: sqlite3.Connection,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: str | int,
    old_state: str | None = None,
    new_state: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """
    Insert an audit log entry.

    This function does NOT commit - the caller must commit as part of the
    enclosing transaction. This ensures audit entries are atomic with the
    state change they record.

    Args:
        conn: Open database connection (must be inside a transaction)
        actor: Who initiated the action (agent ID, "human:name", "api", "cleanup")
        action: What happened (e.g. "claim_item", "complete_item")
        entity_type: Type of entity affected ("queue", "work_item", "dead_letter",
                     or "project"/"database" for cleanup runs)
        entity_id: ID of the affected entity
        old_state: Status/state before the action (optional)
        new_state: Status/state after the action (optional)
        details: Additional context as a dict (will be JSON-serialized)
    """
    details_json = json.dumps(details, default=str) if details is not None else None
    conn.execute(
        """
        INSERT INTO audit_log (actor, action, entity_type, entity_id,
                               old_state, new_state, details)
        VALUES (:actor, :action, :entity_type, :entity_id,
                :old_state, :new_state, :details)
        """,
        {
            "actor": actor,
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "old_state": old_state,
            "new_state": new_state,
            "details": details_json,
        },
    )


# Column filters: (argument name, SQL condition)
_FILTERS = (
    ("entity_type", "entity_type = :entity_type"),
    ("entity_id", "entity_id = :entity_id"),
    ("actor", "actor = :actor"),
    ("action", "action = :action"),
    ("since", "timestamp >= :since"),
)

# A queue's own entries, plus item entries whose details name the queue
_QUEUE_FILTER = """(
    (entity_type = 'queue' AND entity_id = :queue_key)
    OR json_extract(details, '$.queue_id') = :queue_id
)"""


def _parse_details(row: sqlite3.Row) -> dict[str, Any]:
    entry = dict(row)
    raw = entry.get("details")
    if raw:
        try:
            entry["details"] = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            pass
    return entry


def query_audit(
    conn: sqlite3.Connection,
    queue_id: int | None = None,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    actor: str | None = None,
    action: str | None = None,
    since: str | None = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """
    Query the audit log, newest first. Filters combine with AND.

    queue_id matches the queue's own entries and the entries of work items
    admitted to it. since is an SQLite datetime string. details comes back
    as a parsed dict.
    """
    params: dict[str, Any] = {
        "entity_type": entity_type,
        "entity_id": str(entity_id) if entity_id is not None else None,
        "actor": actor,
        "action": action,
        "since": since,
        "limit": limit,
    }
    conditions = [sql for name, sql in _FILTERS if params[name] is not None]
    if queue_id is not None:
        conditions.append(_QUEUE_FILTER)
        params["queue_key"] = str(queue_id)
        params["queue_id"] = queue_id

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    rows = conn.execute(
        f"""
        SELECT id, timestamp, actor, action, entity_type, entity_id,
               old_state, new_state, details
        FROM audit_log
        {where}
        ORDER BY id DESC
        LIMIT :limit
        """,
        params,
    ).fetchall()
    return [_parse_details(r) for r in rows]
