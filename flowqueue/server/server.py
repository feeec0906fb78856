#!/usr/bin/env python3
"""
Flow Queue MCP Server

FastMCP server exposing the queue engine to agents and the UI/API via MCP
tools. Supports both stdio (local development) and SSE (Docker) transports.

Usage (stdio mode):
    flowqueue-server [db_path] --project-root <path>

Usage (SSE mode - Docker):
    flowqueue-server [db_path] --project-root <path> --transport sse --port 8080

Usage (CLI smoke-test):
    flowqueue-server [db_path] --project-root <path> --command <name> [--project-id N] [--queue-id N]

The database path defaults to database.path from .flowqueue/config.yaml.

MCP Tools exposed:
    create_queue / update_queue / pause_queue / resume_queue / delete_queue
    list_queues                    - queues of a project
    enqueue_ticket / enqueue_task  - admit one owner
    enqueue_item                   - admit any owner type (ticket, task, chat, prompt)
    enqueue_ticket_with_all_tasks  - admit a ticket and all of its tasks atomically
    batch_enqueue_items            - admit a list of items atomically
    dequeue_item / move_item       - take an item out of, or across, queues
    peek_queue                     - dispatch order preview (read-only)
    get_next_task_from_queue       - atomically claim the next item for an agent
    complete_processing_item       - report success
    fail_processing_item           - report failure
    requeue_item / cancel_item     - administrative transitions
    cleanup_queue_data             - reconcile orphaned, stale and dangling items
    reset_queue                    - remove every item of a queue
    move_failed_to_dead_letter     - relocate failed items
    list_dead_letters / replay_dead_letter
    get_queue_health / find_stuck_items
    get_queue_stats / get_processing_stats / get_item_queue_state
    get_audit_log                  - query audit trail

MCP Resources:
    flowqueue://health/{project_id}  - health report for a project
    flowqueue://queue/{queue_id}     - statistics and dispatch preview of a queue

Errors are returned as {"error": message, "code": code}. Client errors carry
QUEUE_NOT_FOUND, INVALID_REFERENCE, NOT_IN_PROGRESS, INVALID_TRANSITION or
INVALID_ARGUMENT; PERSISTENCE_ERROR is a retry-safe server error.
"""

import argparse
import json
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from flowqueue.engine import audit as audit_mod
from flowqueue.engine import cleanup as cleanup_mod
from flowqueue.engine import completion as completion_mod
from flowqueue.engine import dispatch as dispatch_mod
from flowqueue.engine import enqueue as enqueue_mod
from flowqueue.engine import health as health_mod
from flowqueue.engine import registry as registry_mod
from flowqueue.engine import stats as stats_mod
from flowqueue.engine.config import load_queue_config
from flowqueue.engine.errors import QueueError
from flowqueue.engine.schema import create_db
from flowqueue.logging_conf import setup_logging

logger = logging.getLogger(__name__)


def _error(message: str, code: str) -> dict[str, Any]:
    return {"error": message, "code": code}


class QueueServer:
    """
    Queue engine server wrapping the SQLite database.

    Owns the database connection and exposes all queue operations as
    JSON-ready dicts. The FastMCP tools and the CLI smoke-test delegate to
    this class.
    """

    def __init__(self, db_path: str | None = None, project_root: str = "."):
        self.project_root = Path(project_root)
        self.config = load_queue_config(project_root)
        self.db_path = db_path or self.config.db_path
        self.conn = create_db(self.db_path)

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def _call(self, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except QueueError as exc:
            logger.info("Request rejected (%s): %s", exc.code, exc)
            return _error(str(exc), exc.code)
        except ValueError as exc:
            return _error(str(exc), "INVALID_ARGUMENT")

    # -----------------------------------------------------------------------
    # Queue registry
    # -----------------------------------------------------------------------

    def create_queue(
        self,
        name: str,
        project_id: int,
        max_parallel_items: int | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        limit = (
            max_parallel_items
            if max_parallel_items is not None
            else self.config.default_max_parallel_items
        )
        return self._call(lambda: registry_mod.create_queue(
            self.conn, name, project_id, limit, description
        ).to_dict())

    def get_queue(self, queue_id: int) -> dict[str, Any]:
        return self._call(lambda: registry_mod.get_queue(self.conn, queue_id).to_dict())

    def list_queues(self, project_id: int | None = None) -> list[dict[str, Any]]:
        return [q.to_dict() for q in registry_mod.list_queues(self.conn, project_id)]

    def update_queue(
        self,
        queue_id: int,
        name: str | None = None,
        description: str | None = None,
        max_parallel_items: int | None = None,
    ) -> dict[str, Any]:
        return self._call(lambda: registry_mod.update_queue(
            self.conn, queue_id, name, description, max_parallel_items
        ).to_dict())

    def pause_queue(self, queue_id: int) -> dict[str, Any]:
        return self._call(lambda: registry_mod.pause_queue(self.conn, queue_id).to_dict())

    def resume_queue(self, queue_id: int) -> dict[str, Any]:
        return self._call(lambda: registry_mod.resume_queue(self.conn, queue_id).to_dict())

    def delete_queue(self, queue_id: int) -> dict[str, Any]:
        def _delete() -> dict[str, Any]:
            removed = registry_mod.delete_queue(self.conn, queue_id)
            return {"queue_id": queue_id, "deleted": True, "items_removed": removed}
        return self._call(_delete)

    # -----------------------------------------------------------------------
    # Enqueue
    # -----------------------------------------------------------------------

    def enqueue_item(
        self,
        item_type: str,
        item_id: int,
        queue_id: int,
        priority: int = 0,
        estimated_processing_time: int | None = None,
    ) -> dict[str, Any]:
        return self._call(lambda: enqueue_mod.enqueue_item(
            self.conn, item_type, item_id, queue_id, priority, estimated_processing_time
        ).to_dict())

    def enqueue_ticket(self, ticket_id: int, queue_id: int, priority: int = 0) -> dict[str, Any]:
        return self._call(lambda: enqueue_mod.enqueue_ticket(
            self.conn, ticket_id, queue_id, priority
        ).to_dict())

    def enqueue_task(self, task_id: int, queue_id: int, priority: int = 0) -> dict[str, Any]:
        return self._call(lambda: enqueue_mod.enqueue_task(
            self.conn, task_id, queue_id, priority
        ).to_dict())

    def enqueue_ticket_with_all_tasks(
        self,
        queue_id: int,
        ticket_id: int,
        priority: int = 0,
    ) -> dict[str, Any]:
        def _enqueue() -> dict[str, Any]:
            result = enqueue_mod.enqueue_ticket_with_all_tasks(
                self.conn, queue_id, ticket_id, priority,
                task_priority_offset=self.config.task_priority_offset,
            )
            return {
                "ticket": result["ticket"].to_dict(),
                "tasks": [t.to_dict() for t in result["tasks"]],
            }
        return self._call(_enqueue)

    def batch_enqueue_items(self, items: list[dict[str, Any]]) -> Any:
        return self._call(lambda: [
            i.to_dict() for i in enqueue_mod.batch_enqueue_items(self.conn, items)
        ])

    def dequeue_item(self, item_type: str, item_id: int) -> dict[str, Any]:
        def _dequeue() -> dict[str, Any]:
            removed = enqueue_mod.dequeue_item(self.conn, item_type, item_id)
            return {"item_type": item_type, "item_id": item_id, "removed": removed}
        return self._call(_dequeue)

    def move_item(
        self,
        item_type: str,
        item_id: int,
        target_queue_id: int | None,
        priority: int | None = None,
        include_tasks: bool = False,
    ) -> Any:
        return self._call(lambda: [
            i.to_dict() for i in enqueue_mod.move_item(
                self.conn, item_type, item_id, target_queue_id, priority, include_tasks,
                task_priority_offset=self.config.task_priority_offset,
            )
        ])

    # -----------------------------------------------------------------------
    # Dispatch and completion
    # -----------------------------------------------------------------------

    def peek_queue(self, queue_id: int, limit: int = 20) -> Any:
        return self._call(lambda: [
            i.to_dict() for i in dispatch_mod.peek_next(self.conn, queue_id, limit)
        ])

    def get_next_task_from_queue(self, queue_id: int, agent_id: str) -> dict[str, Any]:
        """
        Atomically claim the next item of a queue for agent_id.

        Returns:
            {type: ticket|task|chat|prompt, item, message} on a claim
            {type: "none", reason: paused|empty|parallel-limit-reached, message} otherwise
        """
        def _claim() -> dict[str, Any]:
            result = dispatch_mod.get_next(self.conn, queue_id, agent_id)
            if result.success:
                item = result.item  # type: ignore[union-attr]
                return {
                    "type": item.item_type,
                    "item": item.to_dict(),
                    "message": (
                        f"{result}. Call complete_processing_item or "
                        "fail_processing_item when done."
                    ),
                }
            return {"type": "none", "reason": result.reason, "message": str(result)}  # type: ignore[union-attr]
        return self._call(_claim)

    def complete_processing_item(
        self,
        item_type: str,
        item_id: int,
        agent_id: str | None = None,
    ) -> dict[str, Any]:
        return self._call(lambda: completion_mod.complete_item(
            self.conn, item_type, item_id, agent_id
        ).to_dict())

    def fail_processing_item(
        self,
        item_type: str,
        item_id: int,
        error_message: str,
        agent_id: str | None = None,
    ) -> dict[str, Any]:
        return self._call(lambda: completion_mod.fail_item(
            self.conn, item_type, item_id, error_message, agent_id
        ).to_dict())

    def requeue_item(self, item_type: str, item_id: int) -> dict[str, Any]:
        return self._call(lambda: completion_mod.requeue_item(
            self.conn, item_type, item_id
        ).to_dict())

    def cancel_item(self, item_type: str, item_id: int) -> dict[str, Any]:
        return self._call(lambda: completion_mod.cancel_item(
            self.conn, item_type, item_id
        ).to_dict())

    # -----------------------------------------------------------------------
    # Cleanup and dead letter
    # -----------------------------------------------------------------------

    def cleanup_queue_data(
        self,
        project_id: int | None = None,
        max_age_ms: int | None = None,
    ) -> dict[str, Any]:
        return self._call(lambda: cleanup_mod.cleanup_queue_data(
            self.conn,
            project_id,
            max_age_ms if max_age_ms is not None else self.config.cleanup_max_age_ms,
            self.config.dead_letter_max_attempts,
        ).to_dict())

    def reset_queue(self, queue_id: int) -> dict[str, Any]:
        def _reset() -> dict[str, Any]:
            removed = cleanup_mod.reset_queue(self.conn, queue_id)
            return {"queue_id": queue_id, "removed_count": removed}
        return self._call(_reset)

    def move_failed_to_dead_letter(
        self,
        queue_id: int | None = None,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        def _move() -> dict[str, Any]:
            moved = cleanup_mod.move_failed_to_dead_letter(self.conn, queue_id, max_attempts)
            return {"queue_id": queue_id, "moved_count": moved}
        return self._call(_move)

    def list_dead_letters(self, queue_id: int | None = None, limit: int = 100) -> list[dict[str, Any]]:
        return [d.to_dict() for d in cleanup_mod.list_dead_letters(self.conn, queue_id, limit)]

    def replay_dead_letter(self, dead_letter_id: int, queue_id: int | None = None) -> dict[str, Any]:
        return self._call(lambda: cleanup_mod.replay_dead_letter(
            self.conn, dead_letter_id, queue_id
        ).to_dict())

    def clear_finished_items(self, queue_id: int) -> dict[str, Any]:
        def _clear() -> dict[str, Any]:
            removed = cleanup_mod.clear_finished_items(self.conn, queue_id)
            return {"queue_id": queue_id, "removed_count": removed}
        return self._call(_clear)

    # -----------------------------------------------------------------------
    # Health, statistics and audit
    # -----------------------------------------------------------------------

    def get_queue_health(self, project_id: int) -> dict[str, Any]:
        return health_mod.get_queue_health(
            self.conn, project_id, self.config.stuck_threshold_minutes
        )

    def find_stuck_items(self, project_id: int | None = None) -> list[dict[str, Any]]:
        return [
            i.to_dict() for i in health_mod.find_stuck_items(
                self.conn, project_id, self.config.stuck_threshold_minutes
            )
        ]

    def get_queue_stats(self, queue_id: int) -> dict[str, Any]:
        return self._call(lambda: stats_mod.get_queue_stats(self.conn, queue_id))

    def get_processing_stats(
        self,
        queue_id: int,
        since: str | None = None,
        until: str | None = None,
    ) -> dict[str, Any]:
        return self._call(lambda: stats_mod.get_processing_stats(self.conn, queue_id, since, until))

    def get_item_queue_state(self, item_type: str, item_id: int) -> dict[str, Any]:
        return self._call(lambda: stats_mod.get_item_queue_state(self.conn, item_type, item_id))

    def get_audit_log(self, queue_id: int | None = None, limit: int = 50) -> list[dict[str, Any]]:
        return audit_mod.query_audit(self.conn, queue_id=queue_id, limit=limit)


# ---------------------------------------------------------------------------
# FastMCP server factory
# ---------------------------------------------------------------------------


def _dumps(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def create_mcp_server(db_path: str | None, project_root: str, port: int = 8080) -> FastMCP:
    """Create a FastMCP server wrapping the QueueServer."""
    qs = QueueServer(db_path, project_root)
    mcp = FastMCP("flowqueue", port=port)

    @mcp.tool()
    def create_queue(
        name: str,
        project_id: int,
        max_parallel_items: int | None = None,
        description: str | None = None,
    ) -> str:
        """
        Create a work queue for a project.

        Args:
            name: Queue name
            project_id: Owning project
            max_parallel_items: Concurrency ceiling (default from config, >= 1)
            description: Optional free-text description
        """
        return _dumps(qs.create_queue(name, project_id, max_parallel_items, description))

    @mcp.tool()
    def update_queue(
        queue_id: int,
        name: str | None = None,
        description: str | None = None,
        max_parallel_items: int | None = None,
    ) -> str:
        """Change a queue's name, description or concurrency ceiling."""
        return _dumps(qs.update_queue(queue_id, name, description, max_parallel_items))

    @mcp.tool()
    def list_queues(project_id: int | None = None) -> str:
        """List queues, optionally for one project."""
        return _dumps(qs.list_queues(project_id))

    @mcp.tool()
    def pause_queue(queue_id: int) -> str:
        """
        Pause a queue. Dispatch returns reason 'paused' until it is resumed.
        Items already claimed stay with their agents.
        """
        return _dumps(qs.pause_queue(queue_id))

    @mcp.tool()
    def resume_queue(queue_id: int) -> str:
        """Resume dispatching from a paused queue."""
        return _dumps(qs.resume_queue(queue_id))

    @mcp.tool()
    def delete_queue(queue_id: int) -> str:
        """Delete a queue together with every item in it."""
        return _dumps(qs.delete_queue(queue_id))

    @mcp.tool()
    def enqueue_ticket(ticket_id: int, queue_id: int, priority: int = 0) -> str:
        """
        Admit a ticket into a queue (lower priority value = more urgent).

        Re-enqueueing a ticket that already has a finished item puts it back
        at the end of its priority band.
        """
        return _dumps(qs.enqueue_ticket(ticket_id, queue_id, priority))

    @mcp.tool()
    def enqueue_task(task_id: int, queue_id: int, priority: int = 0) -> str:
        """Admit a task into a queue."""
        return _dumps(qs.enqueue_task(task_id, queue_id, priority))

    @mcp.tool()
    def enqueue_item(
        item_type: str,
        item_id: int,
        queue_id: int,
        priority: int = 0,
        estimated_processing_time: int | None = None,
    ) -> str:
        """
        Admit any owner into a queue.

        Args:
            item_type: 'ticket', 'task', 'chat' or 'prompt'
            item_id: ID of the owning entity
            queue_id: Target queue
            priority: Lower = dispatched earlier (default: 0)
            estimated_processing_time: Optional estimate in milliseconds
        """
        return _dumps(qs.enqueue_item(item_type, item_id, queue_id, priority,
                                      estimated_processing_time))

    @mcp.tool()
    def enqueue_ticket_with_all_tasks(queue_id: int, ticket_id: int, priority: int = 0) -> str:
        """
        Admit a ticket and all of its tasks in one transaction.

        Tasks follow their ticket: they are admitted in order at priority plus
        the configured task offset.
        """
        return _dumps(qs.enqueue_ticket_with_all_tasks(queue_id, ticket_id, priority))

    @mcp.tool()
    def batch_enqueue_items(items: str) -> str:
        """
        Admit several items atomically.

        Args:
            items: JSON array of {"item_type", "item_id", "queue_id", "priority"}
        """
        try:
            parsed = json.loads(items)
        except json.JSONDecodeError as exc:
            return _dumps(_error(f"Invalid items JSON: {exc}", "INVALID_ARGUMENT"))
        return _dumps(qs.batch_enqueue_items(parsed))

    @mcp.tool()
    def dequeue_item(item_type: str, item_id: int) -> str:
        """Remove an item from its queue. Claimed items cannot be removed."""
        return _dumps(qs.dequeue_item(item_type, item_id))

    @mcp.tool()
    def move_item(
        item_type: str,
        item_id: int,
        target_queue_id: int | None = None,
        priority: int | None = None,
        include_tasks: bool = False,
    ) -> str:
        """
        Move an item into another queue, or out of any queue when
        target_queue_id is omitted. include_tasks carries a ticket's tasks along.
        """
        return _dumps(qs.move_item(item_type, item_id, target_queue_id, priority, include_tasks))

    @mcp.tool()
    def peek_queue(queue_id: int, limit: int = 20) -> str:
        """List queued items in dispatch order. Does NOT claim."""
        return _dumps(qs.peek_queue(queue_id, limit))

    @mcp.tool()
    def get_next_task_from_queue(queue_id: int, agent_id: str) -> str:
        """
        Atomically claim the next item of a queue.

        Items are handed out by priority, then first-in-first-out, never
        exceeding the queue's max_parallel_items. When nothing is handed out,
        type is 'none' and reason is 'paused', 'empty' or
        'parallel-limit-reached'.

        Args:
            queue_id: Queue to take work from
            agent_id: Your agent ID; it holds the item until complete/fail
        """
        return _dumps(qs.get_next_task_from_queue(queue_id, agent_id))

    @mcp.tool()
    def complete_processing_item(item_type: str, item_id: int, agent_id: str | None = None) -> str:
        """Report that a claimed item was processed successfully."""
        return _dumps(qs.complete_processing_item(item_type, item_id, agent_id))

    @mcp.tool()
    def fail_processing_item(
        item_type: str,
        item_id: int,
        error_message: str,
        agent_id: str | None = None,
    ) -> str:
        """
        Report that processing a claimed item failed.

        The item is NOT retried automatically; use requeue_item to retry.
        """
        return _dumps(qs.fail_processing_item(item_type, item_id, error_message, agent_id))

    @mcp.tool()
    def requeue_item(item_type: str, item_id: int) -> str:
        """Put a failed or cancelled item back in its queue."""
        return _dumps(qs.requeue_item(item_type, item_id))

    @mcp.tool()
    def cancel_item(item_type: str, item_id: int) -> str:
        """Cancel an item that has not been claimed yet."""
        return _dumps(qs.cancel_item(item_type, item_id))

    @mcp.tool()
    def cleanup_queue_data(project_id: int | None = None, max_age_ms: int | None = None) -> str:
        """
        Reconcile queue state: remove orphaned items, expired finished items
        and items whose ticket/task/chat/prompt was deleted; dead-letter
        exhausted failures; refresh queue statistics.
        """
        return _dumps(qs.cleanup_queue_data(project_id, max_age_ms))

    @mcp.tool()
    def reset_queue(queue_id: int) -> str:
        """Remove every item of a queue."""
        return _dumps(qs.reset_queue(queue_id))

    @mcp.tool()
    def move_failed_to_dead_letter(queue_id: int | None = None, max_attempts: int | None = None) -> str:
        """Relocate failed items to the dead-letter store."""
        return _dumps(qs.move_failed_to_dead_letter(queue_id, max_attempts))

    @mcp.tool()
    def list_dead_letters(queue_id: int | None = None, limit: int = 100) -> str:
        """List dead-lettered items, most recent first."""
        return _dumps(qs.list_dead_letters(queue_id, limit))

    @mcp.tool()
    def replay_dead_letter(dead_letter_id: int, queue_id: int | None = None) -> str:
        """Re-admit a dead-lettered item into its queue (or queue_id)."""
        return _dumps(qs.replay_dead_letter(dead_letter_id, queue_id))

    @mcp.tool()
    def get_queue_health(project_id: int) -> str:
        """Health report: orphaned items, stuck items, missing or paused queues."""
        return _dumps(qs.get_queue_health(project_id))

    @mcp.tool()
    def find_stuck_items(project_id: int | None = None) -> str:
        """List items in progress for longer than the configured threshold."""
        return _dumps(qs.find_stuck_items(project_id))

    @mcp.tool()
    def get_queue_stats(queue_id: int) -> str:
        """Item counts per status and the agents currently holding items."""
        return _dumps(qs.get_queue_stats(queue_id))

    @mcp.tool()
    def get_processing_stats(queue_id: int, since: str | None = None, until: str | None = None) -> str:
        """Success rate and processing times for a queue."""
        return _dumps(qs.get_processing_stats(queue_id, since, until))

    @mcp.tool()
    def get_item_queue_state(item_type: str, item_id: int) -> str:
        """Queue status and position of a ticket, task, chat or prompt."""
        return _dumps(qs.get_item_queue_state(item_type, item_id))

    @mcp.tool()
    def get_audit_log(queue_id: int | None = None, limit: int = 50) -> str:
        """Query the audit trail, newest first."""
        return _dumps(qs.get_audit_log(queue_id, limit))

    # MCP Resources
    @mcp.resource("flowqueue://health/{project_id}")
    def health_resource(project_id: str) -> str:
        """Health report for a project's queues."""
        return _dumps(qs.get_queue_health(int(project_id)))

    @mcp.resource("flowqueue://queue/{queue_id}")
    def queue_resource(queue_id: str) -> str:
        """Statistics and dispatch preview for a queue."""
        return _dumps({
            "stats": qs.get_queue_stats(int(queue_id)),
            "next": qs.peek_queue(int(queue_id), 10),
        })

    return mcp


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Flow Queue MCP Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # MCP server mode
    flowqueue-server .flowqueue/queue.db --project-root .

    # SSE mode (Docker)
    flowqueue-server queue.db --project-root /app/project --transport sse --port 8080

    # CLI smoke tests
    flowqueue-server --project-root . --command health --project-id 1
    flowqueue-server --project-root . --command cleanup
        """,
    )
    parser.add_argument("database", nargs="?", default=None,
                        help="Path to the queue SQLite database (default: from config)")
    parser.add_argument("--project-root", default=".", help="Path to consuming repo root")
    parser.add_argument("--transport", choices=["stdio", "sse"], default="stdio")
    parser.add_argument("--port", type=int, default=8080, help="Port for SSE mode")
    parser.add_argument("--project-id", type=int, default=None)
    parser.add_argument("--queue-id", type=int, default=None)
    parser.add_argument(
        "--command",
        choices=["queues", "health", "cleanup", "dead_letter", "stats"],
        help="CLI command (omit for MCP server mode)",
    )

    args = parser.parse_args()

    config = load_queue_config(args.project_root)
    # stdout belongs to the stdio transport
    setup_logging(config.log_level, config.log_file, stream=sys.stderr)

    if not args.command:
        mcp_server = create_mcp_server(args.database, args.project_root, port=args.port)
        logger.info("Starting flowqueue MCP server (%s transport)", args.transport)
        mcp_server.run(transport=args.transport)
        return

    # CLI mode - create server and run command
    qs = QueueServer(args.database, args.project_root)
    try:
        if args.command == "queues":
            result: Any = qs.list_queues(args.project_id)
        elif args.command == "health":
            if args.project_id is None:
                parser.error("health requires --project-id")
            result = qs.get_queue_health(args.project_id)
        elif args.command == "cleanup":
            result = qs.cleanup_queue_data(args.project_id)
        elif args.command == "dead_letter":
            result = qs.move_failed_to_dead_letter(args.queue_id)
        else:
            if args.queue_id is None:
                parser.error("stats requires --queue-id")
            result = qs.get_queue_stats(args.queue_id)

        print(json.dumps(result, indent=2, default=str))
    finally:
        qs.close()


if __name__ == "__main__":
    main()
