#!/usr/bin/env python3
"""
Flow Queue CLI

Human-facing command-line interface for the queue engine: queue inspection,
operator interventions and maintenance.

Usage:
    # All commands auto-detect .flowqueue/config.yaml from the current directory
    # or accept --db and --project-root overrides.

    flowqueue queues [--project-id N]        # list queues with item counts
    flowqueue create-queue <name> --project-id N [--max-parallel N]
    flowqueue pause <queue-id>               # stop dispatching from a queue
    flowqueue resume <queue-id>
    flowqueue delete-queue <queue-id>        # delete a queue and its items

    flowqueue status <queue-id>              # counts, agents and dispatch preview
    flowqueue health <project-id>            # health report
    flowqueue stuck [--project-id N]         # items in progress for too long

    flowqueue fail <type> <id> --error MSG   # fail a stuck item by hand
    flowqueue requeue <type> <id>            # retry a failed/cancelled item
    flowqueue cancel <type> <id>             # cancel a queued item

    flowqueue cleanup [--project-id N]       # reconcile queue data
    flowqueue reset <queue-id>               # remove every item of a queue
    flowqueue dead-letter [--queue-id N]     # move failed items to dead letter
    flowqueue dead-letters [--queue-id N]    # list dead-lettered items
    flowqueue replay <dead-letter-id>        # re-admit a dead-lettered item
    flowqueue audit [--queue-id N] [--since T]  # show audit log
"""

import argparse
import sqlite3
import sys
from pathlib import Path

from flowqueue.engine import cleanup as cleanup_mod
from flowqueue.engine import completion as completion_mod
from flowqueue.engine import dispatch as dispatch_mod
from flowqueue.engine import health as health_mod
from flowqueue.engine import registry as registry_mod
from flowqueue.engine import stats as stats_mod
from flowqueue.engine.audit import query_audit
from flowqueue.engine.config import find_project_root, load_queue_config
from flowqueue.engine.errors import QueueError
from flowqueue.engine.models import ItemType, QueueConfig
from flowqueue.engine.schema import create_db
from flowqueue.logging_conf import setup_logging


def _open_db(args: argparse.Namespace) -> tuple[sqlite3.Connection, QueueConfig, Path]:
    """Open database and load config from args or auto-discovery."""
    project_root = Path(args.project_root) if args.project_root else find_project_root()
    config = load_queue_config(project_root)

    db_path = args.db if args.db else config.db_path
    conn = create_db(db_path)
    return conn, config, project_root


def _actor(args: argparse.Namespace) -> str:
    return f"human:{args.by}"


# ---------------------------------------------------------------------------
# Queue commands
# ---------------------------------------------------------------------------


def cmd_queues(args: argparse.Namespace) -> int:
    """List queues with item counts."""
    conn, config, _ = _open_db(args)
    try:
        queues = registry_mod.list_queues(conn, args.project_id)
        if not queues:
            print("No queues found.")
            return 0

        print(f"{'ID':<6} {'Name':<25} {'Project':<8} {'State':<8} {'Max':<5} "
              f"{'Queued':<8} {'Running':<8} {'Done'}")
        print("-" * 80)
        for q in queues:
            s = stats_mod.get_queue_stats(conn, q.id)
            state = "active" if q.is_active else "paused"
            print(
                f"{q.id:<6} {q.name[:24]:<25} {q.project_id:<8} {state:<8} "
                f"{q.max_parallel_items:<5} {s['queued']:<8} {s['in_progress']:<8} "
                f"{s['completed']}"
            )
        return 0
    finally:
        conn.close()


def cmd_create_queue(args: argparse.Namespace) -> int:
    """Create a queue."""
    conn, config, _ = _open_db(args)
    try:
        queue = registry_mod.create_queue(
            conn,
            args.name,
            args.project_id,
            max_parallel_items=args.max_parallel or config.default_max_parallel_items,
            description=args.description,
            actor=_actor(args),
        )
        print(f"Created queue {queue.id} '{queue.name}' "
              f"(max {queue.max_parallel_items} in parallel).")
        return 0
    finally:
        conn.close()


def cmd_pause(args: argparse.Namespace) -> int:
    """Pause a queue."""
    conn, config, _ = _open_db(args)
    try:
        registry_mod.pause_queue(conn, args.queue_id, actor=_actor(args))
        print(f"Queue {args.queue_id} PAUSED. Items already in progress are unaffected.")
        return 0
    finally:
        conn.close()


def cmd_resume(args: argparse.Namespace) -> int:
    """Resume a queue."""
    conn, config, _ = _open_db(args)
    try:
        registry_mod.resume_queue(conn, args.queue_id, actor=_actor(args))
        print(f"Queue {args.queue_id} RESUMED.")
        return 0
    finally:
        conn.close()


def cmd_delete_queue(args: argparse.Namespace) -> int:
    """Delete a queue and all of its items."""
    conn, config, _ = _open_db(args)
    try:
        removed = registry_mod.delete_queue(conn, args.queue_id, actor=_actor(args))
        print(f"Deleted queue {args.queue_id} and {removed} item(s).")
        return 0
    finally:
        conn.close()


def cmd_status(args: argparse.Namespace) -> int:
    """Show queue statistics and the next items in dispatch order."""
    conn, config, _ = _open_db(args)
    try:
        s = stats_mod.get_queue_stats(conn, args.queue_id)
        state = "active" if s["is_active"] else "paused"
        print(f"\nQueue {s['queue_id']}: {s['name']} ({state}, "
              f"max {s['max_parallel_items']} in parallel)")
        print(f"  queued: {s['queued']}  in_progress: {s['in_progress']}  "
              f"completed: {s['completed']}  failed: {s['failed']}  "
              f"cancelled: {s['cancelled']}")
        if s["agents"]:
            print(f"  agents: {', '.join(s['agents'])}")
        if s["average_processing_time"] is not None:
            print(f"  avg processing time: {s['average_processing_time']:.0f} ms "
                  f"over {s['total_completed_items']} item(s)")

        upcoming = dispatch_mod.peek_next(conn, args.queue_id, args.limit)
        if not upcoming:
            print("\nNo queued items.")
            return 0

        print(f"\n{'Pos':<5} {'Type':<8} {'Item':<8} {'Priority':<10} {'Queued At'}")
        print("-" * 55)
        for pos, item in enumerate(upcoming, start=1):
            print(f"{pos:<5} {item.item_type:<8} {item.item_id:<8} {item.priority:<10} "
                  f"{(item.queued_at or '')[:19]}")
        return 0
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Health commands
# ---------------------------------------------------------------------------


def cmd_health(args: argparse.Namespace) -> int:
    """Show the health report for a project. Exit code 2 when unhealthy."""
    conn, config, _ = _open_db(args)
    try:
        report = health_mod.get_queue_health(
            conn, args.project_id, config.stuck_threshold_minutes
        )
        print(f"Project {args.project_id}: {'HEALTHY' if report['healthy'] else 'UNHEALTHY'}")
        for key, value in report["stats"].items():
            print(f"  {key:<20} {value}")
        for issue in report["issues"]:
            print(f"  ! {issue}")
        return 0 if report["healthy"] else 2
    finally:
        conn.close()


def cmd_stuck(args: argparse.Namespace) -> int:
    """List items stuck in processing."""
    conn, config, _ = _open_db(args)
    try:
        minutes = args.minutes or config.stuck_threshold_minutes
        items = health_mod.find_stuck_items(conn, args.project_id, minutes)
        if not items:
            print(f"No items in progress for more than {minutes} minute(s).")
            return 0

        print(f"{'Queue':<7} {'Type':<8} {'Item':<8} {'Agent':<22} {'Started At'}")
        print("-" * 65)
        for item in items:
            print(f"{item.queue_id:<7} {item.item_type:<8} {item.item_id:<8} "
                  f"{(item.agent_id or '')[:21]:<22} {(item.started_at or '')[:19]}")
        print(f"\n{len(items)} stuck item(s). Run: flowqueue fail <type> <id> --error ...")
        return 0
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Item commands
# ---------------------------------------------------------------------------


def cmd_fail(args: argparse.Namespace) -> int:
    """Fail an in-progress item on behalf of its agent."""
    conn, config, _ = _open_db(args)
    try:
        item = completion_mod.fail_item(conn, args.item_type, args.item_id, args.error)
        print(f"{item.item_type.capitalize()} {item.item_id} marked FAILED.")
        return 0
    finally:
        conn.close()


def cmd_requeue(args: argparse.Namespace) -> int:
    """Requeue a failed or cancelled item."""
    conn, config, _ = _open_db(args)
    try:
        item = completion_mod.requeue_item(conn, args.item_type, args.item_id, actor=_actor(args))
        print(f"{item.item_type.capitalize()} {item.item_id} requeued in queue {item.queue_id}.")
        return 0
    finally:
        conn.close()


def cmd_cancel(args: argparse.Namespace) -> int:
    """Cancel a queued item."""
    conn, config, _ = _open_db(args)
    try:
        item = completion_mod.cancel_item(conn, args.item_type, args.item_id, actor=_actor(args))
        print(f"{item.item_type.capitalize()} {item.item_id} CANCELLED.")
        return 0
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Maintenance commands
# ---------------------------------------------------------------------------


def cmd_cleanup(args: argparse.Namespace) -> int:
    """Reconcile queue data."""
    conn, config, _ = _open_db(args)
    try:
        max_age_ms = (
            args.max_age_days * 24 * 60 * 60 * 1000 if args.max_age_days is not None
            else config.cleanup_max_age_ms
        )
        result = cleanup_mod.cleanup_queue_data(
            conn,
            project_id=args.project_id,
            max_age_ms=max_age_ms,
            dead_letter_max_attempts=config.dead_letter_max_attempts,
            actor=_actor(args),
        )
        print(f"Removed {result.total_removed} item(s):")
        print(f"  orphaned:          {result.orphaned_items_removed}")
        print(f"  expired:           {result.old_completed_items_removed}")
        print(f"  missing tasks:     {result.invalid_tasks_removed}")
        print(f"  missing tickets:   {result.invalid_tickets_removed}")
        print(f"  missing chats:     {result.invalid_chats_removed}")
        print(f"  missing prompts:   {result.invalid_prompts_removed}")
        print(f"Dead-lettered {result.dead_lettered} item(s); "
              f"refreshed {result.queues_refreshed} queue(s).")
        for error in result.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1 if result.errors else 0
    finally:
        conn.close()


def cmd_reset(args: argparse.Namespace) -> int:
    """Remove every item of a queue."""
    conn, config, _ = _open_db(args)
    try:
        removed = cleanup_mod.reset_queue(conn, args.queue_id, actor=_actor(args))
        print(f"Reset queue {args.queue_id}: removed {removed} item(s).")
        return 0
    finally:
        conn.close()


def cmd_dead_letter(args: argparse.Namespace) -> int:
    """Move failed items to the dead-letter store."""
    conn, config, _ = _open_db(args)
    try:
        moved = cleanup_mod.move_failed_to_dead_letter(
            conn, args.queue_id, args.max_attempts, actor=_actor(args)
        )
        print(f"Moved {moved} failed item(s) to dead letter.")
        return 0
    finally:
        conn.close()


def cmd_dead_letters(args: argparse.Namespace) -> int:
    """List dead-lettered items."""
    conn, config, _ = _open_db(args)
    try:
        items = cleanup_mod.list_dead_letters(conn, args.queue_id, args.limit)
        if not items:
            print("No dead-lettered items.")
            return 0

        print(f"{'ID':<6} {'Queue':<7} {'Type':<8} {'Item':<8} {'Tries':<6} {'Moved At':<20} {'Error'}")
        print("-" * 90)
        for d in items:
            print(f"{d.id:<6} {d.queue_id if d.queue_id is not None else '-':<7} "
                  f"{d.item_type:<8} {d.item_id:<8} {d.attempt_count:<6} "
                  f"{(d.moved_at or '')[:19]:<20} {(d.error_message or '')[:40]}")
        return 0
    finally:
        conn.close()


def cmd_replay(args: argparse.Namespace) -> int:
    """Re-admit a dead-lettered item."""
    conn, config, _ = _open_db(args)
    try:
        item = cleanup_mod.replay_dead_letter(
            conn, args.dead_letter_id, args.queue_id, actor=_actor(args)
        )
        print(f"Replayed dead letter {args.dead_letter_id} as "
              f"{item.item_type} {item.item_id} in queue {item.queue_id}.")
        return 0
    finally:
        conn.close()


def cmd_audit(args: argparse.Namespace) -> int:
    """Show audit log."""
    conn, config, _ = _open_db(args)
    try:
        entries = query_audit(conn, queue_id=args.queue_id, action=args.action,
                              since=args.since, limit=args.limit or 50)

        if not entries:
            print("No audit entries found.")
            return 0

        print(f"\n{'Timestamp':<22} {'Actor':<20} {'Action':<20} {'Entity':<15} {'Old':<12} {'New'}")
        print("-" * 105)
        for e in entries:
            ts = e["timestamp"][:19] if e["timestamp"] else ""
            actor = e["actor"]
            if len(actor) > 18:
                actor = actor[:15] + "..."
            entity = f"{e['entity_type']}/{e['entity_id']}"
            if len(entity) > 13:
                entity = entity[:10] + "..."
            print(
                f"{ts:<22} {actor:<20} {e['action']:<20} {entity:<15} "
                f"{e.get('old_state') or '':<12} {e.get('new_state') or ''}"
            )
        return 0
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Main CLI
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowqueue",
        description="Flow Queue CLI - queue inspection, operator actions and maintenance",
    )
    parser.add_argument(
        "--db",
        metavar="PATH",
        help="Path to queue.db (default: read from .flowqueue/config.yaml)",
    )
    parser.add_argument(
        "--project-root",
        metavar="PATH",
        help="Path to consuming repo root (default: auto-detect from .flowqueue/)",
    )
    parser.add_argument("--by", default="cli", help="Operator name recorded in the audit log")

    subparsers = parser.add_subparsers(dest="command", required=True)
    item_types = sorted(ItemType.ALL)

    # queues
    p_queues = subparsers.add_parser("queues", help="List queues")
    p_queues.add_argument("--project-id", type=int, help="Only this project's queues")
    p_queues.set_defaults(func=cmd_queues)

    # create-queue
    p_create = subparsers.add_parser("create-queue", help="Create a queue")
    p_create.add_argument("name", help="Queue name")
    p_create.add_argument("--project-id", type=int, required=True, help="Owning project")
    p_create.add_argument("--max-parallel", type=int, help="Concurrency ceiling")
    p_create.add_argument("--description", help="Queue description")
    p_create.set_defaults(func=cmd_create_queue)

    # pause / resume / delete-queue / status / reset
    for name, func, help_text in [
        ("pause", cmd_pause, "Pause a queue"),
        ("resume", cmd_resume, "Resume a paused queue"),
        ("delete-queue", cmd_delete_queue, "Delete a queue and its items"),
        ("reset", cmd_reset, "Remove every item of a queue"),
    ]:
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("queue_id", type=int, help="Queue ID")
        p.set_defaults(func=func)

    p_status = subparsers.add_parser("status", help="Show queue status")
    p_status.add_argument("queue_id", type=int, help="Queue ID")
    p_status.add_argument("--limit", type=int, default=10, help="Items to preview")
    p_status.set_defaults(func=cmd_status)

    # health / stuck
    p_health = subparsers.add_parser("health", help="Show queue health for a project")
    p_health.add_argument("project_id", type=int, help="Project ID")
    p_health.set_defaults(func=cmd_health)

    p_stuck = subparsers.add_parser("stuck", help="List items stuck in processing")
    p_stuck.add_argument("--project-id", type=int, help="Only this project's queues")
    p_stuck.add_argument("--minutes", type=int, help="Threshold (default: from config)")
    p_stuck.set_defaults(func=cmd_stuck)

    # fail / requeue / cancel
    p_fail = subparsers.add_parser("fail", help="Fail an in-progress item")
    p_fail.add_argument("item_type", choices=item_types)
    p_fail.add_argument("item_id", type=int)
    p_fail.add_argument("--error", required=True, help="Failure message")
    p_fail.set_defaults(func=cmd_fail)

    for name, func, help_text in [
        ("requeue", cmd_requeue, "Requeue a failed or cancelled item"),
        ("cancel", cmd_cancel, "Cancel a queued item"),
    ]:
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("item_type", choices=item_types)
        p.add_argument("item_id", type=int)
        p.set_defaults(func=func)

    # cleanup
    p_cleanup = subparsers.add_parser("cleanup", help="Reconcile queue data")
    p_cleanup.add_argument("--project-id", type=int, help="Limit expiry and stats to a project")
    p_cleanup.add_argument("--max-age-days", type=int, help="Expire finished items older than this")
    p_cleanup.set_defaults(func=cmd_cleanup)

    # dead letter
    p_dl = subparsers.add_parser("dead-letter", help="Move failed items to dead letter")
    p_dl.add_argument("--queue-id", type=int, help="Only this queue")
    p_dl.add_argument("--max-attempts", type=int, help="Only items with at least this many attempts")
    p_dl.set_defaults(func=cmd_dead_letter)

    p_dls = subparsers.add_parser("dead-letters", help="List dead-lettered items")
    p_dls.add_argument("--queue-id", type=int, help="Only this queue")
    p_dls.add_argument("--limit", type=int, default=100, help="Max entries")
    p_dls.set_defaults(func=cmd_dead_letters)

    p_replay = subparsers.add_parser("replay", help="Re-admit a dead-lettered item")
    p_replay.add_argument("dead_letter_id", type=int)
    p_replay.add_argument("--queue-id", type=int, help="Target queue (default: original)")
    p_replay.set_defaults(func=cmd_replay)

    # audit
    p_audit = subparsers.add_parser("audit", help="Show audit log")
    p_audit.add_argument("--queue-id", type=int, help="Filter by queue")
    p_audit.add_argument("--action", help="Filter by action (e.g. claim_item)")
    p_audit.add_argument("--since", help="Only entries at or after this UTC time (YYYY-MM-DD HH:MM:SS)")
    p_audit.add_argument("--limit", type=int, default=50, help="Max entries")
    p_audit.set_defaults(func=cmd_audit)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    project_root = Path(args.project_root) if args.project_root else find_project_root()
    config = load_queue_config(project_root)
    setup_logging(config.log_level, config.log_file, stream=sys.stderr)

    try:
        code = args.func(args)
    except QueueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
