#!/usr/bin/env python3
"""
Queue Engine Data Models

Typed dataclasses for the core domain objects: queues, work items and
dead-letter records. Models are plain @dataclass with a from_row()
constructor for sqlite3.Row; the engine stores no queue state anywhere else.

Work item state lives only in work_items. Tickets, tasks, chats and prompts do
not carry queue columns; their queue status is derived from their work item.
"""

from dataclasses import asdict, dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Status / type constants
# ---------------------------------------------------------------------------


class ItemStatus:
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    ALL = frozenset([QUEUED, IN_PROGRESS, COMPLETED, FAILED, CANCELLED])

    # Terminal states - completed_at is set, agent_id is cleared
    TERMINAL = frozenset([COMPLETED, FAILED, CANCELLED])

    # States in which the item occupies its queue
    ACTIVE = frozenset([QUEUED, IN_PROGRESS])


class ItemType:
    TICKET = "ticket"
    TASK = "task"
    CHAT = "chat"
    PROMPT = "prompt"

    ALL = frozenset([TICKET, TASK, CHAT, PROMPT])

    # Owner table for each item type
    TABLES = {
        TICKET: "tickets",
        TASK: "tasks",
        CHAT: "chats",
        PROMPT: "prompts",
    }


class NoWorkReason:
    PAUSED = "paused"
    EMPTY = "empty"
    PARALLEL_LIMIT_REACHED = "parallel-limit-reached"


# ---------------------------------------------------------------------------
# Core dataclasses
# ---------------------------------------------------------------------------


@dataclass
class Queue:
    """A named, per-project work queue with a concurrency ceiling."""
    id: int
    name: str
    project_id: int
    max_parallel_items: int = 1
    is_active: bool = True
    description: str | None = None
    total_completed_items: int = 0
    average_processing_time: float | None = None   # milliseconds
    stats_updated_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Any) -> "Queue":
        """Construct from a sqlite3.Row or dict."""
        d = dict(row)
        return cls(
            id=d["id"],
            name=d["name"],
            project_id=d["project_id"],
            max_parallel_items=d["max_parallel_items"],
            is_active=bool(d["is_active"]),
            description=d.get("description"),
            total_completed_items=d.get("total_completed_items") or 0,
            average_processing_time=d.get("average_processing_time"),
            stats_updated_at=d.get("stats_updated_at"),
            created_at=d.get("created_at"),
            updated_at=d.get("updated_at"),
        )


@dataclass
class WorkItem:
    """A unit of admitted work: one per (item_type, item_id) owner."""
    id: int
    item_type: str                  # ticket, task, chat, prompt
    item_id: int                    # owning entity id
    queue_id: int | None
    priority: int = 0               # lower = more urgent
    status: str = ItemStatus.QUEUED
    agent_id: str | None = None     # set only while in_progress
    error_message: str | None = None
    queued_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    estimated_processing_time: int | None = None   # milliseconds
    actual_processing_time: int | None = None      # milliseconds
    attempt_count: int = 0          # number of times the item was claimed
    enqueue_seq: int = 0            # monotonic admission order

    @property
    def is_terminal(self) -> bool:
        return self.status in ItemStatus.TERMINAL

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Any) -> "WorkItem":
        """Construct from a sqlite3.Row or dict."""
        d = dict(row)
        return cls(
            id=d["id"],
            item_type=d["item_type"],
            item_id=d["item_id"],
            queue_id=d.get("queue_id"),
            priority=d["priority"],
            status=d["status"],
            agent_id=d.get("agent_id"),
            error_message=d.get("error_message"),
            queued_at=d.get("queued_at"),
            started_at=d.get("started_at"),
            completed_at=d.get("completed_at"),
            estimated_processing_time=d.get("estimated_processing_time"),
            actual_processing_time=d.get("actual_processing_time"),
            attempt_count=d.get("attempt_count") or 0,
            enqueue_seq=d.get("enqueue_seq") or 0,
        )


@dataclass
class DeadLetterItem:
    """A failed work item relocated out of the active set for inspection."""
    id: int
    original_item_id: int
    queue_id: int | None
    item_type: str
    item_id: int
    priority: int = 0
    error_message: str | None = None
    agent_id: str | None = None
    attempt_count: int = 0
    queued_at: str | None = None
    started_at: str | None = None
    failed_at: str | None = None
    moved_at: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Any) -> "DeadLetterItem":
        """Construct from a sqlite3.Row or dict."""
        d = dict(row)
        return cls(
            id=d["id"],
            original_item_id=d["original_item_id"],
            queue_id=d.get("queue_id"),
            item_type=d["item_type"],
            item_id=d["item_id"],
            priority=d.get("priority") or 0,
            error_message=d.get("error_message"),
            agent_id=d.get("agent_id"),
            attempt_count=d.get("attempt_count") or 0,
            queued_at=d.get("queued_at"),
            started_at=d.get("started_at"),
            failed_at=d.get("failed_at"),
            moved_at=d.get("moved_at"),
            reason=d.get("reason"),
        )


# ---------------------------------------------------------------------------
# Maintenance results
# ---------------------------------------------------------------------------


@dataclass
class CleanupResult:
    """Per-category counts from one cleanup_queue_data() invocation."""
    orphaned_items_removed: int = 0
    old_completed_items_removed: int = 0
    invalid_tasks_removed: int = 0
    invalid_tickets_removed: int = 0
    invalid_chats_removed: int = 0
    invalid_prompts_removed: int = 0
    dead_lettered: int = 0
    queues_refreshed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total_removed(self) -> int:
        return (
            self.orphaned_items_removed
            + self.old_completed_items_removed
            + self.invalid_tasks_removed
            + self.invalid_tickets_removed
            + self.invalid_chats_removed
            + self.invalid_prompts_removed
        )

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["total_removed"] = self.total_removed
        return d


# ---------------------------------------------------------------------------
# Runtime configuration (from .flowqueue/config.yaml - not stored in DB)
# ---------------------------------------------------------------------------


@dataclass
class QueueConfig:
    """Runtime configuration loaded from .flowqueue/config.yaml."""
    db_path: str = ".flowqueue/queue.db"
    default_max_parallel_items: int = 1
    task_priority_offset: int = 1
    cleanup_max_age_days: int = 7
    dead_letter_max_attempts: int = 3
    stuck_threshold_minutes: int = 60
    log_level: str = "INFO"
    log_file: str | None = None

    @property
    def cleanup_max_age_ms(self) -> int:
        return self.cleanup_max_age_days * 24 * 60 * 60 * 1000
