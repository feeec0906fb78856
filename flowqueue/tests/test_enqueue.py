"""
Tests for engine/enqueue.py

Validates:
- One work item per owner: enqueueing again re-admits the same row
- in_progress items cannot be re-admitted or dequeued
- Ticket cascade admits the ticket and its tasks atomically, in task order
- Batches are atomic and keep list order among equal priorities
- move_item re-homes items (optionally with tasks) or dequeues them
"""

import sqlite3

import pytest

from flowqueue.engine import enqueue as enqueue_module
from flowqueue.engine.dispatch import get_next, peek_next
from flowqueue.engine.enqueue import (
    batch_enqueue_items,
    dequeue_item,
    dequeue_ticket_with_tasks,
    enqueue_item,
    enqueue_task,
    enqueue_ticket,
    enqueue_ticket_with_all_tasks,
    get_work_item,
    move_item,
)
from flowqueue.engine.errors import InvalidReferenceError, PersistenceError, QueueNotFoundError
from flowqueue.engine.models import ItemStatus
from flowqueue.engine.owners import create_chat, create_prompt, create_task, create_ticket
from flowqueue.engine.registry import create_queue
from flowqueue.engine.state_machine import InvalidTransitionError


@pytest.fixture
def queue(db_conn, project_id):
    return create_queue(db_conn, "build", project_id)


@pytest.fixture
def ticket_with_tasks(db_conn, project_id):
    """A ticket with three tasks; returns (ticket_id, [task_ids in order])."""
    ticket_id = create_ticket(db_conn, project_id, "Ship it")
    task_ids = [create_task(db_conn, ticket_id, f"step {i}") for i in range(1, 4)]
    return ticket_id, task_ids


def _count_items(conn):
    return conn.execute("SELECT COUNT(*) FROM work_items").fetchone()[0]


# ---------------------------------------------------------------------------
# Single-item admission
# ---------------------------------------------------------------------------


def test_enqueue_ticket_creates_queued_item(db_conn, project_id, queue):
    ticket_id = create_ticket(db_conn, project_id, "T")

    item = enqueue_ticket(db_conn, ticket_id, queue.id, priority=3)

    assert item.item_type == "ticket"
    assert item.item_id == ticket_id
    assert item.queue_id == queue.id
    assert item.priority == 3
    assert item.status == ItemStatus.QUEUED
    assert item.agent_id is None
    assert item.queued_at is not None
    assert item.attempt_count == 0


def test_enqueue_chat_and_prompt(db_conn, project_id, queue):
    chat = enqueue_item(db_conn, "chat", create_chat(db_conn, project_id, "c"), queue.id)
    prompt = enqueue_item(db_conn, "prompt", create_prompt(db_conn, project_id, "p"), queue.id,
                          estimated_processing_time=1500)

    assert chat.item_type == "chat"
    assert prompt.estimated_processing_time == 1500


def test_reenqueue_reuses_row_and_resets_fields(db_conn, project_id, queue):
    other = create_queue(db_conn, "other", project_id)
    ticket_id = create_ticket(db_conn, project_id, "T")
    first = enqueue_ticket(db_conn, ticket_id, queue.id)
    get_next(db_conn, queue.id, "agent-1")
    db_conn.execute(
        "UPDATE work_items SET status='failed', agent_id=NULL, error_message='boom', "
        "completed_at=datetime('now') WHERE id=?",
        (first.id,),
    )

    second = enqueue_ticket(db_conn, ticket_id, other.id, priority=2)

    assert second.id == first.id
    assert second.queue_id == other.id
    assert second.status == ItemStatus.QUEUED
    assert second.error_message is None
    assert second.completed_at is None
    assert second.started_at is None
    assert second.enqueue_seq > first.enqueue_seq
    assert second.attempt_count == 1
    assert _count_items(db_conn) == 1


def test_enqueue_in_progress_item_rejected(db_conn, project_id, queue):
    ticket_id = create_ticket(db_conn, project_id, "T")
    enqueue_ticket(db_conn, ticket_id, queue.id)
    get_next(db_conn, queue.id, "agent-1")

    with pytest.raises(InvalidTransitionError):
        enqueue_ticket(db_conn, ticket_id, queue.id)

    item = get_work_item(db_conn, "ticket", ticket_id)
    assert item.status == ItemStatus.IN_PROGRESS
    assert item.agent_id == "agent-1"


def test_enqueue_missing_owner_rejected(db_conn, queue):
    with pytest.raises(InvalidReferenceError):
        enqueue_task(db_conn, 999, queue.id)
    assert _count_items(db_conn) == 0


def test_enqueue_unknown_type_rejected(db_conn, queue):
    with pytest.raises(InvalidReferenceError):
        enqueue_item(db_conn, "epic", 1, queue.id)


def test_enqueue_missing_queue_rejected(db_conn, project_id):
    ticket_id = create_ticket(db_conn, project_id, "T")
    with pytest.raises(QueueNotFoundError):
        enqueue_ticket(db_conn, ticket_id, 999)
    assert _count_items(db_conn) == 0


# ---------------------------------------------------------------------------
# Ticket cascade
# ---------------------------------------------------------------------------


def test_ticket_with_all_tasks(db_conn, queue, ticket_with_tasks):
    ticket_id, task_ids = ticket_with_tasks

    result = enqueue_ticket_with_all_tasks(db_conn, queue.id, ticket_id, priority=2)

    assert result["ticket"].priority == 2
    assert [t.item_id for t in result["tasks"]] == task_ids
    assert all(t.priority == 3 for t in result["tasks"])
    assert _count_items(db_conn) == 4

    order = [(i.item_type, i.item_id) for i in peek_next(db_conn, queue.id)]
    assert order == [("ticket", ticket_id)] + [("task", t) for t in task_ids]


def test_ticket_with_all_tasks_custom_offset(db_conn, queue, ticket_with_tasks):
    ticket_id, _ = ticket_with_tasks
    result = enqueue_ticket_with_all_tasks(db_conn, queue.id, ticket_id, priority=0,
                                           task_priority_offset=10)
    assert {t.priority for t in result["tasks"]} == {10}


def test_ticket_with_no_tasks(db_conn, project_id, queue):
    ticket_id = create_ticket(db_conn, project_id, "Solo")
    result = enqueue_ticket_with_all_tasks(db_conn, queue.id, ticket_id)
    assert result["tasks"] == []
    assert _count_items(db_conn) == 1


def test_ticket_cascade_is_atomic(db_conn, queue, ticket_with_tasks, monkeypatch):
    """A storage failure part-way through leaves no item admitted."""
    ticket_id, _ = ticket_with_tasks
    real_upsert = enqueue_module._upsert_work_item
    calls = []

    def flaky_upsert(*args, **kwargs):
        calls.append(args)
        if len(calls) == 3:
            raise sqlite3.OperationalError("disk I/O error")
        return real_upsert(*args, **kwargs)

    monkeypatch.setattr(enqueue_module, "_upsert_work_item", flaky_upsert)

    with pytest.raises(PersistenceError) as exc_info:
        enqueue_ticket_with_all_tasks(db_conn, queue.id, ticket_id)

    assert exc_info.value.code == "PERSISTENCE_ERROR"
    assert _count_items(db_conn) == 0
    assert db_conn.execute(
        "SELECT COUNT(*) FROM audit_log WHERE action = 'enqueue_item'"
    ).fetchone()[0] == 0


def test_ticket_cascade_rejects_missing_ticket(db_conn, queue):
    with pytest.raises(InvalidReferenceError):
        enqueue_ticket_with_all_tasks(db_conn, queue.id, 999)
    assert _count_items(db_conn) == 0


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


def test_batch_keeps_list_order(db_conn, project_id, queue):
    ids = [create_ticket(db_conn, project_id, f"T{i}") for i in range(4)]
    batch = [{"item_type": "ticket", "item_id": i, "queue_id": queue.id} for i in reversed(ids)]

    admitted = batch_enqueue_items(db_conn, batch)

    assert [i.item_id for i in admitted] == list(reversed(ids))
    assert [i.item_id for i in peek_next(db_conn, queue.id)] == list(reversed(ids))


def test_batch_is_atomic(db_conn, project_id, queue):
    good = create_ticket(db_conn, project_id, "ok")
    batch = [
        {"item_type": "ticket", "item_id": good, "queue_id": queue.id},
        {"item_type": "ticket", "item_id": 999, "queue_id": queue.id},
    ]
    with pytest.raises(InvalidReferenceError):
        batch_enqueue_items(db_conn, batch)
    assert _count_items(db_conn) == 0


def test_batch_entry_missing_keys(db_conn, queue):
    with pytest.raises(ValueError, match="queue_id"):
        batch_enqueue_items(db_conn, [{"item_type": "ticket", "item_id": 1}])


# ---------------------------------------------------------------------------
# Dequeue and move
# ---------------------------------------------------------------------------


def test_dequeue_removes_item(db_conn, project_id, queue):
    ticket_id = create_ticket(db_conn, project_id, "T")
    enqueue_ticket(db_conn, ticket_id, queue.id)

    assert dequeue_item(db_conn, "ticket", ticket_id) is True
    assert get_work_item(db_conn, "ticket", ticket_id) is None
    assert dequeue_item(db_conn, "ticket", ticket_id) is False


def test_dequeue_in_progress_rejected(db_conn, project_id, queue):
    ticket_id = create_ticket(db_conn, project_id, "T")
    enqueue_ticket(db_conn, ticket_id, queue.id)
    get_next(db_conn, queue.id, "agent-1")

    with pytest.raises(InvalidTransitionError):
        dequeue_item(db_conn, "ticket", ticket_id)
    assert _count_items(db_conn) == 1


def test_dequeue_ticket_with_tasks(db_conn, queue, ticket_with_tasks):
    ticket_id, _ = ticket_with_tasks
    enqueue_ticket_with_all_tasks(db_conn, queue.id, ticket_id)

    assert dequeue_ticket_with_tasks(db_conn, ticket_id) == 4
    assert _count_items(db_conn) == 0


def test_move_item_keeps_priority(db_conn, project_id, queue):
    other = create_queue(db_conn, "other", project_id)
    ticket_id = create_ticket(db_conn, project_id, "T")
    enqueue_ticket(db_conn, ticket_id, queue.id, priority=4)

    moved = move_item(db_conn, "ticket", ticket_id, other.id)

    assert len(moved) == 1
    assert moved[0].queue_id == other.id
    assert moved[0].priority == 4


def test_move_ticket_with_tasks(db_conn, project_id, queue, ticket_with_tasks):
    other = create_queue(db_conn, "other", project_id)
    ticket_id, task_ids = ticket_with_tasks
    enqueue_ticket_with_all_tasks(db_conn, queue.id, ticket_id)

    moved = move_item(db_conn, "ticket", ticket_id, other.id, priority=1, include_tasks=True)

    assert [m.item_id for m in moved] == [ticket_id] + task_ids
    assert {m.queue_id for m in moved} == {other.id}
    assert peek_next(db_conn, queue.id) == []


def test_move_to_none_dequeues(db_conn, project_id, queue):
    ticket_id = create_ticket(db_conn, project_id, "T")
    enqueue_ticket(db_conn, ticket_id, queue.id)

    assert move_item(db_conn, "ticket", ticket_id, None) == []
    assert get_work_item(db_conn, "ticket", ticket_id) is None
