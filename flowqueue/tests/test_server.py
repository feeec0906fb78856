"""
Tests for server/server.py (QueueServer)

Validates:
- Operations return JSON-ready dicts
- Engine errors come back as {"error", "code"} instead of raising
- get_next_task_from_queue reports claims and no-work outcomes
- Config defaults (max parallel, task priority offset) are applied
"""

import json
from pathlib import Path

import pytest

from flowqueue.engine.owners import create_project, create_task, create_ticket
from flowqueue.server.server import QueueServer


@pytest.fixture
def project_root(tmp_path):
    (tmp_path / ".flowqueue").mkdir()
    (tmp_path / ".flowqueue" / "config.yaml").write_text(
        "queues:\n  default_max_parallel_items: 2\n  task_priority_offset: 5\n",
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def qs(project_root):
    server = QueueServer(str(project_root / "server.db"), str(project_root))
    yield server
    server.close()


@pytest.fixture
def project_id(qs):
    return create_project(qs.conn, "demo")


def test_create_queue_uses_config_default(qs, project_id):
    queue = qs.create_queue("build", project_id)
    assert queue["max_parallel_items"] == 2
    assert queue["is_active"] is True
    assert json.dumps(queue)


def test_db_path_defaults_to_config(project_root):
    server = QueueServer(None, str(project_root))
    try:
        assert Path(server.db_path) == project_root / ".flowqueue" / "queue.db"
    finally:
        server.close()


def test_errors_are_returned_as_dicts(qs, project_id):
    assert qs.get_queue(999)["code"] == "QUEUE_NOT_FOUND"
    assert qs.create_queue("x", 999)["code"] == "INVALID_REFERENCE"
    assert qs.create_queue("x", project_id, max_parallel_items=-1)["code"] == "INVALID_ARGUMENT"
    assert qs.complete_processing_item("ticket", 1)["code"] == "NOT_IN_PROGRESS"

    result = qs.enqueue_ticket(999, 1)
    assert set(result) == {"error", "code"}


@pytest.mark.parametrize("limit", [0, -1])
def test_non_positive_parallel_limit_is_invalid_argument(qs, project_id, limit):
    result = qs.create_queue("build", project_id, max_parallel_items=limit)
    assert result["code"] == "INVALID_ARGUMENT"
    assert qs.list_queues(project_id) == []


def test_queue_names_may_repeat(qs, project_id):
    first = qs.create_queue("build", project_id)
    second = qs.create_queue("build", project_id)

    assert "code" not in second
    assert second["id"] != first["id"]
    assert [q["name"] for q in qs.list_queues(project_id)] == ["build", "build"]


def test_claim_cycle(qs, project_id):
    queue = qs.create_queue("build", project_id)
    ticket_id = create_ticket(qs.conn, project_id, "T")
    qs.enqueue_ticket(ticket_id, queue["id"])

    claim = qs.get_next_task_from_queue(queue["id"], "agent-1")
    assert claim["type"] == "ticket"
    assert claim["item"]["item_id"] == ticket_id
    assert "complete_processing_item" in claim["message"]

    empty = qs.get_next_task_from_queue(queue["id"], "agent-2")
    assert empty == {
        "type": "none",
        "reason": "empty",
        "message": f"Queue {queue['id']} has no queued items",
    }

    done = qs.complete_processing_item("ticket", ticket_id, "agent-1")
    assert done["status"] == "completed"

    again = qs.complete_processing_item("ticket", ticket_id, "agent-1")
    assert again["code"] == "NOT_IN_PROGRESS"


def test_paused_queue_reason(qs, project_id):
    queue = qs.create_queue("build", project_id)
    qs.pause_queue(queue["id"])
    assert qs.get_next_task_from_queue(queue["id"], "agent-1")["reason"] == "paused"


def test_empty_agent_is_invalid_argument(qs, project_id):
    queue = qs.create_queue("build", project_id)
    assert qs.get_next_task_from_queue(queue["id"], "")["code"] == "INVALID_ARGUMENT"


def test_ticket_with_tasks_uses_configured_offset(qs, project_id):
    queue = qs.create_queue("build", project_id)
    ticket_id = create_ticket(qs.conn, project_id, "T")
    create_task(qs.conn, ticket_id, "a")
    create_task(qs.conn, ticket_id, "b")

    result = qs.enqueue_ticket_with_all_tasks(queue["id"], ticket_id, priority=1)

    assert result["ticket"]["priority"] == 1
    assert [t["priority"] for t in result["tasks"]] == [6, 6]
    assert len(qs.peek_queue(queue["id"])) == 3


def test_fail_requeue_and_dead_letter(qs, project_id):
    queue = qs.create_queue("build", project_id)
    ticket_id = create_ticket(qs.conn, project_id, "T")
    qs.enqueue_ticket(ticket_id, queue["id"])
    qs.get_next_task_from_queue(queue["id"], "agent-1")

    failed = qs.fail_processing_item("ticket", ticket_id, "boom")
    assert failed["error_message"] == "boom"

    moved = qs.move_failed_to_dead_letter(queue["id"])
    assert moved == {"queue_id": queue["id"], "moved_count": 1}

    (dead,) = qs.list_dead_letters(queue["id"])
    replayed = qs.replay_dead_letter(dead["id"])
    assert replayed["status"] == "queued"


def test_delete_queue_response(qs, project_id):
    queue = qs.create_queue("build", project_id)
    qs.enqueue_ticket(create_ticket(qs.conn, project_id, "T"), queue["id"])

    assert qs.delete_queue(queue["id"]) == {
        "queue_id": queue["id"], "deleted": True, "items_removed": 1,
    }
    assert qs.delete_queue(queue["id"])["code"] == "QUEUE_NOT_FOUND"


def test_cleanup_and_health(qs, project_id):
    qs.create_queue("build", project_id)

    result = qs.cleanup_queue_data(project_id)
    assert result["errors"] == []
    assert result["total_removed"] == 0

    health = qs.get_queue_health(project_id)
    assert health["healthy"] is True


def test_cleanup_negative_age_is_invalid_argument(qs, project_id):
    assert qs.cleanup_queue_data(project_id, max_age_ms=-1)["code"] == "INVALID_ARGUMENT"


def test_audit_log_by_queue(qs, project_id):
    queue = qs.create_queue("build", project_id)
    qs.pause_queue(queue["id"])

    actions = [e["action"] for e in qs.get_audit_log(queue["id"])]
    assert actions == ["pause_queue", "create_queue"]
