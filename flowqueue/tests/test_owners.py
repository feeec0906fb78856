"""
Tests for engine/owners.py
"""

import pytest

from flowqueue.engine.errors import InvalidReferenceError
from flowqueue.engine.owners import (
    create_chat,
    create_prompt,
    create_task,
    create_ticket,
    delete_owner,
    get_ticket_tasks,
    owner_exists,
    require_owner,
)


def test_create_ticket_requires_project(db_conn):
    with pytest.raises(InvalidReferenceError) as exc_info:
        create_ticket(db_conn, 999, "Orphan ticket")
    assert exc_info.value.code == "INVALID_REFERENCE"
    assert "Project 999" in str(exc_info.value)


def test_create_task_requires_ticket(db_conn):
    with pytest.raises(InvalidReferenceError):
        create_task(db_conn, 999, "Orphan task")


def test_task_order_index_auto_increments(db_conn, project_id):
    ticket_id = create_ticket(db_conn, project_id, "T")
    create_task(db_conn, ticket_id, "second", order_index=2)
    create_task(db_conn, ticket_id, "first", order_index=1)
    create_task(db_conn, ticket_id, "third")

    tasks = get_ticket_tasks(db_conn, ticket_id)
    assert [t["content"] for t in tasks] == ["first", "second", "third"]
    assert tasks[2]["order_index"] == 3


def test_owner_exists_for_every_type(db_conn, project_id):
    ticket_id = create_ticket(db_conn, project_id, "T")
    task_id = create_task(db_conn, ticket_id, "do it")
    chat_id = create_chat(db_conn, project_id, "chat")
    prompt_id = create_prompt(db_conn, project_id, "prompt", "content")

    assert owner_exists(db_conn, "ticket", ticket_id)
    assert owner_exists(db_conn, "task", task_id)
    assert owner_exists(db_conn, "chat", chat_id)
    assert owner_exists(db_conn, "prompt", prompt_id)
    assert not owner_exists(db_conn, "ticket", 999)


def test_unknown_item_type_is_invalid_reference(db_conn):
    with pytest.raises(InvalidReferenceError, match="unknown item type"):
        owner_exists(db_conn, "epic", 1)


def test_require_owner_raises_for_missing(db_conn):
    with pytest.raises(InvalidReferenceError, match="Task 5 does not exist"):
        require_owner(db_conn, "task", 5)


def test_delete_ticket_cascades_to_tasks(db_conn, project_id):
    ticket_id = create_ticket(db_conn, project_id, "T")
    task_id = create_task(db_conn, ticket_id, "do it")

    assert delete_owner(db_conn, "ticket", ticket_id) is True
    assert not owner_exists(db_conn, "task", task_id)
    assert delete_owner(db_conn, "ticket", ticket_id) is False
