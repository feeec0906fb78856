"""
Tests for engine/schema.py

Validates:
- Schema creation on a fresh database
- Migration idempotency (migrate() is safe to call repeatedly)
- PRAGMA settings are applied correctly
- work_items CHECK constraints tie agent_id and completed_at to status
- immediate_transaction() commits, rolls back and wraps storage errors
"""

import sqlite3

import pytest

from flowqueue.engine.errors import PersistenceError, QueueError
from flowqueue.engine.schema import (
    SCHEMA_VERSION,
    create_db,
    get_schema_version,
    immediate_transaction,
    migrate,
    open_db,
)


EXPECTED_TABLES = {
    "projects",
    "tickets",
    "tasks",
    "chats",
    "prompts",
    "queues",
    "work_items",
    "dead_letter_items",
    "audit_log",
}


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a path to a temporary database file."""
    return str(tmp_path / "test_queue.db")


def _tables(conn):
    return {
        row[0]
        for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
    }


def _insert_queue(conn):
    conn.execute("INSERT INTO projects (name) VALUES ('p')")
    conn.execute("INSERT INTO queues (project_id, name) VALUES (1, 'q')")


# ---------------------------------------------------------------------------
# Schema creation tests
# ---------------------------------------------------------------------------


def test_create_db_creates_all_tables(tmp_db_path):
    """create_db() should create all expected tables."""
    conn = create_db(tmp_db_path)
    try:
        tables = _tables(conn)
        assert EXPECTED_TABLES.issubset(tables), (
            f"Missing tables: {EXPECTED_TABLES - tables}"
        )
    finally:
        conn.close()


def test_schema_version_after_creation(tmp_db_path):
    conn = create_db(tmp_db_path)
    try:
        assert get_schema_version(conn) == SCHEMA_VERSION
    finally:
        conn.close()


def test_migrate_idempotent(tmp_db_path):
    """migrate() should be safe to call multiple times."""
    conn = open_db(tmp_db_path)
    try:
        migrate(conn)
        migrate(conn)  # second call should be a no-op
        assert get_schema_version(conn) == SCHEMA_VERSION
        assert EXPECTED_TABLES.issubset(_tables(conn))
    finally:
        conn.close()


def test_wal_mode_enabled(tmp_db_path):
    conn = open_db(tmp_db_path)
    try:
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal", f"Expected WAL mode, got '{mode}'"
    finally:
        conn.close()


def test_busy_timeout_and_foreign_keys(tmp_db_path):
    conn = open_db(tmp_db_path)
    try:
        assert conn.execute("PRAGMA busy_timeout").fetchone()[0] == 5000
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    finally:
        conn.close()


def test_create_db_creates_parent_directories(tmp_path):
    nested_path = tmp_path / "a" / "b" / "c" / "queue.db"
    conn = create_db(str(nested_path))
    try:
        assert nested_path.exists()
    finally:
        conn.close()


def test_dispatch_index_created(tmp_db_path):
    conn = create_db(tmp_db_path)
    try:
        indexes = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='index'")
        }
        assert {"idx_work_items_dispatch", "idx_audit_timestamp"}.issubset(indexes)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Table constraint tests
# ---------------------------------------------------------------------------


def test_max_parallel_items_must_be_positive(tmp_db_path):
    conn = create_db(tmp_db_path)
    try:
        conn.execute("INSERT INTO projects (name) VALUES ('p')")
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO queues (project_id, name, max_parallel_items) VALUES (1, 'q', 0)"
            )
    finally:
        conn.close()


def test_queue_names_may_repeat_within_project(tmp_db_path):
    conn = create_db(tmp_db_path)
    try:
        _insert_queue(conn)
        conn.execute("INSERT INTO queues (project_id, name) VALUES (1, 'q')")
        assert conn.execute(
            "SELECT COUNT(*) FROM queues WHERE project_id = 1 AND name = 'q'"
        ).fetchone()[0] == 2
    finally:
        conn.close()


def test_one_work_item_per_owner(tmp_db_path):
    """(item_type, item_id) must be unique in work_items."""
    conn = create_db(tmp_db_path)
    try:
        _insert_queue(conn)
        conn.execute(
            "INSERT INTO work_items (item_type, item_id, queue_id) VALUES ('ticket', 1, 1)"
        )
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO work_items (item_type, item_id, queue_id) VALUES ('ticket', 1, 1)"
            )
    finally:
        conn.close()


def test_in_progress_requires_agent(tmp_db_path):
    conn = create_db(tmp_db_path)
    try:
        _insert_queue(conn)
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO work_items (item_type, item_id, queue_id, status) "
                "VALUES ('ticket', 1, 1, 'in_progress')"
            )
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO work_items (item_type, item_id, queue_id, status, agent_id) "
                "VALUES ('ticket', 2, 1, 'queued', 'agent-1')"
            )
    finally:
        conn.close()


def test_terminal_status_requires_completed_at(tmp_db_path):
    conn = create_db(tmp_db_path)
    try:
        _insert_queue(conn)
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO work_items (item_type, item_id, queue_id, status) "
                "VALUES ('ticket', 1, 1, 'completed')"
            )
    finally:
        conn.close()


def test_unknown_item_type_rejected(tmp_db_path):
    conn = create_db(tmp_db_path)
    try:
        _insert_queue(conn)
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO work_items (item_type, item_id, queue_id) VALUES ('epic', 1, 1)"
            )
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# immediate_transaction
# ---------------------------------------------------------------------------


def test_immediate_transaction_commits(db_conn):
    with immediate_transaction(db_conn, "test"):
        db_conn.execute("INSERT INTO projects (name) VALUES ('p')")
    assert db_conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0] == 1
    assert not db_conn.in_transaction


def test_immediate_transaction_rolls_back_on_engine_error(db_conn):
    with pytest.raises(QueueError):
        with immediate_transaction(db_conn, "test"):
            db_conn.execute("INSERT INTO projects (name) VALUES ('p')")
            raise QueueError("boom")
    assert db_conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0] == 0
    assert not db_conn.in_transaction


def test_immediate_transaction_wraps_sqlite_errors(db_conn):
    with pytest.raises(PersistenceError) as exc_info:
        with immediate_transaction(db_conn, "insert_project"):
            db_conn.execute("INSERT INTO projects (name) VALUES ('p')")
            db_conn.execute("INSERT INTO projects (name) VALUES (NULL)")
    assert exc_info.value.code == "PERSISTENCE_ERROR"
    assert "insert_project" in str(exc_info.value)
    assert isinstance(exc_info.value.cause, sqlite3.IntegrityError)
    assert db_conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0] == 0
