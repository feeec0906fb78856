#!/usr/bin/env python3
"""
Queue Engine Database Schema

SQLite schema for the queue coordination database. Includes:
- projects, tickets, tasks, chats, prompts: minimal owning entities, only the
  fields needed to validate work item references and scope by project
- queues: named per-project queues with a concurrency ceiling
- work_items: the single source of truth for queue state
- dead_letter_items: failed items relocated out of the active set
- audit_log: immutable audit trail for all state transitions

Schema version is stored in PRAGMA user_version. The migrate() function
applies schema changes incrementally and is idempotent.

Transaction rules:
- Connections are opened in autocommit mode (isolation_level=None); every
  write runs inside an explicit BEGIN IMMEDIATE via immediate_transaction()
- PRAGMA busy_timeout=5000 MUST be set on connection open
- WAL mode enables concurrent reads during write transactions
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .errors import PersistenceError

logger = logging.getLogger(__name__)

# Current schema version - increment when adding tables or columns
SCHEMA_VERSION = 1

# Millisecond-resolution timestamp, lexically comparable with datetime('now', ...)
NOW_SQL = "strftime('%Y-%m-%d %H:%M:%f', 'now')"

# ---------------------------------------------------------------------------
# Connection helpers
# ---------------------------------------------------------------------------


def open_db(db_path: str | Path) -> sqlite3.Connection:
    """
    Open (or create) the queue database with required PRAGMAs.

    Sets:
    - journal_mode=WAL: concurrent reads while single writer holds lock
    - busy_timeout=5000: retry on locked DB for up to 5 seconds
    - foreign_keys=ON: enforce referential integrity for owner tables

    The connection is in autocommit mode; writers must use
    immediate_transaction() so concurrent agents serialize on the reserved lock.
    """
    conn = sqlite3.connect(
        str(db_path),
        check_same_thread=False,
        isolation_level=None,
        timeout=10.0,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _rollback(conn: sqlite3.Connection) -> None:
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error as exc:
        # No transaction left to roll back (SQLite may have aborted it already)
        logger.debug("ROLLBACK failed: %s", exc)


@contextmanager
def immediate_transaction(
    conn: sqlite3.Connection,
    action: str,
) -> Iterator[sqlite3.Connection]:
    """
    Run the enclosed block inside BEGIN IMMEDIATE ... COMMIT.

    Any exception rolls the transaction back before propagating, so callers
    never observe a partial effect. sqlite3 errors are re-raised as
    PersistenceError (retry-safe); engine errors propagate unchanged.
    """
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as exc:
        raise PersistenceError(action, exc) from exc

    try:
        yield conn
    except sqlite3.Error as exc:
        _rollback(conn)
        raise PersistenceError(action, exc) from exc
    except BaseException:
        _rollback(conn)
        raise

    try:
        conn.execute("COMMIT")
    except sqlite3.Error as exc:
        _rollback(conn)
        raise PersistenceError(action, exc) from exc


# ---------------------------------------------------------------------------
# DDL - ordered by dependency (no FK violations on fresh create)
# ---------------------------------------------------------------------------

_CREATE_PROJECTS = """
CREATE TABLE IF NOT EXISTS projects (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    path            TEXT,
    created_at      TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_TICKETS = """
CREATE TABLE IF NOT EXISTS tickets (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    title           TEXT NOT NULL,
    overview        TEXT,
    status          TEXT NOT NULL DEFAULT 'open'
                        CHECK(status IN ('open', 'in_progress', 'closed')),
    priority        TEXT NOT NULL DEFAULT 'normal'
                        CHECK(priority IN ('low', 'normal', 'high')),
    created_at      TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at      TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_TASKS = """
CREATE TABLE IF NOT EXISTS tasks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    ticket_id       INTEGER NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
    content         TEXT NOT NULL,
    description     TEXT,
    order_index     INTEGER NOT NULL DEFAULT 0,
    done            INTEGER NOT NULL DEFAULT 0 CHECK(done IN (0, 1)),
    created_at      TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at      TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_CHATS = """
CREATE TABLE IF NOT EXISTS chats (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    title           TEXT NOT NULL,
    created_at      TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_PROMPTS = """
CREATE TABLE IF NOT EXISTS prompts (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    title           TEXT NOT NULL,
    content         TEXT,
    created_at      TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_QUEUES = """
CREATE TABLE IF NOT EXISTS queues (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id              INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name                    TEXT NOT NULL,
    description             TEXT,
    max_parallel_items      INTEGER NOT NULL DEFAULT 1 CHECK(max_parallel_items >= 1),
    is_active               INTEGER NOT NULL DEFAULT 1 CHECK(is_active IN (0, 1)),
    total_completed_items   INTEGER NOT NULL DEFAULT 0,
    average_processing_time REAL,               -- milliseconds, recomputed by cleanup
    stats_updated_at        TEXT,
    created_at              TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at              TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

# queue_id and item_id are deliberately not foreign keys: items whose queue or
# owner disappears are reconciled by cleanup, not cascaded by SQLite.
_CREATE_WORK_ITEMS = """
CREATE TABLE IF NOT EXISTS work_items (
    id                          INTEGER PRIMARY KEY AUTOINCREMENT,
    item_type                   TEXT NOT NULL
                                    CHECK(item_type IN ('ticket', 'task', 'chat', 'prompt')),
    item_id                     INTEGER NOT NULL,
    queue_id                    INTEGER,
    priority                    INTEGER NOT NULL DEFAULT 0,     -- lower = more urgent
    status                      TEXT NOT NULL DEFAULT 'queued'
                                    CHECK(status IN (
                                        'queued', 'in_progress', 'completed',
                                        'failed', 'cancelled'
                                    )),
    agent_id                    TEXT,
    error_message               TEXT,
    queued_at                   TEXT,
    started_at                  TEXT,
    completed_at                TEXT,
    estimated_processing_time   INTEGER,                        -- milliseconds
    actual_processing_time      INTEGER,                        -- milliseconds
    attempt_count               INTEGER NOT NULL DEFAULT 0,
    enqueue_seq                 INTEGER NOT NULL DEFAULT 0,     -- admission order
    created_at                  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at                  TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(item_type, item_id),
    CHECK((status = 'in_progress') = (agent_id IS NOT NULL)),
    CHECK((status IN ('completed', 'failed', 'cancelled')) = (completed_at IS NOT NULL))
)
"""

_CREATE_DEAD_LETTER_ITEMS = """
CREATE TABLE IF NOT EXISTS dead_letter_items (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    original_item_id    INTEGER NOT NULL,       -- work_items.id at time of move
    queue_id            INTEGER,
    item_type           TEXT NOT NULL,
    item_id             INTEGER NOT NULL,
    priority            INTEGER NOT NULL DEFAULT 0,
    error_message       TEXT,
    agent_id            TEXT,                   -- last agent that held the item
    attempt_count       INTEGER NOT NULL DEFAULT 0,
    queued_at           TEXT,
    started_at          TEXT,
    failed_at           TEXT,
    moved_at            TEXT NOT NULL DEFAULT (datetime('now')),
    reason              TEXT
)
"""

_CREATE_AUDIT_LOG = """
CREATE TABLE IF NOT EXISTS audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp   TEXT NOT NULL DEFAULT (datetime('now')),
    actor       TEXT NOT NULL,                  -- agent ID, "human:{name}", "api", "cleanup"
    action      TEXT NOT NULL,                  -- e.g. "claim_item", "complete_item"
    entity_type TEXT NOT NULL,                  -- "queue", "work_item", "dead_letter"
    entity_id   TEXT NOT NULL,
    old_state   TEXT,
    new_state   TEXT,
    details     TEXT                            -- JSON blob with additional context
)
"""

# ---------------------------------------------------------------------------
# Indexes for common queries
# ---------------------------------------------------------------------------

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_ticket ON tasks(ticket_id, order_index)",
    "CREATE INDEX IF NOT EXISTS idx_queues_project ON queues(project_id)",
    # Dispatch order within a queue
    "CREATE INDEX IF NOT EXISTS idx_work_items_dispatch "
    "ON work_items(queue_id, status, priority, enqueue_seq)",
    "CREATE INDEX IF NOT EXISTS idx_work_items_status ON work_items(status, started_at)",
    "CREATE INDEX IF NOT EXISTS idx_dead_letter_queue ON dead_letter_items(queue_id)",
    "CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_type, entity_id)",
]

# All DDL in dependency order
SCHEMA_STATEMENTS: list[str] = [
    _CREATE_PROJECTS,
    _CREATE_TICKETS,
    _CREATE_TASKS,
    _CREATE_CHATS,
    _CREATE_PROMPTS,
    _CREATE_QUEUES,
    _CREATE_WORK_ITEMS,
    _CREATE_DEAD_LETTER_ITEMS,
    _CREATE_AUDIT_LOG,
    *_INDEXES,
]


# ---------------------------------------------------------------------------
# Migration runner
# ---------------------------------------------------------------------------


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Read the current schema version from PRAGMA user_version."""
    return conn.execute("PRAGMA user_version").fetchone()[0]


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Write schema version to PRAGMA user_version (no param binding - use f-string)."""
    conn.execute(f"PRAGMA user_version = {int(version)}")


def migrate(conn: sqlite3.Connection) -> None:
    """
    Apply schema migrations incrementally.

    Idempotent - safe to call on an existing database. Uses PRAGMA user_version
    to track which migrations have been applied.

    Version history:
    0 → 1: Initial schema (owner tables, queues, work_items, dead_letter_items,
            audit_log, indexes)
    """
    current = get_schema_version(conn)

    if current < 1:
        with immediate_transaction(conn, "migrate"):
            for stmt in SCHEMA_STATEMENTS:
                conn.execute(stmt)
            set_schema_version(conn, 1)
        logger.info("Initialized queue schema version %d", SCHEMA_VERSION)


def create_db(db_path: str | Path) -> sqlite3.Connection:
    """
    Create or open a queue database, applying all migrations.

    Returns an open connection with WAL mode, busy_timeout=5000,
    and foreign_keys=ON. The caller is responsible for closing it.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = open_db(path)
    migrate(conn)
    return conn
