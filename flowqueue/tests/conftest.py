"""
pytest configuration for queue engine tests.

Every test gets a fresh temp-file database; environment overrides from the
developer's shell are cleared so config defaults are predictable.
"""

import pytest

from flowqueue.engine.owners import create_project
from flowqueue.engine.schema import create_db


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("FLOWQUEUE_DB", raising=False)
    monkeypatch.delenv("FLOWQUEUE_LOG_LEVEL", raising=False)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.db")


@pytest.fixture
def db_conn(db_path):
    """Open a fresh database with schema."""
    conn = create_db(db_path)
    yield conn
    conn.close()


@pytest.fixture
def project_id(db_conn):
    return create_project(db_conn, "demo", "/tmp/demo")
