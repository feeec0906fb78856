"""
Queue Engine: SQLite-backed multi-agent work queue.

The engine is a set of plain functions over an open sqlite3 connection.
Callers (the MCP server, the CLI, tests) own the connection; every write
opens its own BEGIN IMMEDIATE transaction, so the same database file can be
shared by any number of agent processes.
"""
