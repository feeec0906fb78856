"""
flowqueue: SQLite-backed work queue for tickets, tasks, chats and prompts.

Sequences and dispatches work items to autonomous processing agents, and
reconciles persisted queue state after failures, orphaning or staleness.
"""

__version__ = "0.3.0"
