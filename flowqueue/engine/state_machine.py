#!/usr/bin/env python3
"""
Queue Engine Work Item State Machine

Defines valid work item status transitions and validates them.

State diagram:
    (new)       → queued       (enqueue)
    queued      → in_progress  (agent atomically claims via dispatch)
    queued      → cancelled    (administrative cancel; only unclaimed items)
    queued      → queued       (re-enqueue / move to another queue)
    in_progress → completed    (agent reports success)
    in_progress → failed       (agent reports failure)
    failed      → queued       (requeue - retry policy lives outside the core)
    cancelled   → queued       (requeue)
    completed   → queued       (re-enqueue of finished work)

There is no in_progress → queued edge: once claimed, the agent owns the item
until it calls complete or fail. Invalid transitions raise
InvalidTransitionError.
"""

from .errors import QueueError
from .models import ItemStatus


# ---------------------------------------------------------------------------
# Valid transitions: {from_status: set(to_statuses)}
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    ItemStatus.QUEUED: frozenset([
        ItemStatus.QUEUED,      # re-enqueue updates priority / queue
        ItemStatus.IN_PROGRESS,
        ItemStatus.CANCELLED,
    ]),
    ItemStatus.IN_PROGRESS: frozenset([
        ItemStatus.COMPLETED,
        ItemStatus.FAILED,
    ]),
    ItemStatus.COMPLETED: frozenset([
        ItemStatus.QUEUED,
    ]),
    ItemStatus.FAILED: frozenset([
        ItemStatus.QUEUED,
    ]),
    ItemStatus.CANCELLED: frozenset([
        ItemStatus.QUEUED,
    ]),
}


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------


class InvalidTransitionError(QueueError, ValueError):
    """Raised when a work item status transition is not allowed by the state machine."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, work_item_id: int | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.work_item_id = work_item_id
        item_info = f" (work_item_id={work_item_id})" if work_item_id is not None else ""
        super().__init__(
            f"Invalid work item transition{item_info}: "
            f"'{from_status}' → '{to_status}'. "
            f"Valid transitions from '{from_status}': "
            f"{sorted(VALID_TRANSITIONS.get(from_status, frozenset()))}"
        )


class UnknownStatusError(QueueError, ValueError):
    """Raised when an unknown work item status is encountered."""

    code = "INVALID_TRANSITION"

    def __init__(self, status: str):
        self.status = status
        super().__init__(
            f"Unknown work item status: '{status}'. "
            f"Valid statuses: {sorted(ItemStatus.ALL)}"
        )


# ---------------------------------------------------------------------------
# State machine functions
# ---------------------------------------------------------------------------


def validate_transition(
    from_status: str,
    to_status: str,
    work_item_id: int | None = None,
) -> None:
    """
    Validate that a work item status transition is allowed.

    Raises:
        UnknownStatusError: if either status is not in ItemStatus.ALL
        InvalidTransitionError: if the transition is not in VALID_TRANSITIONS
    """
    if from_status not in ItemStatus.ALL:
        raise UnknownStatusError(from_status)
    if to_status not in ItemStatus.ALL:
        raise UnknownStatusError(to_status)

    allowed = VALID_TRANSITIONS.get(from_status, frozenset())
    if to_status not in allowed:
        raise InvalidTransitionError(from_status, to_status, work_item_id)


def can_transition(from_status: str, to_status: str) -> bool:
    """Return True if the transition from_status → to_status is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def is_terminal(status: str) -> bool:
    """Return True if the status is terminal (completed, failed or cancelled)."""
    return status in ItemStatus.TERMINAL


def is_claimable(status: str) -> bool:
    """Return True if the item can be claimed by an agent."""
    return status == ItemStatus.QUEUED


def available_transitions(from_status: str) -> frozenset[str]:
    """Return the set of valid destination statuses from from_status."""
    return VALID_TRANSITIONS.get(from_status, frozenset())
