"""
Tests for engine/state_machine.py

Validates:
- All valid transitions are accepted
- All invalid transitions raise InvalidTransitionError
- in_progress can only end in completed or failed
- is_terminal() and is_claimable() return correct values
"""

import pytest

from flowqueue.engine.errors import QueueError
from flowqueue.engine.models import ItemStatus
from flowqueue.engine.state_machine import (
    InvalidTransitionError,
    UnknownStatusError,
    available_transitions,
    can_transition,
    is_claimable,
    is_terminal,
    validate_transition,
)


# ---------------------------------------------------------------------------
# Valid transitions
# ---------------------------------------------------------------------------

VALID_TRANSITION_PAIRS = [
    (ItemStatus.QUEUED, ItemStatus.QUEUED),
    (ItemStatus.QUEUED, ItemStatus.IN_PROGRESS),
    (ItemStatus.QUEUED, ItemStatus.CANCELLED),
    (ItemStatus.IN_PROGRESS, ItemStatus.COMPLETED),
    (ItemStatus.IN_PROGRESS, ItemStatus.FAILED),
    (ItemStatus.COMPLETED, ItemStatus.QUEUED),
    (ItemStatus.FAILED, ItemStatus.QUEUED),
    (ItemStatus.CANCELLED, ItemStatus.QUEUED),
]


@pytest.mark.parametrize("from_status,to_status", VALID_TRANSITION_PAIRS)
def test_valid_transitions_do_not_raise(from_status, to_status):
    validate_transition(from_status, to_status)


@pytest.mark.parametrize("from_status,to_status", VALID_TRANSITION_PAIRS)
def test_can_transition_returns_true_for_valid(from_status, to_status):
    assert can_transition(from_status, to_status) is True


# ---------------------------------------------------------------------------
# Invalid transitions
# ---------------------------------------------------------------------------

INVALID_TRANSITION_PAIRS = [
    (ItemStatus.IN_PROGRESS, ItemStatus.QUEUED),      # agent owns it until complete/fail
    (ItemStatus.IN_PROGRESS, ItemStatus.CANCELLED),
    (ItemStatus.QUEUED, ItemStatus.COMPLETED),
    (ItemStatus.QUEUED, ItemStatus.FAILED),
    (ItemStatus.COMPLETED, ItemStatus.FAILED),
    (ItemStatus.COMPLETED, ItemStatus.IN_PROGRESS),
    (ItemStatus.FAILED, ItemStatus.COMPLETED),
    (ItemStatus.CANCELLED, ItemStatus.IN_PROGRESS),
]


@pytest.mark.parametrize("from_status,to_status", INVALID_TRANSITION_PAIRS)
def test_invalid_transitions_raise(from_status, to_status):
    with pytest.raises(InvalidTransitionError) as exc_info:
        validate_transition(from_status, to_status, work_item_id=7)
    assert exc_info.value.from_status == from_status
    assert exc_info.value.to_status == to_status
    assert exc_info.value.work_item_id == 7


@pytest.mark.parametrize("from_status,to_status", INVALID_TRANSITION_PAIRS)
def test_can_transition_returns_false_for_invalid(from_status, to_status):
    assert can_transition(from_status, to_status) is False


def test_invalid_transition_is_a_queue_error_with_code():
    with pytest.raises(QueueError) as exc_info:
        validate_transition(ItemStatus.IN_PROGRESS, ItemStatus.QUEUED)
    assert exc_info.value.code == "INVALID_TRANSITION"
    assert "in_progress" in str(exc_info.value)


def test_unknown_status_raises():
    with pytest.raises(UnknownStatusError):
        validate_transition("timeout", ItemStatus.QUEUED)
    with pytest.raises(UnknownStatusError):
        validate_transition(ItemStatus.QUEUED, "timeout")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_is_terminal():
    assert is_terminal(ItemStatus.COMPLETED)
    assert is_terminal(ItemStatus.FAILED)
    assert is_terminal(ItemStatus.CANCELLED)
    assert not is_terminal(ItemStatus.QUEUED)
    assert not is_terminal(ItemStatus.IN_PROGRESS)


def test_is_claimable_only_for_queued():
    assert is_claimable(ItemStatus.QUEUED)
    for status in ItemStatus.ALL - {ItemStatus.QUEUED}:
        assert not is_claimable(status)


def test_available_transitions_from_in_progress():
    assert available_transitions(ItemStatus.IN_PROGRESS) == frozenset(
        [ItemStatus.COMPLETED, ItemStatus.FAILED]
    )
    assert available_transitions("bogus") == frozenset()
