#!/usr/bin/env python3
"""
Queue Engine Error Types

Structured errors raised by the enqueue, completion and registry operations.
Each carries a stable `code` that the server layer returns to callers:

    QUEUE_NOT_FOUND    - client error, queue id does not exist
    INVALID_REFERENCE  - client error, owning entity/project does not exist
    NOT_IN_PROGRESS    - client error, complete/fail on an unclaimed item
    PERSISTENCE_ERROR  - retry-safe server error, transaction rolled back

Dispatch outcomes such as "paused" or "parallel-limit-reached" are NOT errors;
they are returned as data (see dispatch.ClaimNone).

The state machine's InvalidTransitionError lives in state_machine.py.
"""


class QueueError(Exception):
    """Base class for all queue engine errors."""

    code = "QUEUE_ERROR"


class QueueNotFoundError(QueueError):
    """Raised when a queue id does not reference an existing queue."""

    code = "QUEUE_NOT_FOUND"

    def __init__(self, queue_id: int):
        self.queue_id = queue_id
        super().__init__(f"Queue {queue_id} not found")


class InvalidReferenceError(QueueError):
    """Raised when a work item (or queue) references a missing owner."""

    code = "INVALID_REFERENCE"

    def __init__(self, entity_type: str, entity_id: int | str, detail: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        message = f"{entity_type.capitalize()} {entity_id} does not exist"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NotInProgressError(QueueError):
    """Raised when completing or failing an item that is not claimed."""

    code = "NOT_IN_PROGRESS"

    def __init__(
        self,
        item_type: str,
        item_id: int,
        status: str | None = None,
        agent_id: str | None = None,
    ):
        self.item_type = item_type
        self.item_id = item_id
        self.status = status
        self.agent_id = agent_id
        if status is None:
            reason = "it is not in any queue"
        elif agent_id is not None:
            reason = f"it is held by agent '{agent_id}'"
        else:
            reason = f"its status is '{status}'"
        super().__init__(f"{item_type.capitalize()} {item_id} is not in progress: {reason}")


class PersistenceError(QueueError):
    """Raised when a storage transaction fails. No partial effect remains."""

    code = "PERSISTENCE_ERROR"

    def __init__(self, action: str, cause: Exception):
        self.action = action
        self.cause = cause
        super().__init__(f"Storage failure during {action}: {cause}")
