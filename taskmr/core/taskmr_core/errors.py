"""Error types raised by the task store and command handlers."""

from typing import Optional


class TaskmrError(Exception):
    """Base class for every error surfaced to the CLI layer."""

    exit_code: int = 1


class NotFound(TaskmrError):
    """The task identity is unknown."""

    def __init__(self, task_ref: str):
        self.task_ref = task_ref
        super().__init__(f"the task for id `{task_ref}` is not found")


class InvalidOperation(TaskmrError):
    """A command violates a business rule for the task's current state."""


class AlreadyClosed(InvalidOperation):
    def __init__(self, task_ref: str):
        self.task_ref = task_ref
        super().__init__(f"the task for id `{task_ref}` has already been closed")


class AlreadyOpen(InvalidOperation):
    def __init__(self, task_ref: str):
        self.task_ref = task_ref
        super().__init__(f"the task for id `{task_ref}` is already open")


class ConcurrencyConflict(TaskmrError):
    """The stored version moved on since the caller read the task.

    This is the only error a caller may retry: reload, re-validate, re-attempt.
    """

    exit_code = 2

    def __init__(self, task_id: str, expected_version: int, actual_version: Optional[int] = None):
        self.task_id = task_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        if actual_version is None:
            message = f"task `{task_id}` was modified concurrently (expected version {expected_version})"
        else:
            message = (
                f"task `{task_id}` is at version {actual_version}, "
                f"expected version {expected_version}"
            )
        super().__init__(message)


class IllegalTransition(TaskmrError):
    """Replay met an event sequence the state machine forbids (log corruption)."""

    exit_code = 3


class StorageFailure(TaskmrError):
    """The underlying database failed; the transaction was rolled back."""


class ProjectionOutOfSync(TaskmrError):
    """The read model disagrees with the event log for a task."""

    exit_code = 3

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(
            f"projection for task `{task_id}` does not match its event log; run `taskmr rebuild`"
        )
