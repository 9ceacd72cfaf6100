"""Command handlers: validate a command and record at most one event."""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from ..config import DEFAULT_COST, DEFAULT_PRIORITY, check_integer
from ..errors import (
    AlreadyClosed,
    AlreadyOpen,
    ConcurrencyConflict,
    InvalidOperation,
    NotFound,
    ProjectionOutOfSync,
)
from ..events import (
    BaseEvent,
    CreatedPayload,
    EditedPayload,
    EventStore,
    TaskClosedEvent,
    TaskCreatedEvent,
    TaskEditedEvent,
    TaskReopenedEvent,
)
from ..state import ProjectionStore, Task, TaskStatus, apply_event, replay
from .commands import AddTask, CloseTask, EditTask, ReopenTask, TaskCommand

logger = logging.getLogger(__name__)


class TaskCommandHandler:
    """Handles Add, Edit, Close and Reopen commands against the event store.

    Each command runs in one transaction: load state, validate, append one
    event (which also updates the projection). Rejected commands never
    reach the log.
    """

    def __init__(
        self,
        events: EventStore,
        projection: ProjectionStore,
        allow_edit_closed: bool = True,
        verify_reads: bool = False,
    ):
        """Initialize the handler.

        Args:
            events: Event store to append to
            projection: Read model used as the fast path for loading state
            allow_edit_closed: Accept edits on closed tasks
            verify_reads: Replay the log on every load and compare with the projection
        """
        self.events = events
        self.projection = projection
        self.allow_edit_closed = allow_edit_closed
        self.verify_reads = verify_reads

    def handle(self, command: TaskCommand) -> Task:
        """Dispatch a command to its handler and return the resulting state."""
        if isinstance(command, AddTask):
            return self.add(command)
        elif isinstance(command, EditTask):
            return self.edit(command)
        elif isinstance(command, CloseTask):
            return self.close(command)
        elif isinstance(command, ReopenTask):
            return self.reopen(command)
        raise TypeError(f"unsupported command {type(command).__name__}")

    def load_state(self, task_id: str) -> Task:
        """Load the current state of a task.

        The projection is the fast path. When its row is missing the log is
        replayed instead; with ``verify_reads`` the two are compared.

        Raises:
            NotFound: if the task has no events
            ProjectionOutOfSync: if verification finds a mismatch
        """
        projected = self.projection.get(task_id)
        if projected is not None and not self.verify_reads:
            return projected

        replayed = replay(self.events.load_events(task_id))
        if replayed is None:
            if projected is not None:
                raise ProjectionOutOfSync(task_id)
            raise NotFound(task_id)

        if projected is None:
            logger.warning(f"Projection row missing for task {task_id}; restoring it from the log")
            self.projection.restore(replayed)
        elif projected != replayed:
            raise ProjectionOutOfSync(task_id)
        return replayed

    def add(self, command: AddTask) -> Task:
        title = self._clean_title(command.title)
        priority = check_integer("priority", command.priority)
        cost = check_integer("cost", command.cost)
        task_id = str(uuid4())

        with self.events.backend.transaction():
            sequential_id = self.events.issue_sequential_id(task_id)
            event = TaskCreatedEvent(
                task_id=task_id,
                sequence=1,
                payload=CreatedPayload(
                    title=title,
                    description=command.description or None,
                    sequential_id=sequential_id,
                    priority=DEFAULT_PRIORITY if priority is None else priority,
                    cost=DEFAULT_COST if cost is None else cost,
                ),
            )
            task = self._record(None, event)

        logger.info(f"Added task {task.sequential_id} ({task_id})")
        return task

    def edit(self, command: EditTask) -> Task:
        changes: Dict[str, Any] = {}
        if command.title is not None:
            changes["title"] = self._clean_title(command.title)
        if command.description is not None:
            changes["description"] = command.description or None
        if command.priority is not None:
            changes["priority"] = check_integer("priority", command.priority)
        if command.cost is not None:
            changes["cost"] = check_integer("cost", command.cost)
        if not changes:
            raise InvalidOperation("nothing to edit: give a title, description, priority or cost")

        with self.events.backend.transaction():
            state = self._load_for_update(command.task_id, command.expected_version)
            if state.is_closed and not self.allow_edit_closed:
                raise InvalidOperation(
                    f"the task for id `{state.sequential_id}` is closed and cannot be edited"
                )
            event = TaskEditedEvent(
                task_id=state.task_id,
                sequence=state.version + 1,
                payload=EditedPayload(**changes),
            )
            return self._record(state, event)

    def close(self, command: CloseTask) -> Task:
        with self.events.backend.transaction():
            state = self._load_for_update(command.task_id, command.expected_version)
            if state.status == TaskStatus.CLOSED:
                raise AlreadyClosed(str(state.sequential_id))
            event = TaskClosedEvent(task_id=state.task_id, sequence=state.version + 1)
            return self._record(state, event)

    def reopen(self, command: ReopenTask) -> Task:
        with self.events.backend.transaction():
            state = self._load_for_update(command.task_id, command.expected_version)
            if state.status == TaskStatus.OPEN:
                raise AlreadyOpen(str(state.sequential_id))
            event = TaskReopenedEvent(task_id=state.task_id, sequence=state.version + 1)
            return self._record(state, event)

    def _load_for_update(self, task_id: str, expected_version: Optional[int]) -> Task:
        state = self.load_state(task_id)
        if expected_version is not None and expected_version != state.version:
            raise ConcurrencyConflict(task_id, expected_version, state.version)
        return state

    def _record(self, state: Optional[Task], event: BaseEvent) -> Task:
        # validate against the state machine before anything is written
        new_state = apply_event(state, event)
        self.events.append(event.task_id, 0 if state is None else state.version, event)
        return new_state

    @staticmethod
    def _clean_title(title: Optional[str]) -> str:
        cleaned = (title or "").strip()
        if not cleaned:
            raise InvalidOperation("task title must not be empty")
        return cleaned
