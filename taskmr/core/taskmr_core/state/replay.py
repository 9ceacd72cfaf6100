"""Aggregate replay: fold a task's events into its current state."""

from typing import Iterable, Optional

from ..errors import IllegalTransition
from ..events import (
    BaseEvent,
    TaskCreatedEvent,
    TaskEditedEvent,
    TaskClosedEvent,
    TaskReopenedEvent,
)
from .models import Task, TaskStatus


class TaskReplayer:
    """Applies the task state machine to events.

    NonExistent -> Open <-> Closed, with edits allowed in both Open and
    Closed. Every method is pure: states are frozen and never mutated.
    """

    def replay(self, events: Iterable[BaseEvent]) -> Optional[Task]:
        """Reduce an ordered event sequence for one task to its state.

        Args:
            events: Events of a single task in sequence order

        Returns:
            The task state, or None for an empty sequence

        Raises:
            IllegalTransition: if the sequence violates the state machine
        """
        state: Optional[Task] = None
        for event in events:
            state = self.apply(state, event)
        return state

    def apply(self, state: Optional[Task], event: BaseEvent) -> Task:
        """Apply a single event to the state, returning the next state."""
        self._check_order(state, event)

        if isinstance(event, TaskCreatedEvent):
            return self._apply_task_created(state, event)
        elif isinstance(event, TaskEditedEvent):
            return self._apply_task_edited(self._require(state, event), event)
        elif isinstance(event, TaskClosedEvent):
            return self._apply_task_closed(self._require(state, event), event)
        elif isinstance(event, TaskReopenedEvent):
            return self._apply_task_reopened(self._require(state, event), event)
        raise IllegalTransition(f"unknown event type {event.event_type!r} for task {event.task_id}")

    @staticmethod
    def _check_order(state: Optional[Task], event: BaseEvent) -> None:
        expected = 1 if state is None else state.version + 1
        if event.sequence != expected:
            raise IllegalTransition(
                f"task {event.task_id}: expected sequence {expected}, got {event.sequence}"
            )
        if state is not None and state.task_id != event.task_id:
            raise IllegalTransition(
                f"event for task {event.task_id} applied to task {state.task_id}"
            )

    @staticmethod
    def _require(state: Optional[Task], event: BaseEvent) -> Task:
        if state is None:
            raise IllegalTransition(
                f"{event.event_type} for task {event.task_id} before task_created"
            )
        return state

    def _apply_task_created(self, state: Optional[Task], event: TaskCreatedEvent) -> Task:
        """Apply task_created event."""
        if state is not None:
            raise IllegalTransition(f"task {event.task_id} created twice")

        payload = event.payload
        return Task(
            task_id=event.task_id,
            sequential_id=payload.sequential_id,
            title=payload.title,
            description=payload.description,
            status=TaskStatus.OPEN,
            priority=payload.priority,
            cost=payload.cost,
            version=event.sequence,
            created_at=event.timestamp,
            updated_at=event.timestamp,
        )

    def _apply_task_edited(self, state: Task, event: TaskEditedEvent) -> Task:
        """Apply task_edited event."""
        return state.model_copy(update={
            **event.payload.changes(),
            "version": event.sequence,
            "updated_at": event.timestamp,
        })

    def _apply_task_closed(self, state: Task, event: TaskClosedEvent) -> Task:
        """Apply task_closed event."""
        if state.status != TaskStatus.OPEN:
            raise IllegalTransition(f"task {state.task_id} closed while already closed")
        return state.model_copy(update={
            "status": TaskStatus.CLOSED,
            "version": event.sequence,
            "updated_at": event.timestamp,
        })

    def _apply_task_reopened(self, state: Task, event: TaskReopenedEvent) -> Task:
        """Apply task_reopened event."""
        if state.status != TaskStatus.CLOSED:
            raise IllegalTransition(f"task {state.task_id} reopened while open")
        return state.model_copy(update={
            "status": TaskStatus.OPEN,
            "version": event.sequence,
            "updated_at": event.timestamp,
        })


_replayer = TaskReplayer()


def replay(events: Iterable[BaseEvent]) -> Optional[Task]:
    """Convenience function to replay events into task state."""
    return _replayer.replay(events)


def apply_event(state: Optional[Task], event: BaseEvent) -> Task:
    """Convenience function to apply one event to task state."""
    return _replayer.apply(state, event)
