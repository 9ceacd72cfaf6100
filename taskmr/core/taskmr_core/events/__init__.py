"""Event system for taskmr."""

from .schemas import (
    BaseEvent,
    Event,
    CreatedPayload,
    EditedPayload,
    TaskCreatedEvent,
    TaskEditedEvent,
    TaskClosedEvent,
    TaskReopenedEvent,
    parse_event,
)
from .store import EventStore, EventListener

__all__ = [
    "BaseEvent",
    "Event",
    "CreatedPayload",
    "EditedPayload",
    "TaskCreatedEvent",
    "TaskEditedEvent",
    "TaskClosedEvent",
    "TaskReopenedEvent",
    "parse_event",
    "EventStore",
    "EventListener",
]
