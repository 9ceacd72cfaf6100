"""Event schema definitions for taskmr."""

from datetime import datetime, UTC
from typing import Annotated, Any, Dict, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from ..config import DEFAULT_COST, DEFAULT_PRIORITY

TASK_CREATED = "task_created"
TASK_EDITED = "task_edited"
TASK_CLOSED = "task_closed"
TASK_REOPENED = "task_reopened"

EVENT_TYPES = (TASK_CREATED, TASK_EDITED, TASK_CLOSED, TASK_REOPENED)
EDITABLE_FIELDS = ("title", "description", "priority", "cost")


class CreatedPayload(BaseModel):
    """Payload of a task_created event."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str
    description: Optional[str] = None
    sequential_id: int
    priority: int = DEFAULT_PRIORITY
    cost: int = DEFAULT_COST


class EditedPayload(BaseModel):
    """Payload of a task_edited event. Unset fields keep their value."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[int] = None
    cost: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _require_change(cls, data: Any) -> Any:
        if isinstance(data, dict) and not any(name in data for name in EDITABLE_FIELDS):
            raise ValueError("an edit must change at least one field")
        return data

    def changes(self) -> Dict[str, Any]:
        """Fields explicitly set by the edit."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class EmptyPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class BaseEvent(BaseModel):
    """Base event schema with common fields.

    Events are immutable facts about one task, ordered by ``sequence``.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    task_id: str
    sequence: int = Field(ge=1)
    event_type: str


class TaskCreatedEvent(BaseEvent):
    """A task came into existence."""

    event_type: Literal["task_created"] = TASK_CREATED
    payload: CreatedPayload


class TaskEditedEvent(BaseEvent):
    """Title, description, priority or cost of a task changed."""

    event_type: Literal["task_edited"] = TASK_EDITED
    payload: EditedPayload


class TaskClosedEvent(BaseEvent):
    """An open task was closed."""

    event_type: Literal["task_closed"] = TASK_CLOSED
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class TaskReopenedEvent(BaseEvent):
    """A closed task was reopened."""

    event_type: Literal["task_reopened"] = TASK_REOPENED
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


# Type alias for all event types
Event = Annotated[
    Union[TaskCreatedEvent, TaskEditedEvent, TaskClosedEvent, TaskReopenedEvent],
    Field(discriminator="event_type"),
]

_event_adapter = TypeAdapter(Event)


def parse_event(data: Dict[str, Any]) -> Event:
    """Parse raw event data into the matching event class.

    Raises:
        pydantic.ValidationError: for unknown event types or malformed payloads
    """
    return _event_adapter.validate_python(data)
