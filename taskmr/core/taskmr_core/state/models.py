"""State models for taskmr."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..config import DEFAULT_COST, DEFAULT_PRIORITY


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""
    OPEN = "open"
    CLOSED = "closed"


class Task(BaseModel):
    """Current state of one task.

    Used both as the replayed aggregate state and as the projection record,
    so the two can be compared directly.
    """

    model_config = ConfigDict(frozen=True)

    task_id: str
    sequential_id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.OPEN
    priority: int = DEFAULT_PRIORITY
    cost: int = DEFAULT_COST
    version: int  # sequence of the last applied event
    created_at: datetime
    updated_at: datetime

    @property
    def is_closed(self) -> bool:
        return self.status == TaskStatus.CLOSED


@dataclass(frozen=True)
class TaskFilter:
    """Criteria for listing tasks. Unset fields match everything."""
    status: Optional[TaskStatus] = None
    title_contains: Optional[str] = None

    @classmethod
    def open_only(cls) -> "TaskFilter":
        return cls(status=TaskStatus.OPEN)

    def matches(self, task: Task) -> bool:
        if self.status is not None and task.status != self.status:
            return False
        if self.title_contains and self.title_contains.lower() not in task.title.lower():
            return False
        return True
