"""State management for taskmr."""

from .models import (
    Task,
    TaskFilter,
    TaskStatus,
)
from .replay import TaskReplayer, apply_event, replay
from .projector import ProjectionStore, TaskQuery

__all__ = [
    "Task",
    "TaskFilter",
    "TaskStatus",
    "TaskReplayer",
    "apply_event",
    "replay",
    "ProjectionStore",
    "TaskQuery",
]
