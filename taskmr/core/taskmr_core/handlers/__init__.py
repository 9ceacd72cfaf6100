"""Command handling for taskmr."""

from .commands import AddTask, CloseTask, EditTask, ReopenTask, TaskCommand
from .task_handlers import TaskCommandHandler

__all__ = [
    "AddTask",
    "CloseTask",
    "EditTask",
    "ReopenTask",
    "TaskCommand",
    "TaskCommandHandler",
]
