"""Command objects accepted by the task command handlers."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AddTask:
    """Create a new open task."""
    title: str
    description: Optional[str] = None
    priority: Optional[int] = None
    cost: Optional[int] = None


@dataclass(frozen=True)
class EditTask:
    """Change fields of a task. None leaves a field unchanged; an empty
    description clears it."""
    task_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[int] = None
    cost: Optional[int] = None
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class CloseTask:
    task_id: str
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class ReopenTask:
    task_id: str
    expected_version: Optional[int] = None


TaskCommand = AddTask | EditTask | CloseTask | ReopenTask
