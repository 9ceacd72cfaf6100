"""Task services: the command interface used by the CLI.

Two independent implementations share one contract: the event-sourced
service and the plain table service. Each owns its own database file.
"""

import logging
from typing import Iterable, List, Optional, Protocol, Union

from .config import BACKEND_SIMPLE, TaskmrConfig
from .errors import NotFound
from .events import Event, EventStore
from .handlers import AddTask, CloseTask, EditTask, ReopenTask, TaskCommandHandler
from .simple import SimpleTaskService
from .state import ProjectionStore, Task, TaskFilter
from .storage import SqliteBackend

logger = logging.getLogger(__name__)


class TaskService(Protocol):
    """Command interface shared by both task store implementations."""

    def add(
        self,
        title: str,
        description: Optional[str] = None,
        priority: Optional[int] = None,
        cost: Optional[int] = None,
    ) -> Task:
        ...

    def edit(
        self,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        priority: Optional[int] = None,
        cost: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        ...

    def close(self, task_id: str, expected_version: Optional[int] = None) -> Task:
        ...

    def reopen(self, task_id: str, expected_version: Optional[int] = None) -> Task:
        ...

    def get(self, task_id: str) -> Task:
        ...

    def list_tasks(self, task_filter: Optional[TaskFilter] = None) -> Iterable[Task]:
        ...

    def resolve(self, task_ref: str) -> str:
        ...

    def shutdown(self) -> None:
        ...


class EventSourcedTaskService:
    """Task service backed by the event store and its projection."""

    def __init__(
        self,
        backend: SqliteBackend,
        allow_edit_closed: bool = True,
        verify_reads: bool = False,
    ):
        self.backend = backend
        self.events = EventStore(backend)
        self.projection = ProjectionStore(backend)
        self.events.subscribe(self.projection)
        self.handler = TaskCommandHandler(
            self.events,
            self.projection,
            allow_edit_closed=allow_edit_closed,
            verify_reads=verify_reads,
        )

    def shutdown(self) -> None:
        self.backend.close()

    def add(
        self,
        title: str,
        description: Optional[str] = None,
        priority: Optional[int] = None,
        cost: Optional[int] = None,
    ) -> Task:
        return self.handler.handle(AddTask(title, description, priority, cost))

    def edit(
        self,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        priority: Optional[int] = None,
        cost: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        return self.handler.handle(
            EditTask(task_id, title, description, priority, cost, expected_version)
        )

    def close(self, task_id: str, expected_version: Optional[int] = None) -> Task:
        return self.handler.handle(CloseTask(task_id, expected_version))

    def reopen(self, task_id: str, expected_version: Optional[int] = None) -> Task:
        return self.handler.handle(ReopenTask(task_id, expected_version))

    def get(self, task_id: str) -> Task:
        return self.projection.query_one(task_id)

    def list_tasks(self, task_filter: Optional[TaskFilter] = None) -> Iterable[Task]:
        return self.projection.query_list(task_filter)

    def resolve(self, task_ref: str) -> str:
        """Map a sequential id or task id to the task id."""
        if task_ref.isdigit():
            return self.projection.find_by_sequential_id(int(task_ref)).task_id
        if self.projection.get(task_ref) is not None or self.events.current_version(task_ref) > 0:
            return task_ref
        raise NotFound(task_ref)

    def history(self, task_id: str) -> List[Event]:
        """Every event recorded for a task, oldest first."""
        events = self.events.load_events(task_id)
        if not events:
            raise NotFound(task_id)
        return events

    def rebuild(self) -> int:
        """Reconstruct the projection from the event log."""
        return self.projection.rebuild(self.events)

    def verify(self) -> List[str]:
        """Task ids whose projection differs from a replay of the log."""
        return self.projection.verify(self.events)


def create_service(config: TaskmrConfig) -> Union[EventSourcedTaskService, SimpleTaskService]:
    """Build the task service selected by the configuration."""
    config.validate()
    if config.backend == BACKEND_SIMPLE:
        logger.debug(f"Using simple table store at {config.simple_db_path}")
        return SimpleTaskService(
            SqliteBackend(config.simple_db_path, timeout=config.sqlite_timeout),
            allow_edit_closed=config.allow_edit_closed,
        )

    logger.debug(f"Using event-sourced store at {config.event_db_path}")
    return EventSourcedTaskService(
        SqliteBackend(config.event_db_path, timeout=config.sqlite_timeout),
        allow_edit_closed=config.allow_edit_closed,
        verify_reads=config.verify_reads,
    )
