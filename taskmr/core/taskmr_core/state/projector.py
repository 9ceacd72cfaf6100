"""Projection store: the materialized task read model."""

import logging
import sqlite3
from typing import Iterator, List, Optional

from ..errors import NotFound
from ..events import BaseEvent, EventStore
from ..storage import SqliteBackend
from .models import Task, TaskFilter
from .replay import apply_event, replay

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS task_projection (
    task_id TEXT PRIMARY KEY,
    sequential_id INTEGER NOT NULL UNIQUE,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL,
    priority INTEGER NOT NULL,
    cost INTEGER NOT NULL,
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_task_projection_status
ON task_projection(status, sequential_id);
"""


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        task_id=row["task_id"],
        sequential_id=row["sequential_id"],
        title=row["title"],
        description=row["description"],
        status=row["status"],
        priority=row["priority"],
        cost=row["cost"],
        version=row["version"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class TaskQuery:
    """Lazy, restartable listing of projected tasks.

    Each iteration runs the query again, so it always reflects the current
    projection. Tasks come out in creation order (by sequential id).
    """

    def __init__(self, backend: SqliteBackend, task_filter: TaskFilter):
        self._backend = backend
        self.task_filter = task_filter

    def __iter__(self) -> Iterator[Task]:
        sql = "SELECT * FROM task_projection"
        params: list = []
        if self.task_filter.status is not None:
            sql += " WHERE status = ?"
            params.append(self.task_filter.status.value)
        sql += " ORDER BY sequential_id ASC"

        for row in self._backend.iterate(sql, params):
            task = _row_to_task(row)
            if self.task_filter.matches(task):
                yield task


class ProjectionStore:
    """Denormalized task table kept in step with the event log.

    ``apply`` runs inside the event store's append transaction, so a
    projected row always equals the replay of that task's events.
    """

    def __init__(self, backend: SqliteBackend):
        """Initialize projection store.

        Args:
            backend: SQLite backend shared with the event store
        """
        self.backend = backend
        self.backend.executescript(SCHEMA)

    def apply(self, event: BaseEvent) -> bool:
        """Apply an event to the projected row of its task.

        Args:
            event: Event to apply

        Returns:
            True if the row changed, False if the event was already applied

        Raises:
            IllegalTransition: if the event skips a sequence or breaks the state machine
        """
        with self.backend.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM task_projection WHERE task_id = ?", (event.task_id,)
            ).fetchone()
            current = _row_to_task(row) if row else None

            if current is not None and event.sequence <= current.version:
                logger.debug(
                    f"Skipping {event.event_type} #{event.sequence} for task {event.task_id}: "
                    f"projection already at version {current.version}"
                )
                return False

            self._upsert(conn, apply_event(current, event))
            return True

    def restore(self, task: Task) -> None:
        """Overwrite the projected row of a task with a replayed state."""
        with self.backend.transaction() as conn:
            self._upsert(conn, task)

    def query_one(self, task_id: str) -> Task:
        """Get the current summary of a task.

        Raises:
            NotFound: if the task is not projected
        """
        task = self.get(task_id)
        if task is None:
            raise NotFound(task_id)
        return task

    def get(self, task_id: str) -> Optional[Task]:
        row = self.backend.fetchone(
            "SELECT * FROM task_projection WHERE task_id = ?", (task_id,)
        )
        return _row_to_task(row) if row else None

    def find_by_sequential_id(self, sequential_id: int) -> Task:
        """Get a task by its sequential id.

        Raises:
            NotFound: if no task holds that sequential id
        """
        row = self.backend.fetchone(
            "SELECT * FROM task_projection WHERE sequential_id = ?", (sequential_id,)
        )
        if row is None:
            raise NotFound(str(sequential_id))
        return _row_to_task(row)

    def query_list(self, task_filter: Optional[TaskFilter] = None) -> TaskQuery:
        """List projected tasks matching a filter, in creation order."""
        return TaskQuery(self.backend, task_filter or TaskFilter())

    def count(self) -> int:
        row = self.backend.fetchone("SELECT COUNT(*) AS n FROM task_projection")
        return int(row["n"])

    def rebuild(self, event_store: EventStore) -> int:
        """Recreate the projection from the full event log.

        The table is truncated and every event is replayed in
        (task_id, sequence) order, all in one transaction.

        Returns:
            Number of tasks in the rebuilt projection
        """
        with self.backend.transaction() as conn:
            conn.execute("DELETE FROM task_projection")

            state: Optional[Task] = None
            rebuilt = 0
            for event in event_store.read_all():
                if state is not None and state.task_id != event.task_id:
                    self._upsert(conn, state)
                    rebuilt += 1
                    state = None
                state = apply_event(state, event)
            if state is not None:
                self._upsert(conn, state)
                rebuilt += 1

        logger.info(f"Rebuilt projection for {rebuilt} tasks")
        return rebuilt

    def verify(self, event_store: EventStore) -> List[str]:
        """Compare every projected row against a full replay of its events.

        Returns:
            Task ids whose projection is missing, stale or orphaned
        """
        mismatched: List[str] = []
        logged_ids = event_store.task_ids()

        for task_id in logged_ids:
            expected = replay(event_store.load_events(task_id))
            if self.get(task_id) != expected:
                mismatched.append(task_id)

        known = set(logged_ids)
        for task in self.query_list():
            if task.task_id not in known:
                mismatched.append(task.task_id)

        if mismatched:
            logger.warning(f"Projection differs from event log for {len(mismatched)} tasks")
        return mismatched

    @staticmethod
    def _upsert(conn: sqlite3.Connection, task: Task) -> None:
        conn.execute(
            """
            INSERT INTO task_projection (
                task_id, sequential_id, title, description, status,
                priority, cost, version, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(task_id) DO UPDATE SET
                sequential_id = excluded.sequential_id,
                title = excluded.title,
                description = excluded.description,
                status = excluded.status,
                priority = excluded.priority,
                cost = excluded.cost,
                version = excluded.version,
                created_at = excluded.created_at,
                updated_at = excluded.updated_at
            """,
            (
                task.task_id,
                task.sequential_id,
                task.title,
                task.description,
                task.status.value,
                task.priority,
                task.cost,
                task.version,
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
            ),
        )
