"""Plain table task store, kept alongside the event-sourced one for comparison.

Rows are mutated in place; there is no history. It honours the same command
contract (errors included) as the event-sourced service.
"""

import logging
import sqlite3
from datetime import datetime, UTC
from typing import Any, Dict, Iterator, Optional
from uuid import uuid4

from ..config import DEFAULT_COST, DEFAULT_PRIORITY, check_integer
from ..errors import AlreadyClosed, AlreadyOpen, ConcurrencyConflict, InvalidOperation, NotFound
from ..state import Task, TaskFilter, TaskStatus
from ..storage import SqliteBackend

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id TEXT PRIMARY KEY,
    sequential_id INTEGER NOT NULL UNIQUE,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    priority INTEGER NOT NULL,
    cost INTEGER NOT NULL,
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SimpleTaskService:
    """Task service backed by a single mutable ``tasks`` table."""

    def __init__(self, backend: SqliteBackend, allow_edit_closed: bool = True):
        self.backend = backend
        self.allow_edit_closed = allow_edit_closed
        self.backend.executescript(SCHEMA)

    def shutdown(self) -> None:
        self.backend.close()

    # ---- low-level helpers ----

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(**{key: row[key] for key in row.keys()})

    @staticmethod
    def _clean_title(title: Optional[str]) -> str:
        cleaned = (title or "").strip()
        if not cleaned:
            raise InvalidOperation("task title must not be empty")
        return cleaned

    def _load(self, conn: sqlite3.Connection, task_id: str, expected_version: Optional[int]) -> Task:
        row = conn.execute("SELECT * FROM tasks WHERE task_id = ?", (task_id,)).fetchone()
        if row is None:
            raise NotFound(task_id)
        task = self._row_to_task(row)
        if expected_version is not None and expected_version != task.version:
            raise ConcurrencyConflict(task_id, expected_version, task.version)
        return task

    def _update(self, conn: sqlite3.Connection, task: Task, fields: Dict[str, Any]) -> Task:
        fields = {**fields, "version": task.version + 1, "updated_at": datetime.now(UTC)}
        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = [
            value.value if isinstance(value, TaskStatus)
            else value.isoformat() if isinstance(value, datetime)
            else value
            for value in fields.values()
        ]
        cursor = conn.execute(
            f"UPDATE tasks SET {assignments} WHERE task_id = ? AND version = ?",
            (*params, task.task_id, task.version),
        )
        if cursor.rowcount != 1:
            raise ConcurrencyConflict(task.task_id, task.version)
        return task.model_copy(update=fields)

    # ---- public API ----

    def add(
        self,
        title: str,
        description: Optional[str] = None,
        priority: Optional[int] = None,
        cost: Optional[int] = None,
    ) -> Task:
        title = self._clean_title(title)
        check_integer("priority", priority)
        check_integer("cost", cost)
        now = datetime.now(UTC)
        with self.backend.transaction() as conn:
            (sequential_id,) = conn.execute(
                "SELECT COALESCE(MAX(sequential_id), 0) + 1 FROM tasks"
            ).fetchone()
            task = Task(
                task_id=str(uuid4()),
                sequential_id=sequential_id,
                title=title,
                description=description or None,
                status=TaskStatus.OPEN,
                priority=DEFAULT_PRIORITY if priority is None else priority,
                cost=DEFAULT_COST if cost is None else cost,
                version=1,
                created_at=now,
                updated_at=now,
            )
            conn.execute(
                """
                INSERT INTO tasks (
                    task_id, sequential_id, title, description, status,
                    priority, cost, version, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
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
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        logger.info(f"Added task {task.sequential_id} ({task.task_id}) to simple store")
        return task

    def edit(
        self,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        priority: Optional[int] = None,
        cost: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        fields: Dict[str, Any] = {}
        if title is not None:
            fields["title"] = self._clean_title(title)
        if description is not None:
            fields["description"] = description or None
        if priority is not None:
            fields["priority"] = check_integer("priority", priority)
        if cost is not None:
            fields["cost"] = check_integer("cost", cost)
        if not fields:
            raise InvalidOperation("nothing to edit: give a title, description, priority or cost")

        with self.backend.transaction() as conn:
            task = self._load(conn, task_id, expected_version)
            if task.is_closed and not self.allow_edit_closed:
                raise InvalidOperation(
                    f"the task for id `{task.sequential_id}` is closed and cannot be edited"
                )
            return self._update(conn, task, fields)

    def close(self, task_id: str, expected_version: Optional[int] = None) -> Task:
        with self.backend.transaction() as conn:
            task = self._load(conn, task_id, expected_version)
            if task.is_closed:
                raise AlreadyClosed(str(task.sequential_id))
            return self._update(conn, task, {"status": TaskStatus.CLOSED})

    def reopen(self, task_id: str, expected_version: Optional[int] = None) -> Task:
        with self.backend.transaction() as conn:
            task = self._load(conn, task_id, expected_version)
            if not task.is_closed:
                raise AlreadyOpen(str(task.sequential_id))
            return self._update(conn, task, {"status": TaskStatus.OPEN})

    def get(self, task_id: str) -> Task:
        row = self.backend.fetchone("SELECT * FROM tasks WHERE task_id = ?", (task_id,))
        if row is None:
            raise NotFound(task_id)
        return self._row_to_task(row)

    def list_tasks(self, task_filter: Optional[TaskFilter] = None) -> Iterator[Task]:
        task_filter = task_filter or TaskFilter()
        for row in self.backend.iterate("SELECT * FROM tasks ORDER BY sequential_id ASC"):
            task = self._row_to_task(row)
            if task_filter.matches(task):
                yield task

    def resolve(self, task_ref: str) -> str:
        """Map a sequential id or task id to the task id."""
        if task_ref.isdigit():
            row = self.backend.fetchone(
                "SELECT task_id FROM tasks WHERE sequential_id = ?", (int(task_ref),)
            )
        else:
            row = self.backend.fetchone("SELECT task_id FROM tasks WHERE task_id = ?", (task_ref,))
        if row is None:
            raise NotFound(task_ref)
        return row["task_id"]
