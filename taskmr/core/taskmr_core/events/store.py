"""Event store implementation with SQLite persistence."""

import json
import logging
import sqlite3
from typing import Iterator, List, Protocol

from pydantic import ValidationError

from ..errors import ConcurrencyConflict, IllegalTransition, InvalidOperation
from ..storage import SqliteBackend
from .schemas import BaseEvent, Event, parse_event

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS task_events (
    task_id TEXT NOT NULL,
    sequence INTEGER NOT NULL,
    event_id TEXT NOT NULL UNIQUE,
    event_type TEXT NOT NULL,
    payload TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    PRIMARY KEY (task_id, sequence)
);

CREATE TABLE IF NOT EXISTS task_sequential_ids (
    sequential_id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL UNIQUE
);

CREATE TRIGGER IF NOT EXISTS task_events_no_update
BEFORE UPDATE ON task_events
BEGIN
    SELECT RAISE(ABORT, 'task_events is append-only');
END;

CREATE TRIGGER IF NOT EXISTS task_events_no_delete
BEFORE DELETE ON task_events
BEGIN
    SELECT RAISE(ABORT, 'task_events is append-only');
END;
"""


class EventListener(Protocol):
    """Read model updated inside the append transaction."""

    def apply(self, event: BaseEvent) -> bool:
        ...


class EventStore:
    """Append-only event store keyed by (task_id, sequence).

    Appends use optimistic concurrency: the caller states the version it
    read, and the append fails if the stored version moved on. Registered
    listeners (projections) are applied in the same transaction.
    """

    def __init__(self, backend: SqliteBackend):
        """Initialize event store.

        Args:
            backend: SQLite backend holding the event tables
        """
        self.backend = backend
        self._listeners: List[EventListener] = []
        self.backend.executescript(SCHEMA)

    def subscribe(self, listener: EventListener) -> None:
        """Register a read model to update on every append."""
        self._listeners.append(listener)

    def current_version(self, task_id: str) -> int:
        """Return the last stored sequence for a task, 0 if unknown."""
        row = self.backend.fetchone(
            "SELECT COALESCE(MAX(sequence), 0) AS version FROM task_events WHERE task_id = ?",
            (task_id,),
        )
        return int(row["version"])

    def issue_sequential_id(self, task_id: str) -> int:
        """Issue the next sequential id for a new task.

        Meant to run inside the same transaction as the task_created append.

        Raises:
            InvalidOperation: if the task already holds a sequential id
        """
        with self.backend.transaction() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO task_sequential_ids (task_id) VALUES (?)", (task_id,)
                )
            except sqlite3.IntegrityError as e:
                raise InvalidOperation(f"task {task_id} already has a sequential id") from e
            return int(cursor.lastrowid)

    def append(self, task_id: str, expected_version: int, event: BaseEvent) -> int:
        """Append an event to a task's stream.

        Args:
            task_id: Identity of the task
            expected_version: Version the caller last read (0 for a new task)
            event: Event to append; its sequence must be expected_version + 1

        Returns:
            The new version of the task

        Raises:
            ConcurrencyConflict: if the stored version differs from expected_version
            InvalidOperation: if the event does not belong at this position
        """
        new_version = expected_version + 1
        if event.task_id != task_id:
            raise InvalidOperation(f"event for task {event.task_id} appended to task {task_id}")
        if event.sequence != new_version:
            raise InvalidOperation(
                f"event sequence {event.sequence} does not follow version {expected_version}"
            )

        with self.backend.transaction() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(sequence), 0) FROM task_events WHERE task_id = ?",
                (task_id,),
            ).fetchone()
            actual_version = int(row[0])
            if actual_version != expected_version:
                raise ConcurrencyConflict(task_id, expected_version, actual_version)

            try:
                conn.execute(
                    """
                    INSERT INTO task_events (task_id, sequence, event_id, event_type, payload, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task_id,
                        new_version,
                        event.event_id,
                        event.event_type,
                        event.payload.model_dump_json(exclude_unset=True),
                        event.timestamp.isoformat(),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ConcurrencyConflict(task_id, expected_version) from e

            for listener in self._listeners:
                listener.apply(event)

        logger.info(f"Appended {event.event_type} for task {task_id} at version {new_version}")
        return new_version

    def load_events(self, task_id: str) -> List[Event]:
        """Load the complete, ordered event sequence of a task.

        Returns:
            Events in sequence order; empty if the task is unknown
        """
        return list(self._parse_rows(self.backend.iterate(
            "SELECT * FROM task_events WHERE task_id = ? ORDER BY sequence ASC",
            (task_id,),
        )))

    def read_all(self) -> Iterator[Event]:
        """Stream every event ordered by task identity, then sequence."""
        return self._parse_rows(self.backend.iterate(
            "SELECT * FROM task_events ORDER BY task_id ASC, sequence ASC"
        ))

    def task_ids(self) -> List[str]:
        """All task identities present in the log."""
        return [
            row["task_id"]
            for row in self.backend.iterate(
                "SELECT DISTINCT task_id FROM task_events ORDER BY task_id ASC"
            )
        ]

    def count(self) -> int:
        """Count total number of events in the store."""
        row = self.backend.fetchone("SELECT COUNT(*) AS n FROM task_events")
        return int(row["n"])

    def _parse_rows(self, rows: Iterator[sqlite3.Row]) -> Iterator[Event]:
        for row in rows:
            yield self._parse_event(row)

    @staticmethod
    def _parse_event(row: sqlite3.Row) -> Event:
        """Parse a stored row into the matching event class."""
        try:
            return parse_event({
                "event_id": row["event_id"],
                "timestamp": row["timestamp"],
                "task_id": row["task_id"],
                "sequence": row["sequence"],
                "event_type": row["event_type"],
                "payload": json.loads(row["payload"]),
            })
        except (ValidationError, json.JSONDecodeError) as e:
            raise IllegalTransition(
                f"unreadable event {row['task_id']}#{row['sequence']}: {e}"
            ) from e
