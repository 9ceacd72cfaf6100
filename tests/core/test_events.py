"""Tests for event system components."""

import json
import tempfile
from datetime import datetime
from pathlib import Path

import pytest
from pydantic import ValidationError

from taskmr.core.taskmr_core.errors import ConcurrencyConflict, InvalidOperation, StorageFailure
from taskmr.core.taskmr_core.events import (
    CreatedPayload,
    EditedPayload,
    EventStore,
    TaskClosedEvent,
    TaskCreatedEvent,
    TaskEditedEvent,
    TaskReopenedEvent,
    parse_event,
)
from taskmr.core.taskmr_core.storage import SqliteBackend


def created(task_id="task-1", sequential_id=1, title="Buy milk"):
    return TaskCreatedEvent(
        task_id=task_id,
        sequence=1,
        payload=CreatedPayload(title=title, sequential_id=sequential_id),
    )


class TestEventSchemas:
    """Test event schema validation and creation."""

    def test_task_created_event(self):
        """Test TaskCreatedEvent creation with defaults."""
        event = created()

        assert event.event_type == "task_created"
        assert event.sequence == 1
        assert event.payload.title == "Buy milk"
        assert event.payload.priority == 10
        assert event.payload.cost == 10
        assert len(event.event_id) == 36  # UUID format
        assert isinstance(event.timestamp, datetime)
        assert event.timestamp.tzinfo is not None

    def test_sequence_must_be_positive(self):
        """Sequences start at 1."""
        with pytest.raises(ValidationError):
            TaskClosedEvent(task_id="task-1", sequence=0)

    def test_events_are_immutable(self):
        """Events cannot be modified after creation."""
        event = created()
        with pytest.raises(ValidationError):
            event.sequence = 5

    def test_edited_payload_requires_a_change(self):
        """An edit with no fields is rejected."""
        with pytest.raises(ValidationError):
            EditedPayload()

    def test_edited_payload_changes_only_set_fields(self):
        """changes() reports explicitly set fields, including cleared ones."""
        payload = EditedPayload(title="New", description=None)
        assert payload.changes() == {"title": "New", "description": None}

    def test_parse_event_dispatches_on_type(self):
        """parse_event returns the matching event class."""
        event = parse_event({
            "task_id": "task-1",
            "sequence": 2,
            "event_type": "task_reopened",
            "payload": {},
        })
        assert isinstance(event, TaskReopenedEvent)

    def test_parse_unknown_event_type(self):
        """Unknown event types are not accepted."""
        with pytest.raises(ValidationError):
            parse_event({
                "task_id": "task-1",
                "sequence": 2,
                "event_type": "task_deleted",
                "payload": {},
            })

    def test_event_json_serialization(self):
        """Events serialize to JSON with their payload."""
        data = json.loads(created().model_dump_json())

        assert data["event_type"] == "task_created"
        assert data["payload"]["title"] == "Buy milk"
        assert "event_id" in data
        assert "timestamp" in data


class TestEventStore:
    """Test event store operations."""

    @pytest.fixture
    def temp_store(self):
        """Create a temporary event store for testing."""
        with tempfile.TemporaryDirectory() as temp_dir:
            backend = SqliteBackend(Path(temp_dir) / "events.sqlite3")
            yield EventStore(backend)
            backend.close()

    def test_append_returns_new_version(self, temp_store):
        """Appending at the expected version returns the next version."""
        version = temp_store.append("task-1", 0, created())

        assert version == 1
        assert temp_store.current_version("task-1") == 1
        assert temp_store.count() == 1

    def test_load_events_in_sequence_order(self, temp_store):
        """Events come back complete and ordered."""
        temp_store.append("task-1", 0, created())
        temp_store.append("task-1", 1, TaskClosedEvent(task_id="task-1", sequence=2))
        temp_store.append("task-1", 2, TaskReopenedEvent(task_id="task-1", sequence=3))

        events = temp_store.load_events("task-1")

        assert [e.sequence for e in events] == [1, 2, 3]
        assert isinstance(events[0], TaskCreatedEvent)
        assert isinstance(events[1], TaskClosedEvent)
        assert isinstance(events[2], TaskReopenedEvent)
        assert events[0].payload.title == "Buy milk"

    def test_load_unknown_task(self, temp_store):
        """Unknown identities have no events."""
        assert temp_store.load_events("missing") == []
        assert temp_store.current_version("missing") == 0

    def test_stale_expected_version_conflicts(self, temp_store):
        """Two writers reading version N: only the first append wins."""
        temp_store.append("task-1", 0, created())

        first = TaskClosedEvent(task_id="task-1", sequence=2)
        second = TaskClosedEvent(task_id="task-1", sequence=2)
        temp_store.append("task-1", 1, first)

        with pytest.raises(ConcurrencyConflict) as exc_info:
            temp_store.append("task-1", 1, second)

        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert len(temp_store.load_events("task-1")) == 2

    def test_append_rejects_misplaced_sequence(self, temp_store):
        """The event's sequence must follow the expected version."""
        with pytest.raises(InvalidOperation):
            temp_store.append("task-1", 0, TaskClosedEvent(task_id="task-1", sequence=3))

    def test_append_rejects_foreign_task(self, temp_store):
        """An event cannot be appended to another task's stream."""
        with pytest.raises(InvalidOperation):
            temp_store.append("task-2", 0, created(task_id="task-1"))

    def test_edited_payload_round_trip_keeps_set_fields(self, temp_store):
        """Only the fields set on an edit are stored and restored."""
        temp_store.append("task-1", 0, created())
        temp_store.append("task-1", 1, TaskEditedEvent(
            task_id="task-1", sequence=2, payload=EditedPayload(cost=3)
        ))

        edited = temp_store.load_events("task-1")[1]

        assert edited.payload.changes() == {"cost": 3}

    def test_events_cannot_be_updated_or_deleted(self, temp_store):
        """The event table is append-only at the storage level."""
        temp_store.append("task-1", 0, created())

        with pytest.raises(StorageFailure):
            with temp_store.backend.transaction() as conn:
                conn.execute("DELETE FROM task_events")
        with pytest.raises(StorageFailure):
            with temp_store.backend.transaction() as conn:
                conn.execute("UPDATE task_events SET sequence = 9")

        assert len(temp_store.load_events("task-1")) == 1

    def test_event_count_never_decreases(self, temp_store):
        """load_events length grows monotonically over appends."""
        lengths = []
        temp_store.append("task-1", 0, created())
        lengths.append(len(temp_store.load_events("task-1")))
        for version in range(1, 5):
            event_cls = TaskClosedEvent if version % 2 else TaskReopenedEvent
            temp_store.append("task-1", version, event_cls(task_id="task-1", sequence=version + 1))
            lengths.append(len(temp_store.load_events("task-1")))

        assert lengths == sorted(lengths)
        assert lengths[-1] == 5

    def test_read_all_orders_by_task_then_sequence(self, temp_store):
        """read_all streams the whole log grouped by task."""
        temp_store.append("b-task", 0, created(task_id="b-task", sequential_id=1))
        temp_store.append("a-task", 0, created(task_id="a-task", sequential_id=2))
        temp_store.append("b-task", 1, TaskClosedEvent(task_id="b-task", sequence=2))

        keys = [(e.task_id, e.sequence) for e in temp_store.read_all()]

        assert keys == [("a-task", 1), ("b-task", 1), ("b-task", 2)]
        assert temp_store.task_ids() == ["a-task", "b-task"]

    def test_issue_sequential_id(self, temp_store):
        """Sequential ids increase and are issued once per task."""
        assert temp_store.issue_sequential_id("task-1") == 1
        assert temp_store.issue_sequential_id("task-2") == 2

        with pytest.raises(InvalidOperation):
            temp_store.issue_sequential_id("task-1")

    def test_failed_transaction_leaves_no_event(self, temp_store):
        """An error inside the transaction rolls back the append."""
        with pytest.raises(RuntimeError):
            with temp_store.backend.transaction():
                temp_store.append("task-1", 0, created())
                raise RuntimeError("boom")

        assert temp_store.load_events("task-1") == []

    def test_event_persistence(self, temp_store):
        """Events persist across store instances."""
        temp_store.append("task-1", 0, created())

        backend = SqliteBackend(temp_store.backend.db_path)
        try:
            events = EventStore(backend).load_events("task-1")
        finally:
            backend.close()

        assert len(events) == 1
        assert events[0].payload.title == "Buy milk"
