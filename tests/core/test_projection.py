"""Tests for the task projection store."""

import tempfile
from pathlib import Path

import pytest

from taskmr.core.taskmr_core.errors import IllegalTransition, NotFound
from taskmr.core.taskmr_core.events import (
    CreatedPayload,
    EventStore,
    TaskClosedEvent,
    TaskCreatedEvent,
    TaskReopenedEvent,
)
from taskmr.core.taskmr_core.state import ProjectionStore, TaskFilter, TaskStatus, replay
from taskmr.core.taskmr_core.storage import SqliteBackend


def created(task_id, sequential_id, title):
    return TaskCreatedEvent(
        task_id=task_id,
        sequence=1,
        payload=CreatedPayload(title=title, sequential_id=sequential_id),
    )


class TestProjectionStore:
    """Test incremental projection, queries and recovery."""

    @pytest.fixture
    def stores(self):
        """Event store with a subscribed projection in a temp database."""
        with tempfile.TemporaryDirectory() as temp_dir:
            backend = SqliteBackend(Path(temp_dir) / "events.sqlite3")
            events = EventStore(backend)
            projection = ProjectionStore(backend)
            events.subscribe(projection)
            yield events, projection
            backend.close()

    @pytest.fixture
    def populated(self, stores):
        """Three tasks; the second one closed."""
        events, projection = stores
        events.append("t-a", 0, created("t-a", 1, "Buy milk"))
        events.append("t-b", 0, created("t-b", 2, "Write report"))
        events.append("t-c", 0, created("t-c", 3, "Call mom"))
        events.append("t-b", 1, TaskClosedEvent(task_id="t-b", sequence=2))
        return events, projection

    def test_append_updates_projection(self, stores):
        """The projection reflects an append immediately."""
        events, projection = stores
        events.append("t-a", 0, created("t-a", 1, "Buy milk"))

        task = projection.query_one("t-a")

        assert task.title == "Buy milk"
        assert task.status == TaskStatus.OPEN
        assert task.version == 1

    def test_projection_equals_replay(self, populated):
        """query_one(id) equals replay(load_events(id)) for every task."""
        events, projection = populated

        for task_id in events.task_ids():
            assert projection.query_one(task_id) == replay(events.load_events(task_id))

    def test_reapplying_event_is_ignored(self, populated):
        """Applying the same (task, sequence) twice leaves the row unchanged."""
        events, projection = populated
        before = projection.query_one("t-b")

        duplicate = events.load_events("t-b")[1]
        assert projection.apply(duplicate) is False

        assert projection.query_one("t-b") == before

    def test_sequence_gap_is_rejected(self, populated):
        _, projection = populated
        with pytest.raises(IllegalTransition):
            projection.apply(TaskReopenedEvent(task_id="t-a", sequence=3))

    def test_query_one_unknown(self, stores):
        _, projection = stores
        with pytest.raises(NotFound):
            projection.query_one("missing")

    def test_find_by_sequential_id(self, populated):
        _, projection = populated
        assert projection.find_by_sequential_id(3).title == "Call mom"
        with pytest.raises(NotFound):
            projection.find_by_sequential_id(99)

    def test_query_list_filters_and_orders(self, populated):
        """Lists come out in creation order, filtered by status."""
        _, projection = populated

        open_titles = [t.title for t in projection.query_list(TaskFilter.open_only())]
        closed_titles = [t.title for t in projection.query_list(TaskFilter(status=TaskStatus.CLOSED))]
        all_ids = [t.sequential_id for t in projection.query_list()]

        assert open_titles == ["Buy milk", "Call mom"]
        assert closed_titles == ["Write report"]
        assert all_ids == [1, 2, 3]

    def test_query_list_title_search(self, populated):
        _, projection = populated
        found = list(projection.query_list(TaskFilter(title_contains="MILK")))
        assert [t.task_id for t in found] == ["t-a"]

    def test_query_list_is_restartable(self, populated):
        """Iterating a query again re-runs it against current state."""
        events, projection = populated
        query = projection.query_list(TaskFilter.open_only())

        assert len(list(query)) == 2
        events.append("t-a", 1, TaskClosedEvent(task_id="t-a", sequence=2))
        assert [t.task_id for t in query] == ["t-c"]

    def test_rebuild_restores_projection(self, populated):
        """Rebuild reconstructs a wiped projection from the log."""
        events, projection = populated
        expected = {t.task_id: t for t in projection.query_list()}

        with projection.backend.transaction() as conn:
            conn.execute("DELETE FROM task_projection")
        assert projection.count() == 0

        assert projection.rebuild(events) == 3
        assert {t.task_id: t for t in projection.query_list()} == expected

    def test_verify_detects_drift(self, populated):
        """verify reports rows that disagree with replay, then rebuild fixes them."""
        events, projection = populated
        assert projection.verify(events) == []

        with projection.backend.transaction() as conn:
            conn.execute("UPDATE task_projection SET status = 'open' WHERE task_id = 't-b'")
            conn.execute("DELETE FROM task_projection WHERE task_id = 't-c'")

        assert sorted(projection.verify(events)) == ["t-b", "t-c"]

        projection.rebuild(events)
        assert projection.verify(events) == []

    def test_rebuild_empty_log(self, stores):
        events, projection = stores
        assert projection.rebuild(events) == 0
