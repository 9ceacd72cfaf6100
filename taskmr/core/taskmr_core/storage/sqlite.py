"""SQLite persistence backend with a reentrant transaction boundary."""

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from ..errors import StorageFailure

logger = logging.getLogger(__name__)


class SqliteBackend:
    """One SQLite connection shared by the stores of a single process.

    All writes go through ``transaction()``. Nested ``transaction()`` blocks
    join the outermost one, so an event append and its projection update
    commit or roll back together.
    """

    def __init__(self, db_path: Union[str, Path], timeout: float = 30.0):
        """Open (and create if needed) the database file.

        Args:
            db_path: Path of the SQLite file, or ":memory:"
            timeout: Seconds to wait for a lock held by another process
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._depth = 0
        try:
            # isolation_level=None: transactions are opened explicitly below
            self._conn = sqlite3.connect(str(self.db_path), timeout=timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise StorageFailure(f"cannot open database {self.db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            self._conn.execute("PRAGMA journal_mode=WAL")
        logger.debug(f"Opened SQLite backend at {self.db_path}")

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SqliteBackend":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed block in one write transaction.

        Yields:
            The underlying connection

        Raises:
            StorageFailure: if SQLite fails; the transaction is rolled back
        """
        if self._depth > 0:
            self._depth += 1
            try:
                yield self._conn
            finally:
                self._depth -= 1
            return

        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StorageFailure(f"cannot begin transaction: {e}") from e

        self._depth = 1
        try:
            yield self._conn
        except sqlite3.Error as e:
            self._rollback()
            raise StorageFailure(str(e)) from e
        except BaseException:
            self._rollback()
            raise
        else:
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback()
                raise StorageFailure(f"commit failed: {e}") from e
        finally:
            self._depth = 0

    def _rollback(self) -> None:
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("Rollback failed")

    def execute(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        """Execute a statement outside of an explicit transaction (reads)."""
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise StorageFailure(str(e)) from e

    def fetchone(self, sql: str, params: Iterable = ()) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def iterate(self, sql: str, params: Iterable = ()) -> Iterator[sqlite3.Row]:
        """Yield rows lazily, converting driver errors raised mid-iteration."""
        cursor = self.execute(sql, params)
        try:
            for row in cursor:
                yield row
        except sqlite3.Error as e:
            raise StorageFailure(str(e)) from e
        finally:
            cursor.close()

    def executescript(self, script: str) -> None:
        try:
            self._conn.executescript(script)
        except sqlite3.Error as e:
            raise StorageFailure(str(e)) from e
