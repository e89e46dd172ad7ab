"""SQLite database connection management."""

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any


class Database:
    """SQLite database wrapper with connection management.

    One connection is shared by the worker pool threads, so every statement
    and every transaction runs under a re-entrant lock.
    """

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        """Execute SQL statement."""
        with self._lock:
            return self._conn.execute(sql, params)

    def fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        """Execute a query and fetch every row while holding the lock."""
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        """Execute a query and fetch the first row while holding the lock."""
        with self._lock:
            row: sqlite3.Row | None = self._conn.execute(sql, params).fetchone()
            return row

    def executemany(self, sql: str, params_list: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        """Execute SQL statement for multiple parameter sets."""
        with self._lock:
            return self._conn.executemany(sql, params_list)

    def executescript(self, sql: str) -> sqlite3.Cursor:
        """Execute multiple SQL statements as a script."""
        with self._lock:
            return self._conn.executescript(sql)

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Run a block of statements atomically.

        Commits on normal exit and rolls back if the block raises.
        """
        with self._lock:
            try:
                yield self
            except BaseException:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()

    def commit(self) -> None:
        """Commit current transaction."""
        with self._lock:
            self._conn.commit()

    def rollback(self) -> None:
        """Rollback current transaction."""
        with self._lock:
            self._conn.rollback()

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()
