"""
SQLite Connection Handling
==========================

Shared database handle for every authority component.

Each component owns its table schema and calls ``Database.initialize``
with it. Tables whose rows belong to an application pass
``TENANT_SCHEMA`` first so the parent tables always exist.

Storage Properties:
- One short-lived connection per operation (safe across threads)
- Foreign keys always enforced
- Commit on success, rollback on error, always closed
- Every sqlite3 failure surfaces as StoreError
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Final, Iterator


BUSY_TIMEOUT_SECONDS: Final[float] = 10.0


class StoreError(Exception):
    """Raised when the backing store fails (maps to InternalError)."""
    pass


class Database:
    """
    Thin wrapper around a SQLite database file.

    Usage:
        db = Database(path)
        db.initialize(SCHEMA)

        with db.connect() as conn:
            conn.execute("UPDATE ...", params)

    Notes:
        - Statements inside one ``connect()`` block form one transaction
        - Use ``immediate=True`` when a read must be consistent with the
          write that follows it
    """

    __slots__ = ("_path", "_timeout")

    def __init__(self, path: Path | str, timeout: float = BUSY_TIMEOUT_SECONDS) -> None:
        self._path = Path(path)
        self._timeout = timeout
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._path,
            timeout=self._timeout,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connect(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Open a connection wrapped in a single transaction.

        Args:
            immediate: Take the write lock up front (BEGIN IMMEDIATE)

        Raises:
            StoreError: On any sqlite3 failure
        """
        try:
            conn = self._open()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database: {e}") from e

        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.IntegrityError:
            # Callers translate constraint violations into domain errors
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreError(str(e)) from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def initialize(self, *schemas: str) -> None:
        """Create a component's tables (and any parents it names first) if missing."""
        try:
            conn = self._open()
            try:
                for schema in schemas:
                    conn.executescript(schema)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreError(f"Schema initialization failed: {e}") from e


def row_to_dict(row: sqlite3.Row) -> dict:
    """Convert a sqlite3.Row to a plain dict."""
    return {key: row[key] for key in row.keys()}
