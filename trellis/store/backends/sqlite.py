"""SQLite storage backend."""

import logging
import re
import sqlite3
import threading
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import StoreError, TransactionError
from .base import StorageBackend, StoredRow

sql_logger = logging.getLogger("trellis.store.sql")

_SAVEPOINT_RE = re.compile(r"^[A-Za-z0-9_]+$")


def quote_identifier(name: str) -> str:
    """Quote a table or column name for use in SQL."""
    return '"' + name.replace('"', '""') + '"'


class SQLiteBackend(StorageBackend):
    """SQLite storage backend.

    The connection runs in autocommit mode; transactions are opened and
    closed explicitly through savepoints, so nested saves map onto nested
    savepoints.

    Example:
        backend = SQLiteBackend()
        backend.connect(path="app.db")

        # Or in-memory
        backend.connect(path=":memory:")
    """

    def __init__(self):
        self._conn: Optional[sqlite3.Connection] = None
        self._path: Optional[str] = None
        self._lock = threading.RLock()
        self._savepoints: List[str] = []
        self._defer_foreign_keys = True

    def connect(
        self,
        path: str = ":memory:",
        journal_mode: str = "WAL",
        foreign_keys: bool = True,
        defer_foreign_keys: bool = True,
        **kwargs,
    ) -> None:
        """Connect to SQLite database.

        Args:
            path: Database file path, or ":memory:" for in-memory database
            journal_mode: Journal mode pragma applied after connecting
            foreign_keys: Enable foreign-key enforcement
            defer_foreign_keys: Check foreign keys when the outermost
                savepoint is released rather than per statement
        """
        self._path = path
        self._defer_foreign_keys = defer_foreign_keys
        self._conn = sqlite3.connect(
            path,
            check_same_thread=False,
            isolation_level=None,  # autocommit - savepoints are managed here
        )
        self._conn.row_factory = sqlite3.Row
        self._execute(f"PRAGMA journal_mode = {journal_mode}")
        self._execute(f"PRAGMA foreign_keys = {'ON' if foreign_keys else 'OFF'}")

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
            self._savepoints.clear()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def connection(self) -> sqlite3.Connection:
        """The underlying sqlite3 connection."""
        if self._conn is None:
            raise StoreError("SQLite backend is not connected")
        return self._conn

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        sql_logger.debug("%s %s", sql, list(params))
        with self._lock:
            return self.connection.execute(sql, params)

    # Schema

    def table_exists(self, table: str) -> bool:
        cursor = self._execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ? COLLATE NOCASE",
            (table,),
        )
        return cursor.fetchone() is not None

    def execute_ddl(self, sql: str) -> None:
        # Must not commit: cascading saves may register types mid-transaction
        self._execute(sql.strip())

    def table_info(self, table: str) -> List[Dict[str, Any]]:
        cursor = self._execute("SELECT * FROM pragma_table_info(?)", (table,))
        return [dict(row) for row in cursor]

    def foreign_keys(self, table: str) -> List[Dict[str, Any]]:
        cursor = self._execute("SELECT * FROM pragma_foreign_key_list(?)", (table,))
        return [dict(row) for row in cursor]

    # Rows

    def upsert(
        self,
        table: str,
        columns: Sequence[str],
        placeholders: Sequence[str],
        values: Sequence[Any],
    ) -> None:
        """Insert a row, or update it in place when the uuid already exists.

        An overwrite updates the row in place and never deletes it, so
        ON DELETE actions of rows referencing it do not fire.
        """
        quoted = [quote_identifier(c) for c in columns]
        updates = [f"{c} = excluded.{c}" for c, name in zip(quoted, columns) if name != "uuid"]
        sql = (
            f"INSERT INTO {quote_identifier(table)} ({', '.join(quoted)}) "
            f"VALUES ({', '.join(placeholders)})"
        )
        if updates:
            sql += f" ON CONFLICT(uuid) DO UPDATE SET {', '.join(updates)}"
        else:
            sql += " ON CONFLICT(uuid) DO NOTHING"
        self._execute(sql, list(values))

    def fetch_row(self, table: str, uuid: str) -> Optional[StoredRow]:
        cursor = self._execute(
            f"SELECT * FROM {quote_identifier(table)} WHERE uuid = ?", (uuid,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return StoredRow(table=table, uuid=row["uuid"], values=dict(row))

    def select_uuids(
        self,
        table: str,
        where: str = "",
        params: Sequence[Any] = (),
        modifiers: str = "",
    ) -> List[str]:
        sql = f"SELECT uuid FROM {quote_identifier(table)}"
        if where:
            sql += f" WHERE {where}"
        if modifiers:
            sql += f" {modifiers}"
        return [row["uuid"] for row in self._execute(sql, params)]

    def count(self, table: str) -> int:
        cursor = self._execute(f"SELECT COUNT(*) FROM {quote_identifier(table)}")
        return cursor.fetchone()[0]

    # Savepoints

    def _check_name(self, name: str) -> None:
        if not _SAVEPOINT_RE.match(name):
            raise TransactionError(
                f"Invalid savepoint name {name!r}: must be alphanumeric/underscores only"
            )

    def begin_savepoint(self, name: str) -> None:
        self._check_name(name)
        with self._lock:
            if name in self._savepoints:
                raise TransactionError(f"Savepoint {name!r} is already open")
            try:
                self._execute(f"SAVEPOINT {name}")
                if not self._savepoints and self._defer_foreign_keys:
                    self._execute("PRAGMA defer_foreign_keys = ON")
            except sqlite3.Error as e:
                raise TransactionError(f"Failed to begin savepoint {name}: {e}") from e
            self._savepoints.append(name)

    def release_savepoint(self, name: str) -> None:
        with self._lock:
            self._expect_innermost(name)
            try:
                self._execute(f"RELEASE SAVEPOINT {name}")
            except sqlite3.Error as e:
                # Deferred constraint failures surface here on the outermost
                # release; the transaction is still open and must be undone.
                self._discard(name)
                raise TransactionError(f"Failed to release savepoint {name}: {e}") from e
            self._savepoints.pop()

    def rollback_to_savepoint(self, name: str) -> None:
        with self._lock:
            self._expect_innermost(name)
            try:
                self._discard(name)
            except sqlite3.Error as e:
                raise TransactionError(f"Failed to roll back to savepoint {name}: {e}") from e

    def _discard(self, name: str) -> None:
        self._savepoints.pop()
        if self._savepoints:
            self._execute(f"ROLLBACK TO SAVEPOINT {name}")
            self._execute(f"RELEASE SAVEPOINT {name}")
        else:
            self._execute("ROLLBACK")

    def _expect_innermost(self, name: str) -> None:
        if not self._savepoints or self._savepoints[-1] != name:
            raise TransactionError(
                f"Savepoint {name!r} is not the innermost open savepoint"
            )

    @property
    def savepoint_depth(self) -> int:
        return len(self._savepoints)
