"""Abstract base class for storage backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class StoredRow:
    """A raw row read back from the backend, before any conversion."""

    table: str
    uuid: str
    values: Dict[str, Any] = field(default_factory=dict)


class StorageBackend(ABC):
    """Abstract base class for storage backends.

    Backends own the connection and speak SQL; the Store handles type
    registration, conversion, cascading and caching.

    Access to a single connection must be serialized: every method takes
    the backend's re-entrant ``lock``, and the Store holds it for the whole
    of a top-level save or load so nested savepoints never interleave.
    """

    @abstractmethod
    def connect(self, **kwargs) -> None:
        """Establish connection to storage.

        Args:
            **kwargs: Backend-specific connection parameters
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close connection and release resources."""
        pass

    @property
    @abstractmethod
    def lock(self) -> Any:
        """Re-entrant lock guarding the connection."""
        pass

    # Schema

    @abstractmethod
    def table_exists(self, table: str) -> bool:
        """Check whether a table exists."""
        pass

    @abstractmethod
    def execute_ddl(self, sql: str) -> None:
        """Run a single DDL statement (e.g. CREATE TABLE)."""
        pass

    @abstractmethod
    def table_info(self, table: str) -> List[Dict[str, Any]]:
        """List columns of a table.

        Returns:
            One dict per column with keys cid, name, type, notnull,
            dflt_value and pk. Empty if the table does not exist.
        """
        pass

    @abstractmethod
    def foreign_keys(self, table: str) -> List[Dict[str, Any]]:
        """List foreign keys of a table.

        Returns:
            One dict per key with keys from, table, to, on_update and
            on_delete.
        """
        pass

    # Rows

    @abstractmethod
    def upsert(
        self,
        table: str,
        columns: Sequence[str],
        placeholders: Sequence[str],
        values: Sequence[Any],
    ) -> None:
        """Write a row keyed by uuid, overwriting any existing row in place."""
        pass

    @abstractmethod
    def fetch_row(self, table: str, uuid: str) -> Optional[StoredRow]:
        """Retrieve a row by uuid, or None if absent."""
        pass

    @abstractmethod
    def select_uuids(
        self,
        table: str,
        where: str = "",
        params: Sequence[Any] = (),
        modifiers: str = "",
    ) -> List[str]:
        """Select the uuids of rows matching a predicate.

        Args:
            table: Table to scan
            where: SQL predicate without the WHERE keyword (may be empty)
            params: Parameters for the predicate
            modifiers: ORDER BY / LIMIT clause appended to the query
        """
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count rows in a table."""
        pass

    # Savepoints

    @abstractmethod
    def begin_savepoint(self, name: str) -> None:
        """Open a named savepoint, nested inside any open one."""
        pass

    @abstractmethod
    def release_savepoint(self, name: str) -> None:
        """Release (commit) a named savepoint."""
        pass

    @abstractmethod
    def rollback_to_savepoint(self, name: str) -> None:
        """Revert to a named savepoint and discard it."""
        pass

    @property
    @abstractmethod
    def savepoint_depth(self) -> int:
        """Number of currently open savepoints."""
        pass
