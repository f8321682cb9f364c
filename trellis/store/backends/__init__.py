"""Storage backends for trellis.store."""

from .base import StorageBackend, StoredRow
from .sqlite import SQLiteBackend

__all__ = [
    "StorageBackend",
    "StoredRow",
    "SQLiteBackend",
]
