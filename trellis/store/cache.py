"""Per-operation cache threaded through one save or load call tree."""

from typing import Any, Dict, Iterator, Optional


class _Pending:
    """Placeholder for an identifier whose save or load is in progress."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "PENDING"

    def __bool__(self) -> bool:
        return False


PENDING = _Pending()


class OperationCache:
    """Maps uuid to PENDING or to the materialized entity.

    One cache is created for each top-level save or load and passed down
    explicitly through every recursive call. It is what makes cascades
    terminate on cycles and what guarantees one in-memory instance per
    identifier within an operation. It never outlives the call.

    Attributes:
        toplevel: uuid of the entity the operation started from
    """

    def __init__(self, toplevel: Optional[str]):
        self.toplevel = toplevel
        self._entries: Dict[str, Any] = {}

    def __contains__(self, uuid: str) -> bool:
        return uuid in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def mark_pending(self, uuid: str) -> None:
        self._entries.setdefault(uuid, PENDING)

    def resolve(self, uuid: str, entity: Any) -> None:
        self._entries[uuid] = entity

    def get(self, uuid: str) -> Optional[Any]:
        """Return the cached entity, or None if absent or still pending."""
        entry = self._entries.get(uuid)
        return None if entry is PENDING else entry

    def is_resolved(self, uuid: str) -> bool:
        return self.get(uuid) is not None

    def __repr__(self) -> str:
        return f"OperationCache(toplevel={self.toplevel!r}, entries={len(self._entries)})"
