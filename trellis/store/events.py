"""Observer hooks around Store entry points."""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

BEFORE = "before"
AFTER = "after"
FAILED = "failed"


@dataclass(frozen=True)
class StoreEvent:
    """Emitted before and after each top-level save or load.

    Attributes:
        operation: "save", "load_with_uuid" or "load"
        phase: "before", "after" or "failed"
        type_name: Type being saved or loaded
        uuid: Identifier involved, if any
        count: Number of entities loaded (load only, after phase)
        error: The exception, for the failed phase
    """

    operation: str
    phase: str
    type_name: str
    uuid: Optional[str] = None
    count: Optional[int] = None
    error: Optional[BaseException] = None


Observer = Callable[[StoreEvent], None]


class EventEmitter:
    """Dispatches StoreEvents to registered observers.

    An observer that raises is logged and skipped; it never changes the
    outcome of the operation it observes.
    """

    def __init__(self):
        self._observers: List[Observer] = []

    def add(self, observer: Observer) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove(self, observer: Observer) -> None:
        self._observers.remove(observer)

    def __len__(self) -> int:
        return len(self._observers)

    def emit(self, event: StoreEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception("Observer %r failed on %s", observer, event)
