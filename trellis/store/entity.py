"""Base class for persistent entities."""

import copy
from typing import Any, Dict, Optional
from uuid import uuid4

from .naming import tablename_for


def _default_value(value: Any) -> Any:
    # Type markers (datetime, an Entity subclass) only describe the column
    if isinstance(value, type):
        return None
    return copy.deepcopy(value)


class Entity:
    """An object stored as one row, identified by a UUID.

    Subclasses describe their table either with a CREATE TABLE statement in
    ``_sql_definition_`` (``{table}`` is replaced by the table name) or by
    letting the schema be inferred from ``_defaults_``. ``_defaults_`` also
    seeds every new instance.

    Example:
        class Address(Entity):
            _defaults_ = {"street": "", "city": ""}

        class User(Entity):
            _sql_definition_ = '''
                CREATE TABLE {table} (
                    uuid UUID PRIMARY KEY NOT NULL,
                    username TEXT NOT NULL,
                    created DATETIME,
                    address Address,
                    snapshot OBJECT,
                    FOREIGN KEY(address) REFERENCES addresses(uuid)
                )
            '''
            _defaults_ = {"username": "", "created": datetime, "address": Address}

        user = User(username="bill", address=Address(street="17 West Street"))
    """

    _sql_definition_: Optional[str] = None
    _defaults_: Dict[str, Any] = {}
    _tablename_: Optional[str] = None

    def __init__(self, **fields: Any):
        self._uuid = str(uuid4())
        for name, value in self._defaults_.items():
            setattr(self, name, _default_value(value))
        for name, value in fields.items():
            setattr(self, name, value)

    @property
    def uuid(self) -> str:
        """The entity's identifier, assigned once at construction."""
        return self._uuid

    @classmethod
    def type_name(cls) -> str:
        return cls.__name__

    @classmethod
    def tablename(cls) -> str:
        return cls._tablename_ or tablename_for(cls.__name__)

    def fields(self) -> Dict[str, Any]:
        """Public state of the entity, uuid included."""
        state = {"uuid": self._uuid}
        state.update(
            (name, value) for name, value in vars(self).items() if not name.startswith("_")
        )
        return state

    def __repr__(self) -> str:
        return f"<{type(self).__name__} uuid={self._uuid}>"


def restore(entity: Entity, uuid: str, fields: Dict[str, Any]) -> Entity:
    """Populate an allocated (not constructed) entity from stored state.

    Fields added to ``_defaults_`` after the row was written get their
    default value.
    """
    entity._uuid = uuid
    for name, value in type(entity)._defaults_.items():
        if name not in fields:
            setattr(entity, name, _default_value(value))
    for name, value in fields.items():
        if name == "uuid":
            continue
        setattr(entity, name, value)
    return entity
