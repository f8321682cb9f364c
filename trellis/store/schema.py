"""Column descriptors, schema inference and table synchronization."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Type

from .entity import Entity
from .exceptions import SchemaError

if TYPE_CHECKING:
    from .backends.base import StorageBackend
    from .registry import TypeRegistry

logger = logging.getLogger(__name__)

# Declared storage types with built-in meaning
IDENTIFIER = "UUID"
TEXT = "TEXT"
DATETIME = "DATETIME"
AGGREGATE = "OBJECT"

AGGREGATE_COLUMN = "snapshot"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class ForeignKeyInfo:
    """Foreign-key annotation of a reference column."""

    table: str
    to_column: str = "uuid"
    on_update: str = "NO ACTION"
    on_delete: str = "NO ACTION"


@dataclass(frozen=True)
class ColumnInfo:
    """One column of a synchronized table."""

    name: str
    declared_type: str
    not_null: bool = False
    primary_key: bool = False
    default: Any = None
    foreign_key: Optional[ForeignKeyInfo] = None

    @property
    def is_reference(self) -> bool:
        return self.foreign_key is not None

    @property
    def is_aggregate(self) -> bool:
        return self.declared_type.upper() == AGGREGATE


def infer_column(name: str, value: Any) -> Optional[Tuple[str, Optional[Type[Entity]]]]:
    """Infer the storage type of a field from its default value.

    Rules, checked in order:
        Entity subclass        -> reference column typed with the class name
        bool / int (or type)   -> INTEGER
        float (or type)        -> REAL
        str (or type)          -> TEXT
        datetime (or type)     -> DATETIME
        dict / list / tuple    -> no column; kept in the aggregate only

    Returns:
        (declared_type, referenced_class) or None for aggregate-only fields

    Raises:
        SchemaError: For any other default (None, Entity instances, ...)
    """
    if isinstance(value, type):
        if issubclass(value, Entity):
            return value.type_name(), value
        if issubclass(value, (bool, int)):
            return "INTEGER", None
        if issubclass(value, float):
            return "REAL", None
        if issubclass(value, str):
            return TEXT, None
        if issubclass(value, datetime):
            return DATETIME, None
        raise SchemaError(f"Cannot infer a column for field {name!r} of type {value.__name__}")

    if isinstance(value, Entity):
        raise SchemaError(
            f"Field {name!r} defaults to an {type(value).__name__} instance; "
            f"use the class {type(value).__name__} as the default instead"
        )
    if isinstance(value, (bool, int)):
        return "INTEGER", None
    if isinstance(value, float):
        return "REAL", None
    if isinstance(value, str):
        return TEXT, None
    if isinstance(value, datetime):
        return DATETIME, None
    if isinstance(value, (dict, list, tuple)):
        return None
    raise SchemaError(f"Cannot infer a column for field {name!r} from default {value!r}")


def infer_definition(cls: Type[Entity]) -> str:
    """Build a CREATE TABLE statement from an Entity's ``_defaults_``.

    Raises:
        SchemaError: If the class has no defaults or one is not inferable
    """
    if not cls._defaults_:
        raise SchemaError(
            f"{cls.__name__} has neither a _sql_definition_ nor _defaults_ to infer one from"
        )

    columns: List[str] = [f"uuid {IDENTIFIER} PRIMARY KEY NOT NULL"]
    constraints: List[str] = []
    for name, value in cls._defaults_.items():
        if not _IDENTIFIER_RE.match(name) or name in ("uuid", AGGREGATE_COLUMN):
            raise SchemaError(f"{cls.__name__} cannot map field {name!r} to a column")
        inferred = infer_column(name, value)
        if inferred is None:
            continue
        declared_type, target = inferred
        columns.append(f"{name} {declared_type}")
        if target is not None:
            constraints.append(
                f"FOREIGN KEY({name}) REFERENCES {target.tablename()}(uuid)"
            )
    columns.append(f"{AGGREGATE_COLUMN} {AGGREGATE}")

    body = ",\n    ".join(columns + constraints)
    return f"CREATE TABLE {cls.tablename()} (\n    {body}\n)"


class SchemaSynchronizer:
    """Makes sure a type's table exists and caches its columns.

    Example:
        sync = SchemaSynchronizer(backend, registry)
        columns = sync.sync(User)
        columns["address"].foreign_key.table   # "addresses"
    """

    def __init__(self, backend: "StorageBackend", registry: "TypeRegistry"):
        self._backend = backend
        self._registry = registry

    def definition_for(self, cls: Type[Entity]) -> str:
        if cls._sql_definition_:
            return cls._sql_definition_.replace("{table}", cls.tablename())
        return infer_definition(cls)

    def sync(self, cls: Type[Entity]) -> Dict[str, ColumnInfo]:
        """Create the table if absent, then introspect and cache its columns.

        Raises:
            SchemaError: If no definition is available, or the table cannot
                be introspected after creation
        """
        table = cls.tablename()
        if not self._backend.table_exists(table):
            self._backend.execute_ddl(self.definition_for(cls))
            logger.info("Created table %s for %s", table, cls.type_name())

        columns = self.introspect(table)
        if not columns:
            raise SchemaError(f"Table {table} for {cls.type_name()} has no columns")
        self._validate(cls, columns)
        self._warn_unstored(cls, columns)
        self._registry.set_columns(cls.type_name(), columns)
        return columns

    def introspect(self, table: str) -> Dict[str, ColumnInfo]:
        """Read column and foreign-key metadata for a table."""
        foreign_keys = {
            row["from"]: ForeignKeyInfo(
                table=row["table"],
                to_column=row["to"] or "uuid",
                on_update=row["on_update"],
                on_delete=row["on_delete"],
            )
            for row in self._backend.foreign_keys(table)
        }
        return {
            row["name"]: ColumnInfo(
                name=row["name"],
                declared_type=row["type"] or "",
                not_null=bool(row["notnull"]),
                primary_key=bool(row["pk"]),
                default=row["dflt_value"],
                foreign_key=foreign_keys.get(row["name"]),
            )
            for row in self._backend.table_info(table)
        }

    def _validate(self, cls: Type[Entity], columns: Dict[str, ColumnInfo]) -> None:
        uuid_column = columns.get("uuid")
        if uuid_column is None or not uuid_column.primary_key:
            raise SchemaError(f"Table for {cls.type_name()} needs a uuid primary key column")
        aggregates = [c.name for c in columns.values() if c.is_aggregate]
        if len(aggregates) > 1:
            raise SchemaError(
                f"Table for {cls.type_name()} has more than one {AGGREGATE} column: {aggregates}"
            )

    def _warn_unstored(self, cls: Type[Entity], columns: Dict[str, ColumnInfo]) -> None:
        # Without an aggregate column, only fields backed by a column survive a save
        if any(c.is_aggregate for c in columns.values()):
            return
        unstored = [name for name in cls._defaults_ if name not in columns]
        if unstored:
            logger.warning(
                "Table %s for %s has no %s column; fields %s will not be saved",
                cls.tablename(),
                cls.type_name(),
                AGGREGATE,
                ", ".join(unstored),
            )
