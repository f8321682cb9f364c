"""Type registry: type names, factories, tables and cached column schemas."""

from typing import Callable, Dict, List, Optional, Type

from .entity import Entity
from .exceptions import SchemaError, UnknownTypeError
from .schema import ColumnInfo


def _allocate(cls: Type[Entity]) -> Callable[[], Entity]:
    # Loaded instances take their uuid from the row, so __init__ must not run
    return lambda: cls.__new__(cls)


class TypeRegistry:
    """Maps type names to Entity classes and their table schemas.

    The registry is the type cache used to turn Reference Tokens back into
    instances, and the schema cache filled in by the SchemaSynchronizer.
    Each Store owns one, so tests can run registries in isolation.

    Example:
        registry = TypeRegistry()
        registry.register(User)

        registry.get("User")              # User
        registry.for_table("users")       # User
        user = registry.instantiate("User")
    """

    def __init__(self):
        self._types: Dict[str, Type[Entity]] = {}
        self._factories: Dict[str, Callable[[], Entity]] = {}
        self._tables: Dict[str, str] = {}  # lowercased table -> type name
        self._columns: Dict[str, Dict[str, ColumnInfo]] = {}

    def register(
        self,
        cls: Type[Entity],
        factory: Optional[Callable[[], Entity]] = None,
    ) -> None:
        """Register an Entity class under its type name.

        Args:
            cls: The Entity subclass
            factory: Callable returning a blank instance to load rows into.
                Defaults to allocating without calling __init__.

        Raises:
            TypeError: If cls is not an Entity subclass
            SchemaError: If another type already maps to the same table
        """
        if not (isinstance(cls, type) and issubclass(cls, Entity)):
            raise TypeError(f"Only Entity subclasses can be registered, got {cls!r}")

        name = cls.type_name()
        table_key = cls.tablename().lower()
        owner = self._tables.get(table_key)
        if owner is not None and owner != name:
            raise SchemaError(
                f"Types {owner} and {name} both map to table {cls.tablename()}"
            )

        self._types[name] = cls
        self._factories[name] = factory or _allocate(cls)
        self._tables[table_key] = name

    def get(self, type_name: str) -> Type[Entity]:
        """Get the class registered under a type name.

        Raises:
            UnknownTypeError: If no such type was registered
        """
        try:
            return self._types[type_name]
        except KeyError:
            raise UnknownTypeError(type_name) from None

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._types

    def for_table(self, table: str) -> Optional[Type[Entity]]:
        """Get the class stored in a table, or None."""
        name = self._tables.get(table.lower())
        return self._types.get(name) if name else None

    def instantiate(self, type_name: str) -> Entity:
        """Create a blank instance of a registered type."""
        self.get(type_name)
        return self._factories[type_name]()

    def type_names(self) -> List[str]:
        return list(self._types)

    # Schema cache

    def set_columns(self, type_name: str, columns: Dict[str, ColumnInfo]) -> None:
        self._columns[type_name] = dict(columns)

    def columns(self, type_name: str) -> Dict[str, ColumnInfo]:
        """Cached columns of a type, in table order.

        Raises:
            SchemaError: If the type's table was never synchronized
        """
        try:
            return self._columns[type_name]
        except KeyError:
            raise SchemaError(f"Type {type_name} has not been synchronized") from None

    def is_synchronized(self, type_name: str) -> bool:
        return type_name in self._columns

    def forget_columns(self, type_name: str) -> None:
        """Drop a cached schema so the next use re-synchronizes it."""
        self._columns.pop(type_name, None)

    def clear(self) -> None:
        """Remove all registered types and cached schemas."""
        self._types.clear()
        self._factories.clear()
        self._tables.clear()
        self._columns.clear()
