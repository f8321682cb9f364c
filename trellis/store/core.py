"""Core Store class: cascading saves, graph loads and savepoint transactions."""

import itertools
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple, Type, TypeVar, Union
from urllib.parse import urlparse

from .backends.base import StorageBackend
from .backends.sqlite import SQLiteBackend
from .cache import OperationCache
from .config import StoreSettings
from .conversions import ConversionContext, ConversionRegistry, default_conversions
from .criteria import order_clause, to_predicate
from .entity import Entity, restore
from .events import AFTER, BEFORE, FAILED, EventEmitter, Observer, StoreEvent
from .exceptions import NotFoundError, TransactionError
from .registry import TypeRegistry
from .schema import IDENTIFIER, ColumnInfo, SchemaSynchronizer

logger = logging.getLogger(__name__)

T = TypeVar("T")
TypeRef = Union[Type[Entity], str]


class Store:
    """Persists graphs of Entity objects, one row per entity.

    Example:
        from trellis.store import Entity, connect

        class Address(Entity):
            _defaults_ = {"street": "", "city": ""}

        class User(Entity):
            _defaults_ = {"username": "", "address": Address}

        db = connect("sqlite:///app.db")
        db.register(Address, User)

        bill = User(username="bill", address=Address(street="17 West Street"))
        db.save(bill)                       # writes the user and the address

        loaded = db.load_with_uuid(User, bill.uuid)
        loaded.address.street               # "17 West Street"

        for user in db.load(User, {"username": {"$like": "b%"}}, order="username"):
            print(user.username)
    """

    def __init__(
        self,
        backend: StorageBackend,
        conversions: Optional[ConversionRegistry] = None,
        settings: Optional[StoreSettings] = None,
    ):
        """Create a Store over a connected backend.

        Use connect() for convenient URL-based connection.

        Args:
            backend: Connected storage backend
            conversions: Conversion registry (defaults to the process-wide one)
            settings: Store settings (defaults to StoreSettings())
        """
        self._backend = backend
        self._settings = settings or StoreSettings()
        self._registry = TypeRegistry()
        self._conversions = conversions if conversions is not None else default_conversions
        self._schema = SchemaSynchronizer(backend, self._registry)
        self._events = EventEmitter()
        # (type name, savepoint depth) of schemas synchronized inside an open savepoint
        self._uncommitted_schemas: List[Tuple[str, int]] = []
        self._savepoint_seq = itertools.count()

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def registry(self) -> TypeRegistry:
        return self._registry

    @property
    def conversions(self) -> ConversionRegistry:
        return self._conversions

    @property
    def settings(self) -> StoreSettings:
        return self._settings

    # Type registration

    def register(self, *classes: Type[Entity], factory: Optional[Callable[[], Entity]] = None) -> None:
        """Register Entity classes and synchronize their tables.

        Creates each missing table from the class's ``_sql_definition_`` (or
        from its ``_defaults_``) and caches the column metadata. Call this at
        startup, before concurrent access begins; types first met during a
        save are registered on the fly.

        Args:
            *classes: Entity subclasses
            factory: Blank-instance factory used when loading (one class only)

        Raises:
            SchemaError: If a table cannot be defined or introspected
        """
        if factory is not None and len(classes) != 1:
            raise ValueError("A factory can only be given when registering one class")
        with self._backend.lock:
            for cls in classes:
                self._registry.register(cls, factory)
                self._schema.sync(cls)
                if self._backend.savepoint_depth:
                    self._uncommitted_schemas.append(
                        (cls.type_name(), self._backend.savepoint_depth)
                    )
                logger.info("Registered %s (table %s)", cls.type_name(), cls.tablename())

    def _ensure_registered(self, cls: Type[Entity]) -> None:
        name = cls.type_name()
        if name not in self._registry or not self._registry.is_synchronized(name):
            self.register(cls)

    def _resolve_type(self, type_ref: TypeRef) -> Type[Entity]:
        if isinstance(type_ref, str):
            cls = self._registry.get(type_ref)
        else:
            cls = type_ref
        self._ensure_registered(cls)
        return cls

    def columns(self, type_ref: TypeRef) -> Dict[str, ColumnInfo]:
        """Cached column metadata of a registered type."""
        return self._registry.columns(self._resolve_type(type_ref).type_name())

    # Observers

    def add_observer(self, observer: Observer) -> None:
        """Call observer(StoreEvent) before and after each top-level save/load."""
        self._events.add(observer)

    def remove_observer(self, observer: Observer) -> None:
        self._events.remove(observer)

    @contextmanager
    def _observed(self, operation: str, type_name: str, uuid: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        outcome: Dict[str, Any] = {}
        self._events.emit(StoreEvent(operation, BEFORE, type_name, uuid))
        try:
            yield outcome
        except Exception as e:
            self._events.emit(StoreEvent(operation, FAILED, type_name, uuid, error=e))
            raise
        self._events.emit(
            StoreEvent(operation, AFTER, type_name, uuid, count=outcome.get("count"))
        )

    # Save

    def save(self, entity: Entity, cache: Optional[OperationCache] = None) -> bool:
        """Write an entity and, transitively, every entity it references.

        Without a cache this is a top-level save: a fresh operation cache is
        created and the whole cascade runs in one savepoint. With a cache,
        an entity already present in it (in progress or written) is not
        written again and the call succeeds immediately.

        Args:
            entity: The Entity to persist
            cache: Operation cache of an enclosing save

        Returns:
            True once the entity is written (or already handled)

        Raises:
            ConversionError: If a column value cannot be converted
            SchemaError: If the entity's type cannot be synchronized
        """
        if not isinstance(entity, Entity):
            raise TypeError(f"Only Entity instances can be saved, got {type(entity).__name__}")

        if cache is not None:
            if entity.uuid in cache:
                return True
            self._save(entity, cache)
            return True

        with self._backend.lock:
            with self._observed("save", entity.type_name(), entity.uuid):
                self._save(entity, OperationCache(toplevel=entity.uuid))
        return True

    def _save(self, entity: Entity, cache: OperationCache) -> None:
        cls = type(entity)
        self._ensure_registered(cls)
        cache.mark_pending(entity.uuid)

        columns = list(self._registry.columns(cls.type_name()).values())
        names = [column.name for column in columns]
        placeholders = [self._placeholder(column) for column in columns]

        logger.debug("Saving %r", entity)

        def write() -> None:
            values = [self._storage_value(entity, column, cache) for column in columns]
            self._backend.upsert(cls.tablename(), names, placeholders, values)

        self.transact(write)
        cache.resolve(entity.uuid, entity)
        logger.debug("Saved %r", entity)

    def _is_reference(self, column: ColumnInfo) -> bool:
        return column.is_reference or column.declared_type in self._registry

    def _placeholder(self, column: ColumnInfo) -> str:
        if self._is_reference(column):
            return self._conversions.placeholder(IDENTIFIER)
        return self._conversions.placeholder(column.declared_type)

    def _storage_value(self, entity: Entity, column: ColumnInfo, cache: OperationCache) -> Any:
        if column.is_aggregate:
            value: Any = entity
        else:
            value = getattr(entity, column.name, None)

        if isinstance(value, Entity) and not column.is_aggregate and self._is_reference(column):
            self.save(value, cache)
            return value.uuid

        context = ConversionContext(
            store=self,
            cache=cache,
            column=column,
            type_name=entity.type_name(),
            uuid=entity.uuid,
            owner=entity,
        )
        return self._conversions.to_storage(column.declared_type, value, context)

    # Load

    def load_with_uuid(
        self,
        type_ref: TypeRef,
        uuid: str,
        cache: Optional[OperationCache] = None,
    ) -> Entity:
        """Load one entity, and the graph it references, by identifier.

        Within one operation cache each identifier is materialized once:
        shared and cyclic references resolve to the same instance.

        Args:
            type_ref: Entity class or registered type name
            uuid: Identifier to load
            cache: Operation cache of an enclosing load

        Returns:
            The loaded Entity

        Raises:
            NotFoundError: If no row has this identifier
            UnknownTypeError: If type_ref names an unregistered type
        """
        cls = self._resolve_type(type_ref)
        if cache is not None:
            return self._load(cls, uuid, cache)

        with self._backend.lock:
            with self._observed("load_with_uuid", cls.type_name(), uuid):
                return self._load(cls, uuid, OperationCache(toplevel=uuid))

    def _load(self, cls: Type[Entity], uuid: str, cache: OperationCache) -> Entity:
        cached = cache.get(uuid)
        if cached is not None:
            return cached

        name = cls.type_name()
        row = self._backend.fetch_row(cls.tablename(), uuid)
        if row is None:
            raise NotFoundError(name, uuid)

        logger.debug("Loading %s %s", name, uuid)

        # Cached before decoding so references back to it alias this instance
        entity = self._registry.instantiate(name)
        cache.resolve(uuid, entity)

        fields: Dict[str, Any] = {}
        references: List[ColumnInfo] = []
        snapshot: Mapping[str, Any] = {}
        for column in self._registry.columns(name).values():
            raw = row.values.get(column.name)
            if self._is_reference(column) and not column.is_aggregate:
                fields[column.name] = raw
                references.append(column)
                continue
            context = ConversionContext(
                store=self, cache=cache, column=column, type_name=name, uuid=uuid
            )
            value = self._conversions.to_value(column.declared_type, raw, context)
            if column.is_aggregate:
                snapshot = value if isinstance(value, Mapping) else {}
            else:
                fields[column.name] = value

        for column in references:
            raw = fields[column.name]
            if column.name in snapshot or raw is None:
                continue
            target = self._reference_target(column)
            if target is not None:
                fields[column.name] = self._load(target, raw, cache)

        fields.update(snapshot)
        restore(entity, uuid, fields)
        logger.debug("Loaded %r", entity)
        return entity

    def _reference_target(self, column: ColumnInfo) -> Optional[Type[Entity]]:
        if column.foreign_key is not None:
            target = self._registry.for_table(column.foreign_key.table)
            if target is not None:
                return target
        if column.declared_type in self._registry:
            return self._registry.get(column.declared_type)
        return None

    def load(
        self,
        type_ref: TypeRef,
        criteria: Optional[Mapping[str, Any]] = None,
        order: Optional[str] = None,
        ascending: bool = False,
        descending: bool = False,
        limit: Optional[int] = None,
        cache: Optional[OperationCache] = None,
    ) -> List[Entity]:
        """Load every entity of a type matching the criteria.

        Criteria map columns to literals or to ``{operator: value}``; see
        trellis.store.criteria. Entities and datetimes in criteria are
        compared by their stored form. All results share one operation
        cache, so references between them are aliased.

        Args:
            type_ref: Entity class or registered type name
            criteria: Column criteria (all must match)
            order: Column to order by
            ascending: Order ascending (the default)
            descending: Order descending
            limit: Maximum number of results
            cache: Operation cache of an enclosing load

        Returns:
            Loaded entities, in query order

        Raises:
            ValueError: On criteria naming unknown columns or operators
        """
        cls = self._resolve_type(type_ref)
        name = cls.type_name()
        columns = self._registry.columns(name)

        for column in list(criteria or {}) + ([order] if order else []):
            if column not in columns:
                raise ValueError(f"{name} has no column {column!r}")

        predicate = to_predicate(self._storage_criteria(criteria))
        modifiers = order_clause(order, ascending=ascending, descending=descending, limit=limit)

        with self._backend.lock:
            with self._observed("load", name) as outcome:
                uuids = self._backend.select_uuids(
                    cls.tablename(), predicate.sql, predicate.params, modifiers
                )
                if cache is None:
                    cache = OperationCache(toplevel=uuids[0] if uuids else None)
                results = [self._load(cls, uuid, cache) for uuid in uuids]
                outcome["count"] = len(results)
        return results

    def load_one(
        self,
        type_ref: TypeRef,
        criteria: Optional[Mapping[str, Any]] = None,
        **modifiers: Any,
    ) -> Optional[Entity]:
        """Load the first entity matching the criteria, or None."""
        modifiers["limit"] = 1
        results = self.load(type_ref, criteria, **modifiers)
        return results[0] if results else None

    def _storage_criteria(self, criteria: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        def convert(value: Any) -> Any:
            if isinstance(value, Entity):
                return value.uuid
            if isinstance(value, datetime):
                return value.isoformat()
            if isinstance(value, Mapping):
                return {op: convert(operand) for op, operand in value.items()}
            if isinstance(value, (list, tuple, set)):
                return [convert(item) for item in value]
            return value

        return {column: convert(value) for column, value in (criteria or {}).items()}

    def count(self, type_ref: TypeRef) -> int:
        """Number of stored rows of a type."""
        cls = self._resolve_type(type_ref)
        return self._backend.count(cls.tablename())

    # Transaction support

    @contextmanager
    def transaction(self, name: Optional[str] = None):
        """Context manager running its body under a nested savepoint.

        The savepoint is released on success; on any exception all changes
        since it was opened are reverted and the exception is re-raised.
        Without a name, a unique one is generated from the nesting depth
        and a per-store sequence number.

        Example:
            with db.transaction():
                db.save(book)
                db.save(position)
                # Both committed atomically
        """
        with self._backend.lock:
            depth = self._backend.savepoint_depth
            savepoint = name or self._savepoint_name(depth)
            self._backend.begin_savepoint(savepoint)
            try:
                yield
            except BaseException:
                try:
                    self._backend.rollback_to_savepoint(savepoint)
                except TransactionError:
                    logger.exception("Rollback to savepoint %s failed", savepoint)
                self._settle_schemas(depth, committed=False)
                raise
            try:
                self._backend.release_savepoint(savepoint)
            except TransactionError:
                self._settle_schemas(depth, committed=False)
                raise
            self._settle_schemas(depth, committed=True)

    def transact(self, unit_of_work: Callable[[], T], name: Optional[str] = None) -> T:
        """Run unit_of_work under a nested savepoint and return its result.

        Raises:
            TransactionError: If the store rejects the savepoint
            Exception: Whatever unit_of_work raised, after rolling back
        """
        with self.transaction(name):
            return unit_of_work()

    def _savepoint_name(self, depth: int) -> str:
        return f"{self._settings.savepoint_prefix}_{depth}_{next(self._savepoint_seq)}"

    def _settle_schemas(self, depth: int, committed: bool) -> None:
        """Update schemas synchronized above ``depth`` once that savepoint closes.

        On release they belong to the enclosing savepoint (or are durable
        at depth 0). On rollback their tables no longer exist, so the
        cached columns are dropped and the next use re-synchronizes.
        """
        remaining = []
        for type_name, created_at in self._uncommitted_schemas:
            if created_at <= depth:
                remaining.append((type_name, created_at))
            elif not committed:
                self._registry.forget_columns(type_name)
            elif depth:
                remaining.append((type_name, depth))
        self._uncommitted_schemas = remaining

    # Lifecycle

    def close(self) -> None:
        """Close the store and release resources."""
        self._backend.close()

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def connect(
    url: Optional[str] = None,
    settings: Optional[StoreSettings] = None,
    conversions: Optional[ConversionRegistry] = None,
) -> Store:
    """Connect to a store using a URL.

    Supported URL schemes:
        - sqlite:///path.db  SQLite file storage
        - sqlite:///:memory: SQLite in-memory
        - memory://          SQLite in-memory (testing)

    Args:
        url: Connection URL (defaults to settings.url)
        settings: Store settings; StoreSettings.from_env() if omitted
        conversions: Conversion registry for the store

    Returns:
        Connected Store instance

    Example:
        db = connect("sqlite:///app.db")
        db = connect("memory://")
    """
    settings = settings or StoreSettings.from_env()
    parsed = urlparse(url or settings.url)
    scheme = parsed.scheme

    if scheme == "memory":
        path = ":memory:"
    elif scheme == "sqlite":
        # Handle sqlite:///path and sqlite:///:memory:
        path = parsed.path
        if path.startswith("/"):
            path = path[1:]  # Remove leading slash from file path
        path = path or ":memory:"
    else:
        raise ValueError(f"Unknown storage scheme: {scheme}")

    backend = SQLiteBackend()
    backend.connect(
        path=path,
        journal_mode=settings.journal_mode,
        foreign_keys=settings.foreign_keys,
        defer_foreign_keys=settings.defer_foreign_keys,
    )
    return Store(backend, conversions=conversions, settings=settings)
