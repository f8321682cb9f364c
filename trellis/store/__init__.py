"""Object-graph persistence for Entity objects.

This module stores graphs of Entity objects in SQLite, one row per entity,
keyed by a UUID assigned when the object is created. References between
entities (including cycles) are saved by cascading through the graph and
restored as shared instances on load.

Quick Start:
    from datetime import datetime
    from trellis.store import Entity, connect

    class Address(Entity):
        _defaults_ = {"street": "", "city": ""}

    class User(Entity):
        _defaults_ = {"username": "", "created": datetime, "address": Address}

    # Connect to storage and register types (creates missing tables)
    db = connect("sqlite:///app.db")
    db.register(Address, User)

    # Save: the address is written too
    bill = User(username="bill", address=Address(street="17 West Street"))
    db.save(bill)

    # Load by identifier or by criteria
    loaded = db.load_with_uuid(User, bill.uuid)
    print(loaded.address.street)  # 17 West Street

    for user in db.load(User, {"username": "bill"}, order="created", descending=True):
        print(user.uuid)

Supported URLs:
    - sqlite:///path.db   SQLite file storage
    - sqlite:///:memory:  SQLite in-memory
    - memory://           SQLite in-memory

Key Classes:
    - Store: save / load / transact
    - Entity: base class of persistent objects
    - connect(): Create a Store from a URL

Storage:
    - Scalar fields map to their own columns; entity fields map to foreign
      keys holding the referenced uuid
    - The OBJECT column holds a JSON snapshot of the whole entity, with
      other entities replaced by {"type": ..., "uuid": ...} tokens
"""

from .core import Store, connect
from .entity import Entity
from .backends import StorageBackend, StoredRow, SQLiteBackend
from .cache import OperationCache, PENDING
from .config import StoreSettings
from .conversions import (
    Conversion,
    ConversionContext,
    ConversionRegistry,
    declare_type,
    default_conversions,
)
from .criteria import Predicate, order_clause, to_predicate
from .events import StoreEvent
from .naming import tablename_for
from .registry import TypeRegistry
from .schema import ColumnInfo, ForeignKeyInfo, SchemaSynchronizer, infer_column, infer_definition
from .serialization import ObjectGraphCodec, is_reference_token, reference_token
from .exceptions import (
    StoreError,
    SchemaError,
    NotFoundError,
    UnknownTypeError,
    ConversionError,
    TransactionError,
)

__all__ = [
    # Main API
    "Store",
    "connect",
    "Entity",
    "StoreSettings",
    "StoreEvent",
    # Backends
    "StorageBackend",
    "StoredRow",
    "SQLiteBackend",
    # Types and schema
    "TypeRegistry",
    "SchemaSynchronizer",
    "ColumnInfo",
    "ForeignKeyInfo",
    "infer_column",
    "infer_definition",
    "tablename_for",
    # Conversions and serialization
    "Conversion",
    "ConversionContext",
    "ConversionRegistry",
    "declare_type",
    "default_conversions",
    "ObjectGraphCodec",
    "is_reference_token",
    "reference_token",
    "OperationCache",
    "PENDING",
    # Criteria
    "Predicate",
    "to_predicate",
    "order_clause",
    # Exceptions
    "StoreError",
    "SchemaError",
    "NotFoundError",
    "UnknownTypeError",
    "ConversionError",
    "TransactionError",
]
