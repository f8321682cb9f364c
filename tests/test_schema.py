"""Tests for schema inference, table synchronization and the type registry."""

import logging
from datetime import datetime

import pytest

from trellis.store import (
    Entity,
    SchemaError,
    SchemaSynchronizer,
    SQLiteBackend,
    TypeRegistry,
    UnknownTypeError,
    infer_column,
    infer_definition,
    tablename_for,
)


class Address(Entity):
    _tablename_ = "addresses"
    _defaults_ = {"street": "", "city": ""}


class Customer(Entity):
    _defaults_ = {
        "name": "",
        "age": 0,
        "balance": 0.0,
        "active": True,
        "joined": datetime,
        "address": Address,
        "notes": [],
        "preferences": {},
    }


class Bare(Entity):
    pass


class Legacy(Entity):
    _tablename_ = "legacy"
    _sql_definition_ = "CREATE TABLE {table} (id INTEGER PRIMARY KEY, name TEXT)"


class DoubleSnapshot(Entity):
    _tablename_ = "doubles"
    _sql_definition_ = """
        CREATE TABLE {table} (
            uuid UUID PRIMARY KEY NOT NULL,
            first OBJECT,
            second OBJECT
        )
    """


@pytest.fixture
def backend():
    backend = SQLiteBackend()
    backend.connect(":memory:")
    yield backend
    backend.close()


@pytest.fixture
def registry():
    return TypeRegistry()


@pytest.fixture
def sync(backend, registry):
    return SchemaSynchronizer(backend, registry)


class TestNaming:
    """Tests for table-name derivation."""

    def test_pluralizes_type_name(self):
        assert tablename_for("User") == "users"
        assert tablename_for("Address") == "addresses"
        assert tablename_for("Category") == "categories"

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            tablename_for("")

    def test_explicit_table_name_wins(self):
        assert Address.tablename() == "addresses"
        assert Customer.tablename() == "customers"


class TestInferColumn:
    """Tests for infer_column()."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (0, "INTEGER"),
            (True, "INTEGER"),
            (int, "INTEGER"),
            (1.5, "REAL"),
            (float, "REAL"),
            ("", "TEXT"),
            (str, "TEXT"),
            (datetime(2024, 1, 1), "DATETIME"),
            (datetime, "DATETIME"),
        ],
    )
    def test_scalar_defaults(self, value, expected):
        assert infer_column("field", value) == (expected, None)

    def test_entity_class_is_reference(self):
        assert infer_column("address", Address) == ("Address", Address)

    @pytest.mark.parametrize("value", [[], {}, ()])
    def test_containers_have_no_column(self, value):
        assert infer_column("field", value) is None

    @pytest.mark.parametrize("value", [None, object(), b"bytes", set()])
    def test_uninferable_defaults(self, value):
        with pytest.raises(SchemaError):
            infer_column("field", value)

    def test_entity_instance_rejected(self):
        with pytest.raises(SchemaError, match="use the class Address"):
            infer_column("address", Address())


class TestInferDefinition:
    """Tests for infer_definition()."""

    def test_columns_from_defaults(self):
        sql = infer_definition(Customer)

        assert sql.startswith("CREATE TABLE customers")
        assert "uuid UUID PRIMARY KEY NOT NULL" in sql
        assert "name TEXT" in sql
        assert "age INTEGER" in sql
        assert "balance REAL" in sql
        assert "active INTEGER" in sql
        assert "joined DATETIME" in sql
        assert "address Address" in sql
        assert "snapshot OBJECT" in sql
        assert "FOREIGN KEY(address) REFERENCES addresses(uuid)" in sql

    def test_containers_stay_in_aggregate(self):
        sql = infer_definition(Customer)
        assert "notes" not in sql
        assert "preferences" not in sql

    def test_no_defaults(self):
        with pytest.raises(SchemaError):
            infer_definition(Bare)

    def test_reserved_field_name(self):
        class Clash(Entity):
            _defaults_ = {"snapshot": ""}

        with pytest.raises(SchemaError):
            infer_definition(Clash)

    def test_none_default(self):
        class Vague(Entity):
            _defaults_ = {"name": "", "parent": None}

        with pytest.raises(SchemaError):
            infer_definition(Vague)


class TestSchemaSynchronizer:
    """Tests for SchemaSynchronizer."""

    def test_creates_missing_table(self, sync, backend):
        assert not backend.table_exists("addresses")
        sync.sync(Address)
        assert backend.table_exists("addresses")

    def test_introspects_columns(self, sync, registry):
        sync.sync(Address)
        columns = sync.sync(Customer)

        assert list(columns)[:2] == ["uuid", "name"]
        assert columns["uuid"].primary_key
        assert columns["uuid"].declared_type == "UUID"
        assert columns["joined"].declared_type == "DATETIME"
        assert columns["snapshot"].is_aggregate
        assert not columns["name"].is_reference
        assert registry.columns("Customer") == columns

    def test_foreign_key_metadata(self, sync):
        sync.sync(Address)
        columns = sync.sync(Customer)

        address = columns["address"]
        assert address.is_reference
        assert address.declared_type == "Address"
        assert address.foreign_key.table == "addresses"
        assert address.foreign_key.to_column == "uuid"

    def test_existing_table_is_kept(self, sync, backend):
        backend.execute_ddl(
            "CREATE TABLE addresses (uuid UUID PRIMARY KEY NOT NULL, street TEXT, "
            "postcode TEXT, snapshot OBJECT)"
        )
        columns = sync.sync(Address)
        assert "postcode" in columns
        assert "city" not in columns

    def test_sql_definition_table_placeholder(self, sync):
        assert sync.definition_for(Legacy).startswith("CREATE TABLE legacy")

    def test_requires_uuid_primary_key(self, sync):
        with pytest.raises(SchemaError, match="uuid primary key"):
            sync.sync(Legacy)

    def test_single_aggregate_column(self, sync):
        with pytest.raises(SchemaError, match="more than one"):
            sync.sync(DoubleSnapshot)

    def test_warns_about_fields_without_storage(self, sync, caplog):
        """Fields with neither a column nor an aggregate column are reported."""

        class Headline(Entity):
            _tablename_ = "headlines"
            _sql_definition_ = "CREATE TABLE {table} (uuid UUID PRIMARY KEY NOT NULL, title TEXT)"
            _defaults_ = {"title": "", "keywords": []}

        with caplog.at_level(logging.WARNING, logger="trellis.store.schema"):
            sync.sync(Headline)

        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "keywords" in warnings[0]
        assert "title" not in warnings[0].split("fields", 1)[1]

    def test_no_warning_with_aggregate_column(self, sync, caplog):
        sync.sync(Address)
        with caplog.at_level(logging.WARNING, logger="trellis.store.schema"):
            sync.sync(Customer)
        assert not [r for r in caplog.records if r.levelno == logging.WARNING]


class TestTypeRegistry:
    """Tests for TypeRegistry."""

    def test_register_and_get(self, registry):
        registry.register(Address)
        assert registry.get("Address") is Address
        assert "Address" in registry
        assert registry.type_names() == ["Address"]

    def test_unknown_type(self, registry):
        with pytest.raises(UnknownTypeError):
            registry.get("Ghost")

    def test_only_entities(self, registry):
        with pytest.raises(TypeError):
            registry.register(dict)

    def test_for_table_ignores_case(self, registry):
        registry.register(Customer)
        assert registry.for_table("Customers") is Customer
        assert registry.for_table("nothing") is None

    def test_table_collision(self, registry):
        class Other(Entity):
            _tablename_ = "Addresses"

        registry.register(Address)
        with pytest.raises(SchemaError):
            registry.register(Other)

    def test_instantiate_skips_init(self, registry):
        registry.register(Address)
        instance = registry.instantiate("Address")

        assert isinstance(instance, Address)
        assert "_uuid" not in vars(instance)

    def test_custom_factory(self, registry):
        registry.register(Address, factory=lambda: Address(city="Poole"))
        assert registry.instantiate("Address").city == "Poole"

    def test_columns_require_sync(self, registry):
        registry.register(Address)
        assert not registry.is_synchronized("Address")
        with pytest.raises(SchemaError):
            registry.columns("Address")

    def test_forget_columns(self, sync, registry):
        registry.register(Address)
        sync.sync(Address)
        registry.forget_columns("Address")
        assert not registry.is_synchronized("Address")
