"""Exceptions for the trellis.store module."""


class StoreError(Exception):
    """Base exception for all store errors."""

    pass


class SchemaError(StoreError):
    """A type has no usable table definition, or its table cannot be introspected."""

    pass


class NotFoundError(StoreError, KeyError):
    """No row exists for the requested identifier."""

    def __init__(self, type_name: str, uuid: str):
        self.type_name = type_name
        self.uuid = uuid
        super().__init__(f"No {type_name} with uuid {uuid} found")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class UnknownTypeError(StoreError, TypeError):
    """A type name was used that was never registered."""

    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(f"No type registered with name: {type_name}")


class ConversionError(StoreError):
    """A column value could not be converted to or from its storage form."""

    pass


class TransactionError(StoreError):
    """The store rejected a savepoint begin, release or rollback."""

    pass
