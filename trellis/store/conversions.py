"""Conversion registry: per declared storage type, how values go in and out."""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from .cache import OperationCache
from .exceptions import ConversionError, StoreError
from .schema import AGGREGATE, DATETIME, IDENTIFIER, TEXT, ColumnInfo
from .serialization import ObjectGraphCodec

if TYPE_CHECKING:
    from .core import Store
    from .entity import Entity


@dataclass
class ConversionContext:
    """What a converter may need besides the value itself.

    Attributes:
        store: The Store running the operation (for cascading saves/loads)
        cache: The operation cache of the current save or load
        column: Column being converted
        type_name: Type owning the row
        uuid: Identifier of the row
        owner: The entity being saved (None while loading)
    """

    store: "Store"
    cache: OperationCache
    column: ColumnInfo
    type_name: str
    uuid: str
    owner: Optional["Entity"] = None


Converter = Callable[[Any, ConversionContext], Any]


@dataclass
class Conversion:
    """Conversion functions for one declared storage type.

    A missing function means the value passes through unchanged.
    """

    placeholder: str = "?"
    to_storage: Optional[Converter] = None
    to_value: Optional[Converter] = None


def datetime_to_storage(value: Any, context: ConversionContext) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        return datetime.fromisoformat(value).isoformat()
    raise TypeError(f"Expected datetime, got {type(value).__name__}")


def datetime_to_value(raw: Any, context: ConversionContext) -> Optional[datetime]:
    if raw is None:
        return None
    return datetime.fromisoformat(raw)


_codec = ObjectGraphCodec()


def aggregate_to_storage(value: Any, context: ConversionContext) -> str:
    return _codec.encode(value, context)


def aggregate_to_value(raw: Any, context: ConversionContext) -> Any:
    if raw is None:
        return None
    return _codec.decode(raw, context.uuid, context)


class ConversionRegistry:
    """Maps declared storage types (UUID, TEXT, DATETIME, OBJECT, ...) to conversions.

    Declaring an existing name overwrites it. Names are case-insensitive,
    like SQLite type names.

    Example:
        conversions = ConversionRegistry()
        conversions.declare(
            "DECIMAL",
            to_storage=lambda v, ctx: str(v),
            to_value=lambda raw, ctx: Decimal(raw),
        )
    """

    def __init__(self):
        self._conversions: Dict[str, Conversion] = {}
        self.reset()

    def declare(
        self,
        name: str,
        placeholder: str = "?",
        to_storage: Optional[Converter] = None,
        to_value: Optional[Converter] = None,
    ) -> None:
        """Declare (or redeclare) the conversion for a storage type."""
        self._conversions[name.upper()] = Conversion(
            placeholder=placeholder, to_storage=to_storage, to_value=to_value
        )

    def get(self, name: str) -> Optional[Conversion]:
        return self._conversions.get(name.upper())

    def __contains__(self, name: str) -> bool:
        return name.upper() in self._conversions

    def placeholder(self, name: str) -> str:
        conversion = self.get(name)
        return conversion.placeholder if conversion else "?"

    def to_storage(self, name: str, value: Any, context: ConversionContext) -> Any:
        """Convert a field value for storage.

        Raises:
            ConversionError: If the converter raises anything but a StoreError
        """
        conversion = self.get(name)
        if conversion is None or conversion.to_storage is None:
            return value
        try:
            return conversion.to_storage(value, context)
        except StoreError:
            raise
        except Exception as e:
            raise ConversionError(
                f"Failed to convert {context.type_name}.{context.column.name} "
                f"to {name}: {e}"
            ) from e

    def to_value(self, name: str, raw: Any, context: ConversionContext) -> Any:
        """Convert a stored value back to a field value.

        Raises:
            ConversionError: If the converter raises anything but a StoreError
        """
        conversion = self.get(name)
        if conversion is None or conversion.to_value is None:
            return raw
        try:
            return conversion.to_value(raw, context)
        except StoreError:
            raise
        except Exception as e:
            raise ConversionError(
                f"Failed to convert {context.type_name}.{context.column.name} "
                f"from {name}: {e}"
            ) from e

    def reset(self) -> None:
        """Drop all declarations and restore the built-in types."""
        self._conversions.clear()
        self.declare(IDENTIFIER)
        self.declare(TEXT)
        self.declare(DATETIME, to_storage=datetime_to_storage, to_value=datetime_to_value)
        self.declare(
            AGGREGATE,
            placeholder="json(?)",
            to_storage=aggregate_to_storage,
            to_value=aggregate_to_value,
        )


default_conversions = ConversionRegistry()


def declare_type(
    name: str,
    placeholder: str = "?",
    to_storage: Optional[Converter] = None,
    to_value: Optional[Converter] = None,
) -> None:
    """Declare a storage type on the process-wide default registry."""
    default_conversions.declare(
        name, placeholder=placeholder, to_storage=to_storage, to_value=to_value
    )
