"""Table-name derivation for registered types."""

import functools

import inflect

_engine = inflect.engine()


@functools.lru_cache(maxsize=None)
def tablename_for(type_name: str) -> str:
    """Pluralize a lowercased type name into its table name.

    Args:
        type_name: Class name of a registered type (e.g. "Address")

    Returns:
        The plural noun (e.g. "addresses")

    Raises:
        ValueError: If the name is empty
    """
    if not type_name:
        raise ValueError("Cannot derive a table name from an empty type name")
    plural = _engine.plural_noun(type_name.lower())
    return plural or f"{type_name.lower()}s"
