"""Object graph codec for the aggregate column.

The aggregate column holds a JSON snapshot of an entity. Inside it, every
other entity is replaced by a Reference Token::

    {"type": "Address", "uuid": "6f1c..."}

Encoding cascades a save of each referenced entity through the shared
operation cache; decoding loads each referenced entity through the load
cache, so shared and cyclic references come back as one aliased instance.
"""

import json
import warnings
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict

from .entity import Entity
from .exceptions import ConversionError, UnknownTypeError

if TYPE_CHECKING:
    from .conversions import ConversionContext

DATETIME_MARKER = "__datetime__"


def is_reference_token(value: Any) -> bool:
    """Whether a decoded JSON node has the Reference Token shape."""
    return (
        isinstance(value, dict)
        and set(value) == {"type", "uuid"}
        and isinstance(value["type"], str)
        and isinstance(value["uuid"], str)
    )


def reference_token(entity: Entity) -> Dict[str, str]:
    return {"type": entity.type_name(), "uuid": entity.uuid}


class ObjectGraphCodec:
    """Serialize an entity graph to aggregate JSON text and back.

    Example:
        codec = ObjectGraphCodec()
        text = codec.encode(user, context)   # saves user.address as a side effect
        fields = codec.decode(text, user.uuid, context)
        fields["address"]                    # live Address instance
    """

    def encode(self, owner: Entity, context: "ConversionContext") -> str:
        """Encode an entity's snapshot as JSON text.

        The owner itself is emitted as its field mapping; any other entity
        met during the walk becomes a Reference Token, after being saved
        with the operation's cache.

        Raises:
            ConversionError: If a value cannot be represented in JSON
        """
        if not isinstance(owner, Entity):
            raise ConversionError(
                f"Aggregate column expects an Entity, got {type(owner).__name__}"
            )
        snapshot = {
            name: self._flatten(value, context) for name, value in owner.fields().items()
        }
        try:
            return json.dumps(snapshot, allow_nan=False)
        except ValueError as e:
            raise ConversionError(f"Failed to serialize {owner!r}: {e}") from e

    def _flatten(self, value: Any, context: "ConversionContext") -> Any:
        if isinstance(value, Entity):
            context.store.save(value, context.cache)
            return reference_token(value)
        if value is None or isinstance(value, (str, bool, int, float)):
            return value
        if isinstance(value, datetime):
            return {DATETIME_MARKER: value.isoformat()}
        if isinstance(value, dict):
            flat = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise ConversionError(
                        f"Cannot serialize mapping key {key!r}: keys must be strings"
                    )
                flat[key] = self._flatten(item, context)
            return flat
        if isinstance(value, (list, tuple)):
            return [self._flatten(item, context) for item in value]
        raise ConversionError(f"Cannot serialize type: {type(value).__name__}")

    def decode(self, text: str, self_uuid: str, context: "ConversionContext") -> Dict[str, Any]:
        """Decode aggregate JSON text into field values.

        Reference Tokens are replaced by live entities. A token naming an
        unregistered type is left in place (with a UserWarning) rather than
        failing the load. A token carrying ``self_uuid`` resolves to the
        instance being loaded.

        Raises:
            ConversionError: If the text is not a JSON object
        """
        try:
            payload = json.loads(text)
        except (TypeError, ValueError) as e:
            raise ConversionError(f"Aggregate for {self_uuid} is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ConversionError(f"Aggregate for {self_uuid} is not a JSON object")

        # The top-level mapping is the anchor snapshot, never a token
        return {
            name: self._revive(value, self_uuid, context) for name, value in payload.items()
        }

    def _revive(self, node: Any, self_uuid: str, context: "ConversionContext") -> Any:
        if isinstance(node, list):
            return [self._revive(item, self_uuid, context) for item in node]
        if not isinstance(node, dict):
            return node
        if is_reference_token(node):
            return self._resolve(node, self_uuid, context)
        if set(node) == {DATETIME_MARKER}:
            return datetime.fromisoformat(node[DATETIME_MARKER])
        return {key: self._revive(item, self_uuid, context) for key, item in node.items()}

    def _resolve(self, token: Dict[str, str], self_uuid: str, context: "ConversionContext") -> Any:
        try:
            cls = context.store.registry.get(token["type"])
        except UnknownTypeError as e:
            warnings.warn(
                f"Leaving reference to {token['uuid']} unresolved: {e}",
                UserWarning,
            )
            return token

        if token["uuid"] == self_uuid:
            cached = context.cache.get(self_uuid)
            return token if cached is None else cached

        return context.store.load_with_uuid(cls, token["uuid"], context.cache)
