"""Serialization of query results for caching.

Results are stored as JSON text. Values JSON cannot represent natively are
written as single-key tagged objects and rebuilt on the way back:

    datetime    -> {"__d": "2024-01-01T12:00:00+00:00"}
    date        -> {"__date": "2024-01-01"}
    bytes       -> {"__b": "<base64>"}
    Decimal     -> {"__dec": "12.50"}

A genuine single-key dict whose key is one of these tags is stored as
``{"__o": [key, value]}`` so it comes back unchanged.

Pydantic models (the row type of Prisma-style clients) are dumped to plain
dicts and come back as dicts.
"""

import base64
import binascii
import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel

from datacache.errors import SerializationError

DATETIME_TAG = "__d"
DATE_TAG = "__date"
BYTES_TAG = "__b"
DECIMAL_TAG = "__dec"
ESCAPE_TAG = "__o"

_RESERVED_TAGS = frozenset({DATETIME_TAG, DATE_TAG, BYTES_TAG, DECIMAL_TAG, ESCAPE_TAG})


def _escape(value: Any) -> Any:
    """Wrap plain dicts that would otherwise read back as tagged values."""
    if isinstance(value, dict):
        if len(value) == 1:
            key, inner = next(iter(value.items()))
            if key in _RESERVED_TAGS:
                return {ESCAPE_TAG: [key, _escape(inner)]}
        return {key: _escape(inner) for key, inner in value.items()}
    if isinstance(value, list | tuple):
        return [_escape(item) for item in value]
    return value


def _encode(value: Any) -> Any:
    """JSON ``default`` hook for values json cannot encode natively."""
    # datetime is a date subclass, check it first
    if isinstance(value, datetime):
        return {DATETIME_TAG: value.isoformat()}
    if isinstance(value, date):
        return {DATE_TAG: value.isoformat()}
    if isinstance(value, bytes | bytearray | memoryview):
        return {BYTES_TAG: base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, Decimal):
        return {DECIMAL_TAG: str(value)}
    if isinstance(value, BaseModel):
        return _escape(value.model_dump())
    if isinstance(value, set | frozenset):
        return sorted(value, key=repr)
    raise TypeError(f"Object of type {type(value).__name__} is not serializable")


def _decode(obj: dict[str, Any]) -> Any:
    """JSON ``object_hook`` rebuilding tagged values."""
    if len(obj) != 1:
        return obj

    tag, payload = next(iter(obj.items()))
    if tag not in _RESERVED_TAGS:
        return obj
    if tag == ESCAPE_TAG:
        if not (isinstance(payload, list) and len(payload) == 2 and isinstance(payload[0], str)):
            raise SerializationError(
                f"Malformed payload for tag {tag}",
                details={"tag": tag, "payload_type": type(payload).__name__},
            )
        return {payload[0]: payload[1]}
    if not isinstance(payload, str):
        raise SerializationError(
            f"Malformed payload for tag {tag}",
            details={"tag": tag, "payload_type": type(payload).__name__},
        )

    try:
        if tag == DATETIME_TAG:
            return datetime.fromisoformat(payload)
        if tag == DATE_TAG:
            return date.fromisoformat(payload)
        if tag == BYTES_TAG:
            return base64.b64decode(payload, validate=True)
        return Decimal(payload)
    except (ValueError, binascii.Error, InvalidOperation) as e:
        raise SerializationError(
            f"Malformed payload for tag {tag}: {e}",
            details={"tag": tag},
        ) from e


def serialize(value: Any) -> str:
    """Serialize a value for caching.

    Args:
        value: Value to serialize.

    Returns:
        JSON string representation.

    Raises:
        SerializationError: If the value contains an unsupported type.
    """
    try:
        return json.dumps(_escape(value), default=_encode, separators=(",", ":"))
    except (TypeError, ValueError, RecursionError) as e:
        raise SerializationError(f"Cannot serialize value: {e}") from e


def deserialize(data: str | bytes) -> Any:
    """Deserialize a cached value.

    Args:
        data: Serialized data from cache.

    Returns:
        Deserialized value.

    Raises:
        SerializationError: If the payload is not valid cached JSON.
    """
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data, object_hook=_decode)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError(f"Malformed cached payload: {e}") from e


def canonical_json(value: Any) -> str:
    """Encode a value as compact JSON with sorted object keys.

    Equal argument structures produce identical text regardless of the
    insertion order of their dict keys. JSON object keys are strings, so
    ``{1: x}`` and ``{"1": x}`` encode identically; tuples and lists do too.
    """
    try:
        return json.dumps(
            _escape(value),
            default=_encode,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )
    except (TypeError, ValueError, RecursionError) as e:
        raise SerializationError(f"Cannot encode value canonically: {e}") from e
