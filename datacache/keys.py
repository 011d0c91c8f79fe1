"""Cache key derivation.

Keys have the shape ``<collection>:<operation>:<digest>`` where the digest is a
truncated SHA-256 of the canonical JSON of the call arguments. The collection
name is kept as a literal prefix so a collection can be invalidated with a
single prefix flush.
"""

import hashlib
from collections.abc import Mapping, Sequence
from typing import Any

from datacache.serialization import canonical_json

KEY_DELIMITER = ":"
DIGEST_LENGTH = 16


def hash_arguments(args: Sequence[Any] = (), kwargs: Mapping[str, Any] | None = None) -> str:
    """Hash call arguments into a short hex digest.

    Args:
        args: Positional arguments of the call.
        kwargs: Keyword arguments of the call.

    Returns:
        First DIGEST_LENGTH hex characters of the SHA-256 digest.
    """
    payload = canonical_json({"args": list(args), "kwargs": dict(kwargs or {})})
    # Lone surrogates are valid in str but not in UTF-8
    return hashlib.sha256(payload.encode("utf-8", "surrogatepass")).hexdigest()[:DIGEST_LENGTH]


def derive_key(
    collection: str,
    operation: str,
    args: Sequence[Any] = (),
    kwargs: Mapping[str, Any] | None = None,
) -> str:
    """Build the cache key for a collection operation call.

    Args:
        collection: Collection name, e.g. "User".
        operation: Operation name, e.g. "find_many".
        args: Positional arguments of the call.
        kwargs: Keyword arguments of the call.

    Returns:
        Cache key string.
    """
    digest = hash_arguments(args, kwargs)
    return KEY_DELIMITER.join((collection, operation, digest))


def collection_prefix(collection: str) -> str:
    """Key prefix shared by every cached read of a collection."""
    return f"{collection}{KEY_DELIMITER}"
