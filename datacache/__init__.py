"""Transparent caching layer for data-access clients.

This package contains:
- CachedClient, which serves reads from a cache and invalidates a
  collection's entries whenever it is mutated
- Interchangeable backends (in-process LRU, Redis, Redis hash with sweep)
- Deterministic cache key derivation
- Round-trip-safe serialization of rich result values
- Metrics hooks and counters
"""

from datacache.backends import (
    CacheBackend,
    MemoryBackend,
    RedisBackend,
    RedisHashBackend,
)
from datacache.client import (
    IMPURE_OPERATIONS,
    PURE_OPERATIONS,
    CachedClient,
    CachedCollection,
    CollectionOperations,
    discover_collections,
    get_cached_client,
    init_cached_client,
    reset_cached_client,
    set_cached_client,
)
from datacache.config import CacheConfig, CacheSettings, create_backend
from datacache.errors import (
    BackendUnavailableError,
    CacheClosedError,
    CacheError,
    SerializationError,
    UnderlyingOperationError,
)
from datacache.keys import collection_prefix, derive_key
from datacache.metrics import CacheStats, MetricsCallbacks, MetricsDispatcher
from datacache.serialization import deserialize, serialize

__all__ = [
    # Engine
    "CachedClient",
    "CachedCollection",
    "CollectionOperations",
    "IMPURE_OPERATIONS",
    "PURE_OPERATIONS",
    "discover_collections",
    # Backends
    "CacheBackend",
    "MemoryBackend",
    "RedisBackend",
    "RedisHashBackend",
    # Configuration
    "CacheConfig",
    "CacheSettings",
    "create_backend",
    # Errors
    "BackendUnavailableError",
    "CacheClosedError",
    "CacheError",
    "SerializationError",
    "UnderlyingOperationError",
    # Keys and serialization
    "collection_prefix",
    "derive_key",
    "deserialize",
    "serialize",
    # Metrics
    "CacheStats",
    "MetricsCallbacks",
    "MetricsDispatcher",
    # Shared instance functions
    "get_cached_client",
    "init_cached_client",
    "reset_cached_client",
    "set_cached_client",
]
