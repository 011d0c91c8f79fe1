"""Interchangeable cache storage backends.

This module contains:
- CacheBackend, the contract every backend implements
- MemoryBackend, a bounded in-process LRU with passive expiry
- RedisBackend, one Redis key per entry with native TTL
- RedisHashBackend, one Redis hash with embedded expiry and an active sweep
"""

from datacache.backends.base import DEFAULT_TTL_SECONDS, CacheBackend
from datacache.backends.memory import DEFAULT_MAX_ENTRIES, MemoryBackend
from datacache.backends.redis import DEFAULT_KEY_PREFIX, RedisBackend
from datacache.backends.redis_hash import DEFAULT_SWEEP_INTERVAL_SECONDS, RedisHashBackend

__all__ = [
    # Contract
    "CacheBackend",
    # Implementations
    "MemoryBackend",
    "RedisBackend",
    "RedisHashBackend",
    # Defaults
    "DEFAULT_KEY_PREFIX",
    "DEFAULT_MAX_ENTRIES",
    "DEFAULT_SWEEP_INTERVAL_SECONDS",
    "DEFAULT_TTL_SECONDS",
]
