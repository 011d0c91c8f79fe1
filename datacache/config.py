"""Cache configuration.

This module provides:
- CacheSettings, process settings loaded from environment variables
- CacheConfig, the TTL/enablement policy used by CachedClient
- create_backend(), building the configured backend from settings
"""

import os
from dataclasses import dataclass, field

from datacache.backends import (
    DEFAULT_KEY_PREFIX,
    DEFAULT_MAX_ENTRIES,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_TTL_SECONDS,
    CacheBackend,
    MemoryBackend,
    RedisBackend,
    RedisHashBackend,
)

BACKEND_CHOICES = ("memory", "redis", "redis_hash")


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_int_env(name: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on junk."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class CacheSettings:
    """Cache settings loaded from environment variables.

    Attributes:
        CACHE_ENABLED: Serve reads from the cache.
        CACHE_BACKEND: One of "memory", "redis", "redis_hash".
        CACHE_TTL_SECONDS: Default entry TTL, 0 for no expiry.
        CACHE_MAX_ENTRIES: Entry bound of the in-process LRU.
        CACHE_KEY_PREFIX: Namespace for shared Redis stores.
        CACHE_SWEEP_INTERVAL_SECONDS: Sweep period of the Redis hash backend.
        CACHE_PURGE_INTERVAL_SECONDS: Auto-purge period of the LRU, 0 = off.
        REDIS_URL: Redis connection URL.
        LOG_LEVEL: Logging level.
    """

    CACHE_ENABLED: bool = True
    CACHE_BACKEND: str = "memory"
    CACHE_TTL_SECONDS: int = DEFAULT_TTL_SECONDS
    CACHE_MAX_ENTRIES: int = DEFAULT_MAX_ENTRIES
    CACHE_KEY_PREFIX: str = DEFAULT_KEY_PREFIX
    CACHE_SWEEP_INTERVAL_SECONDS: int = DEFAULT_SWEEP_INTERVAL_SECONDS
    CACHE_PURGE_INTERVAL_SECONDS: int = 0

    REDIS_URL: str = "redis://localhost:6379"

    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls) -> "CacheSettings":
        """Create settings from environment variables.

        Returns:
            CacheSettings instance populated from environment.
        """
        return cls(
            CACHE_ENABLED=_get_bool_env("CACHE_ENABLED", default=True),
            CACHE_BACKEND=os.getenv("CACHE_BACKEND", "memory").lower(),
            CACHE_TTL_SECONDS=_get_int_env("CACHE_TTL_SECONDS", DEFAULT_TTL_SECONDS),
            CACHE_MAX_ENTRIES=_get_int_env("CACHE_MAX_ENTRIES", DEFAULT_MAX_ENTRIES),
            CACHE_KEY_PREFIX=os.getenv("CACHE_KEY_PREFIX", DEFAULT_KEY_PREFIX),
            CACHE_SWEEP_INTERVAL_SECONDS=_get_int_env(
                "CACHE_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_SECONDS
            ),
            CACHE_PURGE_INTERVAL_SECONDS=_get_int_env("CACHE_PURGE_INTERVAL_SECONDS", 0),
            REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class CacheConfig:
    """Caching policy for a CachedClient.

    Attributes:
        enabled: Whether reads are served from the cache.
        default_ttl: TTL in seconds for collections without an override,
            None to use the backend's own default.
        collection_ttls: Per-collection TTL overrides in seconds.
    """

    enabled: bool = True
    default_ttl: int | None = None
    collection_ttls: dict[str, int] = field(default_factory=dict)

    def get_ttl(self, collection: str) -> int | None:
        """Get TTL for a collection."""
        return self.collection_ttls.get(collection, self.default_ttl)

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> "CacheConfig":
        return cls(enabled=settings.CACHE_ENABLED, default_ttl=settings.CACHE_TTL_SECONDS)


def create_backend(settings: CacheSettings) -> CacheBackend:
    """Build the cache backend selected by settings.

    Args:
        settings: Cache settings.

    Returns:
        A new, unshared backend instance.

    Raises:
        ValueError: If CACHE_BACKEND is not a known backend.
    """
    if settings.CACHE_BACKEND == "memory":
        return MemoryBackend(
            max_entries=settings.CACHE_MAX_ENTRIES,
            default_ttl=settings.CACHE_TTL_SECONDS,
            purge_interval=settings.CACHE_PURGE_INTERVAL_SECONDS,
        )
    if settings.CACHE_BACKEND == "redis":
        return RedisBackend(
            settings.REDIS_URL,
            default_ttl=settings.CACHE_TTL_SECONDS,
            key_prefix=settings.CACHE_KEY_PREFIX,
        )
    if settings.CACHE_BACKEND == "redis_hash":
        return RedisHashBackend(
            settings.REDIS_URL,
            default_ttl=settings.CACHE_TTL_SECONDS,
            key_prefix=settings.CACHE_KEY_PREFIX,
            sweep_interval=settings.CACHE_SWEEP_INTERVAL_SECONDS,
        )
    raise ValueError(
        f"Unknown CACHE_BACKEND '{settings.CACHE_BACKEND}', expected one of {BACKEND_CHOICES}"
    )


# Global settings instance
settings = CacheSettings.from_env()
