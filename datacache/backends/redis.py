"""Redis cache backend using native per-key expiry.

Each cache entry is its own Redis key, written with ``SET ... EX ttl`` so Redis
expires it. Prefix flushes enumerate matching keys with SCAN and delete them in
batches; a flush is therefore not atomic across keys.
"""

import contextlib
from collections.abc import Iterator
from typing import Any

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from datacache.backends.base import DEFAULT_TTL_SECONDS, CacheBackend
from datacache.errors import BackendUnavailableError, CacheClosedError

logger = structlog.get_logger(__name__)

DEFAULT_KEY_PREFIX = "cache"
FLUSH_BATCH_SIZE = 500
SCAN_COUNT = 500

_GLOB_SPECIAL = frozenset("\\*?[]")


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so value matches literally."""
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in value)


def _to_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


@contextlib.contextmanager
def translate_errors(backend: str, operation: str) -> Iterator[None]:
    """Re-raise transport failures as BackendUnavailableError."""
    try:
        yield
    except (RedisError, OSError) as e:
        logger.warning(
            "cache_backend_error",
            backend=backend,
            operation=operation,
            error=str(e),
        )
        raise BackendUnavailableError(
            f"{backend} {operation} failed: {e}",
            backend=backend,
            operation=operation,
        ) from e


class RedisBackend(CacheBackend):
    """Cache backend storing one Redis key per entry.

    Example:
        cache = RedisBackend("redis://localhost:6379", key_prefix="cache")
        await cache.write("User:find_many:abc", "[]", ttl=60)
        await cache.flush("User:")
        await cache.close()
    """

    name = "redis"

    def __init__(
        self,
        url_or_client: str | Any,  # redis.asyncio.Redis
        default_ttl: int = DEFAULT_TTL_SECONDS,
        key_prefix: str | None = DEFAULT_KEY_PREFIX,
    ) -> None:
        """Initialize the Redis backend.

        Args:
            url_or_client: Redis URL or an existing redis.asyncio client.
            default_ttl: TTL in seconds for writes without an explicit ttl.
            key_prefix: Namespace prepended to every key, None for none.
        """
        super().__init__(default_ttl)
        if isinstance(url_or_client, str):
            self.client = redis.from_url(url_or_client, decode_responses=True)
        else:
            self.client = url_or_client
        self.key_prefix = key_prefix or ""

    def _namespaced(self, key: str) -> str:
        if self.key_prefix:
            return f"{self.key_prefix}:{key}"
        return key

    def _match(self, pattern: str | None) -> str:
        """SCAN pattern for keys in this namespace starting with pattern."""
        return escape_glob(self._namespaced(pattern or "")) + "*"

    def _check_open(self, operation: str) -> None:
        if self._closed:
            raise CacheClosedError(self.name, operation)

    async def read(self, key: str) -> str | None:
        self._check_open("read")
        with translate_errors(self.name, "read"):
            data = await self.client.get(self._namespaced(key))
        return _to_str(data) if data is not None else None

    async def write(self, key: str, value: str, ttl: int | None = None) -> None:
        self._check_open("write")
        ttl = self.resolve_ttl(ttl)
        with translate_errors(self.name, "write"):
            if ttl > 0:
                await self.client.set(self._namespaced(key), value, ex=ttl)
            else:
                await self.client.set(self._namespaced(key), value)
        logger.debug("redis_cache_set", key=key, ttl=ttl)

    async def _delete_matching(self, match: str) -> int:
        deleted = 0
        batch: list[Any] = []
        async for found in self.client.scan_iter(match=match, count=SCAN_COUNT):
            batch.append(found)
            if len(batch) >= FLUSH_BATCH_SIZE:
                deleted += int(await self.client.delete(*batch))
                batch = []
        if batch:
            deleted += int(await self.client.delete(*batch))
        return deleted

    async def flush(self, pattern: str | None = None) -> None:
        self._check_open("flush")
        with translate_errors(self.name, "flush"):
            if pattern is None and not self.key_prefix:
                await self.client.flushdb()
                deleted = None
            else:
                deleted = await self._delete_matching(self._match(pattern))
        logger.info("redis_cache_flushed", pattern=pattern, deleted_count=deleted)

    async def delete(self, key: str) -> None:
        self._check_open("delete")
        with translate_errors(self.name, "delete"):
            await self.client.delete(self._namespaced(key))

    async def exists(self, key: str) -> bool:
        self._check_open("exists")
        with translate_errors(self.name, "exists"):
            result = await self.client.exists(self._namespaced(key))
        return bool(result)

    async def size(self) -> int:
        self._check_open("size")
        with translate_errors(self.name, "size"):
            if not self.key_prefix:
                return int(await self.client.dbsize())
            count = 0
            async for _ in self.client.scan_iter(match=self._match(None), count=SCAN_COUNT):
                count += 1
            return count

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with translate_errors(self.name, "close"):
            await self.client.aclose()
        logger.debug("redis_cache_closed")
