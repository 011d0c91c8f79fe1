"""Redis hash cache backend with an active expiry sweep.

All entries live as fields of a single Redis hash, which has no per-field TTL.
Each field value is a small JSON envelope carrying its own expiry:

    {"d": "<serialized value>", "e": <expiry epoch milliseconds, 0 = never>}

Reads drop expired fields they encounter, and a background task sweeps the
whole hash at a fixed interval so entries nobody reads again are still removed.
"""

import asyncio
import contextlib
import json
import time
from typing import Any

import redis.asyncio as redis
import structlog

from datacache.backends.base import DEFAULT_TTL_SECONDS, CacheBackend
from datacache.backends.redis import (
    DEFAULT_KEY_PREFIX,
    FLUSH_BATCH_SIZE,
    SCAN_COUNT,
    escape_glob,
    translate_errors,
)
from datacache.errors import CacheClosedError

logger = structlog.get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 600


def _now_ms() -> int:
    return int(time.time() * 1000)


def encode_envelope(value: str, expires_at_ms: int) -> str:
    """Wrap a value with its embedded expiry timestamp."""
    return json.dumps({"d": value, "e": expires_at_ms}, separators=(",", ":"))


def decode_envelope(raw: str | bytes) -> tuple[str, int] | None:
    """Unwrap a stored field, returning None if it is not a valid envelope."""
    try:
        envelope = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(envelope, dict):
        return None
    value = envelope.get("d")
    expires_at = envelope.get("e", 0)
    if not isinstance(value, str) or not isinstance(expires_at, int):
        return None
    return value, expires_at


def _is_expired(expires_at_ms: int, now_ms: int) -> bool:
    return expires_at_ms > 0 and now_ms >= expires_at_ms


class RedisHashBackend(CacheBackend):
    """Cache backend storing all entries in one Redis hash.

    Example:
        cache = RedisHashBackend("redis://localhost:6379", sweep_interval=300)
        await cache.write("Post:count:abc", "3", ttl=60)
        removed = await cache.sweep_expired()
        await cache.close()
    """

    name = "redis_hash"

    def __init__(
        self,
        url_or_client: str | Any,  # redis.asyncio.Redis
        default_ttl: int = DEFAULT_TTL_SECONDS,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        """Initialize the hash backend.

        Args:
            url_or_client: Redis URL or an existing redis.asyncio client.
            default_ttl: TTL in seconds for writes without an explicit ttl.
            key_prefix: Name of the Redis hash holding all entries.
            sweep_interval: Seconds between background sweeps, 0 to disable.
        """
        super().__init__(default_ttl)
        if not key_prefix:
            raise ValueError("key_prefix is required to name the hash")
        if isinstance(url_or_client, str):
            self.client = redis.from_url(url_or_client, decode_responses=True)
        else:
            self.client = url_or_client
        self.hash_name = key_prefix
        self.sweep_interval = sweep_interval
        self._sweep_task: asyncio.Task[None] | None = None

    def _check_open(self, operation: str) -> None:
        if self._closed:
            raise CacheClosedError(self.name, operation)

    async def read(self, key: str) -> str | None:
        self._check_open("read")
        with translate_errors(self.name, "read"):
            raw = await self.client.hget(self.hash_name, key)
            if raw is None:
                return None

            decoded = decode_envelope(raw)
            if decoded is None:
                logger.warning("redis_hash_invalid_envelope", key=key)
                await self.client.hdel(self.hash_name, key)
                return None

            value, expires_at = decoded
            if _is_expired(expires_at, _now_ms()):
                await self.client.hdel(self.hash_name, key)
                logger.debug("redis_hash_expired_on_read", key=key)
                return None
        return value

    async def write(self, key: str, value: str, ttl: int | None = None) -> None:
        self._check_open("write")
        ttl = self.resolve_ttl(ttl)
        expires_at = _now_ms() + ttl * 1000 if ttl > 0 else 0
        with translate_errors(self.name, "write"):
            await self.client.hset(self.hash_name, key, encode_envelope(value, expires_at))
        logger.debug("redis_hash_set", key=key, ttl=ttl)
        self.start_sweeper()

    async def _delete_fields(self, fields: list[Any]) -> int:
        deleted = 0
        for start in range(0, len(fields), FLUSH_BATCH_SIZE):
            deleted += int(await self.client.hdel(self.hash_name, *fields[start : start + FLUSH_BATCH_SIZE]))
        return deleted

    async def flush(self, pattern: str | None = None) -> None:
        self._check_open("flush")
        with translate_errors(self.name, "flush"):
            if pattern is None:
                await self.client.delete(self.hash_name)
                deleted = None
            else:
                fields = [
                    field
                    async for field, _ in self.client.hscan_iter(
                        self.hash_name, match=escape_glob(pattern) + "*", count=SCAN_COUNT
                    )
                ]
                deleted = await self._delete_fields(fields)
        logger.info("redis_hash_flushed", pattern=pattern, deleted_count=deleted)

    async def delete(self, key: str) -> None:
        self._check_open("delete")
        with translate_errors(self.name, "delete"):
            await self.client.hdel(self.hash_name, key)

    async def exists(self, key: str) -> bool:
        return await self.read(key) is not None

    async def size(self) -> int:
        self._check_open("size")
        with translate_errors(self.name, "size"):
            return int(await self.client.hlen(self.hash_name))

    async def sweep_expired(self) -> int:
        """Delete every expired or malformed field in the hash.

        Returns:
            Number of fields removed.
        """
        self._check_open("sweep")
        now = _now_ms()
        with translate_errors(self.name, "sweep"):
            doomed = []
            async for field, raw in self.client.hscan_iter(self.hash_name, count=SCAN_COUNT):
                decoded = decode_envelope(raw)
                if decoded is None or _is_expired(decoded[1], now):
                    doomed.append(field)
            removed = await self._delete_fields(doomed) if doomed else 0
        logger.debug("redis_hash_swept", removed=removed)
        return removed

    async def _sweep_loop(self) -> None:
        """Background task that sweeps expired fields periodically."""
        while not self._closed:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep_expired()
            except CacheClosedError:
                return
            except Exception as e:
                # Keep sweeping; the store may come back.
                logger.error("redis_hash_sweep_error", error=str(e))

    def start_sweeper(self) -> None:
        """Start the sweep task once, if enabled and a loop is running."""
        if self.sweep_interval <= 0 or self._sweep_task is not None or self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._sweep_task = loop.create_task(self._sweep_loop())
        logger.debug("redis_hash_sweep_started", interval=self.sweep_interval)

    @property
    def sweeping(self) -> bool:
        """Whether the background sweep task is running."""
        return self._sweep_task is not None and not self._sweep_task.done()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        with translate_errors(self.name, "close"):
            await self.client.aclose()
        logger.debug("redis_hash_closed")
