"""Bounded in-process LRU cache backend.

Entries live in an OrderedDict ordered from least to most recently used.
Expiry is checked on access; an optional background task purges expired
entries periodically so memory is reclaimed without reads.
"""

import asyncio
import contextlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass

import structlog

from datacache.backends.base import DEFAULT_TTL_SECONDS, CacheBackend
from datacache.errors import CacheClosedError

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ENTRIES = 1000


def _now() -> float:
    return time.monotonic()


@dataclass
class MemoryEntry:
    """A cached value with its monotonic expiry time (None = never)."""

    value: str
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class MemoryBackend(CacheBackend):
    """Bounded LRU cache held in process memory.

    Safe for concurrent use from tasks and threads: every operation takes the
    lock and never awaits while holding it.

    Example:
        cache = MemoryBackend(max_entries=500, default_ttl=60)
        await cache.write("User:find_many:abc", '{"id": 1}')
        value = await cache.read("User:find_many:abc")
    """

    name = "memory"

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        purge_interval: float = 0,
    ) -> None:
        """Initialize the LRU backend.

        Args:
            max_entries: Maximum number of entries before LRU eviction.
            default_ttl: TTL in seconds for writes without an explicit ttl.
            purge_interval: Seconds between background purges, 0 to disable.
        """
        super().__init__(default_ttl)
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.purge_interval = purge_interval
        self._entries: OrderedDict[str, MemoryEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._purge_task: asyncio.Task[None] | None = None

    def _check_open(self, operation: str) -> None:
        if self._closed:
            raise CacheClosedError(self.name, operation)

    def _get_live(self, key: str) -> MemoryEntry | None:
        """Return the live entry and mark it most recently used. Caller holds the lock."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(_now()):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry

    async def read(self, key: str) -> str | None:
        self._check_open("read")
        with self._lock:
            entry = self._get_live(key)
        return entry.value if entry is not None else None

    async def write(self, key: str, value: str, ttl: int | None = None) -> None:
        self._check_open("write")
        ttl = self.resolve_ttl(ttl)
        expires_at = _now() + ttl if ttl > 0 else None

        evicted = 0
        with self._lock:
            self._entries[key] = MemoryEntry(value=value, expires_at=expires_at)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                evicted += 1

        if evicted:
            logger.debug("memory_cache_evicted", count=evicted, max_entries=self.max_entries)
        self._ensure_purge_task()

    async def flush(self, pattern: str | None = None) -> None:
        self._check_open("flush")
        with self._lock:
            if pattern is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                doomed = [key for key in self._entries if key.startswith(pattern)]
                for key in doomed:
                    del self._entries[key]
                removed = len(doomed)
        logger.debug("memory_cache_flushed", pattern=pattern, removed=removed)

    async def delete(self, key: str) -> None:
        self._check_open("delete")
        with self._lock:
            self._entries.pop(key, None)

    async def exists(self, key: str) -> bool:
        self._check_open("exists")
        with self._lock:
            return self._get_live(key) is not None

    async def size(self) -> int:
        self._check_open("size")
        with self._lock:
            return len(self._entries)

    def purge_expired(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed.
        """
        now = _now()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("memory_cache_purged", removed=len(expired))
        return len(expired)

    async def _purge_loop(self) -> None:
        """Background task that purges expired entries periodically."""
        while not self._closed:
            await asyncio.sleep(self.purge_interval)
            self.purge_expired()

    def _ensure_purge_task(self) -> None:
        """Start the purge task once, if enabled and a loop is running."""
        if self.purge_interval <= 0 or self._purge_task is not None or self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._purge_task = loop.create_task(self._purge_loop())
        logger.debug("memory_cache_purge_started", interval=self.purge_interval)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._purge_task is not None:
            self._purge_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._purge_task
            self._purge_task = None
        with self._lock:
            self._entries.clear()
        logger.debug("memory_cache_closed")
