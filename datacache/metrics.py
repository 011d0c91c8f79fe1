"""Metrics hooks and counters for the caching layer.

Callers register optional callbacks in MetricsCallbacks. The dispatcher fires
them with already-computed facts and isolates the request path from them: a
missing hook does nothing and a failing hook is logged, never raised.

Example:
    metrics = MetricsCallbacks(
        on_cache_hit=lambda key, collection, operation: hits.inc(),
        on_db_request=lambda collection, operation, ms: latency.observe(ms),
    )
    cached = CachedClient(prisma, MemoryBackend(), metrics=metrics)
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from datacache.errors import UnderlyingOperationError

logger = structlog.get_logger(__name__)

Hook = Callable[..., None | Awaitable[None]]


@dataclass
class MetricsCallbacks:
    """Optional observer hooks. Each may be a plain or an async function.

    Attributes:
        on_cache_hit: Called with (key, collection, operation).
        on_cache_miss: Called with (key, collection, operation).
        on_db_request: Called with (collection, operation, duration_ms) after
            a wrapped client call succeeds.
        on_db_error: Called with (collection, operation, error, duration_ms)
            after a wrapped client call fails.
        on_cache_size_change: Called with the backend size after writes and
            invalidations.
    """

    on_cache_hit: Hook | None = None
    on_cache_miss: Hook | None = None
    on_db_request: Hook | None = None
    on_db_error: Hook | None = None
    on_cache_size_change: Hook | None = None


@dataclass
class CacheStats:
    """In-process counters for cache performance.

    Attributes:
        hits: Number of cache hits.
        misses: Number of cache misses.
        errors: Number of cache-layer errors.
        invalidations: Number of collection invalidations.
        total_db_latency_ms: Total time spent in wrapped client calls.
        db_requests: Number of wrapped client calls.
    """

    hits: int = 0
    misses: int = 0
    errors: int = 0
    invalidations: int = 0
    total_db_latency_ms: float = 0.0
    db_requests: int = 0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @property
    def total_requests(self) -> int:
        """Total number of cache lookups."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Cache hit rate as a percentage."""
        if self.total_requests == 0:
            return 0.0
        return (self.hits / self.total_requests) * 100

    @property
    def avg_db_latency_ms(self) -> float:
        """Average latency of wrapped client calls."""
        if self.db_requests == 0:
            return 0.0
        return self.total_db_latency_ms / self.db_requests

    async def record_hit(self) -> None:
        async with self._lock:
            self.hits += 1

    async def record_miss(self) -> None:
        async with self._lock:
            self.misses += 1

    async def record_error(self) -> None:
        async with self._lock:
            self.errors += 1

    async def record_invalidation(self) -> None:
        async with self._lock:
            self.invalidations += 1

    async def record_db_request(self, latency_ms: float) -> None:
        async with self._lock:
            self.db_requests += 1
            self.total_db_latency_ms += latency_ms

    def to_dict(self) -> dict[str, Any]:
        """Convert stats to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "invalidations": self.invalidations,
            "total_requests": self.total_requests,
            "hit_rate": round(self.hit_rate, 2),
            "db_requests": self.db_requests,
            "avg_db_latency_ms": round(self.avg_db_latency_ms, 2),
        }

    def reset(self) -> None:
        """Reset all counters."""
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.invalidations = 0
        self.total_db_latency_ms = 0.0
        self.db_requests = 0


class MetricsDispatcher:
    """Fires metrics hooks and keeps CacheStats up to date."""

    def __init__(self, callbacks: MetricsCallbacks | None = None) -> None:
        self.callbacks = callbacks or MetricsCallbacks()
        self.stats = CacheStats()

    @property
    def wants_size(self) -> bool:
        """Whether a size hook is registered, so size lookups are worth doing."""
        return self.callbacks.on_cache_size_change is not None

    async def _fire(self, name: str, *args: Any) -> None:
        hook = getattr(self.callbacks, name)
        if hook is None:
            return
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("metrics_hook_failed", hook=name, error=str(e))

    async def cache_hit(self, key: str, collection: str, operation: str) -> None:
        await self.stats.record_hit()
        await self._fire("on_cache_hit", key, collection, operation)

    async def cache_miss(self, key: str, collection: str, operation: str) -> None:
        await self.stats.record_miss()
        await self._fire("on_cache_miss", key, collection, operation)

    async def db_request(self, collection: str, operation: str, duration_ms: float) -> None:
        await self.stats.record_db_request(duration_ms)
        await self._fire("on_db_request", collection, operation, duration_ms)

    async def db_error(
        self,
        collection: str,
        operation: str,
        error: BaseException,
        duration_ms: float,
    ) -> None:
        await self.stats.record_db_request(duration_ms)
        wrapped = UnderlyingOperationError(collection, operation, duration_ms)
        wrapped.__cause__ = error
        await self._fire("on_db_error", collection, operation, wrapped, duration_ms)

    async def cache_error(self) -> None:
        await self.stats.record_error()

    async def invalidated(self) -> None:
        await self.stats.record_invalidation()

    async def size_changed(self, size: int) -> None:
        await self._fire("on_cache_size_change", size)
