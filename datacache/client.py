"""Transparent read-through cache in front of a data-access client.

CachedClient wraps a Prisma-style client (one attribute per collection, each
exposing operations such as ``find_many`` or ``create``) without touching the
real object:

- Pure operations derive a key from the call, serve hits from the backend and
  populate it on misses.
- Impure operations run first, then flush every cached read of their
  collection. Invalidation is always collection-wide.

Cache-layer failures never reach the caller: reads degrade to misses, writes
and flushes are dropped with a log line. Errors raised by the wrapped client
always propagate unchanged and are never cached.

Example:
    from prisma import Prisma

    prisma = Prisma()
    await prisma.connect()

    db = init_cached_client(prisma, RedisBackend("redis://localhost:6379"))
    users = await db.user.find_many(where={"active": True})  # miss, cached
    users = await db.user.find_many(where={"active": True})  # hit
    await db.user.create(data={"name": "Ada"})  # flushes "user:" entries
"""

import functools
import inspect
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import structlog

from datacache.backends import CacheBackend, MemoryBackend
from datacache.config import CacheConfig
from datacache.errors import CacheError, SerializationError
from datacache.keys import collection_prefix, derive_key
from datacache.metrics import MetricsCallbacks, MetricsDispatcher
from datacache.serialization import deserialize, serialize

logger = structlog.get_logger(__name__)

PURE_OPERATIONS: frozenset[str] = frozenset(
    {
        "find_first",
        "find_first_or_raise",
        "find_unique",
        "find_unique_or_raise",
        "find_many",
        "aggregate",
        "count",
        "group_by",
        "query_raw",
        "query_first",
    }
)

IMPURE_OPERATIONS: frozenset[str] = frozenset(
    {
        "create",
        "create_many",
        "delete",
        "delete_many",
        "execute_raw",
        "update",
        "update_many",
        "upsert",
    }
)


@dataclass(frozen=True)
class CollectionOperations:
    """The classified operations a collection exposes.

    Attributes:
        pure: Read-only operation names served from the cache.
        impure: Mutating operation names that invalidate the collection.
    """

    pure: frozenset[str] = PURE_OPERATIONS
    impure: frozenset[str] = IMPURE_OPERATIONS

    def __post_init__(self) -> None:
        overlap = self.pure & self.impure
        if overlap:
            raise ValueError(f"Operations classified as both pure and impure: {sorted(overlap)}")


def discover_collections(
    client: Any,
    pure: Iterable[str] = PURE_OPERATIONS,
    impure: Iterable[str] = IMPURE_OPERATIONS,
) -> dict[str, CollectionOperations]:
    """Build the collection table by inspecting a client once.

    A collection is any public, non-callable attribute exposing at least one
    known operation as a callable.

    Args:
        client: The data-access client.
        pure: Names of read-only operations.
        impure: Names of mutating operations.

    Returns:
        Mapping of collection name to the operations it actually exposes.
    """
    pure = frozenset(pure)
    impure = frozenset(impure)
    table: dict[str, CollectionOperations] = {}

    for name in dir(client):
        if name.startswith(("_", "$")):
            continue
        candidate = getattr(client, name, None)
        if candidate is None or callable(candidate) or inspect.ismodule(candidate):
            continue
        # Plain values such as str expose methods like count()
        if type(candidate).__module__ == "builtins":
            continue
        exposed = {op for op in pure | impure if callable(getattr(candidate, op, None))}
        if exposed:
            table[name] = CollectionOperations(
                pure=frozenset(exposed & pure),
                impure=frozenset(exposed & impure),
            )

    logger.debug("collections_discovered", collections=sorted(table))
    return table


class CachedCollection:
    """Proxy for one collection of the wrapped client.

    Wrapped operations are built once at construction. Attributes that are
    not classified operations resolve to the real collection.
    """

    def __init__(
        self,
        owner: "CachedClient",
        name: str,
        collection: Any,
        operations: CollectionOperations,
    ) -> None:
        self.name = name
        self.collection = collection
        self.operations = operations
        self._wrapped: dict[str, Callable[..., Awaitable[Any]]] = {}

        for op in operations.pure:
            original = getattr(collection, op, None)
            if callable(original):
                self._wrapped[op] = owner._wrap_pure(name, op, original)
        for op in operations.impure:
            original = getattr(collection, op, None)
            if callable(original):
                self._wrapped[op] = owner._wrap_impure(name, op, original)

    def __getattr__(self, attr: str) -> Any:
        wrapped = self.__dict__.get("_wrapped", {})
        if attr in wrapped:
            return wrapped[attr]
        return getattr(self.__dict__["collection"], attr)

    def __repr__(self) -> str:
        return f"CachedCollection({self.name!r}, operations={sorted(self._wrapped)})"


class CachedClient:
    """Caching proxy around a data-access client.

    Every wrapped operation becomes awaitable, whether the underlying
    operation is sync or async.

    Collections take precedence over the proxy's own public attributes, so a
    model named ``config`` or ``close`` stays reachable as ``cached.config``.
    The shadowed management API is then available through the class, e.g.
    ``await CachedClient.close(cached)``.

    Attributes:
        client: The real data-access client.
        backend: Cache backend holding serialized results.
        config: TTL and enablement policy.
        metrics: Metrics dispatcher with hooks and counters.
    """

    def __init__(
        self,
        client: Any,
        backend: CacheBackend | None = None,
        *,
        config: CacheConfig | None = None,
        metrics: MetricsCallbacks | MetricsDispatcher | None = None,
        collections: Mapping[str, CollectionOperations] | None = None,
    ) -> None:
        """Wrap a client.

        Args:
            client: Data-access client, or an existing CachedClient whose real
                client (and backend, if none is given) is reused.
            backend: Cache backend. Defaults to a MemoryBackend.
            config: Caching policy.
            metrics: Callbacks or a ready dispatcher.
            collections: Explicit collection table. Discovered from the client
                when omitted.

        Raises:
            ValueError: If an explicit collection is missing from the client.
        """
        if isinstance(client, CachedClient):
            backend = backend or client._backend
            client = client._client

        self._client = client
        self._config = config or CacheConfig()
        if backend is None:
            if self._config.default_ttl is not None:
                backend = MemoryBackend(default_ttl=self._config.default_ttl)
            else:
                backend = MemoryBackend()
        self._backend = backend
        if isinstance(metrics, MetricsDispatcher):
            self._metrics = metrics
        else:
            self._metrics = MetricsDispatcher(metrics)
        self._closed = False

        table = dict(collections) if collections is not None else discover_collections(client)
        self._collections: dict[str, CachedCollection] = {}
        for name, operations in table.items():
            real = getattr(client, name, None)
            if real is None:
                raise ValueError(f"Client has no collection '{name}'")
            self._collections[name] = CachedCollection(self, name, real, operations)

        logger.info(
            "cached_client_initialized",
            backend=self._backend.name,
            collections=len(self._collections),
            enabled=self._config.enabled,
        )

    def __getattribute__(self, name: str) -> Any:
        if not name.startswith("_"):
            collections = object.__getattribute__(self, "__dict__").get("_collections")
            if collections and name in collections:
                return collections[name]
        return object.__getattribute__(self, name)

    def __getattr__(self, name: str) -> Any:
        if "_client" not in self.__dict__:
            raise AttributeError(name)
        return getattr(self.__dict__["_client"], name)

    @property
    def client(self) -> Any:
        """The real data-access client."""
        return self._client

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def metrics(self) -> MetricsDispatcher:
        return self._metrics

    @property
    def collections(self) -> list[str]:
        """Names of the wrapped collections."""
        return sorted(self._collections)

    def collection(self, name: str) -> CachedCollection:
        """Get a wrapped collection by name.

        Raises:
            KeyError: If the collection is not wrapped.
        """
        return self._collections[name]

    @property
    def enabled(self) -> bool:
        """Whether reads are currently served from the cache."""
        return self._config.enabled

    def enable_cache(self) -> None:
        self._config.enabled = True
        logger.info("cache_enabled")

    def disable_cache(self) -> None:
        """Bypass the cache for reads. Mutations keep invalidating."""
        self._config.enabled = False
        logger.info("cache_disabled")


    # ------------------------------------------------------------------
    # Wrapping
    # ------------------------------------------------------------------

    def _wrap_pure(
        self, collection: str, operation: str, original: Callable[..., Any]
    ) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(original)
        async def cached_operation(*args: Any, **kwargs: Any) -> Any:
            return await self._cached_read(collection, operation, original, args, kwargs)

        return cached_operation

    def _wrap_impure(
        self, collection: str, operation: str, original: Callable[..., Any]
    ) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(original)
        async def invalidating_operation(*args: Any, **kwargs: Any) -> Any:
            result = await self._invoke(collection, operation, original, args, kwargs)
            await self._invalidate(collection, reason=operation)
            return result

        return invalidating_operation

    async def _invoke(
        self,
        collection: str,
        operation: str,
        original: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any:
        """Call the real operation, recording duration and failures."""
        start = time.perf_counter()
        try:
            result = original(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.debug(
                "db_operation_failed",
                collection=collection,
                operation=operation,
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            await self._metrics.db_error(collection, operation, e, duration_ms)
            raise
        duration_ms = (time.perf_counter() - start) * 1000
        await self._metrics.db_request(collection, operation, duration_ms)
        return result

    async def _cached_read(
        self,
        collection: str,
        operation: str,
        original: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any:
        if not self._config.enabled:
            return await self._invoke(collection, operation, original, args, kwargs)

        try:
            key = derive_key(collection, operation, args, kwargs)
        except SerializationError as e:
            logger.warning(
                "cache_key_unavailable",
                collection=collection,
                operation=operation,
                error=str(e),
            )
            return await self._invoke(collection, operation, original, args, kwargs)

        cached = await self._read(key)
        if cached is not None:
            try:
                value = deserialize(cached)
            except SerializationError as e:
                logger.warning("cache_payload_invalid", key=key, error=str(e))
                await self._metrics.cache_error()
                await self._delete(key)
            else:
                logger.debug("cache_hit", key=key, collection=collection, operation=operation)
                await self._metrics.cache_hit(key, collection, operation)
                return value

        logger.debug("cache_miss", key=key, collection=collection, operation=operation)
        await self._metrics.cache_miss(key, collection, operation)
        result = await self._invoke(collection, operation, original, args, kwargs)
        await self._store(key, collection, result)
        return result

    # ------------------------------------------------------------------
    # Backend access, failures degrade to pass-through
    # ------------------------------------------------------------------

    async def _read(self, key: str) -> str | None:
        try:
            return await self._backend.read(key)
        except Exception as e:
            logger.error("cache_read_error", key=key, error=str(e))
            await self._metrics.cache_error()
            return None

    async def _delete(self, key: str) -> None:
        try:
            await self._backend.delete(key)
        except Exception as e:
            logger.error("cache_delete_error", key=key, error=str(e))
            await self._metrics.cache_error()

    async def _store(self, key: str, collection: str, result: Any) -> None:
        try:
            payload = serialize(result)
            await self._backend.write(key, payload, self._config.get_ttl(collection))
        except SerializationError as e:
            logger.warning("cache_value_unserializable", key=key, error=str(e))
            await self._metrics.cache_error()
            return
        except Exception as e:
            logger.error("cache_write_error", key=key, error=str(e))
            await self._metrics.cache_error()
            return
        logger.debug("cache_set", key=key)
        await self._report_size()

    async def _invalidate(self, collection: str, reason: str) -> None:
        prefix = collection_prefix(collection)
        try:
            await self._backend.flush(prefix)
        except Exception as e:
            logger.error(
                "cache_invalidation_error",
                collection=collection,
                operation=reason,
                error=str(e),
            )
            await self._metrics.cache_error()
            return
        await self._metrics.invalidated()
        logger.info("cache_collection_invalidated", collection=collection, operation=reason)
        await self._report_size()

    async def _report_size(self) -> None:
        if not self._metrics.wants_size:
            return
        try:
            size = await self._backend.size()
        except Exception as e:
            logger.debug("cache_size_unavailable", error=str(e))
            return
        if size is not None:
            await self._metrics.size_changed(size)

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def clear_cache(self, pattern: str | None = None) -> None:
        """Flush the whole cache, or the entries whose key starts with pattern.

        Raises:
            CacheError: If the backend fails.
        """
        await self._backend.flush(pattern)
        logger.info("cache_cleared", pattern=pattern)
        await self._report_size()

    async def clear_collection_cache(self, collection: str) -> None:
        """Flush every cached read of one collection.

        Raises:
            CacheError: If the backend fails.
        """
        await CachedClient.clear_cache(self, collection_prefix(collection))

    async def close(self) -> None:
        """Close the backend, then disconnect the wrapped client if it can."""
        if self._closed:
            return
        self._closed = True

        try:
            await self._backend.close()
        except CacheError as e:
            logger.warning("cache_close_error", error=str(e))

        disconnect = getattr(self._client, "disconnect", None)
        if callable(disconnect):
            result = disconnect()
            if inspect.isawaitable(result):
                await result
        logger.info("cached_client_closed")

    async def __aenter__(self) -> "CachedClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await CachedClient.close(self)

    def __repr__(self) -> str:
        return (
            f"CachedClient(backend={self._backend.name!r}, "
            f"collections={sorted(self._collections)}, enabled={self._config.enabled})"
        )


# Shared cached client, one per process
_cached_client: CachedClient | None = None


def init_cached_client(
    client: Any,
    backend: CacheBackend | None = None,
    **kwargs: Any,
) -> CachedClient:
    """Get the shared cached client, creating it on first use.

    Later calls return the same instance, so the client is wrapped once and
    every consumer shares one cache.

    Args:
        client: Data-access client to wrap on first use.
        backend: Cache backend used on first use.
        **kwargs: Extra CachedClient arguments used on first use.

    Returns:
        The shared CachedClient.
    """
    global _cached_client
    if _cached_client is None:
        _cached_client = CachedClient(client, backend, **kwargs)
    elif client is not _cached_client._client and client is not _cached_client:
        logger.warning("cached_client_already_initialized", ignored_client=type(client).__name__)
    return _cached_client


def get_cached_client() -> CachedClient | None:
    """Get the shared cached client.

    Returns:
        Cached client or None if not initialized.
    """
    return _cached_client


def set_cached_client(cached: CachedClient) -> None:
    """Set the shared cached client.

    Args:
        cached: Cached client to share.
    """
    global _cached_client
    _cached_client = cached


def reset_cached_client() -> None:
    """Forget the shared cached client (for testing)."""
    global _cached_client
    _cached_client = None
