"""Cache backend contract.

Every backend stores serialized text under string keys and supports:
- read/write/delete of single entries
- TTL per entry (0 means no expiry)
- prefix-scoped flush, the primitive used for collection invalidation
- an optional approximate size for observability
- idempotent close
"""

from abc import ABC, abstractmethod
from types import TracebackType

DEFAULT_TTL_SECONDS = 300


class CacheBackend(ABC):
    """Abstract interface for cache backends.

    Attributes:
        name: Short backend name used in logs and errors.
        default_ttl: TTL in seconds applied when write() gets no ttl.
    """

    name = "base"

    def __init__(self, default_ttl: int = DEFAULT_TTL_SECONDS) -> None:
        if default_ttl < 0:
            raise ValueError("default_ttl must be >= 0")
        self.default_ttl = default_ttl
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def resolve_ttl(self, ttl: int | None) -> int:
        """Return the effective TTL for a write."""
        if ttl is None:
            return self.default_ttl
        if ttl < 0:
            raise ValueError("ttl must be >= 0")
        return ttl

    @abstractmethod
    async def read(self, key: str) -> str | None:
        """Get a live value, or None if missing or expired."""
        ...

    @abstractmethod
    async def write(self, key: str, value: str, ttl: int | None = None) -> None:
        """Store a value with the given TTL or the default TTL."""
        ...

    @abstractmethod
    async def flush(self, pattern: str | None = None) -> None:
        """Remove all entries, or only those whose key starts with pattern."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a single entry."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether a live entry exists."""
        ...

    async def size(self) -> int | None:
        """Approximate number of live entries, None if unsupported."""
        return None

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources. Safe to call more than once."""
        ...

    async def __aenter__(self) -> "CacheBackend":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
