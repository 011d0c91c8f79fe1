"""Error types for the caching layer.

Exception Hierarchy:
    CacheError (base)
    ├── SerializationError - Cached payload could not be encoded/decoded
    └── BackendUnavailableError - Cache store unreachable or failing
        └── CacheClosedError - Operation issued on a closed backend

    UnderlyingOperationError - Describes a failed wrapped-client call for
    metrics hooks. Callers always see the original exception instead.
"""

from typing import Any


class CacheError(Exception):
    """Base exception for all caching layer errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class SerializationError(CacheError):
    """A value could not be serialized, or a cached payload is malformed.

    The engine treats this as a cache miss and drops the offending entry.
    """


class BackendUnavailableError(CacheError):
    """The cache store failed or could not be reached.

    Attributes:
        backend: Name of the backend that failed.
        operation: Backend operation that was attempted.
    """

    def __init__(
        self,
        message: str,
        *,
        backend: str,
        operation: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.backend = backend
        self.operation = operation

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"backend": self.backend, "operation": self.operation})
        return base


class CacheClosedError(BackendUnavailableError):
    """An operation was issued on a backend after close()."""

    def __init__(self, backend: str, operation: str) -> None:
        super().__init__(
            f"Cache backend '{backend}' is closed",
            backend=backend,
            operation=operation,
        )


class UnderlyingOperationError(Exception):
    """A wrapped client operation failed.

    Passed to the ``on_db_error`` metrics hook with the original exception
    chained as ``__cause__``. It is never raised to callers.

    Attributes:
        collection: Collection the operation belongs to.
        operation: Operation name.
        duration_ms: Time spent in the failed call.
    """

    def __init__(self, collection: str, operation: str, duration_ms: float) -> None:
        self.collection = collection
        self.operation = operation
        self.duration_ms = duration_ms
        super().__init__(f"{collection}.{operation} failed after {duration_ms:.1f}ms")

    @property
    def original(self) -> BaseException | None:
        """The exception raised by the wrapped client."""
        return self.__cause__

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": type(self.original).__name__ if self.original else None,
            "message": str(self.original) if self.original else str(self),
            "collection": self.collection,
            "operation": self.operation,
            "duration_ms": round(self.duration_ms, 2),
        }
