"""Tests for the caching layer error types."""

from datacache.errors import (
    BackendUnavailableError,
    CacheClosedError,
    CacheError,
    SerializationError,
    UnderlyingOperationError,
)


class TestCacheError:
    """Tests for the base error."""

    def test_to_dict(self) -> None:
        """Test dictionary export."""
        error = SerializationError("bad payload", details={"key": "User:count:1"})
        assert error.to_dict() == {
            "error_type": "SerializationError",
            "message": "bad payload",
            "details": {"key": "User:count:1"},
        }

    def test_hierarchy(self) -> None:
        """Test every cache error derives from CacheError."""
        assert issubclass(SerializationError, CacheError)
        assert issubclass(BackendUnavailableError, CacheError)
        assert issubclass(CacheClosedError, BackendUnavailableError)
        assert not issubclass(UnderlyingOperationError, CacheError)


class TestBackendUnavailableError:
    """Tests for BackendUnavailableError."""

    def test_attributes(self) -> None:
        """Test backend and operation are exposed."""
        error = BackendUnavailableError("down", backend="redis", operation="read")
        result = error.to_dict()
        assert result["backend"] == "redis"
        assert result["operation"] == "read"

    def test_closed_message(self) -> None:
        """Test the closed error names the backend."""
        error = CacheClosedError("memory", "write")
        assert "memory" in str(error)
        assert error.operation == "write"


class TestUnderlyingOperationError:
    """Tests for UnderlyingOperationError."""

    def test_without_cause(self) -> None:
        """Test the error renders without a chained cause."""
        error = UnderlyingOperationError("User", "create", 3.14159)
        assert error.original is None
        assert error.to_dict()["duration_ms"] == 3.14
        assert "User.create" in str(error)

    def test_with_cause(self) -> None:
        """Test the original exception is reachable."""
        cause = KeyError("id")
        error = UnderlyingOperationError("User", "update", 1.0)
        error.__cause__ = cause
        assert error.original is cause
        assert error.to_dict()["error_type"] == "KeyError"
