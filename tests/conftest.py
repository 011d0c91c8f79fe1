"""Shared fixtures: an in-memory stand-in for the redis.asyncio command surface
used by the backends, and a small Prisma-style data client."""

import re
from collections.abc import AsyncIterator
from typing import Any

import pytest


def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate the subset of Redis glob syntax the backends emit."""
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "*":
            out.append(".*")
        elif ch == "?":
            out.append(".")
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.DOTALL)


class FakeRedis:
    """Dict-backed async Redis with a manual clock for key expiry."""

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.expiry: dict[str, float] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.now = 0.0
        self.closed = False
        self.set_calls: list[tuple[str, str, int | None]] = []

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _purge(self) -> None:
        for key in [k for k, at in self.expiry.items() if self.now >= at]:
            self.strings.pop(key, None)
            self.expiry.pop(key, None)

    async def get(self, name: str) -> str | None:
        self._purge()
        return self.strings.get(name)

    async def set(self, name: str, value: str, ex: int | None = None) -> bool:
        self.set_calls.append((name, value, ex))
        self.strings[name] = value
        if ex is not None:
            self.expiry[name] = self.now + ex
        else:
            self.expiry.pop(name, None)
        return True

    async def delete(self, *names: str) -> int:
        self._purge()
        deleted = 0
        for name in names:
            if self.strings.pop(name, None) is not None:
                self.expiry.pop(name, None)
                deleted += 1
            if self.hashes.pop(name, None) is not None:
                deleted += 1
        return deleted

    async def exists(self, *names: str) -> int:
        self._purge()
        return sum(1 for name in names if name in self.strings or name in self.hashes)

    async def scan_iter(self, match: str | None = None, count: int | None = None) -> AsyncIterator[str]:
        self._purge()
        regex = _glob_to_regex(match or "*")
        for key in list(self.strings) + list(self.hashes):
            if regex.match(key):
                yield key

    async def flushdb(self) -> bool:
        self.strings.clear()
        self.expiry.clear()
        self.hashes.clear()
        return True

    async def dbsize(self) -> int:
        self._purge()
        return len(self.strings) + len(self.hashes)

    async def hget(self, name: str, key: str) -> str | None:
        return self.hashes.get(name, {}).get(key)

    async def hset(self, name: str, key: str, value: str) -> int:
        bucket = self.hashes.setdefault(name, {})
        created = key not in bucket
        bucket[key] = value
        return int(created)

    async def hdel(self, name: str, *keys: str) -> int:
        bucket = self.hashes.get(name, {})
        deleted = sum(1 for key in keys if bucket.pop(key, None) is not None)
        if name in self.hashes and not bucket:
            del self.hashes[name]
        return deleted

    async def hlen(self, name: str) -> int:
        return len(self.hashes.get(name, {}))

    async def hscan_iter(
        self, name: str, match: str | None = None, count: int | None = None
    ) -> AsyncIterator[tuple[str, str]]:
        regex = _glob_to_regex(match or "*")
        for key, value in list(self.hashes.get(name, {}).items()):
            if regex.match(key):
                yield key, value

    async def aclose(self) -> None:
        self.closed = True


class FakeCollection:
    """A collection whose operations record calls and return canned results."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.rows: list[dict[str, Any]] = []
        self.fail_with: Exception | None = None

    def _record(self, op: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        self.calls.append((op, args, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def calls_to(self, op: str) -> int:
        return sum(1 for name, _, _ in self.calls if name == op)

    async def find_many(self, *args: Any, **kwargs: Any) -> list[dict[str, Any]]:
        self._record("find_many", args, kwargs)
        return [dict(row) for row in self.rows]

    async def find_unique(self, *args: Any, **kwargs: Any) -> dict[str, Any] | None:
        self._record("find_unique", args, kwargs)
        where = kwargs.get("where", {})
        for row in self.rows:
            if all(row.get(k) == v for k, v in where.items()):
                return dict(row)
        return None

    async def count(self, *args: Any, **kwargs: Any) -> int:
        self._record("count", args, kwargs)
        return len(self.rows)

    async def aggregate(self, *args: Any, **kwargs: Any) -> dict[str, Any]:
        self._record("aggregate", args, kwargs)
        return {"_count": {"_all": len(self.rows)}}

    def query_raw(self, query: str, *params: Any) -> list[dict[str, Any]]:
        # Sync on purpose: wrapped operations must accept plain callables too.
        self._record("query_raw", (query, *params), {})
        return [dict(row) for row in self.rows]

    async def create(self, *args: Any, **kwargs: Any) -> dict[str, Any]:
        self._record("create", args, kwargs)
        row = dict(kwargs.get("data", {}))
        row.setdefault("id", len(self.rows) + 1)
        self.rows.append(row)
        return dict(row)

    async def delete_many(self, *args: Any, **kwargs: Any) -> int:
        self._record("delete_many", args, kwargs)
        removed = len(self.rows)
        self.rows.clear()
        return removed

    def describe(self) -> str:
        return f"collection {self.name}"


class FakeDataClient:
    """Prisma-style client with one attribute per collection."""

    def __init__(self) -> None:
        self.user = FakeCollection("user")
        self.post = FakeCollection("post")
        self.version = "1.0"
        self.disconnected = False

    async def disconnect(self) -> None:
        self.disconnected = True

    def is_connected(self) -> bool:
        return not self.disconnected


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Create an in-memory Redis stand-in."""
    return FakeRedis()


@pytest.fixture
def data_client() -> FakeDataClient:
    """Create a data client with user and post collections."""
    return FakeDataClient()
