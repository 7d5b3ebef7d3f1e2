"""Unit tests for lessonkit.store."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from lessonkit.errors import CacheIOError
from lessonkit.models.cache import CacheEntry, FileFingerprint

if TYPE_CHECKING:
    from lessonkit.store import SqliteCacheStore


def _entry(key: str = "file:/lesson/README.md", **overrides) -> CacheEntry:
    fields = {
        "key": key,
        "value": {"code": "<p>hi</p>", "title": "Hi"},
        "created_time_ms": time.time() * 1000,
        "fingerprints": [
            FileFingerprint(
                path="/lesson/README.md",
                size_bytes=12,
                modified_time_ms=1_700_000_000_000.5,
                content_hash="ab" * 32,
            )
        ],
    }
    fields.update(overrides)
    return CacheEntry(**fields)


# ---------------------------------------------------------------------------
# Read / write
# ---------------------------------------------------------------------------


class TestEntries:
    async def test_set_and_get(self, store: SqliteCacheStore) -> None:
        await store.set(_entry())
        entry = await store.get("file:/lesson/README.md")
        assert entry is not None
        assert entry.value == {"code": "<p>hi</p>", "title": "Hi"}
        assert entry.ttl_ms is None
        assert entry.fingerprints[0].size_bytes == 12
        assert entry.fingerprints[0].modified_time_ms == 1_700_000_000_000.5
        assert entry.fingerprints[0].content_hash == "ab" * 32

    async def test_get_nonexistent_returns_none(self, store: SqliteCacheStore) -> None:
        assert await store.get("file:/missing.md") is None

    async def test_upsert_replaces(self, store: SqliteCacheStore) -> None:
        await store.set(_entry(value="first"))
        await store.set(_entry(value="second", fingerprints=[]))
        entry = await store.get("file:/lesson/README.md")
        assert entry is not None
        assert entry.value == "second"
        assert entry.fingerprints == []

    async def test_delete(self, store: SqliteCacheStore) -> None:
        await store.set(_entry())
        await store.delete("file:/lesson/README.md")
        assert await store.get("file:/lesson/README.md") is None

    async def test_ttl_and_swr_round_trip(self, store: SqliteCacheStore) -> None:
        await store.set(_entry(key="md:abc", ttl_ms=1000, swr_ms=500))
        entry = await store.get("md:abc")
        assert entry is not None
        assert entry.ttl_ms == 1000
        assert entry.swr_ms == 500


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    async def test_read_failure_raises_cache_io_error(self, store: SqliteCacheStore) -> None:
        """Simulate a database read error, surfaced as CacheIOError."""
        original_execute = store._db.execute

        async def failing_execute(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        store._db.execute = failing_execute  # type: ignore[assignment]
        with pytest.raises(CacheIOError) as exc_info:
            await store.get("file:/lesson/README.md")
        store._db.execute = original_execute  # type: ignore[assignment]
        assert exc_info.value.operation == "read"

    async def test_write_failure_raises_cache_io_error(self, store: SqliteCacheStore) -> None:
        original_execute = store._db.execute

        async def failing_execute(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        store._db.execute = failing_execute  # type: ignore[assignment]
        with pytest.raises(CacheIOError) as exc_info:
            await store.set(_entry())
        store._db.execute = original_execute  # type: ignore[assignment]
        assert exc_info.value.operation == "write"

    async def test_corrupt_row_raises_decode_error(self, store: SqliteCacheStore) -> None:
        await store.set(_entry())
        await store._db.execute(
            "UPDATE cache_entries SET value = ? WHERE key = ?",
            ("{not json", "file:/lesson/README.md"),
        )
        await store._db.commit()

        with pytest.raises(CacheIOError) as exc_info:
            await store.get("file:/lesson/README.md")
        assert exc_info.value.operation == "decode"


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------


class TestCleanup:
    async def test_removes_long_expired_entries_only(self, store: SqliteCacheStore) -> None:
        now = time.time() * 1000
        ten_days = 10 * 86_400_000
        await store.set(_entry(key="md:old", created_time_ms=now - ten_days, ttl_ms=1000))
        await store.set(_entry(key="md:recent", created_time_ms=now - 2000, ttl_ms=1000))
        await store.set(_entry(key="file:/forever.md", created_time_ms=now - ten_days))

        deleted = await store.cleanup_expired(grace_days=7)

        assert deleted == 1
        assert await store.get("md:old") is None
        assert await store.get("md:recent") is not None
        assert await store.get("file:/forever.md") is not None
