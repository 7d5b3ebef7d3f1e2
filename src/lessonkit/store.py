"""SQLite persistence for compilation cache entries.

Every ``aiosqlite.Error`` (and every row that no longer decodes) is converted
to ``CacheIOError`` at this boundary. The cache layer above treats that as a
miss and recomputes, so a broken or corrupt database never prevents a page
from compiling. Failures are logged here with ``exc_info=True`` so they remain
observable via stderr.
"""

from __future__ import annotations

import json
import time

import aiosqlite
import structlog
from pydantic import ValidationError

from lessonkit.errors import CacheIOError
from lessonkit.models.cache import CacheEntry, FileFingerprint

log = structlog.get_logger()

_CREATE_ENTRY_TABLE = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key              TEXT PRIMARY KEY,
    value            TEXT NOT NULL,
    created_time_ms  REAL NOT NULL,
    ttl_ms           REAL,
    swr_ms           REAL NOT NULL DEFAULT 0,
    fingerprints     TEXT NOT NULL DEFAULT '[]'
)
"""

_CREATE_ENTRY_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_entries_created ON cache_entries(created_time_ms)"
)


class SqliteCacheStore:
    """SQLite-backed entry store implementing CacheStoreProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_ENTRY_TABLE)
        await self._db.execute(_CREATE_ENTRY_INDEX)
        await self._db.commit()

    async def get(self, key: str) -> CacheEntry | None:
        """Read an entry. Returns ``None`` on a miss, raises ``CacheIOError`` on failure."""
        try:
            cursor = await self._db.execute(
                "SELECT key, value, created_time_ms, ttl_ms, swr_ms, fingerprints "
                "FROM cache_entries WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            log.warning("cache_read_error", key=key, exc_info=True)
            raise CacheIOError(key, "read") from exc

        if row is None:
            return None

        try:
            return CacheEntry(
                key=row[0],
                value=json.loads(row[1]),
                created_time_ms=row[2],
                ttl_ms=row[3],
                swr_ms=row[4],
                fingerprints=[FileFingerprint.model_validate(f) for f in json.loads(row[5])],
            )
        except (ValueError, ValidationError) as exc:
            log.warning("cache_entry_corrupt", key=key, exc_info=True)
            raise CacheIOError(key, "decode") from exc

    async def set(self, entry: CacheEntry) -> None:
        """Write (replace) an entry. Raises ``CacheIOError`` on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO cache_entries "
                "(key, value, created_time_ms, ttl_ms, swr_ms, fingerprints) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    entry.key,
                    json.dumps(entry.value),
                    entry.created_time_ms,
                    entry.ttl_ms,
                    entry.swr_ms,
                    json.dumps([f.model_dump(mode="json") for f in entry.fingerprints]),
                ),
            )
            await self._db.commit()
        except (aiosqlite.Error, TypeError, ValueError) as exc:
            log.warning("cache_write_error", key=entry.key, exc_info=True)
            raise CacheIOError(entry.key, "write") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._db.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            await self._db.commit()
        except aiosqlite.Error as exc:
            log.warning("cache_delete_error", key=key, exc_info=True)
            raise CacheIOError(key, "delete") from exc

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_expired(self, grace_days: int = 7) -> int:
        """Delete entries whose TTL ran out more than ``grace_days`` ago.

        Entries without a TTL are kept. Non-fatal on failure: returns 0.
        """
        cutoff_ms = time.time() * 1000 - grace_days * 86_400_000
        try:
            cursor = await self._db.execute(
                "DELETE FROM cache_entries "
                "WHERE ttl_ms IS NOT NULL AND created_time_ms + ttl_ms + swr_ms < ?",
                (cutoff_ms,),
            )
            deleted = cursor.rowcount
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_cleanup_error", exc_info=True)
            return 0

        log.info("cache_cleanup_complete", deleted=deleted)
        return deleted
