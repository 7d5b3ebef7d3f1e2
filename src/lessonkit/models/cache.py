from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class FileFingerprint(BaseModel):
    """Cheap staleness proxy for one file, plus its content hash once known."""

    path: str
    size_bytes: int
    modified_time_ms: float
    content_hash: str | None = None  # SHA-256 hex of the full file bytes


class CacheEntry(BaseModel):
    """A cached value together with the files it was computed from."""

    key: str
    value: Any  # JSON-serialisable; validated by the caller on read
    created_time_ms: float
    ttl_ms: float | None = None  # None: never expires
    swr_ms: float = 0  # Stale-while-revalidate window after the TTL
    fingerprints: list[FileFingerprint] = []

    def is_fresh(self, now_ms: float) -> bool:
        if self.ttl_ms is None:
            return True
        return now_ms < self.created_time_ms + self.ttl_ms

    def is_servable_stale(self, now_ms: float) -> bool:
        """True while the entry is expired but still inside its SWR window."""
        if self.ttl_ms is None or self.is_fresh(now_ms):
            return False
        return now_ms < self.created_time_ms + self.ttl_ms + self.swr_ms
