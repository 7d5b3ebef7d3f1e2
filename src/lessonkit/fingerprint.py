"""File fingerprints: a cheap staleness proxy with a content-hash fallback.

A fingerprint is ``(size, mtime)``. It is checked on every cache access.
Only when the proxy indicates a possible change is the file re-hashed; a
file whose bytes are unchanged (``touch``, checkout of identical content)
keeps its cached value and only has its fingerprint refreshed.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from lessonkit.models.cache import FileFingerprint

MISSING = -1  # size_bytes of a fingerprint recorded for an absent file


class Freshness(StrEnum):
    UNCHANGED = "unchanged"  # Proxy matches
    TOUCHED = "touched"  # Proxy differs, content hash matches
    CHANGED = "changed"  # Content differs, or the file is gone


@dataclass
class FreshnessReport:
    freshness: Freshness
    fingerprints: list[FileFingerprint]  # Refreshed fingerprints (for TOUCHED)
    changed_path: str | None = None


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_text(text: str) -> str:
    return hash_bytes(text.encode("utf-8"))


def file_content_hash(path: str | Path) -> str | None:
    """SHA-256 of the file bytes, or ``None`` when the file cannot be read."""
    try:
        return hash_bytes(Path(path).read_bytes())
    except OSError:
        return None


def capture(path: str | Path, *, with_hash: bool = False) -> FileFingerprint | None:
    """Stat ``path`` into a fingerprint. Returns ``None`` if it cannot be stat'ed."""
    try:
        stat = Path(path).stat()
    except OSError:
        return None
    return FileFingerprint(
        path=str(path),
        size_bytes=stat.st_size,
        modified_time_ms=stat.st_mtime_ns / 1_000_000,
        content_hash=file_content_hash(path) if with_hash else None,
    )


def proxy_matches(stored: FileFingerprint, current: FileFingerprint, epsilon_ms: float) -> bool:
    if stored.size_bytes != current.size_bytes:
        return False
    return abs(stored.modified_time_ms - current.modified_time_ms) <= epsilon_ms


def check_fingerprints(stored: list[FileFingerprint], epsilon_ms: float) -> FreshnessReport:
    """Compare stored fingerprints against the filesystem.

    Fingerprint first, content hash second: a proxy mismatch is only reported
    as CHANGED when the content hash differs too (or was never recorded).
    """
    refreshed: list[FileFingerprint] = []
    touched = False

    for fingerprint in stored:
        current = capture(fingerprint.path)
        if fingerprint.size_bytes == MISSING:
            # Recorded as absent: only its appearance is a change.
            if current is not None:
                return FreshnessReport(Freshness.CHANGED, [], changed_path=fingerprint.path)
            refreshed.append(fingerprint)
            continue
        if current is None:
            return FreshnessReport(Freshness.CHANGED, [], changed_path=fingerprint.path)

        if proxy_matches(fingerprint, current, epsilon_ms):
            refreshed.append(fingerprint)
            continue

        current_hash = file_content_hash(fingerprint.path)
        if fingerprint.content_hash is None or current_hash != fingerprint.content_hash:
            return FreshnessReport(Freshness.CHANGED, [], changed_path=fingerprint.path)

        touched = True
        refreshed.append(current.model_copy(update={"content_hash": current_hash}))

    return FreshnessReport(Freshness.TOUCHED if touched else Freshness.UNCHANGED, refreshed)


def capture_all(paths: list[str]) -> list[FileFingerprint]:
    """Fingerprint every path with its content hash.

    Paths that cannot be stat'ed are recorded as missing so that creating them
    later invalidates the value.
    """
    fingerprints: list[FileFingerprint] = []
    seen: set[str] = set()
    for path in paths:
        if path in seen:
            continue
        seen.add(path)
        fingerprint = capture(path, with_hash=True)
        if fingerprint is None:
            fingerprint = FileFingerprint(path=path, size_bytes=MISSING, modified_time_ms=0)
        fingerprints.append(fingerprint)
    return fingerprints
