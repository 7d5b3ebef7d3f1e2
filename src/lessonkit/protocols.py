"""Protocol interfaces for swappable components.

The compiler and cache reference these protocols, not the concrete
implementations. This allows:
- Tests to use lightweight in-memory implementations
- Other storage backends or syntax highlighters without changing the pipeline
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from lessonkit.models.cache import CacheEntry
    from lessonkit.models.document import EmbedDriftRecord
    from lessonkit.models.rendered import StyledText


class CacheStoreProtocol(Protocol):
    """Persistence backend for compilation cache entries.

    Implementations raise ``CacheIOError`` on infrastructure failure; the
    cache layer treats that as a miss.
    """

    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, entry: CacheEntry) -> None: ...

    async def delete(self, key: str) -> None: ...


class DriftStoreProtocol(Protocol):
    """Cross-compile drift state keyed by embed identity."""

    def observe(
        self, embed_identity: str, file: str, content_hash: str, *, line: int | None = None
    ) -> EmbedDriftRecord: ...

    def get(self, embed_identity: str) -> EmbedDriftRecord | None: ...

    def acknowledge(self, embed_identity: str) -> bool: ...


class Highlighter(Protocol):
    """Syntax highlighting capability: ``(text, language) -> styled fragments``.

    The concatenated fragment text must equal the input text exactly.
    """

    def __call__(self, text: str, language: str) -> list[StyledText]: ...
