from __future__ import annotations

from lessonkit.models.cache import CacheEntry, FileFingerprint
from lessonkit.models.document import (
    BUTTON_KINDS,
    CompiledDocument,
    EmbeddedFile,
    EmbedDriftRecord,
    EmbedSpec,
    LineRange,
)
from lessonkit.models.rendered import (
    CodeBlock,
    DiffLine,
    Fragment,
    InlineDiff,
    StyledText,
    TextRange,
)

__all__ = [
    # cache
    "CacheEntry",
    "FileFingerprint",
    # document
    "BUTTON_KINDS",
    "CompiledDocument",
    "EmbeddedFile",
    "EmbedDriftRecord",
    "EmbedSpec",
    "LineRange",
    # rendered
    "CodeBlock",
    "DiffLine",
    "Fragment",
    "InlineDiff",
    "StyledText",
    "TextRange",
]
