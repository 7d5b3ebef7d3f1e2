from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    EMBED_INVALID = "EMBED_INVALID"
    FILE_UNREADABLE = "FILE_UNREADABLE"
    CACHE_IO = "CACHE_IO"
    COMPILE_FATAL = "COMPILE_FATAL"


class LessonKitError(Exception):
    """Base class for every expected failure condition in lessonkit.

    Only ``CompileFatalError`` crosses the public ``Compiler.compile`` boundary.
    The other subclasses are raised and recovered internally: embed failures
    become inline diagnostics, cache failures become cache misses.
    """

    code: ErrorCode = ErrorCode.COMPILE_FATAL

    def __init__(
        self,
        message: str,
        suggestion: str = "",
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class EmbedValidationError(LessonKitError):
    """A ``<CodeFile>`` directive failed validation. Carries every message."""

    code = ErrorCode.EMBED_INVALID

    def __init__(self, messages: list[str]) -> None:
        super().__init__(
            "; ".join(messages),
            suggestion="Fix the CodeFile attributes listed in the notification.",
            recoverable=True,
        )
        self.messages = messages


class FileAccessError(LessonKitError):
    """A file referenced by an embed directive could not be read."""

    code = ErrorCode.FILE_UNREADABLE

    def __init__(self, path: str, reason: str = "") -> None:
        super().__init__(
            f"Could not read file: {path}" + (f" ({reason})" if reason else ""),
            suggestion="Check the 'file' attribute is relative to the lesson document.",
            recoverable=True,
        )
        self.path = path


class CacheIOError(LessonKitError):
    """The cache store could not read or write an entry."""

    code = ErrorCode.CACHE_IO

    def __init__(self, key: str, operation: str) -> None:
        super().__init__(
            f"Cache {operation} failed for {key}",
            suggestion="The entry is recomputed; check the cache database path.",
            recoverable=True,
        )
        self.key = key
        self.operation = operation


class CompileFatalError(LessonKitError):
    """The top-level document cannot be read or parsed."""

    code = ErrorCode.COMPILE_FATAL

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"Cannot compile {path}: {reason}",
            suggestion="Make sure the document exists and is UTF-8 markdown.",
            recoverable=False,
        )
        self.path = path
