"""Document compiler: enriched markdown -> ``CompiledDocument``.

``compile`` is the only public entry point the page layer needs. It never
raises for problems inside the document (bad directives become inline
notifications); ``CompileFatalError`` is reserved for a document that cannot
be read at all.
"""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from lessonkit.embedder import EmbedContext, EmbedTransform, element_pattern, parse_attributes
from lessonkit.errors import CompileFatalError
from lessonkit.fingerprint import file_content_hash, hash_text
from lessonkit.models.document import CompiledDocument
from lessonkit.renderer import CodeBlockRenderer, DocumentRenderer

if TYPE_CHECKING:
    from collections.abc import Sequence

    from markdown_it.token import Token

    from lessonkit.cache import CompilationCache
    from lessonkit.config import Settings
    from lessonkit.protocols import DriftStoreProtocol, Highlighter

_VIDEO_RE = element_pattern("EpicVideo")
_ORDINAL_RE = re.compile(r"^\d+\. ")


def extract_title(tokens: Sequence[Token]) -> str | None:
    """Text of the first level-1 heading, or ``None``.

    Inline code keeps its backticks; emphasis and links are reduced to their
    text. A leading ``N. `` ordinal is dropped.
    """
    for index, token in enumerate(tokens):
        if token.type != "heading_open" or token.tag != "h1":
            continue
        inline = tokens[index + 1] if index + 1 < len(tokens) else None
        if inline is None or inline.type != "inline":
            return None
        parts: list[str] = []
        for child in inline.children or []:
            if child.type == "code_inline":
                parts.append(f"`{child.content}`")
            elif child.type == "text":
                parts.append(child.content)
            elif child.type in ("softbreak", "hardbreak"):
                parts.append(" ")
            elif child.type == "image":
                parts.append("".join(c.content for c in child.children or []))
        return _ORDINAL_RE.sub("", "".join(parts).strip())
    return None


def extract_video_urls(tokens: Sequence[Token]) -> list[str]:
    """``url`` of every ``<EpicVideo>`` element in document order, trailing ``/`` removed."""
    urls: list[str] = []

    def scan(text: str) -> None:
        for match in _VIDEO_RE.finditer(text):
            url = parse_attributes(match.group(1)).get("url")
            if url:
                urls.append(url.removesuffix("/"))

    for token in tokens:
        if token.type == "html_block":
            scan(token.content)
        elif token.type == "inline":
            for child in token.children or []:
                if child.type == "html_inline":
                    scan(child.content)
    return urls


def _as_str(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"expected str, got {type(value).__name__}")
    return value


class Compiler:
    """Compiles lesson documents through the compilation cache."""

    def __init__(
        self,
        settings: Settings,
        cache: CompilationCache[Any],
        drift_ledger: DriftStoreProtocol,
        highlighter: Highlighter,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.drift_ledger = drift_ledger
        self.renderer = DocumentRenderer(
            CodeBlockRenderer(
                highlighter,
                max_changed_chars=settings.diff.max_changed_chars,
                max_changed_ratio=settings.diff.max_changed_ratio,
            )
        )

    async def compile(
        self, path: str | os.PathLike[str], *, force_fresh: bool | str = False
    ) -> CompiledDocument:
        """Compile the document at ``path``, serving the cached result when valid."""
        full_path = os.path.abspath(path).replace("\\", "/")
        log = structlog.get_logger().bind(document=full_path)

        key = f"file:{full_path}"
        if self.settings.compiler.content_hash_keys:
            digest = await asyncio.to_thread(file_content_hash, full_path)
            if digest is None:
                raise CompileFatalError(full_path, "file not found or unreadable")
            key = f"{key}:{digest}"

        async def compute() -> CompiledDocument:
            log.info("compile_started")
            document = await asyncio.to_thread(self._compile_document, full_path)
            log.info(
                "compile_complete",
                title=document.title,
                embedded_files=len(document.embedded_files),
                errors=len(document.errors),
            )
            return document

        def watch(document: CompiledDocument) -> list[str]:
            return [full_path, *(row.file for row in document.embedded_files if row.file)]

        return await self.cache.get_or_compute(
            key,
            compute,
            force_fresh=force_fresh,
            watch=watch,
            validate=CompiledDocument.model_validate,
        )

    async def compile_string(self, source: str) -> str:
        """Render a markdown string (no embedding), cached by content for a day."""
        key = f"md:{hash_text(source)}"

        async def compute() -> str:
            return await asyncio.to_thread(self.renderer.render_markdown, source)

        return await self.cache.get_or_compute(
            key,
            compute,
            ttl_ms=self.settings.cache.string_ttl_hours * 3_600_000,
            validate=_as_str,
        )

    # ------------------------------------------------------------------
    # Synchronous pipeline (runs in a worker thread)
    # ------------------------------------------------------------------

    def _compile_document(self, full_path: str) -> CompiledDocument:
        source = self._read_source(full_path)
        tokens = self.renderer.parse(source)

        context = EmbedContext(
            document_path=full_path,
            document_source=source,
            drift_ledger=self.drift_ledger,
        )
        tokens = EmbedTransform(context).apply(tokens)

        return CompiledDocument(
            code=self.renderer.render(tokens),
            title=extract_title(tokens),
            video_embed_urls=extract_video_urls(tokens),
            errors=context.errors,
            embedded_files=context.embedded_files,
        )

    @staticmethod
    def _read_source(full_path: str) -> str:
        path = Path(full_path)
        if not path.exists():
            raise CompileFatalError(full_path, "file not found")
        if not path.is_file():
            raise CompileFatalError(full_path, "not a regular file")
        try:
            return path.read_bytes().decode("utf-8")
        except OSError as exc:
            raise CompileFatalError(full_path, str(exc)) from exc
        except UnicodeDecodeError as exc:
            raise CompileFatalError(full_path, "not valid UTF-8") from exc
