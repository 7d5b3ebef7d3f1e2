"""Markdown rendering with syntax-highlighted, diff-aware code blocks.

Fenced code goes through ``highlighter -> CodeBlock -> inline diff -> HTML``.
Fence meta after the language is a list of ``key=value`` words:

- ``add=3,5-6`` / ``remove=2``: block-relative lines of a diff
- ``lines=2-4``: highlighted lines, numbered like the displayed line numbers
- ``start=10``: number of the first line
- anything else (``filename``, ``showLineNumbers``, ...) is passed through
  as a ``data-*`` attribute on the ``<pre>``
"""

from __future__ import annotations

import html
from typing import TYPE_CHECKING

import structlog
from markdown_it import MarkdownIt

from lessonkit import ranges as range_rules
from lessonkit.highlighter import split_lines
from lessonkit.inline_diff import MAX_CHANGED_CHARS, MAX_CHANGED_RATIO, highlight_inline_diffs
from lessonkit.models.rendered import CodeBlock, DiffLine, InlineDiff, StyledText

if TYPE_CHECKING:
    from collections.abc import Sequence

    from markdown_it.token import Token
    from markdown_it.utils import EnvType, OptionsDict

    from lessonkit.models.document import LineRange
    from lessonkit.models.rendered import Fragment, LineKind
    from lessonkit.protocols import Highlighter

log = structlog.get_logger()

_INLINE_DIFF_CLASSES = {"added-inline": "diff-inline-add", "removed-inline": "diff-inline-remove"}


def create_markdown() -> MarkdownIt:
    return MarkdownIt("commonmark", {"html": True}).enable("table").enable("strikethrough")


def parse_info(info: str) -> tuple[str, dict[str, str]]:
    """Split a fence info string into its language and ``key=value`` meta."""
    words = info.split()
    language = ""
    if words and "=" not in words[0]:
        language = words.pop(0)
    meta: dict[str, str] = {}
    for word in words:
        key, sep, value = word.partition("=")
        meta[key] = value if sep else "true"
    return language, meta


def _line_set(meta: dict[str, str], key: str) -> set[int]:
    raw = meta.get(key)
    if not raw:
        return set()
    try:
        spans: list[LineRange] = range_rules.parse_ranges(raw)
    except ValueError:
        log.debug("fence_meta_ignored", key=key, value=raw)
        return set()
    return {n for span in spans for n in range(span.start, span.end + 1)}


class CodeBlockRenderer:
    """Build and render ``CodeBlock`` trees for fenced code."""

    def __init__(
        self,
        highlighter: Highlighter,
        *,
        max_changed_chars: int = MAX_CHANGED_CHARS,
        max_changed_ratio: float = MAX_CHANGED_RATIO,
    ) -> None:
        self.highlighter = highlighter
        self.max_changed_chars = max_changed_chars
        self.max_changed_ratio = max_changed_ratio

    def build(self, content: str, info: str) -> CodeBlock:
        language, meta = parse_info(info)
        added = _line_set(meta, "add")
        removed = _line_set(meta, "remove")

        lines: list[DiffLine] = []
        if content:
            for number, fragments in enumerate(
                split_lines(self.highlighter(content, language)), start=1
            ):
                kind: LineKind = "context"
                if number in removed:
                    kind = "remove"
                elif number in added:
                    kind = "add"
                lines.append(DiffLine(kind=kind, fragments=list(fragments)))

        return CodeBlock(
            language=language,
            lines=lines,
            has_additions=any(line.kind == "add" for line in lines),
            has_removals=any(line.kind == "remove" for line in lines),
            meta=meta,
        )

    def render_fence(self, content: str, info: str) -> str:
        block = self.build(content, info)
        highlight_inline_diffs(
            [block],
            max_changed_chars=self.max_changed_chars,
            max_changed_ratio=self.max_changed_ratio,
        )
        return self.render(block)

    def render(self, block: CodeBlock) -> str:
        meta = block.meta
        highlighted = _line_set(meta, "lines")
        try:
            first = int(meta.get("start", "1"))
        except ValueError:
            first = 1

        pre_attrs = [
            f'data-{key}="{html.escape(value)}"'
            for key, value in meta.items()
            if key not in ("add", "remove")
        ]
        if block.language:
            pre_attrs.insert(0, f'data-language="{html.escape(block.language)}"')
        if block.has_additions:
            pre_attrs.append("data-add")
        if block.has_removals:
            pre_attrs.append("data-remove")

        body = "".join(
            self._render_line(line, first + index, first + index in highlighted)
            for index, line in enumerate(block.lines)
        )
        code_class = f' class="language-{html.escape(block.language)}"' if block.language else ""
        attrs = (" " + " ".join(pre_attrs)) if pre_attrs else ""
        return f"<pre{attrs}><code{code_class}>{body}</code></pre>\n"

    def _render_line(self, line: DiffLine, number: int, highlighted: bool) -> str:
        attrs = [f'class="codeblock-line" data-line-number="{number}"']
        if line.kind == "add":
            attrs.append("data-add")
        elif line.kind == "remove":
            attrs.append("data-remove")
        if highlighted:
            attrs.append("data-highlighted")
        inner = "".join(_render_fragment(fragment) for fragment in line.fragments)
        return f"<span {' '.join(attrs)}>{inner}{html.escape(line.terminator)}</span>"


def _render_styled(fragment: StyledText) -> str:
    text = html.escape(fragment.text, quote=False)
    if fragment.style is None:
        return text
    return f'<span class="{html.escape(fragment.style)}">{text}</span>'


def _render_fragment(fragment: Fragment) -> str:
    if isinstance(fragment, InlineDiff):
        inner = "".join(_render_styled(child) for child in fragment.children)
        return f'<span class="{_INLINE_DIFF_CLASSES[fragment.kind]}">{inner}</span>'
    return _render_styled(fragment)


class DocumentRenderer:
    """markdown-it instance whose fence rule renders through ``CodeBlockRenderer``."""

    def __init__(self, code_blocks: CodeBlockRenderer) -> None:
        self.code_blocks = code_blocks
        self.md = create_markdown()

        def custom_fence(
            tokens: Sequence[Token], idx: int, options: OptionsDict, env: EnvType
        ) -> str:
            token = tokens[idx]
            return self.code_blocks.render_fence(token.content, token.info.strip())

        self.md.renderer.rules["fence"] = custom_fence

    def parse(self, source: str) -> list[Token]:
        return self.md.parse(source)

    def render(self, tokens: Sequence[Token]) -> str:
        return self.md.renderer.render(tokens, self.md.options, {})

    def render_markdown(self, source: str) -> str:
        return self.render(self.parse(source))
