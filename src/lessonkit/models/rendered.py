"""Rendered code-block tree consumed by the inline diff highlighter.

A ``CodeBlock`` holds one ``DiffLine`` per source line. Each line is an
ordered sequence of syntax-styled fragments followed by its line terminator.
Inline diff markers wrap a contiguous run of fragments; they never nest.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

LineKind = Literal["add", "remove", "context"]
InlineDiffKind = Literal["added-inline", "removed-inline"]


@dataclass
class StyledText:
    """One syntax token: text plus the style class the highlighter gave it."""

    text: str
    style: str | None = None


@dataclass
class InlineDiff:
    kind: InlineDiffKind
    children: list[StyledText] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(child.text for child in self.children)


Fragment = StyledText | InlineDiff


@dataclass
class TextRange:
    """Character offsets into a line's plain text, end-exclusive."""

    start: int
    end: int

    def __len__(self) -> int:
        return max(0, self.end - self.start)


@dataclass
class DiffLine:
    kind: LineKind
    fragments: list[Fragment] = field(default_factory=list)
    terminator: str = "\n"

    @property
    def plain_text(self) -> str:
        return "".join(fragment.text for fragment in self.fragments)

    @property
    def has_inline_diff(self) -> bool:
        return any(isinstance(fragment, InlineDiff) for fragment in self.fragments)


@dataclass
class CodeBlock:
    language: str
    lines: list[DiffLine] = field(default_factory=list)
    has_additions: bool = False
    has_removals: bool = False
    meta: dict[str, str] = field(default_factory=dict)

    @property
    def is_diff(self) -> bool:
        return self.has_additions and self.has_removals
