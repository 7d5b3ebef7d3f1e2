"""Pygments-backed syntax highlighting.

Lexers are created with newline stripping and ensuring disabled, so the
concatenated token text always equals the input.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pygments.lexers import get_lexer_by_name
from pygments.token import STANDARD_TYPES
from pygments.util import ClassNotFound

from lessonkit.models.rendered import StyledText

if TYPE_CHECKING:
    from pygments.lexer import Lexer
    from pygments.token import _TokenType

log = structlog.get_logger()


class PygmentsHighlighter:
    """``Highlighter`` implementation: ``(text, language) -> list[StyledText]``."""

    def __init__(self, style_prefix: str = "tok-") -> None:
        self._style_prefix = style_prefix
        self._lexers: dict[str, Lexer | None] = {}

    def __call__(self, text: str, language: str) -> list[StyledText]:
        lexer = self._get_lexer(language)
        if lexer is None or not text:
            return [StyledText(text)] if text else []

        fragments: list[StyledText] = []
        for token_type, value in lexer.get_tokens(text):
            if not value:
                continue
            style = self._style_for(token_type)
            # Merge neighbours with the same style to keep the markup small.
            if fragments and fragments[-1].style == style:
                fragments[-1].text += value
            else:
                fragments.append(StyledText(value, style))
        return fragments

    def _get_lexer(self, language: str) -> Lexer | None:
        if not language:
            return None
        if language not in self._lexers:
            try:
                self._lexers[language] = get_lexer_by_name(
                    language, stripnl=False, ensurenl=False, stripall=False
                )
            except ClassNotFound:
                log.debug("lexer_not_found", language=language)
                self._lexers[language] = None
        return self._lexers[language]

    def _style_for(self, token_type: _TokenType) -> str | None:
        while token_type not in STANDARD_TYPES:
            token_type = token_type.parent
        short = STANDARD_TYPES[token_type]
        return f"{self._style_prefix}{short}" if short else None


def split_lines(fragments: list[StyledText]) -> list[list[StyledText]]:
    """Split a fragment stream on ``\\n`` into one fragment list per line.

    Fragments spanning several lines (block comments, template strings) are
    cut at each newline and keep their style on every piece. The newlines
    themselves are dropped; a trailing newline does not open an extra line.
    """
    lines: list[list[StyledText]] = [[]]
    for fragment in fragments:
        pieces = fragment.text.split("\n")
        for index, piece in enumerate(pieces):
            if index:
                lines.append([])
            if piece:
                lines[-1].append(StyledText(piece, fragment.style))
    if len(lines) > 1 and not lines[-1]:
        lines.pop()
    return lines
