"""Source-excerpt embedding over a markdown-it token stream.

Every block-level ``<CodeFile .../>`` directive is replaced by fenced code
blocks holding the referenced lines, or by an error notification when the
directive is invalid. One bad directive never stops the others.

Each directive is resolved once into ``EmbedSpec | EmbedInvalid``; nothing
downstream looks at raw attributes again.
"""

from __future__ import annotations

import html
import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

import structlog
from markdown_it.token import Token

from lessonkit import ranges as range_rules
from lessonkit.errors import EmbedValidationError, FileAccessError
from lessonkit.fingerprint import hash_text
from lessonkit.models.document import BUTTON_KINDS, EmbeddedFile, EmbedSpec, LineRange

if TYPE_CHECKING:
    from lessonkit.protocols import DriftStoreProtocol

log = structlog.get_logger()

CODE_FILE_TAG = "CodeFile"

_ATTRIBUTE_RE = re.compile(
    r"""([A-Za-z_:][\w:.-]*)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+)))?"""
)
_BOOLEAN_ATTRIBUTES = {"showLineNumbers": "show_line_numbers", "allowCopy": "allow_copy"}
_KNOWN_ATTRIBUTES = {"file", "range", "highlight", "buttons", *_BOOLEAN_ATTRIBUTES}

DRIFT_WARNING = "file {name} content was changed, review 'range' and 'highlight' inputs"


# ----------------------------------------------------------------------
# Directive scanning
# ----------------------------------------------------------------------


def element_pattern(tag: str) -> re.Pattern[str]:
    """Opening (or self-closing) tag of ``tag`` with its attribute text in group 1."""
    return re.compile(rf"<{tag}(?=[\s/>])([^>]*?)\s*/?>", re.DOTALL)


_CODE_FILE_RE = element_pattern(CODE_FILE_TAG)


def parse_attributes(text: str) -> dict[str, str | None]:
    """Parse HTML-style attributes. A bare attribute maps to ``None``."""
    attributes: dict[str, str | None] = {}
    for match in _ATTRIBUTE_RE.finditer(text):
        name, double, single, unquoted = match.groups()
        value = next((v for v in (double, single, unquoted) if v is not None), None)
        attributes[name] = value
    return attributes


def split_lines(text: str) -> list[str]:
    """Split file content into lines; a trailing newline does not add a line."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line.removesuffix("\r") for line in lines]


def strip_indent(text: str) -> str:
    """Remove the longest leading whitespace shared by all non-blank lines."""
    indents = [len(m.group()) for m in re.finditer(r"^[ \t]*(?=\S)", text, re.MULTILINE)]
    indent = min(indents, default=0)
    if indent == 0:
        return text
    return re.sub(rf"^[ \t]{{{indent}}}", "", text, flags=re.MULTILINE)


def app_type(document_path: str) -> str:
    if "problem" in document_path:
        return "problem"
    if "solution" in document_path:
        return "solution"
    return "other"


# ----------------------------------------------------------------------
# Resolution
# ----------------------------------------------------------------------


@dataclass
class Directive:
    """One ``<CodeFile>`` occurrence in the document source."""

    attributes: dict[str, str | None]
    start_line: int  # 1-indexed, in the document
    end_line: int


@dataclass
class EmbedInvalid:
    messages: list[str]
    full_path: str = ""


EmbedResult = EmbedSpec | EmbedInvalid


@dataclass
class EmbedContext:
    """Per-compile state. Discarded with the compile that created it."""

    document_path: str
    document_source: str
    drift_ledger: DriftStoreProtocol
    file_lines: dict[str, list[str] | None] = field(default_factory=dict)
    embedded_files: list[EmbeddedFile] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def document_dir(self) -> str:
        return os.path.dirname(self.document_path)

    @property
    def document_name(self) -> str:
        return os.path.basename(self.document_path)

    def read_lines(self, full_path: str) -> list[str]:
        """Lines of ``full_path``, read at most once per compile."""
        if full_path not in self.file_lines:
            try:
                self.file_lines[full_path] = split_lines(
                    Path(full_path).read_text(encoding="utf-8")
                )
            except (OSError, UnicodeDecodeError) as exc:
                log.warning("embed_file_unreadable", file=full_path, reason=str(exc))
                self.file_lines[full_path] = None
        lines = self.file_lines[full_path]
        if lines is None:
            raise FileAccessError(full_path)
        return lines


def _issue(message: str, name: str, value: str | None) -> str:
    return f'{message}: {name}="{value if value is not None else ""}"'


def resolve_full_path(context: EmbedContext, file: str) -> str:
    return os.path.normpath(os.path.join(context.document_dir, file)).replace("\\", "/")


def build_spec(attributes: dict[str, str | None], context: EmbedContext) -> EmbedSpec:
    """Validate directive attributes into an ``EmbedSpec``.

    Raises ``EmbedValidationError`` carrying every problem found.
    """
    messages: list[str] = []

    file = attributes.get("file")
    full_path = ""
    lines: list[str] | None = None
    if not file:
        messages.append(_issue("Required", "file", file))
    else:
        full_path = resolve_full_path(context, file)
        try:
            lines = context.read_lines(full_path)
        except FileAccessError:
            messages.append(_issue("Could not read file", "file", file))
    line_count = len(lines) if lines is not None else None

    raw_range = attributes.get("range")
    ranges, range_messages = range_rules.check_range_list(raw_range, line_count, disjoint=True)
    messages.extend(_issue(m, "range", raw_range) for m in range_messages)

    raw_highlight = attributes.get("highlight")
    highlights, highlight_messages = range_rules.check_range_list(
        raw_highlight, line_count, disjoint=False
    )
    messages.extend(_issue(m, "highlight", raw_highlight) for m in highlight_messages)

    if highlights is not None:
        if ranges is not None:
            sections: list[LineRange] | None = ranges
        elif raw_range is None and line_count is not None:
            sections = [LineRange(start=1, end=max(line_count, 1))]
        else:
            sections = None
        if sections is not None and not range_rules.is_nested(highlights, sections):
            messages.append(_issue(range_rules.OUTSIDE_RANGE, "highlight", raw_highlight))

    flags: dict[str, bool] = {}
    for attribute, field_name in _BOOLEAN_ATTRIBUTES.items():
        if attribute not in attributes:
            continue
        value = attributes[attribute]
        if value not in (None, "true", "false"):
            messages.append(_issue('Must be "true", "false" or bare', attribute, value))
            continue
        flags[field_name] = value != "false"

    raw_buttons = attributes.get("buttons")
    buttons = [b for b in raw_buttons.split(",") if b] if raw_buttons else []
    if any(button not in BUTTON_KINDS for button in buttons):
        messages.append(
            _issue(f"Buttons can only be any of {','.join(BUTTON_KINDS)}", "buttons", raw_buttons)
        )

    for name, value in attributes.items():
        if name not in _KNOWN_ATTRIBUTES:
            messages.append(_issue("Unrecognized attribute", name, value))

    if messages:
        raise EmbedValidationError(messages)

    assert file is not None and lines is not None
    return EmbedSpec(
        file_path=file.replace("\\", "/"),
        full_path=full_path,
        lines=lines,
        ranges=ranges or [],
        highlight_ranges=highlights or [],
        buttons=buttons,
        **flags,
    )


def resolve(directive: Directive, context: EmbedContext) -> EmbedResult:
    try:
        return build_spec(directive.attributes, context)
    except EmbedValidationError as exc:
        file = directive.attributes.get("file")
        full_path = resolve_full_path(context, file) if file else ""
        return EmbedInvalid(messages=exc.messages, full_path=full_path)


# ----------------------------------------------------------------------
# Token emission
# ----------------------------------------------------------------------


def _html_block(content: str, level: int, line: int) -> Token:
    return Token("html_block", "", 0, content=content, block=True, level=level, map=[line, line])


def _fence(language: str, meta: list[str], content: str, level: int, line: int) -> Token:
    return Token(
        "fence",
        "code",
        0,
        content=f"{content}\n" if content else "",
        info=" ".join([language, *meta]),
        markup="```",
        block=True,
        level=level,
        map=[line, line],
    )


def excerpt_blocks(spec: EmbedSpec, document_path: str) -> tuple[list[tuple[int, str]], list[str]]:
    """Sliced, dedented contents of every section plus the shared fence meta."""
    meta = [f"filename={spec.file_path}"]
    if spec.show_line_numbers:
        meta.append("showLineNumbers=true")
    if not spec.allow_copy:
        meta.append("allowCopy=false")
    if spec.buttons:
        meta.append(f"buttons={','.join(spec.buttons)}")
        meta.append(f"type={app_type(document_path)}")
        meta.append(f"fullpath={spec.full_path}")
    if spec.highlight_ranges:
        meta.append(f"lines={range_rules.format_ranges(spec.highlight_ranges)}")

    sections = [
        (section.start, strip_indent("\n".join(spec.lines[section.start - 1 : section.end])))
        for section in spec.sections
    ]
    return sections, meta


def embed_identity(spec: EmbedSpec) -> str:
    declared = [[r.start, r.end] for r in spec.ranges] if spec.ranges else None
    return hash_text(spec.full_path + json.dumps(declared))


class EmbedTransform:
    """Replace ``<CodeFile>`` html blocks in a token stream."""

    def __init__(self, context: EmbedContext) -> None:
        self.context = context
        self._document_lines = context.document_source.split("\n")

    def apply(self, tokens: list[Token]) -> list[Token]:
        result: list[Token] = []
        for token in tokens:
            if token.type == "html_block" and _CODE_FILE_RE.search(token.content):
                result.extend(self._expand_block(token))
            else:
                result.append(token)
        return result

    def _expand_block(self, token: Token) -> list[Token]:
        first_line = (token.map[0] if token.map else 0) + 1
        content = token.content
        out: list[Token] = []
        cursor = 0
        for match in _CODE_FILE_RE.finditer(content):
            before = content[cursor : match.start()]
            if before.strip():
                out.append(_html_block(before, token.level, first_line - 1))
            start_line = first_line + content.count("\n", 0, match.start())
            directive = Directive(
                attributes=parse_attributes(match.group(1)),
                start_line=start_line,
                end_line=start_line + match.group(0).count("\n"),
            )
            out.extend(self._replace(directive, token.level))
            cursor = match.end()
        after = content[cursor:]
        if after.strip():
            out.append(_html_block(after.lstrip("\n"), token.level, first_line - 1))
        return out

    def _replace(self, directive: Directive, level: int) -> list[Token]:
        result = resolve(directive, self.context)
        if isinstance(result, EmbedInvalid):
            return self._error_notification(directive, result, level)
        return self._embed(directive, result, level)

    def _embed(self, directive: Directive, spec: EmbedSpec, level: int) -> list[Token]:
        context = self.context
        sections, meta = excerpt_blocks(spec, context.document_path)
        line = directive.start_line - 1
        tokens = [
            _fence(spec.language, [*meta, f"start={start}"], text, level, line)
            for start, text in sections
        ]

        identity = embed_identity(spec)
        content_hash = hash_text(",".join(text for _, text in sections))
        record = context.drift_ledger.observe(
            identity, spec.full_path, content_hash, line=directive.start_line
        )
        row = EmbeddedFile(file=spec.full_path, hash=content_hash)
        if record.pending_warning_baseline is not None:
            row.warning = record.pending_warning_baseline
            row.line = directive.start_line
            tokens.insert(0, self._warning_notification(directive, spec, identity, level))
        context.embedded_files.append(row)
        return tokens

    def _notification_open(self, variant: str, directive: Directive, **extra: str) -> str:
        attrs = {
            "class": "codefile-notification",
            "data-variant": variant,
            "data-file": self.context.document_name,
            "data-line": str(directive.start_line),
            "data-type": app_type(self.context.document_path),
            **extra,
        }
        rendered = " ".join(f'{name}="{html.escape(value)}"' for name, value in attrs.items())
        return f"<div {rendered}>\n"

    def _warning_notification(
        self, directive: Directive, spec: EmbedSpec, identity: str, level: int
    ) -> Token:
        message = DRIFT_WARNING.format(name=PurePosixPath(spec.file_path).name)
        content = (
            self._notification_open("warning", directive, **{"data-embed-identity": identity})
            + '<p class="title"><strong>CodeFile Warning:</strong></p>\n'
            + f"<p>{html.escape(message)}</p>\n"
            + "</div>\n"
        )
        return _html_block(content, level, directive.start_line - 1)

    def _error_notification(
        self, directive: Directive, invalid: EmbedInvalid, level: int
    ) -> list[Token]:
        context = self.context
        log.warning(
            "embed_invalid",
            document=context.document_path,
            line=directive.start_line,
            errors=invalid.messages,
        )
        context.errors.extend(invalid.messages)
        context.embedded_files.append(
            EmbeddedFile(
                file=invalid.full_path, hash="", line=directive.start_line, error=True
            )
        )

        items = "".join(f"<li>{html.escape(message)}</li>\n" for message in invalid.messages)
        opening = (
            self._notification_open("error", directive)
            + '<p class="title"><strong>CodeFile Error: invalid input</strong></p>\n'
            + f"<ul>\n{items}</ul>\n"
        )
        line = directive.start_line - 1
        tokens = [_html_block(opening, level, line)]
        excerpt = "\n".join(self._document_lines[line : directive.end_line])
        if excerpt:
            meta = [
                f"filename={context.document_name}",
                "allowCopy=false",
                f"start={directive.start_line}",
            ]
            tokens.append(_fence("md", meta, excerpt, level, line))
        tokens.append(_html_block("</div>\n", level, line))
        return tokens
