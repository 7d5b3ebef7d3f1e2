"""Character-level highlighting of paired diff lines.

Works on already-highlighted ``CodeBlock`` trees: the changed span of a
removed/added line pair is wrapped in an ``InlineDiff`` without disturbing the
syntax fragments around it. Fragments straddling a span boundary are split
in place, so ``DiffLine.plain_text`` is identical before and after.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from lessonkit.models.rendered import InlineDiff, StyledText, TextRange

if TYPE_CHECKING:
    from lessonkit.models.rendered import CodeBlock, DiffLine, Fragment, InlineDiffKind

MAX_CHANGED_CHARS = 120
MAX_CHANGED_RATIO = 0.6


@dataclass
class DiffRanges:
    removed: list[TextRange] = field(default_factory=list)
    added: list[TextRange] = field(default_factory=list)


def compute_inline_diff_ranges(
    removed_text: str,
    added_text: str,
    *,
    max_changed_chars: int = MAX_CHANGED_CHARS,
    max_changed_ratio: float = MAX_CHANGED_RATIO,
) -> DiffRanges | None:
    """Changed spans of a removed/added pair, or ``None`` when not worth showing.

    The spans lie between the longest common prefix and the longest common
    suffix that does not overlap it. Pairs with no shared context, or whose
    change is large in absolute or relative terms, are left to the line-level
    highlight.
    """
    if removed_text == added_text:
        return None

    a, b = removed_text, added_text
    a_len, b_len = len(a), len(b)
    min_len = min(a_len, b_len)

    prefix = 0
    while prefix < min_len and a[prefix] == b[prefix]:
        prefix += 1

    suffix = 0
    while (
        suffix < a_len - prefix
        and suffix < b_len - prefix
        and a[a_len - 1 - suffix] == b[b_len - 1 - suffix]
    ):
        suffix += 1

    if prefix == 0 and suffix == 0:
        return None

    removed = TextRange(prefix, a_len - suffix)
    added = TextRange(prefix, b_len - suffix)
    max_len = max(a_len, b_len)
    changed_max = max(len(removed), len(added))

    if max_len == 0:
        return None
    if changed_max > max_changed_chars:
        return None
    if changed_max / max_len > max_changed_ratio:
        return None

    ranges = DiffRanges(
        removed=[removed] if len(removed) else [],
        added=[added] if len(added) else [],
    )
    if not ranges.removed and not ranges.added:
        return None
    return ranges


def normalize_ranges(ranges: list[TextRange], max_len: int) -> list[TextRange]:
    """Clamp to ``[0, max_len]``, drop empties, sort and merge overlaps."""
    clamped = sorted(
        (
            TextRange(max(0, min(max_len, r.start)), max(0, min(max_len, r.end)))
            for r in ranges
        ),
        key=lambda r: r.start,
    )
    merged: list[TextRange] = []
    for current in clamped:
        if current.end <= current.start:
            continue
        if merged and current.start <= merged[-1].end:
            merged[-1].end = max(merged[-1].end, current.end)
        else:
            merged.append(current)
    return merged


def wrap_ranges_in_line(line: DiffLine, ranges: list[TextRange], kind: InlineDiffKind) -> None:
    """Wrap each range of ``line`` in an ``InlineDiff`` of ``kind``.

    Lines that already carry an inline diff are left alone, which makes the
    pass idempotent.
    """
    if not ranges or not line.fragments or line.has_inline_diff:
        return

    normalized = normalize_ranges(ranges, len(line.plain_text))
    if not normalized:
        return

    index = 0
    position = 0
    rebuilt: list[Fragment] = []
    for fragment in line.fragments:
        text = fragment.text
        if not text:
            rebuilt.append(fragment)
            continue

        fragment_start = position
        fragment_end = position + len(text)
        cursor = 0

        while index < len(normalized) and normalized[index].start < fragment_end:
            current = normalized[index]
            if current.end <= fragment_start:
                index += 1
                continue

            start_in = max(current.start - fragment_start, 0)
            end_in = min(current.end - fragment_start, len(text))
            if start_in > cursor:
                rebuilt.append(StyledText(text[cursor:start_in], fragment.style))
            if end_in > start_in:
                inside = StyledText(text[start_in:end_in], fragment.style)
                # A span crossing fragments continues the wrapper opened by the previous one.
                if (
                    start_in == 0
                    and fragment_start > current.start
                    and rebuilt
                    and isinstance(rebuilt[-1], InlineDiff)
                ):
                    rebuilt[-1].children.append(inside)
                else:
                    rebuilt.append(InlineDiff(kind, [inside]))
            cursor = end_in

            if current.end <= fragment_end:
                index += 1
            else:
                break

        if cursor < len(text):
            rebuilt.append(StyledText(text[cursor:], fragment.style))
        position = fragment_end

    line.fragments = rebuilt


def highlight_inline_diffs(
    blocks: list[CodeBlock],
    *,
    max_changed_chars: int = MAX_CHANGED_CHARS,
    max_changed_ratio: float = MAX_CHANGED_RATIO,
) -> list[CodeBlock]:
    """Add inline diff markers to every block holding both additions and removals.

    A run of removed lines immediately followed by a run of added lines is
    one transition; its lines are paired positionally and surplus lines keep
    only their line-level highlight. Blocks are modified in place and returned.
    """
    for block in blocks:
        if not block.is_diff:
            continue
        lines = block.lines
        i = 0
        while i < len(lines):
            if lines[i].kind != "remove":
                i += 1
                continue

            removed: list[DiffLine] = []
            while i < len(lines) and lines[i].kind == "remove":
                removed.append(lines[i])
                i += 1
            added: list[DiffLine] = []
            while i < len(lines) and lines[i].kind == "add":
                added.append(lines[i])
                i += 1

            for removed_line, added_line in zip(removed, added):
                ranges = compute_inline_diff_ranges(
                    removed_line.plain_text,
                    added_line.plain_text,
                    max_changed_chars=max_changed_chars,
                    max_changed_ratio=max_changed_ratio,
                )
                if ranges is None:
                    continue
                wrap_ranges_in_line(removed_line, ranges.removed, "removed-inline")
                wrap_ranges_in_line(added_line, ranges.added, "added-inline")
    return blocks
