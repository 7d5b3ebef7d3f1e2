"""Line-range grammar for embed directives.

A range list is a comma-separated sequence of ``N`` or ``N-M`` spans,
1-indexed and inclusive: ``"1-10,15"``. Parsing is strict (no whitespace, no
open-ended spans); everything else is a validation message, never an
exception, so that one directive can report all of its problems at once.
"""

from __future__ import annotations

import re

from lessonkit.models.document import LineRange

_RANGE_LIST_RE = re.compile(r"^(?:\d+(?:-\d+)?,)*\d+(?:-\d+)?$")

INVALID_FORMAT = "Invalid range format"
NOT_IN_ORDER = "Range must be in order low-high"
OVERLAPPING = "Ranges must not overlap"
OUTSIDE_RANGE = "Highlight range must be within defined range"


def is_valid_format(value: str) -> bool:
    return bool(_RANGE_LIST_RE.match(value))


def parse_ranges(value: str) -> list[LineRange]:
    """Parse a range list without checking bounds or order.

    Raises ``ValueError`` when ``value`` does not match the grammar.
    """
    if not is_valid_format(value):
        raise ValueError(INVALID_FORMAT)
    ranges: list[LineRange] = []
    for part in value.split(","):
        start, _, end = part.partition("-")
        ranges.append(LineRange(start=int(start), end=int(end or start)))
    return ranges


def out_of_bounds(ranges: list[LineRange], line_count: int) -> bool:
    return any(bound < 1 or bound > line_count for r in ranges for bound in (r.start, r.end))


def is_in_order(ranges: list[LineRange]) -> bool:
    return all(r.start <= r.end for r in ranges)


def is_non_overlapping(ranges: list[LineRange]) -> bool:
    """Ascending and disjoint: each span starts after the previous one ends."""
    return all(previous.end < current.start for previous, current in zip(ranges, ranges[1:]))


def is_nested(highlights: list[LineRange], sections: list[LineRange]) -> bool:
    return all(any(section.contains(h) for section in sections) for h in highlights)


def check_range_list(
    value: str | None, line_count: int | None, *, disjoint: bool
) -> tuple[list[LineRange] | None, list[str]]:
    """Parse and validate one range attribute.

    Returns ``(ranges, messages)``. ``ranges`` is ``None`` when the attribute
    was absent or any check failed. Bounds are not checked when
    ``line_count`` is unknown (the file could not be read).
    """
    if value is None:
        return None, []
    try:
        ranges = parse_ranges(value)
    except ValueError as exc:
        return None, [str(exc)]

    messages: list[str] = []
    if line_count is not None and out_of_bounds(ranges, line_count):
        messages.append(f"Range must be between 1 and {line_count}")
    if not is_in_order(ranges):
        messages.append(NOT_IN_ORDER)
    elif disjoint and not is_non_overlapping(ranges):
        messages.append(OVERLAPPING)
    return (None if messages else ranges), messages


def format_ranges(ranges: list[LineRange]) -> str:
    return ",".join(str(r) for r in ranges)
