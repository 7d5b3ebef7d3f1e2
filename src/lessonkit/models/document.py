from __future__ import annotations

from pathlib import PurePosixPath
from typing import Literal

from pydantic import BaseModel, model_validator

ButtonKind = Literal["problem", "solution", "playground"]
BUTTON_KINDS: tuple[ButtonKind, ...] = ("problem", "solution", "playground")


class LineRange(BaseModel, frozen=True):
    """1-indexed inclusive line span."""

    start: int
    end: int

    def contains(self, other: LineRange) -> bool:
        return self.start <= other.start and other.end <= self.end

    def __str__(self) -> str:
        return str(self.start) if self.start == self.end else f"{self.start}-{self.end}"


class EmbedSpec(BaseModel):
    """A validated ``<CodeFile>`` directive."""

    file_path: str  # As written by the author, forward slashes
    full_path: str  # Resolved against the document directory
    lines: list[str]
    ranges: list[LineRange] = []  # Empty: the whole file
    highlight_ranges: list[LineRange] = []
    show_line_numbers: bool = False
    allow_copy: bool = True
    buttons: list[ButtonKind] = []

    @model_validator(mode="after")
    def _check_ranges(self) -> EmbedSpec:
        for previous, current in zip(self.ranges, self.ranges[1:]):
            if previous.end >= current.start:
                raise ValueError("ranges must be ascending and non-overlapping")
        sections = self.sections
        for highlight in self.highlight_ranges:
            if not any(section.contains(highlight) for section in sections):
                raise ValueError(f"highlight {highlight} is outside every range")
        return self

    @property
    def sections(self) -> list[LineRange]:
        """Declared ranges, or the whole file when none were declared."""
        if self.ranges:
            return list(self.ranges)
        return [LineRange(start=1, end=max(len(self.lines), 1))]

    @property
    def language(self) -> str:
        return PurePosixPath(self.file_path).suffix.removeprefix(".")


class EmbeddedFile(BaseModel):
    """One row of the embedded-files ledger produced by a compile."""

    file: str
    hash: str
    line: int | None = None
    warning: str | None = None  # Baseline hash the warning clears at
    error: bool = False


class EmbedDriftRecord(BaseModel):
    """Cross-compile drift state for one embed identity."""

    embed_identity: str
    file: str
    last_content_hash: str
    pending_warning_baseline: str | None = None
    line: int | None = None


class CompiledDocument(BaseModel):
    """Compiled output handed to the page renderer."""

    code: str
    title: str | None = None
    video_embed_urls: list[str] = []
    errors: list[str] = []
    embedded_files: list[EmbeddedFile] = []
