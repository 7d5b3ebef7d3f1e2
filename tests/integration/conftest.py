"""Integration test fixtures.

Wraps the shared ``compiler`` fixture so tests can count real compiles
(cache misses) without stubbing any part of the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path

    from lessonkit.compiler import Compiler
    from lessonkit.models.document import CompiledDocument


@dataclass
class CompileLog:
    paths: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.paths)


@pytest.fixture()
def compile_log(compiler: Compiler, monkeypatch: pytest.MonkeyPatch) -> CompileLog:
    """Record every document the compiler actually recompiles."""
    log = CompileLog()
    original = compiler._compile_document

    def counting(full_path: str) -> CompiledDocument:
        log.paths.append(full_path)
        return original(full_path)

    monkeypatch.setattr(compiler, "_compile_document", counting)
    return log


@pytest.fixture()
def readme(lesson_dir: Path) -> Path:
    """Lesson README embedding the first three lines of ``src/app.tsx``."""
    path = lesson_dir / "README.md"
    path.write_text(
        "# 1. Counter\n\n"
        "Start from the import:\n\n"
        '<CodeFile file="src/app.tsx" range="1-3" highlight="1" />\n',
        encoding="utf-8",
    )
    return path
