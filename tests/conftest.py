"""Shared test fixtures for the lessonkit test suite."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from lessonkit.cache import CompilationCache
from lessonkit.compiler import Compiler
from lessonkit.config import CacheSettings, Settings
from lessonkit.drift import DriftLedger
from lessonkit.highlighter import PygmentsHighlighter
from lessonkit.store import SqliteCacheStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path

APP_SOURCE = """\
import { useState } from 'react'

export function Counter() {
\tconst [count, setCount] = useState(0)
\treturn (
\t\t<button onClick={() => setCount(count + 1)}>
\t\t\t{count}
\t\t</button>
\t)
}
"""


@pytest.fixture()
async def store() -> AsyncIterator[SqliteCacheStore]:
    """Initialised SQLite store on an in-memory database."""
    async with aiosqlite.connect(":memory:") as db:
        store = SqliteCacheStore(db)
        await store.init_db()
        yield store


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(cache=CacheSettings(db_path=str(tmp_path / "cache.db")))


@pytest.fixture()
def drift_ledger() -> DriftLedger:
    return DriftLedger()


@pytest.fixture()
def compiler(store: SqliteCacheStore, settings: Settings, drift_ledger: DriftLedger) -> Compiler:
    """Compiler wired to the in-memory store with the real Pygments highlighter."""
    return Compiler(
        settings,
        CompilationCache(store),
        drift_ledger,
        PygmentsHighlighter(settings.highlight.style_prefix),
    )


@pytest.fixture()
def lesson_dir(tmp_path: Path) -> Path:
    """A problem step directory holding a 10-line TSX source file."""
    step = tmp_path / "exercises" / "01.counter" / "01.problem"
    (step / "src").mkdir(parents=True)
    (step / "src" / "app.tsx").write_text(APP_SOURCE, encoding="utf-8")
    return step


@pytest.fixture()
def edit() -> Callable[[Path, str], None]:
    """Rewrite a file and move its mtime forward well past the mtime epsilon.

    Without the explicit bump, two writes inside the same filesystem
    timestamp tick would look identical to a same-size edit.
    """

    def _edit(path: Path, text: str) -> None:
        before = path.stat().st_mtime_ns if path.exists() else 0
        path.write_text(text, encoding="utf-8")
        bumped = max(path.stat().st_mtime_ns, before + 2_000_000_000)
        os.utime(path, ns=(bumped, bumped))

    return _edit
