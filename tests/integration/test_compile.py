"""End-to-end compile tests: markdown on disk through the cache and back."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from lessonkit.config import CacheSettings, Settings
from lessonkit.session import open_compiler

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from lessonkit.compiler import Compiler
    from lessonkit.drift import DriftLedger
    from lessonkit.store import SqliteCacheStore

    from .conftest import CompileLog


def _key(path: Path) -> str:
    return f"file:{path.as_posix()}"


class TestCaching:
    async def test_second_compile_is_served_from_cache(
        self,
        compiler: Compiler,
        store: SqliteCacheStore,
        compile_log: CompileLog,
        readme: Path,
    ) -> None:
        first = await compiler.compile(readme)
        entry = await store.get(_key(readme))
        second = await compiler.compile(readme)

        assert second == first
        assert compile_log.count == 1
        again = await store.get(_key(readme))
        assert entry is not None and again is not None
        assert again.created_time_ms == entry.created_time_ms

    async def test_document_edit_recompiles(
        self,
        compiler: Compiler,
        store: SqliteCacheStore,
        compile_log: CompileLog,
        readme: Path,
        edit: Callable[[Path, str], None],
    ) -> None:
        await compiler.compile(readme)
        entry = await store.get(_key(readme))
        await asyncio.sleep(0.01)

        edit(readme, readme.read_text().replace("# 1. Counter", "# 1. Clicker"))
        result = await compiler.compile(readme)

        assert result.title == "Clicker"
        assert compile_log.count == 2
        newer = await store.get(_key(readme))
        assert entry is not None and newer is not None
        assert newer.created_time_ms > entry.created_time_ms

    async def test_embedded_file_edit_recompiles(
        self,
        compiler: Compiler,
        compile_log: CompileLog,
        lesson_dir: Path,
        readme: Path,
        edit: Callable[[Path, str], None],
    ) -> None:
        await compiler.compile(readme)
        app = lesson_dir / "src" / "app.tsx"

        edit(app, app.read_text() + "export default Counter\n")
        await compiler.compile(readme)

        assert compile_log.count == 2

    async def test_force_fresh_recompiles(
        self, compiler: Compiler, compile_log: CompileLog, readme: Path
    ) -> None:
        await compiler.compile(readme)
        await compiler.compile(readme, force_fresh=True)
        assert compile_log.count == 2

    async def test_concurrent_compiles_share_one_computation(
        self,
        compiler: Compiler,
        store: SqliteCacheStore,
        compile_log: CompileLog,
        readme: Path,
    ) -> None:
        results = await asyncio.gather(*(compiler.compile(readme) for _ in range(8)))

        assert compile_log.count == 1
        assert all(result == results[0] for result in results)
        assert await store.get(_key(readme)) is not None


class TestDrift:
    async def test_edit_inside_range_warns_until_reverted(
        self,
        compiler: Compiler,
        drift_ledger: DriftLedger,
        lesson_dir: Path,
        readme: Path,
        edit: Callable[[Path, str], None],
    ) -> None:
        app = lesson_dir / "src" / "app.tsx"
        original = app.read_text()

        clean = await compiler.compile(readme)
        assert 'data-variant="warning"' not in clean.code

        edit(app, original.replace("'react'", "'preact/hooks'"))
        drifted = await compiler.compile(readme)
        assert 'data-variant="warning"' in drifted.code
        assert "file app.tsx content was changed" in drifted.code
        assert drifted.embedded_files[0].warning is not None
        assert drifted.embedded_files[0].line == 5

        edit(app, original)
        reverted = await compiler.compile(readme)
        assert 'data-variant="warning"' not in reverted.code
        assert reverted.embedded_files[0].warning is None
        assert all(
            record.pending_warning_baseline is None for record in drift_ledger.records()
        )

    async def test_acknowledged_warning_is_gone_after_recompile(
        self,
        compiler: Compiler,
        drift_ledger: DriftLedger,
        lesson_dir: Path,
        readme: Path,
        edit: Callable[[Path, str], None],
    ) -> None:
        app = lesson_dir / "src" / "app.tsx"
        await compiler.compile(readme)
        edit(app, app.read_text().replace("'react'", "'preact/hooks'"))
        drifted = await compiler.compile(readme)

        (record,) = drift_ledger.records()
        assert drift_ledger.acknowledge(record.embed_identity) is True

        result = await compiler.compile(readme, force_fresh=True)
        assert 'data-variant="warning"' not in result.code
        assert drifted.embedded_files[0].hash == result.embedded_files[0].hash


class TestSession:
    async def test_open_compiler_persists_between_sessions(
        self, tmp_path: Path, readme: Path
    ) -> None:
        db_path = tmp_path / "state" / "cache.db"
        settings = Settings(cache=CacheSettings(db_path=str(db_path)))

        async with open_compiler(settings) as compiler:
            first = await compiler.compile(readme)
        assert db_path.exists()

        async with open_compiler(settings) as compiler:
            entry = await compiler.cache._store.get(_key(readme))
            second = await compiler.compile(readme)

        assert entry is not None
        assert second == first

    async def test_in_memory_database(self, readme: Path) -> None:
        settings = Settings(cache=CacheSettings(db_path=":memory:"))
        async with open_compiler(settings) as compiler:
            result = await compiler.compile(readme)
        assert result.title == "Counter"
