"""Process-level wiring.

Responsibilities (and nothing more):
- Configure structlog
- Open the cache database and build the ``Compiler`` for a session
- Close everything again on exit
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from lessonkit import __version__
from lessonkit.cache import CompilationCache
from lessonkit.compiler import Compiler
from lessonkit.config import Settings
from lessonkit.drift import DriftLedger
from lessonkit.highlighter import PygmentsHighlighter
from lessonkit.store import SqliteCacheStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from lessonkit.protocols import DriftStoreProtocol

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout belongs to whoever embeds the compiler
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def open_compiler(
    settings: Settings | None = None,
    *,
    drift_ledger: DriftStoreProtocol | None = None,
) -> AsyncGenerator[Compiler, None]:
    """Create and tear down every shared resource of a compile session."""
    settings = settings or Settings()
    setup_logging(settings)

    log.info(
        "compiler_starting",
        version=__version__,
        trust_mode=settings.cache.trust_mode,
    )

    db_target = settings.cache.db_path
    if db_target != ":memory:":
        db_path = Path(db_target).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db_target = str(db_path)
    db = await aiosqlite.connect(db_target)
    cache: CompilationCache[object] | None = None

    try:
        store = SqliteCacheStore(db)
        await store.init_db()
        await store.cleanup_expired(settings.cache.cleanup_grace_days)

        cache = CompilationCache(
            store,
            trust_mode=settings.cache.trust_mode,
            mtime_epsilon_ms=settings.cache.mtime_epsilon_ms,
        )
        compiler = Compiler(
            settings,
            cache,
            drift_ledger if drift_ledger is not None else DriftLedger(),
            PygmentsHighlighter(settings.highlight.style_prefix),
        )

        log.info("compiler_started", db_path=db_target)
        yield compiler
    finally:
        if cache is not None:
            # Let background refreshes finish before the connection goes away.
            await cache.wait_idle()
        await db.close()
        log.info("compiler_stopped")
