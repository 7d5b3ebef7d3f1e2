"""Get-or-compute cache keyed by file identity.

Lookup order for ``get_or_compute``:

1. ``force_fresh`` skips straight to recomputation.
2. Trust mode returns any stored entry without looking at the filesystem.
3. Otherwise the stored fingerprints of every watched file are checked
   (size + mtime first, content hash only when those differ).
4. Unchanged files: the entry is served while its TTL holds, served stale
   with a background refresh inside the SWR window, recomputed after that.
5. Recomputation is single-flight: concurrent callers for the same key await
   one shared task, so at most one compute per key runs at a time.

Store failures surface as ``CacheIOError`` and are handled here as a miss.
A failing compute propagates to every caller waiting on it; nothing is stored.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog
from pydantic import BaseModel

from lessonkit.errors import CacheIOError
from lessonkit.fingerprint import Freshness, capture_all, check_fingerprints
from lessonkit.models.cache import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from os import PathLike

    from lessonkit.protocols import CacheStoreProtocol

log = structlog.get_logger()

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEvent:
    """One decision taken by ``get_or_compute``, reported to observers."""

    name: str
    key: str
    detail: dict[str, Any] = field(default_factory=dict)


def log_cache_event(event: CacheEvent) -> None:
    """Default observer: one structlog debug line per event."""
    if event.name in {"read_error", "write_error", "refresh_failed"}:
        log.warning(f"cache_{event.name}", key=event.key, **event.detail)
        return
    log.debug(f"cache_{event.name}", key=event.key, **event.detail)


def should_force_fresh(force_fresh: bool | str | None, key: str) -> bool:
    """Resolve ``force_fresh``: a bool, or a comma-separated list of keys."""
    if isinstance(force_fresh, bool):
        return force_fresh
    if not force_fresh:
        return False
    return key in {part.strip() for part in force_fresh.split(",")}


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class _Reporter:
    def __init__(self, key: str, observer: Callable[[CacheEvent], None] | None) -> None:
        self.key = key
        self.observer = observer

    def __call__(self, name: str, **detail: Any) -> None:
        event = CacheEvent(name=name, key=self.key, detail=detail)
        log_cache_event(event)
        if self.observer is not None:
            self.observer(event)


class CompilationCache(Generic[V]):
    """Dual-layer (fingerprint, then content hash) get-or-compute store."""

    def __init__(
        self,
        store: CacheStoreProtocol,
        *,
        trust_mode: bool = False,
        mtime_epsilon_ms: float = 1.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self._trust_mode = trust_mode
        self._mtime_epsilon_ms = mtime_epsilon_ms
        self._clock = clock or (lambda: time.time() * 1000)
        self._inflight: dict[str, asyncio.Task[V]] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._background: set[asyncio.Task[None]] = set()

    @property
    def trust_mode(self) -> bool:
        return self._trust_mode

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[V]],
        *,
        ttl_ms: float | None = None,
        swr_ms: float = 0,
        force_fresh: bool | str | None = False,
        watch: Callable[[V], Iterable[str | PathLike[str]]] | None = None,
        validate: Callable[[Any], V] | None = None,
        observer: Callable[[CacheEvent], None] | None = None,
    ) -> V:
        """Return the cached value for ``key`` or compute, store and return it.

        ``watch`` names the files a value was derived from; their fingerprints
        are stored with the entry and decide staleness on later calls.
        ``validate`` turns the stored JSON back into a value; raising
        ``ValueError`` (pydantic's ``ValidationError`` included) is a miss.
        """
        report = _Reporter(key, observer)
        recompute = _Recompute(key, compute, ttl_ms, swr_ms, watch, report)

        if should_force_fresh(force_fresh, key):
            report("force_fresh")
            return await self._compute_shared(recompute)

        inflight = self._inflight.get(key)
        if inflight is not None:
            report("inflight_join")
            return await asyncio.shield(inflight)

        # Callers arriving while the first one reads, checks and computes wait
        # here and then find the freshly written entry.
        async with self._locks[key]:
            return await self._lookup(recompute, validate)

    async def _lookup(self, recompute: _Recompute[V], validate: Callable[[Any], V] | None) -> V:
        key, report = recompute.key, recompute.report

        entry = await self._read(key, report)
        if entry is None:
            report("miss")
            return await self._compute_shared(recompute)

        try:
            value = validate(entry.value) if validate is not None else entry.value
        except ValueError as exc:
            report("invalid_value", reason=str(exc))
            return await self._compute_shared(recompute)

        if self._trust_mode:
            report("hit", trust_mode=True)
            return value

        freshness = await asyncio.to_thread(
            check_fingerprints, entry.fingerprints, self._mtime_epsilon_ms
        )
        if freshness.freshness is Freshness.CHANGED:
            report("fingerprint_changed", path=freshness.changed_path)
            return await self._compute_shared(recompute)

        if freshness.freshness is Freshness.TOUCHED:
            # Same bytes, new mtime: keep the value and its created time.
            report("content_unchanged")
            entry = entry.model_copy(update={"fingerprints": freshness.fingerprints})
            await self._write(entry, report)

        now = self._clock()
        if entry.is_fresh(now):
            report("hit", created_time_ms=entry.created_time_ms)
            return value

        if entry.is_servable_stale(now):
            report("stale_served", created_time_ms=entry.created_time_ms)
            self._refresh_in_background(recompute)
            return value

        report("expired", created_time_ms=entry.created_time_ms)
        return await self._compute_shared(recompute)

    async def wait_idle(self) -> None:
        """Wait for in-flight computes and background refreshes to finish."""
        pending = [*self._inflight.values(), *self._background]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _compute_shared(self, recompute: _Recompute[V]) -> V:
        task = self._inflight.get(recompute.key)
        if task is None:
            task = asyncio.create_task(self._compute_and_store(recompute))
            self._inflight[recompute.key] = task
            task.add_done_callback(lambda done: self._forget(recompute.key, done))
        else:
            recompute.report("inflight_join")
        # A caller going away must not cancel the shared compute.
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[V]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _compute_and_store(self, recompute: _Recompute[V]) -> V:
        recompute.report("compute_start")
        started = time.perf_counter()
        value = await recompute.compute()

        paths = [str(path) for path in recompute.watch(value)] if recompute.watch else []
        fingerprints = await asyncio.to_thread(capture_all, paths)
        entry = CacheEntry(
            key=recompute.key,
            value=_jsonable(value),
            created_time_ms=self._clock(),
            ttl_ms=recompute.ttl_ms,
            swr_ms=recompute.swr_ms,
            fingerprints=fingerprints,
        )
        await self._write(entry, recompute.report)
        recompute.report(
            "compute_done",
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            watched=len(fingerprints),
        )
        return value

    def _refresh_in_background(self, recompute: _Recompute[V]) -> None:
        if recompute.key in self._inflight:
            return
        task = asyncio.create_task(self._background_refresh(recompute))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_refresh(self, recompute: _Recompute[V]) -> None:
        """Fire-and-forget refresh of a stale entry. All exceptions are logged."""
        try:
            await self._compute_shared(recompute)
        except Exception as exc:
            recompute.report("refresh_failed", error=repr(exc))

    async def _read(self, key: str, report: _Reporter) -> CacheEntry | None:
        try:
            return await self._store.get(key)
        except CacheIOError as exc:
            report("read_error", operation=exc.operation)
            return None

    async def _write(self, entry: CacheEntry, report: _Reporter) -> None:
        try:
            await self._store.set(entry)
        except CacheIOError as exc:
            report("write_error", operation=exc.operation)


@dataclass
class _Recompute(Generic[V]):
    key: str
    compute: Callable[[], Awaitable[V]]
    ttl_ms: float | None
    swr_ms: float
    watch: Callable[[V], Iterable[str | PathLike[str]]] | None
    report: _Reporter
