"""Combine independently fetched data sources into one loading/error view."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable

from hscode_agent.core.scheduling import Clock, SystemClock
from hscode_agent.schemas import CombinedQueryView, QuerySnapshot

logger = logging.getLogger(__name__)


def _always_enabled() -> bool:
    return True


@dataclass(slots=True)
class QuerySource:
    """A named asynchronous fetcher with its own cache lifetime."""

    name: str
    fetch: Callable[[], Awaitable[Any]]
    stale_time: timedelta = timedelta(minutes=1)
    gc_time: timedelta = timedelta(minutes=5)
    enabled: Callable[[], bool] = _always_enabled


@dataclass(slots=True)
class _QueryState:
    status: str = "idle"
    data: Any = None
    error: str | None = None
    updated_at: datetime | None = None
    is_fetching: bool = False
    has_data: bool = False


@dataclass(slots=True)
class _Entry:
    source: QuerySource
    state: _QueryState = field(default_factory=_QueryState)
    inflight: asyncio.Task | None = None


class AggregatedQueryCoordinator:
    """Fetch several sources concurrently and report them as one.

    ``is_loading`` is true while any enabled source is fetching without data
    to show, ``is_error`` when any enabled source failed, and ``is_success``
    once every enabled source has settled (successfully or not). Disabled
    sources are left out of every aggregate.
    """

    def __init__(self, sources: Iterable[QuerySource], *, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._entries: dict[str, _Entry] = {}
        for source in sources:
            if source.name in self._entries:
                raise ValueError(f"Duplicate query source '{source.name}'")
            self._entries[source.name] = _Entry(source=source)

    @property
    def names(self) -> list[str]:
        return list(self._entries)

    async def fetch(self, *, force: bool = False) -> CombinedQueryView:
        """Refresh every enabled source that is missing or stale, concurrently."""
        pending = [
            self._ensure_fetch(entry)
            for entry in self._entries.values()
            if entry.source.enabled() and (force or self._needs_fetch(entry))
        ]
        if pending:
            await asyncio.gather(*pending)
        return self.combine()

    async def refetch(self, name: str) -> QuerySnapshot:
        entry = self._entry(name)
        if entry.source.enabled():
            await self._ensure_fetch(entry)
        return self._snapshot(entry)

    def invalidate(self, name: str | None = None) -> None:
        """Mark one source (or all of them) stale so the next fetch reloads it."""
        targets = [self._entry(name)] if name else list(self._entries.values())
        for entry in targets:
            entry.state.updated_at = None

    def collect_garbage(self) -> list[str]:
        """Drop cached data older than each source's ``gc_time``."""
        now = self._clock.now()
        evicted: list[str] = []
        for name, entry in self._entries.items():
            state = entry.state
            if state.is_fetching or state.updated_at is None:
                continue
            if now - state.updated_at >= entry.source.gc_time:
                entry.state = _QueryState()
                evicted.append(name)
        if evicted:
            logger.debug("Evicted cached queries: %s", ", ".join(evicted))
        return evicted

    def snapshot(self, name: str) -> QuerySnapshot:
        return self._snapshot(self._entry(name))

    def combine(self) -> CombinedQueryView:
        snapshots = {name: self._snapshot(entry) for name, entry in self._entries.items()}
        active = [item for item in snapshots.values() if item.enabled]
        return CombinedQueryView(
            sources=snapshots,
            is_loading=any(item.status == "loading" for item in active),
            is_fetching=any(item.is_fetching for item in active),
            is_error=any(item.status == "error" for item in active),
            is_success=all(item.status in ("success", "error") for item in active),
            errors=[item.error for item in active if item.error],
        )

    def _needs_fetch(self, entry: _Entry) -> bool:
        state = entry.state
        if state.updated_at is None:
            return True
        return self._clock.now() - state.updated_at >= entry.source.stale_time

    def _ensure_fetch(self, entry: _Entry) -> Awaitable[None]:
        # Concurrent callers share one in-flight fetch per source.
        if entry.inflight is None or entry.inflight.done():
            entry.inflight = asyncio.ensure_future(self._run_fetch(entry))
        return entry.inflight

    async def _run_fetch(self, entry: _Entry) -> None:
        state = entry.state
        state.is_fetching = True
        if not state.has_data:
            state.status = "loading"
        try:
            data = await entry.source.fetch()
        except Exception as exc:
            logger.warning("Query '%s' failed: %s", entry.source.name, exc)
            state.status = "error"
            state.error = str(exc) or exc.__class__.__name__
        else:
            state.status = "success"
            state.data = data
            state.has_data = True
            state.error = None
        finally:
            state.is_fetching = False
            state.updated_at = self._clock.now()

    def _snapshot(self, entry: _Entry) -> QuerySnapshot:
        state = entry.state
        enabled = entry.source.enabled()
        return QuerySnapshot(
            name=entry.source.name,
            status=state.status if enabled else "idle",
            enabled=enabled,
            is_fetching=state.is_fetching,
            is_stale=self._needs_fetch(entry),
            data=state.data,
            error=state.error,
            updated_at=state.updated_at,
        )

    def _entry(self, name: str) -> _Entry:
        try:
            return self._entries[name]
        except KeyError:
            raise KeyError(f"Unknown query source '{name}'") from None


__all__ = ["AggregatedQueryCoordinator", "QuerySource"]
