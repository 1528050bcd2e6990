"""Keyed cache of completed classification results.

State is held in two co-located projections:

* the durable projection (results, recent ids, bookmarked ids) is written to
  the persistence layer on every mutation and reloaded on start-up;
* the transient projection (per-key loading and error flags) lives only for
  the lifetime of the process.

Reads merge both, so a result can be reported as loading while its stale
cached value is still returned.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, ValidationError

from hscode_agent.clients.sqlite_store import SQLiteStore
from hscode_agent.core.errors import NotFoundError, PersistenceError
from hscode_agent.schemas import AnalysisResult

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 10


class _DurableResultState(BaseModel):
    results: dict[str, AnalysisResult] = Field(default_factory=dict)
    recent_results: list[str] = Field(default_factory=list)
    bookmarked_results: list[str] = Field(default_factory=list)


@dataclass(slots=True)
class _TransientResultState:
    loading: set[str] = field(default_factory=set)
    errors: dict[str, str] = field(default_factory=dict)


class ResultCacheSnapshot(BaseModel):
    results: dict[str, AnalysisResult]
    recent_results: list[str]
    bookmarked_results: list[str]
    loading_results: list[str]
    result_errors: dict[str, str]


class ResultCache:
    """Process-wide result cache with bookmarking and recency tracking."""

    STORAGE_KEY = "result-storage"

    def __init__(
        self,
        store: SQLiteStore | None = None,
        *,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ) -> None:
        self._store = store
        self._recent_limit = recent_limit
        self._lock = threading.RLock()
        self._durable = self._load()
        self._transient = _TransientResultState()

    def save(self, result_id: str, result: AnalysisResult) -> AnalysisResult:
        """Upsert ``result`` and move ``result_id`` to the front of the recent list."""
        if result.id != result_id:
            raise ValueError(
                f"Result id mismatch: key '{result_id}' != payload '{result.id}'"
            )
        stored = result.model_copy(update={"is_bookmarked": False})
        with self._lock:
            previous = self._durable.results.get(result_id)
            if previous is not None and previous != stored:
                logger.info("Replacing cached result '%s' with newer content", result_id)
            results = {**self._durable.results, result_id: stored}
            recent = self._push_recent(self._durable.recent_results, result_id)
            self._commit(
                _DurableResultState(
                    results=results,
                    recent_results=recent,
                    bookmarked_results=list(self._durable.bookmarked_results),
                )
            )
        return self._merged(stored)

    def get(self, result_id: str) -> AnalysisResult | None:
        """Return the cached result or ``None``; never fetches."""
        with self._lock:
            result = self._durable.results.get(result_id)
            return self._merged(result) if result is not None else None

    def require(self, result_id: str) -> AnalysisResult:
        result = self.get(result_id)
        if result is None:
            raise NotFoundError("Result", result_id)
        return result

    def delete(self, result_id: str) -> None:
        with self._lock:
            if result_id not in self._durable.results:
                raise NotFoundError("Result", result_id)
            results = {
                key: value
                for key, value in self._durable.results.items()
                if key != result_id
            }
            self._commit(
                _DurableResultState(
                    results=results,
                    recent_results=[
                        key for key in self._durable.recent_results if key != result_id
                    ],
                    bookmarked_results=[
                        key
                        for key in self._durable.bookmarked_results
                        if key != result_id
                    ],
                )
            )
            self._transient.loading.discard(result_id)
            self._transient.errors.pop(result_id, None)

    def toggle_bookmark(self, result_id: str) -> bool:
        """Flip the bookmark flag and return the new value.

        Raises ``NotFoundError`` for ids that are not cached.
        """
        with self._lock:
            if result_id not in self._durable.results:
                raise NotFoundError("Result", result_id)
            bookmarked = list(self._durable.bookmarked_results)
            if result_id in bookmarked:
                bookmarked.remove(result_id)
                now_bookmarked = False
            else:
                bookmarked.append(result_id)
                now_bookmarked = True
            self._commit(
                _DurableResultState(
                    results=dict(self._durable.results),
                    recent_results=list(self._durable.recent_results),
                    bookmarked_results=bookmarked,
                )
            )
        return now_bookmarked

    def is_bookmarked(self, result_id: str) -> bool:
        with self._lock:
            return result_id in self._durable.bookmarked_results

    def get_recent(self, limit: int | None = None) -> list[AnalysisResult]:
        count = self._recent_limit if limit is None else max(limit, 0)
        with self._lock:
            return [
                self._merged(self._durable.results[key])
                for key in self._durable.recent_results[:count]
                if key in self._durable.results
            ]

    def recent_ids(self) -> list[str]:
        with self._lock:
            return list(self._durable.recent_results)

    def get_bookmarked(self) -> list[AnalysisResult]:
        with self._lock:
            return [
                self._merged(self._durable.results[key])
                for key in self._durable.bookmarked_results
                if key in self._durable.results
            ]

    def bookmarked_ids(self) -> list[str]:
        with self._lock:
            return list(self._durable.bookmarked_results)

    def clear_recent(self) -> None:
        with self._lock:
            self._commit(
                _DurableResultState(
                    results=dict(self._durable.results),
                    recent_results=[],
                    bookmarked_results=list(self._durable.bookmarked_results),
                )
            )

    def set_loading(self, result_id: str, loading: bool) -> None:
        with self._lock:
            if loading:
                self._transient.loading.add(result_id)
            else:
                self._transient.loading.discard(result_id)

    def is_loading(self, result_id: str) -> bool:
        with self._lock:
            return result_id in self._transient.loading

    def set_error(self, result_id: str, message: str | None) -> None:
        with self._lock:
            if message:
                self._transient.errors[result_id] = message
            else:
                self._transient.errors.pop(result_id, None)

    def clear_error(self, result_id: str) -> None:
        self.set_error(result_id, None)

    def get_error(self, result_id: str) -> str | None:
        with self._lock:
            return self._transient.errors.get(result_id)

    def snapshot(self) -> ResultCacheSnapshot:
        with self._lock:
            return ResultCacheSnapshot(
                results={
                    key: self._merged(value)
                    for key, value in self._durable.results.items()
                },
                recent_results=list(self._durable.recent_results),
                bookmarked_results=list(self._durable.bookmarked_results),
                loading_results=sorted(self._transient.loading),
                result_errors=dict(self._transient.errors),
            )

    def reset(self) -> None:
        """Drop every cached result and flag (used on sign-out)."""
        with self._lock:
            self._commit(_DurableResultState())
            self._transient = _TransientResultState()

    def __len__(self) -> int:
        with self._lock:
            return len(self._durable.results)

    def _merged(self, result: AnalysisResult) -> AnalysisResult:
        return result.model_copy(
            update={"is_bookmarked": result.id in self._durable.bookmarked_results}
        )

    def _push_recent(self, recent: list[str], result_id: str) -> list[str]:
        deduplicated = [key for key in recent if key != result_id]
        return [result_id, *deduplicated][: self._recent_limit]

    def _commit(self, state: _DurableResultState) -> None:
        """Persist ``state`` and only then make it current."""
        if self._store is not None:
            self._store.put(self.STORAGE_KEY, state.model_dump(mode="json", by_alias=True))
        self._durable = state

    def _load(self) -> _DurableResultState:
        if self._store is None:
            return _DurableResultState()
        raw = self._store.get(self.STORAGE_KEY)
        if raw is None:
            return _DurableResultState()
        try:
            state = _DurableResultState.model_validate(raw)
        except ValidationError as exc:
            raise PersistenceError(f"Stored result cache is corrupt: {exc}") from exc
        # Heal invariants in case the document was edited by hand.
        recent = [key for key in dict.fromkeys(state.recent_results) if key in state.results]
        bookmarked = [
            key for key in dict.fromkeys(state.bookmarked_results) if key in state.results
        ]
        state.recent_results = recent[: self._recent_limit]
        state.bookmarked_results = bookmarked
        logger.debug("Loaded %d cached result(s)", len(state.results))
        return state


__all__ = ["DEFAULT_RECENT_LIMIT", "ResultCache", "ResultCacheSnapshot"]
