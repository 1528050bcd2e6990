"""Dashboard view assembled from sessions, cached results and notification data."""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import timedelta
from typing import Any

from hscode_agent.core.scheduling import Clock, SystemClock
from hscode_agent.schemas import CombinedQueryView
from hscode_agent.services.analysis_workflow import AnalysisWorkflow
from hscode_agent.services.notification_ledger import NotificationLedger
from hscode_agent.services.notification_settings import NotificationSettingsService
from hscode_agent.services.query_coordinator import AggregatedQueryCoordinator, QuerySource
from hscode_agent.services.result_cache import ResultCache

logger = logging.getLogger(__name__)

# (stale_time, gc_time) per source.
DASHBOARD_CACHE_CONFIG: dict[str, tuple[timedelta, timedelta]] = {
    "sessions": (timedelta(minutes=1), timedelta(minutes=5)),
    "recent_results": (timedelta(minutes=5), timedelta(minutes=15)),
    "notifications": (timedelta(minutes=3), timedelta(minutes=10)),
    "notification_settings": (timedelta(minutes=10), timedelta(minutes=30)),
}

_ANONYMOUS = "__anonymous__"
DEFAULT_MAX_VIEWERS = 64


class DashboardService:
    """Build and reuse one query coordinator per viewer.

    At most ``max_viewers`` coordinators are kept; the least recently viewed
    one is dropped when a new viewer arrives.
    """

    def __init__(
        self,
        *,
        workflow: AnalysisWorkflow,
        results: ResultCache,
        ledger: NotificationLedger,
        settings_service: NotificationSettingsService,
        clock: Clock | None = None,
        max_viewers: int = DEFAULT_MAX_VIEWERS,
    ) -> None:
        self._workflow = workflow
        self._results = results
        self._ledger = ledger
        self._settings_service = settings_service
        self._clock = clock or SystemClock()
        self._max_viewers = max(1, max_viewers)
        self._coordinators: OrderedDict[str, AggregatedQueryCoordinator] = OrderedDict()

    async def view(self, user_id: str | None = None, *, force: bool = False) -> CombinedQueryView:
        coordinator = self.coordinator_for(user_id)
        coordinator.collect_garbage()
        return await coordinator.fetch(force=force)

    def coordinator_for(self, user_id: str | None) -> AggregatedQueryCoordinator:
        key = user_id or _ANONYMOUS
        coordinator = self._coordinators.get(key)
        if coordinator is not None:
            self._coordinators.move_to_end(key)
            return coordinator

        coordinator = self._coordinators[key] = self._build(user_id)
        while len(self._coordinators) > self._max_viewers:
            evicted, _ = self._coordinators.popitem(last=False)
            logger.debug("Dropping dashboard coordinator for %s", evicted)
        return coordinator

    def __len__(self) -> int:
        return len(self._coordinators)

    def invalidate(self) -> None:
        """Mark every viewer's data stale, e.g. after a session completes."""
        for coordinator in self._coordinators.values():
            coordinator.invalidate()

    def reset(self) -> None:
        self._coordinators.clear()

    def _build(self, user_id: str | None) -> AggregatedQueryCoordinator:
        async def sessions() -> list[dict[str, Any]]:
            return [
                session.model_dump(mode="json", by_alias=True)
                for session in self._workflow.list_sessions()
            ]

        async def recent_results() -> dict[str, Any]:
            return {
                "recent": [
                    result.model_dump(mode="json", by_alias=True)
                    for result in self._results.get_recent()
                ],
                "bookmarkedIds": self._results.bookmarked_ids(),
            }

        async def notifications() -> dict[str, Any]:
            return {
                "unreadCount": self._ledger.unread_count,
                "unread": [
                    entry.model_dump(mode="json", by_alias=True)
                    for entry in self._ledger.unread()
                ],
            }

        async def notification_settings() -> dict[str, Any]:
            settings = await self._settings_service.get(user_id or "")
            return settings.model_dump(mode="json", by_alias=True)

        def signed_in() -> bool:
            return user_id is not None

        sources = [
            _source("sessions", sessions),
            _source("recent_results", recent_results),
            _source("notifications", notifications),
            _source("notification_settings", notification_settings, enabled=signed_in),
        ]
        return AggregatedQueryCoordinator(sources, clock=self._clock)


def _source(name: str, fetch, *, enabled=None) -> QuerySource:
    stale_time, gc_time = DASHBOARD_CACHE_CONFIG[name]
    source = QuerySource(name=name, fetch=fetch, stale_time=stale_time, gc_time=gc_time)
    if enabled is not None:
        source.enabled = enabled
    return source


__all__ = ["DASHBOARD_CACHE_CONFIG", "DashboardService"]
