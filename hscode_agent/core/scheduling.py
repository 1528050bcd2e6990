"""Clocks and a keyed deferred-task scheduler.

Time-based behaviour (notification auto-expiry, cache staleness) reads the
current time from an injected ``Clock`` and defers work through
``TaskScheduler`` so tests can move time forward explicitly.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime:  # pragma: no cover - protocol
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> datetime:
        self._now = self._now + delta
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value


@dataclass(slots=True)
class ScheduledTask:
    key: str
    due_at: datetime
    action: Callable[[], None]


class TaskScheduler:
    """Cancellable deferred actions keyed by an identifier."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._tasks: dict[str, ScheduledTask] = {}

    def schedule(
        self, key: str, due_at: datetime, action: Callable[[], None]
    ) -> ScheduledTask:
        """Register ``action`` to run at ``due_at``, replacing any task under ``key``."""
        task = ScheduledTask(key=key, due_at=due_at, action=action)
        self._tasks[key] = task
        return task

    def cancel(self, key: str) -> bool:
        return self._tasks.pop(key, None) is not None

    def is_scheduled(self, key: str) -> bool:
        return key in self._tasks

    def due_at(self, key: str) -> datetime | None:
        task = self._tasks.get(key)
        return task.due_at if task else None

    def clear(self) -> None:
        self._tasks.clear()

    def __len__(self) -> int:
        return len(self._tasks)

    def run_due(self) -> list[str]:
        """Run every task whose due time has passed and return their keys."""
        now = self._clock.now()
        due = sorted(
            (task for task in self._tasks.values() if task.due_at <= now),
            key=lambda task: task.due_at,
        )
        executed: list[str] = []
        for task in due:
            # An earlier action may have cancelled or replaced this one.
            if self._tasks.get(task.key) is not task:
                continue
            del self._tasks[task.key]
            try:
                task.action()
            except Exception:
                logger.exception("Scheduled task '%s' failed", task.key)
                continue
            executed.append(task.key)
        if executed:
            logger.debug("Ran %d scheduled task(s)", len(executed))
        return executed

    async def run_forever(self, interval_seconds: float) -> None:
        """Pump due tasks until cancelled."""
        while True:
            self.run_due()
            await asyncio.sleep(interval_seconds)


__all__ = [
    "Clock",
    "ManualClock",
    "ScheduledTask",
    "SystemClock",
    "TaskScheduler",
]
