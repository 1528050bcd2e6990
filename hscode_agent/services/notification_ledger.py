"""Append-only ledger of user-facing notifications with read state and expiry."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError

from hscode_agent.clients.sqlite_store import SQLiteStore
from hscode_agent.core.errors import NotFoundError, PersistenceError
from hscode_agent.core.scheduling import Clock, SystemClock, TaskScheduler
from hscode_agent.schemas import Notification, NotificationCreate, NotificationLedgerView

logger = logging.getLogger(__name__)

DEFAULT_MAX_NOTIFICATIONS = 100
DEFAULT_TTL = timedelta(hours=24)


class _DurableLedgerState(BaseModel):
    notifications: list[Notification] = Field(default_factory=list)
    unread_count: int = 0


class NotificationLedger:
    """Newest-first notification list, capped and auto-expiring.

    Entries created without ``expires_at`` are removed ``default_ttl`` after
    creation by a task registered with the scheduler under the notification id.
    """

    STORAGE_KEY = "notification-store"

    def __init__(
        self,
        store: SQLiteStore | None = None,
        *,
        scheduler: TaskScheduler | None = None,
        clock: Clock | None = None,
        max_entries: int = DEFAULT_MAX_NOTIFICATIONS,
        default_ttl: timedelta = DEFAULT_TTL,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._scheduler = scheduler or TaskScheduler(self._clock)
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._lock = threading.RLock()
        self._state = self._load()
        self.panel_open = False
        self._rearm_expiry()

    @property
    def unread_count(self) -> int:
        with self._lock:
            return self._state.unread_count

    def add(self, payload: NotificationCreate) -> Notification:
        """Prepend a new unread notification and return it."""
        notification = Notification(
            **payload.model_dump(),
            id=f"notification_{uuid4().hex}",
            read=False,
            created_at=self._clock.now(),
        )
        with self._lock:
            entries = [notification, *self._state.notifications]
            kept, dropped = entries[: self._max_entries], entries[self._max_entries :]
            self._commit(kept)
            for entry in dropped:
                self._scheduler.cancel(self._expiry_key(entry.id))
        if notification.expires_at is None:
            self._schedule_expiry(notification)
        logger.debug(
            "Added %s notification '%s' (%s)",
            notification.category,
            notification.id,
            notification.title,
        )
        return notification

    def get(self, notification_id: str) -> Notification:
        with self._lock:
            for entry in self._state.notifications:
                if entry.id == notification_id:
                    return entry
        raise NotFoundError("Notification", notification_id)

    def list(self) -> list[Notification]:
        with self._lock:
            return list(self._state.notifications)

    def mark_read(self, notification_id: str) -> Notification:
        with self._lock:
            updated: list[Notification] = []
            found: Notification | None = None
            for entry in self._state.notifications:
                if entry.id == notification_id:
                    found = entry.model_copy(update={"read": True})
                    updated.append(found)
                else:
                    updated.append(entry)
            if found is None:
                raise NotFoundError("Notification", notification_id)
            self._commit(updated)
        return found

    def mark_all_read(self) -> None:
        with self._lock:
            self._commit(
                [entry.model_copy(update={"read": True}) for entry in self._state.notifications]
            )

    def remove(self, notification_id: str) -> None:
        with self._lock:
            remaining = [
                entry for entry in self._state.notifications if entry.id != notification_id
            ]
            if len(remaining) == len(self._state.notifications):
                raise NotFoundError("Notification", notification_id)
            self._commit(remaining)
        self._scheduler.cancel(self._expiry_key(notification_id))

    def clear_expired(self) -> int:
        """Remove entries whose ``expires_at`` has passed; return how many went."""
        now = self._clock.now()
        with self._lock:
            remaining = [
                entry
                for entry in self._state.notifications
                if entry.expires_at is None or entry.expires_at > now
            ]
            removed = len(self._state.notifications) - len(remaining)
            if removed:
                self._commit(remaining)
        if removed:
            logger.debug("Cleared %d expired notification(s)", removed)
        return removed

    def clear_all(self) -> None:
        with self._lock:
            for entry in self._state.notifications:
                self._scheduler.cancel(self._expiry_key(entry.id))
            self._commit([])

    def by_category(self, category: str) -> list[Notification]:
        with self._lock:
            return [
                entry for entry in self._state.notifications if entry.category == category
            ]

    def unread(self) -> list[Notification]:
        with self._lock:
            return [entry for entry in self._state.notifications if not entry.read]

    def view(self) -> NotificationLedgerView:
        with self._lock:
            return NotificationLedgerView(
                notifications=list(self._state.notifications),
                unread_count=self._state.unread_count,
            )

    def toggle_panel(self) -> bool:
        self.panel_open = not self.panel_open
        return self.panel_open

    def _expire(self, notification_id: str) -> None:
        with self._lock:
            remaining = [
                entry for entry in self._state.notifications if entry.id != notification_id
            ]
            if len(remaining) == len(self._state.notifications):
                return
            self._commit(remaining)
        logger.debug("Notification '%s' auto-expired", notification_id)

    def _schedule_expiry(self, notification: Notification) -> None:
        self._scheduler.schedule(
            self._expiry_key(notification.id),
            notification.created_at + self._default_ttl,
            lambda: self._expire(notification.id),
        )

    def _rearm_expiry(self) -> None:
        for entry in self._state.notifications:
            if entry.expires_at is None:
                self._schedule_expiry(entry)

    @staticmethod
    def _expiry_key(notification_id: str) -> str:
        return f"notification-expiry:{notification_id}"

    def _commit(self, notifications: list[Notification]) -> None:
        """Persist the new list with a recomputed unread count, then swap it in."""
        state = _DurableLedgerState(
            notifications=notifications,
            unread_count=sum(1 for entry in notifications if not entry.read),
        )
        if self._store is not None:
            self._store.put(self.STORAGE_KEY, state.model_dump(mode="json", by_alias=True))
        self._state = state

    def _load(self) -> _DurableLedgerState:
        if self._store is None:
            return _DurableLedgerState()
        raw = self._store.get(self.STORAGE_KEY)
        if raw is None:
            return _DurableLedgerState()
        try:
            state = _DurableLedgerState.model_validate(raw)
        except ValidationError as exc:
            raise PersistenceError(f"Stored notification ledger is corrupt: {exc}") from exc
        state.notifications = state.notifications[: self._max_entries]
        state.unread_count = sum(1 for entry in state.notifications if not entry.read)
        return state


__all__ = ["DEFAULT_MAX_NOTIFICATIONS", "DEFAULT_TTL", "NotificationLedger"]
