"""Per-user notification delivery preferences stored in the document store."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from hscode_agent.clients.sqlite_store import SQLiteStore
from hscode_agent.core.errors import PersistenceError
from hscode_agent.schemas import NotificationSettings, NotificationSettingsUpdate

logger = logging.getLogger(__name__)


class NotificationSettingsService:
    """Read and update notification settings keyed by user id."""

    KEY_PREFIX = "notification-settings#"

    def __init__(self, store: SQLiteStore) -> None:
        self._store = store

    async def get(self, user_id: str) -> NotificationSettings:
        """Return stored settings, or defaults when the user never saved any."""
        raw = self._store.get(self._key(user_id))
        if raw is None:
            return NotificationSettings(user_id=user_id)
        try:
            return NotificationSettings.model_validate(raw)
        except ValidationError as exc:
            raise PersistenceError(
                f"Stored notification settings for '{user_id}' are corrupt: {exc}"
            ) from exc

    async def update(
        self, user_id: str, changes: NotificationSettingsUpdate
    ) -> NotificationSettings:
        current = await self.get(user_id)
        merged = NotificationSettings.model_validate(
            {
                **current.model_dump(),
                **changes.model_dump(exclude_unset=True, exclude_none=True),
                "user_id": user_id,
            }
        )
        self._store.put(self._key(user_id), merged.model_dump(mode="json", by_alias=True))
        logger.info("Updated notification settings for user %s", user_id)
        return merged

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}{user_id}"


__all__ = ["NotificationSettingsService"]
