try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest
from pydantic import ValidationError

from hscode_agent.clients.sqlite_store import SQLiteStore
from hscode_agent.core.errors import PersistenceError
from hscode_agent.schemas import NotificationSettingsUpdate
from hscode_agent.services.notification_settings import NotificationSettingsService


@pytest.mark.asyncio
async def test_defaults_are_returned_for_new_users(tmp_path):
    service = NotificationSettingsService(SQLiteStore(str(tmp_path / "settings.db")))

    settings = await service.get("alice")

    assert settings.user_id == "alice"
    assert settings.email_enabled is True
    assert settings.sms_enabled is False
    assert settings.frequency == "DAILY"
    assert settings.notification_time == "09:00:00"


@pytest.mark.asyncio
async def test_update_merges_and_persists(tmp_path):
    store = SQLiteStore(str(tmp_path / "settings.db"))
    service = NotificationSettingsService(store)

    await service.update("alice", NotificationSettingsUpdate(sms_enabled=True))
    updated = await service.update(
        "alice", NotificationSettingsUpdate(frequency="WEEKLY", categories=["trade"])
    )

    assert updated.sms_enabled is True
    assert updated.frequency == "WEEKLY"
    assert updated.categories == ["trade"]
    reloaded = await NotificationSettingsService(store).get("alice")
    assert reloaded == updated
    assert (await service.get("bob")).sms_enabled is False


@pytest.mark.asyncio
async def test_invalid_time_is_rejected(tmp_path):
    service = NotificationSettingsService(SQLiteStore(str(tmp_path / "settings.db")))

    with pytest.raises(ValidationError):
        await service.update("alice", NotificationSettingsUpdate(notification_time="25:00:00"))


@pytest.mark.asyncio
async def test_corrupt_settings_raise_persistence_error(tmp_path):
    store = SQLiteStore(str(tmp_path / "settings.db"))
    store.put(f"{NotificationSettingsService.KEY_PREFIX}alice", {"frequency": "HOURLY"})

    with pytest.raises(PersistenceError):
        await NotificationSettingsService(store).get("alice")
