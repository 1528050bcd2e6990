"""
Pydantic models for user-facing notifications and per-user notification settings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import Field, field_validator

from .common import CamelModel

NotificationKind = Literal["info", "success", "warning", "error"]
NotificationPriority = Literal["low", "normal", "high"]
NotificationCategory = Literal["system", "analysis", "monitoring", "trade"]


class NotificationCreate(CamelModel):
    """Payload supplied by notification producers."""

    title: str = Field(..., min_length=1)
    message: str
    kind: NotificationKind = Field("info", alias="type")
    priority: NotificationPriority = "normal"
    category: NotificationCategory = "system"
    data: Optional[dict[str, Any]] = None
    expires_at: Optional[datetime] = None

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Offset-less timestamps are read as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Notification(NotificationCreate):
    """A ledger entry."""

    id: str
    read: bool = False
    created_at: datetime


class NotificationLedgerView(CamelModel):
    notifications: list[Notification] = Field(default_factory=list)
    unread_count: int = 0


class NotificationSettings(CamelModel):
    """Delivery preferences for one signed-in user."""

    user_id: str
    sms_enabled: bool = False
    email_enabled: bool = True
    frequency: Literal["DAILY", "WEEKLY"] = "DAILY"
    notification_time: str = Field("09:00:00", description="Local time, HH:MM:SS.")
    categories: list[NotificationCategory] = Field(
        default_factory=lambda: ["analysis", "monitoring", "trade", "system"]
    )

    @field_validator("notification_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        parts = value.split(":")
        if len(parts) != 3 or not all(part.isdigit() and len(part) == 2 for part in parts):
            raise ValueError("notification_time must be formatted as HH:MM:SS")
        hours, minutes, seconds = (int(part) for part in parts)
        if hours > 23 or minutes > 59 or seconds > 59:
            raise ValueError("notification_time is out of range")
        return value


class NotificationSettingsUpdate(CamelModel):
    sms_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None
    frequency: Optional[Literal["DAILY", "WEEKLY"]] = None
    notification_time: Optional[str] = None
    categories: Optional[list[NotificationCategory]] = None


__all__ = [
    "Notification",
    "NotificationCategory",
    "NotificationCreate",
    "NotificationKind",
    "NotificationLedgerView",
    "NotificationPriority",
    "NotificationSettings",
    "NotificationSettingsUpdate",
]
