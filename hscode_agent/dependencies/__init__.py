"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_analysis_workflow,
    get_classification_client,
    get_clock,
    get_dashboard_service,
    get_notification_ledger,
    get_notification_settings_service,
    get_result_cache,
    get_sqlite_store,
    get_task_scheduler,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "SettingsDependency",
    "get_analysis_workflow",
    "get_app_settings",
    "get_classification_client",
    "get_clock",
    "get_dashboard_service",
    "get_notification_ledger",
    "get_notification_settings_service",
    "get_result_cache",
    "get_sqlite_store",
    "get_task_scheduler",
]
