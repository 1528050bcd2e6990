"""
Factory functions providing the process-wide clients and services as FastAPI
dependencies. Each store is constructed once and shared by every request.
"""

from datetime import timedelta
from functools import lru_cache

from hscode_agent.clients import ClassificationClient, SQLiteStore
from hscode_agent.core.scheduling import SystemClock, TaskScheduler
from hscode_agent.dependencies.config import get_app_settings
from hscode_agent.services import (
    AnalysisWorkflow,
    DashboardService,
    NotificationLedger,
    NotificationSettingsService,
    ResultCache,
)


@lru_cache()
def get_clock() -> SystemClock:
    """Provide the wall clock shared by the stores."""
    return SystemClock()


@lru_cache()
def get_task_scheduler() -> TaskScheduler:
    """Provide the scheduler pumped by the application lifespan."""
    return TaskScheduler(get_clock())


@lru_cache()
def get_sqlite_store() -> SQLiteStore:
    """Provide shared SQLite document store."""
    settings = get_app_settings()
    return SQLiteStore(settings.storage_db_path)


@lru_cache()
def get_classification_client() -> ClassificationClient:
    """Provide the HTTP client for the classification service."""
    settings = get_app_settings()
    return ClassificationClient(settings.classification)


@lru_cache()
def get_result_cache() -> ResultCache:
    """Provide the process-wide result cache."""
    settings = get_app_settings()
    return ResultCache(get_sqlite_store(), recent_limit=settings.cache.recent_limit)


@lru_cache()
def get_notification_ledger() -> NotificationLedger:
    """Provide the process-wide notification ledger."""
    settings = get_app_settings()
    return NotificationLedger(
        get_sqlite_store(),
        scheduler=get_task_scheduler(),
        clock=get_clock(),
        max_entries=settings.cache.notification_limit,
        default_ttl=timedelta(hours=settings.cache.notification_ttl_hours),
    )


@lru_cache()
def get_analysis_workflow() -> AnalysisWorkflow:
    """Provide the session workflow engine."""
    settings = get_app_settings()
    return AnalysisWorkflow(
        get_classification_client(),
        get_result_cache(),
        clock=get_clock(),
        call_timeout=settings.workflow.call_timeout_seconds,
        poll_interval=settings.workflow.poll_interval_seconds,
        poll_deadline=settings.workflow.poll_deadline_seconds,
        session_retention=settings.workflow.session_retention,
    )


@lru_cache()
def get_notification_settings_service() -> NotificationSettingsService:
    """Provide per-user notification settings storage."""
    return NotificationSettingsService(get_sqlite_store())


@lru_cache()
def get_dashboard_service() -> DashboardService:
    """Provide the aggregated dashboard view builder."""
    settings = get_app_settings()
    return DashboardService(
        workflow=get_analysis_workflow(),
        results=get_result_cache(),
        ledger=get_notification_ledger(),
        settings_service=get_notification_settings_service(),
        clock=get_clock(),
        max_viewers=settings.cache.dashboard_viewer_limit,
    )


__all__ = [
    "get_analysis_workflow",
    "get_classification_client",
    "get_clock",
    "get_dashboard_service",
    "get_notification_ledger",
    "get_notification_settings_service",
    "get_result_cache",
    "get_sqlite_store",
    "get_task_scheduler",
]
