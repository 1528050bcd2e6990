"""Service layer exports."""

from .analysis_workflow import AnalysisWorkflow
from .dashboard import DashboardService
from .notification_ledger import NotificationLedger
from .notification_settings import NotificationSettingsService
from .query_coordinator import AggregatedQueryCoordinator, QuerySource
from .result_cache import ResultCache, ResultCacheSnapshot

__all__ = [
    "AggregatedQueryCoordinator",
    "AnalysisWorkflow",
    "DashboardService",
    "NotificationLedger",
    "NotificationSettingsService",
    "QuerySource",
    "ResultCache",
    "ResultCacheSnapshot",
]
