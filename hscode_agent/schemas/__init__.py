"""Public schema exports."""

from .analysis import (
    AlternativeCode,
    AnalysisQuestion,
    AnalysisResult,
    AnalysisSession,
    AnalysisStartResult,
    AnswerSubmissionResult,
    BookmarkToggleResponse,
    ComplianceRequirement,
    RegulationInfo,
    SessionPollResult,
    SessionStatus,
    StartAnalysisRequest,
    StartOptions,
    SubmitAnswerRequest,
    TERMINAL_STATUSES,
    TradeStatistics,
)
from .dashboard import CombinedQueryView, QuerySnapshot
from .notification import (
    Notification,
    NotificationCreate,
    NotificationLedgerView,
    NotificationSettings,
    NotificationSettingsUpdate,
)

__all__ = [
    "AlternativeCode",
    "AnalysisQuestion",
    "AnalysisResult",
    "AnalysisSession",
    "AnalysisStartResult",
    "AnswerSubmissionResult",
    "BookmarkToggleResponse",
    "CombinedQueryView",
    "ComplianceRequirement",
    "Notification",
    "NotificationCreate",
    "NotificationLedgerView",
    "NotificationSettings",
    "NotificationSettingsUpdate",
    "QuerySnapshot",
    "RegulationInfo",
    "SessionPollResult",
    "SessionStatus",
    "StartAnalysisRequest",
    "StartOptions",
    "SubmitAnswerRequest",
    "TERMINAL_STATUSES",
    "TradeStatistics",
]
