"""
Pydantic models for HS code analysis sessions, questions and results.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator

from .common import CamelModel


class SessionStatus(str, Enum):
    """Lifecycle states of an analysis session."""

    INITIALIZING = "initializing"
    AWAITING_QUESTIONS = "awaiting_questions"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.ERROR, SessionStatus.CANCELLED}
)

QuestionKind = Literal["text", "multiple_choice", "number", "boolean"]


class AnalysisQuestion(CamelModel):
    """A clarifying question issued by the classification service."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    text: str
    kind: QuestionKind = Field("text", alias="type")
    options: Optional[tuple[str, ...]] = Field(
        None, description="Ordered choices for multiple_choice questions."
    )
    required: bool = False
    explanation: Optional[str] = None


class AnalysisSession(CamelModel):
    """One classification attempt, from intake to a terminal state."""

    id: str
    query: str
    status: SessionStatus = SessionStatus.INITIALIZING
    progress: int = Field(0, ge=0, le=100)
    questions: list[AnalysisQuestion] = Field(default_factory=list)
    answers: dict[str, str] = Field(default_factory=dict)
    result_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    last_viewed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _result_only_when_completed(self) -> "AnalysisSession":
        if (self.result_id is not None) != (self.status is SessionStatus.COMPLETED):
            raise ValueError("result_id must be set exactly when status is completed")
        return self

    def question(self, question_id: str) -> AnalysisQuestion | None:
        for item in self.questions:
            if item.id == question_id:
                return item
        return None

    def unanswered_required(self) -> list[str]:
        """Ids of required questions that still have no answer."""
        return [
            item.id
            for item in self.questions
            if item.required and not self.answers.get(item.id)
        ]


class AlternativeCode(CamelModel):
    code: str
    confidence: float = Field(..., ge=0, le=1)
    reasoning: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: float) -> float:
        return _as_fraction(value)


class ComplianceRequirement(CamelModel):
    """Import/export requirement attached to a classification result."""

    id: str
    title: str
    description: str = ""
    country: str = ""
    kind: Literal["certificate", "inspection", "license", "document", "other"] = (
        Field("other", alias="type")
    )
    mandatory: bool = False
    authority: str = ""
    validity_period: Optional[str] = None
    cost: Optional[str] = None
    processing_time: Optional[str] = None
    documents: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class RegulationInfo(CamelModel):
    id: str
    title: str
    description: str = ""
    country: str = ""
    category: Literal[
        "safety", "environment", "quality", "customs", "trade", "other"
    ] = "other"
    effective_date: Optional[str] = None
    last_updated: Optional[str] = None
    source: str = ""
    url: Optional[str] = None
    impact: Literal["high", "medium", "low"] = "medium"


class CountryShare(CamelModel):
    country: str
    value: float
    share: float


class TradeFlow(CamelModel):
    total_value: float = 0
    total_quantity: float = 0
    top_destinations: list[CountryShare] = Field(default_factory=list)
    top_origins: list[CountryShare] = Field(default_factory=list)


class TradeTrends(CamelModel):
    export_growth: float = 0
    import_growth: float = 0
    price_index: float = 0


class TradeStatistics(CamelModel):
    hs_code: str
    period: str
    export_data: TradeFlow = Field(default_factory=TradeFlow)
    import_data: TradeFlow = Field(default_factory=TradeFlow)
    trends: TradeTrends = Field(default_factory=TradeTrends)


class AnalysisResult(CamelModel):
    """Final classification output of a completed session."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    session_id: str
    recommended_code: str = Field(..., alias="recommendedHsCode")
    confidence: float = Field(..., ge=0, le=1)
    reasoning: str = ""
    alternatives: tuple[AlternativeCode, ...] = Field(
        default=(), alias="alternativeHsCodes"
    )
    import_requirements: tuple[ComplianceRequirement, ...] = ()
    export_requirements: tuple[ComplianceRequirement, ...] = ()
    related_regulations: tuple[RegulationInfo, ...] = ()
    trade_statistics: Optional[TradeStatistics] = None
    created_at: datetime
    is_bookmarked: bool = Field(
        False, description="Cache-local flag, filled in when read from the cache."
    )

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: float) -> float:
        return _as_fraction(value)


class StartOptions(CamelModel):
    """Optional hints passed to the intake collaborator."""

    intended_use: Optional[Literal["import", "export", "classification"]] = None
    target_country: Optional[str] = None
    urgency: Literal["low", "normal", "high"] = "normal"
    product_image: Optional[str] = Field(
        None, description="Reference (URL or upload id) to a product photo."
    )


class AnalysisStartResult(CamelModel):
    """Intake collaborator response."""

    session_id: str = Field(..., min_length=1)
    needs_questions: bool
    questions: list[AnalysisQuestion] = Field(default_factory=list)
    estimated_time: Optional[float] = None
    message: str = ""


class AnswerSubmissionResult(CamelModel):
    """Answer collaborator response."""

    completed: bool
    result: Optional[AnalysisResult] = None
    additional_questions: list[AnalysisQuestion] = Field(default_factory=list)
    progress: Optional[float] = Field(
        None, description="Percent complete; the workflow clamps it to 0..100."
    )
    message: str = ""


class SessionPollResult(CamelModel):
    """Polling collaborator response."""

    status: str
    result: Optional[AnalysisResult] = None
    additional_questions: list[AnalysisQuestion] = Field(default_factory=list)
    progress: Optional[float] = Field(
        None, description="Percent complete; the workflow clamps it to 0..100."
    )
    error: Optional[str] = None


class StartAnalysisRequest(CamelModel):
    """Body of ``POST /analysis/sessions``."""

    query: str = Field(..., min_length=1, description="Product description.")
    options: StartOptions = Field(default_factory=StartOptions)


class SubmitAnswerRequest(CamelModel):
    question_id: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


class BookmarkToggleResponse(CamelModel):
    result_id: str
    bookmarked: bool


def _as_fraction(value: float) -> float:
    """Accept 0..1 fractions and 0..100 percentages."""
    if isinstance(value, (int, float)) and 1 < value <= 100:
        return value / 100
    return value


__all__ = [
    "AlternativeCode",
    "AnalysisQuestion",
    "AnalysisResult",
    "AnalysisSession",
    "AnalysisStartResult",
    "AnswerSubmissionResult",
    "BookmarkToggleResponse",
    "ComplianceRequirement",
    "QuestionKind",
    "RegulationInfo",
    "SessionPollResult",
    "SessionStatus",
    "StartAnalysisRequest",
    "StartOptions",
    "SubmitAnswerRequest",
    "TERMINAL_STATUSES",
    "TradeStatistics",
]
