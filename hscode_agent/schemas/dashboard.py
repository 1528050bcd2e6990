"""
Pydantic models describing aggregated query state for a screen.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field

from .common import CamelModel

QueryStatus = Literal["idle", "loading", "success", "error"]


class QuerySnapshot(CamelModel):
    """Point-in-time view of one data source."""

    name: str
    status: QueryStatus = "idle"
    enabled: bool = True
    is_fetching: bool = False
    is_stale: bool = True
    data: Any = None
    error: Optional[str] = None
    updated_at: Optional[datetime] = None


class CombinedQueryView(CamelModel):
    """Composite loading/error/success state across every enabled source."""

    sources: dict[str, QuerySnapshot] = Field(default_factory=dict)
    is_loading: bool = False
    is_fetching: bool = False
    is_error: bool = False
    is_success: bool = False
    errors: list[str] = Field(default_factory=list)


__all__ = ["CombinedQueryView", "QuerySnapshot", "QueryStatus"]
