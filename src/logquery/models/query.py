"""
Query request and result models.

Inbound query models use the camelCase field names sent by the dashboard
frontend; results are plain snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .frames import DataFrame
from .log_record import ensure_utc


class QueryKind(str, Enum):
    """Supported query kinds."""

    LOGS = "logs"
    LOGS_VOLUME = "logs-volume"


class QueryModel(BaseModel):
    """A single query as authored in the dashboard."""

    ref_id: str = Field(default="A", alias="refId", description="Query reference ID")
    query_type: QueryKind = Field(default=QueryKind.LOGS, alias="queryType")
    log_query: str = Field(default="", alias="logQuery", description="Raw search string")
    hide: bool = Field(default=False, description="Query disabled in the editor")
    hidden: bool = Field(default=False, description="Query hidden from the panel")
    page_size: Optional[int] = Field(default=None, alias="pageSize", ge=1)
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")
    current_page: int = Field(default=1, alias="currentPage", ge=1)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("next_cursor")
    def empty_cursor_is_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat an empty cursor as the first page."""
        return v or None

    @property
    def is_hidden(self) -> bool:
        return self.hide or self.hidden


class TimeRange(BaseModel):
    """Query time window in UTC."""

    from_time: datetime = Field(alias="from")
    to_time: datetime = Field(alias="to")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("from_time", "to_time")
    def validate_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def validate_order(self) -> "TimeRange":
        """Reject reversed windows."""
        if self.to_time < self.from_time:
            raise ValueError("time range end must not be before its start")
        return self


class QueryRequest(BaseModel):
    """Body of ``POST /v1/query``."""

    range: TimeRange
    queries: List[Dict[str, Any]] = Field(default_factory=list, description="Raw query models")


class QueryResult(BaseModel):
    """Outcome of one query."""

    ref_id: str
    frames: List[DataFrame] = Field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None
    partial: bool = False
    cached: bool = False
    warnings: List[str] = Field(default_factory=list)


class QueryResponse(BaseModel):
    """Body returned by ``POST /v1/query``."""

    results: Dict[str, QueryResult] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(description="Error code")
    message: str = Field(description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional error details")
