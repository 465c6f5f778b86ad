"""
Canonical log record models.

- Timestamps are always timezone-aware UTC
- Severity is always one of DEBUG, INFO, WARN, ERROR, FATAL, TRACE (default INFO)
- Labels always serialize to valid JSON, falling back to an empty object
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LogLevel(str, Enum):
    """Canonical severities."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"
    TRACE = "TRACE"


SEVERITY_ALIASES = {
    "WARNING": LogLevel.WARN,
    "CRITICAL": LogLevel.FATAL,
    "ERR": LogLevel.ERROR,
}


def coerce_severity(value: Any) -> LogLevel:
    """Map any status-like value onto a canonical severity."""
    if isinstance(value, LogLevel):
        return value
    if not isinstance(value, str):
        return LogLevel.INFO

    normalized = value.strip().upper()
    if normalized in SEVERITY_ALIASES:
        return SEVERITY_ALIASES[normalized]
    try:
        return LogLevel(normalized)
    except ValueError:
        return LogLevel.INFO


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LogLabels(BaseModel):
    """Structured labels attached to a log record."""

    service: str = Field(default="", description="Service name")
    source: str = Field(default="", description="Log source (integration or file)")
    host: str = Field(default="", description="Emitting host")
    env: str = Field(default="", description="Deployment environment")
    version: str = Field(default="", description="Service version")
    tags: Dict[str, str] = Field(default_factory=dict, description="Tags split on the first colon")
    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Attributes not claimed by a known field, kept verbatim",
    )
    trace_id: str = Field(default="", description="Distributed tracing trace ID")
    span_id: str = Field(default="", description="Distributed tracing span ID")

    model_config = ConfigDict(frozen=True)


class LogRecord(BaseModel):
    """
    Canonical unit of query output.

    Built by the response normalizer from whatever shape the remote service
    returned; the rest of the system only ever sees this model.
    """

    id: str = Field(min_length=1, description="Remote record identifier")
    timestamp: datetime = Field(description="Event time in UTC")
    body: str = Field(default="", description="Log message")
    severity: LogLevel = Field(default=LogLevel.INFO, description="Canonical severity")
    labels: LogLabels = Field(default_factory=LogLabels)

    @field_validator("timestamp")
    def validate_timestamp(cls, v: datetime) -> datetime:
        """Normalize timestamps to UTC."""
        return ensure_utc(v)

    @field_validator("severity", mode="before")
    def validate_severity(cls, v: Any) -> LogLevel:
        """Fold aliases and unknown values onto the canonical set."""
        return coerce_severity(v)

    def labels_payload(self) -> Dict[str, Any]:
        """
        Labels as JSON-ready data.

        Empty fields are dropped. Returns ``{}`` when the labels cannot be
        serialized.
        """
        try:
            payload = json.loads(self.labels.model_dump_json())
        except (TypeError, ValueError):
            return {}
        return {key: value for key, value in payload.items() if value not in ("", {}, None)}

    model_config = ConfigDict(frozen=True)


class HistogramBucket(BaseModel):
    """One bucket of the volume histogram."""

    bucket_start: datetime = Field(description="Bucket start in UTC")
    count: int = Field(default=0, ge=0, description="Records in the bucket")

    @field_validator("bucket_start")
    def validate_bucket_start(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    model_config = ConfigDict(frozen=True)
