"""
Pydantic data models package.

Contains the data models for:
- Canonical log records and histogram buckets
- Inbound query models and time ranges
- Query results and data frames
"""

from .frames import DataFrame, FrameField, FrameMeta
from .log_record import HistogramBucket, LogLabels, LogLevel, LogRecord
from .query import (
    ErrorResponse,
    QueryKind,
    QueryModel,
    QueryRequest,
    QueryResponse,
    QueryResult,
    TimeRange,
)

__all__ = [
    # Record models
    "LogRecord",
    "LogLabels",
    "LogLevel",
    "HistogramBucket",

    # Query models
    "QueryKind",
    "QueryModel",
    "QueryRequest",
    "QueryResponse",
    "QueryResult",
    "TimeRange",
    "ErrorResponse",

    # Frame models
    "DataFrame",
    "FrameField",
    "FrameMeta",
]
