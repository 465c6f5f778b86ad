"""
Data frame construction for logs and volume results.
"""

from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..models.frames import DataFrame, FrameField, FrameMeta
from ..models.log_record import HistogramBucket, LogRecord
from .normalizer import sanitize_record
from .translator import extract_search_terms

logger = structlog.get_logger(__name__)

LOGS_FRAME_NAME = "logs"
VOLUME_LABELS = {"level": "logs"}


def volume_ref_id(ref_id: str) -> str:
    return f"log-volume-{ref_id}"


def build_logs_frame(
    records: Sequence[LogRecord],
    ref_id: str,
    expression: str = "",
    limit: Optional[int] = None,
    pagination: Optional[Dict[str, Any]] = None,
) -> DataFrame:
    """
    Build the logs table frame.

    Columns are always timestamp, body, severity, id, labels in that order.
    Records are sanitized on the way in.
    """
    sanitized = [sanitize_record(record) for record in records]

    custom: Dict[str, Any] = {"searchWords": extract_search_terms(expression)}
    if limit is not None:
        custom["limit"] = limit
    if pagination:
        custom["pagination"] = pagination

    frame = DataFrame(
        name=LOGS_FRAME_NAME,
        ref_id=ref_id,
        fields=[
            FrameField(name="timestamp", type="time", values=[r.timestamp for r in sanitized]),
            FrameField(name="body", type="string", values=[r.body for r in sanitized]),
            FrameField(name="severity", type="string", values=[r.severity.value for r in sanitized]),
            FrameField(name="id", type="string", values=[r.id for r in sanitized]),
            FrameField(name="labels", type="json", values=[r.labels_payload() for r in sanitized]),
        ],
        meta=FrameMeta(type="log-lines", preferred_visualization="logs", custom=custom),
    )

    logger.debug("Built logs frame", ref_id=ref_id, entries_count=len(sanitized))
    return frame


def build_volume_frame(buckets: Sequence[HistogramBucket], ref_id: str) -> DataFrame:
    """Build the volume histogram frame for a query."""
    times: List[Any] = [bucket.bucket_start for bucket in buckets]
    counts: List[Any] = [bucket.count for bucket in buckets]

    return DataFrame(
        name=volume_ref_id(ref_id),
        ref_id=volume_ref_id(ref_id),
        fields=[
            FrameField(name="Time", type="time", values=times),
            FrameField(name="Value", type="number", values=counts, labels=dict(VOLUME_LABELS)),
        ],
        meta=FrameMeta(type="timeseries-multi", preferred_visualization="graph"),
    )
