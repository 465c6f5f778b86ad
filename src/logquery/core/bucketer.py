"""
Volume histogram bucketing.

Counts log records per fixed-width time bucket for the volume panel. Bucket
width follows a staircase keyed on the range duration so the panel always
shows a readable number of bars. Pure functions, no I/O.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Sequence, Tuple

import structlog

from ..models.log_record import HistogramBucket, LogRecord, ensure_utc

logger = structlog.get_logger(__name__)

# (range duration upper bound, bucket width), checked in order
BUCKET_STAIRCASE: Tuple[Tuple[timedelta, timedelta], ...] = (
    (timedelta(minutes=5), timedelta(seconds=10)),
    (timedelta(minutes=15), timedelta(seconds=30)),
    (timedelta(hours=1), timedelta(minutes=1)),
    (timedelta(hours=6), timedelta(minutes=5)),
    (timedelta(hours=24), timedelta(minutes=15)),
    (timedelta(days=7), timedelta(hours=1)),
)
WIDEST_BUCKET = timedelta(hours=4)


def bucket_duration(duration: timedelta) -> timedelta:
    """Bucket width for a range of the given length."""
    for upper_bound, width in BUCKET_STAIRCASE:
        if duration <= upper_bound:
            return width
    return WIDEST_BUCKET


def _epoch_seconds(value: datetime) -> int:
    return int(ensure_utc(value).timestamp())


def bucketize(records: Sequence[LogRecord], start: datetime, end: datetime) -> List[HistogramBucket]:
    """
    Count records per bucket over ``[start, end]``.

    Buckets are aligned to the epoch: the first one starts at ``start``
    truncated down to a multiple of the bucket width, and one bucket is
    emitted for every boundary up to and including ``end``. Empty buckets
    are zero-filled. Records outside the covered span are ignored.
    """
    start = ensure_utc(start)
    end = ensure_utc(end)
    if end < start:
        return []

    width = int(bucket_duration(end - start).total_seconds())
    first = _epoch_seconds(start) // width * width
    last = _epoch_seconds(end)
    end_ts = end.timestamp()

    counts: Dict[int, int] = {}
    ignored = 0
    for record in records:
        ts = record.timestamp.timestamp()
        if ts < first or ts > end_ts:
            ignored += 1
            continue
        boundary = int(ts // width) * width
        counts[boundary] = counts.get(boundary, 0) + 1

    buckets = [
        HistogramBucket(
            bucket_start=datetime.fromtimestamp(boundary, tz=timezone.utc),
            count=counts.get(boundary, 0),
        )
        for boundary in range(first, last + 1, width)
    ]

    logger.debug(
        "Bucketed log volume",
        bucket_seconds=width,
        buckets=len(buckets),
        records=len(records),
        ignored=ignored,
    )
    return buckets
