"""
In-memory query result cache.

Absorbs bursty re-queries from the dashboard (panel refreshes, tab
switches). Entries expire lazily: a stale entry is reported as absent by
``get`` but stays in memory until it is overwritten or explicitly purged.
Nothing is persisted across restarts.
"""

import hashlib
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Sequence, Tuple

import structlog

from ..models.log_record import LogRecord, ensure_utc

logger = structlog.get_logger(__name__)

FIRST_PAGE = "first"


def to_epoch_ms(value: datetime) -> int:
    """UTC epoch milliseconds for a datetime."""
    return int(ensure_utc(value).timestamp() * 1000)


@dataclass(frozen=True)
class QueryFingerprint:
    """
    Identity of a logical query.

    Only fields that change the result set take part; request IDs and
    reference IDs never do.
    """
    namespace: str
    expression: str
    from_ms: int
    to_ms: int
    limit: int
    cursor: str = FIRST_PAGE

    @classmethod
    def build(
        cls,
        namespace: str,
        expression: str,
        from_time: datetime,
        to_time: datetime,
        limit: int,
        cursor: Optional[str] = None,
    ) -> "QueryFingerprint":
        return cls(
            namespace=namespace,
            expression=expression,
            from_ms=to_epoch_ms(from_time),
            to_ms=to_epoch_ms(to_time),
            limit=limit,
            cursor=cursor or FIRST_PAGE,
        )

    @property
    def key(self) -> str:
        """Stable digest, safe to log."""
        raw = f"{self.namespace}:{self.expression}:{self.from_ms}:{self.to_ms}:{self.limit}:{self.cursor}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class CacheEntry:
    """Immutable snapshot of one fetch."""
    records: Tuple[LogRecord, ...]
    fetched_at: float
    next_cursor: str = ""


class QueryCache:
    """
    Thread-safe TTL cache keyed by query fingerprint.

    TTL is given per lookup so different query kinds can share one cache.
    The clock is injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[QueryFingerprint, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, fingerprint: QueryFingerprint, ttl: float) -> Optional[CacheEntry]:
        """Return a fresh entry, or None if missing or stale."""
        with self._lock:
            entry = self._entries.get(fingerprint)

        if entry is None:
            logger.debug("Cache miss", key=fingerprint.key, namespace=fingerprint.namespace)
            return None

        age = self._clock() - entry.fetched_at
        if age >= ttl:
            logger.debug("Cache entry expired", key=fingerprint.key, age_seconds=round(age, 3))
            return None

        logger.debug(
            "Cache hit",
            key=fingerprint.key,
            namespace=fingerprint.namespace,
            entries_count=len(entry.records),
        )
        return entry

    def put(
        self,
        fingerprint: QueryFingerprint,
        records: Sequence[LogRecord],
        next_cursor: Optional[str] = None,
    ) -> CacheEntry:
        """Store a fresh snapshot, replacing any previous entry."""
        entry = CacheEntry(
            records=tuple(records),
            fetched_at=self._clock(),
            next_cursor=next_cursor or "",
        )
        with self._lock:
            self._entries[fingerprint] = entry

        logger.debug("Cache store", key=fingerprint.key, entries_count=len(entry.records))
        return entry

    def purge_expired(self, ttl: float) -> int:
        """Drop entries older than ``ttl``. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [fp for fp, entry in self._entries.items() if now - entry.fetched_at >= ttl]
            for fingerprint in stale:
                del self._entries[fingerprint]

        if stale:
            logger.info("Purged expired cache entries", removed=len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
