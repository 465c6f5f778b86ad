"""
Query executor.

Top-level entry point for running dashboard queries:
- validates and translates the query
- serves repeated queries from the cache
- fetches a single page for ``logs`` queries
- fetches several pages and buckets them for ``logs-volume`` queries
- turns every failure into a user-facing message on the result

This is the only layer that decides how errors are phrased for users.
"""

import asyncio
import time
from typing import Any, Dict, Mapping, Optional, Sequence

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..config import CacheSettings, FetchSettings
from ..models.query import QueryKind, QueryModel, QueryResult, TimeRange
from .bucketer import bucketize
from .cache import QueryCache, QueryFingerprint
from .exceptions import (
    AuthenticationError,
    LogQueryException,
    QueryCancelledError,
    RateLimitError,
    RemoteServiceError,
    RemoteSyntaxError,
    TransportError,
    ValidationError,
)
from .fetcher import FetchEngine
from .frames import build_logs_frame, build_volume_frame
from .metrics import MetricsCollector
from .translator import translate_with_advisories

logger = structlog.get_logger(__name__)


def describe_error(error: LogQueryException) -> str:
    """User-facing message for a failed query."""
    if isinstance(error, ValidationError):
        return f"Invalid query: {error.message}"

    if isinstance(error, RemoteSyntaxError):
        message = f"Invalid query: {error.remote_message}"
        if error.suggestion:
            message = f"{message}\nSuggestion: {error.suggestion}"
        return message

    if isinstance(error, RateLimitError):
        attempts = error.details.get("attempts")
        if attempts:
            return (
                f"Rate limit exceeded after {attempts} attempts - wait a moment and retry, "
                "or reduce the number of panels refreshing at once"
            )
        return "Rate limit exceeded - wait a moment and retry"

    if isinstance(error, TransportError):
        if error.timeout:
            return "Log query timeout - try narrowing your search criteria or time range"
        return f"Connection error: {error.message} - check network connectivity to the log search API"

    if isinstance(error, (AuthenticationError, RemoteServiceError, QueryCancelledError)):
        return error.message

    return error.message or "Query failed"


def partial_warning(pages_fetched: int, records: int) -> str:
    return (
        f"Results are partial: rate limited after {pages_fetched} page(s), "
        f"showing {records} log entries"
    )


class QueryExecutor:
    """
    Runs queries against the fetch engine and cache.

    One executor is shared by all requests; it holds no per-query state.
    """

    def __init__(
        self,
        engine: FetchEngine,
        cache: QueryCache,
        fetch_settings: FetchSettings,
        cache_settings: CacheSettings,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.fetch_settings = fetch_settings
        self.cache_settings = cache_settings
        self.metrics = metrics

    def _record_cache_lookup(self, kind: QueryKind, hit: bool) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup(kind.value, hit)

    async def execute(
        self,
        query: QueryModel,
        time_range: TimeRange,
        cancel: Optional[asyncio.Event] = None,
    ) -> QueryResult:
        """
        Execute one query.

        Never raises for query-level failures: the error is reported on the
        returned result instead.
        """
        if query.is_hidden:
            logger.debug("Skipping hidden query", ref_id=query.ref_id)
            return QueryResult(ref_id=query.ref_id)

        started = time.monotonic()
        outcome = "success"
        try:
            if not query.log_query.strip():
                raise ValidationError("logs query cannot be empty", details={"ref_id": query.ref_id})

            translation = translate_with_advisories(query.log_query)
            if query.query_type == QueryKind.LOGS_VOLUME:
                result = await self._execute_volume(query, translation.expression, time_range, cancel)
            else:
                result = await self._execute_logs(query, translation.expression, time_range, cancel)

            result.warnings = list(translation.advisories) + result.warnings
            if result.partial:
                outcome = "partial"

        except LogQueryException as e:
            outcome = "error"
            log = logger.info if isinstance(e, (ValidationError, QueryCancelledError)) else logger.error
            log(
                "Query failed",
                ref_id=query.ref_id,
                query_type=query.query_type.value,
                error=str(e),
                error_code=e.error_code,
                details=e.details,
            )
            result = QueryResult(
                ref_id=query.ref_id,
                error=describe_error(e),
                error_code=e.error_code,
            )

        except Exception as e:
            outcome = "error"
            logger.error(
                "Unexpected error while executing query",
                ref_id=query.ref_id,
                query_type=query.query_type.value,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            result = QueryResult(
                ref_id=query.ref_id,
                error=f"Query failed due to an internal error: {type(e).__name__}",
                error_code="internal_error",
            )

        finally:
            if self.metrics:
                self.metrics.record_query(query.query_type.value, outcome, time.monotonic() - started)

        return result

    async def execute_raw(
        self,
        raw_query: Mapping[str, Any],
        time_range: TimeRange,
        cancel: Optional[asyncio.Event] = None,
    ) -> QueryResult:
        """Validate a raw query model and execute it."""
        try:
            query = QueryModel.model_validate(raw_query)
        except PydanticValidationError as e:
            ref_id = str(raw_query.get("refId") or "A")
            error = ValidationError("unparseable query model", details={"errors": e.errors(include_url=False)})
            logger.info("Rejected query model", ref_id=ref_id, error=str(e))
            return QueryResult(ref_id=ref_id, error=describe_error(error), error_code=error.error_code)
        return await self.execute(query, time_range, cancel)

    async def execute_many(
        self,
        raw_queries: Sequence[Mapping[str, Any]],
        time_range: TimeRange,
        cancel: Optional[asyncio.Event] = None,
    ) -> Dict[str, QueryResult]:
        """Execute several queries concurrently, keyed by ref ID."""
        results = await asyncio.gather(
            *(self.execute_raw(raw, time_range, cancel) for raw in raw_queries)
        )
        keyed: Dict[str, QueryResult] = {}
        for result in results:
            if result.ref_id in keyed:
                logger.warning("Duplicate query ref ID, keeping the last result", ref_id=result.ref_id)
            keyed[result.ref_id] = result
        return keyed

    async def _execute_logs(
        self,
        query: QueryModel,
        expression: str,
        time_range: TimeRange,
        cancel: Optional[asyncio.Event],
    ) -> QueryResult:
        page_size = self.engine.clamp_page_size(query.page_size)
        fingerprint = QueryFingerprint.build(
            QueryKind.LOGS.value,
            expression,
            time_range.from_time,
            time_range.to_time,
            page_size,
            query.next_cursor,
        )

        entry = self.cache.get(fingerprint, ttl=self.cache_settings.logs_ttl_seconds)
        cached = entry is not None
        self._record_cache_lookup(QueryKind.LOGS, cached)

        if entry is None:
            page = await self.engine.fetch_page(
                expression,
                time_range.from_time,
                time_range.to_time,
                query.next_cursor,
                page_size,
                page_number=query.current_page,
                cancel=cancel,
            )
            entry = self.cache.put(fingerprint, page.records, page.next_cursor)

        pagination = {
            "currentPage": query.current_page,
            "pageSize": page_size,
            "hasNextPage": bool(entry.next_cursor),
            "nextCursor": entry.next_cursor,
            "totalEntries": len(entry.records),
        }
        frame = build_logs_frame(
            entry.records,
            query.ref_id,
            expression,
            limit=page_size,
            pagination=pagination,
        )

        logger.info(
            "Executed logs query",
            ref_id=query.ref_id,
            query=expression,
            entries_returned=len(entry.records),
            page_size=page_size,
            has_next_page=bool(entry.next_cursor),
            cached=cached,
        )
        return QueryResult(ref_id=query.ref_id, frames=[frame], cached=cached)

    async def _execute_volume(
        self,
        query: QueryModel,
        expression: str,
        time_range: TimeRange,
        cancel: Optional[asyncio.Event],
    ) -> QueryResult:
        start, end = time_range.from_time, time_range.to_time
        volume_fingerprint = QueryFingerprint.build(
            QueryKind.LOGS_VOLUME.value,
            expression,
            start,
            end,
            self.fetch_settings.max_total_records,
        )

        entry = self.cache.get(volume_fingerprint, ttl=self.cache_settings.volume_ttl_seconds)
        if entry is None:
            # A logs query for the same window may already have the first page
            logs_fingerprint = QueryFingerprint.build(
                QueryKind.LOGS.value,
                expression,
                start,
                end,
                self.engine.clamp_page_size(query.page_size),
            )
            entry = self.cache.get(logs_fingerprint, ttl=self.cache_settings.logs_ttl_seconds)
            if entry is not None and entry.next_cursor:
                # Only a complete result set gives a faithful histogram
                entry = None

        cached = entry is not None
        self._record_cache_lookup(QueryKind.LOGS_VOLUME, cached)

        warnings = []
        partial = False
        if entry is not None:
            records = list(entry.records)
        else:
            fetched = await self.engine.fetch_all(expression, start, end, cancel=cancel)
            records = fetched.records
            if fetched.partial:
                partial = True
                warnings.append(partial_warning(fetched.pages_fetched, len(records)))
            else:
                self.cache.put(volume_fingerprint, records, fetched.next_cursor)

        buckets = bucketize(records, start, end)
        frame = build_volume_frame(buckets, query.ref_id)

        logger.info(
            "Executed logs volume query",
            ref_id=query.ref_id,
            query=expression,
            entries_count=len(records),
            buckets=len(buckets),
            partial=partial,
            cached=cached,
        )
        return QueryResult(
            ref_id=query.ref_id,
            frames=[frame],
            partial=partial,
            cached=cached,
            warnings=warnings,
        )
