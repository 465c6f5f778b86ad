"""
Paginated fetch engine for the remote log search API.

Features:
- Single page fetches with a per-page deadline
- Retry with exponential backoff on rate limiting
- Bounded concurrency through a shared admission gate
- Sequential multi-page fetches that prefer partial results over failure
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..config import FetchSettings, RemoteSettings
from ..models.log_record import LogRecord, ensure_utc
from .exceptions import (
    AuthenticationError,
    LogQueryException,
    RateLimitError,
    RemoteServiceError,
    TransportError,
    error_from_response,
    truncate_body,
)
from .gate import AdmissionGate, cancellable_sleep, wait_cancellable
from .metrics import MetricsCollector
from .normalizer import LogsSearchResponse, ResponseNormalizer
from .transport import Transport

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float, Optional[asyncio.Event]], Awaitable[None]]

SORT_NEWEST_FIRST = "-timestamp"


@dataclass
class RetryState:
    """Retry bookkeeping for one fetch_page call."""
    attempt: int = 0
    last_error: Optional[Exception] = None


@dataclass
class Page:
    """One page of normalized records."""
    records: List[LogRecord]
    next_cursor: str = ""
    page_number: int = 1
    attempts: int = 1


@dataclass
class FetchResult:
    """Result of a multi-page fetch."""
    records: List[LogRecord] = field(default_factory=list)
    next_cursor: str = ""
    pages_fetched: int = 0
    partial: bool = False
    stop_reason: str = ""


def format_api_time(value: datetime) -> str:
    """ISO-8601 UTC with second precision, as the search API expects."""
    return ensure_utc(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class FetchEngine:
    """
    Fetches log records from the remote search API.

    Handles:
    - Request building and credential headers
    - Rate-limit retries (the admission slot is released while backing off)
    - Error mapping with page and attempt context
    - Pagination limits for volume queries
    """

    def __init__(
        self,
        remote: RemoteSettings,
        settings: FetchSettings,
        transport: Transport,
        gate: AdmissionGate,
        normalizer: Optional[ResponseNormalizer] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: SleepFn = cancellable_sleep,
    ) -> None:
        self.remote = remote
        self.settings = settings
        self.transport = transport
        self.gate = gate
        self.normalizer = normalizer or ResponseNormalizer()
        self.metrics = metrics
        self._sleep = sleep

        logger.info(
            "Fetch engine initialized",
            search_url=remote.search_url,
            max_concurrent_requests=gate.capacity,
            max_retries=settings.max_retries,
        )

    def clamp_page_size(self, page_size: Optional[int]) -> int:
        if page_size is None or page_size < 1:
            page_size = self.settings.default_page_size
        return min(page_size, self.settings.max_page_size)

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (0-based)."""
        return min(self.settings.backoff_base_seconds * (2 ** retry_number), self.settings.backoff_max_seconds)

    def inter_page_delay(self, pages_fetched: int) -> float:
        """Delay before the next page once ``pages_fetched`` pages are in."""
        return min(
            self.settings.inter_page_delay_seconds * (2 ** (pages_fetched - 1)),
            self.settings.inter_page_delay_max_seconds,
        )

    def build_payload(
        self,
        expression: str,
        from_time: datetime,
        to_time: datetime,
        cursor: Optional[str],
        limit: int,
    ) -> Dict[str, Any]:
        page: Dict[str, Any] = {"limit": limit}
        if cursor:
            page["cursor"] = cursor
        return {
            "filter": {
                "query": expression,
                "from": format_api_time(from_time),
                "to": format_api_time(to_time),
            },
            "sort": SORT_NEWEST_FIRST,
            "page": page,
        }

    def _headers(self) -> Dict[str, str]:
        return {
            "DD-API-KEY": self.remote.api_key,
            "DD-APPLICATION-KEY": self.remote.app_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _observe_gate(self) -> None:
        if self.metrics:
            self.metrics.update_gate(self.gate.in_flight)

    async def fetch_page(
        self,
        expression: str,
        from_time: datetime,
        to_time: datetime,
        cursor: Optional[str] = None,
        page_size: Optional[int] = None,
        *,
        page_number: int = 1,
        cancel: Optional[asyncio.Event] = None,
    ) -> Page:
        """
        Fetch one page of records.

        Args:
            expression: Translated search expression
            from_time: Range start
            to_time: Range end
            cursor: Cursor from the previous page, None for the first page
            page_size: Requested page size, clamped to the API maximum
            page_number: 1-based page number, used for error context
            cancel: Optional cancellation signal

        Returns:
            Page with normalized records and the next cursor

        Raises:
            LogQueryException subclasses, with ``page`` and ``attempt`` in details
        """
        if not self.remote.has_credentials:
            raise AuthenticationError(
                "Missing API credentials - configure both an API key and an application key"
            )

        payload = self.build_payload(expression, from_time, to_time, cursor, self.clamp_page_size(page_size))

        try:
            return await asyncio.wait_for(
                self._fetch_with_retry(payload, page_number, cancel),
                timeout=self.settings.page_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "Log search page timed out",
                page_number=page_number,
                timeout_seconds=self.settings.page_timeout_seconds,
            )
            raise TransportError(
                "Log query timeout - try narrowing your search criteria or time range",
                timeout=True,
                details={"page": page_number},
            ) from e

    async def _fetch_with_retry(
        self,
        payload: Dict[str, Any],
        page_number: int,
        cancel: Optional[asyncio.Event],
    ) -> Page:
        state = RetryState()
        max_attempts = self.settings.max_retries + 1

        while True:
            state.attempt += 1
            try:
                records, next_cursor = await self._request_page(payload, cancel)
            except RateLimitError as e:
                state.last_error = e
                if state.attempt >= max_attempts:
                    logger.error(
                        "Max retries exceeded for rate limited request",
                        attempts=state.attempt,
                        page_number=page_number,
                    )
                    e.details["attempts"] = state.attempt
                    raise e.add_context(page=page_number, attempt=state.attempt)

                delay = self.backoff_delay(state.attempt - 1)
                logger.warning(
                    "Rate limited by log search API, retrying with backoff",
                    attempt=state.attempt,
                    max_attempts=max_attempts,
                    delay=delay,
                    page_number=page_number,
                )
                if self.metrics:
                    self.metrics.record_rate_limit_retry(state.attempt)
                await self._sleep(delay, cancel)
            except LogQueryException as e:
                raise e.add_context(page=page_number, attempt=state.attempt)
            else:
                logger.debug(
                    "Fetched log search page",
                    page_number=page_number,
                    entries_count=len(records),
                    has_next_page=bool(next_cursor),
                    attempts=state.attempt,
                )
                return Page(
                    records=records,
                    next_cursor=next_cursor,
                    page_number=page_number,
                    attempts=state.attempt,
                )

    async def _request_page(
        self,
        payload: Dict[str, Any],
        cancel: Optional[asyncio.Event],
    ) -> Tuple[List[LogRecord], str]:
        """One HTTP exchange, holding an admission slot only while in flight."""
        async with self.gate.slot(cancel):
            self._observe_gate()
            started = time.monotonic()
            response = await wait_cancellable(
                self.transport.post_json(self.remote.search_url, payload, self._headers()),
                cancel,
            )
            duration = time.monotonic() - started
        self._observe_gate()

        if not response.ok:
            logger.error(
                "Log search request failed",
                status_code=response.status,
                response_body=truncate_body(response.text),
                query=payload["filter"]["query"],
            )
            if self.metrics:
                self.metrics.record_remote_request(response.status, duration)
            raise error_from_response(response.status, response.text, response.retry_after())

        try:
            decoded = LogsSearchResponse.model_validate_json(response.text)
        except PydanticValidationError as e:
            raise RemoteServiceError(
                "Failed to decode log search response",
                upstream_status=response.status,
                details={"body": truncate_body(response.text)},
            ) from e

        records = self.normalizer.normalize_response(decoded)
        if self.metrics:
            self.metrics.record_remote_request(response.status, duration, len(records))
        return records, decoded.next_cursor

    async def fetch_all(
        self,
        expression: str,
        from_time: datetime,
        to_time: datetime,
        page_size: Optional[int] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> FetchResult:
        """
        Fetch pages sequentially until a stop condition is met.

        Stops on a missing cursor, an empty page, the page limit or the
        record limit. A rate limit that survives retries ends the loop with
        the records gathered so far marked partial; with nothing gathered
        it propagates.
        """
        size = page_size or self.settings.volume_page_size
        records: List[LogRecord] = []
        cursor: Optional[str] = None
        pages = 0
        stop_reason = "max_pages"

        while pages < self.settings.max_pages:
            if pages > 0:
                delay = self.inter_page_delay(pages)
                logger.debug("Delaying before next page", delay=delay, page_number=pages + 1)
                await self._sleep(delay, cancel)

            try:
                page = await self.fetch_page(
                    expression,
                    from_time,
                    to_time,
                    cursor,
                    size,
                    page_number=pages + 1,
                    cancel=cancel,
                )
            except RateLimitError:
                if not records:
                    raise
                logger.warning(
                    "Rate limit exceeded, returning partial results",
                    entries_count=len(records),
                    pages_fetched=pages,
                )
                if self.metrics:
                    self.metrics.record_partial_result()
                return FetchResult(
                    records=records,
                    next_cursor=cursor or "",
                    pages_fetched=pages,
                    partial=True,
                    stop_reason="rate_limited",
                )

            pages += 1
            records.extend(page.records)
            cursor = page.next_cursor or None

            if cursor is None:
                stop_reason = "no_cursor"
                break
            if not page.records:
                stop_reason = "empty_page"
                break
            if len(records) >= self.settings.max_total_records:
                logger.info(
                    "Reached maximum record limit",
                    entries_count=len(records),
                    max_total_records=self.settings.max_total_records,
                )
                stop_reason = "max_records"
                break

        logger.info(
            "Completed paginated log search",
            pages_fetched=pages,
            entries_count=len(records),
            stop_reason=stop_reason,
        )
        return FetchResult(
            records=records,
            next_cursor=cursor or "",
            pages_fetched=pages,
            partial=False,
            stop_reason=stop_reason,
        )
