"""
Custom exceptions for the LogQuery service.

Provides a structured error taxonomy for query execution. Every error
carries an HTTP status code, a machine-readable error code and a details
mapping that lower layers enrich with context (page number, attempt)
before the executor turns it into a user-facing message.
"""

import json
from typing import Any, Dict, List, Optional

BODY_EXCERPT_LIMIT = 200


def truncate_body(body: str, limit: int = BODY_EXCERPT_LIMIT) -> str:
    """Trim a response body to a loggable excerpt."""
    if len(body) > limit:
        return body[:limit] + "..."
    return body


class LogQueryException(Exception):
    """Base exception for LogQuery service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}

    def add_context(self, **context: Any) -> "LogQueryException":
        """Attach context without overwriting keys already recorded."""
        for key, value in context.items():
            if value is not None:
                self.details.setdefault(key, value)
        return self


class ValidationError(LogQueryException):
    """Raised when a query model or time range is invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="validation_error",
            details=details,
        )


class AuthenticationError(LogQueryException):
    """Raised when credentials are missing or rejected by the remote service."""

    def __init__(
        self,
        message: str = "Missing API credentials",
        status_code: int = 401,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status_code,
            error_code="authentication_error",
            details=details,
        )


class RateLimitError(LogQueryException):
    """Raised when the remote service throttles us."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        attempts: Optional[int] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if retry_after:
            details["retry_after"] = retry_after
        if attempts:
            details["attempts"] = attempts

        super().__init__(
            message=message,
            status_code=429,
            error_code="rate_limit_exceeded",
            details=details,
        )


class RemoteSyntaxError(LogQueryException):
    """Raised when the remote service rejects the search expression."""

    def __init__(
        self,
        remote_message: str,
        suggestion: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=remote_message,
            status_code=400,
            error_code="query_syntax_error",
            details=details,
        )
        self.remote_message = remote_message
        self.suggestion = suggestion


class RemoteServiceError(LogQueryException):
    """Raised on 5xx responses, unexpected statuses or undecodable bodies."""

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=502,
            error_code="remote_service_error",
            details=details,
        )
        self.upstream_status = upstream_status
        if upstream_status is not None:
            self.details.setdefault("upstream_status", upstream_status)


class TransportError(LogQueryException):
    """Raised on network, TLS or deadline failures."""

    def __init__(
        self,
        message: str,
        timeout: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=504 if timeout else 502,
            error_code="timeout" if timeout else "transport_error",
            details=details,
        )
        self.timeout = timeout


class QueryCancelledError(LogQueryException):
    """Raised when the caller cancels a query while it waits."""

    def __init__(self, message: str = "Query cancelled") -> None:
        super().__init__(
            message=message,
            status_code=499,
            error_code="query_cancelled",
        )


class PartialParseError(LogQueryException):
    """Diagnostic for a single malformed record. Logged, never raised to callers."""

    def __init__(self, message: str, entry_index: int, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=200,
            error_code="partial_parse_error",
            details=details,
        )
        self.entry_index = entry_index


RATE_LIMIT_PHRASES = ("rate limit", "too many requests", "ratelimit")


def parse_remote_error_body(body: str) -> List[str]:
    """
    Extract error messages from a remote error body.

    Understands an ``errors`` array (strings or objects with ``message`` or
    ``detail``), a single ``error`` string or object, and a top-level
    ``message``. Returns an empty list when nothing recognizable is found.
    """
    if not body:
        return []

    try:
        payload = json.loads(body)
    except ValueError:
        return []
    if not isinstance(payload, dict):
        return []

    messages: List[str] = []
    errors = payload.get("errors")
    if isinstance(errors, list):
        for item in errors:
            if isinstance(item, str):
                messages.append(item)
            elif isinstance(item, dict):
                text = item.get("message") or item.get("detail")
                if isinstance(text, str):
                    messages.append(text)
    elif isinstance(errors, str):
        messages.append(errors)

    if not messages:
        error = payload.get("error")
        if isinstance(error, str):
            messages.append(error)
        elif isinstance(error, dict) and isinstance(error.get("message"), str):
            messages.append(error["message"])

    if not messages and isinstance(payload.get("message"), str):
        messages.append(payload["message"])

    return messages


def suggest_query_fix(error_text: str) -> str:
    """Pick a syntax hint by matching the remote error text."""
    lowered = error_text.lower()

    if "service" in lowered or "facet" in lowered:
        return "Use facet syntax like 'service:api-gateway' or 'source:nginx'. Multiple facets: 'service:web-app source:nginx'"
    if "status" in lowered or "level" in lowered:
        return "Use level syntax 'status:ERROR' or 'status:(ERROR OR WARN)'. Valid levels: DEBUG, INFO, WARN, ERROR, FATAL"
    if "operator" in lowered or "boolean" in lowered:
        return "Use the boolean operators AND, OR, NOT. Example: 'service:web-app AND status:ERROR'"
    if "wildcard" in lowered or "pattern" in lowered:
        return "Use wildcard patterns like 'error*' or '*exception*' for text matching"
    if "quote" in lowered or "unterminated" in lowered:
        return "Make sure every double quote is closed and wrap multi-word values in quotes: 'service:\"my app\"'"
    if "timestamp" in lowered or "date" in lowered or "time" in lowered:
        return "Remove inline time filters and use the dashboard time picker instead"
    return "Use the log search syntax. Examples: 'service:web-app status:ERROR', 'error AND service:api', 'source:nginx'"


def _looks_rate_limited(body: str) -> bool:
    lowered = body.lower()
    return any(phrase in lowered for phrase in RATE_LIMIT_PHRASES)


def error_from_response(status: int, body: str, retry_after: Optional[int] = None) -> LogQueryException:
    """
    Map a non-2xx response onto the error taxonomy.

    The raw body never leaves this function untrimmed: only an excerpt of
    ``BODY_EXCERPT_LIMIT`` characters is kept in the error details.
    """
    details: Dict[str, Any] = {"upstream_status": status, "body": truncate_body(body)}

    if status == 429 or _looks_rate_limited(body):
        error: LogQueryException = RateLimitError(retry_after=retry_after)
        error.details.update(details)
        return error

    if status == 401:
        return AuthenticationError(
            "Invalid API credentials - check your API key and application key",
            status_code=401,
            details=details,
        )

    if status == 403:
        return AuthenticationError(
            "API key missing required permissions - need 'logs_read_data' scope",
            status_code=403,
            details=details,
        )

    if status == 400:
        messages = parse_remote_error_body(body)
        if messages:
            remote_message = "; ".join(messages)
        elif body and not body.lstrip().startswith("{"):
            remote_message = truncate_body(body)
        else:
            remote_message = "Invalid query syntax"
        return RemoteSyntaxError(
            remote_message,
            suggestion=suggest_query_fix(remote_message),
            details=details,
        )

    if status >= 500:
        return RemoteServiceError(
            f"API error ({status}) - service may be unavailable",
            upstream_status=status,
            details=details,
        )

    return RemoteServiceError(
        f"Unexpected response status {status}",
        upstream_status=status,
        details=details,
    )
