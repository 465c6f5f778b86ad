"""
Response normalizer.

Converts whatever the remote search API returned into canonical
``LogRecord`` objects:
- wire-shape adapters collapse the possible response shapes into a
  sequence of mappings once, at the boundary
- versioned constructors build records from the v2 and legacy layouts
- timestamps are parsed with a fixed priority of formats and end up in UTC
- tracing correlation IDs are pulled out of loosely-structured attributes
- labels are sanitized before the records reach a data frame
"""

import json
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from ..models.log_record import LogLabels, LogRecord, coerce_severity
from .exceptions import PartialParseError

logger = structlog.get_logger(__name__)

TRACE_ID_KEYS = ("trace_id", "traceId", "trace-id", "dd.trace_id")
SPAN_ID_KEYS = ("span_id", "spanId", "span-id", "dd.span_id")

# Attributes consumed by a dedicated LogRecord field
CLAIMED_ATTRIBUTES = frozenset(
    {"message", "msg", "status", "level", "service", "source", "host", "env", "version", "tags", "timestamp"}
)

MAX_LABEL_KEY_LENGTH = 100
MAX_LABEL_VALUE_LENGTH = 1000
EPOCH_MILLIS_THRESHOLD = 1e12

_INVALID_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")
_RFC3339_FRACTION = re.compile(
    r"^(\d{4}-\d{2}-\d{2})T(\d{2}:\d{2}:\d{2})\.(\d+)(Z|[+-]\d{2}:?\d{2})$",
    re.IGNORECASE,
)
_EPOCH_STRING = re.compile(r"^-?\d+(\.\d+)?$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LogsSearchResponse(BaseModel):
    """Decoded body of a log search response."""

    data: List[Any] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)
    links: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    @field_validator("data", "meta", "links", mode="before")
    def null_is_empty(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            return [] if info.field_name == "data" else {}
        return v

    @property
    def next_cursor(self) -> str:
        """Cursor for the following page, empty on the last page."""
        page = self.meta.get("page") or {}
        after = page.get("after") if isinstance(page, dict) else None
        return after if isinstance(after, str) else ""


# Wire-shape adapters

def entries_from_array(items: Sequence[Any]) -> List[Mapping[str, Any]]:
    """Keep the mapping items of a bare array."""
    entries: List[Mapping[str, Any]] = []
    for index, item in enumerate(items):
        if isinstance(item, Mapping):
            entries.append(item)
        else:
            logger.warning("Skipping non-object log entry", index=index, entry_type=type(item).__name__)
    return entries


def entries_from_mapping(payload: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    """Entries of a decoded JSON object with a ``data`` array."""
    data = payload.get("data")
    if data is None:
        logger.debug("No data field in response, returning empty results")
        return []
    if not isinstance(data, list):
        logger.warning("Response data is not an array", data_type=type(data).__name__)
        return []
    return entries_from_array(data)


def entries_from_response(response: LogsSearchResponse) -> List[Mapping[str, Any]]:
    return entries_from_array(response.data)


# Timestamps

def _from_epoch(value: float) -> Optional[datetime]:
    try:
        seconds = value / 1000 if abs(value) > EPOCH_MILLIS_THRESHOLD else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_rfc3339(text: str) -> Optional[datetime]:
    try:
        return datetime.strptime(text, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        return None


def _parse_rfc3339_fraction(text: str) -> Optional[datetime]:
    match = _RFC3339_FRACTION.match(text)
    if match is None:
        return None
    date_part, time_part, fraction, offset = match.groups()
    # Python resolves microseconds, nanosecond digits are dropped
    micros = fraction[:6].ljust(6, "0")
    offset = "+0000" if offset.upper() == "Z" else offset.replace(":", "")
    try:
        return datetime.strptime(f"{date_part}T{time_part}.{micros}{offset}", "%Y-%m-%dT%H:%M:%S.%f%z")
    except ValueError:
        return None


def _parse_naive(fmt: str) -> Callable[[str], Optional[datetime]]:
    def parse(text: str) -> Optional[datetime]:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            return None
    return parse


def _parse_epoch_string(text: str) -> Optional[datetime]:
    if not _EPOCH_STRING.match(text):
        return None
    return _from_epoch(float(text))


_STRING_PARSERS: Tuple[Callable[[str], Optional[datetime]], ...] = (
    _parse_rfc3339,
    _parse_rfc3339_fraction,
    _parse_naive("%Y-%m-%dT%H:%M:%S"),
    _parse_naive("%Y-%m-%dT%H:%M:%S.%f"),
    _parse_naive("%Y-%m-%d %H:%M:%S"),
    _parse_epoch_string,
)


def try_parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a timestamp in any supported representation, or return None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return _from_epoch(value)
    if isinstance(value, str):
        text = value.strip()
        for parser in _STRING_PARSERS:
            parsed = parser(text)
            if parsed is not None:
                return parsed.astimezone(timezone.utc)
    return None


def parse_timestamp(value: Any, now: Optional[Callable[[], datetime]] = None) -> datetime:
    """Parse a timestamp, falling back to the current UTC time."""
    parsed = try_parse_timestamp(value)
    if parsed is not None:
        return parsed
    logger.warning("Failed to parse timestamp, using current time", timestamp=value)
    return (now or _utcnow)()


# Tracing correlation

def _lookup(attributes: Mapping[str, Any], key: str) -> Any:
    if key in attributes:
        return attributes[key]
    if key.startswith("dd."):
        vendor = attributes.get("dd")
        if isinstance(vendor, Mapping):
            return vendor.get(key[3:])
    return None


def _id_text(value: Any) -> str:
    """Render a correlation ID, or "" when the value counts as absent."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, int):
        return str(value) if value != 0 else ""
    if isinstance(value, float):
        if value == 0 or not math.isfinite(value):
            return ""
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        text = value.strip()
        return "" if text in ("", "0") else text
    return ""


def _first_id(scopes: Sequence[Mapping[str, Any]], keys: Sequence[str]) -> str:
    for scope in scopes:
        for key in keys:
            text = _id_text(_lookup(scope, key))
            if text:
                return text
    return ""


def extract_trace_context(attributes: Mapping[str, Any]) -> Tuple[str, str]:
    """
    Find trace and span IDs in an attribute map.

    The top-level map is searched first, then a nested ``attributes`` map.
    Zero, empty and boolean values count as absent.
    """
    scopes: List[Mapping[str, Any]] = [attributes]
    nested = attributes.get("attributes")
    if isinstance(nested, Mapping):
        scopes.append(nested)
    return _first_id(scopes, TRACE_ID_KEYS), _first_id(scopes, SPAN_ID_KEYS)


# Field extraction

def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _split_tags(raw_tags: Any) -> Dict[str, str]:
    tags: Dict[str, str] = {}
    if isinstance(raw_tags, Mapping):
        for key, value in raw_tags.items():
            tags[str(key)] = _as_text(value) or str(value)
    elif isinstance(raw_tags, (list, tuple)):
        for tag in raw_tags:
            if isinstance(tag, str) and ":" in tag:
                key, value = tag.split(":", 1)
                tags[key] = value
    return tags


def _entry_id(entry: Mapping[str, Any]) -> str:
    value = entry.get("id")
    if isinstance(value, bool):
        return ""
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return ""


def _build_record(
    record_id: str,
    attributes: Mapping[str, Any],
    now: Callable[[], datetime],
) -> LogRecord:
    timestamp = parse_timestamp(attributes.get("timestamp"), now)

    body = attributes.get("message")
    if not isinstance(body, str):
        body = _as_text(attributes.get("msg"))

    status = attributes.get("status")
    if not isinstance(status, str):
        status = attributes.get("level")

    trace_id, span_id = extract_trace_context(attributes)
    labels = LogLabels(
        service=_as_text(attributes.get("service")),
        source=_as_text(attributes.get("source")),
        host=_as_text(attributes.get("host")),
        env=_as_text(attributes.get("env")),
        version=_as_text(attributes.get("version")),
        tags=_split_tags(attributes.get("tags")),
        attributes={key: value for key, value in attributes.items() if key not in CLAIMED_ATTRIBUTES},
        trace_id=trace_id,
        span_id=span_id,
    )

    return LogRecord(
        id=record_id,
        timestamp=timestamp,
        body=body,
        severity=coerce_severity(status),
        labels=labels,
    )


def record_from_v2_entry(
    entry: Mapping[str, Any],
    now: Callable[[], datetime] = _utcnow,
) -> LogRecord:
    """Build a record from the search API v2 layout ``{id, attributes: {...}}``."""
    record_id = _entry_id(entry)
    if not record_id:
        raise ValueError("entry has no usable id")
    attributes = entry.get("attributes")
    if not isinstance(attributes, Mapping):
        raise ValueError("entry has no attributes object")
    return _build_record(record_id, attributes, now)


def record_from_legacy_entry(
    entry: Mapping[str, Any],
    now: Callable[[], datetime] = _utcnow,
) -> LogRecord:
    """
    Build a record from the flat legacy layout.

    Legacy entries carry message, level and labels at the top level, with
    custom attributes in an ``attributes`` object.
    """
    record_id = _entry_id(entry)
    if not record_id:
        raise ValueError("entry has no usable id")

    custom = entry.get("attributes")
    if custom is not None and not isinstance(custom, Mapping):
        raise ValueError("entry attributes is not an object")

    flattened: Dict[str, Any] = dict(custom or {})
    for key, value in entry.items():
        if key not in ("id", "attributes", "type"):
            flattened[key] = value
    return _build_record(record_id, flattened, now)


def is_legacy_entry(entry: Mapping[str, Any]) -> bool:
    """Legacy entries keep timestamp and message at the top level."""
    return "timestamp" in entry or "message" in entry


class ResponseNormalizer:
    """
    Turns raw API entries into canonical log records.

    Malformed entries are skipped and reported as PartialParseError
    diagnostics; they never abort the batch.
    """

    def __init__(self, now: Callable[[], datetime] = _utcnow) -> None:
        self._now = now

    def normalize(self, raw_entries: Sequence[Mapping[str, Any]]) -> List[LogRecord]:
        records, _ = self.normalize_with_diagnostics(raw_entries)
        return records

    def normalize_with_diagnostics(
        self, raw_entries: Sequence[Mapping[str, Any]]
    ) -> Tuple[List[LogRecord], List[PartialParseError]]:
        """Normalize entries and return the diagnostics for skipped ones."""
        records: List[LogRecord] = []
        diagnostics: List[PartialParseError] = []

        for index, entry in enumerate(raw_entries):
            build = record_from_legacy_entry if is_legacy_entry(entry) else record_from_v2_entry
            try:
                records.append(build(entry, self._now))
            except (ValueError, ValidationError) as e:
                diagnostic = PartialParseError(
                    f"Skipping log entry: {e}",
                    entry_index=index,
                    details={"id": entry.get("id")},
                )
                diagnostics.append(diagnostic)
                logger.warning("Skipping malformed log entry", index=index, id=entry.get("id"), error=str(e))

        logger.debug(
            "Normalized log entries",
            entries_received=len(raw_entries),
            entries_returned=len(records),
            entries_skipped=len(diagnostics),
        )
        return records, diagnostics

    def normalize_response(self, response: LogsSearchResponse) -> List[LogRecord]:
        return self.normalize(entries_from_response(response))


# Sanitization

def sanitize_label_key(name: str) -> Optional[str]:
    """
    Restrict a label key to ``[A-Za-z0-9_.-]``.

    Returns None for keys that are empty or longer than 100 characters.
    """
    name = str(name).strip()
    if not name or len(name) > MAX_LABEL_KEY_LENGTH:
        return None
    cleaned = _INVALID_KEY_CHARS.sub("_", name)
    if cleaned[0].isdigit():
        cleaned = f"field_{cleaned}"
    return cleaned


def sanitize_label_value(value: Any) -> str:
    """Stringify a label value and cap it at 1000 characters."""
    if value is None:
        text = ""
    elif isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, int):
        text = str(value)
    elif isinstance(value, float):
        text = format(value, ".6g")
    elif isinstance(value, str):
        text = value
    elif isinstance(value, (Mapping, list, tuple)):
        text = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    else:
        text = str(value)

    text = text.strip()
    if len(text) > MAX_LABEL_VALUE_LENGTH:
        text = text[:MAX_LABEL_VALUE_LENGTH - 3] + "..."
    return text


def _sanitize_mapping(values: Mapping[str, Any]) -> Dict[str, str]:
    sanitized: Dict[str, str] = {}
    for key, value in values.items():
        clean_key = sanitize_label_key(key)
        if clean_key is None:
            logger.debug("Dropping invalid label key", key=str(key)[:50])
            continue
        sanitized[clean_key] = sanitize_label_value(value)
    return sanitized


def sanitize_record(record: LogRecord) -> LogRecord:
    """Return a copy of ``record`` that is safe to render."""
    labels = record.labels
    clean_labels = LogLabels(
        service=labels.service.strip(),
        source=labels.source.strip(),
        host=labels.host.strip(),
        env=labels.env.strip(),
        version=labels.version.strip(),
        tags=_sanitize_mapping(labels.tags),
        attributes=_sanitize_mapping(labels.attributes),
        trace_id=labels.trace_id.strip(),
        span_id=labels.span_id.strip(),
    )
    return record.model_copy(update={"body": record.body.strip(), "labels": clean_labels})
