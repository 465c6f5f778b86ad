"""
Tests for label sanitization and frame building.
"""

from datetime import datetime, timezone

import pytest

from src.logquery.core.frames import build_logs_frame, build_volume_frame
from src.logquery.core.normalizer import sanitize_label_key, sanitize_label_value, sanitize_record
from src.logquery.models.log_record import HistogramBucket, LogLabels, LogLevel, LogRecord

TS = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


class TestLabelKeys:
    """Test label key sanitization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("service", "service"),
            ("http.status_code", "http.status_code"),
            ("invalid name!", "invalid_name_"),
            ("123x", "field_123x"),
            ("  padded  ", "padded"),
        ],
    )
    def test_key_cleaning(self, raw: str, expected: str) -> None:
        assert sanitize_label_key(raw) == expected

    def test_empty_and_oversized_keys_dropped(self) -> None:
        assert sanitize_label_key("") is None
        assert sanitize_label_key("   ") is None
        assert sanitize_label_key("k" * 101) is None
        assert sanitize_label_key("k" * 100) == "k" * 100


class TestLabelValues:
    """Test label value stringification."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (True, "true"),
            (False, "false"),
            (42, "42"),
            (1.5, "1.5"),
            (None, ""),
            ("  spaced ", "spaced"),
            ({"b": 1, "a": 2}, '{"a":2,"b":1}'),
            ([1, "x"], '[1,"x"]'),
        ],
    )
    def test_value_rendering(self, raw, expected: str) -> None:
        assert sanitize_label_value(raw) == expected

    def test_long_value_truncated(self) -> None:
        value = sanitize_label_value("x" * 1200)
        assert len(value) == 1000
        assert value.endswith("...")


class TestSanitizeRecord:
    """Test whole-record sanitization."""

    def test_attributes_and_tags_cleaned(self) -> None:
        record = LogRecord(
            id="1",
            timestamp=TS,
            body="  hello  ",
            labels=LogLabels(
                service=" api ",
                tags={"bad key": "v"},
                attributes={"9lives": 9, "": "dropped", "nested": {"k": True}},
            ),
        )

        clean = sanitize_record(record)

        assert clean.body == "hello"
        assert clean.labels.service == "api"
        assert clean.labels.tags == {"bad_key": "v"}
        assert clean.labels.attributes == {"field_9lives": "9", "nested": '{"k":true}'}
        assert record.body == "  hello  "


class TestFrames:
    """Test logs and volume frame layout."""

    def test_logs_frame_columns(self) -> None:
        record = LogRecord(
            id="r1",
            timestamp=TS,
            body="connection refused",
            severity=LogLevel.ERROR,
            labels=LogLabels(service="api", attributes={"user id": "u1"}),
        )

        frame = build_logs_frame([record], "A", 'service:api "connection refused"', limit=100)

        assert [f.name for f in frame.fields] == ["timestamp", "body", "severity", "id", "labels"]
        assert frame.field("severity").values == ["ERROR"]
        assert frame.field("labels").values == [{"service": "api", "attributes": {"user_id": "u1"}}]
        assert frame.meta.type == "log-lines"
        assert frame.meta.preferred_visualization == "logs"
        assert frame.meta.custom["searchWords"] == ["connection refused"]
        assert frame.meta.custom["limit"] == 100
        assert frame.length == 1

    def test_empty_logs_frame(self) -> None:
        frame = build_logs_frame([], "A")
        assert frame.length == 0
        assert frame.meta.custom["searchWords"] == []

    def test_volume_frame(self) -> None:
        buckets = [HistogramBucket(bucket_start=TS, count=3)]

        frame = build_volume_frame(buckets, "A")

        assert frame.name == "log-volume-A"
        assert frame.ref_id == "log-volume-A"
        assert frame.field("Time").values == [TS]
        assert frame.field("Value").values == [3]
        assert frame.field("Value").labels == {"level": "logs"}
        assert frame.meta.preferred_visualization == "graph"

    def test_unknown_column_raises(self) -> None:
        with pytest.raises(KeyError):
            build_volume_frame([], "A").field("nope")
