"""
Tests for the query result cache.
"""

from datetime import datetime, timedelta, timezone

from src.logquery.core.cache import FIRST_PAGE, QueryCache, QueryFingerprint
from src.logquery.models.log_record import LogRecord

START = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
END = START + timedelta(hours=1)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _record(record_id: str) -> LogRecord:
    return LogRecord(id=record_id, timestamp=START)


class TestQueryFingerprint:
    """Test fingerprint identity."""

    def test_equal_inputs_give_equal_fingerprints(self) -> None:
        a = QueryFingerprint.build("logs", "error", START, END, 100)
        b = QueryFingerprint.build("logs", "error", START, END, 100)
        assert a == b
        assert a.key == b.key

    def test_empty_cursor_is_first_page(self) -> None:
        a = QueryFingerprint.build("logs", "error", START, END, 100, cursor="")
        assert a.cursor == FIRST_PAGE
        assert a == QueryFingerprint.build("logs", "error", START, END, 100)

    def test_result_shaping_fields_distinguish(self) -> None:
        base = QueryFingerprint.build("logs", "error", START, END, 100)
        assert base != QueryFingerprint.build("logs-volume", "error", START, END, 100)
        assert base != QueryFingerprint.build("logs", "warn", START, END, 100)
        assert base != QueryFingerprint.build("logs", "error", START, END, 50)
        assert base != QueryFingerprint.build("logs", "error", START, END, 100, cursor="c2")
        assert base != QueryFingerprint.build("logs", "error", START + timedelta(milliseconds=1), END, 100)

    def test_equal_instants_in_other_zones_match(self) -> None:
        shifted = START.astimezone(timezone(timedelta(hours=2)))
        assert QueryFingerprint.build("logs", "q", shifted, END, 1) == QueryFingerprint.build("logs", "q", START, END, 1)


class TestQueryCache:
    """Test TTL behaviour of the cache."""

    def test_miss_then_hit(self) -> None:
        cache = QueryCache(clock=FakeClock())
        fingerprint = QueryFingerprint.build("logs", "error", START, END, 100)

        assert cache.get(fingerprint, ttl=10) is None
        cache.put(fingerprint, [_record("1")], next_cursor="c2")

        entry = cache.get(fingerprint, ttl=10)
        assert entry is not None
        assert [r.id for r in entry.records] == ["1"]
        assert entry.next_cursor == "c2"

    def test_entry_expires_at_ttl(self) -> None:
        clock = FakeClock()
        cache = QueryCache(clock=clock)
        fingerprint = QueryFingerprint.build("logs", "error", START, END, 100)
        cache.put(fingerprint, [_record("1")])

        clock.now = 1009.5
        assert cache.get(fingerprint, ttl=10) is not None
        clock.now = 1010.0
        assert cache.get(fingerprint, ttl=10) is None
        # Expired entries stay until purged
        assert len(cache) == 1

    def test_ttl_is_per_lookup(self) -> None:
        clock = FakeClock()
        cache = QueryCache(clock=clock)
        fingerprint = QueryFingerprint.build("logs", "error", START, END, 100)
        cache.put(fingerprint, [])

        clock.now += 20
        assert cache.get(fingerprint, ttl=10) is None
        assert cache.get(fingerprint, ttl=30) is not None

    def test_put_replaces_entry(self) -> None:
        clock = FakeClock()
        cache = QueryCache(clock=clock)
        fingerprint = QueryFingerprint.build("logs", "error", START, END, 100)
        cache.put(fingerprint, [_record("old")])
        clock.now += 20
        cache.put(fingerprint, [_record("new")])

        entry = cache.get(fingerprint, ttl=10)
        assert [r.id for r in entry.records] == ["new"]

    def test_purge_expired(self) -> None:
        clock = FakeClock()
        cache = QueryCache(clock=clock)
        old = QueryFingerprint.build("logs", "old", START, END, 100)
        fresh = QueryFingerprint.build("logs", "fresh", START, END, 100)
        cache.put(old, [])
        clock.now += 15
        cache.put(fresh, [])

        assert cache.purge_expired(ttl=10) == 1
        assert len(cache) == 1
        assert cache.get(fresh, ttl=10) is not None

    def test_clear(self) -> None:
        cache = QueryCache(clock=FakeClock())
        cache.put(QueryFingerprint.build("logs", "a", START, END, 1), [])
        cache.clear()
        assert len(cache) == 0
