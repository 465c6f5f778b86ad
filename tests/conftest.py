"""
Pytest configuration and shared fixtures.

Contains a scripted transport standing in for the remote log search API,
builders for response payloads, and the wired-up pipeline objects used
across the unit and integration tests.
"""

import asyncio
import json
from collections import deque
from typing import Any, Deque, Dict, Generator, List, Mapping, Optional, Union

import pytest
from fastapi.testclient import TestClient

from src.logquery.config import CacheSettings, FetchSettings, RemoteSettings, Settings
from src.logquery.core.cache import QueryCache
from src.logquery.core.executor import QueryExecutor
from src.logquery.core.fetcher import FetchEngine
from src.logquery.core.gate import AdmissionGate
from src.logquery.core.transport import HttpResponse
from src.logquery.main import create_app
from src.logquery.models.query import TimeRange

ScriptedReply = Union[HttpResponse, Exception]


def make_entry(entry_id: str, timestamp: Any, message: str = "test message", **attributes: Any) -> Dict[str, Any]:
    """A log entry in the v2 search API layout."""
    attrs: Dict[str, Any] = {"timestamp": timestamp, "message": message, "status": "info"}
    attrs.update(attributes)
    return {"id": entry_id, "type": "log", "attributes": attrs}


def page_response(entries: List[Dict[str, Any]], cursor: Optional[str] = None) -> HttpResponse:
    """A successful search response holding ``entries``."""
    body: Dict[str, Any] = {"data": entries, "meta": {}}
    if cursor:
        body["meta"] = {"page": {"after": cursor}}
    return HttpResponse(status=200, text=json.dumps(body))


def rate_limited() -> HttpResponse:
    return HttpResponse(
        status=429,
        text=json.dumps({"errors": ["Rate limit exceeded"]}),
        headers={"Retry-After": "1"},
    )


class FakeTransport:
    """
    Transport that replays scripted replies in order.

    Records every request and tracks the peak number of concurrent
    requests. With nothing scripted it answers with an empty page.
    """

    def __init__(self) -> None:
        self.replies: Deque[ScriptedReply] = deque()
        self.requests: List[Dict[str, Any]] = []
        self.get_requests: List[str] = []
        self.get_status = 200
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def queue(self, *replies: ScriptedReply) -> None:
        self.replies.extend(replies)

    async def post_json(
        self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> HttpResponse:
        self.requests.append({"url": url, "payload": dict(payload), "headers": dict(headers)})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            reply = self.replies.popleft() if self.replies else page_response([])
            if isinstance(reply, Exception):
                raise reply
            return reply
        finally:
            self.in_flight -= 1

    async def get(self, url: str, headers: Mapping[str, str]) -> HttpResponse:
        self.get_requests.append(url)
        return HttpResponse(status=self.get_status, text=json.dumps({"valid": self.get_status == 200}))


class RecordingSleep:
    """Sleep replacement that records delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float, cancel: Optional[asyncio.Event] = None) -> None:
        self.delays.append(delay)


@pytest.fixture
def remote_settings() -> RemoteSettings:
    """Remote API settings with test credentials."""
    return RemoteSettings(
        site="datadoghq.com",
        api_key="test_api_key_123456789",
        app_key="test_app_key_123456789",
    )


@pytest.fixture
def fetch_settings() -> FetchSettings:
    return FetchSettings(page_timeout_seconds=5.0)


@pytest.fixture
def cache_settings() -> CacheSettings:
    return CacheSettings()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def gate(fetch_settings: FetchSettings) -> AdmissionGate:
    return AdmissionGate(capacity=fetch_settings.max_concurrent_requests)


@pytest.fixture
def engine(
    remote_settings: RemoteSettings,
    fetch_settings: FetchSettings,
    fake_transport: FakeTransport,
    gate: AdmissionGate,
    recording_sleep: RecordingSleep,
) -> FetchEngine:
    """Fetch engine wired to the fake transport, without real sleeps."""
    return FetchEngine(remote_settings, fetch_settings, fake_transport, gate, sleep=recording_sleep)


@pytest.fixture
def executor(engine: FetchEngine, fetch_settings: FetchSettings, cache_settings: CacheSettings) -> QueryExecutor:
    return QueryExecutor(engine, QueryCache(), fetch_settings, cache_settings)


@pytest.fixture
def hour_range() -> TimeRange:
    """One aligned hour, 10:00 to 11:00 UTC."""
    return TimeRange.model_validate({"from": "2024-01-15T10:00:00Z", "to": "2024-01-15T11:00:00Z"})


@pytest.fixture
def test_settings(remote_settings: RemoteSettings) -> Settings:
    """Application settings with short delays so retries do not slow tests down."""
    return Settings(
        log_level="DEBUG",
        remote=remote_settings,
        fetch=FetchSettings(
            backoff_base_seconds=0.01,
            backoff_max_seconds=0.02,
            inter_page_delay_seconds=0.01,
            inter_page_delay_max_seconds=0.02,
            page_timeout_seconds=5.0,
        ),
        cache=CacheSettings(),
    )


@pytest.fixture
def test_client(fake_transport: FakeTransport, test_settings: Settings) -> Generator[TestClient, None, None]:
    """FastAPI test client running the full pipeline against the fake transport."""
    app = create_app(transport=fake_transport, settings=test_settings)
    with TestClient(app) as client:
        yield client
