"""
Tests for configuration, health checks and metrics.
"""

import os
from unittest.mock import patch

import pytest
from prometheus_client import generate_latest

from src.logquery.config import RemoteSettings, get_settings, reload_settings
from src.logquery.core.gate import AdmissionGate
from src.logquery.core.health import HealthChecker
from src.logquery.core.metrics import MetricsCollector
from tests.conftest import FakeTransport


class TestConfiguration:
    """Test settings loading."""

    def test_site_normalized(self) -> None:
        remote = RemoteSettings(site="https://api.datadoghq.eu/")
        assert remote.site == "datadoghq.eu"
        assert remote.search_url == "https://api.datadoghq.eu/api/v2/logs/events/search"
        assert remote.validate_url == "https://api.datadoghq.eu/api/v1/validate"

    def test_has_credentials(self) -> None:
        assert RemoteSettings(api_key="k", app_key="a").has_credentials is True
        assert RemoteSettings(api_key="k", app_key="").has_credentials is False

    def test_config_file_provides_defaults(self) -> None:
        config = {
            "server": {"port": 9090},
            "fetch": {"max_retries": 4},
            "cache": {"logs_ttl_seconds": 2.5},
        }
        with patch.dict(os.environ, {}, clear=False):
            for name in ("LOGQUERY_PORT", "LOGQUERY_FETCH_MAX_RETRIES", "LOGQUERY_CACHE_LOGS_TTL_SECONDS"):
                os.environ.pop(name, None)
            os.environ["LOGQUERY_FETCH_MAX_PAGES"] = "7"

            with patch("src.logquery.config.load_config_file", return_value=config):
                settings = reload_settings()

            assert settings.port == 9090
            assert settings.fetch.max_retries == 4
            assert settings.fetch.max_pages == 7
            assert settings.cache.logs_ttl_seconds == 2.5

        get_settings.cache_clear()

    def test_env_wins_over_config_file(self) -> None:
        with patch.dict(os.environ, {"LOGQUERY_FETCH_MAX_RETRIES": "1"}, clear=False):
            with patch("src.logquery.config.load_config_file", return_value={"fetch": {"max_retries": 4}}):
                settings = reload_settings()
            assert settings.fetch.max_retries == 1

        get_settings.cache_clear()


class TestHealthChecker:
    """Test readiness checks."""

    @pytest.mark.asyncio
    async def test_all_healthy(self, remote_settings: RemoteSettings, fake_transport: FakeTransport) -> None:
        checker = HealthChecker(remote_settings, fake_transport, AdmissionGate(capacity=2))

        status = await checker.check_all()

        assert status.is_healthy is True
        assert set(status.checks) == {"credentials", "remote_api", "admission_gate"}
        assert fake_transport.get_requests == [remote_settings.validate_url]
        assert status.checks["credentials"].details["api_key"] == "test_api..."

    @pytest.mark.asyncio
    async def test_missing_credentials(self, fake_transport: FakeTransport) -> None:
        checker = HealthChecker(RemoteSettings(api_key="", app_key=""), fake_transport, AdmissionGate())

        status = await checker.check_all()

        assert status.is_healthy is False
        assert "credentials" in status.failed_checks
        assert status.checks["remote_api"].status == "unknown"
        assert fake_transport.get_requests == []

    @pytest.mark.asyncio
    async def test_rejected_key(self, remote_settings: RemoteSettings, fake_transport: FakeTransport) -> None:
        fake_transport.get_status = 403
        checker = HealthChecker(remote_settings, fake_transport, AdmissionGate())

        status = await checker.check_all()

        assert status.failed_checks == ["remote_api"]

    @pytest.mark.asyncio
    async def test_saturated_gate(self, remote_settings: RemoteSettings, fake_transport: FakeTransport) -> None:
        gate = AdmissionGate(capacity=1)
        checker = HealthChecker(remote_settings, fake_transport, gate)

        async with gate.slot():
            status = await checker.check_all()

        assert status.failed_checks == ["admission_gate"]


class TestMetricsCollector:
    """Test metric recording."""

    def test_collectors_are_independent(self) -> None:
        first = MetricsCollector()
        second = MetricsCollector()

        first.record_query("logs", "success", 0.1)

        assert b'logquery_queries_total{kind="logs",outcome="success"} 1.0' in generate_latest(first.registry)
        assert b'outcome="success"} 1.0' not in generate_latest(second.registry)

    def test_remote_and_cache_metrics(self) -> None:
        metrics = MetricsCollector()

        metrics.record_cache_lookup("logs", hit=True)
        metrics.record_remote_request(429, 0.2)
        metrics.record_rate_limit_retry(1)
        metrics.record_remote_request(200, 0.3, records_count=5)

        output = generate_latest(metrics.registry)
        assert b'logquery_cache_lookups_total{kind="logs",result="hit"} 1.0' in output
        assert b'logquery_remote_requests_total{status_code="429"} 1.0' in output
        assert b'logquery_rate_limit_retries_total{attempt="1"} 1.0' in output
        assert b"logquery_records_fetched_total 5.0" in output
