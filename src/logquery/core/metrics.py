"""
Prometheus metrics collection.

In-memory counters for query execution, cache efficiency and remote API
traffic. Each collector owns its registry so several apps (or tests) can
live in one process.
"""

import time
from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for LogQuery.

    Keep metrics simple, use in-memory counters, let Prometheus handle storage.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        # Service info
        self.service_info = Info(
            "logquery_service",
            "LogQuery service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": "0.1.0",
            "service": "logquery",
        })

        # Query metrics
        self.queries_total = Counter(
            "logquery_queries_total",
            "Total queries executed",
            ["kind", "outcome"],
            registry=self.registry,
        )

        self.query_duration = Histogram(
            "logquery_query_duration_seconds",
            "Query execution duration in seconds",
            ["kind"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry,
        )

        # Cache metrics
        self.cache_lookups_total = Counter(
            "logquery_cache_lookups_total",
            "Query cache lookups",
            ["kind", "result"],
            registry=self.registry,
        )

        # Remote API metrics
        self.remote_requests_total = Counter(
            "logquery_remote_requests_total",
            "Total requests to the log search API",
            ["status_code"],
            registry=self.registry,
        )

        self.remote_request_duration = Histogram(
            "logquery_remote_request_duration_seconds",
            "Log search API request duration in seconds",
            buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

        self.rate_limit_retries_total = Counter(
            "logquery_rate_limit_retries_total",
            "Retries after a rate-limited request",
            ["attempt"],
            registry=self.registry,
        )

        self.partial_results_total = Counter(
            "logquery_partial_results_total",
            "Paginated fetches cut short by rate limiting",
            registry=self.registry,
        )

        self.records_fetched_total = Counter(
            "logquery_records_fetched_total",
            "Log records returned by the log search API",
            registry=self.registry,
        )

        # Admission gate
        self.gate_in_flight = Gauge(
            "logquery_gate_in_flight",
            "Remote requests currently holding an admission slot",
            registry=self.registry,
        )

        self.uptime_seconds = Gauge(
            "logquery_uptime_seconds",
            "Service uptime in seconds",
            registry=self.registry,
        )

        self._start_time = time.time()

    def record_query(self, kind: str, outcome: str, duration_seconds: float) -> None:
        """Record a finished query."""
        self.queries_total.labels(kind=kind, outcome=outcome).inc()
        self.query_duration.labels(kind=kind).observe(duration_seconds)

    def record_cache_lookup(self, kind: str, hit: bool) -> None:
        self.cache_lookups_total.labels(kind=kind, result="hit" if hit else "miss").inc()

    def record_remote_request(self, status_code: int, duration_seconds: float, records_count: int = 0) -> None:
        """Record one HTTP exchange with the log search API."""
        self.remote_requests_total.labels(status_code=str(status_code)).inc()
        self.remote_request_duration.observe(duration_seconds)
        if records_count:
            self.records_fetched_total.inc(records_count)

    def record_rate_limit_retry(self, attempt: int) -> None:
        self.rate_limit_retries_total.labels(attempt=str(attempt)).inc()

    def record_partial_result(self) -> None:
        self.partial_results_total.inc()

    def update_gate(self, in_flight: int) -> None:
        self.gate_in_flight.set(in_flight)

    def update_system_metrics(self) -> None:
        self.uptime_seconds.set(time.time() - self._start_time)
