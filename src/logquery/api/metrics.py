"""
Prometheus metrics endpoint.

Exposes metrics in Prometheus text format for scraping.
"""

import structlog
from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="""
    Prometheus metrics endpoint in standard text format.

    **Key Metrics:**
    - logquery_queries_total{kind,outcome} - Queries executed
    - logquery_cache_lookups_total{kind,result} - Cache hits and misses
    - logquery_remote_requests_total{status_code} - Log search API calls
    - logquery_rate_limit_retries_total{attempt} - Rate-limit retries
    - logquery_partial_results_total - Fetches cut short by rate limiting
    - logquery_gate_in_flight - Admission slots in use
    """,
)
async def get_metrics(request: Request) -> Response:
    """Return metrics in Prometheus text format."""
    metrics_collector = getattr(request.app.state, "metrics", None)

    if not metrics_collector:
        logger.warning("Metrics collector not initialized")
        return Response(
            content="# Metrics collector not initialized\n",
            media_type=CONTENT_TYPE_LATEST,
        )

    metrics_collector.update_system_metrics()
    metrics_data = generate_latest(metrics_collector.registry)

    logger.debug("Metrics scraped successfully", size_bytes=len(metrics_data))
    return Response(content=metrics_data, media_type=CONTENT_TYPE_LATEST)
