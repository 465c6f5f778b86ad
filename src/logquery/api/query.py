"""
Query endpoint.

POST /v1/query runs every query of a dashboard request concurrently and
returns one result per ref ID.
"""

import structlog
from fastapi import APIRouter, Request, status

from ..core.exceptions import LogQueryException
from ..core.executor import QueryExecutor
from ..models.query import ErrorResponse, QueryRequest, QueryResponse

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_query_executor(request: Request) -> QueryExecutor:
    """Shared executor created by the application lifespan."""
    executor = getattr(request.app.state, "executor", None)
    if executor is None:
        raise LogQueryException(
            "Query executor not initialized",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="service_unavailable",
        )
    return executor


@router.post(
    "/query",
    response_model=QueryResponse,
    status_code=200,
    summary="Run log queries",
    description="""
    Run one or more log queries over a shared time range.

    **Query kinds:**
    - `logs` - one page of log lines, with pagination metadata
    - `logs-volume` - a histogram of log counts over the time range

    Failed queries carry an `error` message on their own result; the
    request itself still succeeds. Results cut short by rate limiting are
    marked `partial`.
    """,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed request"},
        503: {"model": ErrorResponse, "description": "Service not ready"},
    },
)
async def run_queries(body: QueryRequest, request: Request) -> QueryResponse:
    """Execute the queries in the request body."""
    executor = get_query_executor(request)

    logger.info(
        "Received query request",
        queries_count=len(body.queries),
        from_time=body.range.from_time.isoformat(),
        to_time=body.range.to_time.isoformat(),
    )

    results = await executor.execute_many(body.queries, body.range)
    return QueryResponse(results=results)
