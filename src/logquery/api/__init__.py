"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- /v1/query - Run dashboard log queries
- /metrics - Prometheus metrics
- /healthz, /readyz - Health checks
"""
from .healthz import router as healthz_router
from .metrics import router as metrics_router
from .query import router as query_router

__all__ = ["healthz_router", "metrics_router", "query_router"]
