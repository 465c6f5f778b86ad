"""
Health checker for the query service dependencies.

Performs readiness checks for:
- API credentials being configured
- Log search API reachability and key validity
- Admission gate saturation
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List

import structlog

from ..config import RemoteSettings
from .exceptions import LogQueryException
from .gate import AdmissionGate
from .transport import Transport

logger = structlog.get_logger(__name__)


@dataclass
class HealthCheck:
    """Individual health check result."""
    name: str
    status: str  # "healthy", "unhealthy", "unknown"
    message: str
    details: Dict[str, Any]
    last_check: float


@dataclass
class HealthStatus:
    """Overall health status."""
    is_healthy: bool
    checks: Dict[str, HealthCheck]
    failed_checks: List[str]
    timestamp: float


class HealthChecker:
    """Readiness checks for LogQuery dependencies."""

    def __init__(self, remote: RemoteSettings, transport: Transport, gate: AdmissionGate) -> None:
        self.remote = remote
        self.transport = transport
        self.gate = gate

    async def check_all(self) -> HealthStatus:
        """Perform all health checks and return overall status."""
        results = await asyncio.gather(
            asyncio.to_thread(self._check_credentials),
            self._check_remote_api(),
            asyncio.to_thread(self._check_gate),
        )

        checks = {result.name: result for result in results}
        failed_checks = [name for name, check in checks.items() if check.status != "healthy"]

        return HealthStatus(
            is_healthy=not failed_checks,
            checks=checks,
            failed_checks=failed_checks,
            timestamp=time.time(),
        )

    def _check_credentials(self) -> HealthCheck:
        missing = [
            name for name, value in (("api_key", self.remote.api_key), ("app_key", self.remote.app_key))
            if not value
        ]
        if missing:
            return HealthCheck(
                name="credentials",
                status="unhealthy",
                message=f"Missing credentials: {', '.join(missing)}",
                details={"missing": missing},
                last_check=time.time(),
            )
        return HealthCheck(
            name="credentials",
            status="healthy",
            message="Credentials configured",
            details={"api_key": self.remote.api_key[:8] + "..."},
            last_check=time.time(),
        )

    async def _check_remote_api(self) -> HealthCheck:
        """Check that the log search API accepts our API key."""
        if not self.remote.api_key:
            return HealthCheck(
                name="remote_api",
                status="unknown",
                message="Skipped: no API key configured",
                details={},
                last_check=time.time(),
            )

        started = time.monotonic()
        try:
            response = await self.transport.get(
                self.remote.validate_url,
                {"DD-API-KEY": self.remote.api_key, "Accept": "application/json"},
            )
        except LogQueryException as e:
            logger.warning("Log search API connectivity check failed", error=str(e))
            return HealthCheck(
                name="remote_api",
                status="unhealthy",
                message=f"Cannot reach log search API: {e}",
                details={"url": self.remote.validate_url, "error_code": e.error_code},
                last_check=time.time(),
            )

        response_time_ms = int((time.monotonic() - started) * 1000)
        if response.ok:
            return HealthCheck(
                name="remote_api",
                status="healthy",
                message="Log search API is reachable",
                details={
                    "url": self.remote.validate_url,
                    "status_code": response.status,
                    "response_time_ms": response_time_ms,
                },
                last_check=time.time(),
            )

        return HealthCheck(
            name="remote_api",
            status="unhealthy",
            message=f"Log search API returned status {response.status}",
            details={"url": self.remote.validate_url, "status_code": response.status},
            last_check=time.time(),
        )

    def _check_gate(self) -> HealthCheck:
        details = {"capacity": self.gate.capacity, "in_flight": self.gate.in_flight}
        if self.gate.available <= 0:
            return HealthCheck(
                name="admission_gate",
                status="unhealthy",
                message="All admission slots are in use",
                details=details,
                last_check=time.time(),
            )
        return HealthCheck(
            name="admission_gate",
            status="healthy",
            message=f"{self.gate.available} of {self.gate.capacity} slots free",
            details=details,
            last_check=time.time(),
        )
