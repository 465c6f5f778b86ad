"""
HTTP transport for the remote log search API.

The fetch engine talks to a small ``Transport`` protocol so tests can
script responses; the production implementation wraps one shared
aiohttp session.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

import aiohttp
import structlog

from .exceptions import RemoteServiceError, TransportError

logger = structlog.get_logger(__name__)


@dataclass
class HttpResponse:
    """Status, body and headers of a completed HTTP exchange."""
    status: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def retry_after(self) -> Optional[int]:
        """Retry-After header in seconds, if the server sent one."""
        value = self.headers.get("Retry-After") or self.headers.get("retry-after")
        if value and value.strip().isdigit():
            return int(value.strip())
        return None


class Transport(Protocol):
    """Minimal async HTTP client used by the fetch engine and health checks."""

    async def post_json(
        self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> HttpResponse:
        ...

    async def get(self, url: str, headers: Mapping[str, str]) -> HttpResponse:
        ...


def _decode_error(url: str, error: UnicodeDecodeError) -> RemoteServiceError:
    logger.error("Failed to decode response body", url=url, encoding=error.encoding, error=str(error))
    return RemoteServiceError(
        "Failed to decode log search response",
        details={"url": url, "encoding": error.encoding},
    )


class AiohttpTransport:
    """
    Transport backed by an aiohttp session.

    Handles:
    - Session lifecycle (start/stop with the application)
    - Mapping client and timeout failures to TransportError
    - Mapping undecodable response bodies to RemoteServiceError
    """

    def __init__(self, timeout_seconds: float = 30.0) -> None:
        self.timeout_seconds = timeout_seconds
        self.session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """Open the shared HTTP session."""
        if self.session is not None:
            return
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
        )
        logger.info("HTTP transport started", timeout_seconds=self.timeout_seconds)

    async def stop(self) -> None:
        """Close the shared HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        logger.info("HTTP transport stopped")

    def _require_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            raise TransportError("HTTP transport not started")
        return self.session

    async def post_json(
        self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> HttpResponse:
        session = self._require_session()
        try:
            async with session.post(url, json=dict(payload), headers=dict(headers)) as response:
                return HttpResponse(
                    status=response.status,
                    text=await response.text(),
                    headers=dict(response.headers),
                )
        except asyncio.TimeoutError as e:
            raise TransportError(
                "Log query timeout - try narrowing your search criteria or time range",
                timeout=True,
                details={"url": url},
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(
                f"Cannot reach log search API: {e}",
                details={"url": url, "error_type": type(e).__name__},
            ) from e
        except UnicodeDecodeError as e:
            raise _decode_error(url, e) from e

    async def get(self, url: str, headers: Mapping[str, str]) -> HttpResponse:
        session = self._require_session()
        try:
            async with session.get(url, headers=dict(headers)) as response:
                return HttpResponse(
                    status=response.status,
                    text=await response.text(),
                    headers=dict(response.headers),
                )
        except asyncio.TimeoutError as e:
            raise TransportError("Request timed out", timeout=True, details={"url": url}) from e
        except aiohttp.ClientError as e:
            raise TransportError(
                f"Cannot reach log search API: {e}",
                details={"url": url, "error_type": type(e).__name__},
            ) from e
        except UnicodeDecodeError as e:
            raise _decode_error(url, e) from e
