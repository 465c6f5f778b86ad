"""
Tests for the aiohttp transport against a local test server.
"""

from typing import AsyncIterator

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from src.logquery.core.exceptions import RemoteServiceError, TransportError
from src.logquery.core.transport import AiohttpTransport

UNDECODABLE_BODY = b'{"data": ["\xff\xfe"]}'


async def _undecodable(request: web.Request) -> web.Response:
    return web.Response(body=UNDECODABLE_BODY, headers={"Content-Type": "application/json; charset=utf-8"})


async def _ok(request: web.Request) -> web.Response:
    return web.json_response({"data": []}, headers={"Retry-After": "3"})


@pytest_asyncio.fixture
async def server() -> AsyncIterator[test_utils.TestServer]:
    app = web.Application()
    app.router.add_post("/bad", _undecodable)
    app.router.add_get("/bad", _undecodable)
    app.router.add_post("/ok", _ok)
    test_server = test_utils.TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest_asyncio.fixture
async def transport() -> AsyncIterator[AiohttpTransport]:
    http = AiohttpTransport(timeout_seconds=5.0)
    await http.start()
    yield http
    await http.stop()


class TestAiohttpTransport:
    """Test response handling and error mapping."""

    @pytest.mark.asyncio
    async def test_post_json_returns_response(
        self, server: test_utils.TestServer, transport: AiohttpTransport
    ) -> None:
        response = await transport.post_json(str(server.make_url("/ok")), {"q": 1}, {})

        assert response.ok is True
        assert response.text == '{"data": []}'
        assert response.retry_after() == 3

    @pytest.mark.asyncio
    async def test_undecodable_post_body_wrapped(
        self, server: test_utils.TestServer, transport: AiohttpTransport
    ) -> None:
        with pytest.raises(RemoteServiceError) as exc_info:
            await transport.post_json(str(server.make_url("/bad")), {}, {})

        assert exc_info.value.message == "Failed to decode log search response"
        assert exc_info.value.details["encoding"] == "utf-8"

    @pytest.mark.asyncio
    async def test_undecodable_get_body_wrapped(
        self, server: test_utils.TestServer, transport: AiohttpTransport
    ) -> None:
        with pytest.raises(RemoteServiceError):
            await transport.get(str(server.make_url("/bad")), {})

    @pytest.mark.asyncio
    async def test_not_started(self) -> None:
        with pytest.raises(TransportError):
            await AiohttpTransport().get("http://localhost/", {})
