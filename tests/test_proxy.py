"""Tests for the proxy module."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from hotserve.cli.dev.proxy import ProxyManager, ProxyMiddleware
from hotserve.constants import HOT_EVENTS_PATH, HOTSERVE_PROXY_HEADER
from hotserve.models import ProxyConfig


@pytest.fixture
def proxy() -> ProxyManager:
    return ProxyManager(ProxyConfig(target="http://localhost:8000/", match=r"^/api/"))


@pytest.fixture
def mock_request() -> Mock:
    req = Mock(spec=Request)
    req.url.path = "/api/users"
    req.url.query = ""
    req.url.scheme = "http"
    req.method = "GET"
    req.headers = {"user-agent": "test", "host": "localhost:3000"}
    req.client.host = "127.0.0.1"
    req.body = AsyncMock(return_value=b"")
    return req


@pytest.fixture
def mock_response() -> Mock:
    resp = Mock()
    resp.content = b"ok"
    resp.status_code = 200
    resp.headers = httpx.Headers({"content-type": "text/plain"})
    resp.headers.multi_items = lambda: [
        ("content-type", "text/plain"),
        ("content-encoding", "gzip"),
        ("connection", "keep-alive"),
    ]
    return resp


class TestProxyManager:
    """Tests for ProxyManager initialization, routing, and HTTP client."""

    def test_init_and_matching(self, proxy: ProxyManager) -> None:
        assert proxy.target == "http://localhost:8000"
        assert proxy.matches("/api/users") is True
        assert proxy.matches("/about") is False
        assert proxy.matches(HOT_EVENTS_PATH) is False

    def test_no_match_forwards_everything_but_management(self) -> None:
        proxy = ProxyManager(ProxyConfig(target="https://example.test"))
        assert proxy.matches("/anything") is True
        assert proxy.matches(HOT_EVENTS_PATH) is False

    def test_target_must_be_http(self) -> None:
        with pytest.raises(ValueError):
            ProxyConfig(target="ftp://example.test")

    @pytest.mark.asyncio
    async def test_http_client_lifecycle(self, proxy: ProxyManager) -> None:
        client1 = await proxy._get_http_client()
        assert client1 is await proxy._get_http_client()
        await client1.aclose()
        assert client1 is not await proxy._get_http_client()
        await proxy.shutdown()


class TestProxyHttp:
    """Tests for HTTP proxying."""

    @pytest.mark.asyncio
    async def test_forwarding_headers(
        self, proxy: ProxyManager, mock_request: Mock, mock_response: Mock
    ) -> None:
        mock_request.headers = {"connection": "keep-alive", "x-custom": "val", "host": "h:1"}
        with patch.object(proxy, "_get_http_client") as m:
            m.return_value = AsyncMock(request=AsyncMock(return_value=mock_response))
            resp = await proxy.proxy_http(mock_request)

            assert resp.status_code == 200
            headers = m.return_value.request.call_args.kwargs["headers"]
            assert "connection" not in headers
            assert "host" not in headers
            assert headers["x-custom"] == "val"
            assert headers["x-forwarded-host"] == "h:1"
            assert headers[HOTSERVE_PROXY_HEADER] == "true"
            assert "content-encoding" not in resp.headers
            assert "connection" not in resp.headers

    @pytest.mark.asyncio
    async def test_query_string_is_kept(
        self, proxy: ProxyManager, mock_request: Mock, mock_response: Mock
    ) -> None:
        mock_request.url.query = "page=1"
        with patch.object(proxy, "_get_http_client") as m:
            m.return_value = AsyncMock(request=AsyncMock(return_value=mock_response))
            await proxy.proxy_http(mock_request)
            url = m.return_value.request.call_args.kwargs["url"]
            assert url == "http://localhost:8000/api/users?page=1"

    @pytest.mark.asyncio
    async def test_error_handling(self, proxy: ProxyManager, mock_request: Mock) -> None:
        for error, code in [
            (httpx.ConnectError(""), 502),
            (httpx.TimeoutException(""), 504),
            (ValueError(""), 500),
        ]:
            with patch.object(proxy, "_get_http_client") as m:
                m.return_value = AsyncMock(request=AsyncMock(side_effect=error))
                assert (await proxy.proxy_http(mock_request)).status_code == code

    @pytest.mark.asyncio
    async def test_shutdown_and_no_client(
        self, proxy: ProxyManager, mock_request: Mock, mock_response: Mock
    ) -> None:
        proxy.accepting_connections = False
        assert (await proxy.proxy_http(mock_request)).status_code == 503
        proxy.accepting_connections = True
        mock_request.client = None
        with patch.object(proxy, "_get_http_client") as m:
            m.return_value = AsyncMock(request=AsyncMock(return_value=mock_response))
            await proxy.proxy_http(mock_request)
            assert (
                m.return_value.request.call_args.kwargs["headers"]["x-forwarded-for"]
                == "unknown"
            )


class TestProxyMiddleware:
    """Tests for routing through the ASGI middleware."""

    def test_only_matching_paths_are_forwarded(self, proxy: ProxyManager) -> None:
        async def local(_: Request) -> PlainTextResponse:
            return PlainTextResponse("local")

        app = Starlette(
            routes=[Route("/{path:path}", local)],
            middleware=[Middleware(ProxyMiddleware, manager=proxy)],
        )

        forwarded = PlainTextResponse("remote")
        with patch.object(proxy, "proxy_http", AsyncMock(return_value=forwarded)) as m:
            client = TestClient(app)
            assert client.get("/about").text == "local"
            assert client.get("/api/users").text == "remote"
            assert m.await_count == 1


class TestProxyShutdown:
    """Tests for graceful shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown(self, proxy: ProxyManager) -> None:
        await proxy._get_http_client()
        await proxy.shutdown()
        assert proxy.accepting_connections is False
        assert proxy._http_client is None
