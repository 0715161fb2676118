"""HTTP forwarding for the dev server's `proxy` option.

Requests whose path matches the configured rule are forwarded to the target
server; everything else continues down the middleware chain.
"""

from __future__ import annotations

import re

import httpx
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

from hotserve.cli.dev.logging import DevLogComponent, get_logger
from hotserve.constants import HOTSERVE_MANAGEMENT_PREFIX, HOTSERVE_PROXY_HEADER
from hotserve.models import ProxyConfig

logger = get_logger(DevLogComponent.PROXY)

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


class ProxyManager:
    """Forwards matching requests to `target` with a pooled HTTP client.

    Attributes:
        target: Base URL requests are forwarded to (e.g., "http://localhost:8000")
        match: Compiled path pattern; None forwards every request
        accepting_connections: Flag to control whether new requests are forwarded
    """

    def __init__(self, config: ProxyConfig) -> None:
        self.target: str = config.target
        self.match: re.Pattern[str] | None = (
            re.compile(config.match) if config.match else None
        )
        self.accepting_connections: bool = True
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(60.0, connect=10.0),
                follow_redirects=False,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            )
        return self._http_client

    def matches(self, path: str) -> bool:
        if path.startswith(HOTSERVE_MANAGEMENT_PREFIX):
            return False
        return self.match is None or self.match.search(path) is not None

    async def proxy_http(self, request: Request) -> Response:
        """Forward `request` to the target and return its response."""
        if not self.accepting_connections:
            return Response(
                content="Server is shutting down",
                status_code=503,
                media_type="text/plain",
            )

        target_url = f"{self.target}{request.url.path}"
        if request.url.query:
            target_url = f"{target_url}?{request.url.query}"

        headers = {
            k: v
            for k, v in request.headers.items()
            if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() != "host"
        }
        headers["x-forwarded-for"] = request.client.host if request.client else "unknown"
        headers["x-forwarded-proto"] = request.url.scheme
        headers["x-forwarded-host"] = request.headers.get("host", "")
        headers[HOTSERVE_PROXY_HEADER] = "true"

        try:
            client = await self._get_http_client()
            response = await client.request(
                method=request.method,
                url=target_url,
                headers=headers,
                content=await request.body(),
            )

            response_headers: dict[str, str] = {}
            for key, value in response.headers.multi_items():
                # Content is already decoded by httpx
                if key.lower() not in HOP_BY_HOP_HEADERS and key.lower() not in (
                    "content-encoding",
                    "content-length",
                ):
                    response_headers[key] = value

            return Response(
                content=response.content,
                status_code=response.status_code,
                headers=response_headers,
                media_type=response.headers.get("content-type"),
            )

        except httpx.ConnectError as e:
            logger.warning(f"Failed to connect to {self.target}: {e}")
            return Response(
                content=f"Failed to connect to {self.target}",
                status_code=502,
                media_type="text/plain",
            )
        except httpx.TimeoutException:
            return Response(
                content="Request timed out",
                status_code=504,
                media_type="text/plain",
            )
        except Exception as e:
            logger.error(f"Proxy error: {e}")
            return Response(
                content=f"Proxy error: {e}",
                status_code=500,
                media_type="text/plain",
            )

    async def shutdown(self) -> None:
        """Stop forwarding and close the HTTP client."""
        self.accepting_connections = False
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None


class ProxyMiddleware:
    """ASGI middleware that hands matching HTTP requests to a `ProxyManager`."""

    def __init__(self, app: ASGIApp, manager: ProxyManager) -> None:
        self.app: ASGIApp = app
        self.manager: ProxyManager = manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.manager.matches(scope["path"]):
            await self.app(scope, receive, send)
            return

        response = await self.manager.proxy_http(Request(scope, receive))
        await response(scope, receive, send)
