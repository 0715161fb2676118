"""Built-in ASGI pieces of the dev server: service worker reset, content roots,
template fallback and the hot events stream."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from fastapi import FastAPI
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Receive, Scope, Send

from hotserve import __version__
from hotserve.cli.dev.hot import HotClientHub
from hotserve.cli.dev.logging import DevLogComponent, get_logger
from hotserve.cli.dev.template import TemplateCoordinator
from hotserve.constants import HOT_EVENTS_PATH, SERVICE_WORKER_PATH

logger = get_logger(DevLogComponent.SERVER)

# Replaces any worker previously registered for this host:port so development
# never hits a production cache that used the same origin.
NOOP_SERVICE_WORKER = """\
self.addEventListener('install', () => self.skipWaiting());

self.addEventListener('activate', () => {
  self.clients.matchAll({ type: 'window' }).then(windowClients => {
    for (const windowClient of windowClients) {
      windowClient.navigate(windowClient.url);
    }
  });
});
"""


class NoopServiceWorkerMiddleware:
    def __init__(self, app: ASGIApp, path: str = SERVICE_WORKER_PATH) -> None:
        self.app: ASGIApp = app
        self.path: str = path

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"] == self.path:
            response = Response(
                NOOP_SERVICE_WORKER,
                media_type="text/javascript",
                headers={"Cache-Control": "no-cache"},
            )
            await response(scope, receive, send)
            return
        await self.app(scope, receive, send)


def _wants_html(request: Request) -> bool:
    # Paths with a file extension are assets, never client-side routes
    if Path(request.url.path).suffix:
        return False
    accept = request.headers.get("accept", "")
    return "text/html" in accept or "*/*" in accept


def create_app(
    *,
    content: Sequence[Path],
    template: TemplateCoordinator | None,
    hub: HotClientHub,
    middleware: Sequence[Middleware],
) -> FastAPI:
    """Create the dev server app.

    Args:
        content: Static roots, searched in order after every middleware declined
        template: Coordinator whose current content answers HTML navigations
        hub: Hot client notification hub
        middleware: Ordered middleware, outermost first
    """
    roots: list[StaticFiles] = []
    for folder in content:
        if not folder.is_dir():
            logger.warning(f"Content directory {folder} does not exist, skipping")
            continue
        roots.append(StaticFiles(directory=folder.resolve()))

    async def hot_events(_: Request) -> StreamingResponse:
        return StreamingResponse(
            hub.stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    async def serve(request: Request) -> Response:
        for root in roots:
            try:
                return await root.get_response(root.get_path(request.scope), request.scope)
            except HTTPException as e:
                if e.status_code != 404:
                    raise

        if template is not None and template.loaded and _wants_html(request):
            return HTMLResponse(template.current, headers={"Cache-Control": "no-cache"})

        return PlainTextResponse("Not Found", status_code=404)

    return FastAPI(
        title="hotserve",
        version=__version__,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
        routes=[
            Route(HOT_EVENTS_PATH, hot_events, methods=["GET"]),
            Route("/{path:path}", serve, methods=["GET", "HEAD"]),
        ],
        middleware=list(middleware),
    )
