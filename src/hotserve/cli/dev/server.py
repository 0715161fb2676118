"""The hotserve development server.

Architecture:
- One asyncio event loop; the listener is a uvicorn server running as a task
- Build producers register with the server and report invalid/done passes;
  results are aggregated into a single console summary per batch
- A shared HTML template is served for navigations and edited through a FIFO
  lease, so producers injecting markup never interleave
- Middleware is registered with a priority and applied in ascending order
  when the listener is built

Listener lifecycle:
    idle -> negotiating_port -> listening -> closing -> closed

Port negotiation asks the operator before moving to another port; without a
terminal attached it fails instead. SIGINT/SIGTERM close the listener and the
template watcher before `serve_forever()` returns.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import os
import signal
import webbrowser
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterator
from pathlib import Path
from typing import Any, Protocol

import uvicorn
import watchfiles
from fastapi import FastAPI
from rich.markup import escape
from rich.prompt import Confirm
from starlette.middleware import Middleware
from starlette.middleware.gzip import GZipMiddleware
from typing_extensions import override

from hotserve.cli.dev.asgi import NoopServiceWorkerMiddleware, create_app
from hotserve.cli.dev.compilation import CompilationAggregator
from hotserve.cli.dev.hot import HotClientHub
from hotserve.cli.dev.logging import DevLogComponent, get_logger
from hotserve.cli.dev.middleware import MiddlewareOrdering
from hotserve.cli.dev.network import prepare_urls
from hotserve.cli.dev.ports import describe_port_owner, detect_port, port_conflict_message
from hotserve.cli.dev.proxy import ProxyManager, ProxyMiddleware
from hotserve.cli.dev.registry import ProducerRegistry
from hotserve.cli.dev.template import TemplateCoordinator, TemplateLease
from hotserve.constants import (
    PRIORITY_COMPRESSION,
    PRIORITY_PROXY,
    PRIORITY_SERVICE_WORKER,
    PRIORITY_USER,
)
from hotserve.errors import AlreadyRunningError, HotserveError, PortInUseError
from hotserve.models import (
    CompilationMessages,
    CompilationSummary,
    EventTag,
    HotEvent,
    ListenerState,
    PreparedUrls,
    ServerConfig,
)
from hotserve.utils import clear_console, console, is_interactive

logger = get_logger(DevLogComponent.SERVER)

PortProbe = Callable[[int, str], int]
ConfirmPrompt = Callable[[str], Awaitable[bool]]


class Listener(Protocol):
    """Surface of `uvicorn.Server` the dev server relies on."""

    started: bool
    should_exit: bool

    async def serve(self) -> None: ...


ListenerFactory = Callable[[FastAPI, ServerConfig, int], Listener]


class _UvicornListener(uvicorn.Server):
    """uvicorn server that leaves signal handling to the dev server."""

    @override
    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def create_listener(app: FastAPI, config: ServerConfig, port: int) -> Listener:
    """Build the uvicorn listener for `app` on `port`."""
    ssl = config.ssl
    uv_config = uvicorn.Config(
        app=app,
        host=config.host,
        port=port,
        lifespan="off",
        log_level="info",
        log_config=None,  # Loggers are configured by configure_dev_logging()
        timeout_graceful_shutdown=5,
        ssl_certfile=str(ssl.certfile) if ssl else None,
        ssl_keyfile=str(ssl.keyfile) if ssl and ssl.keyfile else None,
        ssl_keyfile_password=ssl.password if ssl else None,
    )
    return _UvicornListener(uv_config)


async def confirm_alternate_port(question: str) -> bool:
    """Ask the operator on the terminal without blocking the event loop."""
    return await asyncio.to_thread(Confirm.ask, question, default=True, console=console)


class DevServer:
    """Coordinates build producers, the shared template and the listener."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        port_probe: PortProbe = detect_port,
        confirm: ConfirmPrompt = confirm_alternate_port,
        listener_factory: ListenerFactory = create_listener,
        open_browser: Callable[[str], Any] = webbrowser.open,
        interactive: bool | None = None,
    ) -> None:
        self.config: ServerConfig = config
        self.interactive: bool = is_interactive() if interactive is None else interactive
        self.port_probe: PortProbe = port_probe
        self.confirm: ConfirmPrompt = confirm
        self.listener_factory: ListenerFactory = listener_factory
        self.open_browser: Callable[[str], Any] = open_browser

        self.state: ListenerState = ListenerState.IDLE
        self.port: int | None = None
        self.urls: PreparedUrls | None = None
        self.app: FastAPI | None = None

        self.registry: ProducerRegistry = ProducerRegistry()
        self.compilation: CompilationAggregator = CompilationAggregator(
            self.registry,
            interactive=self.interactive,
            print_instructions=self.print_console_instructions,
        )
        self.template: TemplateCoordinator | None = (
            TemplateCoordinator(config.template, config.env, listener=self._on_template_event)
            if config.template is not None
            else None
        )
        self.middleware: MiddlewareOrdering[Middleware] = MiddlewareOrdering()
        self.hub: HotClientHub = HotClientHub()
        self.proxy: ProxyManager | None = ProxyManager(config.proxy) if config.proxy else None

        self._listener: Listener | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._watch_stop: asyncio.Event | None = None
        self._terminated: asyncio.Event = asyncio.Event()
        self._shutdown_task: asyncio.Task[None] | None = None
        self._signals_installed: bool = False
        self._subscribers: defaultdict[EventTag, list[Callable[..., Any]]] = defaultdict(list)

        self._register_builtin_middleware()

    # === Messages ===

    def subscribe(self, tag: EventTag, callback: Callable[..., Any]) -> None:
        """Call `callback` whenever the server emits `tag`."""
        self._subscribers[tag].append(callback)

    def _emit(self, tag: EventTag, *args: Any) -> None:
        for callback in list(self._subscribers[tag]):
            callback(*args)

    async def dispatch(self, tag: EventTag | str, *args: Any) -> Any:
        """Handle an inbound message by tag, awaiting async handlers."""
        handlers: dict[EventTag, Callable[..., Any]] = {
            EventTag.START_SERVER: self.start,
            EventTag.LOAD_TEMPLATE: self.load_template,
            EventTag.REFRESH_TEMPLATE: self.refresh_template,
            EventTag.COMPILATION_INVALID: self.compilation_invalid,
            EventTag.COMPILATION_DONE: self.compilation_done,
        }
        handler = handlers.get(EventTag(tag))
        if handler is None:
            raise ValueError(f"{tag} is not an inbound message")
        result = handler(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    # === Producers ===

    def register_producer(self, producer: object) -> str:
        return self.registry.register(producer)

    def deregister_producer(self, producer: object) -> None:
        self.registry.deregister(producer)

    def compilation_invalid(self, producer_id: str) -> None:
        self.compilation.on_invalid(producer_id)
        self.hub.publish(HotEvent(type=EventTag.COMPILATION_INVALID))

    def compilation_done(
        self, producer_id: str, messages: CompilationMessages | dict[str, Any]
    ) -> CompilationSummary | None:
        if not isinstance(messages, CompilationMessages):
            messages = CompilationMessages.model_validate(messages)
        summary = self.compilation.on_done(producer_id, messages)
        if summary is not None:
            self._emit(EventTag.ALL_COMPILED, summary)
            self.hub.publish(
                HotEvent(type=EventTag.ALL_COMPILED, payload=summary.model_dump())
            )
        return summary

    # === Template ===

    def _require_template(self) -> TemplateCoordinator:
        if self.template is None:
            raise HotserveError("The `template` option is required.")
        return self.template

    def load_template(self) -> str:
        return self._require_template().load()

    def refresh_template(self) -> str:
        return self._require_template().refresh()

    async def request_template_update(self) -> TemplateLease:
        """Exclusive access to the template; commit the lease to release it."""
        return await self._require_template().request_update()

    def _on_template_event(self, tag: EventTag, content: str) -> None:
        self._emit(tag, content)
        self.hub.publish(HotEvent(type=tag))

    # === Middleware ===

    def append_middleware(
        self, handler: Middleware | type, priority: int = PRIORITY_USER, **options: Any
    ) -> int:
        """Register middleware; returns the priority it was stored at."""
        if not isinstance(handler, Middleware):
            handler = Middleware(handler, **options)
        return self.middleware.append(handler, priority)

    def _register_builtin_middleware(self) -> None:
        self.middleware.append(Middleware(NoopServiceWorkerMiddleware), PRIORITY_SERVICE_WORKER)
        self.middleware.append(Middleware(GZipMiddleware, minimum_size=500), PRIORITY_COMPRESSION)
        if self.proxy is not None:
            self.middleware.append(Middleware(ProxyMiddleware, manager=self.proxy), PRIORITY_PROXY)

    def build_app(self) -> FastAPI:
        """Assemble the ASGI app from the ordered middleware list."""
        app = create_app(
            content=self.config.content,
            template=self.template,
            hub=self.hub,
            middleware=self.middleware.build(),
        )
        if self.config.add_middleware is not None:
            self.config.add_middleware(app)
        return app

    # === Port Negotiation ===

    async def choose_port(self) -> int:
        """Return the configured port, or an alternative the operator accepted.

        Raises:
            PortInUseError: if the port is taken and no alternative was accepted
        """
        requested = self.config.port
        port = await asyncio.to_thread(self.port_probe, requested, self.config.host)
        if port == requested:
            return port

        message = port_conflict_message(requested)
        running = await asyncio.to_thread(describe_port_owner, requested)
        if running:
            message = f"{message} Probably:\n  {running}"

        if not self.interactive:
            raise PortInUseError(message, port=requested)

        clear_console()
        question = (
            f"[yellow]{escape(message)}[/yellow]"
            "\n\nWould you like to run the app on another port instead?"
        )
        if await self.confirm(question):
            return port
        raise PortInUseError(message, port=requested)

    # === Lifecycle ===

    async def start(self) -> None:
        """Negotiate a port, build the app and start listening.

        Raises:
            AlreadyRunningError: if the server is listening or negotiating a port
            PortInUseError: if no port could be negotiated or bound
            TemplateReadError: if the template cannot be read on first load
        """
        if self.state in (ListenerState.LISTENING, ListenerState.NEGOTIATING_PORT):
            raise AlreadyRunningError("hotserve dev server is already running.")

        self._terminated.clear()
        self.state = ListenerState.NEGOTIATING_PORT
        try:
            self.port = await self.choose_port()
            if self.template is not None and not self.template.loaded:
                self.template.load()

            self.urls = prepare_urls(self.config.scheme, self.config.host, self.port)
            if self.config.protocol == "http2":
                logger.warning("HTTP/2 is not available with the uvicorn listener; serving HTTP/1.1")

            self.app = self.build_app()
            self._listener = self.listener_factory(self.app, self.config, self.port)
            self._listener_task = asyncio.create_task(self._run_listener(self._listener))
            await self._wait_until_listening()
        except BaseException:
            await self._discard_listener()
            self.state = ListenerState.IDLE
            raise

        self.state = ListenerState.LISTENING
        logger.debug(f"Listening on {self.config.host}:{self.port}")
        self._install_signal_handlers()
        self._start_template_watcher()
        self.on_listening()

    async def restart(self) -> None:
        """Close the listener if it is running, then start again."""
        if self.state != ListenerState.LISTENING:
            await self.start()
            return

        if self.interactive:
            clear_console()
        console.print("Restarting hotserve...")

        self.state = ListenerState.CLOSING
        await self._close_listener()
        self.state = ListenerState.CLOSED
        await self.start()

    async def close(self) -> None:
        """Stop the listener."""
        if self.state != ListenerState.LISTENING:
            return
        self.state = ListenerState.CLOSING
        await self._close_listener()
        self.state = ListenerState.CLOSED

    async def shutdown(self) -> None:
        """Close the listener and the template watcher, then release `serve_forever()`."""
        await self.close()
        await self._stop_template_watcher()
        if self.proxy is not None:
            await self.proxy.shutdown()
        self._remove_signal_handlers()
        self._terminated.set()

    async def wait_terminated(self) -> None:
        """Block until `shutdown()` ran, usually from a termination signal."""
        await self._terminated.wait()

    async def serve_forever(self) -> None:
        """Start and wait until the server is shut down."""
        await self.start()
        await self.wait_terminated()

    def on_listening(self) -> None:
        if self.interactive:
            clear_console()

        console.print("[cyan]Starting the development server...[/cyan]\n")
        self.print_console_instructions()

        if self.config.open and self.urls is not None:
            self.open_browser(self.urls.local_url_for_browser)

    def print_console_instructions(self) -> None:
        if self.urls is None:
            return
        console.print()
        console.print(
            f"You can now view [bold]{escape(self.config.app_name)}[/bold] in the browser."
        )
        console.print()

        if self.urls.lan_url_for_terminal:
            console.print(f"  [bold]Local:[/bold]            {self.urls.local_url_for_terminal}")
            console.print(f"  [bold]On Your Network:[/bold]  {self.urls.lan_url_for_terminal}")
        else:
            console.print(f"  {self.urls.local_url_for_terminal}")

        console.print()
        console.print("Note that the development build is not optimized.")
        console.print()

    # === Listener Task ===

    async def _run_listener(self, listener: Listener) -> None:
        try:
            await listener.serve()
        except SystemExit as e:
            # uvicorn exits the process when it cannot bind
            raise PortInUseError(
                f"Could not listen on {self.config.host}:{self.port}.", port=self.port
            ) from e

    async def _wait_until_listening(self) -> None:
        assert self._listener is not None and self._listener_task is not None
        while not self._listener.started:
            if self._listener_task.done():
                self._listener_task.result()
                raise PortInUseError(
                    f"Listener on port {self.port} stopped before it started.", port=self.port
                )
            await asyncio.sleep(0.05)

    async def _close_listener(self) -> None:
        listener, task = self._listener, self._listener_task
        self._listener = None
        self._listener_task = None
        # Open event streams would keep the graceful shutdown waiting.
        self.hub.close()
        if listener is None:
            return
        listener.should_exit = True
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _discard_listener(self) -> None:
        listener, task = self._listener, self._listener_task
        self._listener = None
        self._listener_task = None
        if listener is not None:
            listener.should_exit = True
        if task is None:
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError, HotserveError):
            await task

    # === Template Watcher ===

    def _start_template_watcher(self) -> None:
        if not self.config.watch or self.template is None or self._watch_task is not None:
            return
        self._watch_stop = asyncio.Event()
        self._watch_task = asyncio.create_task(self._watch_template(self._watch_stop))

    async def _watch_template(self, stop: asyncio.Event) -> None:
        template = self._require_template()

        def is_template(_: watchfiles.Change, path: str) -> bool:
            return Path(path) == template.path

        # Watch the directory so editors that replace the file are still seen.
        async for _ in watchfiles.awatch(
            template.path.parent, watch_filter=is_template, stop_event=stop
        ):
            logger.info(f"Template {template.path.name} changed, reloading")
            template.reload()

    async def _stop_template_watcher(self) -> None:
        stop, task = self._watch_stop, self._watch_task
        self._watch_stop = None
        self._watch_task = None
        if stop is not None:
            stop.set()
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Template watcher stopped with an error: {e}")

    # === Signals ===

    def _on_signal(self) -> None:
        if self._shutdown_task is None or self._shutdown_task.done():
            logger.debug("Received termination signal, shutting down")
            self._shutdown_task = asyncio.ensure_future(self.shutdown())

    def _install_signal_handlers(self) -> None:
        if self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            if os.name == "nt":
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self._on_signal))
            else:
                loop.add_signal_handler(sig, self._on_signal)
        self._signals_installed = True

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed or os.name == "nt":
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        self._signals_installed = False
