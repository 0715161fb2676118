"""The `hotserve serve` command."""

import asyncio
import importlib
import logging
from pathlib import Path
from typing import Annotated, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from rich.markup import escape
from typer import BadParameter, Exit, Option

from hotserve.cli.dev.logging import configure_dev_logging
from hotserve.cli.dev.producers import CommandProducer
from hotserve.cli.dev.server import DevServer
from hotserve.cli.version import with_version
from hotserve.constants import DEFAULT_APP_NAME, DEFAULT_HOST, DEFAULT_PORT
from hotserve.errors import HotserveError
from hotserve.models import ProxyConfig, ServerConfig, SslConfig
from hotserve.paths import get_served_path
from hotserve.utils import console


def parse_env_pairs(pairs: list[str]) -> dict[str, str]:
    """Parse repeated KEY=VALUE options."""
    values: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--env")
        values[key] = value
    return values


def load_substitutions(
    env_file: Path | None, pairs: list[str], public_url: str | None
) -> dict[str, str]:
    """Template substitutions: the env file, then --env pairs, then PUBLIC_URL."""
    substitutions: dict[str, str] = {}
    if env_file is not None and env_file.is_file():
        substitutions.update(
            {k: v for k, v in dotenv_values(env_file).items() if v is not None}
        )
    substitutions.update(parse_env_pairs(pairs))
    # Served path without its trailing slash, so "%PUBLIC_URL%/app.js" works at the root
    substitutions.setdefault("PUBLIC_URL", get_served_path(public_url).rstrip("/"))
    return substitutions


def load_middleware(spec: str) -> Any:
    """Import a middleware class given as "module.path:attr"."""
    if ":" not in spec:
        console.print(
            "[red]❌ Invalid middleware format. Expected format: some.package.file:Middleware[/red]"
        )
        raise Exit(code=1)

    module_path, attribute_name = spec.split(":", 1)
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        console.print(f"[red]❌ Failed to import module {module_path}: {e}[/red]")
        raise Exit(code=1)

    try:
        return getattr(module, attribute_name)
    except AttributeError:
        console.print(
            f"[red]❌ Module {module_path} does not have attribute '{attribute_name}'[/red]"
        )
        raise Exit(code=1)


async def run_dev_server(server: DevServer, producers: list[CommandProducer]) -> None:
    """Start the listener, run producers and wait for a termination signal."""
    tasks: list[asyncio.Task[None]] = []
    try:
        await server.start()
        tasks = [asyncio.create_task(producer.run(server)) for producer in producers]
        await server.wait_terminated()
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await server.shutdown()


@with_version
def serve(
    template: Annotated[
        Path | None,
        Option("--template", "-t", help="HTML template served for browser navigations"),
    ] = None,
    env: Annotated[
        list[str] | None,
        Option("--env", "-e", help="Template substitution as KEY=VALUE (repeatable)"),
    ] = None,
    env_file: Annotated[
        Path | None,
        Option("--env-file", help="Dotenv file with template substitutions"),
    ] = Path(".env"),
    public_url: Annotated[
        str | None,
        Option("--public-url", help="URL or path the app is served at"),
    ] = None,
    host: Annotated[str, Option(help="Host to listen on")] = DEFAULT_HOST,
    port: Annotated[int, Option("--port", "-p", help="Port to listen on")] = DEFAULT_PORT,
    ssl_cert: Annotated[
        Path | None, Option("--ssl-cert", help="TLS certificate file; enables https")
    ] = None,
    ssl_key: Annotated[Path | None, Option("--ssl-key", help="TLS private key file")] = None,
    ssl_password: Annotated[
        str | None, Option("--ssl-password", help="Password of the TLS private key")
    ] = None,
    protocol: Annotated[str, Option(help="Listener protocol (http or http2)")] = "http",
    content: Annotated[
        list[Path] | None,
        Option("--content", "-c", help="Static content directory (repeatable)"),
    ] = None,
    open_browser: Annotated[
        bool, Option("--open/--no-open", help="Open the browser once listening")
    ] = True,
    app_name: Annotated[
        str, Option("--app-name", help="Name shown in the console")
    ] = DEFAULT_APP_NAME,
    proxy: Annotated[
        str | None, Option(help="Forward unmatched requests to this http(s) URL")
    ] = None,
    proxy_match: Annotated[
        str | None, Option("--proxy-match", help="Regex of paths to forward")
    ] = None,
    build: Annotated[
        list[str] | None,
        Option("--build", "-b", help="Build command run as a producer (repeatable)"),
    ] = None,
    watch_path: Annotated[
        list[Path] | None,
        Option("--watch-path", "-w", help="Rerun build commands when these paths change"),
    ] = None,
    middleware: Annotated[
        list[str] | None,
        Option("--middleware", "-m", help="ASGI middleware as module.path:Class (repeatable)"),
    ] = None,
    watch: Annotated[
        bool, Option("--watch/--no-watch", help="Reload the template when it changes")
    ] = True,
    verbose: Annotated[bool, Option("--verbose", "-v", help="Show debug logs")] = False,
):
    """Start the development server."""
    configure_dev_logging(level=logging.DEBUG if verbose else logging.INFO)

    try:
        config = ServerConfig(
            template=template,
            env=load_substitutions(env_file, env or [], public_url) if template else {},
            host=host,
            port=port,
            ssl=SslConfig(certfile=ssl_cert, keyfile=ssl_key, password=ssl_password)
            if ssl_cert
            else None,
            protocol=protocol,
            content=content or [],
            open=open_browser,
            app_name=app_name,
            proxy=ProxyConfig(target=proxy, match=proxy_match) if proxy else None,
            watch=watch,
        )
    except ValidationError as e:
        console.print(f"[red]❌ Invalid configuration:[/red]\n{escape(str(e))}")
        raise Exit(code=1)

    server = DevServer(config)
    for spec in middleware or []:
        server.append_middleware(load_middleware(spec))

    producers = [
        CommandProducer(
            command if len(build or []) == 1 else f"build-{i}",
            command,
            cwd=Path.cwd(),
            watch_paths=watch_path or [],
        )
        for i, command in enumerate(build or [], start=1)
    ]

    try:
        asyncio.run(run_dev_server(server, producers))
    except HotserveError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise Exit(code=1)
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")
