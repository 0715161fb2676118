"""Development server for hotserve."""

from hotserve.cli.dev.producers import CommandProducer
from hotserve.cli.dev.server import DevServer
from hotserve.models import (
    CompilationMessages,
    CompilationSummary,
    EventTag,
    ListenerState,
    ProxyConfig,
    ServerConfig,
    SslConfig,
)

__all__ = [
    "CommandProducer",
    "CompilationMessages",
    "CompilationSummary",
    "DevServer",
    "EventTag",
    "ListenerState",
    "ProxyConfig",
    "ServerConfig",
    "SslConfig",
]
