"""Centralized Pydantic models, enums, and type aliases for hotserve."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hotserve.constants import (
    DEFAULT_APP_NAME,
    DEFAULT_HOST,
    DEFAULT_PORT,
    TEMPLATE_TOKEN_DELIMITER,
)


# === Type Aliases ===

ListenerProtocol: TypeAlias = Literal["http", "http2"]

# Receives the constructed FastAPI application
AddMiddlewareHook: TypeAlias = Callable[[Any], None]


# === Enums ===


class ListenerState(str, Enum):
    """States of the dev server listener."""

    IDLE = "idle"
    NEGOTIATING_PORT = "negotiating_port"
    LISTENING = "listening"
    CLOSING = "closing"
    CLOSED = "closed"


class BatchState(str, Enum):
    """States of one compilation aggregation cycle."""

    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHED = "flushed"


class EventTag(str, Enum):
    """Message tags exchanged between the dev server and its collaborators."""

    START_SERVER = "start-server"
    LOAD_TEMPLATE = "load-template"
    REFRESH_TEMPLATE = "refresh-template"
    TEMPLATE_LOADED = "template-loaded"
    TEMPLATE_REFRESHED = "template-refreshed"
    TEMPLATE_UPDATED = "template-updated"
    COMPILATION_INVALID = "compilation-invalid"
    COMPILATION_DONE = "compilation-done"
    # Spelling is part of the wire contract with existing hot clients.
    ALL_COMPILED = "all-compilled"


# === Compilation Models ===


class CompilationMessages(BaseModel):
    """Messages reported by a producer at the end of one build pass.

    Errors are listed before warnings when displayed.
    """

    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class CompilationSummary(BaseModel):
    """What a flush computed and what it displayed."""

    successful: bool
    errors_count: int = 0
    warnings_count: int = 0
    producer_id: str | None = None
    producer_name: str | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# === Configuration Models ===


class SslConfig(BaseModel):
    """TLS credential bundle for the listener."""

    certfile: Path
    keyfile: Path | None = None
    password: str | None = None


class ProxyConfig(BaseModel):
    """Forwarding rule set: requests whose path matches `match` go to `target`."""

    target: str
    match: str | None = None

    @field_validator("target")
    @classmethod
    def _normalize_target(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"Proxy target must be an http(s) URL: {value}")
        return value.rstrip("/")


class ServerConfig(BaseModel):
    """Complete configuration for the development server.

    This is the single source of truth for all dev server defaults.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(arbitrary_types_allowed=True)

    template: Path | None = None
    env: dict[str, str] = Field(default_factory=dict)
    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    ssl: SslConfig | None = None
    protocol: ListenerProtocol = "http"
    content: list[Path] = Field(default_factory=list)
    open: bool = True
    app_name: str = DEFAULT_APP_NAME
    proxy: ProxyConfig | None = None
    add_middleware: AddMiddlewareHook | None = None
    watch: bool = True

    @field_validator("content", mode="before")
    @classmethod
    def _content_as_list(cls, value: Any) -> Any:
        if isinstance(value, (str, Path)):
            return [value] if str(value) else []
        return value

    @field_validator("env")
    @classmethod
    def _check_env_keys(cls, value: dict[str, str]) -> dict[str, str]:
        for key in value:
            if not key or TEMPLATE_TOKEN_DELIMITER in key:
                raise ValueError(f"Invalid substitution key: {key!r}")
        return value

    @property
    def scheme(self) -> str:
        """URL scheme the listener answers on."""
        return "https" if self.ssl else "http"


class PreparedUrls(BaseModel):
    """URLs printed to the terminal and opened in the browser."""

    local_url_for_terminal: str
    local_url_for_browser: str
    lan_url_for_config: str | None = None
    lan_url_for_terminal: str | None = None


# === Hot Client Models ===


class HotEvent(BaseModel):
    """A notification pushed to connected browser clients."""

    type: EventTag
    payload: dict[str, Any] = Field(default_factory=dict)
