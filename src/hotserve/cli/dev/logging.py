"""Centralized logging for `hotserve serve` (component routing and CLI formatting)."""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel

from hotserve.utils import PrefixedLogHandler


class DevLogComponent(str, Enum):
    """Where a log originated (used for prefixes and fine-grained filtering)."""

    SERVER = "server"
    UVICORN = "uvicorn"
    COMPILATION = "compilation"
    TEMPLATE = "template"
    PRODUCER = "producer"
    PORTS = "ports"
    PROXY = "proxy"
    HOT = "hot"


_COMPONENT_COLOR: dict[DevLogComponent, str] = {
    DevLogComponent.SERVER: "bright_blue",
    DevLogComponent.UVICORN: "bright_blue",
    DevLogComponent.COMPILATION: "magenta",
    DevLogComponent.TEMPLATE: "green",
    DevLogComponent.PRODUCER: "yellow",
    DevLogComponent.PORTS: "cyan",
    DevLogComponent.PROXY: "cyan",
    DevLogComponent.HOT: "green",
}


class _DevLogState(BaseModel):
    configured: bool = False
    level: int = logging.INFO


_STATE = _DevLogState()


def configure_dev_logging(*, level: int = logging.INFO) -> None:
    """Route every component logger, and uvicorn's, to the rich console."""
    for component in DevLogComponent:
        logger = logging.getLogger(f"hotserve.dev.{component.value}")
        logger.setLevel(level)
        logger.handlers.clear()
        handler = PrefixedLogHandler(
            f"[{component.value}]", _COMPONENT_COLOR[component], width=14
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    # Access logs are noise for a dev server; only keep uvicorn's own messages.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv = logging.getLogger(name)
        uv.handlers.clear()
        uv.propagate = False
        if name == "uvicorn.access":
            uv.disabled = True
            continue
        uv.setLevel(logging.WARNING if level > logging.DEBUG else logging.DEBUG)
        h = PrefixedLogHandler("[uvicorn]", _COMPONENT_COLOR[DevLogComponent.UVICORN], width=14)
        h.setFormatter(logging.Formatter("%(message)s"))
        uv.addHandler(h)

    _STATE.configured = True
    _STATE.level = level


def get_logger(component: DevLogComponent) -> logging.Logger:
    """Get a dev logger for a component (do not call stdlib logging directly)."""
    logger = logging.getLogger(f"hotserve.dev.{component.value}")
    if not _STATE.configured:
        # Avoid "No handlers could be found" warnings in contexts that don't configure dev logging.
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
    return logger
