"""Port availability probing and best-effort identification of port owners."""

from __future__ import annotations

import os
import re
import socket
import tomllib
from pathlib import Path

import psutil

from hotserve.cli.dev.logging import DevLogComponent, get_logger
from hotserve.constants import DEFAULT_HOST, PRIVILEGED_PORT_LIMIT
from hotserve.errors import PortInUseError
from hotserve.utils import is_root

logger = get_logger(DevLogComponent.PORTS)

MAX_PORT = 65535

# A hotserve dev server started from a project directory
_HOTSERVE_COMMAND = re.compile(r"(^|[/\s])hotserve(\.exe)?\s+serve\b|-m\s+hotserve\s+serve\b")


def is_port_available(port: int, host: str = DEFAULT_HOST) -> bool:
    """Check if a port is available for binding on `host`.

    Two strategies are used:
    1. Try connecting on loopback (detects servers bound to another interface)
    2. Try binding to the requested host
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(0.2)
            if sock.connect_ex(("127.0.0.1", port)) == 0:
                return False
    except (socket.error, OSError):
        pass

    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    try:
        with socket.socket(family, socket.SOCK_STREAM) as sock:
            sock.bind((host, port))
    except OSError:
        return False
    return True


def detect_port(port: int, host: str = DEFAULT_HOST) -> int:
    """Return `port` if it is free, otherwise the next free port above it.

    Port 0 asks the OS for any free port.

    Raises:
        PortInUseError: if no port up to 65535 is free
    """
    if port == 0:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        with socket.socket(family, socket.SOCK_STREAM) as sock:
            sock.bind((host, 0))
            return int(sock.getsockname()[1])

    for candidate in range(port, MAX_PORT + 1):
        if is_port_available(candidate, host):
            if candidate != port:
                logger.debug(f"Port {port} is taken, {candidate} is free")
            return candidate
    raise PortInUseError(f"No free port found at or above {port}.", port=port)


def port_conflict_message(port: int) -> str:
    """Explain why `port` could not be used."""
    if os.name != "nt" and port < PRIVILEGED_PORT_LIMIT and not is_root():
        return f"Administrator privileges are required to run a server on a port below {PRIVILEGED_PORT_LIMIT}."
    return f"Some service is already running on port {port}."


def find_listeners_for_port(port: int) -> list[int]:
    """Return PIDs that have a LISTEN socket bound to the port (best-effort)."""
    pids: set[int] = set()
    access_denied = False
    try:
        for conn in psutil.net_connections(kind="inet"):
            if not conn.laddr:
                continue
            if getattr(conn.laddr, "port", None) != port:
                continue
            if conn.status != psutil.CONN_LISTEN:
                continue
            if conn.pid:
                pids.add(int(conn.pid))
    except (psutil.AccessDenied, PermissionError):
        access_denied = True

    # Fallback: on some platforms (notably macOS) net_connections requires
    # elevated privileges; per-process connections work for same-user processes.
    if not pids and access_denied:
        for proc in psutil.process_iter(["pid"]):
            try:
                for c in proc.net_connections(kind="inet"):
                    if not getattr(c, "laddr", None):
                        continue
                    if getattr(c.laddr, "port", None) != port:
                        continue
                    if getattr(c, "status", None) != psutil.CONN_LISTEN:
                        continue
                    pids.add(int(proc.pid))
                    break
            except (psutil.NoSuchProcess, psutil.AccessDenied, OSError):
                continue
    return sorted(pids)


def project_name_by_dir(directory: Path) -> str | None:
    """Project name declared in `directory/pyproject.toml`, if any."""
    try:
        with (directory / "pyproject.toml").open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return None
    name = data.get("project", {}).get("name")
    return name if isinstance(name, str) else None


def describe_port_owner(port: int) -> str | None:
    """Describe the process listening on `port`, or None if it cannot be determined."""
    try:
        pids = find_listeners_for_port(port)
        if not pids:
            return None
        proc = psutil.Process(pids[0])
        directory = proc.cwd()
        command = " ".join(proc.cmdline())
    except (psutil.Error, OSError):
        return None

    cmd_name = command
    if _HOTSERVE_COMMAND.search(command):
        cmd_name = project_name_by_dir(Path(directory)) or command

    return f"{cmd_name} (pid {proc.pid}) in {directory}"
