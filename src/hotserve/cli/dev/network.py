"""URLs the dev server is reachable at."""

from __future__ import annotations

import re
import socket

import psutil

from hotserve.models import PreparedUrls

# https://en.wikipedia.org/wiki/Private_network#Private_IPv4_address_spaces
_PRIVATE_IPV4 = re.compile(r"^10[.]|^172[.](1[6-9]|2[0-9]|3[0-1])[.]|^192[.]168[.]")

_UNSPECIFIED_HOSTS = ("0.0.0.0", "::")


def lan_ip() -> str | None:
    """First non-loopback IPv4 address of this machine."""
    try:
        interfaces = psutil.net_if_addrs()
    except (psutil.Error, OSError):
        return None
    for addresses in interfaces.values():
        for address in addresses:
            if address.family != socket.AF_INET:
                continue
            if address.address.startswith("127."):
                continue
            return address.address
    return None


def format_url(scheme: str, hostname: str, port: int) -> str:
    if ":" in hostname:
        hostname = f"[{hostname}]"
    return f"{scheme}://{hostname}:{port}/"


def pretty_print_url(scheme: str, hostname: str, port: int) -> str:
    """Like `format_url` with the port in bold rich markup."""
    if ":" in hostname:
        hostname = f"\\[{hostname}]"
    return f"{scheme}://{hostname}:[bold]{port}[/bold]/"


def prepare_urls(scheme: str, host: str, port: int) -> PreparedUrls:
    """Compute local and LAN URLs for the terminal and the browser."""
    lan_url_for_config: str | None = None
    lan_url_for_terminal: str | None = None

    if host in _UNSPECIFIED_HOSTS:
        pretty_host = "localhost"
        lan_url_for_config = lan_ip()
        if lan_url_for_config and _PRIVATE_IPV4.match(lan_url_for_config):
            lan_url_for_terminal = pretty_print_url(scheme, lan_url_for_config, port)
        else:
            # Address is not private, so we will discard it
            lan_url_for_config = None
    else:
        pretty_host = host

    return PreparedUrls(
        local_url_for_terminal=pretty_print_url(scheme, pretty_host, port),
        local_url_for_browser=format_url(scheme, pretty_host, port),
        lan_url_for_config=lan_url_for_config,
        lan_url_for_terminal=lan_url_for_terminal,
    )
