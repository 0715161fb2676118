"""Resolution of the public URL the app is served at."""

from __future__ import annotations

import os
from urllib.parse import urlparse


def ensure_slash(path: str, needs_slash: bool) -> str:
    """Add or strip the trailing slash of `path`."""
    has_slash = path.endswith("/")
    if has_slash and not needs_slash:
        return path[:-1]
    if not has_slash and needs_slash:
        return f"{path}/"
    return path


def get_public_url(homepage: str | None = None) -> str | None:
    """`PUBLIC_URL` from the environment wins over the project's homepage."""
    return os.environ.get("PUBLIC_URL") or homepage


def get_served_path(homepage: str | None = None) -> str:
    """Path prefix the app is served under, always ending with a slash.

    Single-page apps need an absolute root so nested URLs like `/todos/42`
    still resolve their assets.
    """
    env_public_url = os.environ.get("PUBLIC_URL")
    public_url = get_public_url(homepage)
    if env_public_url:
        served_url = env_public_url
    elif public_url:
        served_url = urlparse(public_url).path or "/"
    else:
        served_url = "/"
    return ensure_slash(served_url, True)
