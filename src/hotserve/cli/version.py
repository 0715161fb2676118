"""Version banner shared by CLI commands."""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from hotserve import __version__
from hotserve.utils import console

F = TypeVar("F", bound=Callable[..., Any])


def with_version(func: F) -> F:
    """Print the hotserve version before running the command."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        console.print(f"[dim]hotserve v{__version__}[/dim]")
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]
