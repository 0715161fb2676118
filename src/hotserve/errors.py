"""Exceptions raised by the hotserve dev server."""


class HotserveError(Exception):
    """Base class for all hotserve errors."""


class AlreadyRunningError(HotserveError):
    """`start()` was called while the server is listening or negotiating a port."""


class PortInUseError(HotserveError):
    """Port negotiation failed or the operator declined the alternative port."""

    def __init__(self, message: str, *, port: int | None = None) -> None:
        super().__init__(message)
        self.port: int | None = port


class TemplateReadError(HotserveError):
    """The template source could not be read."""

    def __init__(self, path: object, reason: object) -> None:
        super().__init__(f"Could not read template {path}: {reason}")
        self.path: object = path


class DuplicateProducerIdError(HotserveError):
    """A generated producer id is already registered."""
