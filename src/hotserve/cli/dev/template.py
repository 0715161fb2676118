"""The shared HTML template served by the dev server.

The template is read once from disk (`original`) and the substitution map is
applied to produce the servable `current` content. Producers that need to
inject markup (script tags, styles) edit `current` through an exclusive lease:
`request_update()` hands out the content together with a one-shot `commit`,
and concurrent requests wait in arrival order until the holder commits.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from pathlib import Path

from hotserve.cli.dev.logging import DevLogComponent, get_logger
from hotserve.constants import TEMPLATE_TOKEN_DELIMITER
from hotserve.errors import TemplateReadError
from hotserve.models import EventTag

logger = get_logger(DevLogComponent.TEMPLATE)

TemplateListener = Callable[[EventTag, str], None]


class TemplateLease:
    """Exclusive write access to the template, released by `commit`."""

    def __init__(self, coordinator: TemplateCoordinator, content: str) -> None:
        self._coordinator: TemplateCoordinator = coordinator
        self.content: str = content
        self.committed: bool = False

    def commit(self, content: str) -> None:
        """Store `content` as the new template and hand over to the next waiter."""
        if self.committed:
            raise RuntimeError("Template lease was already committed")
        self.committed = True
        self._coordinator._finish_update(content)


class TemplateCoordinator:
    """Owns the template document and serializes its mutations."""

    def __init__(
        self,
        path: Path,
        substitutions: dict[str, str] | None = None,
        *,
        listener: TemplateListener | None = None,
    ) -> None:
        self.path: Path = path.resolve()
        self.substitutions: dict[str, str] = dict(substitutions or {})
        self.listener: TemplateListener | None = listener
        self.original: str | None = None
        self.current: str = ""
        self.updating: bool = False
        self._queue: deque[asyncio.Future[TemplateLease]] = deque()

    @property
    def loaded(self) -> bool:
        return self.original is not None

    def load(self) -> str:
        """Read the template from disk and apply substitutions.

        Raises:
            TemplateReadError: if the file cannot be read
        """
        cold = self.loaded
        try:
            original = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TemplateReadError(self.path, e) from e

        self.original = original
        self.current = original
        self.apply_substitutions()
        logger.debug(f"{'Reloaded' if cold else 'Loaded'} template {self.path}")
        self._notify(EventTag.TEMPLATE_LOADED)
        return self.current

    def reload(self) -> bool:
        """Reload after a change on disk, keeping the previous content on failure."""
        try:
            self.load()
        except TemplateReadError as e:
            logger.error(f"{e}; keeping the previous template")
            return False
        return True

    def refresh(self) -> str:
        """Re-derive `current` from `original` without touching the disk."""
        if not self.loaded:
            return self.load()

        assert self.original is not None
        self.current = self.original
        self.apply_substitutions()
        self._notify(EventTag.TEMPLATE_REFRESHED)
        return self.current

    def set_substitution(self, key: str, value: str) -> None:
        """Add or change a substitution; call `refresh()` to apply it."""
        if not key or TEMPLATE_TOKEN_DELIMITER in key:
            raise ValueError(f"Invalid substitution key: {key!r}")
        self.substitutions[key] = value

    def apply_substitutions(self) -> None:
        """Replace every `%KEY%` token in `current`, in map insertion order."""
        for key, value in self.substitutions.items():
            token = f"{TEMPLATE_TOKEN_DELIMITER}{key}{TEMPLATE_TOKEN_DELIMITER}"
            self.current = self.current.replace(token, value)

    async def request_update(self) -> TemplateLease:
        """Wait for exclusive write access to the template (FIFO)."""
        if not self.updating:
            self.updating = True
            return TemplateLease(self, self.current)

        waiter: asyncio.Future[TemplateLease] = (
            asyncio.get_running_loop().create_future()
        )
        self._queue.append(waiter)
        return await waiter

    @property
    def pending_updates(self) -> int:
        return len(self._queue)

    def _finish_update(self, content: str) -> None:
        self.current = content

        while self._queue:
            waiter = self._queue.popleft()
            if waiter.done():
                # Its requester was cancelled while waiting.
                continue
            waiter.set_result(TemplateLease(self, self.current))
            return

        self.updating = False
        self._notify(EventTag.TEMPLATE_UPDATED)

    def _notify(self, tag: EventTag) -> None:
        if self.listener is not None:
            self.listener(tag, self.current)
