"""Priority-ordered middleware registrations for the dev server app."""

from __future__ import annotations

from typing import Generic, TypeVar

H = TypeVar("H")


class MiddlewareOrdering(Generic[H]):
    """Middleware keyed by unique integer priority.

    A priority that is already taken is bumped until a free slot is found, so
    among equal requested priorities the first registration ends up first.
    """

    def __init__(self) -> None:
        self._entries: dict[int, H] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, handler: H, priority: int) -> int:
        """Store `handler` at the first free priority >= `priority` and return it."""
        while priority in self._entries:
            priority += 1
        self._entries[priority] = handler
        return priority

    def priorities(self) -> list[int]:
        return sorted(self._entries)

    def build(self) -> list[H]:
        """Handlers in ascending priority order."""
        return [self._entries[priority] for priority in self.priorities()]
