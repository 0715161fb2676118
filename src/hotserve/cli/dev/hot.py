"""Hot client notifications pushed to browsers over server-sent events."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator

from hotserve.cli.dev.logging import DevLogComponent, get_logger
from hotserve.models import HotEvent

logger = get_logger(DevLogComponent.HOT)


class HotClientHub:
    """Fans events out to every connected client."""

    def __init__(self, *, max_queued: int = 100) -> None:
        self._subscribers: set[asyncio.Queue[HotEvent | None]] = set()
        # Full queues that could not take the end marker; they end once drained
        self._closing: set[asyncio.Queue[HotEvent | None]] = set()
        self._max_queued: int = max_queued

    @property
    def client_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[HotEvent | None]:
        queue: asyncio.Queue[HotEvent | None] = asyncio.Queue(maxsize=self._max_queued)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[HotEvent | None]) -> None:
        self._subscribers.discard(queue)
        self._closing.discard(queue)

    def publish(self, event: HotEvent) -> None:
        for queue in list(self._subscribers - self._closing):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # A client that stopped reading must not stall the others.
                logger.debug("Dropping event for a slow hot client")

    def close(self) -> None:
        """Ask every open stream to finish."""
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                self._closing.add(queue)

    async def stream(self) -> AsyncGenerator[str, None]:
        """Yield SSE frames until the hub is closed."""
        queue = self.subscribe()
        try:
            yield "event: connected\ndata: {}\n\n"
            while not (queue in self._closing and queue.empty()):
                event = await queue.get()
                if event is None:
                    break
                yield f"event: {event.type.value}\ndata: {json.dumps(event.model_dump(mode='json'))}\n\n"
        finally:
            self.unsubscribe(queue)
