"""Registry of build producers reporting to the dev server."""

from __future__ import annotations

import hashlib
import secrets
from collections.abc import Iterator

from hotserve.cli.dev.logging import DevLogComponent, get_logger
from hotserve.constants import PRODUCER_ID_LENGTH
from hotserve.errors import DuplicateProducerIdError

logger = get_logger(DevLogComponent.PRODUCER)


class ProducerRegistry:
    """Assigns collision-free ids to producer handles.

    Producers are compared by identity, never by equality, so two distinct
    handles that happen to compare equal still get their own ids.
    """

    def __init__(self) -> None:
        self._producers: dict[str, object] = {}

    def __len__(self) -> int:
        return len(self._producers)

    def __contains__(self, producer_id: object) -> bool:
        return producer_id in self._producers

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._producers))

    def register(self, producer: object) -> str:
        """Register `producer` and return its id (idempotent per handle)."""
        existing = self.lookup(producer)
        if existing is not None:
            return existing

        while True:
            producer_id = self._generate_id()
            try:
                self._insert(producer_id, producer)
            except DuplicateProducerIdError:
                continue
            logger.debug(f"Registered producer {self.display_name(producer_id)} as {producer_id}")
            return producer_id

    def deregister(self, producer: object) -> None:
        """Remove a producer given its id or its handle; unknown producers are ignored."""
        producer_id = producer if isinstance(producer, str) else self.lookup(producer)
        if producer_id is not None and self._producers.pop(producer_id, None) is not None:
            logger.debug(f"Deregistered producer {producer_id}")

    def lookup(self, producer: object) -> str | None:
        """Return the id of `producer` or None when it is not registered."""
        for producer_id, candidate in self._producers.items():
            if candidate is producer:
                return producer_id
        return None

    def get(self, producer_id: str) -> object | None:
        return self._producers.get(producer_id)

    def display_name(self, producer_id: str) -> str:
        """Name of the producer's compile configuration, falling back to its id."""
        name = getattr(self._producers.get(producer_id), "name", None)
        return str(name) if name else producer_id

    def _generate_id(self) -> str:
        while True:
            digest = hashlib.sha256(secrets.token_bytes(32)).hexdigest()
            producer_id = digest[:PRODUCER_ID_LENGTH]
            if producer_id not in self._producers:
                return producer_id

    def _insert(self, producer_id: str, producer: object) -> None:
        if producer_id in self._producers:
            raise DuplicateProducerIdError(producer_id)
        self._producers[producer_id] = producer
