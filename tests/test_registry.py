"""Tests for the producer registry."""

from __future__ import annotations

import re
from unittest.mock import patch

import pytest

from hotserve.cli.dev.registry import ProducerRegistry
from hotserve.errors import DuplicateProducerIdError


class Producer:
    def __init__(self, name: str | None = None) -> None:
        self.name = name

    def __eq__(self, other: object) -> bool:
        # Every producer compares equal; the registry must use identity.
        return isinstance(other, Producer)

    __hash__ = object.__hash__


class TestRegister:
    def test_ids_are_distinct_and_hex(self) -> None:
        registry = ProducerRegistry()
        ids = [registry.register(Producer()) for _ in range(50)]

        assert len(set(ids)) == 50
        assert all(re.fullmatch(r"[0-9a-f]{32}", i) for i in ids)
        assert len(registry) == 50

    def test_same_handle_returns_same_id(self) -> None:
        registry = ProducerRegistry()
        producer = Producer()

        first = registry.register(producer)
        assert registry.register(producer) == first
        assert len(registry) == 1

    def test_equal_handles_are_distinct_producers(self) -> None:
        registry = ProducerRegistry()
        a, b = Producer(), Producer()
        assert a == b

        assert registry.register(a) != registry.register(b)

    def test_collision_is_retried(self) -> None:
        registry = ProducerRegistry()
        taken = registry.register(Producer())
        fresh = "f" * 32

        with patch.object(registry, "_generate_id", side_effect=[taken, fresh]):
            assert registry.register(Producer()) == fresh

    def test_insert_rejects_used_id(self) -> None:
        registry = ProducerRegistry()
        producer_id = registry.register(Producer())

        with pytest.raises(DuplicateProducerIdError):
            registry._insert(producer_id, Producer())


class TestDeregister:
    def test_by_id_and_by_handle(self) -> None:
        registry = ProducerRegistry()
        a, b = Producer(), Producer()
        a_id = registry.register(a)
        b_id = registry.register(b)

        registry.deregister(a_id)
        registry.deregister(b)

        assert a_id not in registry
        assert b_id not in registry
        assert registry.lookup(a) is None

    def test_unknown_is_ignored(self) -> None:
        registry = ProducerRegistry()
        registry.register(Producer())

        registry.deregister("0" * 32)
        registry.deregister(Producer())

        assert len(registry) == 1


def test_display_name_falls_back_to_id() -> None:
    registry = ProducerRegistry()
    named = registry.register(Producer("client"))
    unnamed = registry.register(Producer())

    assert registry.display_name(named) == "client"
    assert registry.display_name(unnamed) == unnamed
    assert list(registry) == [named, unnamed]
