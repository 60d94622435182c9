"""
Keyed storage for live engine state (transaction contexts, drop-off sessions).

Engines only talk to the Repository protocol, so a deployment can replace the
in-process dict with a shared cache without touching engine logic.
"""

from collections.abc import Iterator
from typing import Generic, Protocol, TypeVar

V = TypeVar("V")


class Repository(Protocol[V]):
    def get(self, key: str) -> V | None:
        ...

    def put(self, key: str, value: V) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def values(self) -> list[V]:
        ...

    def items(self) -> list[tuple[str, V]]:
        ...

    def __contains__(self, key: object) -> bool:
        ...

    def __len__(self) -> int:
        ...


class InMemoryRepository(Generic[V]):
    """Process-memory repository. Lost on restart."""

    def __init__(self) -> None:
        self._items: dict[str, V] = {}

    def get(self, key: str) -> V | None:
        return self._items.get(key)

    def put(self, key: str, value: V) -> None:
        self._items[key] = value

    def delete(self, key: str) -> bool:
        return self._items.pop(key, None) is not None

    def values(self) -> list[V]:
        return list(self._items.values())

    def items(self) -> list[tuple[str, V]]:
        # Snapshot, so callers may delete while iterating
        return list(self._items.items())

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._items))
