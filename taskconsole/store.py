"""Storage for items keyed by remote span IDs and local sequential IDs."""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")
U = TypeVar("U")

_U64_MASK = (1 << 64) - 1


class Visibility(enum.Enum):
    """Whether the list an update belongs to is currently on screen."""

    SHOW = "show"
    HIDE = "hide"


@dataclass(frozen=True, order=True)
class Id:
    """A sequential ID assigned locally, distinct from the remote span ID."""

    value: int

    def __str__(self) -> str:
        return str(self.value)


class Ids(Generic[T]):
    """Maps remote span IDs to sequential local IDs, starting at 1."""

    def __init__(self) -> None:
        self._next = 1
        self._map: dict[int, Id] = {}

    def id_for(self, span_id: int) -> Id:
        """Return the ID for ``span_id``, assigning the next one if it is new."""
        existing = self._map.get(span_id)
        if existing is None:
            existing = Id(self._next)
            self._map[span_id] = existing
            self._next = (self._next + 1) & _U64_MASK
        return existing

    def get(self, span_id: int) -> Optional[Id]:
        """Return the ID already assigned to ``span_id``, if any."""
        return self._map.get(span_id)

    def __contains__(self, span_id: object) -> bool:
        return span_id in self._map

    def __len__(self) -> int:
        return len(self._map)

    def __repr__(self) -> str:
        return f"Ids(next={self._next}, map={self._map!r})"


class Store(Generic[T]):
    """Items keyed by sequential ID, remembering which were newly added."""

    def __init__(self) -> None:
        self.ids: Ids[T] = Ids()
        self._items: dict[Id, T] = {}
        self._new_items: list[tuple[Id, T]] = []

    def get(self, id: Id) -> Optional[T]:
        return self._items.get(id)

    def get_by_span(self, span_id: int) -> Optional[T]:
        id = self.ids.get(span_id)
        if id is None:
            return None
        return self._items.get(id)

    def insert_with(
        self,
        visibility: Visibility,
        items: Iterable[U],
        f: Callable[[Ids[T], U], Optional[tuple[Id, T]]],
    ) -> None:
        """Insert whatever ``f`` builds from each item; ``None`` skips it."""
        if visibility is Visibility.SHOW:
            self._new_items.clear()
        for item in items:
            built = f(self.ids, item)
            if built is None:
                continue
            id, value = built
            self._items[id] = value
            self._new_items.append((id, value))

    def updated(self, update: Mapping[int, Any] | Iterable[tuple[int, Any]]) -> Iterator[tuple[Any, T]]:
        """Yield ``(update, item)`` for each span ID that names a stored item."""
        pairs = update.items() if isinstance(update, Mapping) else update
        for span_id, value in pairs:
            id = self.ids.get(span_id)
            if id is None:
                continue
            item = self._items.get(id)
            if item is None:
                continue
            yield value, item

    def retain(self, predicate: Callable[[Id, T], bool]) -> None:
        """Keep only the items for which ``predicate(id, item)`` is true."""
        self._items = {id: item for id, item in self._items.items() if predicate(id, item)}
        self._new_items = [(id, item) for id, item in self._new_items if self._is_stored(id, item)]

    def take_new_items(self) -> list[T]:
        """Return the items added since the last call, and forget them."""
        taken = [item for id, item in self._new_items if self._is_stored(id, item)]
        self._new_items.clear()
        return taken

    def values(self):
        return self._items.values()

    def items(self):
        return self._items.items()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, id: object) -> bool:
        return id in self._items

    def _is_stored(self, id: Id, item: T) -> bool:
        return self._items.get(id) is item