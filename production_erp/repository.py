"""In-memory repositories and the query helper shared with the SQLite store."""

from __future__ import annotations

from typing import (
    Any,
    Callable,
    Generic,
    Iterable,
    Iterator,
    List,
    MutableMapping,
    Optional,
    TypeVar,
)

T = TypeVar("T")


class RepositoryError(RuntimeError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when attempting to insert a record that already exists."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing."""


def select(
    items: Iterable[T],
    predicate: Optional[Callable[[T], bool]] = None,
    *,
    key: Optional[Callable[[T], Any]] = None,
    reverse: bool = False,
) -> List[T]:
    """Filter and optionally sort records, the way repository queries do."""

    selected = [item for item in items if predicate is None or predicate(item)]
    if key is not None:
        selected.sort(key=key, reverse=reverse)
    return selected


class InMemoryRepository(Generic[T]):
    """Records kept in a dict keyed by id; reads return the stored objects."""

    def __init__(self) -> None:
        self._items: MutableMapping[str, T] = {}

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item_id: str, item: T) -> None:
        if item_id in self._items:
            raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
        self._items[item_id] = item

    def upsert(self, item_id: str, item: T) -> None:
        self._items[item_id] = item

    def get(self, item_id: str) -> T:
        try:
            return self._items[item_id]
        except KeyError as exc:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found") from exc

    def remove(self, item_id: str) -> None:
        if item_id not in self._items:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        del self._items[item_id]

    def list(self) -> List[T]:
        return list(self._items.values())

    def filter(
        self,
        predicate: Optional[Callable[[T], bool]] = None,
        *,
        key: Optional[Callable[[T], Any]] = None,
        reverse: bool = False,
    ) -> List[T]:
        return select(self._items.values(), predicate, key=key, reverse=reverse)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items.values()))


__all__ = [
    "InMemoryRepository",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "select",
]
