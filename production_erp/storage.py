"""SQLite-backed persistence for the production planning aggregates.

Each aggregate lives in its own table as a pickled payload keyed by id. Reads
always return fresh copies, so callers must ``upsert`` whatever they change.
"""

from __future__ import annotations

import pickle
import sqlite3
from contextlib import closing
from typing import Any, Callable, Generic, Iterator, List, Optional, TypeVar

from .domain import (
    Customer,
    EventsPlanning,
    Machine,
    ManufOrder,
    TimeTrackingEntry,
    WeeklyPlanning,
    WorkCenter,
)
from .logging_config import get_logger
from .repository import DuplicateRecordError, RecordNotFoundError, select

T = TypeVar("T")

logger = get_logger("storage")


class SQLiteRepository(Generic[T]):
    """Repository with the ``InMemoryRepository`` interface, stored in SQLite."""

    def __init__(self, connection: sqlite3.Connection, table: str) -> None:
        self._connection = connection
        self._table = table
        with connection:
            connection.execute(
                f"CREATE TABLE IF NOT EXISTS {table} ("  # nosec - static table names
                "id TEXT PRIMARY KEY, payload BLOB NOT NULL)"
            )

    def _payloads(self, where: str = "", params: tuple = ()) -> List[bytes]:
        query = f"SELECT payload FROM {self._table} {where}"
        with closing(self._connection.execute(query, params)) as cursor:
            return [row[0] for row in cursor.fetchall()]

    def __contains__(self, item_id: object) -> bool:
        if not isinstance(item_id, str):
            return False
        return bool(self._payloads("WHERE id = ? LIMIT 1", (item_id,)))

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def __len__(self) -> int:
        with closing(
            self._connection.execute(f"SELECT COUNT(1) FROM {self._table}")
        ) as cursor:
            (count,) = cursor.fetchone()
        return int(count)

    def add(self, item_id: str, item: T) -> None:
        try:
            with self._connection:
                self._connection.execute(
                    f"INSERT INTO {self._table} (id, payload) VALUES (?, ?)",
                    (item_id, pickle.dumps(item)),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(
                f"Record with id {item_id!r} already exists"
            ) from exc

    def upsert(self, item_id: str, item: T) -> None:
        with self._connection:
            self._connection.execute(
                f"INSERT INTO {self._table} (id, payload) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload",
                (item_id, pickle.dumps(item)),
            )

    def get(self, item_id: str) -> T:
        payloads = self._payloads("WHERE id = ?", (item_id,))
        if not payloads:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        return pickle.loads(payloads[0])

    def remove(self, item_id: str) -> None:
        with self._connection:
            deleted = self._connection.execute(
                f"DELETE FROM {self._table} WHERE id = ?", (item_id,)
            ).rowcount
        if not deleted:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")

    def list(self) -> List[T]:
        return [pickle.loads(payload) for payload in self._payloads("ORDER BY id")]

    def filter(
        self,
        predicate: Optional[Callable[[T], bool]] = None,
        *,
        key: Optional[Callable[[T], Any]] = None,
        reverse: bool = False,
    ) -> List[T]:
        return select(self.list(), predicate, key=key, reverse=reverse)


class ERPDatabase:
    """One SQLite file holding a repository per aggregate."""

    def __init__(self, path: str) -> None:
        connection = sqlite3.connect(path, check_same_thread=False)
        self._connection = connection
        self.path = path
        self.customers = SQLiteRepository[Customer](connection, "customers")
        self.machines = SQLiteRepository[Machine](connection, "machines")
        self.work_centers = SQLiteRepository[WorkCenter](connection, "work_centers")
        self.weekly_plannings = SQLiteRepository[WeeklyPlanning](
            connection, "weekly_plannings"
        )
        self.events_plannings = SQLiteRepository[EventsPlanning](
            connection, "events_plannings"
        )
        self.manuf_orders = SQLiteRepository[ManufOrder](connection, "manuf_orders")
        self.time_tracking = SQLiteRepository[TimeTrackingEntry](
            connection, "time_tracking"
        )
        logger.info("database_opened", extra={"path": path})

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def close(self) -> None:
        self._connection.close()
        logger.info("database_closed", extra={"path": self.path})

    def __enter__(self) -> "ERPDatabase":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[BaseException],
    ) -> None:
        self.close()


__all__ = ["SQLiteRepository", "ERPDatabase"]
