"""
Event Store Interface

The pipeline needs only a small capability surface from its persistent store:

- insert: write one or more rows
- select: filtered read with ordering and limit
- update: filtered batch update
- upsert: insert-or-update on a unique key
- merge_upsert: locked read-modify-write of the row under a unique key

plus two conveniences used by the aggregator and the queue status view,
``claim`` (atomic lease of unprocessed queue entries) and ``count``.

Filters are mappings of column name to value. A list, tuple or set value
matches any of its members (SQL ``IN``), ``None`` matches NULL, anything
else is an equality test.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

Row = Dict[str, Any]
Filters = Mapping[str, Any]
MergeFn = Callable[[Optional[Row]], Row]

QUEUE_TABLE = "events_queue"
EVENTS_TABLE = "events"
DAILY_STATS_TABLE = "daily_stats"


class EventStore(ABC):
    """Abstract persistent store for queue entries, events and rollups"""

    @abstractmethod
    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        """
        Insert rows in a single batch write.

        Returns:
            Number of rows written
        """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Filtered select, optionally ordered and limited"""

    @abstractmethod
    async def update(self, table: str, values: Mapping[str, Any], filters: Filters) -> int:
        """
        Apply ``values`` to every row matching ``filters``.

        Returns:
            Number of rows updated
        """

    @abstractmethod
    async def upsert(self, table: str, row: Mapping[str, Any], conflict_keys: Sequence[str]) -> None:
        """Insert ``row`` or, if ``conflict_keys`` collide, overwrite the existing row"""

    @abstractmethod
    async def merge_upsert(self, table: str, key: Mapping[str, Any], merge: MergeFn) -> Row:
        """
        Insert-or-update where the new row is computed from the current one.

        ``merge`` receives the row stored under ``key`` (or ``None``) and
        returns the full row to write. The read and the write happen in one
        transaction with the row locked, so concurrent merges on the same
        key apply one after the other.

        Returns:
            The row written
        """

    @abstractmethod
    async def claim(self, table: str, limit: int, lease_seconds: int) -> List[Row]:
        """
        Atomically lease up to ``limit`` unprocessed rows, oldest first.

        Rows already leased by another caller are skipped until their lease
        expires.
        """

    @abstractmethod
    async def count(self, table: str, filters: Optional[Filters] = None) -> int:
        """Number of rows matching ``filters``"""

    @abstractmethod
    async def health(self) -> Dict[str, Any]:
        """Connectivity check"""
