"""
SQL Event Store

EventStore implementation on SQLAlchemy 2.0 Core over an async engine.
Upserts use the dialect's native ``ON CONFLICT`` clauses (PostgreSQL in
production, SQLite in tests and local development). Merges read the current
row under a lock (``SELECT ... FOR UPDATE`` on PostgreSQL) in the same
transaction that writes it back.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence
import asyncio
import uuid

import structlog
from sqlalchemy import Table, and_, func, insert, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from site_analytics.database.connection import build_session_factory, check_database_health
from site_analytics.database.models import Base, utcnow
from site_analytics.errors import StoreError
from site_analytics.store.base import EventStore, Filters, MergeFn, Row

logger = structlog.get_logger(__name__)


def _normalize(row: Mapping[str, Any]) -> Row:
    """Row mapping to a plain dict with timezone-aware datetimes"""
    result = {}
    for key, value in row.items():
        if isinstance(value, datetime) and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        result[key] = value
    return result


def _to_utc(values: Mapping[str, Any]) -> Row:
    """Aware datetimes shifted to UTC before they are written; SQLite drops the offset"""
    return {
        key: value.astimezone(timezone.utc) if isinstance(value, datetime) and value.tzinfo else value
        for key, value in values.items()
    }


class SQLEventStore(EventStore):
    """
    Event store backed by a SQL database.

    Every operation runs in its own transaction. Driver and SQL errors are
    re-raised as StoreError carrying the operation and table name.

    Example:
        store = SQLEventStore(engine)
        await store.insert("events_queue", [{"site_id": "s1", ...}])
        rows = await store.select("events_queue", {"processed": False}, order_by="created_at", limit=1000)
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = build_session_factory(engine)
        # one merge at a time per process; the in-memory engine shares a connection
        self._merge_lock = asyncio.Lock()

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def _table(self, name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise ValueError(f"Unknown table: {name}") from None

    @staticmethod
    def _where(table: Table, filters: Optional[Filters]) -> list:
        clauses = []
        for column, value in (filters or {}).items():
            col = table.c[column]
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(col.in_(list(value)))
            elif value is None:
                clauses.append(col.is_(None))
            else:
                clauses.append(col == value)
        return clauses

    def _dialect_insert(self, table: Table):
        if self.dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as pg_insert
            return pg_insert(table)
        if self.dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as sqlite_insert
            return sqlite_insert(table)
        raise StoreError(f"Upsert not supported on dialect {self.dialect}", operation="upsert", table=table.name)

    def _error(self, operation: str, table: str, exc: Exception) -> StoreError:
        logger.error(
            "Store operation failed",
            operation=operation,
            table=table,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return StoreError(str(exc), operation=operation, table=table)

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        target = self._table(table)
        try:
            async with self._session_factory.begin() as session:
                await session.execute(insert(target), [_to_utc(row) for row in rows])
        except SQLAlchemyError as e:
            raise self._error("insert", table, e) from e
        return len(rows)

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        target = self._table(table)
        stmt = select(target).where(*self._where(target, filters))
        if order_by:
            column = target.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_normalize(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise self._error("select", table, e) from e

    async def update(self, table: str, values: Mapping[str, Any], filters: Filters) -> int:
        if not filters:
            raise ValueError("Refusing to update without filters")
        target = self._table(table)
        stmt = update(target).where(*self._where(target, filters)).values(**_to_utc(values))
        try:
            async with self._session_factory.begin() as session:
                result = await session.execute(stmt)
                return result.rowcount
        except SQLAlchemyError as e:
            raise self._error("update", table, e) from e

    async def upsert(self, table: str, row: Mapping[str, Any], conflict_keys: Sequence[str]) -> None:
        target = self._table(table)
        stmt = self._dialect_insert(target).values(**_to_utc(row))
        overwrite = {
            key: stmt.excluded[key]
            for key in row
            if key not in conflict_keys and key != "id"
        }
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_keys), set_=overwrite)
        try:
            async with self._session_factory.begin() as session:
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise self._error("upsert", table, e) from e

    async def merge_upsert(self, table: str, key: Mapping[str, Any], merge: MergeFn) -> Row:
        target = self._table(table)
        fresh = merge(None)
        # Insert first so there is always a row to lock; on SQLite the insert
        # also takes the database write lock for the rest of the transaction.
        seed = (
            self._dialect_insert(target)
            .values(**_to_utc(fresh))
            .on_conflict_do_nothing(index_elements=list(key))
        )
        try:
            async with self._merge_lock:
                async with self._session_factory.begin() as session:
                    result = await session.execute(seed)
                    if result.rowcount == 1:
                        return fresh
                    existing = await self._locked_row(session, target, key)
                    row = merge(existing)
                    values = {k: v for k, v in row.items() if k not in key and k != "id"}
                    await session.execute(
                        update(target).where(*self._where(target, key)).values(**_to_utc(values))
                    )
                    return row
        except SQLAlchemyError as e:
            raise self._error("upsert", table, e) from e

    async def _locked_row(self, session, target: Table, key: Mapping[str, Any]) -> Optional[Row]:
        stmt = select(target).where(*self._where(target, key))
        if self.dialect == "postgresql":
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        row = result.mappings().first()
        return _normalize(row) if row is not None else None

    async def claim(self, table: str, limit: int, lease_seconds: int) -> List[Row]:
        target = self._table(table)
        now = utcnow()
        token = uuid.uuid4()
        eligible = and_(
            target.c.processed.is_(False),
            or_(
                target.c.claimed_at.is_(None),
                target.c.claimed_at < now - timedelta(seconds=lease_seconds),
            ),
        )
        candidates = (
            select(target.c.id)
            .where(eligible)
            .order_by(target.c.created_at.asc())
            .limit(limit)
        )
        if self.dialect == "postgresql":
            candidates = candidates.with_for_update(skip_locked=True)

        # The outer predicate is re-checked against the locked row version,
        # so a concurrent claimer that lost the race updates nothing.
        claim_stmt = (
            update(target)
            .where(target.c.id.in_(candidates), eligible)
            .values(claim_token=token, claimed_at=now)
        )
        claimed_stmt = (
            select(target)
            .where(target.c.claim_token == token)
            .order_by(target.c.created_at.asc())
        )
        try:
            async with self._session_factory.begin() as session:
                await session.execute(claim_stmt)
                result = await session.execute(claimed_stmt)
                rows = [_normalize(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise self._error("claim", table, e) from e

        logger.debug("Claimed queue entries", claimed=len(rows), claim_token=str(token))
        return rows

    async def count(self, table: str, filters: Optional[Filters] = None) -> int:
        target = self._table(table)
        stmt = select(func.count()).select_from(target).where(*self._where(target, filters))
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise self._error("count", table, e) from e

    async def health(self) -> Dict[str, Any]:
        return await check_database_health(self.engine)
