"""
Test Suite Configuration
"""
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Callable, Dict, Optional
import asyncio
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine

from site_analytics.config import Settings
from site_analytics.database.connection import build_engine
from site_analytics.database.models import Base
from site_analytics.errors import StoreError
from site_analytics.serving.api.main import create_api_app, install_services
from site_analytics.store.base import EventStore
from site_analytics.store.sql import SQLEventStore

BASE_TIME = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


class FlakyStore(EventStore):
    """
    Delegates to a real store but fails chosen operations.

    ``fail("insert", "events")`` makes inserts into ``events`` raise
    StoreError; ``fail("select")`` fails selects on every table.
    """

    def __init__(self, inner: EventStore):
        self.inner = inner
        self.failures = set()
        self.calls = []

    def fail(self, operation: str, table: Optional[str] = None) -> None:
        self.failures.add((operation, table))

    def _check(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        if (operation, table) in self.failures or (operation, None) in self.failures:
            raise StoreError(f"{operation} on {table} unavailable", operation=operation, table=table)

    async def insert(self, table, rows):
        self._check("insert", table)
        return await self.inner.insert(table, rows)

    async def select(self, table, filters=None, order_by=None, descending=False, limit=None):
        self._check("select", table)
        return await self.inner.select(table, filters, order_by, descending, limit)

    async def update(self, table, values, filters):
        self._check("update", table)
        return await self.inner.update(table, values, filters)

    async def upsert(self, table, row, conflict_keys):
        self._check("upsert", table)
        return await self.inner.upsert(table, row, conflict_keys)

    async def merge_upsert(self, table, key, merge):
        self._check("upsert", table)
        return await self.inner.merge_upsert(table, key, merge)

    async def claim(self, table, limit, lease_seconds):
        self._check("claim", table)
        return await self.inner.claim(table, limit, lease_seconds)

    async def count(self, table, filters=None):
        self._check("count", table)
        return await self.inner.count(table, filters)

    async def health(self):
        return await self.inner.health()


class SlowReadStore(SQLEventStore):
    """SQL store that yields to the event loop after reading a row it is about to merge"""

    async def _locked_row(self, session, target, key):
        row = await super()._locked_row(session, target, key)
        await asyncio.sleep(0.01)
        return row


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the pipeline tables"""
    engine = build_engine("sqlite+aiosqlite:///:memory:")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def store(test_engine) -> SQLEventStore:
    return SQLEventStore(test_engine)


@pytest.fixture
def flaky_store(store) -> FlakyStore:
    return FlakyStore(store)


@pytest.fixture
def slow_read_store(test_engine) -> SlowReadStore:
    return SlowReadStore(test_engine)


@pytest.fixture
def make_entry() -> Callable[..., Dict[str, Any]]:
    """
    Factory for queue rows. Each call is queued one second after the
    previous one so created_at ordering is deterministic.
    """
    counter = {"n": 0}

    def _make(
        site_id: str = "s1",
        path: str = "/",
        user_id: str = "anonymous",
        timestamp: Optional[datetime] = None,
        event_type: str = "page_view",
        **overrides: Any,
    ) -> Dict[str, Any]:
        counter["n"] += 1
        created_at = BASE_TIME + timedelta(seconds=counter["n"])
        row = {
            "id": uuid.uuid4(),
            "site_id": site_id,
            "event_type": event_type,
            "path": path,
            "user_id": user_id,
            "timestamp": timestamp or created_at,
            "processed": False,
            "created_at": created_at,
        }
        row.update(overrides)
        return row

    return _make


@pytest.fixture
def app(store):
    """API app wired to the in-memory store"""
    application = create_api_app()
    install_services(application, store)
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
