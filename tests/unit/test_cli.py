"""
Unit Tests - Queue Drain Command
"""
import json

import pytest

from site_analytics.cli import build_parser, drain_queue, main
from site_analytics.database.connection import build_engine
from site_analytics.database.models import Base
from site_analytics.store.base import DAILY_STATS_TABLE, QUEUE_TABLE
from site_analytics.store.sql import SQLEventStore


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'events.db'}"


@pytest.fixture
def quiet_logging(monkeypatch):
    monkeypatch.setattr("site_analytics.cli.configure_logging", lambda level=None: None)


async def seed_queue(url, rows):
    engine = build_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await SQLEventStore(engine).insert(QUEUE_TABLE, rows)
    await engine.dispose()


class TestDrainQueue:
    """Tests for the drain coroutine"""

    @pytest.mark.asyncio
    async def test_drains_and_closes(self, database_url, make_entry):
        await seed_queue(database_url, [make_entry(path="/a"), make_entry(path="/b"), make_entry(path="/a")])

        results = await drain_queue(max_passes=3, database_url=database_url)

        assert [r.processed for r in results] == [3]

        engine = build_engine(database_url)
        store = SQLEventStore(engine)
        [row] = await store.select(DAILY_STATS_TABLE)
        await engine.dispose()
        assert row["total_views"] == 3
        assert row["path_stats"][0] == {"path": "/a", "views": 2}

    @pytest.mark.asyncio
    async def test_creates_missing_tables(self, database_url):
        results = await drain_queue(max_passes=1, database_url=database_url, ensure_tables=True)

        assert len(results) == 1
        assert results[0].processed == 0


class TestMain:
    """Tests for the command-line entry point"""

    def test_parser_defaults(self):
        args = build_parser().parse_args([])
        assert args.max_passes is None
        assert args.create_tables is False

    def test_prints_summary(self, database_url, quiet_logging, capsys):
        code = main(["--database-url", database_url, "--create-tables", "--max-passes", "2"])

        assert code == 0
        summary = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert summary == {"success": True, "passes": 1, "processed": 0, "aggregated_days": 0}

    def test_store_failure_exit_code(self, database_url, quiet_logging, capsys):
        # tables were never created, so the first claim fails
        code = main(["--database-url", database_url])

        assert code == 1
        summary = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert summary["success"] is False
