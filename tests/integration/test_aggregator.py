"""
Integration Tests - Batch Aggregator
"""
from datetime import date, datetime, timedelta, timezone
import asyncio

import pytest

from site_analytics.aggregation.aggregator import EMPTY_QUEUE_MESSAGE, BatchAggregator
from site_analytics.config import RollupMode
from site_analytics.errors import StoreError
from site_analytics.store.base import DAILY_STATS_TABLE, EVENTS_TABLE, QUEUE_TABLE

DAY = date(2025, 1, 15)


@pytest.fixture
def scenario_entries(make_entry):
    """Three views of /a by u1, then one of /b by u2, all on the same UTC day"""
    return [make_entry(path="/a", user_id="u1") for _ in range(3)] + [make_entry(path="/b", user_id="u2")]


async def rollup_for(store, site_id="s1", day=DAY):
    rows = await store.select(DAILY_STATS_TABLE, {"site_id": site_id, "date": day})
    return rows[0] if rows else None


class TestSinglePass:
    """Tests for one aggregator pass"""

    @pytest.mark.asyncio
    async def test_scenario_rollup(self, store, scenario_entries):
        await store.insert(QUEUE_TABLE, scenario_entries)

        result = await BatchAggregator(store).run()

        assert result.to_response() == {"success": True, "processed": 4, "aggregated_days": 1}
        row = await rollup_for(store)
        assert row["total_views"] == 4
        assert row["unique_users"] == 2
        assert row["path_stats"] == [{"path": "/a", "views": 3}, {"path": "/b", "views": 1}]
        assert await store.count(QUEUE_TABLE, {"processed": False}) == 0

    @pytest.mark.asyncio
    async def test_canonical_events_written(self, store, scenario_entries):
        await store.insert(QUEUE_TABLE, scenario_entries)

        await BatchAggregator(store).run()

        events = await store.select(EVENTS_TABLE)
        assert len(events) == 4
        assert {e["queue_entry_id"] for e in events} == {e["id"] for e in scenario_entries}
        assert not {e["id"] for e in events} & {e["id"] for e in scenario_entries}
        assert {(e["path"], e["user_id"]) for e in events} == {("/a", "u1"), ("/b", "u2")}

    @pytest.mark.asyncio
    async def test_second_pass_finds_nothing(self, store, scenario_entries):
        await store.insert(QUEUE_TABLE, scenario_entries)
        aggregator = BatchAggregator(store)

        await aggregator.run()
        second = await aggregator.run()

        assert second.to_response() == {"success": True, "processed": 0, "message": EMPTY_QUEUE_MESSAGE}
        assert (await rollup_for(store))["total_views"] == 4

    @pytest.mark.asyncio
    async def test_empty_queue_leaves_rollups_alone(self, store, scenario_entries):
        await store.insert(QUEUE_TABLE, scenario_entries)
        aggregator = BatchAggregator(store)
        await aggregator.run()
        before = await rollup_for(store)

        result = await aggregator.run()

        assert result.processed == 0
        assert result.message == EMPTY_QUEUE_MESSAGE
        assert await rollup_for(store) == before

    @pytest.mark.asyncio
    async def test_days_and_sites_split(self, store, make_entry):
        late = datetime(2025, 1, 15, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        await store.insert(QUEUE_TABLE, [
            make_entry(site_id="s1"),
            make_entry(site_id="s1", timestamp=late),
            make_entry(site_id="s2"),
        ])

        result = await BatchAggregator(store).run()

        assert result.aggregated_days == 3
        assert result.sites == ["s1", "s2"]
        assert (await rollup_for(store, "s1", date(2025, 1, 16)))["total_views"] == 1
        assert (await rollup_for(store, "s2"))["total_views"] == 1

    @pytest.mark.asyncio
    async def test_oldest_entries_first(self, store, make_entry):
        rows = [make_entry(path=f"/{i}") for i in range(3)]
        await store.insert(QUEUE_TABLE, list(reversed(rows)))
        aggregator = BatchAggregator(store, batch_size=2)

        first = await aggregator.run()

        assert first.processed == 2
        pending = await store.select(QUEUE_TABLE, {"processed": False})
        assert [r["id"] for r in pending] == [rows[2]["id"]]

    @pytest.mark.asyncio
    async def test_without_claims(self, store, scenario_entries):
        await store.insert(QUEUE_TABLE, scenario_entries)

        result = await BatchAggregator(store, use_claims=False).run()

        assert result.processed == 4
        assert (await rollup_for(store))["total_views"] == 4


class TestFailures:
    """Tests for store failures at each step of a pass"""

    @pytest.mark.asyncio
    async def test_select_failure_raises(self, flaky_store, scenario_entries):
        await flaky_store.inner.insert(QUEUE_TABLE, scenario_entries)
        flaky_store.fail("claim")

        with pytest.raises(StoreError):
            await BatchAggregator(flaky_store).run()

    @pytest.mark.asyncio
    async def test_canonical_insert_failure_changes_nothing(self, flaky_store, scenario_entries):
        store = flaky_store.inner
        await store.insert(QUEUE_TABLE, scenario_entries)
        flaky_store.fail("insert", EVENTS_TABLE)
        aggregator = BatchAggregator(flaky_store)

        with pytest.raises(StoreError):
            await aggregator.run()

        assert await store.count(EVENTS_TABLE) == 0
        assert await store.count(QUEUE_TABLE, {"processed": False}) == 4
        assert await store.count(QUEUE_TABLE, {"claim_token": None}) == 4
        assert await rollup_for(store) is None

        # claims were handed back, so the retry picks the entries up at once
        flaky_store.failures.clear()
        retry = await aggregator.run()
        assert retry.processed == 4

    @pytest.mark.asyncio
    async def test_mark_processed_failure_still_succeeds(self, flaky_store, scenario_entries):
        store = flaky_store.inner
        await store.insert(QUEUE_TABLE, scenario_entries)
        flaky_store.fail("update", QUEUE_TABLE)

        result = await BatchAggregator(flaky_store).run()

        assert result.to_response()["success"] is True
        assert result.processed == 4
        assert result.marked_processed is False
        assert await store.count(EVENTS_TABLE) == 4
        assert await store.count(QUEUE_TABLE, {"processed": False}) == 4
        assert (await rollup_for(store))["total_views"] == 4

    @pytest.mark.asyncio
    async def test_unmarked_entries_refolded_without_claims(self, flaky_store, scenario_entries):
        store = flaky_store.inner
        await store.insert(QUEUE_TABLE, scenario_entries)
        flaky_store.fail("update", QUEUE_TABLE)
        aggregator = BatchAggregator(flaky_store, use_claims=False)

        await aggregator.run()
        flaky_store.failures.clear()
        again = await aggregator.run()

        assert again.processed == 4
        assert await store.count(EVENTS_TABLE) == 8

    @pytest.mark.asyncio
    async def test_upsert_failure_skips_day(self, flaky_store, scenario_entries):
        store = flaky_store.inner
        await store.insert(QUEUE_TABLE, scenario_entries)
        flaky_store.fail("upsert", DAILY_STATS_TABLE)

        result = await BatchAggregator(flaky_store).run()

        assert result.processed == 4
        assert result.aggregated_days == 1
        assert result.failed_days == 1
        assert await rollup_for(store) is None
        assert await store.count(QUEUE_TABLE, {"processed": True}) == 4


class TestRollupModes:
    """Tests for a day split across two passes"""

    @pytest.mark.asyncio
    async def test_merge_adds_across_passes(self, store, scenario_entries):
        await store.insert(QUEUE_TABLE, scenario_entries)
        aggregator = BatchAggregator(store, batch_size=2, rollup_mode=RollupMode.MERGE)

        await aggregator.run()
        await aggregator.run()

        row = await rollup_for(store)
        assert row["total_views"] == 4
        assert row["unique_users"] == 2
        assert row["path_stats"] == [{"path": "/a", "views": 3}, {"path": "/b", "views": 1}]

    @pytest.mark.asyncio
    async def test_replace_keeps_last_pass_only(self, store, scenario_entries):
        await store.insert(QUEUE_TABLE, scenario_entries)
        aggregator = BatchAggregator(store, batch_size=2, rollup_mode=RollupMode.REPLACE)

        await aggregator.run()
        await aggregator.run()

        row = await rollup_for(store)
        assert row["total_views"] == 2
        assert row["unique_users"] == 2
        assert row["path_stats"] == [{"path": "/a", "views": 1}, {"path": "/b", "views": 1}]

    @pytest.mark.asyncio
    async def test_overlapping_passes_both_counted(self, slow_read_store, scenario_entries, make_entry):
        store = slow_read_store
        await store.insert(QUEUE_TABLE, scenario_entries + [make_entry(path="/c", user_id="u3") for _ in range(2)])
        await BatchAggregator(store, batch_size=2).run()

        results = await asyncio.gather(
            BatchAggregator(store, batch_size=2).run(),
            BatchAggregator(store, batch_size=2).run(),
        )

        assert sorted(r.processed for r in results) == [2, 2]
        assert all(r.failed_days == 0 for r in results)
        row = await rollup_for(store)
        assert row["total_views"] == 6
        assert row["unique_users"] == 3
        assert row["path_stats"] == [
            {"path": "/a", "views": 3},
            {"path": "/c", "views": 2},
            {"path": "/b", "views": 1},
        ]


class TestDrain:
    """Tests for repeated passes"""

    @pytest.mark.asyncio
    async def test_drain_until_short_batch(self, store, make_entry):
        await store.insert(QUEUE_TABLE, [make_entry() for _ in range(5)])

        results = await BatchAggregator(store, batch_size=2).drain()

        assert [r.processed for r in results] == [2, 2, 1]
        assert (await rollup_for(store))["total_views"] == 5

    @pytest.mark.asyncio
    async def test_drain_respects_max_passes(self, store, make_entry):
        await store.insert(QUEUE_TABLE, [make_entry() for _ in range(5)])

        results = await BatchAggregator(store, batch_size=2).drain(max_passes=1)

        assert len(results) == 1
        assert await store.count(QUEUE_TABLE, {"processed": False}) == 3


class TestSitesHook:
    """Tests for the sites-updated callback"""

    @pytest.mark.asyncio
    async def test_hook_receives_touched_sites(self, store, make_entry):
        seen = []

        async def record(sites):
            seen.append(sites)

        await store.insert(QUEUE_TABLE, [make_entry(site_id="s2"), make_entry(site_id="s1")])
        await BatchAggregator(store, on_sites_updated=record).run()

        assert seen == [["s1", "s2"]]

    @pytest.mark.asyncio
    async def test_hook_not_called_for_empty_pass(self, store):
        seen = []

        async def record(sites):
            seen.append(sites)

        await BatchAggregator(store, on_sites_updated=record).run()

        assert seen == []

    @pytest.mark.asyncio
    async def test_hook_failure_does_not_fail_pass(self, store, make_entry):
        async def broken(sites):
            raise RuntimeError("cache down")

        await store.insert(QUEUE_TABLE, [make_entry()])
        result = await BatchAggregator(store, on_sites_updated=broken).run()

        assert result.processed == 1
