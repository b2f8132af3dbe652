"""Tests for the single-flight SyncEngine.

The source adapter is an AsyncMock; list_recently_updated_deals is gated
on an asyncio.Event where a test needs a run to stay in flight.
"""

from __future__ import annotations

import asyncio

import pytest

from src.dealsync.deals.canonical import canonicalize
from src.dealsync.deals.crm.field_options import FieldMetadataResolver
from src.dealsync.deals.crm.sync import SyncEngine
from src.dealsync.deals.errors import UpstreamFailureError


def _raw(deal_id: int) -> dict:
    return {"id": deal_id, "title": f"Deal {deal_id}", "products": [{"id": deal_id * 10, "code": "FORM-A", "name": "Curso"}]}


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def engine(source, memory_store) -> SyncEngine:
    resolver = FieldMetadataResolver(source, memory_store, field_keys={})
    source.get_deal.side_effect = lambda deal_id: _raw(deal_id)
    return SyncEngine(source, memory_store, resolver, limit=50, field_keys={}, marker="form-")


# ── Batch Behavior ────────────────────────────────────────────────────────


class TestSynchronize:
    async def test_writes_every_listed_deal(self, engine, source, memory_store):
        source.list_recently_updated_deals.return_value = [{"id": 1}, {"id": 2}, {"id": 2}, {"id": "x"}]

        result = await engine.synchronize()

        source.list_recently_updated_deals.assert_awaited_once_with(50)
        assert (result.listed, result.written, result.skipped) == (2, 2, 0)
        assert await memory_store.list_deal_ids() == {1, 2}
        assert (await memory_store.get_deal(1)).training_products[0].deal_product_id == 10

    async def test_incremental_skips_known_ids(self, engine, source):
        source.list_recently_updated_deals.return_value = [{"id": 1}, {"id": 2}]

        result = await engine.synchronize(known_ids={1})

        assert (result.written, result.skipped) == (1, 1)
        source.get_deal.assert_awaited_once_with(2)

    async def test_forced_ignores_known_ids(self, engine, source):
        source.list_recently_updated_deals.return_value = [{"id": 1}, {"id": 2}]

        result = await engine.synchronize(force=True, known_ids={1, 2})

        assert result.forced is True
        assert (result.written, result.skipped) == (2, 0)

    async def test_not_found_deal_is_deleted(self, engine, source, memory_store):
        await memory_store.put_deal(canonicalize(_raw(99), field_keys={}, marker="form-"))
        source.list_recently_updated_deals.return_value = [{"id": 99}]
        source.get_deal.side_effect = None
        source.get_deal.return_value = None

        result = await engine.synchronize(force=True)

        assert result.removed == 1
        assert await memory_store.get_deal(99) is None
        assert 99 not in await memory_store.list_deal_ids()

    async def test_per_deal_failure_does_not_abort(self, engine, source, memory_store):
        source.list_recently_updated_deals.return_value = [{"id": 1}, {"id": 2}, {"id": 3}]

        def get_deal(deal_id):
            if deal_id == 1:
                raise UpstreamFailureError("boom", status_code=500)
            if deal_id == 2:
                return {"title": "no id"}
            return _raw(deal_id)

        source.get_deal.side_effect = get_deal

        result = await engine.synchronize()

        assert result.written == 1
        assert len(result.errors) == 2
        assert await memory_store.list_deal_ids() == {3}

    async def test_related_fetch_failure_is_not_fatal(self, engine, source, memory_store):
        source.list_recently_updated_deals.return_value = [{"id": 1}]
        source.get_deal_notes.side_effect = UpstreamFailureError("notes down", status_code=502)
        source.get_deal_files.return_value = [{"id": 5, "name": "a.pdf", "url": "https://x.io/a.pdf"}]

        result = await engine.synchronize()

        assert result.written == 1
        record = await memory_store.get_deal(1)
        assert [a.id for a in record.attachments] == ["5"]

    async def test_listing_failure_propagates_and_frees_slot(self, engine, source):
        source.list_recently_updated_deals.side_effect = UpstreamFailureError("down", status_code=503)

        with pytest.raises(UpstreamFailureError):
            await engine.synchronize()

        await _settle()
        assert engine.in_flight is False

    async def test_field_options_loaded_once_per_run(self, engine, source):
        source.list_recently_updated_deals.return_value = [{"id": 1}, {"id": 2}, {"id": 3}]

        await engine.synchronize()

        assert source.list_field_definitions.await_count == 1


# ── Single-flight ─────────────────────────────────────────────────────────


class TestSingleFlight:
    async def test_concurrent_calls_share_one_batch(self, engine, source):
        gate = asyncio.Event()

        async def listing(limit):
            await gate.wait()
            return [{"id": 1}]

        source.list_recently_updated_deals.side_effect = listing

        calls = [asyncio.create_task(engine.synchronize()) for _ in range(5)]
        await _settle()
        assert engine.in_flight is True

        gate.set()
        results = await asyncio.gather(*calls)

        assert source.list_recently_updated_deals.await_count == 1
        assert all(result is results[0] for result in results)
        assert engine.in_flight is False

    async def test_forced_call_drains_then_runs_fresh(self, engine, source):
        gate = asyncio.Event()
        listings = 0

        async def listing(limit):
            nonlocal listings
            listings += 1
            if listings == 1:
                await gate.wait()
            return [{"id": 1}, {"id": 2}]

        source.list_recently_updated_deals.side_effect = listing

        background = asyncio.create_task(engine.synchronize(known_ids={1, 2}))
        await _settle()
        forced = asyncio.create_task(engine.synchronize(force=True, known_ids={1, 2}))
        await _settle()

        gate.set()
        background_result = await background
        forced_result = await forced

        assert listings == 2
        assert background_result.skipped == 2
        assert forced_result.forced is True
        assert forced_result.written == 2
        assert source.get_deal.await_count == 2

    async def test_forced_call_drains_failed_run(self, engine, source):
        gate = asyncio.Event()
        listings = 0

        async def listing(limit):
            nonlocal listings
            listings += 1
            if listings == 1:
                await gate.wait()
                raise UpstreamFailureError("stale run failed", status_code=500)
            return [{"id": 1}]

        source.list_recently_updated_deals.side_effect = listing

        background = asyncio.create_task(engine.synchronize())
        await _settle()
        forced = asyncio.create_task(engine.synchronize(force=True))
        await _settle()
        gate.set()

        with pytest.raises(UpstreamFailureError):
            await background
        result = await forced

        assert result.written == 1

    async def test_forced_call_drains_forced_run(self, engine, source):
        gate = asyncio.Event()
        listings = 0

        async def listing(limit):
            nonlocal listings
            listings += 1
            if listings == 1:
                await gate.wait()
            return [{"id": 1}]

        source.list_recently_updated_deals.side_effect = listing

        first = asyncio.create_task(engine.synchronize(force=True))
        await _settle()
        second = asyncio.create_task(engine.synchronize(force=True))
        await _settle()
        gate.set()

        first_result = await first
        second_result = await second

        assert listings == 2
        assert first_result is not second_result
        assert second_result.forced is True
        assert second_result.written == 1

    async def test_non_forced_joins_forced_run(self, engine, source):
        gate = asyncio.Event()

        async def listing(limit):
            await gate.wait()
            return [{"id": 1}]

        source.list_recently_updated_deals.side_effect = listing

        forced = asyncio.create_task(engine.synchronize(force=True))
        await _settle()
        joined = asyncio.create_task(engine.synchronize(known_ids={1}))
        await _settle()
        gate.set()

        assert (await joined) is (await forced)
        assert source.list_recently_updated_deals.await_count == 1

    async def test_cancelled_caller_does_not_cancel_shared_run(self, engine, source):
        gate = asyncio.Event()

        async def listing(limit):
            await gate.wait()
            return [{"id": 1}]

        source.list_recently_updated_deals.side_effect = listing

        first = asyncio.create_task(engine.synchronize())
        second = asyncio.create_task(engine.synchronize())
        await _settle()
        first.cancel()
        await _settle()
        gate.set()

        result = await second
        assert result.written == 1
        assert first.cancelled()


# ── Single Deal ───────────────────────────────────────────────────────────


class TestSyncOne:
    async def test_refreshes_and_stores(self, engine, memory_store):
        record = await engine.sync_one(5)

        assert record.deal_id == 5
        assert await memory_store.get_deal(5) == record

    async def test_not_found_removes(self, engine, source, memory_store):
        await memory_store.put_deal(canonicalize(_raw(7), field_keys={}, marker="form-"))
        source.get_deal.side_effect = None
        source.get_deal.return_value = None

        assert await engine.sync_one(7) is None
        assert await memory_store.get_deal(7) is None

    async def test_failure_propagates(self, engine, source):
        source.get_deal.side_effect = UpstreamFailureError("boom", status_code=500)

        with pytest.raises(UpstreamFailureError):
            await engine.sync_one(1)
