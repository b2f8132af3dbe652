"""Tests for DealService over an in-memory store and a mocked sync engine."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.dealsync.deals.canonical import canonicalize
from src.dealsync.deals.crm.sync import SyncEngine
from src.dealsync.deals.errors import InvalidRequestError, UpstreamFailureError
from src.dealsync.deals.schemas import CalendarEvent, DealRecord, EntryOrigin, SyncResult
from src.dealsync.deals.service import HIDDEN_DEALS_KEY, DealService


def _record(deal_id: int, title: str = "Deal", **raw) -> DealRecord:
    return canonicalize({"id": deal_id, "title": title, **raw}, field_keys={}, marker="form-")


@pytest.fixture
def sync() -> MagicMock:
    mock = MagicMock(spec=SyncEngine)
    mock.sync_one = AsyncMock()
    mock.synchronize = AsyncMock(return_value=SyncResult())
    return mock


@pytest.fixture
def service(memory_store, sync) -> DealService:
    return DealService(memory_store, sync)


# ── Deals ─────────────────────────────────────────────────────────────────


class TestGetDeal:
    async def test_cached_record_served_without_refresh(self, service, memory_store, sync):
        await memory_store.put_deal(_record(1))

        snapshot = await service.get_deal(1)

        assert snapshot.record.deal_id == 1
        assert snapshot.stale is False
        sync.sync_one.assert_not_awaited()

    async def test_missing_record_is_fetched(self, service, sync):
        sync.sync_one.return_value = _record(2)

        snapshot = await service.get_deal("2")

        sync.sync_one.assert_awaited_once_with(2)
        assert snapshot.record.deal_id == 2

    async def test_failed_refresh_serves_stale_copy(self, service, memory_store, sync):
        await memory_store.put_deal(_record(1, "Cached"))
        sync.sync_one.side_effect = UpstreamFailureError("down", status_code=503)

        snapshot = await service.get_deal(1, force_refresh=True)

        assert snapshot.stale is True
        assert snapshot.record.title == "Cached"

    async def test_failed_refresh_without_cache_raises(self, service, sync):
        sync.sync_one.side_effect = UpstreamFailureError("down", status_code=503)

        with pytest.raises(UpstreamFailureError):
            await service.get_deal(1)

    async def test_deleted_upstream_gives_empty_snapshot(self, service, sync):
        sync.sync_one.return_value = None

        snapshot = await service.get_deal(3, force_refresh=True)

        assert snapshot.record is None
        assert snapshot.stale is False

    @pytest.mark.parametrize("bad_id", ["abc", 0, -4, None, 1.5, True])
    async def test_invalid_ids_rejected_before_work(self, service, sync, bad_id):
        with pytest.raises(InvalidRequestError):
            await service.get_deal(bad_id)
        sync.sync_one.assert_not_awaited()


class TestDealWrites:
    async def test_put_deal_accepts_payload(self, service, memory_store):
        payload = _record(4, "Stored").to_json()

        record = await service.put_deal(payload)

        assert record.title == "Stored"
        assert (await memory_store.get_deal(4)).title == "Stored"

    async def test_put_deal_rejects_invalid_payload(self, service):
        with pytest.raises(InvalidRequestError):
            await service.put_deal({"title": "missing id"})

    async def test_delete_deal_forgets_manual_import(self, service, memory_store, sync):
        sync.sync_one.return_value = _record(6)
        await service.import_deal(6)
        await memory_store.put_deal(_record(6))

        assert await service.delete_deal(6) is True
        assert await service.list_manual_deal_ids() == []

    async def test_refresh_all_passes_known_ids(self, service, memory_store, sync):
        await memory_store.put_deal(_record(1))
        await memory_store.put_deal(_record(2))

        await service.refresh_all(force=True)

        sync.synchronize.assert_awaited_once_with(force=True, known_ids={1, 2})


class TestImport:
    async def test_import_remembers_id(self, service, sync):
        sync.sync_one.return_value = _record(10)

        record = await service.import_deal(10)

        assert record.deal_id == 10
        assert await service.list_manual_deal_ids() == [10]

    async def test_import_not_found(self, service, sync):
        sync.sync_one.return_value = None

        assert await service.import_deal(11) is None
        assert await service.list_manual_deal_ids() == []

    async def test_import_validates_id(self, service):
        with pytest.raises(InvalidRequestError):
            await service.import_deal("x")


class TestHiddenDeals:
    async def test_hidden_deals_excluded_from_listing(self, service, memory_store):
        for deal_id in (1, 2, 3):
            await memory_store.put_deal(_record(deal_id))

        assert await service.hide_deal(2) == [2]
        assert [d.deal_id for d in await service.list_deals()] == [1, 3]
        assert [d.deal_id for d in await service.list_deals(include_hidden=True)] == [1, 2, 3]

        assert await service.unhide_deal(2) == []
        assert [d.deal_id for d in await service.list_deals()] == [1, 2, 3]

    async def test_hidden_ids_tolerate_junk(self, service, memory_store):
        await memory_store.write(HIDDEN_DEALS_KEY, [5, "7", "junk", -1, 5])
        assert await service.list_hidden_deal_ids() == [5, 7]


# ── Shared Blobs ──────────────────────────────────────────────────────────


class TestSharedState:
    async def test_round_trip(self, service):
        await service.put_shared("board_layout", {"columns": 3})
        assert await service.get_shared("board_layout") == {"columns": 3}
        assert await service.get_shared("missing", default=[]) == []

    @pytest.mark.parametrize("key", ["", "   ", "k" * 129, None])
    async def test_invalid_keys(self, service, key):
        with pytest.raises(InvalidRequestError):
            await service.put_shared(key, 1)

    async def test_deal_extras_are_local(self, service):
        extras = await service.put_deal_extras(
            5,
            {
                "notes": [{"id": "n1", "content": "Llamar"}],
                "documents": [{"id": "d1", "name": "plan.pdf", "url": "https://x.io/plan.pdf"}],
            },
        )

        assert extras.notes[0].origin == EntryOrigin.LOCAL
        loaded = await service.get_deal_extras(5)
        assert loaded.notes[0].content == "Llamar"
        assert loaded.documents[0].origin == EntryOrigin.LOCAL

    async def test_deal_extras_sanitized_on_read(self, service, memory_store):
        await memory_store.write("deal_extras:5", {"notes": [{"id": "n1", "content": "ok"}, {"bad": True}], "documents": "nope"})

        extras = await service.get_deal_extras(5)

        assert [note.id for note in extras.notes] == ["n1"]
        assert extras.documents == []

    async def test_deal_extras_missing(self, service):
        extras = await service.get_deal_extras(8)
        assert extras.notes == [] and extras.documents == []

    async def test_calendar_events(self, service):
        events = [
            {"id": "e1", "dealId": 1, "start": "2026-03-02T09:00", "end": "2026-03-02T13:00"},
            CalendarEvent(id="e2", deal_id=2, start="2026-03-03T09:00", end="2026-03-03T13:00"),
        ]

        await service.put_calendar_events(events)

        assert [e.id for e in await service.get_calendar_events()] == ["e1", "e2"]
        assert [e.id for e in await service.get_calendar_events(deal_id=2)] == ["e2"]

    async def test_calendar_rejects_invalid_event(self, service):
        with pytest.raises(InvalidRequestError):
            await service.put_calendar_events([{"id": "e1"}])

    async def test_calendar_skips_malformed_stored_entries(self, service, memory_store):
        await memory_store.write("calendar_events", [{"id": "e1", "dealId": 1, "start": "a", "end": "b"}, {"id": 3}])
        assert [e.id for e in await service.get_calendar_events()] == ["e1"]


# ── Search ────────────────────────────────────────────────────────────────


async def test_search_deals(service, memory_store):
    await memory_store.put_deal(_record(1, "Formación Acme", org_id={"value": 1, "name": "Acme"}))
    await memory_store.put_deal(_record(2, "Otra", org_id={"value": 2, "name": "Beta"}))

    assert [d.deal_id for d in await service.search_deals({"title": "formacion"})] == [1]
    assert [d.deal_id for d in await service.search_deals({"clientName": "BETA"})] == [2]
    assert [d.deal_id for d in await service.search_deals({"title": ""})] == [1, 2]
