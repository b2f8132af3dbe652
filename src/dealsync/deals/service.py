"""Deal query surface -- the transport-free API readers and writers call.

DealService validates caller input, reads canonical deals from the record
store, triggers refreshes through the sync engine and manages the
ancillary shared blobs:
- manually imported deal ids and hidden deal ids
- locally captured notes/documents per deal ("deal extras")
- scheduled calendar sessions

Invalid ids, keys and payloads raise InvalidRequestError before any work.
A failed single-deal refresh serves the cached record marked stale.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from src.dealsync.core.json_tree import as_int, as_list, as_mapping
from src.dealsync.deals.crm.sync import SyncEngine
from src.dealsync.deals.errors import DealSyncError, InvalidRequestError
from src.dealsync.deals.filters import filter_deals
from src.dealsync.deals.repository import RecordStore
from src.dealsync.deals.schemas import (
    CalendarEvent,
    DealAttachment,
    DealExtras,
    DealNote,
    DealRecord,
    DealSnapshot,
    EntryOrigin,
    SharedStateEntry,
    SyncResult,
)

logger = structlog.get_logger(__name__)

MANUAL_DEALS_KEY = "manual_deal_ids"
HIDDEN_DEALS_KEY = "hidden_deal_ids"
CALENDAR_EVENTS_KEY = "calendar_events"
DEAL_EXTRAS_PREFIX = "deal_extras:"
MAX_KEY_LENGTH = 128


# ── Validation Helpers ──────────────────────────────────────────────────────


def validate_deal_id(value: Any) -> int:
    """Accept a positive integer (or integer string); raise otherwise."""
    deal_id = as_int(value)
    if deal_id is None or deal_id <= 0:
        raise InvalidRequestError(f"Invalid deal id: {value!r}")
    return deal_id


def validate_key(key: Any) -> str:
    if not isinstance(key, str) or not key.strip():
        raise InvalidRequestError("Shared state key must be a non-empty string")
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidRequestError(f"Shared state key exceeds {MAX_KEY_LENGTH} characters")
    return key


def _sanitize_extras(value: Any) -> DealExtras:
    """Keep only the well-formed notes and documents of a stored blob."""
    data = as_mapping(value) or {}
    notes: list[DealNote] = []
    for entry in as_list(data.get("notes")):
        try:
            notes.append(DealNote.model_validate(entry))
        except ValidationError:
            logger.debug("deal_extras.note_dropped")
    documents: list[DealAttachment] = []
    for entry in as_list(data.get("documents")):
        try:
            documents.append(DealAttachment.model_validate(entry))
        except ValidationError:
            logger.debug("deal_extras.document_dropped")
    return DealExtras(notes=notes, documents=documents)


class DealService:
    """Caller-facing operations over the store and the sync engine.

    Args:
        store: Record store holding canonical deals and shared blobs.
        sync: Sync engine used for refreshes and imports.
    """

    def __init__(self, store: RecordStore, sync: SyncEngine) -> None:
        self._store = store
        self._sync = sync

    # ── Deals ───────────────────────────────────────────────────────────────

    async def list_deals(self, include_hidden: bool = False) -> list[DealRecord]:
        """Return stored deals, hidden ones excluded unless asked for."""
        deals = await self._store.list_deals()
        if include_hidden:
            return deals
        hidden = set(await self.list_hidden_deal_ids())
        return [deal for deal in deals if deal.deal_id not in hidden]

    async def get_deal(self, deal_id: Any, force_refresh: bool = False) -> DealSnapshot:
        """Return the stored deal, refreshing it when missing or forced.

        A deal the CRM no longer knows is removed and comes back as an
        empty snapshot. If the refresh fails the cached record is served
        with stale=True; with nothing cached the error propagates.
        """
        deal_id = validate_deal_id(deal_id)
        cached = await self._store.get_deal(deal_id)
        if cached is not None and not force_refresh:
            return DealSnapshot(record=cached)

        try:
            record = await self._sync.sync_one(deal_id)
        except DealSyncError as exc:
            logger.warning("deals.refresh_failed", deal_id=deal_id, error=str(exc), cached=cached is not None)
            if cached is None:
                raise
            return DealSnapshot(record=cached, stale=True)

        return DealSnapshot(record=record)

    async def put_deal(self, record: DealRecord | Mapping[str, Any]) -> DealRecord:
        """Store a canonical record as-is, replacing any previous one."""
        if not isinstance(record, DealRecord):
            try:
                record = DealRecord.model_validate(record)
            except ValidationError as exc:
                raise InvalidRequestError(f"Invalid deal payload: {exc}") from exc
        validate_deal_id(record.deal_id)
        await self._store.put_deal(record)
        return record

    async def delete_deal(self, deal_id: Any) -> bool:
        deal_id = validate_deal_id(deal_id)
        await self._remove_id(MANUAL_DEALS_KEY, deal_id)
        return await self._store.delete_deal(deal_id)

    async def refresh_all(self, force: bool = False) -> SyncResult:
        """Bulk refresh; incremental unless forced."""
        known = await self._store.list_deal_ids()
        return await self._sync.synchronize(force=force, known_ids=known)

    async def import_deal(self, deal_id: Any) -> DealRecord | None:
        """Fetch one deal on demand and remember it as manually imported.

        Returns:
            The canonical record, or None when the CRM does not know the id.
        """
        deal_id = validate_deal_id(deal_id)
        record = await self._sync.sync_one(deal_id)
        if record is None:
            logger.info("deals.import_not_found", deal_id=deal_id)
            return None
        await self._add_id(MANUAL_DEALS_KEY, deal_id)
        logger.info("deals.imported", deal_id=deal_id)
        return record

    async def search_deals(self, filters: Mapping[str, str], include_hidden: bool = False) -> list[DealRecord]:
        return filter_deals(await self.list_deals(include_hidden=include_hidden), filters)

    # ── Id Sets ─────────────────────────────────────────────────────────────

    async def _read_ids(self, key: str) -> list[int]:
        ids: list[int] = []
        for value in as_list(await self._store.read(key, [])):
            deal_id = as_int(value)
            if deal_id is not None and deal_id > 0 and deal_id not in ids:
                ids.append(deal_id)
        return sorted(ids)

    async def _add_id(self, key: str, deal_id: int) -> list[int]:
        ids = await self._read_ids(key)
        if deal_id not in ids:
            ids = sorted([*ids, deal_id])
            await self._store.write(key, ids)
        return ids

    async def _remove_id(self, key: str, deal_id: int) -> list[int]:
        ids = await self._read_ids(key)
        if deal_id in ids:
            ids.remove(deal_id)
            await self._store.write(key, ids)
        return ids

    async def list_manual_deal_ids(self) -> list[int]:
        return await self._read_ids(MANUAL_DEALS_KEY)

    async def list_hidden_deal_ids(self) -> list[int]:
        return await self._read_ids(HIDDEN_DEALS_KEY)

    async def hide_deal(self, deal_id: Any) -> list[int]:
        return await self._add_id(HIDDEN_DEALS_KEY, validate_deal_id(deal_id))

    async def unhide_deal(self, deal_id: Any) -> list[int]:
        return await self._remove_id(HIDDEN_DEALS_KEY, validate_deal_id(deal_id))

    # ── Shared Blobs ────────────────────────────────────────────────────────

    async def get_shared(self, key: str, default: Any = None) -> Any:
        return await self._store.read(validate_key(key), default)

    async def put_shared(self, key: str, value: Any) -> SharedStateEntry:
        return await self._store.write(validate_key(key), value)

    async def get_deal_extras(self, deal_id: Any) -> DealExtras:
        deal_id = validate_deal_id(deal_id)
        return _sanitize_extras(await self._store.read(f"{DEAL_EXTRAS_PREFIX}{deal_id}"))

    async def put_deal_extras(self, deal_id: Any, extras: DealExtras | Mapping[str, Any]) -> DealExtras:
        """Replace the locally captured notes and documents of a deal."""
        deal_id = validate_deal_id(deal_id)
        if not isinstance(extras, DealExtras):
            try:
                extras = DealExtras.model_validate(extras)
            except ValidationError as exc:
                raise InvalidRequestError(f"Invalid deal extras: {exc}") from exc

        for entry in [*extras.notes, *extras.documents]:
            entry.origin = EntryOrigin.LOCAL

        await self._store.write(f"{DEAL_EXTRAS_PREFIX}{deal_id}", extras.to_json())
        return extras

    async def get_calendar_events(self, deal_id: Any = None) -> list[CalendarEvent]:
        """Stored sessions, optionally only those of one deal; malformed entries are skipped."""
        wanted = validate_deal_id(deal_id) if deal_id is not None else None
        events: list[CalendarEvent] = []
        for entry in as_list(await self._store.read(CALENDAR_EVENTS_KEY, [])):
            try:
                event = CalendarEvent.model_validate(entry)
            except ValidationError:
                logger.debug("calendar.event_dropped")
                continue
            if wanted is None or event.deal_id == wanted:
                events.append(event)
        return events

    async def put_calendar_events(self, events: Iterable[CalendarEvent | Mapping[str, Any]]) -> list[CalendarEvent]:
        """Replace the whole calendar."""
        validated: list[CalendarEvent] = []
        for event in events:
            if not isinstance(event, CalendarEvent):
                try:
                    event = CalendarEvent.model_validate(event)
                except ValidationError as exc:
                    raise InvalidRequestError(f"Invalid calendar event: {exc}") from exc
            validated.append(event)

        await self._store.write(CALENDAR_EVENTS_KEY, [event.to_json() for event in validated])
        return validated
