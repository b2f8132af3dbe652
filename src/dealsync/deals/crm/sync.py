"""Synchronization controller -- refreshes the record store from the CRM.

States are Idle -> Syncing -> Idle, held in a single in-flight slot:
- A non-forced call while a run is in flight joins that run.
- A forced call while any run is in flight, forced or not, drains it
  (its errors are logged and dropped) and then starts a fresh run that
  ignores known ids.
- The slot is cleared by a done-callback whether the run succeeded or not.

Callers await the shared task through asyncio.shield, so cancelling one
caller never cancels a run others are waiting on. Per-deal failures are
logged, recorded in SyncResult.errors and never abort the batch.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

import structlog

from src.dealsync.core.json_tree import as_int
from src.dealsync.deals.canonical import canonicalize
from src.dealsync.deals.crm.adapter import CRMSourceAdapter
from src.dealsync.deals.crm.field_options import FieldMetadataResolver
from src.dealsync.deals.repository import RecordStore
from src.dealsync.deals.schemas import DealRecord, FieldOptionsMap, SyncResult

logger = structlog.get_logger(__name__)


class SyncEngine:
    """Single-flight bulk refresh of canonical deals.

    Args:
        source: CRM adapter to read raw deals from.
        store: Record store receiving canonical records.
        resolver: Field metadata resolver for option labels.
        limit: How many recently updated deals one run lists.
        field_keys: Logical custom field -> configured CRM key.
        marker: Training product code marker.
    """

    def __init__(
        self,
        source: CRMSourceAdapter,
        store: RecordStore,
        resolver: FieldMetadataResolver,
        limit: int = 100,
        field_keys: Mapping[str, str] | None = None,
        marker: str | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._resolver = resolver
        self._limit = limit
        self._field_keys = field_keys
        self._marker = marker
        self._lock = asyncio.Lock()
        self._inflight: asyncio.Task[SyncResult] | None = None

    @property
    def in_flight(self) -> bool:
        """Return True while a run occupies the slot."""
        return self._inflight is not None

    async def synchronize(self, force: bool = False, known_ids: Iterable[int] | None = None) -> SyncResult:
        """Run, or join, a batch refresh.

        Args:
            force: Refresh every listed deal, draining any in-flight run first.
            known_ids: Deals already stored; skipped when not forced.

        Returns:
            SyncResult of the run this call started or joined.

        Raises:
            UpstreamFailureError: If listing recent deals fails.
        """
        known = set(known_ids or ())

        while True:
            async with self._lock:
                task = self._inflight
                if task is None:
                    task = self._start(force, known)
                    break
                if not force:
                    logger.debug("sync.joined_inflight")
                    break

            logger.info("sync.draining_inflight")
            try:
                await asyncio.shield(task)
            except Exception as exc:
                logger.warning("sync.drained_run_failed", error=str(exc))

            async with self._lock:
                if self._inflight is task:
                    self._clear_slot(task)

        return await asyncio.shield(task)

    def _start(self, force: bool, known: set[int]) -> asyncio.Task[SyncResult]:
        task = asyncio.create_task(self._run(force, known))
        self._inflight = task
        task.add_done_callback(self._clear_slot)
        return task

    def _clear_slot(self, task: asyncio.Task[SyncResult]) -> None:
        if self._inflight is task:
            self._inflight = None
        if task.done() and not task.cancelled():
            # Mark the exception retrieved; callers get it through their own await.
            task.exception()

    async def _run(self, force: bool, known: set[int]) -> SyncResult:
        result = SyncResult(forced=force)
        logger.info("sync.started", forced=force, known=len(known), limit=self._limit)

        listed = await self._source.list_recently_updated_deals(self._limit)
        deal_ids: list[int] = []
        for deal in listed:
            deal_id = as_int(deal.get("id"))
            if deal_id is not None and deal_id > 0 and deal_id not in deal_ids:
                deal_ids.append(deal_id)
        result.listed = len(deal_ids)

        options = await self._resolver.load()

        for deal_id in deal_ids:
            if not force and deal_id in known:
                result.skipped += 1
                continue
            try:
                record = await self._refresh(deal_id, options)
            except Exception as exc:
                logger.warning("sync.deal_failed", deal_id=deal_id, error=str(exc))
                result.errors.append(f"{deal_id}: {exc}")
                continue
            if record is None:
                result.removed += 1
            else:
                result.written += 1

        logger.info(
            "sync.completed",
            forced=force,
            listed=result.listed,
            written=result.written,
            skipped=result.skipped,
            removed=result.removed,
            errors=len(result.errors),
        )
        return result

    async def sync_one(self, deal_id: int) -> DealRecord | None:
        """Refresh one deal; None means the CRM no longer has it and it was removed."""
        options = await self._resolver.load()
        return await self._refresh(deal_id, options)

    async def _refresh(self, deal_id: int, options: FieldOptionsMap) -> DealRecord | None:
        raw = await self._source.get_deal(deal_id)
        if raw is None:
            logger.info("sync.deal_not_found", deal_id=deal_id)
            await self._store.delete_deal(deal_id)
            return None

        line_items = await self._fetch_related(self._source.get_deal_line_items, deal_id, "line_items")
        notes = await self._fetch_related(self._source.get_deal_notes, deal_id, "notes")
        files = await self._fetch_related(self._source.get_deal_files, deal_id, "files")

        record = canonicalize(
            raw,
            options,
            line_items=line_items,
            notes=notes,
            files=files,
            field_keys=self._field_keys,
            marker=self._marker,
        )
        await self._store.put_deal(record)
        return record

    async def _fetch_related(
        self,
        fetch: Callable[[int], Awaitable[list[dict[str, Any]]]],
        deal_id: int,
        kind: str,
    ) -> list[dict[str, Any]]:
        try:
            return await fetch(deal_id)
        except Exception as exc:
            logger.warning("sync.related_fetch_failed", deal_id=deal_id, kind=kind, error=str(exc))
            return []
