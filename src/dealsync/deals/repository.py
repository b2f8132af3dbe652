"""Record store -- durable key-addressed storage with an in-process fallback.

Provides RecordStore over two tables (see models.py):
- canonical DealRecords keyed by deal id
- opaque shared JSON blobs keyed by string

Every write lands in the local cache first, so a read right after a write
in the same process always observes it. When no engine is configured, or
the durable backend fails once, the store switches to the local cache for
the rest of the process lifetime. The switch is logged once and callers
never branch on which backend answered.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.dealsync.core.database import Base
from src.dealsync.deals.errors import StoreUnavailableError
from src.dealsync.deals.models import PipedriveDealModel, SharedStateModel
from src.dealsync.deals.schemas import DealRecord, SharedStateEntry

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _record_to_model(record: DealRecord, payload: dict[str, Any]) -> PipedriveDealModel:
    return PipedriveDealModel(
        deal_id=record.deal_id,
        title=record.title,
        client_name=record.client_name,
        pipeline_id=record.pipeline_id,
        pipeline_name=record.pipeline_name,
        won_date=record.won_date,
        data=payload,
        updated_at=_utcnow(),
    )


def _payload_to_record(deal_id: int, payload: Any) -> DealRecord | None:
    try:
        return DealRecord.model_validate(payload)
    except ValidationError as exc:
        logger.warning("store.deal_payload_invalid", deal_id=deal_id, error=str(exc))
        return None


# ── Record Store ────────────────────────────────────────────────────────────


class RecordStore:
    """Deal records and shared blobs with transparent in-memory fallback.

    Args:
        engine: Async engine for the durable backend, or None for
            in-memory mode.
    """

    def __init__(self, engine: AsyncEngine | None) -> None:
        self._engine = engine
        self._session_factory = (
            async_sessionmaker(engine, expire_on_commit=False) if engine is not None else None
        )
        self._local_deals: dict[int, dict[str, Any]] = {}
        self._local_state: dict[str, SharedStateEntry] = {}
        self._schema_task: asyncio.Task[bool] | None = None
        self._durable = engine is not None
        self._fallback_logged = False
        if engine is None:
            self._log_fallback("database_url_not_configured")

    @property
    def is_durable(self) -> bool:
        return self._durable

    def _log_fallback(self, reason: str, error: str | None = None) -> None:
        if self._fallback_logged:
            return
        self._fallback_logged = True
        logger.warning("store.durable_unavailable", reason=reason, error=error, mode="memory")

    def _degrade(self, exc: StoreUnavailableError) -> None:
        """Switch to the local cache for the rest of the process."""
        self._durable = False
        self._log_fallback("backend_error", str(exc))

    async def _run(self, action: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        if self._session_factory is None:
            raise StoreUnavailableError(f"Durable store {action} failed: no database engine configured")
        try:
            async with self._session_factory() as session:
                return await work(session)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailableError(f"Durable store {action} failed: {exc}") from exc

    # ── Schema ──────────────────────────────────────────────────────────────

    async def ensure_schema(self) -> bool:
        """Create the tables once; safe to call repeatedly and concurrently.

        Returns:
            True when the durable backend is usable.
        """
        if not self._durable:
            return False
        if self._schema_task is None:
            self._schema_task = asyncio.ensure_future(self._create_schema())
        return await asyncio.shield(self._schema_task)

    async def _create_schema(self) -> bool:
        if self._engine is None:
            self._degrade(StoreUnavailableError("Schema creation failed: no database engine configured"))
            return False
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as exc:
            self._degrade(StoreUnavailableError(f"Schema creation failed: {exc}"))
            return False
        logger.info("store.schema_ready")
        return True

    # ── Shared Blobs ────────────────────────────────────────────────────────

    async def read_entry(self, key: str) -> SharedStateEntry | None:
        """Return the stored entry for key, or None."""
        if await self.ensure_schema():
            try:
                model = await self._run("read", lambda session: session.get(SharedStateModel, key))
            except StoreUnavailableError as exc:
                self._degrade(exc)
            else:
                if model is None:
                    self._local_state.pop(key, None)
                    return None
                entry = SharedStateEntry(key=key, value=model.value, updated_at=model.updated_at)
                self._local_state[key] = entry
                return entry.model_copy(deep=True)

        entry = self._local_state.get(key)
        return entry.model_copy(deep=True) if entry is not None else None

    async def read(self, key: str, default: Any = None) -> Any:
        """Return the value stored under key, or default."""
        entry = await self.read_entry(key)
        return default if entry is None else entry.value

    async def write(self, key: str, value: Any) -> SharedStateEntry:
        """Replace the value under key."""
        entry = SharedStateEntry(key=key, value=copy.deepcopy(value), updated_at=_utcnow())
        self._local_state[key] = entry

        if await self.ensure_schema():

            async def work(session: AsyncSession) -> None:
                await session.merge(
                    SharedStateModel(key=key, value=entry.value, updated_at=entry.updated_at)
                )
                await session.commit()

            try:
                await self._run("write", work)
            except StoreUnavailableError as exc:
                self._degrade(exc)

        return entry.model_copy(deep=True)

    async def delete(self, key: str) -> bool:
        """Remove key; returns whether anything was removed."""
        removed = self._local_state.pop(key, None) is not None

        if await self.ensure_schema():

            async def work(session: AsyncSession) -> int:
                result = await session.execute(delete(SharedStateModel).where(SharedStateModel.key == key))
                await session.commit()
                return result.rowcount or 0

            try:
                removed = await self._run("delete", work) > 0 or removed
            except StoreUnavailableError as exc:
                self._degrade(exc)

        return removed

    # ── Deal Records ────────────────────────────────────────────────────────

    async def get_deal(self, deal_id: int) -> DealRecord | None:
        """Return the stored canonical record, or None."""
        if await self.ensure_schema():
            try:
                model = await self._run("read", lambda session: session.get(PipedriveDealModel, deal_id))
            except StoreUnavailableError as exc:
                self._degrade(exc)
            else:
                if model is None:
                    self._local_deals.pop(deal_id, None)
                    return None
                self._local_deals[deal_id] = model.data
                return _payload_to_record(deal_id, model.data)

        payload = self._local_deals.get(deal_id)
        return _payload_to_record(deal_id, payload) if payload is not None else None

    async def put_deal(self, record: DealRecord) -> None:
        """Replace the stored record for record.deal_id."""
        payload = record.to_json()
        self._local_deals[record.deal_id] = payload

        if await self.ensure_schema():

            async def work(session: AsyncSession) -> None:
                await session.merge(_record_to_model(record, payload))
                await session.commit()

            try:
                await self._run("write", work)
            except StoreUnavailableError as exc:
                self._degrade(exc)

        logger.debug("store.deal_written", deal_id=record.deal_id, durable=self._durable)

    async def delete_deal(self, deal_id: int) -> bool:
        """Remove a deal record; returns whether anything was removed."""
        removed = self._local_deals.pop(deal_id, None) is not None

        if await self.ensure_schema():

            async def work(session: AsyncSession) -> int:
                result = await session.execute(
                    delete(PipedriveDealModel).where(PipedriveDealModel.deal_id == deal_id)
                )
                await session.commit()
                return result.rowcount or 0

            try:
                removed = await self._run("delete", work) > 0 or removed
            except StoreUnavailableError as exc:
                self._degrade(exc)

        if removed:
            logger.info("store.deal_deleted", deal_id=deal_id)
        return removed

    async def list_deals(self) -> list[DealRecord]:
        """Return every stored record ordered by deal id."""
        if await self.ensure_schema():

            async def work(session: AsyncSession) -> list[tuple[int, Any]]:
                result = await session.execute(
                    select(PipedriveDealModel.deal_id, PipedriveDealModel.data).order_by(
                        PipedriveDealModel.deal_id
                    )
                )
                return [(row.deal_id, row.data) for row in result]

            try:
                rows = await self._run("list", work)
            except StoreUnavailableError as exc:
                self._degrade(exc)
            else:
                self._local_deals = dict(rows)
                records = (_payload_to_record(deal_id, payload) for deal_id, payload in rows)
                return [record for record in records if record is not None]

        records = (
            _payload_to_record(deal_id, self._local_deals[deal_id]) for deal_id in sorted(self._local_deals)
        )
        return [record for record in records if record is not None]

    async def list_deal_ids(self) -> set[int]:
        """Return the ids of every stored record."""
        if await self.ensure_schema():

            async def work(session: AsyncSession) -> set[int]:
                result = await session.execute(select(PipedriveDealModel.deal_id))
                return set(result.scalars().all())

            try:
                return await self._run("list", work)
            except StoreUnavailableError as exc:
                self._degrade(exc)

        return set(self._local_deals)

    def reset(self) -> None:
        """Clear caches and restore the durable flag (tests)."""
        self._local_deals.clear()
        self._local_state.clear()
        self._schema_task = None
        self._durable = self._engine is not None
        self._fallback_logged = False
