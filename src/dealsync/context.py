"""Engine context -- the single construction point for stateful collaborators.

Wires settings, the Pipedrive adapter, the record store, the field
metadata resolver, the sync engine and the deal service. Caches and the
single-flight slot live on these objects, so tests get a clean slate from
reset() or by building a fresh context with their own adapter and engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from src.dealsync.config import Settings, get_settings
from src.dealsync.core.database import close_db, get_engine
from src.dealsync.deals.crm.adapter import CRMSourceAdapter
from src.dealsync.deals.crm.field_options import FieldMetadataResolver
from src.dealsync.deals.crm.pipedrive import PipedriveAdapter
from src.dealsync.deals.crm.sync import SyncEngine
from src.dealsync.deals.repository import RecordStore
from src.dealsync.deals.service import DealService

logger = structlog.get_logger(__name__)

_UNSET = object()


@dataclass
class DealSyncContext:
    settings: Settings
    source: CRMSourceAdapter
    store: RecordStore
    resolver: FieldMetadataResolver
    sync: SyncEngine
    service: DealService

    def reset(self) -> None:
        """Clear store caches and the cached field options."""
        self.store.reset()
        self.resolver.reset()

    async def close(self) -> None:
        await close_db()


def build_context(
    settings: Settings | None = None,
    source: CRMSourceAdapter | None = None,
    engine: AsyncEngine | None | object = _UNSET,
) -> DealSyncContext:
    """Build a fully wired context.

    Args:
        settings: Defaults to get_settings().
        source: Defaults to a PipedriveAdapter from settings.
        engine: Defaults to the shared engine; pass None for in-memory mode.
    """
    settings = settings or get_settings()
    field_keys = settings.custom_field_keys()

    if source is None:
        source = PipedriveAdapter(
            api_token=settings.PIPEDRIVE_API_TOKEN,
            base_url=settings.PIPEDRIVE_BASE_URL,
            timeout=settings.PIPEDRIVE_TIMEOUT,
        )
    if engine is _UNSET:
        engine = get_engine()

    store = RecordStore(engine)  # type: ignore[arg-type]
    resolver = FieldMetadataResolver(
        source,
        store,
        field_keys=field_keys,
        ttl=timedelta(seconds=settings.FIELD_OPTIONS_TTL_SECONDS),
    )
    sync = SyncEngine(
        source,
        store,
        resolver,
        limit=settings.SYNC_DEAL_LIMIT,
        field_keys=field_keys,
        marker=settings.TRAINING_CODE_MARKER,
    )
    service = DealService(store, sync)

    logger.info("context.built", durable=store.is_durable, limit=settings.SYNC_DEAL_LIMIT)
    return DealSyncContext(
        settings=settings,
        source=source,
        store=store,
        resolver=resolver,
        sync=sync,
        service=service,
    )
