"""Shared fixtures for the deal sync tests.

Provides:
- In-memory RecordStore (no engine)
- SQLite-backed RecordStore via aiosqlite for the durable path
- AsyncMock CRM source adapter with empty defaults
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from src.dealsync.deals.crm.adapter import CRMSourceAdapter
from src.dealsync.deals.repository import RecordStore


@pytest.fixture
def memory_store() -> RecordStore:
    """Record store in in-memory mode."""
    return RecordStore(None)


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine, disposed after the test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    yield engine
    await engine.dispose()


@pytest.fixture
def durable_store(sqlite_engine) -> RecordStore:
    """Record store backed by SQLite."""
    return RecordStore(sqlite_engine)


@pytest.fixture
def source() -> AsyncMock:
    """CRM adapter mock: no deals, no related data, no field definitions."""
    mock = AsyncMock(spec=CRMSourceAdapter)
    mock.list_recently_updated_deals.return_value = []
    mock.get_deal.return_value = None
    mock.get_deal_line_items.return_value = []
    mock.get_deal_notes.return_value = []
    mock.get_deal_files.return_value = []
    mock.list_field_definitions.return_value = []
    return mock
