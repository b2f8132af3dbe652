"""Record store persistence models.

Two SQLAlchemy tables:
- PipedriveDealModel: one canonical DealRecord per deal id, denormalized
  columns for listing plus the full record as JSON
- SharedStateModel: arbitrary string key -> opaque JSON blob

JSON columns use JSONB on PostgreSQL and plain JSON elsewhere (SQLite in tests).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.dealsync.core.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class PipedriveDealModel(Base):
    """Canonical deal snapshot, replaced wholesale on every refresh."""

    __tablename__ = "pipedrive_deals"

    deal_id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pipeline_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pipeline_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    won_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class SharedStateModel(Base):
    """Opaque JSON blob under an arbitrary key (hidden ids, calendar, options cache)."""

    __tablename__ = "shared_state"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[Any] = mapped_column(JSONType, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
