"""Pydantic schemas for the canonical deal representation and sync bookkeeping.

Defines all structured types produced by canonicalization and consumed by
the store and query surface:
- Canonical record: RelatedEntity, DealNote, DealAttachment, DealProduct, DealRecord
- Field metadata: FieldOptionsMap (alias -> option key -> label)
- Shared blobs: SharedStateEntry, DealExtras, CalendarEvent
- Sync/query results: SyncResult, DealSnapshot

Attributes are snake_case; camelCase aliases are used for persisted JSON
(model_dump(mode="json", by_alias=True)) and both forms are accepted on input.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.dealsync.core.text import normalize_text


class CamelModel(BaseModel):
    """Base model with camelCase aliases accepted alongside field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        """Serialize with camelCase keys for storage and transport."""
        return self.model_dump(mode="json", by_alias=True)


# ── Enums ───────────────────────────────────────────────────────────────────


class EntryOrigin(str, Enum):
    """Where a note or attachment was found."""

    DEAL = "deal"
    PRODUCT = "product"
    LOCAL = "local"


# ── Canonical Record ────────────────────────────────────────────────────────


class RelatedEntity(CamelModel):
    """Organization or person reference absorbed from any raw shape."""

    id: int | None = None
    name: str | None = None
    address: str | None = None

    def is_empty(self) -> bool:
        return self.id is None and self.name is None and self.address is None


class DealNote(CamelModel):
    """A note attached to the deal or to one of its products."""

    id: str
    content: str
    created_at: str | None = None
    updated_at: str | None = None
    author: str | None = None
    origin: EntryOrigin = EntryOrigin.DEAL
    deal_product_id: int | None = None
    product_id: int | None = None
    product_name: str | None = None


class DealAttachment(CamelModel):
    """A file linked to the deal or to one of its products."""

    id: str
    name: str
    url: str
    download_url: str | None = None
    file_type: str | None = None
    created_at: str | None = None
    author: str | None = None
    origin: EntryOrigin = EntryOrigin.DEAL
    deal_product_id: int | None = None
    product_id: int | None = None
    product_name: str | None = None


class DealProduct(CamelModel):
    """A deal line item.

    deal_product_id is negative when the source carried no line-item id
    and a placeholder was synthesized.
    """

    deal_product_id: int
    product_id: int | None = None
    name: str = ""
    code: str | None = None
    quantity: float = 0
    price: float | None = None
    recommended_hours: float | None = None
    recommended_hours_raw: str | None = None
    notes: list[DealNote] = Field(default_factory=list)
    attachments: list[DealAttachment] = Field(default_factory=list)
    is_training: bool = False


class DealRecord(CamelModel):
    """Canonical deal, rebuilt wholesale on every refresh."""

    deal_id: int
    title: str
    client: RelatedEntity | None = None
    contact: RelatedEntity | None = None
    site: str | None = None
    address: str | None = None
    caes: str | None = None
    fundae: str | None = None
    hotel_pernocta: str | None = None
    pipeline_id: int | None = None
    pipeline_name: str | None = None
    won_date: str | None = None
    formations: list[str] = Field(default_factory=list)
    training_products: list[DealProduct] = Field(default_factory=list)
    extra_products: list[DealProduct] = Field(default_factory=list)
    notes: list[DealNote] = Field(default_factory=list)
    attachments: list[DealAttachment] = Field(default_factory=list)

    @property
    def client_name(self) -> str | None:
        """Organization name, falling back to the contact's name."""
        if self.client and self.client.name:
            return self.client.name
        if self.contact and self.contact.name:
            return self.contact.name
        return None

    @property
    def products(self) -> list[DealProduct]:
        return [*self.training_products, *self.extra_products]


# ── Field Metadata ──────────────────────────────────────────────────────────


class FieldOptionsMap(CamelModel):
    """Alias-keyed lookup of custom single-choice option labels.

    options maps every known alias of a logical field to a dict of
    raw option key (and its normalized form) -> label.
    """

    options: dict[str, dict[str, str]] = Field(default_factory=dict)
    fetched_at: datetime | None = None

    def is_fresh(self, now: datetime, ttl: timedelta) -> bool:
        if self.fetched_at is None:
            return False
        fetched_at = self.fetched_at
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        return now - fetched_at < ttl

    def options_for(self, alias: str) -> dict[str, str] | None:
        options = self.options.get(alias)
        if options is None:
            options = self.options.get(normalize_text(alias))
        return options

    def resolve(self, alias: str, raw: Any) -> Any:
        """Map a raw option value to its label; unresolved values pass through."""
        if raw is None or isinstance(raw, (dict, list, bool)):
            return raw
        options = self.options_for(alias)
        if not options:
            return raw
        if isinstance(raw, float) and raw.is_integer():
            key = str(int(raw))
        else:
            key = str(raw).strip()
        if key in options:
            return options[key]
        return options.get(normalize_text(key), raw)


# ── Shared Blobs ────────────────────────────────────────────────────────────


class SharedStateEntry(CamelModel):
    """Opaque JSON value stored under an arbitrary string key."""

    key: str
    value: Any = None
    updated_at: datetime | None = None


class DealExtras(CamelModel):
    """Notes and documents captured locally for a deal."""

    notes: list[DealNote] = Field(default_factory=list)
    documents: list[DealAttachment] = Field(default_factory=list)


class CalendarEvent(CamelModel):
    """A scheduled training session shown on the calendar."""

    id: str
    deal_id: int
    deal_title: str = ""
    deal_product_id: int | None = None
    product_id: int | None = None
    product_name: str = ""
    session_index: int = 0
    start: str
    end: str
    attendees: int | None = None
    site: str | None = None
    address: str | None = None


# ── Sync / Query Results ────────────────────────────────────────────────────


class SyncResult(BaseModel):
    """Outcome of one synchronization batch."""

    listed: int = 0
    written: int = 0
    skipped: int = 0
    removed: int = 0
    errors: list[str] = Field(default_factory=list)
    forced: bool = False


class DealSnapshot(BaseModel):
    """A canonical record plus whether it may be out of date.

    stale is True when a refresh was attempted and failed, and the cached
    record was served instead.
    """

    record: DealRecord | None = None
    stale: bool = False
