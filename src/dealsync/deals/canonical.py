"""Canonicalization engine -- raw Pipedrive deal JSON to DealRecord.

The raw payloads are inconsistent: the same concept appears under many
keys, at different depths, with different types. Everything here works on
one idea:

1. collect_candidate_records() flattens a raw object into an ordered list
   of sub-objects (root first, then known containers breadth-first).
2. find_first_value() scans that list with an ordered list of key paths.
   Record order then path order *is* the conflict resolution policy.

Products found under several keys are reconciled by line-item id, notes
and attachments are normalized and deduplicated by id, and custom
single-choice fields are mapped to labels through a FieldOptionsMap.
"""

from __future__ import annotations

import hashlib
import re
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, NamedTuple
from urllib.parse import urlparse

import structlog

from src.dealsync.config import get_settings
from src.dealsync.core.json_tree import (
    as_float,
    as_int,
    as_list,
    as_mapping,
    as_text,
    first_present,
    get_path,
    is_blank,
)
from src.dealsync.core.text import normalize_text
from src.dealsync.deals.crm import field_mapping as keys
from src.dealsync.deals.errors import MalformedRecordError
from src.dealsync.deals.formation_hours import resolve_recommended_hours_from_list
from src.dealsync.deals.schemas import (
    DealAttachment,
    DealNote,
    DealProduct,
    DealRecord,
    EntryOrigin,
    FieldOptionsMap,
    RelatedEntity,
)

logger = structlog.get_logger(__name__)

TRAINING_CODE_MARKER = "form-"

_NUMBER_TOKEN = re.compile(r"\d+(?:[.,]\d+)?")


# ── Tree Flattening & Lookup ────────────────────────────────────────────────


def collect_candidate_records(root: Any) -> list[dict[str, Any]]:
    """Flatten a raw object into the ordered search space for field lookups.

    Walks CONTAINER_KEYS breadth-first from root. Arrays under a container
    key contribute their object elements. Each object is visited once, so
    cyclic or shared references are safe.

    Args:
        root: Any JSON value; non-objects yield an empty list.

    Returns:
        Visited objects in BFS order, root first.
    """
    start = as_mapping(root)
    if start is None:
        return []

    records: list[dict[str, Any]] = []
    seen: set[int] = set()
    queue: deque[dict[str, Any]] = deque([start])

    while queue:
        record = queue.popleft()
        if id(record) in seen:
            continue
        seen.add(id(record))
        records.append(record)

        for key in keys.CONTAINER_KEYS:
            child = record.get(key)
            if isinstance(child, dict):
                queue.append(child)
            elif isinstance(child, list):
                queue.extend(item for item in child if isinstance(item, dict))

    return records


def find_first_value(records: Sequence[Mapping[str, Any]], key_paths: Sequence[str]) -> Any:
    """Return the first non-null, non-empty-string value.

    Scans records in list order and, within each record, key paths in the
    given order. Key paths may be dotted ("product.code").
    """
    for record in records:
        for path in key_paths:
            value = get_path(record, path)
            if not is_blank(value):
                return value
    return None


# ── Scalars ─────────────────────────────────────────────────────────────────


def normalize_product_code(code: Any) -> str:
    text = as_text(code)
    return text.strip().lower() if text else ""


def is_training_code(code: Any, marker: str = TRAINING_CODE_MARKER) -> bool:
    """A product is a training product iff its normalized code contains the marker."""
    normalized_marker = normalize_product_code(marker)
    if not normalized_marker:
        return False
    return normalized_marker in normalize_product_code(code)


def parse_recommended_hours(value: Any) -> tuple[float | None, str | None]:
    """Parse a duration into (hours, original text).

    Numbers pass through with no text. Strings keep their original text
    verbatim; the number is the first numeric token (comma as decimal
    point) or None when there is none.
    """
    if value is None or isinstance(value, (bool, dict, list)):
        return None, None
    if isinstance(value, (int, float)):
        return as_float(value), None

    raw = str(value)
    if not raw.strip():
        return None, None

    match = _NUMBER_TOKEN.search(raw)
    if match is None:
        return None, raw
    return float(match.group(0).replace(",", ".")), raw


def resolve_attachment_url(value: Any) -> str | None:
    """Return an absolute http(s) URL, upgrading protocol-relative ones."""
    text = as_text(value)
    if not text:
        return None
    if text.startswith("//"):
        text = f"https:{text}"

    parsed = urlparse(text)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        return None
    return text


def _unwrap_option_id(value: Any) -> Any:
    mapping = as_mapping(value)
    if mapping is None:
        return value
    return first_present(mapping.get(key) for key in keys.ENTITY_ID_KEYS)


def _unwrap_option_label(value: Any) -> Any:
    mapping = as_mapping(value)
    if mapping is None:
        return value
    label = first_present(mapping.get(key) for key in ("label", "name"))
    if label is not None:
        return label
    return _unwrap_option_id(mapping)


def _label_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return "Sí" if value else "No"
    return as_text(value)


def _synthetic_id(prefix: str, *parts: str | None) -> str:
    digest = hashlib.sha1("\x1f".join(part or "" for part in parts).encode("utf-8")).hexdigest()
    return f"{prefix}-{digest[:12]}"


def _iter_entries(value: Any) -> list[Any]:
    if isinstance(value, (str, Mapping)):
        return [value]
    return as_list(value)


# ── Notes & Attachments ─────────────────────────────────────────────────────


class _Owner(NamedTuple):
    deal_product_id: int | None = None
    product_id: int | None = None
    product_name: str | None = None


def normalize_note(entry: Any, origin: EntryOrigin, owner: _Owner = _Owner()) -> DealNote | None:
    """Normalize a raw note (bare string or object); empty content gives None."""
    if isinstance(entry, str):
        content = entry.strip()
        data: dict[str, Any] = {}
    else:
        data = as_mapping(entry) or {}
        content = as_text(find_first_value([data], keys.NOTE_CONTENT_KEYS)) or ""

    if not content:
        return None

    note_id = as_text(find_first_value([data], keys.NOTE_ID_KEYS))
    return DealNote(
        id=note_id or _synthetic_id("note", content),
        content=content,
        created_at=as_text(find_first_value([data], keys.NOTE_CREATED_KEYS)),
        updated_at=as_text(find_first_value([data], keys.NOTE_UPDATED_KEYS)),
        author=as_text(find_first_value([data], keys.AUTHOR_KEYS)),
        origin=origin,
        deal_product_id=owner.deal_product_id,
        product_id=owner.product_id,
        product_name=owner.product_name,
    )


def normalize_attachment(
    entry: Any, origin: EntryOrigin, owner: _Owner = _Owner()
) -> DealAttachment | None:
    """Normalize a raw attachment; entries without a usable absolute URL give None."""
    if isinstance(entry, str):
        url = resolve_attachment_url(entry)
        if url is None:
            return None
        name = urlparse(url).path.rsplit("/", 1)[-1] or url
        return DealAttachment(
            id=url,
            name=name,
            url=url,
            origin=origin,
            deal_product_id=owner.deal_product_id,
            product_id=owner.product_id,
            product_name=owner.product_name,
        )

    data = as_mapping(entry)
    if data is None:
        return None

    url = first_present(resolve_attachment_url(get_path(data, key)) for key in keys.ATTACHMENT_URL_KEYS)
    if url is None:
        return None

    download_url = first_present(
        resolve_attachment_url(get_path(data, key)) for key in keys.ATTACHMENT_DOWNLOAD_KEYS
    )
    name = as_text(find_first_value([data], keys.ATTACHMENT_NAME_KEYS))
    if not name:
        name = urlparse(url).path.rsplit("/", 1)[-1] or url

    return DealAttachment(
        id=as_text(find_first_value([data], keys.ATTACHMENT_ID_KEYS)) or url,
        name=name,
        url=url,
        download_url=download_url,
        file_type=as_text(find_first_value([data], keys.ATTACHMENT_TYPE_KEYS)),
        created_at=as_text(find_first_value([data], keys.NOTE_CREATED_KEYS)),
        author=as_text(find_first_value([data], keys.AUTHOR_KEYS)),
        origin=origin,
        deal_product_id=owner.deal_product_id,
        product_id=owner.product_id,
        product_name=owner.product_name,
    )


def _dedupe_by_id(items: Iterable[Any], seen: set[str]) -> list[Any]:
    unique = []
    for item in items:
        if item is None or item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def _collect_entries(records: Sequence[Mapping[str, Any]], key_paths: Sequence[str]) -> list[Any]:
    """Gather entries from every array found under key_paths, each array once."""
    entries: list[Any] = []
    seen_arrays: set[int] = set()
    for record in records:
        for path in key_paths:
            value = get_path(record, path)
            if value is None or id(value) in seen_arrays:
                continue
            seen_arrays.add(id(value))
            entries.extend(_iter_entries(value))
    return entries


# ── Products ────────────────────────────────────────────────────────────────


@dataclass
class _PartialProduct:
    """One line item as seen so far; None means "not found yet"."""

    deal_product_id: int
    product_id: int | None = None
    name: str | None = None
    code: str | None = None
    quantity: float | None = None
    price: float | None = None
    recommended_hours: float | None = None
    recommended_hours_raw: str | None = None
    raw_notes: list[Any] = field(default_factory=list)
    raw_attachments: list[Any] = field(default_factory=list)

    _SCALARS = (
        "product_id",
        "name",
        "code",
        "quantity",
        "price",
    )

    def merge(self, other: _PartialProduct) -> None:
        """Fold a duplicate sighting in; the first non-empty value wins per field.

        Hours and their source text travel together from the first sighting
        that has either.
        """
        for name in self._SCALARS:
            if is_blank(getattr(self, name)):
                setattr(self, name, getattr(other, name))
        if self.recommended_hours is None and self.recommended_hours_raw is None:
            self.recommended_hours = other.recommended_hours
            self.recommended_hours_raw = other.recommended_hours_raw
        if not self.raw_notes:
            self.raw_notes = other.raw_notes
        if not self.raw_attachments:
            self.raw_attachments = other.raw_attachments

    def build(self, marker: str, seen_notes: set[str], seen_attachments: set[str]) -> DealProduct:
        """Finalize; classification is derived from the merged code."""
        owner = _Owner(self.deal_product_id, self.product_id, self.name)
        is_training = is_training_code(self.code, marker)

        hours = self.recommended_hours
        if is_training and hours is None and self.recommended_hours_raw is None:
            hours = resolve_recommended_hours_from_list([self.name, self.code])

        return DealProduct(
            deal_product_id=self.deal_product_id,
            product_id=self.product_id,
            name=self.name or "",
            code=self.code,
            quantity=self.quantity if self.quantity is not None else 0,
            price=self.price,
            recommended_hours=hours,
            recommended_hours_raw=self.recommended_hours_raw,
            notes=_dedupe_by_id(
                (normalize_note(entry, EntryOrigin.PRODUCT, owner) for entry in self.raw_notes),
                seen_notes,
            ),
            attachments=_dedupe_by_id(
                (
                    normalize_attachment(entry, EntryOrigin.PRODUCT, owner)
                    for entry in self.raw_attachments
                ),
                seen_attachments,
            ),
            is_training=is_training,
        )


class ProductReconciler:
    """Collects line items from every known location and merges duplicates.

    Entries are keyed by their line-item id. Entries without one get a
    negative placeholder, reused for entries with the same normalized
    code and name so identical copies still collapse.
    """

    def __init__(self, marker: str = TRAINING_CODE_MARKER) -> None:
        self._marker = marker
        self._products: dict[int, _PartialProduct] = {}
        self._placeholders: dict[tuple[str, str], int] = {}
        self._next_placeholder = -1
        self._seen_arrays: set[int] = set()

    def add_from_records(self, records: Sequence[Mapping[str, Any]]) -> None:
        for record in records:
            for path in keys.PRODUCT_COLLECTION_KEYS:
                self.add_array(get_path(record, path))

    def add_array(self, entries: Any) -> None:
        if not isinstance(entries, list) or id(entries) in self._seen_arrays:
            return
        self._seen_arrays.add(id(entries))
        for entry in entries:
            self.add_entry(entry)

    def add_entry(self, entry: Any) -> None:
        if isinstance(entry, str):
            entry = {"name": entry}
        mapping = as_mapping(entry)
        if mapping is None:
            return

        candidates = collect_candidate_records(mapping)
        name = as_text(find_first_value(candidates, keys.PRODUCT_NAME_KEYS))
        code = as_text(find_first_value(candidates, keys.PRODUCT_CODE_KEYS))
        hours, hours_raw = parse_recommended_hours(find_first_value(candidates, keys.PRODUCT_HOURS_KEYS))

        line_id = as_int(find_first_value(candidates, keys.PRODUCT_LINE_ID_KEYS))
        if line_id is None:
            line_id = self._placeholder_for(code, name)

        partial = _PartialProduct(
            deal_product_id=line_id,
            product_id=as_int(find_first_value(candidates, keys.PRODUCT_CATALOG_ID_KEYS)),
            name=name,
            code=code,
            quantity=as_float(find_first_value(candidates, keys.PRODUCT_QUANTITY_KEYS)),
            price=as_float(find_first_value(candidates, keys.PRODUCT_PRICE_KEYS)),
            recommended_hours=hours,
            recommended_hours_raw=hours_raw,
            raw_notes=_collect_entries([mapping], keys.PRODUCT_NOTE_KEYS),
            raw_attachments=_collect_entries([mapping], keys.PRODUCT_ATTACHMENT_KEYS),
        )

        existing = self._products.get(line_id)
        if existing is None:
            self._products[line_id] = partial
        else:
            existing.merge(partial)

    def _placeholder_for(self, code: str | None, name: str | None) -> int:
        fingerprint = (normalize_text(code or ""), normalize_text(name or ""))
        if fingerprint != ("", "") and fingerprint in self._placeholders:
            return self._placeholders[fingerprint]

        placeholder = self._next_placeholder
        self._next_placeholder -= 1
        if fingerprint != ("", ""):
            self._placeholders[fingerprint] = placeholder
        return placeholder

    def build(
        self, seen_notes: set[str], seen_attachments: set[str]
    ) -> tuple[list[DealProduct], list[DealProduct]]:
        """Return (training_products, extra_products) in first-seen order."""
        training: list[DealProduct] = []
        extras: list[DealProduct] = []
        for partial in self._products.values():
            product = partial.build(self._marker, seen_notes, seen_attachments)
            (training if product.is_training else extras).append(product)
        return training, extras


# ── Related Entities ────────────────────────────────────────────────────────


def resolve_related_entity(
    records: Sequence[Mapping[str, Any]],
    reference_keys: Sequence[str],
    name_keys: Sequence[str],
    address_keys: Sequence[str] = (),
) -> RelatedEntity | None:
    """Absorb a bare id, bare name or embedded object into a RelatedEntity."""
    raw = find_first_value(records, reference_keys)
    entity_id: int | None = None
    name: str | None = None
    address: str | None = None

    mapping = as_mapping(raw)
    if mapping is not None:
        entity_id = as_int(first_present(mapping.get(key) for key in keys.ENTITY_ID_KEYS))
        name = as_text(find_first_value([mapping], keys.ENTITY_NAME_KEYS))
        address = as_text(find_first_value([mapping], keys.ENTITY_ADDRESS_KEYS))
    elif raw is not None:
        entity_id = as_int(raw)
        if entity_id is None:
            name = as_text(raw)

    name = name or as_text(find_first_value(records, name_keys))
    if address_keys:
        address = address or as_text(find_first_value(records, address_keys))

    entity = RelatedEntity(id=entity_id, name=name, address=address)
    return None if entity.is_empty() else entity


# ── Custom Fields ───────────────────────────────────────────────────────────


def _custom_field_paths(logical: str, field_keys: Mapping[str, str]) -> list[str]:
    paths: list[str] = []
    configured = field_keys.get(logical)
    if configured:
        paths.append(configured)
    definition = keys.LOGICAL_FIELDS.get(logical)
    if definition is not None:
        paths.extend(definition.raw_keys)
    return paths


def _resolve_choice(
    records: Sequence[Mapping[str, Any]],
    logical: str,
    options: FieldOptionsMap,
    field_keys: Mapping[str, str],
) -> str | None:
    raw = find_first_value(records, _custom_field_paths(logical, field_keys))
    return _label_text(_unwrap_option_label(options.resolve(logical, _unwrap_option_id(raw))))


def _split_multi_value(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [part for part in (piece.strip() for piece in value.split(",")) if part]
    if value is None:
        return []
    return [value]


def merge_labels(labels: Iterable[str | None]) -> list[str]:
    """Dedupe case/diacritic-insensitively, keeping the first-seen spelling."""
    merged: list[str] = []
    seen: set[str] = set()
    for label in labels:
        text = as_text(label)
        if not text:
            continue
        key = normalize_text(text)
        if key in seen:
            continue
        seen.add(key)
        merged.append(text)
    return merged


# ── Top-level Assembly ──────────────────────────────────────────────────────


def canonicalize(
    raw_deal: Any,
    options: FieldOptionsMap | None = None,
    *,
    line_items: Sequence[Any] = (),
    notes: Sequence[Any] = (),
    files: Sequence[Any] = (),
    field_keys: Mapping[str, str] | None = None,
    marker: str | None = None,
) -> DealRecord:
    """Build the canonical DealRecord for one raw deal.

    Args:
        raw_deal: The deal payload as returned by the CRM.
        options: Field option labels; an empty map leaves raw values as-is.
        line_items: Extra line-item entries fetched separately.
        notes: Extra deal note entries fetched separately.
        files: Extra deal file entries fetched separately.
        field_keys: Logical custom field -> configured CRM key. Defaults to settings.
        marker: Training code marker. Defaults to settings.

    Returns:
        The canonical record.

    Raises:
        MalformedRecordError: If the payload has no positive numeric id.
    """
    root = as_mapping(raw_deal)
    if root is None:
        raise MalformedRecordError("Deal payload is not an object")

    records = collect_candidate_records(root)
    deal_id = as_int(find_first_value(records, keys.DEAL_ID_KEYS))
    if deal_id is None or deal_id <= 0:
        raise MalformedRecordError(f"Deal payload has no usable id: {root.get('id')!r}")

    settings = get_settings()
    options = options or FieldOptionsMap()
    if field_keys is None:
        field_keys = settings.custom_field_keys()
    if marker is None:
        marker = settings.TRAINING_CODE_MARKER

    # Products first so product-bound notes keep their back-references.
    reconciler = ProductReconciler(marker)
    reconciler.add_from_records(records)
    reconciler.add_array(list(line_items))
    seen_notes: set[str] = set()
    seen_attachments: set[str] = set()
    training, extras = reconciler.build(seen_notes, seen_attachments)

    deal_notes = _dedupe_by_id(
        (
            normalize_note(entry, EntryOrigin.DEAL)
            for entry in [*_collect_entries(records, keys.DEAL_NOTE_KEYS), *notes]
        ),
        seen_notes,
    )
    deal_attachments = _dedupe_by_id(
        (
            normalize_attachment(entry, EntryOrigin.DEAL)
            for entry in [*_collect_entries(records, keys.DEAL_ATTACHMENT_KEYS), *files]
        ),
        seen_attachments,
    )

    pipeline_id = as_int(_unwrap_option_id(find_first_value(records, keys.PIPELINE_ID_KEYS)))
    pipeline_name = as_text(find_first_value(records, keys.PIPELINE_NAME_KEYS))
    if pipeline_name is None and pipeline_id is not None:
        label = options.resolve("pipeline", pipeline_id)
        if label != pipeline_id:
            pipeline_name = as_text(label)

    formation_labels = [
        _unwrap_option_label(options.resolve("formations", _unwrap_option_id(item)))
        for item in _split_multi_value(
            find_first_value(records, _custom_field_paths("formations", field_keys))
        )
    ]

    address_paths = [*_custom_field_paths("address", field_keys), *keys.ADDRESS_KEYS]

    record = DealRecord(
        deal_id=deal_id,
        title=as_text(find_first_value(records, keys.TITLE_KEYS)) or f"Deal {deal_id}",
        client=resolve_related_entity(
            records,
            keys.ORGANIZATION_KEYS,
            keys.ORGANIZATION_NAME_KEYS,
            keys.ORGANIZATION_ADDRESS_KEYS,
        ),
        contact=resolve_related_entity(records, keys.PERSON_KEYS, keys.PERSON_NAME_KEYS),
        site=_resolve_choice(records, "site", options, field_keys),
        address=as_text(find_first_value(records, address_paths)),
        caes=_resolve_choice(records, "caes", options, field_keys),
        fundae=_resolve_choice(records, "fundae", options, field_keys),
        hotel_pernocta=_resolve_choice(records, "hotel_pernocta", options, field_keys),
        pipeline_id=pipeline_id,
        pipeline_name=pipeline_name,
        won_date=as_text(find_first_value(records, keys.WON_DATE_KEYS)),
        formations=merge_labels([*formation_labels, *(product.name for product in training)]),
        training_products=training,
        extra_products=extras,
        notes=deal_notes,
        attachments=deal_attachments,
    )

    logger.debug(
        "canonical.deal_built",
        deal_id=deal_id,
        training=len(training),
        extras=len(extras),
        notes=len(deal_notes),
        attachments=len(deal_attachments),
    )
    return record
