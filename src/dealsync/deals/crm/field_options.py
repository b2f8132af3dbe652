"""Field metadata resolver -- custom single-choice option ids to labels.

Builds a FieldOptionsMap from the CRM's deal field definitions and keeps
it in a time-boxed cache: process memory first, then the record store
(shared key "pipedrive_field_options"), then the CRM. Fetch failures fall
back to the last known map, then to an empty one; load() never raises.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from src.dealsync.core.json_tree import as_list, as_mapping, as_text
from src.dealsync.core.text import normalize_text, to_camel_case, to_snake_case
from src.dealsync.deals.crm.adapter import CRMSourceAdapter
from src.dealsync.deals.crm.field_mapping import LOGICAL_FIELDS
from src.dealsync.deals.repository import RecordStore
from src.dealsync.deals.schemas import FieldOptionsMap

logger = structlog.get_logger(__name__)

FIELD_OPTIONS_KEY = "pipedrive_field_options"
DEFAULT_TTL = timedelta(hours=6)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def alias_variants(value: str | None) -> set[str]:
    """The value plus its camelCase, snake_case and normalized forms."""
    text = (value or "").strip()
    if not text:
        return set()
    variants = {text, to_camel_case(text), to_snake_case(text)}
    variants |= {normalize_text(variant) for variant in variants}
    return {variant for variant in variants if variant}


def _match_known_name(name: str | None) -> str | None:
    if not name:
        return None
    normalized = normalize_text(name)
    for logical, definition in LOGICAL_FIELDS.items():
        if normalized in {normalize_text(known) for known in definition.known_names}:
            return logical
    return None


def _option_labels(definition: Mapping[str, Any]) -> dict[str, str]:
    labels: dict[str, str] = {}
    for option in as_list(definition.get("options")):
        data = as_mapping(option) or {}
        option_id = as_text(data.get("id"))
        label = as_text(data.get("label"))
        if not option_id or not label:
            continue
        labels.setdefault(option_id, label)
        labels.setdefault(normalize_text(option_id), label)
    return labels


def build_field_options(
    definitions: Iterable[Mapping[str, Any]],
    field_keys: Mapping[str, str],
    fetched_at: datetime | None = None,
) -> FieldOptionsMap:
    """Build the alias-keyed option lookup from raw field definitions.

    A definition is recognized when its key is a configured key for one
    of the logical fields, or its name matches one of their known names.

    Args:
        definitions: Raw deal field definitions.
        field_keys: Logical field -> configured CRM key.
        fetched_at: Timestamp recorded on the map.

    Returns:
        FieldOptionsMap keyed by every alias of every recognized field.
    """
    key_to_logical = {key: logical for logical, key in field_keys.items() if logical in LOGICAL_FIELDS}
    options: dict[str, dict[str, str]] = {}

    for definition in definitions:
        raw_key = as_text(definition.get("key"))
        name = as_text(definition.get("name"))
        logical = key_to_logical.get(raw_key or "") or _match_known_name(name)
        if logical is None:
            continue

        labels = _option_labels(definition)
        if not labels:
            continue

        for alias in alias_variants(logical) | alias_variants(raw_key) | alias_variants(name):
            bucket = options.setdefault(alias, {})
            for option_key, label in labels.items():
                bucket.setdefault(option_key, label)

    return FieldOptionsMap(options=options, fetched_at=fetched_at)


class FieldMetadataResolver:
    """Cached access to the FieldOptionsMap.

    Args:
        source: CRM adapter used to list field definitions.
        store: Record store used as the durable cache.
        field_keys: Logical field -> configured CRM key.
        ttl: Maximum age of a cached map.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        source: CRMSourceAdapter,
        store: RecordStore,
        field_keys: Mapping[str, str] | None = None,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._source = source
        self._store = store
        self._field_keys = dict(field_keys or {})
        self._ttl = ttl
        self._clock = clock
        self._cached: FieldOptionsMap | None = None
        self._force_next = False

    async def _read_persisted(self) -> FieldOptionsMap | None:
        value = as_mapping(await self._store.read(FIELD_OPTIONS_KEY))
        if value is None:
            return None
        try:
            return FieldOptionsMap(
                options=value.get("fields") or {},
                fetched_at=value.get("fetchedAt"),
            )
        except ValidationError as exc:
            logger.warning("field_options.persisted_invalid", error=str(exc))
            return None

    async def _persist(self, options: FieldOptionsMap) -> None:
        fetched_at = options.fetched_at.isoformat() if options.fetched_at else None
        await self._store.write(FIELD_OPTIONS_KEY, {"fetchedAt": fetched_at, "fields": options.options})

    async def load(self, force: bool = False) -> FieldOptionsMap:
        """Return the current map, refetching when stale or forced."""
        now = self._clock()
        force = force or self._force_next
        persisted: FieldOptionsMap | None = None

        if not force:
            if self._cached is not None and self._cached.is_fresh(now, self._ttl):
                return self._cached
            persisted = await self._read_persisted()
            if persisted is not None and persisted.is_fresh(now, self._ttl):
                self._cached = persisted
                return persisted

        try:
            definitions = await self._source.list_field_definitions()
        except Exception as exc:
            fallback = self._cached or persisted or await self._read_persisted()
            logger.warning(
                "field_options.fetch_failed",
                error=str(exc),
                fallback="last_known" if fallback is not None else "empty",
            )
            return fallback or FieldOptionsMap()

        options = build_field_options(definitions, self._field_keys, fetched_at=now)
        self._cached = options
        self._force_next = False
        await self._persist(options)

        logger.info(
            "field_options.refreshed",
            definitions=len(definitions),
            aliases=len(options.options),
        )
        return options

    async def resolve(self, alias: str, raw: Any) -> Any:
        """Map a raw option value to its label via the current map."""
        return (await self.load()).resolve(alias, raw)

    def invalidate(self) -> None:
        """Make the next load() refetch from the CRM."""
        self._force_next = True

    def reset(self) -> None:
        """Drop all in-memory state (tests)."""
        self._cached = None
        self._force_next = False
