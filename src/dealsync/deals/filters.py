"""Text filters over canonical deals.

Each filter key maps to a searchable text rendering of one part of a
DealRecord. A deal matches when, for every non-empty filter, the
normalized filter text is a substring of the normalized rendering.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping

from src.dealsync.core.text import normalize_text, to_snake_case
from src.dealsync.deals.schemas import DealProduct, DealRecord

FALLBACK_CLIENT_NAME = "Sin organización asociada"
FALLBACK_SITE = "Sin sede definida"
FALLBACK_FORMATIONS = "Sin formaciones form-"


def _number(value: float | None) -> str:
    if value is None:
        return ""
    return str(int(value)) if float(value).is_integer() else str(value)


def _training_text(product: DealProduct) -> str:
    return " ".join(
        [product.name, product.code or "", _number(product.recommended_hours), product.recommended_hours_raw or ""]
    )


def _extra_text(product: DealProduct) -> str:
    return " ".join(
        [product.name, product.code or "", _number(product.quantity), *(note.content for note in product.notes)]
    )


def _won_date_text(deal: DealRecord) -> str:
    if not deal.won_date:
        return "Sin fecha"
    # "2024-05-15 10:00:00" also matches a plain "2024-05-15" search.
    return f"{deal.won_date} {deal.won_date[:10]}"


FILTER_FIELDS: dict[str, Callable[[DealRecord], str]] = {
    "id": lambda deal: str(deal.deal_id),
    "won_date": _won_date_text,
    "title": lambda deal: deal.title or "",
    "client_name": lambda deal: deal.client_name or FALLBACK_CLIENT_NAME,
    "pipeline_name": lambda deal: deal.pipeline_name or "",
    "site": lambda deal: deal.site or FALLBACK_SITE,
    "address": lambda deal: deal.address or "",
    "caes": lambda deal: deal.caes or "",
    "fundae": lambda deal: deal.fundae or "",
    "hotel_pernocta": lambda deal: deal.hotel_pernocta or "",
    "formations": lambda deal: " ".join(deal.formations) or FALLBACK_FORMATIONS,
    "training_products": lambda deal: " ".join(_training_text(p) for p in deal.training_products),
    "extra_products": lambda deal: " ".join(_extra_text(p) for p in deal.extra_products),
    "notes": lambda deal: " ".join(
        [note.content for note in deal.notes]
        + [note.content for product in deal.products for note in product.notes]
    ),
    "attachments": lambda deal: " ".join(
        [attachment.name for attachment in deal.attachments]
        + [attachment.name for product in deal.products for attachment in product.attachments]
    ),
}

# Legacy UI filter names.
_ALIASES = {"sede": "site"}


def canonical_filter_key(key: str) -> str | None:
    """Map a filter name (snake_case, camelCase or legacy) to a FILTER_FIELDS key."""
    snake = to_snake_case(key)
    snake = _ALIASES.get(snake, snake)
    return snake if snake in FILTER_FIELDS else None


def matches_filters(deal: DealRecord, filters: Mapping[str, str]) -> bool:
    """Return True when the deal satisfies every non-blank filter.

    Unknown filter keys are ignored.
    """
    for key, term in filters.items():
        needle = normalize_text(term or "")
        if not needle:
            continue
        field = canonical_filter_key(key)
        if field is None:
            continue
        if needle not in normalize_text(FILTER_FIELDS[field](deal)):
            return False
    return True


def filter_deals(deals: Iterable[DealRecord], filters: Mapping[str, str]) -> list[DealRecord]:
    return [deal for deal in deals if matches_filters(deal, filters)]
