"""Hand-curated key aliases for reading Pipedrive deal payloads.

Defines the fixed search space used by canonicalization:
- CONTAINER_KEYS: keys whose objects are flattened into the candidate list
- PRODUCT_COLLECTION_KEYS: every known location of line-item arrays
- *_KEYS tuples: ordered key paths per logical field; earlier paths win
- LOGICAL_FIELDS: custom single-choice fields resolved through field metadata

The lists are ordered by authority. Adding a newly observed shape means
appending to the right tuple, never reordering existing entries.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ── Tree Flattening ────────────────────────────────────────────────────────

CONTAINER_KEYS: tuple[str, ...] = (
    "custom_fields",
    "customFields",
    "additional_data",
    "additionalData",
    "related_data",
    "relatedData",
    "related_objects",
    "deal",
    "data",
    "values",
    "fields",
)


# ── Deal-level Keys ────────────────────────────────────────────────────────

DEAL_ID_KEYS = ("id", "deal_id", "dealId")
TITLE_KEYS = ("title", "name", "deal_title", "dealTitle")
WON_DATE_KEYS = ("won_time", "wonTime", "won_date", "wonDate", "close_time", "closeTime")
PIPELINE_ID_KEYS = ("pipeline_id", "pipelineId", "pipeline.id", "pipeline.value", "pipeline")
PIPELINE_NAME_KEYS = ("pipeline_name", "pipelineName", "pipeline.name")

ORGANIZATION_KEYS = ("org_id", "orgId", "organization", "org", "organization_id", "organizationId")
ORGANIZATION_NAME_KEYS = ("org_name", "orgName", "organization_name", "organizationName")
ORGANIZATION_ADDRESS_KEYS = ("org_address", "orgAddress", "organization_address")
PERSON_KEYS = ("person_id", "personId", "person", "contact", "contact_id", "contactId")
PERSON_NAME_KEYS = ("person_name", "personName", "contact_name", "contactName")

ENTITY_ID_KEYS = ("value", "id")
ENTITY_NAME_KEYS = ("name", "label", "title")
ENTITY_ADDRESS_KEYS = (
    "address",
    "address_formatted_address",
    "formatted_address",
    "address.formatted_address",
    "address.value",
)


# ── Products ───────────────────────────────────────────────────────────────

PRODUCT_COLLECTION_KEYS: tuple[str, ...] = (
    "products",
    "deal_products",
    "dealProducts",
    "product_items",
    "productItems",
    "line_items",
    "lineItems",
    "items",
    "product_attachments",
    "productAttachments",
    "training_products",
    "trainingProducts",
    "extra_products",
    "extraProducts",
    "additional_data.products",
    "additional_data.deal_products",
    "additional_data.line_items",
    "related_data.products",
    "related_objects.products",
    "deal.products",
)

PRODUCT_LINE_ID_KEYS = (
    "id",
    "deal_product_id",
    "dealProductId",
    "product_attachment_id",
    "productAttachmentId",
    "line_item_id",
    "lineItemId",
    "item_id",
    "itemId",
)
PRODUCT_CATALOG_ID_KEYS = ("product_id", "productId", "product.id", "product.product_id")
PRODUCT_NAME_KEYS = ("name", "product.name", "product_name", "productName", "title", "item.name")
PRODUCT_CODE_KEYS = ("code", "product.code", "product_code", "productCode", "sku", "item.code")
PRODUCT_QUANTITY_KEYS = ("quantity", "qty", "product.quantity", "units")
PRODUCT_PRICE_KEYS = (
    "item_price",
    "itemPrice",
    "unit_price",
    "unitPrice",
    "price",
    "product.price",
    "product.prices.0.price",
)
PRODUCT_HOURS_KEYS = (
    "recommended_hours",
    "recommendedHours",
    "recommended_hours_raw",
    "hours",
    "duration",
    "product.recommended_hours",
    "product.recommendedHours",
    "product.hours",
    "product.duration",
)
PRODUCT_NOTE_KEYS = ("notes", "product_notes", "productNotes", "comments")
PRODUCT_ATTACHMENT_KEYS = ("attachments", "files", "documents", "product_files", "productFiles")


# ── Notes & Attachments ────────────────────────────────────────────────────

DEAL_NOTE_KEYS = ("notes", "deal_notes", "dealNotes", "additional_data.notes", "related_data.notes")
DEAL_ATTACHMENT_KEYS = (
    "attachments",
    "files",
    "documents",
    "deal_files",
    "dealFiles",
    "additional_data.files",
    "related_data.files",
)

NOTE_ID_KEYS = ("id", "note_id", "noteId")
NOTE_CONTENT_KEYS = ("content", "body", "text", "note", "comment", "message")
NOTE_CREATED_KEYS = ("add_time", "addTime", "created_at", "createdAt", "created")
NOTE_UPDATED_KEYS = ("update_time", "updateTime", "updated_at", "updatedAt")
AUTHOR_KEYS = (
    "user.name",
    "author",
    "author_name",
    "authorName",
    "owner_name",
    "ownerName",
    "user_name",
    "userName",
    "creator.name",
)

ATTACHMENT_ID_KEYS = ("id", "file_id", "fileId", "uuid")
ATTACHMENT_NAME_KEYS = ("name", "file_name", "fileName", "filename", "title")
ATTACHMENT_URL_KEYS = ("url", "file_url", "fileUrl", "link", "href", "remote_location", "remoteLocation")
ATTACHMENT_DOWNLOAD_KEYS = ("download_url", "downloadUrl", "file_url", "fileUrl", "signed_url")
ATTACHMENT_TYPE_KEYS = ("file_type", "fileType", "mime_type", "mimeType", "content_type", "type")


# ── Custom Single-choice Fields ────────────────────────────────────────────


@dataclass(frozen=True)
class LogicalField:
    """A custom field recognized by name aliases and a configured raw key.

    raw_keys are the keys the stored value may appear under in a deal;
    the configured Pipedrive key is prepended at runtime.
    """

    name: str
    known_names: tuple[str, ...]
    raw_keys: tuple[str, ...] = field(default_factory=tuple)


LOGICAL_FIELDS: dict[str, LogicalField] = {
    "pipeline": LogicalField(
        name="pipeline",
        known_names=("pipeline", "pipeline_id", "embudo", "tipo de formacion"),
        raw_keys=PIPELINE_ID_KEYS,
    ),
    "site": LogicalField(
        name="site",
        known_names=("sede", "site", "sede de la formacion"),
        raw_keys=("sede", "site", "sede_label", "sedeLabel"),
    ),
    "caes": LogicalField(
        name="caes",
        known_names=("caes",),
        raw_keys=("caes", "caes_label", "caesLabel"),
    ),
    "fundae": LogicalField(
        name="fundae",
        known_names=("fundae",),
        raw_keys=("fundae", "fundae_label", "fundaeLabel"),
    ),
    "hotel_pernocta": LogicalField(
        name="hotel_pernocta",
        known_names=("hotel y pernocta", "hotel_pernocta", "hotel pernocta", "hotel_night", "hotel"),
        raw_keys=("hotel_pernocta", "hotelPernocta", "hotel_night", "hotelNight"),
    ),
    "formations": LogicalField(
        name="formations",
        known_names=("formaciones", "formations", "formacion"),
        raw_keys=("formations", "formaciones", "trainings", "training"),
    ),
}

ADDRESS_KEYS = ("deal_direction", "dealDirection", "direction", "address", "training_address")
