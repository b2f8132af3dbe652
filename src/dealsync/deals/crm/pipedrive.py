"""Pipedrive source adapter over the v1 REST API.

Thin async wrapper around httpx: a fresh AsyncClient per call, a bearer
credential on every request, and no retries. Responses are returned as
decoded JSON without any normalization.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.dealsync.core.json_tree import as_int, as_list, as_mapping, get_path
from src.dealsync.deals.crm.adapter import CRMSourceAdapter
from src.dealsync.deals.errors import UpstreamFailureError

logger = structlog.get_logger(__name__)


class PipedriveAdapter(CRMSourceAdapter):
    """CRMSourceAdapter backed by the Pipedrive REST API.

    Args:
        api_token: Pipedrive API credential, sent as a bearer token.
        base_url: API root, e.g. "https://api.pipedrive.com/v1".
        timeout: Transport deadline in seconds for every call.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    FIELDS_PAGE_SIZE = 500

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://api.pipedrive.com/v1",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client for one call."""
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a path; returns decoded JSON, or None on 404.

        Raises:
            UpstreamFailureError: On transport errors, non-404 failures
                and undecodable bodies.
        """
        url = f"{self._base_url}{path}"
        try:
            async with self._client() as client:
                response = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            logger.warning("pipedrive.transport_error", path=path, error=str(exc))
            raise UpstreamFailureError(f"Pipedrive request failed: {exc}", path=path) from exc

        if response.status_code == 404:
            logger.debug("pipedrive.not_found", path=path)
            return None

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("pipedrive.http_error", path=path, status_code=response.status_code)
            raise UpstreamFailureError(
                f"Pipedrive request failed: {response.status_code} {path}",
                status_code=response.status_code,
                path=path,
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamFailureError(
                f"Pipedrive returned a non-JSON body for {path}",
                status_code=response.status_code,
                path=path,
            ) from exc

    async def _get_list(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        payload = await self._get(path, params)
        return [item for item in as_list(get_path(payload, "data")) if isinstance(item, dict)]

    # ── Deals ───────────────────────────────────────────────────────────────

    async def list_recently_updated_deals(self, limit: int) -> list[dict[str, Any]]:
        deals = await self._get_list("/deals", {"limit": limit, "sort": "update_time DESC"})
        logger.info("pipedrive.deals_listed", count=len(deals), limit=limit)
        return deals

    async def get_deal(self, deal_id: int) -> dict[str, Any] | None:
        payload = await self._get(f"/deals/{deal_id}")
        return as_mapping(get_path(payload, "data"))

    async def get_deal_line_items(self, deal_id: int) -> list[dict[str, Any]]:
        return await self._get_list(f"/deals/{deal_id}/products")

    async def get_deal_notes(self, deal_id: int) -> list[dict[str, Any]]:
        return await self._get_list("/notes", {"deal_id": deal_id})

    async def get_deal_files(self, deal_id: int) -> list[dict[str, Any]]:
        return await self._get_list(f"/deals/{deal_id}/files")

    # ── Field Metadata ──────────────────────────────────────────────────────

    async def list_field_definitions(self) -> list[dict[str, Any]]:
        """Fetch all deal field definitions.

        The next offset is taken from, in order: the explicit next_start
        hint, the current offset plus the page-size hint, the current
        offset plus the page length. An empty page ends the walk, as does
        more_items_in_collection=false or an offset that fails to advance.
        """
        definitions: list[dict[str, Any]] = []
        start = 0

        while True:
            payload = await self._get("/dealFields", {"start": start, "limit": self.FIELDS_PAGE_SIZE})
            page = [item for item in as_list(get_path(payload, "data")) if isinstance(item, dict)]
            if not page:
                break
            definitions.extend(page)

            pagination = as_mapping(get_path(payload, "additional_data.pagination")) or {}
            next_start = as_int(pagination.get("next_start"))
            if next_start is None:
                page_limit = as_int(pagination.get("limit"))
                next_start = start + page_limit if page_limit else start + len(page)

            if pagination.get("more_items_in_collection") is False or next_start <= start:
                break
            start = next_start

        logger.info("pipedrive.field_definitions_listed", count=len(definitions))
        return definitions
