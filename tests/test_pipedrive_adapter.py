"""Unit tests for the Pipedrive source adapter.

Requests are served by httpx.MockTransport -- no network access.
"""

from __future__ import annotations

import httpx
import pytest

from src.dealsync.deals.crm.adapter import CRMSourceAdapter
from src.dealsync.deals.crm.pipedrive import PipedriveAdapter
from src.dealsync.deals.errors import UpstreamFailureError

BASE_URL = "https://example.pipedrive.com/v1"


def _adapter(handler) -> PipedriveAdapter:
    return PipedriveAdapter("secret-token", base_url=BASE_URL, transport=httpx.MockTransport(handler))


class TestAdapterInterface:
    def test_source_adapter_has_abstract_methods(self):
        assert CRMSourceAdapter.__abstractmethods__ == {
            "list_recently_updated_deals",
            "get_deal",
            "get_deal_line_items",
            "get_deal_notes",
            "get_deal_files",
            "list_field_definitions",
        }

    def test_source_adapter_cannot_be_instantiated(self):
        with pytest.raises(TypeError, match="abstract"):
            CRMSourceAdapter()  # type: ignore[abstract]


class TestRequests:
    async def test_bearer_credential_and_recency_sort(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [{"id": 1}, {"id": 2}]})

        deals = await _adapter(handler).list_recently_updated_deals(25)

        assert deals == [{"id": 1}, {"id": 2}]
        request = seen[0]
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert request.url.path == "/v1/deals"
        assert request.url.params["limit"] == "25"
        assert request.url.params["sort"] == "update_time DESC"

    async def test_get_deal_returns_data(self):
        adapter = _adapter(lambda request: httpx.Response(200, json={"success": True, "data": {"id": 7}}))
        assert await adapter.get_deal(7) == {"id": 7}

    async def test_get_deal_not_found_is_none(self):
        adapter = _adapter(lambda request: httpx.Response(404, json={"success": False}))
        assert await adapter.get_deal(99) is None

    async def test_get_deal_null_data_is_none(self):
        adapter = _adapter(lambda request: httpx.Response(200, json={"success": True, "data": None}))
        assert await adapter.get_deal(99) is None

    async def test_server_error_raises_with_status(self):
        adapter = _adapter(lambda request: httpx.Response(503, text="unavailable"))

        with pytest.raises(UpstreamFailureError) as exc_info:
            await adapter.get_deal(1)

        assert exc_info.value.status_code == 503
        assert exc_info.value.path == "/deals/1"

    async def test_transport_error_raises_without_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamFailureError) as exc_info:
            await _adapter(handler).list_recently_updated_deals(10)

        assert exc_info.value.status_code is None

    async def test_non_json_body_raises(self):
        adapter = _adapter(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(UpstreamFailureError):
            await adapter.get_deal(1)

    async def test_related_endpoints(self):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(f"{request.url.path}?{request.url.query.decode()}".rstrip("?"))
            return httpx.Response(200, json={"data": [{"id": 1}, "junk"]})

        adapter = _adapter(handler)
        assert await adapter.get_deal_line_items(5) == [{"id": 1}]
        assert await adapter.get_deal_notes(5) == [{"id": 1}]
        assert await adapter.get_deal_files(5) == [{"id": 1}]

        assert paths == ["/v1/deals/5/products", "/v1/notes?deal_id=5", "/v1/deals/5/files"]

    async def test_missing_list_data_is_empty(self):
        adapter = _adapter(lambda request: httpx.Response(200, json={"success": True, "data": None}))
        assert await adapter.get_deal_files(5) == []


class TestFieldDefinitionPagination:
    @staticmethod
    def _paged(pages: dict[int, dict], starts: list[int]):
        def handler(request: httpx.Request) -> httpx.Response:
            start = int(request.url.params["start"])
            starts.append(start)
            return httpx.Response(200, json=pages.get(start, {"data": []}))

        return handler

    async def test_follows_next_start_hint(self):
        starts: list[int] = []
        pages = {
            0: {"data": [{"key": "a"}, {"key": "b"}], "additional_data": {"pagination": {"next_start": 2, "more_items_in_collection": True}}},
            2: {"data": [{"key": "c"}], "additional_data": {"pagination": {"more_items_in_collection": False}}},
        }

        definitions = await _adapter(self._paged(pages, starts)).list_field_definitions()

        assert [d["key"] for d in definitions] == ["a", "b", "c"]
        assert starts == [0, 2]

    async def test_falls_back_to_limit_hint(self):
        starts: list[int] = []
        pages = {
            0: {"data": [{"key": "a"}], "additional_data": {"pagination": {"limit": 5}}},
            5: {"data": [{"key": "b"}], "additional_data": {"pagination": {"limit": 5}}},
        }

        definitions = await _adapter(self._paged(pages, starts)).list_field_definitions()

        assert [d["key"] for d in definitions] == ["a", "b"]
        assert starts == [0, 5, 10]

    async def test_falls_back_to_page_length(self):
        starts: list[int] = []
        pages = {
            0: {"data": [{"key": "a"}, {"key": "b"}]},
            2: {"data": [{"key": "c"}]},
        }

        definitions = await _adapter(self._paged(pages, starts)).list_field_definitions()

        assert [d["key"] for d in definitions] == ["a", "b", "c"]
        assert starts == [0, 2, 3]

    async def test_empty_first_page(self):
        starts: list[int] = []
        assert await _adapter(self._paged({}, starts)).list_field_definitions() == []
        assert starts == [0]

    async def test_stops_when_offset_does_not_advance(self):
        starts: list[int] = []
        pages = {0: {"data": [{"key": "a"}], "additional_data": {"pagination": {"next_start": 0}}}}

        definitions = await _adapter(self._paged(pages, starts)).list_field_definitions()

        assert [d["key"] for d in definitions] == ["a"]
        assert starts == [0]
