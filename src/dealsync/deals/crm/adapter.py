"""CRM source adapter abstract base class -- the read-only upstream interface.

Every CRM backend the sync core reads from implements this ABC. Adapters
are pass-through I/O boundaries: they return raw decoded JSON and never
normalize it. Canonicalization happens downstream.

Contract:
- Not-found is a distinguished None result, never an exception.
- Any other upstream failure raises UpstreamFailureError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class CRMSourceAdapter(ABC):
    """Abstract interface for reading deals from a CRM.

    Methods:
        list_recently_updated_deals: Most recently updated deals, newest first.
        get_deal: One raw deal, or None when the CRM does not know it.
        get_deal_line_items: Raw line items attached to a deal.
        get_deal_notes: Raw notes attached to a deal.
        get_deal_files: Raw files attached to a deal.
        list_field_definitions: All deal custom field definitions, every page.
    """

    @abstractmethod
    async def list_recently_updated_deals(self, limit: int) -> list[dict[str, Any]]:
        """Return up to limit raw deals ordered by update time, newest first."""
        ...

    @abstractmethod
    async def get_deal(self, deal_id: int) -> dict[str, Any] | None:
        """Fetch one raw deal; None means not found."""
        ...

    @abstractmethod
    async def get_deal_line_items(self, deal_id: int) -> list[dict[str, Any]]:
        """Fetch the raw line items of a deal."""
        ...

    @abstractmethod
    async def get_deal_notes(self, deal_id: int) -> list[dict[str, Any]]:
        """Fetch the raw notes of a deal."""
        ...

    @abstractmethod
    async def get_deal_files(self, deal_id: int) -> list[dict[str, Any]]:
        """Fetch the raw files of a deal."""
        ...

    @abstractmethod
    async def list_field_definitions(self) -> list[dict[str, Any]]:
        """Fetch every deal field definition, following pagination."""
        ...
