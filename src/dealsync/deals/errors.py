"""Error taxonomy for the deal sync core.

Upstream not-found is not an exception: the source adapter returns None
and callers treat it as a deletion signal.
"""

from __future__ import annotations


class DealSyncError(Exception):
    """Base class for all deal sync errors."""


class UpstreamFailureError(DealSyncError):
    """Raised when the CRM answers with a non-success status or the transport fails.

    Attributes:
        status_code: HTTP status from the CRM, or None for transport errors.
        path: The API path that failed.
    """

    def __init__(self, message: str, status_code: int | None = None, path: str | None = None) -> None:
        self.status_code = status_code
        self.path = path
        super().__init__(message)


class MalformedRecordError(DealSyncError):
    """Raised when a raw deal lacks a usable numeric identifier."""


class StoreUnavailableError(DealSyncError):
    """Raised by durable store operations when the backend cannot be reached."""


class InvalidRequestError(DealSyncError):
    """Raised when a caller-supplied identifier or payload fails validation."""
