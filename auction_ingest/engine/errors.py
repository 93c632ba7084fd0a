"""Exception taxonomy for the ingestion engine."""

from __future__ import annotations


class IngestError(RuntimeError):
    """Base class for ingestion failures."""


class VendorError(IngestError):
    """Vendor answered with something we must not retry (4xx, malformed body)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(IngestError):
    """Timeout, transport failure or 5xx; the same page may be requested again."""


class RateLimitedError(IngestError):
    """HTTP 429 from the vendor."""


class PersistenceError(IngestError):
    """A record could not be written to a store."""


__all__ = [
    "IngestError",
    "PersistenceError",
    "RateLimitedError",
    "TransientNetworkError",
    "VendorError",
]
