"""HTTP client for the paginated auction-data vendor API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx
import structlog

from ..config import VendorConfig
from .errors import RateLimitedError, TransientNetworkError, VendorError


@dataclass(slots=True)
class VendorQuery:
    """Filters for one vendor search; page and size are supplied per request."""

    make: str
    site: int
    model: str | None = None
    year_from: int | None = None
    year_to: int | None = None
    sale_date_from: date | None = None
    sale_date_to: date | None = None

    def params(self, page: int, size: int) -> dict[str, str]:
        params: dict[str, str] = {
            "make": self.make,
            "site": str(self.site),
            "page": str(page),
            "size": str(size),
        }
        if self.model:
            params["model"] = self.model
        if self.year_from:
            params["year_from"] = str(self.year_from)
        if self.year_to:
            params["year_to"] = str(self.year_to)
        if self.sale_date_from:
            params["sale_date_from"] = self.sale_date_from.isoformat()
        if self.sale_date_to:
            params["sale_date_to"] = self.sale_date_to.isoformat()
        return params


@dataclass(slots=True)
class VendorPage:
    """One decoded page of sale records."""

    page: int
    records: list[dict[str, Any]] = field(default_factory=list)
    count: int | None = None

    @property
    def empty(self) -> bool:
        return not self.records


class VendorClient:
    """Issue single-page requests and translate failures into the error taxonomy."""

    def __init__(
        self,
        config: VendorConfig,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or structlog.get_logger("auction_ingest.vendor")
        headers = {"Accept": "application/json"}
        if config.api_key:
            headers["api-key"] = config.api_key
        self._client = httpx.Client(
            follow_redirects=True,
            timeout=config.timeout,
            headers=headers,
        )

    def close(self) -> None:
        self._client.close()

    def fetch_page(self, query: VendorQuery, page: int, size: int | None = None) -> VendorPage:
        page_size = size or self.config.page_size
        params = query.params(page, page_size)
        try:
            response = self._client.get(self.config.base_url, params=params)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"Vendor timeout on page {page}: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Vendor transport error on page {page}: {exc}") from exc

        self._raise_for_status(response, page)
        try:
            payload = response.json()
        except ValueError as exc:
            raise VendorError(f"Vendor returned non-JSON body on page {page}") from exc
        records, count = self._extract_records(payload)
        self.logger.debug(
            "vendor_page_fetched",
            make=query.make,
            model=query.model,
            site=query.site,
            page=page,
            records=len(records),
        )
        return VendorPage(page=page, records=records, count=count)

    @staticmethod
    def _raise_for_status(response: httpx.Response, page: int) -> None:
        status_code = response.status_code
        if status_code == 429:
            raise RateLimitedError(f"Vendor rate limited page {page}")
        if status_code >= 500:
            raise TransientNetworkError(f"Vendor returned {status_code} on page {page}")
        if status_code >= 400:
            raise VendorError(f"Vendor returned {status_code} on page {page}", status_code)

    @staticmethod
    def _extract_records(payload: Any) -> tuple[list[dict[str, Any]], int | None]:
        if isinstance(payload, list):
            return [item for item in payload if isinstance(item, dict)], len(payload)
        if isinstance(payload, dict):
            raw_count = payload.get("count")
            count = int(raw_count) if isinstance(raw_count, (int, float)) else None
            data = payload.get("data")
            if data is None:
                return [], count
            if not isinstance(data, list):
                raise VendorError("Vendor payload 'data' is not a list")
            return [item for item in data if isinstance(item, dict)], count
        raise VendorError(f"Unexpected vendor payload type: {type(payload).__name__}")


__all__ = ["VendorClient", "VendorPage", "VendorQuery"]
