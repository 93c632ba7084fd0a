"""Paginated collection of one fetch unit into the fresh store."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Collection

import structlog

from ..config import FetchConfig
from .dedup import CoverageChecker
from .errors import PersistenceError, RateLimitedError, TransientNetworkError, VendorError
from .store import FreshStore
from .units import FetchUnit
from .vendor import VendorClient, VendorQuery


class UnitOutcome(str, Enum):
    COLLECTED = "collected"
    EXHAUSTED = "exhausted"
    SKIPPED = "skipped"
    ABANDONED = "abandoned"


@dataclass(slots=True)
class UnitResult:
    """Summary of one unit; ``records`` counts what the vendor returned."""

    unit: FetchUnit
    outcome: UnitOutcome = UnitOutcome.COLLECTED
    pages: int = 0
    requests: int = 0
    records: int = 0
    inserted: int = 0
    duplicates: int = 0
    failed_writes: int = 0
    rate_limited: int = 0
    reason: str | None = None
    inserted_ids: list[str] = field(default_factory=list)


class Fetcher:
    """Check coverage, then walk vendor pages with pacing and backoff."""

    def __init__(
        self,
        client: VendorClient,
        fresh_store: FreshStore,
        coverage: CoverageChecker,
        config: FetchConfig,
        logger: structlog.BoundLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.fresh_store = fresh_store
        self.coverage = coverage
        self.config = config
        self.logger = logger or structlog.get_logger("auction_ingest.fetcher")
        self._sleep = sleep

    def collect(
        self,
        unit: FetchUnit,
        *,
        max_pages: int | None = None,
        logger: structlog.BoundLogger | None = None,
        exclude_ids: Collection[str] = (),
    ) -> UnitResult:
        """Collect one unit; errors stay inside the returned result.

        Fresh rows listed in ``exclude_ids`` are ignored by the coverage check.
        """

        log = (logger or self.logger).bind(unit=unit.label)
        try:
            coverage = self.coverage.check(unit, exclude_ids)
            if coverage.is_covered:
                log.info(
                    "unit_skipped",
                    fresh_rows=coverage.fresh_count,
                    permanent_rows=coverage.permanent_count,
                )
                return UnitResult(unit=unit, outcome=UnitOutcome.SKIPPED, reason="already_covered")
            return self._paginate(unit, max_pages or self.config.max_pages_per_unit, log)
        except Exception as exc:  # noqa: BLE001
            log.error("unit_failed", error=str(exc))
            return UnitResult(unit=unit, outcome=UnitOutcome.ABANDONED, reason=str(exc))

    def _paginate(
        self, unit: FetchUnit, max_pages: int, log: structlog.BoundLogger
    ) -> UnitResult:
        result = UnitResult(unit=unit)
        query = VendorQuery(
            make=unit.make,
            site=unit.site,
            model=unit.model,
            year_from=unit.year_from,
            year_to=unit.year_to,
            sale_date_from=unit.window.start,
            sale_date_to=unit.window.end,
        )
        page = 1
        rate_limit_streak = 0
        outcome: UnitOutcome | None = None
        last_failed = False
        # 429 不计入页数预算；超时/5xx 计入
        while result.requests < max_pages:
            try:
                vendor_page = self.client.fetch_page(query, page)
            except RateLimitedError:
                result.rate_limited += 1
                rate_limit_streak += 1
                if rate_limit_streak > self.config.max_rate_limit_retries:
                    log.warning("rate_limit_ceiling_reached", page=page, retries=rate_limit_streak - 1)
                    outcome, result.reason = UnitOutcome.ABANDONED, "rate_limited"
                    break
                log.info(
                    "rate_limited",
                    page=page,
                    backoff=self.config.rate_limit_backoff_seconds,
                )
                self._sleep(self.config.rate_limit_backoff_seconds)
                continue
            except TransientNetworkError as exc:
                result.requests += 1
                rate_limit_streak = 0
                last_failed = True
                result.reason = str(exc)
                log.warning("transient_fetch_error", page=page, attempt=result.requests, error=str(exc))
                if result.requests < max_pages:
                    self._pause()
                continue
            except VendorError as exc:
                result.requests += 1
                log.warning("vendor_error", page=page, status=exc.status_code, error=str(exc))
                outcome, result.reason = UnitOutcome.ABANDONED, str(exc)
                break

            result.requests += 1
            rate_limit_streak = 0
            last_failed = False
            if vendor_page.empty:
                outcome = UnitOutcome.COLLECTED
                break

            result.pages += 1
            result.records += len(vendor_page.records)
            try:
                written = self.fresh_store.insert_records(
                    vendor_page.records, unit.site, fallback_make=unit.make
                )
            except PersistenceError as exc:
                result.failed_writes += len(vendor_page.records)
                log.error("page_write_failed", page=page, error=str(exc))
            else:
                result.inserted += written.inserted
                result.inserted_ids.extend(written.inserted_ids)
                result.duplicates += written.duplicates
                result.failed_writes += written.failed
            page += 1
            if result.requests < max_pages:
                self._pause()

        if outcome is None:
            if last_failed:
                outcome = UnitOutcome.ABANDONED
            else:
                outcome, result.reason = UnitOutcome.EXHAUSTED, "page_cap"
        result.outcome = outcome
        log.info(
            "unit_finished",
            outcome=outcome.value,
            pages=result.pages,
            records=result.records,
            inserted=result.inserted,
            duplicates=result.duplicates,
            failed_writes=result.failed_writes,
            rate_limited=result.rate_limited,
        )
        return result

    def _pause(self) -> None:
        low, high = self.config.inter_page_delay
        if high <= 0:
            return
        self._sleep(random.uniform(low, high))


__all__ = ["Fetcher", "UnitOutcome", "UnitResult"]
