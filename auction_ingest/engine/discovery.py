"""Find which models of a make are worth fetching."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from .fetcher import Fetcher
from .store import FreshStore, PermanentStore
from .units import FetchUnit, SaleWindow


@dataclass(slots=True)
class DiscoveryResult:
    """Models to fetch, plus the fresh rows written by the probe page if one ran."""

    models: list[str] = field(default_factory=list)
    probe_ids: frozenset[str] = frozenset()


class ModelDiscovery:
    """List known models of a make, probing the vendor once when none are known.

    Models that never appeared in local data or on the probe page are missed
    until a later pass sees them.
    """

    def __init__(
        self,
        permanent: PermanentStore,
        fresh: FreshStore,
        fetcher: Fetcher,
        max_models: int = 100,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.permanent = permanent
        self.fresh = fresh
        self.fetcher = fetcher
        self.max_models = max_models
        self.logger = logger or structlog.get_logger("auction_ingest.discovery")

    def discover(
        self,
        make: str,
        site: int,
        window: SaleWindow,
        *,
        year_from: int | None = None,
        year_to: int | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> DiscoveryResult:
        log = logger or self.logger
        models = self.permanent.distinct_models(make, window, self.max_models)
        if models:
            log.info("models_discovered", make=make, source="permanent", count=len(models))
            return DiscoveryResult(models)

        probe = FetchUnit(
            make=make, site=site, window=window, year_from=year_from, year_to=year_to
        )
        result = self.fetcher.collect(probe, max_pages=1, logger=log)
        log.info(
            "discovery_probe_finished",
            make=make,
            site=site,
            outcome=result.outcome.value,
            inserted=result.inserted,
        )

        merged: list[str] = []
        seen: set[str] = set()
        for store in (self.permanent, self.fresh):
            for model in store.distinct_models(make, window, self.max_models):
                key = model.lower()
                if key not in seen:
                    seen.add(key)
                    merged.append(model)
        merged = merged[: self.max_models]
        log.info("models_discovered", make=make, source="probe", count=len(merged))
        return DiscoveryResult(merged, frozenset(result.inserted_ids))


__all__ = ["DiscoveryResult", "ModelDiscovery"]
