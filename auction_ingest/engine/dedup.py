"""Coarse coverage check deciding whether a fetch unit was already collected."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Collection

from .store import FreshStore, PermanentStore
from .units import FetchUnit


@dataclass
class CoverageResult:
    fresh_count: int
    permanent_count: int
    threshold: int = 1

    @property
    def total(self) -> int:
        return self.fresh_count + self.permanent_count

    @property
    def is_covered(self) -> bool:
        return self.total >= self.threshold


class CoverageChecker:
    """Count rows already stored for a unit across both tiers.

    Any match at or above ``threshold`` is taken to mean the slice was fetched
    before; page completeness is not verified.
    """

    def __init__(self, fresh: FreshStore, permanent: PermanentStore, threshold: int = 1) -> None:
        self.fresh = fresh
        self.permanent = permanent
        self.threshold = threshold

    def check(self, unit: FetchUnit, exclude_ids: Collection[str] = ()) -> CoverageResult:
        """``exclude_ids`` are fresh rows that must not count as prior coverage."""

        fresh_count = self.fresh.count_matching(
            unit.make, unit.model, unit.site, unit.window, exclude_ids
        )
        permanent_count = self.permanent.count_matching(
            unit.make, unit.model, unit.site, unit.window
        )
        return CoverageResult(fresh_count, permanent_count, self.threshold)


__all__ = ["CoverageChecker", "CoverageResult"]
