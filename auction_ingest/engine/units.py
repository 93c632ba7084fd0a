"""Value objects describing one slice of ingestion work."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone


@dataclass(slots=True)
class SaleWindow:
    """Inclusive sale-date range, both ends as calendar dates."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("SaleWindow end must not be earlier than start")

    @classmethod
    def days_back(cls, days: int, reference: datetime | None = None) -> "SaleWindow":
        reference = reference or datetime.now(timezone.utc)
        end = reference.date()
        return cls(start=end - timedelta(days=days), end=end)

    def as_tuple(self) -> tuple[str, str]:
        return self.start.isoformat(), self.end.isoformat()


@dataclass(slots=True)
class FetchUnit:
    """One (make, model, site, window) slice; ``model=None`` means every model."""

    make: str
    site: int
    window: SaleWindow
    model: str | None = None
    year_from: int | None = None
    year_to: int | None = None

    @property
    def label(self) -> str:
        return f"{self.make} {self.model or '*'} site={self.site}"


__all__ = ["FetchUnit", "SaleWindow"]
