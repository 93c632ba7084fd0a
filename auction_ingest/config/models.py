"""Pydantic models used across the ingestion configuration flow."""

from __future__ import annotations

import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

MIN_MODEL_YEAR = 1990
MAX_DAYS_BACK = 365
SITE_NAMES = {1: "copart", 2: "iaai"}

DEFAULT_PRIORITY_MAKES = (
    "Toyota",
    "Honda",
    "Ford",
    "Chevrolet",
    "Nissan",
    "Hyundai",
    "Kia",
    "Jeep",
    "Dodge",
    "BMW",
)


def _current_year() -> int:
    return datetime.now().year


class ScheduleType(str, Enum):
    """Trigger modes accepted for periodic maintenance tasks."""

    CRON = "cron"
    INTERVAL = "interval"
    ONCE = "once"


class RefreshMode(str, Enum):
    """What the collection loop does once every pending job has run."""

    CONTINUOUS = "continuous"
    ONE_SHOT = "one_shot"


class ScheduleConfig(BaseModel):
    """Configuration describing when a periodic task should run."""

    type: ScheduleType = Field(default=ScheduleType.INTERVAL)
    value: Any = Field(
        default_factory=lambda: {"hours": 24},
        description="Cron expression, interval seconds/kwargs or ISO datetime, depending on type.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        if (
            self.type is ScheduleType.ONCE
            and self.value is not None
            and not isinstance(self.value, str)
        ):
            raise ValueError("Once schedule expects ISO datetime string or null")
        return self


class EnqueueOptions(BaseModel):
    """Options accepted by ``enqueue``; validated before anything touches the queue."""

    year_from: int = 2012
    year_to: int = Field(default_factory=_current_year)
    days_back: int = 150
    site: int = 1
    specific_model: str | None = None
    priority: int = 2

    @field_validator("specific_model", mode="before")
    @classmethod
    def _blank_model(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        if not text or text.lower() in {"all", "undefined"}:
            return None
        return text

    @model_validator(mode="after")
    def _validate_ranges(self) -> "EnqueueOptions":
        current_year = _current_year()
        if not MIN_MODEL_YEAR <= self.year_from <= current_year:
            raise ValueError(f"year_from must be between {MIN_MODEL_YEAR} and {current_year}")
        if not self.year_from <= self.year_to <= current_year:
            raise ValueError(f"year_to must be between year_from and {current_year}")
        if not 1 <= self.days_back <= MAX_DAYS_BACK:
            raise ValueError(f"days_back must be between 1 and {MAX_DAYS_BACK}")
        if self.site not in SITE_NAMES:
            raise ValueError(f"site must be one of {sorted(SITE_NAMES)}")
        if self.priority < 0:
            raise ValueError("priority must be >= 0")
        return self


class EnqueueRequest(EnqueueOptions):
    """A make plus its options, as used by bulk collection."""

    make: str

    @field_validator("make", mode="before")
    @classmethod
    def _strip_make(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("make cannot be empty")
        return text

    def options(self) -> EnqueueOptions:
        return EnqueueOptions.model_validate(self.model_dump(exclude={"make"}))


class VendorConfig(BaseModel):
    """Connection settings for the auction-data vendor API."""

    base_url: str = "https://api.apicar.store/api/history-cars"
    api_key: str = ""
    timeout: float = 20.0
    page_size: int = 25

    @model_validator(mode="after")
    def _apply_env_key(self) -> "VendorConfig":
        if not self.api_key:
            self.api_key = os.environ.get("AUCTION_INGEST_API_KEY", "")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        return self


class FetchConfig(BaseModel):
    """Pagination, pacing and dedup knobs for one fetch unit."""

    max_pages_per_unit: int = 10
    inter_page_delay: tuple[float, float] = (2.0, 3.0)
    rate_limit_backoff_seconds: float = 5.0
    max_rate_limit_retries: int = 5
    skip_if_existing_at_least: int = 1

    @field_validator("inter_page_delay", mode="before")
    @classmethod
    def _coerce_delay(cls, value: Any) -> tuple[float, float]:
        if value in (None, ""):
            return (0.0, 0.0)
        if isinstance(value, (list, tuple)) and len(value) == 2:
            low, high = float(value[0]), float(value[1])
            if low < 0 or high < 0:
                raise ValueError("Delay range values must be non-negative")
            if high < low:
                raise ValueError("Delay range upper bound must be >= lower bound")
            return (low, high)
        raise ValueError("Delay range expects a two-item list or tuple")

    @model_validator(mode="after")
    def _validate_limits(self) -> "FetchConfig":
        if self.max_pages_per_unit < 1:
            raise ValueError("max_pages_per_unit must be >= 1")
        if self.max_rate_limit_retries < 0:
            raise ValueError("max_rate_limit_retries must be >= 0")
        if self.skip_if_existing_at_least < 1:
            raise ValueError("skip_if_existing_at_least must be >= 1")
        return self


class SchedulerConfig(BaseModel):
    """Collection loop settings."""

    concurrency_cap: int = 3
    poll_interval_seconds: float = 30.0
    error_backoff_seconds: float = 60.0
    refresh_mode: RefreshMode = RefreshMode.CONTINUOUS
    avg_job_duration_estimate: float = 60.0

    @model_validator(mode="after")
    def _validate_positive(self) -> "SchedulerConfig":
        if self.concurrency_cap < 1:
            raise ValueError("concurrency_cap must be >= 1")
        if self.poll_interval_seconds < 0 or self.error_backoff_seconds < 0:
            raise ValueError("Loop intervals must be non-negative")
        return self


class DiscoveryConfig(BaseModel):
    max_models: int = 100


class MigrationConfig(BaseModel):
    """Fresh-tier retention and the sweep schedule."""

    retention_days: float = 3.0
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    run_on_start: bool = False

    @field_validator("retention_days")
    @classmethod
    def _positive_retention(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("retention_days must be > 0")
        return value


class BulkConfig(BaseModel):
    """Batch mode: a few same-tier units at once, with staggered starts."""

    max_parallel: int = 2
    stagger_seconds: float = 5.0


class SeedJob(BaseModel):
    """Job created when the scheduler is built."""

    make: str
    model: str | None = None
    sites: list[int] = Field(default_factory=lambda: [1, 2])
    priority: int = 1

    @field_validator("sites")
    @classmethod
    def _known_sites(cls, value: list[int]) -> list[int]:
        unknown = [site for site in value if site not in SITE_NAMES]
        if unknown:
            raise ValueError(f"Unknown site ids: {unknown}")
        return value


def _default_seeds() -> list[SeedJob]:
    return [SeedJob(make=make) for make in DEFAULT_PRIORITY_MAKES]


class GlobalConfig(BaseModel):
    """Top-level configuration, static once the service starts."""

    vendor: VendorConfig = Field(default_factory=VendorConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    migration: MigrationConfig = Field(default_factory=MigrationConfig)
    bulk: BulkConfig = Field(default_factory=BulkConfig)
    seeds: list[SeedJob] = Field(default_factory=_default_seeds)
    seed_from_store: bool = True
    seed_limit: int = 500
    default_options: EnqueueOptions = Field(default_factory=EnqueueOptions)
    database_path: Path = Field(default=Path("data/auction.db"))

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolved_database_path(self, base_dir: Path) -> Path:
        """Return the database path relative to the project root."""

        if not self.database_path.is_absolute():
            return (base_dir / self.database_path).resolve()
        return self.database_path

    def priority_makes(self) -> set[str]:
        return {seed.make.lower() for seed in self.seeds}


__all__ = [
    "BulkConfig",
    "DEFAULT_PRIORITY_MAKES",
    "DiscoveryConfig",
    "EnqueueOptions",
    "EnqueueRequest",
    "FetchConfig",
    "GlobalConfig",
    "MigrationConfig",
    "RefreshMode",
    "SITE_NAMES",
    "ScheduleConfig",
    "ScheduleType",
    "SchedulerConfig",
    "SeedJob",
    "VendorConfig",
]
