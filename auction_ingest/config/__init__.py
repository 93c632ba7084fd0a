"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    SITE_NAMES,
    BulkConfig,
    DiscoveryConfig,
    EnqueueOptions,
    EnqueueRequest,
    FetchConfig,
    GlobalConfig,
    MigrationConfig,
    RefreshMode,
    ScheduleConfig,
    ScheduleType,
    SchedulerConfig,
    SeedJob,
    VendorConfig,
)

__all__ = [
    "BulkConfig",
    "ConfigLocator",
    "ConfigRepository",
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
