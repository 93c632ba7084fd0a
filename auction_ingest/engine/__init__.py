"""Engine components: vendor client → coverage check → fetch → fresh store."""

from .dedup import CoverageChecker, CoverageResult
from .discovery import DiscoveryResult, ModelDiscovery
from .errors import IngestError, PersistenceError, RateLimitedError, TransientNetworkError, VendorError
from .fetcher import Fetcher, UnitOutcome, UnitResult
from .store import FreshStore, PermanentStore, WriteResult
from .thread_pool import ThreadPoolManager
from .units import FetchUnit, SaleWindow
from .vendor import VendorClient, VendorPage, VendorQuery

__all__ = [
    "CoverageChecker",
    "CoverageResult",
    "DiscoveryResult",
    "FetchUnit",
    "Fetcher",
    "FreshStore",
    "IngestError",
    "ModelDiscovery",
    "PermanentStore",
    "PersistenceError",
    "RateLimitedError",
    "SaleWindow",
    "ThreadPoolManager",
    "TransientNetworkError",
    "UnitOutcome",
    "UnitResult",
    "VendorClient",
    "VendorError",
    "VendorPage",
    "VendorQuery",
    "WriteResult",
]
