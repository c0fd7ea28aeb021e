"""
Booking data layer: two-tier caching, deduplicated fetching and retry in
front of a booking data source.
"""
from .errors import (
    BookingDataError,
    DataExpiredError,
    DecodeError,
    FetchTimeoutError,
    ManagerDestroyedError,
    NetworkError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .models import BookingRecord, CachedRecord, DataState, DataStatus
from .manager import (
    DataManager,
    HealthStatus,
    ManagerConfig,
    ResourceUsageReport,
    build_data_manager,
)
from .sources import DataSource, FileDataSource, RemoteDataSource

__all__ = [
    # Errors
    "BookingDataError",
    "DataExpiredError",
    "DecodeError",
    "FetchTimeoutError",
    "ManagerDestroyedError",
    "NetworkError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    # Models
    "BookingRecord",
    "CachedRecord",
    "DataState",
    "DataStatus",
    # Manager
    "DataManager",
    "HealthStatus",
    "ManagerConfig",
    "ResourceUsageReport",
    "build_data_manager",
    # Sources
    "DataSource",
    "FileDataSource",
    "RemoteDataSource",
]
