"""
Booking cache: bounded memory store, durable disk tier, tier strategy and
request coalescing.
"""
from .core import CacheConfig, CacheEntry, CacheKey, CacheMetrics, CacheStatistics
from .store import CacheStore
from .persistent import PersistentLayer
from .strategy import (
    CacheStrategy,
    CacheStrategyResolver,
    Tier,
    resolve_write_strategy,
)
from .coalescer import RequestCoordinator
from .tiers import TieredCache, WriteOutcome, cached_record_size

__all__ = [
    # Core types
    "CacheConfig",
    "CacheEntry",
    "CacheKey",
    "CacheMetrics",
    "CacheStatistics",
    # Tiers
    "CacheStore",
    "PersistentLayer",
    "TieredCache",
    "WriteOutcome",
    "cached_record_size",
    # Strategy
    "CacheStrategy",
    "CacheStrategyResolver",
    "Tier",
    "resolve_write_strategy",
    # Coalescing
    "RequestCoordinator",
]
