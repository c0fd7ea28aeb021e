"""
Bounded in-memory cache with per-item expiry, LRU eviction and statistics.
"""
import logging
import random
import sys
import threading
import time
from collections import defaultdict
from typing import Callable, Dict, Generic, Iterable, List, Optional, Tuple

from ..models import Clock, utc_now
from .core import (
    CacheConfig,
    CacheEntry,
    CacheKey,
    CacheMetrics,
    CacheStatistics,
    V,
    namespace_of,
)

logger = logging.getLogger("booking.cache.store")

# Bookkeeping bytes per entry on top of key and value (two timestamps + counter)
ENTRY_OVERHEAD_BYTES = 24
TOP_KEYS_LIMIT = 10


def default_size_of(value: object) -> int:
    """Shallow size of a value; stable for equal values of the same type."""
    return sys.getsizeof(value)


class CacheStore(Generic[V]):
    """
    Thread-safe bounded key-value store.

    - Expiry: an entry older than config.expiration_seconds is a miss and is
      removed when read (access does not extend its lifetime)
    - Eviction on set(): expired entries first, then least recently used
      (or random when LRU is disabled) until a slot is free
    - Statistics: hits, misses, evictions, per-key and per-namespace access
      counts, average get() time

    Values are sized with the injected size_of callable, so each stored type
    decides its own footprint.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        size_of: Callable[[V], int] = default_size_of,
        clock: Clock = utc_now,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or CacheConfig()
        if self.config.max_items < 1:
            raise ValueError("max_items must be at least 1")

        self._size_of = size_of
        self._clock = clock
        self._rng = rng or random.Random()

        self._entries: Dict[str, CacheEntry[V]] = {}
        self._sizes: Dict[str, int] = {}
        self._memory_usage = 0
        self._lock = threading.RLock()

        # Stats tracking
        self._hit_count = 0
        self._miss_count = 0
        self._eviction_count = 0
        self._total_response_time = 0.0
        self._key_access_counts: Dict[str, int] = defaultdict(int)
        self._namespace_counts: Dict[str, int] = defaultdict(int)

    @property
    def max_memory_bytes(self) -> int:
        return self.config.max_memory_mb * 1024 * 1024

    # =========================================================================
    # Core operations
    # =========================================================================

    def get(self, key: str) -> Optional[V]:
        """
        Return the stored value, or None on miss or expiry.

        A hit refreshes the entry's access bookkeeping when LRU is enabled.
        An expired entry is removed as a side effect.
        """
        started = time.perf_counter()
        with self._lock:
            entry = self._entries.get(key)

            if entry is None:
                self._miss_count += 1
                self._record_access(key, started)
                logger.debug(f"CACHE MISS: {key}")
                return None

            now = self._clock()
            if self._is_expired(entry, now):
                self._delete(key)
                self._miss_count += 1
                self._record_access(key, started)
                logger.debug(f"CACHE EXPIRED: {key} [age={entry.age_seconds(now):.1f}s]")
                return None

            if self.config.enable_lru:
                self._entries[key] = entry.accessed(now)

            self._hit_count += 1
            self._record_access(key, started)
            logger.debug(f"CACHE HIT: {key}")
            return entry.value

    def set(self, key: str, value: V) -> None:
        """Store a value, evicting first if the store is at capacity."""
        with self._lock:
            self._insert(key, value)
            logger.debug(f"Cached: {key}")

    def remove(self, key: str) -> bool:
        """
        Remove a specific entry.

        Returns:
            True if the entry was found and removed
        """
        with self._lock:
            if key in self._entries:
                self._delete(key)
                logger.debug(f"Removed cache entry: {key}")
                return True
            return False

    def clear(self) -> int:
        """
        Remove every entry and reset all statistics.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._sizes.clear()
            self._memory_usage = 0
            self._hit_count = 0
            self._miss_count = 0
            self._eviction_count = 0
            self._total_response_time = 0.0
            self._key_access_counts.clear()
            self._namespace_counts.clear()
            logger.info(f"Cleared {count} cache entries")
            return count

    def clear_namespace(self, namespace: str) -> int:
        """
        Remove every key whose namespace component equals namespace.

        Returns:
            Number of entries removed
        """
        with self._lock:
            to_delete = [k for k in self._entries if namespace_of(k) == namespace]
            for key in to_delete:
                self._delete(key)
            logger.info(f"Cleared namespace '{namespace}': {len(to_delete)} entries")
            return len(to_delete)

    def warmup(self, entries: Iterable[Tuple[str, V]]) -> int:
        """
        Bulk-insert entries whose keys are not already present.

        Existing entries are left untouched and no hit/miss is recorded.

        Returns:
            Number of entries inserted
        """
        inserted = 0
        with self._lock:
            for key, value in entries:
                if key in self._entries:
                    continue
                self._insert(key, value)
                inserted += 1
            logger.debug(f"Cache warmup complete: {inserted} entries inserted")
        return inserted

    def contains(self, key: str) -> bool:
        """Presence check that touches neither statistics nor LRU order."""
        with self._lock:
            return key in self._entries

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # =========================================================================
    # CacheKey helpers
    # =========================================================================

    def get_key(self, cache_key: CacheKey) -> Optional[V]:
        if not cache_key.is_valid():
            logger.warning(f"Invalid cache key: {cache_key.full_key!r}")
            return None
        return self.get(cache_key.full_key)

    def set_key(self, cache_key: CacheKey, value: V) -> bool:
        if not cache_key.is_valid():
            logger.warning(f"Invalid cache key: {cache_key.full_key!r}")
            return False
        self.set(cache_key.full_key, value)
        return True

    def remove_key(self, cache_key: CacheKey) -> bool:
        if not cache_key.is_valid():
            logger.warning(f"Invalid cache key: {cache_key.full_key!r}")
            return False
        return self.remove(cache_key.full_key)

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_statistics(self) -> CacheStatistics:
        """Snapshot; hit_rate is recomputed on every call."""
        with self._lock:
            total_requests = self._hit_count + self._miss_count
            return CacheStatistics(
                total_items=len(self._entries),
                hit_count=self._hit_count,
                miss_count=self._miss_count,
                eviction_count=self._eviction_count,
                memory_usage=self._memory_usage,
                hit_rate=self._hit_count / total_requests if total_requests > 0 else 0.0,
                average_response_time=(
                    self._total_response_time / total_requests if total_requests > 0 else 0.0
                ),
                top_keys=self._top_keys(),
            )

    def get_metrics(self) -> CacheMetrics:
        with self._lock:
            total_requests = self._hit_count + self._miss_count
            return CacheMetrics(
                hit_rate=self._hit_count / total_requests if total_requests > 0 else 0.0,
                average_response_time=(
                    self._total_response_time / total_requests if total_requests > 0 else 0.0
                ),
                memory_usage=self._memory_usage,
                eviction_rate=(
                    self._eviction_count / total_requests if total_requests > 0 else 0.0
                ),
                top_keys=self._top_keys(),
                namespace_stats=dict(self._namespace_counts),
            )

    def estimate_memory_usage(self) -> int:
        with self._lock:
            return self._memory_usage

    # =========================================================================
    # Internals (callers hold the lock)
    # =========================================================================

    def _insert(self, key: str, value: V) -> None:
        size = len(key.encode("utf-8")) + ENTRY_OVERHEAD_BYTES + self._size_of(value)
        if key in self._entries:
            # A replacement frees its slot, so only the memory ceiling can apply
            self._delete(key, keep_access_count=True)
        if self._at_capacity(size):
            self._evict(size)

        self._entries[key] = CacheEntry.create(value, self._clock())
        self._sizes[key] = size
        self._memory_usage += size

    def _delete(self, key: str, keep_access_count: bool = False) -> None:
        del self._entries[key]
        self._memory_usage -= self._sizes.pop(key, 0)
        if not keep_access_count:
            self._key_access_counts.pop(key, None)

    def _is_expired(self, entry: CacheEntry[V], now) -> bool:
        return entry.age_seconds(now) > self.config.expiration_seconds

    def _at_capacity(self, incoming: int = 0) -> bool:
        return (
            len(self._entries) >= self.config.max_items
            or self._memory_usage + incoming > self.max_memory_bytes
        )

    def _evict(self, incoming: int = 0) -> None:
        """Drop expired entries, then LRU/random victims until incoming fits."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for key in expired:
            self._delete(key)
            self._eviction_count += 1

        removed = len(expired)
        while self._entries and self._at_capacity(incoming):
            if self.config.enable_lru:
                victim = min(self._entries, key=lambda k: self._entries[k].last_access)
            else:
                victim = self._rng.choice(list(self._entries))
            self._delete(victim)
            self._eviction_count += 1
            removed += 1

        logger.debug(f"Eviction complete: removed {removed} entries")

    def _record_access(self, key: str, started: float) -> None:
        if not self.config.enable_statistics:
            return
        self._total_response_time += time.perf_counter() - started
        # Per-key counts only cover stored keys; _delete drops them
        if key in self._entries:
            self._key_access_counts[key] += 1
        namespace = namespace_of(key)
        if namespace is not None:
            self._namespace_counts[namespace] += 1

    def _top_keys(self) -> List[Tuple[str, int]]:
        ranked = sorted(self._key_access_counts.items(), key=lambda kv: kv[1], reverse=True)
        return ranked[:TOP_KEYS_LIMIT]
