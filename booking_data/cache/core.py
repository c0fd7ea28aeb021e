"""
Core cache data structures.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

V = TypeVar("V")

KEY_SEPARATOR = ":"
MAX_NAMESPACE_LENGTH = 50
MAX_KEY_LENGTH = 100


@dataclass(frozen=True)
class CacheKey:
    """
    Namespaced cache key. Identity is the composed "namespace:key" string.
    """
    namespace: str
    key: str

    @property
    def full_key(self) -> str:
        return f"{self.namespace}{KEY_SEPARATOR}{self.key}"

    def is_valid(self) -> bool:
        """Both parts non-empty, within length limits, free of the separator."""
        return (
            bool(self.namespace)
            and bool(self.key)
            and len(self.namespace) <= MAX_NAMESPACE_LENGTH
            and len(self.key) <= MAX_KEY_LENGTH
            and KEY_SEPARATOR not in self.namespace
            and KEY_SEPARATOR not in self.key
        )

    def __str__(self) -> str:
        return self.full_key

    @classmethod
    def booking(cls, key: str) -> "CacheKey":
        return cls("booking", key)

    @classmethod
    def user(cls, key: str) -> "CacheKey":
        return cls("user", key)

    @classmethod
    def session(cls, key: str) -> "CacheKey":
        return cls("session", key)

    @classmethod
    def temp(cls, key: str) -> "CacheKey":
        return cls("temp", key)


def namespace_of(full_key: str) -> Optional[str]:
    """Namespace component of a composed key, None if it has no separator."""
    if KEY_SEPARATOR not in full_key:
        return None
    return full_key.split(KEY_SEPARATOR, 1)[0]


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """
    A stored value with access bookkeeping.

    Invariants: last_access >= created_at, access_count >= 1.
    """
    value: V
    created_at: datetime
    last_access: datetime
    access_count: int = 1

    @classmethod
    def create(cls, value: V, now: datetime) -> "CacheEntry[V]":
        return cls(value=value, created_at=now, last_access=now, access_count=1)

    def accessed(self, now: datetime) -> "CacheEntry[V]":
        """Copy with refreshed last_access and incremented access_count."""
        return replace(
            self,
            last_access=max(now, self.created_at),
            access_count=self.access_count + 1,
        )

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()


@dataclass(frozen=True)
class CacheConfig:
    """In-memory store limits and behaviour."""
    max_items: int = 100
    max_memory_mb: int = 50
    expiration_seconds: float = 300.0
    enable_lru: bool = True
    enable_statistics: bool = True

    @classmethod
    def default(cls) -> "CacheConfig":
        return cls()

    @classmethod
    def high_performance(cls) -> "CacheConfig":
        return cls(max_items=500, max_memory_mb=100, expiration_seconds=600.0)

    @classmethod
    def memory_optimized(cls) -> "CacheConfig":
        return cls(max_items=50, max_memory_mb=10, expiration_seconds=180.0)


@dataclass(frozen=True)
class CacheStatistics:
    """Point-in-time snapshot of a CacheStore."""
    total_items: int
    hit_count: int
    miss_count: int
    eviction_count: int
    memory_usage: int  # bytes
    hit_rate: float
    average_response_time: float  # seconds per get()
    top_keys: List[Tuple[str, int]] = field(default_factory=list)

    @property
    def hit_rate_percentage(self) -> str:
        return f"{self.hit_rate * 100:.1f}%"

    @property
    def memory_usage_mb(self) -> float:
        return self.memory_usage / (1024 * 1024)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "totalItems": self.total_items,
            "hitCount": self.hit_count,
            "missCount": self.miss_count,
            "evictionCount": self.eviction_count,
            "memoryUsage": self.memory_usage,
            "hitRate": round(self.hit_rate, 4),
            "averageResponseTime": self.average_response_time,
            "topKeys": [{"key": key, "count": count} for key, count in self.top_keys],
        }


@dataclass(frozen=True)
class CacheMetrics:
    """Detailed performance view of a CacheStore."""
    hit_rate: float
    average_response_time: float
    memory_usage: int
    eviction_rate: float
    top_keys: List[Tuple[str, int]] = field(default_factory=list)
    namespace_stats: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hitRate": round(self.hit_rate, 4),
            "averageResponseTime": self.average_response_time,
            "memoryUsage": self.memory_usage,
            "evictionRate": round(self.eviction_rate, 4),
            "topKeys": [{"key": key, "count": count} for key, count in self.top_keys],
            "namespaceStats": dict(self.namespace_stats),
        }
