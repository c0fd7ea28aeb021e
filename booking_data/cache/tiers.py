"""
Two-tier booking cache: memory (CacheStore) in front of disk (PersistentLayer).

Executes the read and write plans produced by CacheStrategyResolver. Tier
failures never escape: a failed read is a miss, a failed write is logged and
reported in the WriteOutcome.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from ..errors import StorageError
from ..models import BookingRecord, CachedRecord, Clock, utc_now
from .core import CacheKey
from .persistent import PersistentLayer
from .store import CacheStore
from .strategy import Tier

logger = logging.getLogger("booking.cache.tiers")

CURRENT_BOOKING_KEY = CacheKey.booking("current")


def cached_record_size(cached: CachedRecord) -> int:
    """size_of for a CacheStore holding CachedRecord values."""
    return cached.size_in_bytes()


@dataclass
class WriteOutcome:
    """Tiers a write reached and tiers where it failed."""
    written: List[Tier] = field(default_factory=list)
    failed: List[Tier] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class TieredCache:
    """
    Read/write access to the current booking across both tiers.

    A tier hit is usable only if the tier's own envelope is still valid and
    the record's embedded expiry has not passed.
    """

    def __init__(
        self,
        memory: CacheStore[CachedRecord],
        persistent: PersistentLayer,
        clock: Clock = utc_now,
    ):
        self.memory = memory
        self.persistent = persistent
        self._clock = clock

    def read(self, plan: List[Tier]) -> Optional[Tuple[CachedRecord, Tier]]:
        """
        Consult tiers in plan order.

        Returns:
            (envelope, tier) for the first usable hit, None on a full miss
        """
        for tier in plan:
            cached = self._read_tier(tier)
            if cached is None:
                continue

            now = self._clock()
            if not cached.is_valid(now):
                logger.debug(f"{tier.value} tier entry outside its window")
                continue
            if cached.record.is_expired(now):
                logger.debug(f"{tier.value} tier holds an expired booking")
                continue

            logger.debug(f"Booking served from {tier.value} tier")
            return cached, tier

        return None

    def write(
        self,
        plan: List[Tier],
        record: BookingRecord,
        fetched_at: datetime,
    ) -> WriteOutcome:
        """Store the record in every tier of the plan."""
        outcome = WriteOutcome()
        for tier in plan:
            try:
                if tier == Tier.MEMORY:
                    envelope = CachedRecord.create(
                        record, fetched_at, self.memory.config.expiration_seconds
                    )
                    if not self.memory.set_key(CURRENT_BOOKING_KEY, envelope):
                        raise StorageError(f"Invalid cache key {CURRENT_BOOKING_KEY}")
                else:
                    self.persistent.save(record, fetched_at)
            except StorageError as e:
                logger.warning(f"Failed to write booking to {tier.value} tier: {e}")
                outcome.failed.append(tier)
                continue
            outcome.written.append(tier)

        if outcome.written:
            logger.debug(f"Booking written to {[t.value for t in outcome.written]}")
        return outcome

    def clear(self) -> None:
        """Empty both tiers. A disk failure is logged, not raised."""
        self.memory.clear()
        try:
            self.persistent.clear()
        except StorageError as e:
            logger.warning(f"Failed to clear disk tier: {e}")
        logger.info("Booking cache cleared")

    def clear_memory(self) -> None:
        self.memory.clear()

    def _read_tier(self, tier: Tier) -> Optional[CachedRecord]:
        if tier == Tier.MEMORY:
            return self.memory.get_key(CURRENT_BOOKING_KEY)
        try:
            return self.persistent.load()
        except StorageError as e:
            logger.warning(f"Disk tier read failed, treating as miss: {e}")
            return None
