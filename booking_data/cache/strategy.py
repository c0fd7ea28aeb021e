"""
Cache tier selection.

Read and write plans per strategy, plus the memory-aware write decision used
by the smart strategy. Everything here is pure.
"""
import logging
from enum import Enum
from typing import Dict, List, Tuple

from ..memory import format_bytes

logger = logging.getLogger("booking.cache.strategy")

ONE_MIB = 1024 * 1024
SMALL_RECORD_LIMIT = 1 * ONE_MIB
MEDIUM_RECORD_LIMIT = 10 * ONE_MIB


class CacheStrategy(str, Enum):
    """Which tiers the manager may use."""
    DISABLED = "disabled"
    MEMORY_ONLY = "memory_only"
    DISK_ONLY = "disk_only"
    HYBRID = "hybrid"
    SMART = "smart"


class Tier(str, Enum):
    MEMORY = "memory"
    DISK = "disk"


# Tiers consulted on read, in order
READ_PLANS: Dict[CacheStrategy, Tuple[Tier, ...]] = {
    CacheStrategy.DISABLED: (),
    CacheStrategy.MEMORY_ONLY: (Tier.MEMORY,),
    CacheStrategy.DISK_ONLY: (Tier.DISK,),
    CacheStrategy.HYBRID: (Tier.MEMORY, Tier.DISK),
    CacheStrategy.SMART: (Tier.MEMORY, Tier.DISK),
}

# Tiers written for every strategy except SMART, which decides per record
WRITE_PLANS: Dict[CacheStrategy, Tuple[Tier, ...]] = {
    CacheStrategy.DISABLED: (),
    CacheStrategy.MEMORY_ONLY: (Tier.MEMORY,),
    CacheStrategy.DISK_ONLY: (Tier.DISK,),
    CacheStrategy.HYBRID: (Tier.MEMORY, Tier.DISK),
}


def resolve_write_strategy(
    data_size: int,
    available_memory: int,
    total_memory: int,
) -> CacheStrategy:
    """
    Pick the concrete strategy for writing a record of data_size bytes.

    Args:
        data_size: Estimated record size in bytes
        available_memory: Currently available host memory in bytes
        total_memory: Total host memory in bytes (logged only)

    Returns:
        MEMORY_ONLY, HYBRID or DISK_ONLY
    """
    if data_size > available_memory / 2:
        strategy = CacheStrategy.DISK_ONLY
    elif data_size < SMALL_RECORD_LIMIT and available_memory > data_size * 4:
        strategy = CacheStrategy.MEMORY_ONLY
    elif data_size < MEDIUM_RECORD_LIMIT and available_memory > data_size * 2:
        strategy = CacheStrategy.HYBRID
    else:
        strategy = CacheStrategy.DISK_ONLY

    logger.debug(
        f"Smart strategy: {strategy.value} for {format_bytes(data_size)} "
        f"(available {format_bytes(available_memory)} of {format_bytes(total_memory)})"
    )
    return strategy


class CacheStrategyResolver:
    """
    Maps a configured strategy onto concrete tier lists.

    Usage:
        resolver = CacheStrategyResolver(CacheStrategy.SMART)
        resolver.read_plan()                      # [MEMORY, DISK]
        resolver.write_plan(size, avail, total)   # depends on memory
    """

    def __init__(self, strategy: CacheStrategy = CacheStrategy.HYBRID):
        self.strategy = CacheStrategy(strategy)

    def read_plan(self) -> List[Tier]:
        return list(READ_PLANS[self.strategy])

    def write_plan(
        self,
        data_size: int = 0,
        available_memory: int = 0,
        total_memory: int = 0,
    ) -> List[Tier]:
        """Tiers to write; memory figures are only consulted for SMART."""
        if self.strategy == CacheStrategy.SMART:
            resolved = resolve_write_strategy(data_size, available_memory, total_memory)
            return list(WRITE_PLANS[resolved])
        return list(WRITE_PLANS[self.strategy])

    @property
    def uses_memory_only(self) -> bool:
        return self.strategy == CacheStrategy.MEMORY_ONLY
