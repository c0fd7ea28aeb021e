"""
Host memory information for the smart cache strategy and health checks.
"""
import logging
from typing import Callable, Tuple

import psutil

logger = logging.getLogger("booking.memory")

# Conservative values used when the host cannot be queried
DEFAULT_TOTAL_MEMORY = 1024 * 1024 * 1024  # 1 GiB
DEFAULT_AVAILABLE_MEMORY = 512 * 1024 * 1024  # 512 MiB

MemoryInfoProvider = Callable[[], Tuple[int, int]]


def system_memory_info() -> Tuple[int, int]:
    """
    Get (total_memory, available_memory) in bytes.

    Never raises: falls back to DEFAULT_TOTAL_MEMORY / DEFAULT_AVAILABLE_MEMORY.
    """
    try:
        memory = psutil.virtual_memory()
        return int(memory.total), int(memory.available)
    except Exception as e:
        logger.warning(f"Could not read system memory, using defaults: {e}")
        return DEFAULT_TOTAL_MEMORY, DEFAULT_AVAILABLE_MEMORY


def safe_memory_info(provider: MemoryInfoProvider) -> Tuple[int, int]:
    """Call an injected provider, falling back to defaults if it fails."""
    try:
        total, available = provider()
        if total <= 0:
            raise ValueError(f"total memory must be positive, got {total}")
        return int(total), max(0, int(available))
    except Exception as e:
        logger.warning(f"Memory info provider failed, using defaults: {e}")
        return DEFAULT_TOTAL_MEMORY, DEFAULT_AVAILABLE_MEMORY


def format_bytes(num_bytes: int) -> str:
    """Human readable size for log lines."""
    size = float(num_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.2f} GB"
