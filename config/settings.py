"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from booking_data.cache.strategy import CacheStrategy
from booking_data.retry import BackoffKind
from booking_data.validation import ValidationStrictness

# Bundled booking document
DEFAULT_DATA_PATH = Path(__file__).parent.parent / "data" / "booking.json"


class Settings(BaseSettings):
    """Application settings loaded from BOOKING_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BOOKING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Data source: the remote URL wins when set
    data_source_path: Path = DEFAULT_DATA_PATH
    data_source_url: Optional[str] = None
    request_timeout: float = 30.0

    # Cache settings
    cache_strategy: CacheStrategy = CacheStrategy.HYBRID
    cache_max_items: int = 100
    cache_max_memory_mb: int = 50
    cache_expiration_seconds: float = 300.0
    cache_enable_lru: bool = True
    persistent_validity_seconds: float = 300.0
    cache_directory: Path = Path("./cache")

    # Retry
    max_retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    retry_max_delay: float = 30.0
    retry_backoff: BackoffKind = BackoffKind.EXPONENTIAL
    # refresh() gets this many attempts on top of max_retry_attempts
    refresh_extra_attempts: int = 2

    # Request handling
    enable_request_deduplication: bool = True
    # Deadline for a whole get/refresh; unset derives it from the retry budget
    coalesce_timeout: Optional[float] = None

    # Validation
    enable_data_validation: bool = True
    validation_strictness: ValidationStrictness = ValidationStrictness.NORMAL

    # Background refresh
    enable_background_refresh: bool = False
    background_refresh_interval: float = 300.0
    # Refresh when the booking expires within this many seconds
    background_refresh_threshold: float = 3600.0

    # Health
    health_max_waiters: int = 10

    log_level: str = "INFO"


def production_settings(**overrides) -> Settings:
    """Longer cache lifetime, fewer but slower retries, strict validation."""
    values = dict(
        request_timeout=15.0,
        cache_expiration_seconds=600.0,
        max_retry_attempts=2,
        retry_delay_seconds=2.0,
        retry_max_delay=60.0,
        validation_strictness=ValidationStrictness.STRICT,
        log_level="WARNING",
    )
    values.update(overrides)
    return Settings(**values)


def testing_settings(**overrides) -> Settings:
    """No caching, one fast attempt, no validation."""
    values = dict(
        request_timeout=5.0,
        cache_strategy=CacheStrategy.DISABLED,
        cache_expiration_seconds=60.0,
        max_retry_attempts=1,
        retry_delay_seconds=0.5,
        retry_max_delay=5.0,
        retry_backoff=BackoffKind.LINEAR,
        refresh_extra_attempts=0,
        enable_data_validation=False,
        validation_strictness=ValidationStrictness.DISABLED,
        log_level="DEBUG",
    )
    values.update(overrides)
    return Settings(**values)


settings = Settings()
