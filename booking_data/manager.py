"""
DataManager: the single access point for booking data.

Orchestrates the cache tiers, the upstream source, validation, retry,
request deduplication, subscriber notification and background refresh.
"""
import itertools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from .cache import (
    CacheConfig,
    CacheMetrics,
    CacheStatistics,
    CacheStore,
    CacheStrategyResolver,
    PersistentLayer,
    RequestCoordinator,
    TieredCache,
    cached_record_size,
)
from .errors import (
    BookingDataError,
    DataExpiredError,
    FetchTimeoutError,
    ManagerDestroyedError,
    classify_error,
)
from .memory import MemoryInfoProvider, format_bytes, safe_memory_info, system_memory_info
from .models import BookingRecord, Clock, DataState, utc_now
from .publisher import RecordPublisher, Subscriber, Subscription
from .retry import BackoffKind, RetryConfig, build_retrying
from .sources import DataSource, FileDataSource, RemoteDataSource
from .validation import RecordValidator, ValidationStrictness

logger = logging.getLogger("booking.manager")

GET_KEY = "booking:get"
REFRESH_KEY = "booking:refresh"

MEMORY_PRESSURE_PERCENT = 90.0


@dataclass(frozen=True)
class ManagerConfig:
    """Behaviour knobs of a DataManager."""
    request_timeout: float = 30.0
    # Deadline for a whole get/refresh pipeline; None derives it from the
    # retry budget and request_timeout
    coalesce_timeout: Optional[float] = None
    refresh_extra_attempts: int = 2
    enable_deduplication: bool = True
    enable_background_refresh: bool = False
    background_refresh_interval: float = 300.0
    background_refresh_threshold: float = 3600.0
    health_max_waiters: int = 10
    max_workers: int = 4


@dataclass(frozen=True)
class ResourceUsageReport:
    """Point-in-time resource view of a DataManager."""
    active_requests: int
    waiting_callers: int
    is_background_refresh_active: bool
    total_memory: int
    available_memory: int
    is_destroyed: bool

    @property
    def memory_usage_percent(self) -> float:
        if self.total_memory <= 0:
            return 0.0
        return (self.total_memory - self.available_memory) * 100 / self.total_memory

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activeRequests": self.active_requests,
            "waitingCallers": self.waiting_callers,
            "isBackgroundRefreshActive": self.is_background_refresh_active,
            "totalMemory": self.total_memory,
            "availableMemory": self.available_memory,
            "memoryUsagePercent": round(self.memory_usage_percent, 1),
            "isDestroyed": self.is_destroyed,
        }


@dataclass(frozen=True)
class HealthStatus:
    """Result of DataManager.health_check()."""
    is_healthy: bool
    issues: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isHealthy": self.is_healthy,
            "issues": list(self.issues),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class PerformanceMetrics:
    """
    Request counters and response times of get/refresh pipelines.

    One request is one pipeline run, however many callers shared it.
    Response times cover successful runs only.
    """
    total_requests: int = 0
    cache_hits: int = 0
    failures: int = 0
    average_response_time: float = 0.0  # seconds
    min_response_time: float = 0.0
    max_response_time: float = 0.0

    @property
    def cache_hit_rate(self) -> float:
        return self.cache_hits / self.total_requests if self.total_requests > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "cacheHits": self.cache_hits,
            "cacheHitRate": round(self.cache_hit_rate, 4),
            "failures": self.failures,
            "averageResponseTime": self.average_response_time,
            "minResponseTime": self.min_response_time,
            "maxResponseTime": self.max_response_time,
        }


class PerformanceRecorder:
    """Thread-safe accumulator behind DataManager.get_performance_metrics()."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def record(self, elapsed: float, succeeded: bool, cache_hit: bool = False) -> None:
        with self._lock:
            self._requests += 1
            if not succeeded:
                self._failures += 1
                return
            if cache_hit:
                self._cache_hits += 1
            self._timed += 1
            self._total_time += elapsed
            self._min_time = elapsed if self._min_time is None else min(self._min_time, elapsed)
            self._max_time = max(self._max_time, elapsed)

    def snapshot(self) -> PerformanceMetrics:
        with self._lock:
            return PerformanceMetrics(
                total_requests=self._requests,
                cache_hits=self._cache_hits,
                failures=self._failures,
                average_response_time=self._total_time / self._timed if self._timed else 0.0,
                min_response_time=self._min_time or 0.0,
                max_response_time=self._max_time,
            )

    def reset(self) -> None:
        with self._lock:
            self._requests = 0
            self._cache_hits = 0
            self._failures = 0
            self._timed = 0
            self._total_time = 0.0
            self._min_time: Optional[float] = None
            self._max_time = 0.0


class DataManager:
    """
    Booking data facade.

    - get(): deduplicated read through the cache tiers, falling back to the
      source with retry
    - refresh(): deduplicated source fetch bypassing the cache read
    - State: LOADING -> LOADED | EXPIRED | ERROR(msg)
    - Every transition into LOADED publishes the record to subscribers

    All callers of a key, the initiator included, block on the same shared
    future, so destroy() can release every one of them at once. The pipeline
    behind that future runs against a deadline (pipeline_timeout()), so a slow
    source fails every caller together with FetchTimeoutError.

    Usage:
        with build_data_manager(settings) as manager:
            record = manager.get()
    """

    def __init__(
        self,
        source: DataSource,
        cache: TieredCache,
        resolver: CacheStrategyResolver,
        validator: Optional[RecordValidator] = None,
        retry_config: Optional[RetryConfig] = None,
        config: Optional[ManagerConfig] = None,
        memory_info: MemoryInfoProvider = system_memory_info,
        clock: Clock = utc_now,
    ):
        self._source = source
        self._cache = cache
        self._resolver = resolver
        self._validator = validator
        self._retry_config = retry_config or RetryConfig.default()
        self.config = config or ManagerConfig()
        self._memory_info = memory_info
        self._clock = clock

        self._coordinator = RequestCoordinator()
        self._publisher = RecordPublisher()
        self._performance = PerformanceRecorder()

        # Pipelines run here; each source call gets its own slot on _fetch_pool
        # so it can be abandoned on timeout
        self._pipeline_pool = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="booking_pipeline",
        )
        self._fetch_pool = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="booking_fetch",
        )

        self._state_lock = threading.Lock()
        self._state = DataState.loading()
        self._current_record: Optional[BookingRecord] = None
        self._destroyed = False
        self._destroyed_event = threading.Event()
        self._request_ids = itertools.count(1)

        self._refresh_thread: Optional[threading.Thread] = None
        self._refresh_stop: Optional[threading.Event] = None

    # =========================================================================
    # Context manager
    # =========================================================================

    def __enter__(self) -> "DataManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()

    # =========================================================================
    # Public operations
    # =========================================================================

    def get(self) -> BookingRecord:
        """
        Return the current booking, from cache when possible.

        Concurrent calls share one pipeline and one outcome.

        Raises:
            BookingDataError: Any failure of the shared pipeline
            ManagerDestroyedError: If the manager is or becomes destroyed
        """
        return self._run(GET_KEY, use_cache=True, extra_attempts=0)

    def refresh(self) -> BookingRecord:
        """
        Fetch the booking from the source, ignoring cached copies.

        Gets config.refresh_extra_attempts more attempts than get().
        """
        return self._run(
            REFRESH_KEY,
            use_cache=False,
            extra_attempts=self.config.refresh_extra_attempts,
        )

    def get_status(self) -> DataState:
        with self._state_lock:
            return self._state

    @property
    def current_record(self) -> Optional[BookingRecord]:
        with self._state_lock:
            return self._current_record

    @property
    def is_destroyed(self) -> bool:
        with self._state_lock:
            return self._destroyed

    def subscribe(self, callback: Subscriber) -> Subscription:
        """Receive every record published from now on."""
        return self._publisher.subscribe(callback)

    def warmup_cache(self) -> bool:
        """Best-effort get(); failures are logged, never raised."""
        try:
            self.get()
            logger.info("Cache warmup complete")
            return True
        except BookingDataError as e:
            logger.warning(f"Cache warmup failed: {e}")
            return False

    def get_cache_statistics(self) -> CacheStatistics:
        return self._cache.memory.get_statistics()

    def get_cache_metrics(self) -> CacheMetrics:
        return self._cache.memory.get_metrics()

    def get_persistent_info(self) -> Tuple[bool, Optional[datetime], Optional[float]]:
        return self._cache.persistent.get_info()

    def get_performance_metrics(self) -> PerformanceMetrics:
        return self._performance.snapshot()

    def reset_performance_metrics(self) -> None:
        self._performance.reset()
        logger.info("Performance metrics reset")

    def pipeline_timeout(self, extra_attempts: int = 0) -> float:
        """
        Seconds a get/refresh pipeline may run before it fails with
        FetchTimeoutError for every caller sharing it.
        """
        if self.config.coalesce_timeout is not None:
            return self.config.coalesce_timeout
        return self._retry_config.worst_case_seconds(self.config.request_timeout, extra_attempts)

    def clear_cache(self) -> None:
        """Empty the memory and disk tiers."""
        self._ensure_alive()
        self._cache.clear()

    # =========================================================================
    # Background refresh
    # =========================================================================

    def start_background_refresh(self) -> bool:
        """
        Start the periodic refresh thread.

        Returns:
            False if it was already running
        """
        self._ensure_alive()
        with self._state_lock:
            if self._refresh_thread is not None and self._refresh_thread.is_alive():
                return False
            stop = threading.Event()
            thread = threading.Thread(
                target=self._background_loop,
                args=(stop,),
                name="booking_background_refresh",
                daemon=True,
            )
            self._refresh_stop = stop
            self._refresh_thread = thread
        thread.start()
        logger.info(
            f"Background refresh started (interval={self.config.background_refresh_interval}s, "
            f"threshold={self.config.background_refresh_threshold}s)"
        )
        return True

    def stop_background_refresh(self) -> None:
        with self._state_lock:
            stop = self._refresh_stop
            thread = self._refresh_thread
            self._refresh_stop = None
            self._refresh_thread = None
        if stop is None:
            return
        stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        logger.info("Background refresh stopped")

    @property
    def is_background_refresh_active(self) -> bool:
        with self._state_lock:
            return self._refresh_thread is not None and self._refresh_thread.is_alive()

    def needs_refresh(self, now: Optional[datetime] = None) -> bool:
        """True when there is no record or it expires within the threshold."""
        record = self.current_record
        if record is None:
            return True
        expires_at = record.expires_at
        if expires_at is None:
            return True
        now = now or self._clock()
        return expires_at - now <= timedelta(seconds=self.config.background_refresh_threshold)

    def check_and_refresh(self) -> bool:
        """
        One background refresh tick.

        Returns:
            True if a refresh ran and succeeded
        """
        if self.is_destroyed or not self.needs_refresh():
            return False
        try:
            self.refresh()
            logger.info("Background refresh succeeded")
            return True
        except BookingDataError as e:
            logger.warning(f"Background refresh failed: {e}")
            return False

    def _background_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.config.background_refresh_interval):
            self.check_and_refresh()

    # =========================================================================
    # Health and resources
    # =========================================================================

    def get_resource_usage(self) -> ResourceUsageReport:
        total, available = safe_memory_info(self._memory_info)
        return ResourceUsageReport(
            active_requests=self._coordinator.active_requests,
            waiting_callers=self._coordinator.waiting_callers,
            is_background_refresh_active=self.is_background_refresh_active,
            total_memory=total,
            available_memory=available,
            is_destroyed=self.is_destroyed,
        )

    def health_check(self) -> HealthStatus:
        usage = self.get_resource_usage()
        issues: List[str] = []

        if usage.is_destroyed:
            issues.append("Data manager has been destroyed")
        if usage.memory_usage_percent > MEMORY_PRESSURE_PERCENT:
            issues.append(f"Memory usage too high: {usage.memory_usage_percent:.1f}%")
        if usage.waiting_callers > self.config.health_max_waiters:
            issues.append(f"Too many waiting callers: {usage.waiting_callers}")
        if self.config.enable_background_refresh and not usage.is_background_refresh_active:
            issues.append("Background refresh is enabled but not running")

        return HealthStatus(is_healthy=not issues, issues=issues, timestamp=self._clock())

    # =========================================================================
    # Teardown
    # =========================================================================

    def destroy(self) -> None:
        """
        Tear the manager down. Idempotent.

        Pending callers are released with ManagerDestroyedError, the timer is
        stopped, the memory tier is emptied for the memory-only strategy and
        the worker pools are shut down.
        """
        with self._state_lock:
            if self._destroyed:
                return
            self._destroyed = True
        self._destroyed_event.set()

        cancelled = self._coordinator.cancel_all(
            ManagerDestroyedError("Data manager was destroyed")
        )
        self.stop_background_refresh()
        if self._resolver.uses_memory_only:
            self._cache.clear_memory()

        self._pipeline_pool.shutdown(wait=False, cancel_futures=True)
        self._fetch_pool.shutdown(wait=False, cancel_futures=True)
        self._publisher.shutdown()
        logger.info(f"Data manager destroyed ({cancelled} pending request(s) cancelled)")

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _ensure_alive(self) -> None:
        if self.is_destroyed:
            raise ManagerDestroyedError("Data manager was destroyed")

    def _run(self, key: str, use_cache: bool, extra_attempts: int) -> BookingRecord:
        self._ensure_alive()
        if not self.config.enable_deduplication:
            key = f"{key}#{next(self._request_ids)}"

        already_in_progress, future = self._coordinator.begin(key)
        if not already_in_progress:
            self._set_state(DataState.loading())
            deadline = time.monotonic() + self.pipeline_timeout(extra_attempts)
            try:
                self._pipeline_pool.submit(
                    self._execute, key, future, use_cache, extra_attempts, deadline
                )
            except RuntimeError:
                # Pool shut down between the liveness check and submit
                self._coordinator.complete(
                    key, error=ManagerDestroyedError("Data manager was destroyed"), future=future
                )

        # The pipeline is bounded by its deadline, so every caller gets its outcome
        return self._coordinator.wait(future)

    def _execute(
        self,
        key: str,
        future: Future,
        use_cache: bool,
        extra_attempts: int,
        deadline: float,
    ) -> None:
        started = time.monotonic()
        try:
            record, cache_hit = self._load(use_cache, extra_attempts, deadline)
        except Exception as e:
            error = classify_error(e)
            if error is not e:
                error.__cause__ = e
            self._performance.record(time.monotonic() - started, succeeded=False)
            self._set_state(DataState.error(str(error)))
            logger.warning(f"Booking request {key} failed: {error}")
            self._coordinator.complete(key, error=error, future=future)
            return
        self._performance.record(time.monotonic() - started, succeeded=True, cache_hit=cache_hit)
        self._coordinator.complete(key, result=record, future=future)

    def _load(
        self, use_cache: bool, extra_attempts: int, deadline: float
    ) -> Tuple[BookingRecord, bool]:
        """Returns the record and whether it came from a cache tier."""
        if use_cache:
            hit = self._cache.read(self._resolver.read_plan())
            if hit is not None:
                cached, tier = hit
                logger.info(f"Booking {cached.record.ship_reference} served from {tier.value} cache")
                self._on_loaded(cached.record)
                return cached.record, True

        record, fetched_at = self._fetch_with_retry(extra_attempts, deadline)
        self._ensure_alive()

        if self._validator is not None:
            result = self._validator.validate_or_raise(record)
            for warning in result.warnings:
                logger.warning(f"Booking {record.ship_reference}: {warning}")

        if record.is_expired(self._clock()):
            self._set_state(DataState.expired())
            raise DataExpiredError(
                f"Booking {record.ship_reference} expired at {record.expiry_time}"
            )

        total, available = safe_memory_info(self._memory_info)
        size = record.size_in_bytes()
        plan = self._resolver.write_plan(size, available, total)
        self._cache.write(plan, record, fetched_at)
        logger.info(
            f"Fetched booking {record.ship_reference} ({format_bytes(size)}), "
            f"cached in {[tier.value for tier in plan]}"
        )

        self._on_loaded(record)
        return record, False

    def _fetch_with_retry(
        self, extra_attempts: int, deadline: float
    ) -> Tuple[BookingRecord, datetime]:
        retrying = build_retrying(
            self._retry_config,
            extra_attempts=extra_attempts,
            stop_event=self._destroyed_event,
            deadline=deadline,
        )
        for attempt in retrying:
            with attempt:
                return self._fetch_once(deadline)
        # Retrying re-raises on give-up, so the loop never falls through
        raise BookingDataError("Retry loop exited without a result")

    def _fetch_once(self, deadline: float) -> Tuple[BookingRecord, datetime]:
        self._ensure_alive()
        timeout = min(self.config.request_timeout, deadline - time.monotonic())
        if timeout <= 0:
            raise FetchTimeoutError("Request deadline passed before the source was called")
        try:
            future = self._fetch_pool.submit(self._source.fetch)
        except RuntimeError as e:
            raise ManagerDestroyedError("Data manager was destroyed") from e

        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            future.cancel()
            logger.error(f"Source fetch timed out after {timeout:.2f}s")
            raise FetchTimeoutError(f"Source fetch timed out after {timeout:.2f}s") from e

        try:
            return future.result(timeout=self.config.request_timeout)
        except FutureTimeoutError as e:
            future.cancel()
            logger.error(f"Source fetch timed out after {self.config.request_timeout}s")
            raise FetchTimeoutError(
                f"Source fetch timed out after {self.config.request_timeout}s"
            ) from e

    def _on_loaded(self, record: BookingRecord) -> None:
        with self._state_lock:
            self._current_record = record
            self._state = DataState.loaded()
        self._publisher.publish(record)

    def _set_state(self, state: DataState) -> None:
        with self._state_lock:
            previous = self._state
            self._state = state
        if previous != state:
            logger.debug(f"State {previous.status.value} -> {state.status.value}")


def build_data_manager(
    settings,
    source: Optional[DataSource] = None,
    memory_info: MemoryInfoProvider = system_memory_info,
    clock: Clock = utc_now,
) -> DataManager:
    """
    Construct a DataManager and its collaborators from Settings.

    Args:
        settings: A config.settings.Settings instance
        source: Overrides the source chosen from settings
        memory_info: Host memory provider
        clock: Time source shared by every component

    Returns:
        A ready DataManager; background refresh is started if enabled
    """
    if source is None:
        if settings.data_source_url:
            source = RemoteDataSource(
                settings.data_source_url,
                timeout=settings.request_timeout,
                clock=clock,
            )
        else:
            source = FileDataSource(settings.data_source_path, clock=clock)

    store: CacheStore = CacheStore(
        CacheConfig(
            max_items=settings.cache_max_items,
            max_memory_mb=settings.cache_max_memory_mb,
            expiration_seconds=settings.cache_expiration_seconds,
            enable_lru=settings.cache_enable_lru,
        ),
        size_of=cached_record_size,
        clock=clock,
    )
    persistent = PersistentLayer(
        settings.cache_directory,
        validity_seconds=settings.persistent_validity_seconds,
        clock=clock,
    )

    validator = None
    if settings.enable_data_validation:
        validator = RecordValidator(ValidationStrictness(settings.validation_strictness))

    resolver = CacheStrategyResolver(settings.cache_strategy)
    manager = DataManager(
        source=source,
        cache=TieredCache(store, persistent, clock=clock),
        resolver=resolver,
        validator=validator,
        retry_config=RetryConfig(
            max_attempts=settings.max_retry_attempts,
            base_delay=settings.retry_delay_seconds,
            max_delay=settings.retry_max_delay,
            backoff=BackoffKind(settings.retry_backoff),
        ),
        config=ManagerConfig(
            request_timeout=settings.request_timeout,
            coalesce_timeout=settings.coalesce_timeout,
            refresh_extra_attempts=settings.refresh_extra_attempts,
            enable_deduplication=settings.enable_request_deduplication,
            enable_background_refresh=settings.enable_background_refresh,
            background_refresh_interval=settings.background_refresh_interval,
            background_refresh_threshold=settings.background_refresh_threshold,
            health_max_waiters=settings.health_max_waiters,
        ),
        memory_info=memory_info,
        clock=clock,
    )

    if settings.enable_background_refresh:
        manager.start_background_refresh()
    logger.info(f"Data manager ready (strategy={resolver.strategy.value})")
    return manager
