"""
Shared fixtures: controllable clock, scripted data source, memory provider
and a DataManager factory wired to a temporary cache directory.
"""
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from booking_data.cache import (
    CacheConfig,
    CacheStore,
    CacheStrategy,
    CacheStrategyResolver,
    PersistentLayer,
    TieredCache,
    cached_record_size,
)
from booking_data.manager import DataManager, ManagerConfig
from booking_data.models import BookingRecord
from booking_data.retry import RetryConfig
from booking_data.validation import RecordValidator

START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
FAR_FUTURE_EXPIRY = "4102444800"  # 2100-01-01
GIB = 1024 * 1024 * 1024


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START):
        self.now = now
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now = self.now + timedelta(seconds=seconds)


class FakeSource:
    """
    Scripted DataSource.

    errors are raised one per call, in order, before the record is returned.
    When gate is given, fetch() blocks until it is set.
    """

    def __init__(
        self,
        record: BookingRecord,
        clock: FakeClock,
        errors: Optional[List[Exception]] = None,
        delay: float = 0.0,
        gate: Optional[threading.Event] = None,
    ):
        self.record = record
        self.clock = clock
        self.errors = list(errors or [])
        self.delay = delay
        self.gate = gate
        self.calls = 0
        self._lock = threading.Lock()

    def fetch(self):
        with self._lock:
            self.calls += 1
            error = self.errors.pop(0) if self.errors else None
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.delay:
            time.sleep(self.delay)
        if error is not None:
            raise error
        return self.record, self.clock()


def make_payload(
    ship_reference: str = "ABCDEF",
    ship_token: str = "AAAABBBCCCCDDD",
    expiry_time: str = FAR_FUTURE_EXPIRY,
    duration: int = 2430,
    segment_ids=(1,),
) -> dict:
    segments = []
    for segment_id in segment_ids:
        segments.append({
            "id": segment_id,
            "originAndDestinationPair": {
                "destination": {"code": "BBB", "displayName": "BBB DisplayName", "url": "www.ship.com"},
                "destinationCity": "BBB City",
                "origin": {"code": "AAA", "displayName": "AAA DisplayName", "url": "www.ship.com"},
                "originCity": "AAA City",
            },
        })
    return {
        "shipReference": ship_reference,
        "shipToken": ship_token,
        "canIssueTicketChecking": False,
        "expiryTime": expiry_time,
        "duration": duration,
        "segments": segments,
    }


def make_record(**kwargs) -> BookingRecord:
    return BookingRecord.model_validate(make_payload(**kwargs))


def epoch(moment: datetime) -> str:
    return str(int(moment.timestamp()))


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def record():
    return make_record()


@pytest.fixture
def plenty_of_memory():
    return lambda: (8 * GIB, 6 * GIB)


@pytest.fixture
def make_manager(tmp_path, clock, plenty_of_memory):
    """Factory for DataManagers; every manager built is destroyed afterwards."""
    built = []

    def factory(
        source,
        strategy: CacheStrategy = CacheStrategy.HYBRID,
        validator: Optional[RecordValidator] = None,
        retry_config: Optional[RetryConfig] = None,
        memory_info=None,
        cache_dir=None,
        **config,
    ) -> DataManager:
        store = CacheStore(CacheConfig(), size_of=cached_record_size, clock=clock)
        persistent = PersistentLayer(cache_dir or tmp_path, clock=clock)
        manager = DataManager(
            source=source,
            cache=TieredCache(store, persistent, clock=clock),
            resolver=CacheStrategyResolver(strategy),
            validator=validator,
            retry_config=retry_config or RetryConfig(max_attempts=3, base_delay=0.0),
            config=ManagerConfig(**config),
            memory_info=memory_info or plenty_of_memory,
            clock=clock,
        )
        built.append(manager)
        return manager

    yield factory

    for manager in built:
        manager.destroy()
