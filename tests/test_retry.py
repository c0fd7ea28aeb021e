"""
Error classification and the tenacity retry policy.
"""
import threading
import time

import pytest
from tenacity import wait_fixed, wait_incrementing, wait_none

from booking_data.errors import (
    BookingDataError,
    DataExpiredError,
    DecodeError,
    ErrorSeverity,
    FetchTimeoutError,
    ManagerDestroyedError,
    NetworkError,
    NotFoundError,
    StorageError,
    ValidationError,
    classify_error,
    is_retryable,
)
from booking_data.retry import BackoffKind, RetryConfig, build_retrying


@pytest.mark.parametrize(
    "error, retryable",
    [
        (NetworkError("down"), True),
        (FetchTimeoutError("slow"), True),
        (StorageError("busy", transient=True), True),
        (StorageError("corrupt"), False),
        (ValidationError("bad"), False),
        (DecodeError("bad json"), False),
        (DataExpiredError("old"), False),
        (NotFoundError("missing"), False),
        (ManagerDestroyedError("gone"), False),
        (OSError("io"), True),
        (TimeoutError(), True),
        (ValueError("bug"), False),
    ],
)
def test_is_retryable(error, retryable):
    assert is_retryable(error) is retryable


def test_classify_foreign_errors():
    assert isinstance(classify_error(TimeoutError()), FetchTimeoutError)
    assert isinstance(classify_error(FileNotFoundError("x")), NotFoundError)
    storage = classify_error(PermissionError("denied"))
    assert isinstance(storage, StorageError) and storage.transient
    wrapped = classify_error(KeyError("k"))
    assert type(wrapped) is BookingDataError
    assert "KeyError" in str(wrapped)


def test_booking_errors_pass_through_unchanged():
    error = NetworkError("down")
    assert classify_error(error) is error


def test_severity_priority():
    assert ErrorSeverity.CRITICAL.priority > ErrorSeverity.LOW.priority


def test_budgets():
    assert RetryConfig.default().budget() == 3
    assert RetryConfig.default().budget(extra_attempts=2) == 5
    assert RetryConfig.conservative().budget() == 5
    assert RetryConfig.disabled().budget(extra_attempts=2) == 1


def test_wait_strategies():
    assert isinstance(RetryConfig(backoff=BackoffKind.FIXED).wait_strategy(), wait_fixed)
    assert isinstance(RetryConfig.fast().wait_strategy(), wait_incrementing)
    assert isinstance(RetryConfig(base_delay=0.0).wait_strategy(), wait_none)
    assert isinstance(RetryConfig.disabled().wait_strategy(), wait_none)


def test_retries_until_success():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise NetworkError("down")
        return "ok"

    retrying = build_retrying(RetryConfig(max_attempts=3, base_delay=0.0))
    assert retrying(flaky) == "ok"
    assert len(calls) == 3


def test_non_retryable_error_stops_immediately():
    calls = []

    def broken():
        calls.append(1)
        raise DecodeError("bad json")

    with pytest.raises(DecodeError):
        build_retrying(RetryConfig(max_attempts=5, base_delay=0.0))(broken)
    assert len(calls) == 1


def test_stop_event_ends_retries():
    stop = threading.Event()
    stop.set()
    calls = []

    def flaky():
        calls.append(1)
        raise NetworkError("down")

    with pytest.raises(NetworkError):
        build_retrying(RetryConfig(max_attempts=5, base_delay=0.0), stop_event=stop)(flaky)
    assert len(calls) == 1


def test_worst_case_covers_every_attempt_and_delay():
    assert RetryConfig(max_attempts=3, base_delay=0.0).worst_case_seconds(30.0) == 90.0
    fixed = RetryConfig(max_attempts=3, base_delay=2.0, backoff=BackoffKind.FIXED)
    assert fixed.worst_case_seconds(10.0) == 34.0
    linear = RetryConfig(max_attempts=2, base_delay=1.0, max_delay=5.0, backoff=BackoffKind.LINEAR)
    assert linear.worst_case_seconds(10.0, extra_attempts=1) == 40.0
    assert RetryConfig.disabled().worst_case_seconds(30.0, extra_attempts=2) == 30.0


def test_deadline_stops_retries_and_shortens_delays():
    calls = []

    def flaky():
        calls.append(1)
        raise NetworkError("down")

    config = RetryConfig(max_attempts=10, base_delay=5.0, backoff=BackoffKind.FIXED)
    started = time.monotonic()
    with pytest.raises(NetworkError):
        build_retrying(config, deadline=started + 0.1)(flaky)

    assert time.monotonic() - started < 2.0
    assert len(calls) <= 2
