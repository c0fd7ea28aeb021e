"""
RequestCoordinator: one in-flight fetch per key, shared outcome.
"""
import threading

import pytest

from booking_data.cache import RequestCoordinator
from booking_data.errors import FetchTimeoutError, ManagerDestroyedError, NetworkError

from conftest import wait_until


def test_first_begin_initiates_later_ones_join():
    coordinator = RequestCoordinator()
    started, future = coordinator.begin("booking:get")
    joined, shared = coordinator.begin("booking:get")

    assert started is False
    assert joined is True
    assert shared is future
    assert coordinator.active_requests == 1


def test_complete_resolves_and_clears_marker():
    coordinator = RequestCoordinator()
    _, future = coordinator.begin("booking:get")

    assert coordinator.complete("booking:get", result="record") is True
    assert coordinator.wait(future) == "record"
    assert coordinator.active_requests == 0
    assert coordinator.is_in_flight("booking:get") is False


def test_complete_with_error_raises_in_waiters():
    coordinator = RequestCoordinator()
    _, future = coordinator.begin("booking:get")
    coordinator.complete("booking:get", error=NetworkError("down"))

    with pytest.raises(NetworkError):
        coordinator.wait(future)


def test_all_concurrent_callers_share_one_outcome():
    coordinator = RequestCoordinator()
    _, initiator_future = coordinator.begin("booking:get")
    results = []
    lock = threading.Lock()

    def caller():
        _, future = coordinator.begin("booking:get")
        value = coordinator.wait(future, timeout=5)
        with lock:
            results.append(value)

    threads = [threading.Thread(target=caller) for _ in range(5)]
    for thread in threads:
        thread.start()
    assert wait_until(lambda: coordinator.waiting_callers == 5)

    coordinator.complete("booking:get", result="shared")
    for thread in threads:
        thread.join(timeout=5)

    assert results == ["shared"] * 5
    assert coordinator.waiting_callers == 0
    assert coordinator.get_stats()["coalesced_total"] == 5


def test_keys_are_independent():
    coordinator = RequestCoordinator()
    get_started, get_future = coordinator.begin("booking:get")
    refresh_started, refresh_future = coordinator.begin("booking:refresh")

    assert get_started is False
    assert refresh_started is False
    assert get_future is not refresh_future

    coordinator.complete("booking:refresh", result="fresh")
    assert coordinator.wait(refresh_future) == "fresh"
    assert coordinator.is_in_flight("booking:get")


def test_cancel_all_resolves_pending_and_ignores_late_completion():
    coordinator = RequestCoordinator()
    _, get_future = coordinator.begin("booking:get")
    _, refresh_future = coordinator.begin("booking:refresh")

    assert coordinator.cancel_all(ManagerDestroyedError("gone")) == 2

    with pytest.raises(ManagerDestroyedError):
        coordinator.wait(get_future)
    with pytest.raises(ManagerDestroyedError):
        coordinator.wait(refresh_future)
    assert coordinator.complete("booking:get", result="late") is False
    assert coordinator.active_requests == 0


def test_wait_timeout():
    coordinator = RequestCoordinator()
    _, future = coordinator.begin("booking:get")

    with pytest.raises(FetchTimeoutError):
        coordinator.wait(future, timeout=0.05)
    assert coordinator.waiting_callers == 0


def test_wait_timeout_ends_the_request_for_every_waiter():
    coordinator = RequestCoordinator()
    _, future = coordinator.begin("booking:get")
    _, joined = coordinator.begin("booking:get")

    with pytest.raises(FetchTimeoutError) as first:
        coordinator.wait(future, timeout=0.05)

    # A slower waiter on the same request sees the same error, not a late result
    assert coordinator.is_in_flight("booking:get") is False
    assert coordinator.complete("booking:get", result="late") is False
    with pytest.raises(FetchTimeoutError) as second:
        coordinator.wait(joined, timeout=5)
    assert second.value is first.value


def test_stale_completion_does_not_resolve_a_newer_request():
    coordinator = RequestCoordinator()
    _, stale = coordinator.begin("booking:get")
    with pytest.raises(FetchTimeoutError):
        coordinator.wait(stale, timeout=0.05)

    _, current = coordinator.begin("booking:get")
    assert coordinator.complete("booking:get", result="stale", future=stale) is False
    assert coordinator.is_in_flight("booking:get")

    assert coordinator.complete("booking:get", result="fresh", future=current) is True
    assert coordinator.wait(current) == "fresh"


def test_stats():
    coordinator = RequestCoordinator()
    coordinator.begin("booking:get")
    stats = coordinator.get_stats()

    assert stats["active_requests"] == 1
    assert stats["active_keys"] == ["booking:get"]
    assert stats["oldest_request_age"] >= 0
