"""
Request coalescing to prevent duplicate upstream fetches.

When several callers ask for the same logical key concurrently, only the
first starts a fetch; everyone, the initiator included, waits on one shared
future that carries the result or the error.
"""
import logging
import threading
import time
from concurrent.futures import Future, InvalidStateError
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ..errors import FetchTimeoutError

logger = logging.getLogger("booking.cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress upstream request."""
    future: Future = field(default_factory=Future)
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoordinator:
    """
    At most one in-flight fetch per key.

    Pattern:
    - begin(key) atomically checks and marks the key in-flight
    - Later callers for the same key get the same Future and count as waiters
    - complete(key, ...) resolves the Future once and clears the marker
    - cancel_all(error) resolves every pending Future with error

    Usage:
        already_running, future = coordinator.begin("booking:get")
        if not already_running:
            pool.submit(run_fetch_then_complete)
        result = coordinator.wait(future)
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Default max seconds a caller waits on a shared future;
                None waits until the future is resolved
        """
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._waiting = 0
        self._coalesced_total = 0

    def begin(self, key: str) -> Tuple[bool, Future]:
        """
        Join an existing in-flight request or register a new one.

        Returns:
            (already_in_progress, shared_future)
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                self._coalesced_total += 1
                logger.debug(f"Coalescing request for {key} (waiters: {in_flight.waiter_count})")
                return True, in_flight.future

            in_flight = InFlightRequest()
            self._in_flight[key] = in_flight
            logger.debug(f"Initiating fetch for {key}")
            return False, in_flight.future

    def wait(self, future: Future, timeout: Optional[float] = None) -> Any:
        """
        Block until the shared outcome is available.

        A timeout ends the request for everyone: the shared future is resolved
        with FetchTimeoutError and the in-flight marker is cleared, so every
        waiter observes the same outcome and a late complete() is ignored.

        Raises:
            FetchTimeoutError: If the outcome does not arrive in time
            Exception: The error the future was resolved with
        """
        timeout = self._timeout if timeout is None else timeout
        with self._lock:
            self._waiting += 1
        try:
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError as e:
                error = FetchTimeoutError(f"Request timed out after {timeout}s")
                error.__cause__ = e
                if self._expire(future, error):
                    logger.error(f"Timeout waiting for coalesced request after {timeout}s")
            # Whoever resolved first decides the outcome
            return future.result()
        finally:
            with self._lock:
                self._waiting -= 1

    def complete(
        self,
        key: str,
        result: Any = None,
        error: Optional[BaseException] = None,
        future: Optional[Future] = None,
    ) -> bool:
        """
        Resolve the key's future and clear the in-flight marker.

        A completion for a key whose future was already resolved (for
        example by cancel_all or a wait timeout) is ignored. When future is
        given, the call only applies while that future is still the key's
        in-flight one, so a late pipeline cannot resolve a newer request.

        Returns:
            True if this call resolved the future
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None and (future is None or in_flight.future is future):
                del self._in_flight[key]
            else:
                in_flight = None

        if in_flight is None:
            logger.debug(f"Ignoring completion for {key}: not in flight")
            return False
        return self._resolve(in_flight.future, result, error)

    def cancel_all(self, error: BaseException) -> int:
        """
        Resolve every pending future with error.

        Returns:
            Number of futures resolved by this call
        """
        with self._lock:
            pending = list(self._in_flight.items())
            self._in_flight.clear()

        resolved = 0
        for key, in_flight in pending:
            if self._resolve(in_flight.future, None, error):
                resolved += 1
                logger.debug(f"Cancelled in-flight request for {key}")
        return resolved

    def _expire(self, future: Future, error: BaseException) -> bool:
        """Clear whichever key owns future and resolve it with error."""
        with self._lock:
            for key, in_flight in list(self._in_flight.items()):
                if in_flight.future is future:
                    del self._in_flight[key]
                    break
        return self._resolve(future, None, error)

    @staticmethod
    def _resolve(future: Future, result: Any, error: Optional[BaseException]) -> bool:
        if future.done():
            return False
        try:
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result)
        except InvalidStateError:
            # Lost a race with another resolver
            return False
        return True

    def is_in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        with self._lock:
            return len(self._in_flight)

    @property
    def waiting_callers(self) -> int:
        """Callers currently blocked in wait()."""
        with self._lock:
            return self._waiting

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics."""
        with self._lock:
            now = time.time()
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
                "waiting_callers": self._waiting,
                "coalesced_total": self._coalesced_total,
                "oldest_request_age": max(
                    (now - r.started_at for r in self._in_flight.values()),
                    default=0.0,
                ),
            }
