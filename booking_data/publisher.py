"""
Fire-and-forget publication of newly loaded booking records.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional

from .models import BookingRecord

logger = logging.getLogger("booking.publisher")

Subscriber = Callable[[BookingRecord], None]


class Subscription:
    """Handle returned by RecordPublisher.subscribe()."""

    def __init__(self, publisher: "RecordPublisher", token: int):
        self._publisher = publisher
        self._token = token
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._publisher._remove(self._token)
            self.active = False


class RecordPublisher:
    """
    Delivers each published record to every current subscriber.

    Callbacks run on a small worker pool so a slow or failing subscriber
    never blocks the fetch pipeline; their exceptions are logged. Records
    are not replayed to late subscribers.
    """

    def __init__(self, max_workers: int = 2):
        self._subscribers: Dict[int, Subscriber] = {}
        self._next_token = 0
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="booking_publish",
        )

    def subscribe(self, callback: Subscriber) -> Subscription:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = callback
        logger.debug(f"Subscriber {token} added")
        return Subscription(self, token)

    def _remove(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)
        logger.debug(f"Subscriber {token} removed")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, record: BookingRecord) -> int:
        """
        Schedule delivery of record to every subscriber.

        Returns:
            Number of callbacks scheduled
        """
        with self._lock:
            callbacks = list(self._subscribers.values())
            executor = self._executor

        if executor is None:
            return 0

        scheduled = 0
        for callback in callbacks:
            try:
                executor.submit(self._deliver, callback, record)
                scheduled += 1
            except RuntimeError:
                # Executor shut down concurrently
                break
        return scheduled

    @staticmethod
    def _deliver(callback: Subscriber, record: BookingRecord) -> None:
        try:
            callback(record)
        except Exception as e:
            logger.error(f"Subscriber failed for booking {record.ship_reference}: {e}")

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            executor = self._executor
            self._executor = None
            self._subscribers.clear()
        if executor is not None:
            executor.shutdown(wait=wait)
