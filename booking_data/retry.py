"""
Retry policy for upstream fetches, built on tenacity.
"""
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    stop_when_event_set,
    wait_exponential,
    wait_fixed,
    wait_incrementing,
    wait_none,
    wait_random,
)

from .errors import is_retryable

logger = logging.getLogger("booking.retry")

# Extra random delay on top of exponential backoff, as a fraction of base_delay
JITTER_FRACTION = 0.3


class BackoffKind(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryConfig:
    """
    Attempt budget and delay shape.

    max_attempts counts the first try, so 3 means one call plus two retries.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff: BackoffKind = BackoffKind.EXPONENTIAL
    enabled: bool = True

    @classmethod
    def default(cls) -> "RetryConfig":
        return cls()

    @classmethod
    def fast(cls) -> "RetryConfig":
        return cls(max_attempts=2, base_delay=0.5, max_delay=5.0, backoff=BackoffKind.LINEAR)

    @classmethod
    def conservative(cls) -> "RetryConfig":
        return cls(max_attempts=5, base_delay=2.0, max_delay=60.0)

    @classmethod
    def disabled(cls) -> "RetryConfig":
        return cls(max_attempts=1, base_delay=0.0, max_delay=0.0, enabled=False)

    def budget(self, extra_attempts: int = 0) -> int:
        """Total attempts allowed, at least one."""
        if not self.enabled:
            return 1
        return max(1, self.max_attempts + extra_attempts)

    def wait_strategy(self):
        if not self.enabled or self.base_delay <= 0:
            return wait_none()
        if self.backoff == BackoffKind.FIXED:
            return wait_fixed(self.base_delay)
        if self.backoff == BackoffKind.LINEAR:
            return wait_incrementing(
                start=self.base_delay,
                increment=self.base_delay,
                max=self.max_delay,
            )
        return wait_exponential(
            multiplier=self.base_delay, max=self.max_delay
        ) + wait_random(0, self.base_delay * JITTER_FRACTION)

    def longest_wait(self) -> float:
        """Upper bound of a single delay produced by wait_strategy()."""
        if not self.enabled or self.base_delay <= 0:
            return 0.0
        if self.backoff == BackoffKind.FIXED:
            return self.base_delay
        if self.backoff == BackoffKind.LINEAR:
            return self.max_delay
        return self.max_delay + self.base_delay * JITTER_FRACTION

    def worst_case_seconds(self, attempt_timeout: float, extra_attempts: int = 0) -> float:
        """Longest a full retry loop can take when every attempt times out."""
        attempts = self.budget(extra_attempts)
        return attempts * attempt_timeout + (attempts - 1) * self.longest_wait()


def build_retrying(
    config: RetryConfig,
    extra_attempts: int = 0,
    stop_event: Optional[threading.Event] = None,
    deadline: Optional[float] = None,
) -> Retrying:
    """
    Build a tenacity Retrying for one fetch.

    Only errors classified as retryable are re-attempted. When stop_event is
    given, setting it ends the retry loop and cuts any pending delay short.

    Args:
        config: Attempt budget and delay shape
        extra_attempts: Attempts added on top of config.max_attempts
        stop_event: Teardown signal
        deadline: time.monotonic() value after which no new attempt starts;
            delays are shortened so they never run past it

    Returns:
        A Retrying that re-raises the last error when it gives up
    """
    stop = stop_after_attempt(config.budget(extra_attempts))
    sleep = stop_event.wait if stop_event is not None else time.sleep
    if stop_event is not None:
        stop = stop | stop_when_event_set(stop_event)

    if deadline is not None:
        stop = stop | stop_after_delay(max(0.0, deadline - time.monotonic()))
        pause = sleep

        def sleep(seconds: float) -> None:
            pause(max(0.0, min(seconds, deadline - time.monotonic())))

    return Retrying(
        stop=stop,
        wait=config.wait_strategy(),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
        sleep=sleep,
    )
