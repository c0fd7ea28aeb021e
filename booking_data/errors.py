"""
Error taxonomy for the booking data layer.

Every failure that crosses the DataManager boundary is a BookingDataError.
Each subclass carries a category, a severity and whether the retry policy
may re-attempt the operation that raised it.
"""
from enum import Enum
from typing import List, Optional


class ErrorCategory(str, Enum):
    """Broad origin of an error."""
    FILE_SYSTEM = "file_system"
    NETWORK = "network"
    DATA_FORMAT = "data_format"
    CACHE = "cache"
    CONFIGURATION = "configuration"
    RESOURCE = "resource"
    INTERNAL = "internal"


class ErrorSeverity(str, Enum):
    """How bad an error is for the user."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def priority(self) -> int:
        return {
            ErrorSeverity.LOW: 1,
            ErrorSeverity.MEDIUM: 2,
            ErrorSeverity.HIGH: 3,
            ErrorSeverity.CRITICAL: 4,
        }[self]


class BookingDataError(Exception):
    """Base class for all booking data errors."""
    category: ErrorCategory = ErrorCategory.INTERNAL
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    retryable: bool = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message or self.__class__.__name__


class NotFoundError(BookingDataError):
    """The data source has no booking data."""
    category = ErrorCategory.FILE_SYSTEM
    severity = ErrorSeverity.LOW


class DecodeError(BookingDataError):
    """The payload is not well-formed booking JSON."""
    category = ErrorCategory.DATA_FORMAT
    severity = ErrorSeverity.HIGH


class ValidationError(BookingDataError):
    """The payload parsed but is semantically invalid."""
    category = ErrorCategory.DATA_FORMAT

    def __init__(self, message: str = "", issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = list(issues or [])


class DataExpiredError(BookingDataError):
    """Freshly fetched data whose embedded expiry has already passed."""
    category = ErrorCategory.DATA_FORMAT
    severity = ErrorSeverity.LOW


class StorageError(BookingDataError):
    """Cache or persistence read/write failure."""
    category = ErrorCategory.CACHE
    severity = ErrorSeverity.HIGH

    def __init__(self, message: str = "", transient: bool = False):
        super().__init__(message)
        self.transient = transient

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.transient


class NetworkError(BookingDataError):
    """Transport failure talking to a remote source."""
    category = ErrorCategory.NETWORK
    retryable = True


class FetchTimeoutError(BookingDataError):
    """An upstream call did not finish within the request timeout."""
    category = ErrorCategory.NETWORK
    retryable = True


class ManagerDestroyedError(BookingDataError):
    """Operation issued to, or pending in, a torn-down DataManager."""
    category = ErrorCategory.RESOURCE
    severity = ErrorSeverity.LOW


def classify_error(error: BaseException) -> BookingDataError:
    """
    Map any exception onto the booking error taxonomy.

    Booking errors pass through unchanged. OS-level I/O failures are
    transient storage errors and bare timeouts become FetchTimeoutError,
    so the retry policy can treat them like their booking equivalents.
    """
    if isinstance(error, BookingDataError):
        return error
    if isinstance(error, TimeoutError):
        return FetchTimeoutError(str(error) or "operation timed out")
    if isinstance(error, FileNotFoundError):
        return NotFoundError(str(error))
    if isinstance(error, OSError):
        return StorageError(str(error), transient=True)
    return BookingDataError(f"{type(error).__name__}: {error}")


def is_retryable(error: BaseException) -> bool:
    """Retry predicate used by the fetch retry policy."""
    return classify_error(error).retryable
