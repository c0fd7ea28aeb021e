"""
Data source interface and implementations.

The DataManager only needs fetch() -> (record, fetched_at). Where the bytes
come from (bundled file, remote endpoint, test double) is the source's
business.
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, Tuple

import requests
from pydantic import ValidationError as PydanticValidationError

from .errors import BookingDataError, DecodeError, NetworkError, NotFoundError, StorageError
from .models import BookingRecord, Clock, utc_now

logger = logging.getLogger("booking.sources")


class DataSource(Protocol):
    """
    Interface for upstream booking data providers.

    Implementations:
    - FileDataSource: bundled JSON file
    - RemoteDataSource: HTTP endpoint
    """

    def fetch(self) -> Tuple[BookingRecord, datetime]:
        """
        Fetch and parse the booking document.

        Returns:
            (record, fetched_at)

        Raises:
            NotFoundError, NetworkError, DecodeError
        """
        ...


def parse_booking_payload(raw: bytes) -> BookingRecord:
    """
    Parse raw JSON bytes into a BookingRecord.

    Raises:
        DecodeError: if the bytes are not JSON or do not match the schema
    """
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise DecodeError(f"Expected a JSON object, got {type(payload).__name__}")

    try:
        return BookingRecord.model_validate(payload)
    except PydanticValidationError as e:
        raise DecodeError(f"Payload does not match booking schema: {e.error_count()} error(s)") from e


class FileDataSource:
    """Reads the booking document from a bundled JSON file."""

    def __init__(self, path: Path, clock: Clock = utc_now):
        self.path = Path(path)
        self._clock = clock

    def fetch(self) -> Tuple[BookingRecord, datetime]:
        if not self.path.exists():
            logger.error(f"Booking file not found: {self.path}")
            raise NotFoundError(f"Booking file not found: {self.path}")

        try:
            raw = self.path.read_bytes()
        except OSError as e:
            logger.warning(f"Failed to read booking file {self.path}: {e}")
            raise StorageError(f"Failed to read {self.path}: {e}", transient=True) from e

        logger.debug(f"Loaded {len(raw)} bytes from {self.path}")
        return parse_booking_payload(raw), self._clock()


class RemoteDataSource:
    """Fetches the booking document from an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        clock: Clock = utc_now,
    ):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock

    def fetch(self) -> Tuple[BookingRecord, datetime]:
        try:
            response = self._session.get(self.url, timeout=self.timeout)
        except requests.Timeout as e:
            raise NetworkError(f"Request to {self.url} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise NetworkError(f"Request to {self.url} failed: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"No booking data at {self.url}")

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            # 5xx and throttling are worth another attempt, other 4xx are not
            if response.status_code >= 500 or response.status_code == 429:
                raise NetworkError(f"Server error {response.status_code} from {self.url}") from e
            raise BookingDataError(f"Unexpected HTTP {response.status_code} from {self.url}") from e

        logger.debug(f"Fetched {len(response.content)} bytes from {self.url}")
        return parse_booking_payload(response.content), self._clock()
