"""
SQLite-backed durable tier.

Holds exactly one booking envelope that survives process restarts. The
envelope carries its own validity window, independent of the memory tier.
"""
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from ..errors import StorageError
from ..models import BookingRecord, CachedRecord, Clock, utc_now

logger = logging.getLogger("booking.cache.persistent")

DB_FILENAME = "booking_cache.db"
DEFAULT_VALIDITY_SECONDS = 300.0
SLOT_KEY = "current"


SCHEMA = """
CREATE TABLE IF NOT EXISTS booking_cache (
    slot TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    saved_at TEXT NOT NULL
);
"""


class PersistentLayer:
    """
    Single-slot durable store for the current booking record.

    - save(): replaces the slot with {record, fetchedAt, expiry}
    - load(): returns the stored envelope whatever its validity
    - clear(): idempotent
    - is_valid() / get_info(): validity against the layer's own window

    Read-modify-write sequences are serialized by an instance lock.
    """

    def __init__(
        self,
        directory: Path,
        validity_seconds: float = DEFAULT_VALIDITY_SECONDS,
        clock: Clock = utc_now,
    ):
        self.db_path = Path(directory) / DB_FILENAME
        self.validity_seconds = validity_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        """Create the cache directory and schema."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._get_connection() as conn:
                conn.executescript(SCHEMA)
                conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Failed to initialise cache database {self.db_path}: {e}") from e

    @contextmanager
    def _get_connection(self):
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # =========================================================================
    # Slot operations
    # =========================================================================

    def save(self, record: BookingRecord, fetched_at: datetime) -> CachedRecord:
        """
        Persist a record, replacing any prior value.

        Args:
            record: The booking record
            fetched_at: When the record was obtained from the source

        Returns:
            The stored envelope

        Raises:
            StorageError: If serialization or the write fails
        """
        cached = CachedRecord.create(record, fetched_at, self.validity_seconds)
        try:
            payload = json.dumps(cached.to_dict())
        except (TypeError, ValueError) as e:
            raise StorageError(f"Failed to serialize booking record: {e}") from e

        with self._lock:
            try:
                with self._get_connection() as conn:
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO booking_cache (slot, payload, saved_at)
                        VALUES (?, ?, ?)
                        """,
                        (SLOT_KEY, payload, self._clock().isoformat()),
                    )
                    conn.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to write booking cache: {e}") from e

        logger.debug(f"Persisted booking {record.ship_reference} until {cached.expires_at.isoformat()}")
        return cached

    def load(self) -> Optional[CachedRecord]:
        """
        Load the stored envelope.

        Returns:
            The envelope, or None if nothing is stored

        Raises:
            StorageError: If the stored data cannot be read or decoded
        """
        with self._lock:
            try:
                with self._get_connection() as conn:
                    row = conn.execute(
                        "SELECT payload FROM booking_cache WHERE slot = ?",
                        (SLOT_KEY,),
                    ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read booking cache: {e}") from e

        if row is None:
            return None

        try:
            return CachedRecord.from_dict(json.loads(row["payload"]))
        except Exception as e:
            raise StorageError(f"Corrupt booking cache entry: {e}") from e

    def clear(self) -> None:
        """Remove the stored envelope. Succeeds when nothing is stored."""
        with self._lock:
            try:
                with self._get_connection() as conn:
                    conn.execute("DELETE FROM booking_cache WHERE slot = ?", (SLOT_KEY,))
                    conn.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to clear booking cache: {e}") from e
        logger.debug("Cleared persistent booking cache")

    def is_valid(self) -> bool:
        """True iff a stored envelope exists and its window has not passed."""
        try:
            cached = self.load()
        except StorageError as e:
            logger.warning(f"Persistent cache unreadable: {e}")
            return False
        return cached is not None and cached.is_valid(self._clock())

    def get_info(self) -> Tuple[bool, Optional[datetime], Optional[float]]:
        """
        Describe the stored envelope.

        Returns:
            (is_valid, fetched_at, age_seconds); the last two are None when
            nothing readable is stored
        """
        try:
            cached = self.load()
        except StorageError as e:
            logger.warning(f"Persistent cache unreadable: {e}")
            return False, None, None

        if cached is None:
            return False, None, None

        now = self._clock()
        return cached.is_valid(now), cached.fetched_at, cached.age_seconds(now)
