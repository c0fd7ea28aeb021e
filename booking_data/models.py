"""
Booking domain models.

The payload models mirror the JSON document served by the data source
(camelCase on the wire, snake_case in Python) and are immutable once parsed.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


Clock = Callable[[], datetime]

# Fixed widths used by the byte estimate for non-string scalars
_INT_SIZE = 8
_BOOL_SIZE = 1
_REF_SIZE = 8


def utc_now() -> datetime:
    """Default clock: timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def _utf8_len(value: str) -> int:
    return len(value.encode("utf-8"))


class BookingModel(BaseModel):
    """Base for wire models: frozen, camelCase aliases, snake_case names."""
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class Location(BookingModel):
    """A port/airport style location."""
    code: str
    display_name: str
    url: str

    def size_in_bytes(self) -> int:
        return _utf8_len(self.code) + _utf8_len(self.display_name) + _utf8_len(self.url)


class OriginDestinationPair(BookingModel):
    """Origin and destination of one segment, with city names."""
    destination: Location
    destination_city: str
    origin: Location
    origin_city: str

    def size_in_bytes(self) -> int:
        return (
            self.origin.size_in_bytes()
            + self.destination.size_in_bytes()
            + _utf8_len(self.origin_city)
            + _utf8_len(self.destination_city)
        )

    @property
    def route_description(self) -> str:
        return (
            f"{self.origin.display_name} ({self.origin_city}) -> "
            f"{self.destination.display_name} ({self.destination_city})"
        )


class Segment(BookingModel):
    """One leg of a booking. Ids are unique within a record only."""
    id: int
    origin_and_destination_pair: OriginDestinationPair

    def size_in_bytes(self) -> int:
        return _INT_SIZE + self.origin_and_destination_pair.size_in_bytes()


class BookingRecord(BookingModel):
    """
    The cached domain payload.

    expiry_time is kept exactly as the source encodes it (epoch seconds as a
    string); expires_at exposes it as an aware datetime.
    """
    ship_reference: str
    ship_token: str
    can_issue_ticket_checking: bool
    expiry_time: str
    duration: int
    segments: List[Segment]

    @field_validator("expiry_time", mode="before")
    @classmethod
    def _coerce_expiry(cls, value: Any) -> Any:
        # Some feeds send the timestamp as a number
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def expires_at(self) -> Optional[datetime]:
        """Embedded expiry as a UTC datetime, None when unparseable."""
        try:
            return datetime.fromtimestamp(float(self.expiry_time), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once the embedded expiry has passed. Unparseable counts as expired."""
        expires_at = self.expires_at
        if expires_at is None:
            return True
        return (now or utc_now()) > expires_at

    def size_in_bytes(self) -> int:
        """Byte estimate used by the memory tier and the smart write strategy."""
        size = (
            _utf8_len(self.ship_reference)
            + _utf8_len(self.ship_token)
            + _BOOL_SIZE
            + _utf8_len(self.expiry_time)
            + _INT_SIZE
        )
        for segment in self.segments:
            size += _REF_SIZE + segment.size_in_bytes()
        return size

    def to_payload(self) -> Dict[str, Any]:
        """Wire-format dict (camelCase), the inverse of model_validate."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class CachedRecord:
    """
    A record as held by a cache tier, with that tier's own validity window.

    The memory tier and the disk tier compute expires_at independently, so
    two envelopes of the same record can disagree about validity.
    """
    record: BookingRecord
    fetched_at: datetime
    expires_at: datetime

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) < self.expires_at

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utc_now()) - self.fetched_at).total_seconds()

    @classmethod
    def create(
        cls,
        record: BookingRecord,
        fetched_at: datetime,
        validity_seconds: float,
    ) -> "CachedRecord":
        return cls(
            record=record,
            fetched_at=fetched_at,
            expires_at=fetched_at + timedelta(seconds=validity_seconds),
        )

    def size_in_bytes(self) -> int:
        # Two timestamps on top of the record itself
        return self.record.size_in_bytes() + 2 * _INT_SIZE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.to_payload(),
            "fetchedAt": self.fetched_at.isoformat(),
            "expiry": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedRecord":
        return cls(
            record=BookingRecord.model_validate(data["record"]),
            fetched_at=datetime.fromisoformat(data["fetchedAt"]),
            expires_at=datetime.fromisoformat(data["expiry"]),
        )


class DataStatus(str, Enum):
    """Lifecycle of the manager's current-data slot."""
    LOADING = "loading"
    LOADED = "loaded"
    EXPIRED = "expired"
    ERROR = "error"


@dataclass(frozen=True)
class DataState:
    """Snapshot of the current-data slot."""
    status: DataStatus
    message: Optional[str] = None

    @classmethod
    def loading(cls) -> "DataState":
        return cls(DataStatus.LOADING)

    @classmethod
    def loaded(cls) -> "DataState":
        return cls(DataStatus.LOADED)

    @classmethod
    def expired(cls) -> "DataState":
        return cls(DataStatus.EXPIRED)

    @classmethod
    def error(cls, message: str) -> "DataState":
        return cls(DataStatus.ERROR, message)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"status": self.status.value}
        if self.message is not None:
            result["message"] = self.message
        return result
