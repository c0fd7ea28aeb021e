"""
Semantic validation of parsed booking records.

Parsing (sources.parse_booking_payload) guarantees shape; this module checks
the business invariants, with a configurable strictness level.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from .errors import ValidationError
from .models import BookingRecord

logger = logging.getLogger("booking.validation")

SHIP_REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9]{3,20}$")


class ValidationStrictness(str, Enum):
    """How many rules the validator applies."""
    STRICT = "strict"
    NORMAL = "normal"
    LENIENT = "lenient"
    DISABLED = "disabled"


@dataclass
class ValidationResult:
    """Outcome of validating one record."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class RecordValidator:
    """
    Validates a BookingRecord.

    Levels are cumulative:
    - lenient: non-empty reference, at least one segment
    - normal: + non-empty token, unique segment ids, non-empty location codes
    - strict: + alphanumeric 3-20 char reference, positive duration
    """

    def __init__(self, strictness: ValidationStrictness = ValidationStrictness.NORMAL):
        self.strictness = ValidationStrictness(strictness)

    def validate(self, record: BookingRecord) -> ValidationResult:
        if self.strictness == ValidationStrictness.DISABLED:
            return ValidationResult(is_valid=True)

        errors: List[str] = []
        warnings: List[str] = []

        # Required fields
        if not record.ship_reference:
            errors.append("shipReference must not be empty")
        if not record.segments:
            errors.append("segments must not be empty")

        if self.strictness in (ValidationStrictness.NORMAL, ValidationStrictness.STRICT):
            if not record.ship_token:
                errors.append("shipToken must not be empty")

            ids = [segment.id for segment in record.segments]
            if len(ids) != len(set(ids)):
                errors.append("segment ids must be unique within a booking")

            for index, segment in enumerate(record.segments):
                pair = segment.origin_and_destination_pair
                if not pair.origin.code:
                    errors.append(f"segments[{index}].origin.code must not be empty")
                if not pair.destination.code:
                    errors.append(f"segments[{index}].destination.code must not be empty")

            for index in range(len(record.segments) - 1):
                current = record.segments[index].origin_and_destination_pair
                following = record.segments[index + 1].origin_and_destination_pair
                if current.destination.code != following.origin.code:
                    warnings.append(
                        f"segments[{index}]-segments[{index + 1}] are not connected: "
                        f"{current.destination.code} -> {following.origin.code}"
                    )

        if self.strictness == ValidationStrictness.STRICT:
            if record.ship_reference and not SHIP_REFERENCE_PATTERN.match(record.ship_reference):
                errors.append(f"shipReference has an invalid format: {record.ship_reference}")
            if record.duration <= 0:
                errors.append("duration must be greater than 0")

        for warning in warnings:
            logger.debug(f"Validation warning: {warning}")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def validate_or_raise(self, record: BookingRecord) -> ValidationResult:
        """Validate and raise ValidationError listing every failed rule."""
        result = self.validate(record)
        if not result.is_valid:
            raise ValidationError("; ".join(result.errors), issues=result.errors)
        return result
