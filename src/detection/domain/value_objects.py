"""
Detection Value Objects
=======================

Pure classification of telemetry against room capacity.

- ViolationDetector: decides whether one reading is a capacity violation
- SeverityPolicy: maps the violation percentage to severity and priority
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Tuple

from src.detection.domain.entities import Room, SensorReading
from src.config import TicketSeverity, ViolationReason
from src.core import ValidationException

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ViolationAssessment:
    """
    Outcome of evaluating one reading.

    ``violation_percentage`` is unrounded; ``reasons`` lists every rule
    that matched, in rule order.
    """
    is_violation: bool
    violation_percentage: float
    reasons: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def rounded_percentage(self) -> int:
        return round_half_up(self.violation_percentage)


class ViolationDetector:
    """
    Classifies a reading against its room.

    Rules:
    - over capacity: ``occupancy > capacity``
    - high occupancy with poor air: ``occupancy >= 90% of capacity``
      and ``air_quality < 70``
    """

    HIGH_OCCUPANCY_RATIO = 0.9
    POOR_AIR_QUALITY_THRESHOLD = 70

    def evaluate(self, reading: SensorReading, room: Room) -> ViolationAssessment:
        """
        Raises:
            ValidationException: room capacity is zero or negative
        """
        if room.capacity <= 0:
            raise ValidationException(
                f"Room {room.id} has invalid capacity {room.capacity}",
                {"room_id": room.id, "capacity": room.capacity}
            )

        percentage = reading.occupancy / room.capacity * 100
        reasons = []

        if reading.occupancy > room.capacity:
            reasons.append(ViolationReason.OVER_CAPACITY)

        if (
            reading.occupancy >= room.capacity * self.HIGH_OCCUPANCY_RATIO
            and reading.air_quality < self.POOR_AIR_QUALITY_THRESHOLD
        ):
            reasons.append(ViolationReason.HIGH_OCCUPANCY_POOR_AIR)

        return ViolationAssessment(
            is_violation=bool(reasons),
            violation_percentage=percentage,
            reasons=tuple(reasons)
        )


class SeverityPolicy:
    """Severity and priority as a function of the violation percentage."""

    CRITICAL_THRESHOLD = 150
    HIGH_THRESHOLD = 125

    @classmethod
    def classify(cls, violation_percentage: float) -> Tuple[str, int]:
        if violation_percentage >= cls.CRITICAL_THRESHOLD:
            return TicketSeverity.CRITICAL, 1
        if violation_percentage >= cls.HIGH_THRESHOLD:
            return TicketSeverity.HIGH, 2
        return TicketSeverity.MEDIUM, 3


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def build_external_ticket_id(created_at: datetime) -> str:
    """
    ServiceNow-style label: ``INC`` + last 7 digits of epoch milliseconds.

    Two tickets created in the same millisecond get the same label.
    """
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    millis = (created_at - EPOCH) // timedelta(milliseconds=1)
    return f"INC{str(millis)[-7:]}"
