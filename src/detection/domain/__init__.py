"""
Detection Domain Layer
======================

Domain layer for capacity-violation detection.

Contains:
- Entities: Room, SensorReading
- Value Objects: ViolationAssessment
- Domain Services: ViolationDetector, SeverityPolicy

This layer is framework-agnostic and contains pure business logic.
"""

from src.detection.domain.entities import Room, SensorReading
from src.detection.domain.value_objects import (
    ViolationAssessment,
    ViolationDetector,
    SeverityPolicy,
    round_half_up,
    build_external_ticket_id,
)

__all__ = [
    "Room",
    "SensorReading",
    "ViolationAssessment",
    "ViolationDetector",
    "SeverityPolicy",
    "round_half_up",
    "build_external_ticket_id",
]
