"""
Detection Domain Entities
=========================

Telemetry reference data consumed by the violation detector.

Both are immutable: rooms are reference data owned elsewhere, readings
are append-only sensor telemetry.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Room:
    """A monitored room and its rated capacity."""
    id: str
    name: str
    capacity: int
    floor: int
    building: str


@dataclass(frozen=True)
class SensorReading:
    """
    One occupancy sample for a room.

    ``air_quality`` is an index from 0 (worst) to 100 (best).
    """
    id: str
    room_id: str
    occupancy: int
    temperature: float
    noise_level: float
    air_quality: int
    timestamp: datetime
