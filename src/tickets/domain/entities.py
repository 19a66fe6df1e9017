"""
Ticket Domain Entities
======================

Pure Python domain entities for the facilities service-ticket workflow.

A ticket only ever moves forward through
``queued -> processing -> assigned -> resolved``. Every transition method
is idempotent: called on a ticket that is not in its source status it
returns ``False`` and leaves every field untouched.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from src.config import (
    TicketStatus, TicketType, ExternalSystem,
    STATUS_ORDER, ACTIVE_STATUSES, VALID_PRIORITIES,
    VALID_SEVERITIES, VALID_TICKET_TYPES
)


@dataclass(frozen=True)
class EnvironmentalData:
    """Environmental readings captured alongside a violation."""
    temperature: float
    air_quality: int
    noise_level: float


@dataclass(frozen=True)
class RoomDetails:
    """Room reference data as it was when the violation was detected."""
    name: str
    floor: int
    building: str


@dataclass(frozen=True)
class ViolationSnapshot:
    """
    Immutable record of what triggered a capacity ticket.

    Captured once by the ticket factory; later changes to the room or
    reading never reach it.
    """
    occupancy: int
    capacity: int
    violation_percentage: int
    environmental_data: EnvironmentalData
    room_details: RoomDetails

    def to_dict(self) -> dict:
        return {
            "occupancy": self.occupancy,
            "capacity": self.capacity,
            "violation_percentage": self.violation_percentage,
            "environmental_data": {
                "temperature": self.environmental_data.temperature,
                "air_quality": self.environmental_data.air_quality,
                "noise_level": self.environmental_data.noise_level,
            },
            "room_details": {
                "name": self.room_details.name,
                "floor": self.room_details.floor,
                "building": self.room_details.building,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ViolationSnapshot":
        env = data.get("environmental_data") or {}
        room = data.get("room_details") or {}
        return cls(
            occupancy=data["occupancy"],
            capacity=data["capacity"],
            violation_percentage=data["violation_percentage"],
            environmental_data=EnvironmentalData(
                temperature=env.get("temperature"),
                air_quality=env.get("air_quality"),
                noise_level=env.get("noise_level"),
            ),
            room_details=RoomDetails(
                name=room.get("name"),
                floor=room.get("floor"),
                building=room.get("building"),
            ),
        )


@dataclass
class ServiceTicket:
    """
    Facilities work order raised for a room.

    Created by the ticket factory, mutated only by the lifecycle
    scheduler and the manual resolution path, never deleted.
    """

    # Core attributes
    id: str
    room_id: str
    ticket_type: str
    title: str
    description: str
    severity: str
    status: str
    priority: int

    # Timestamps
    created_at: datetime
    updated_at: datetime

    # Violation details
    trigger_reading_id: Optional[str] = None
    violation_data: Optional[ViolationSnapshot] = None

    # Assignment and resolution
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None

    # External system label (no real integration)
    external_ticket_id: Optional[str] = None
    external_system: str = ExternalSystem.SERVICENOW

    # Durable timer: when the next lifecycle step becomes due
    next_transition_at: Optional[datetime] = field(default=None, compare=False)

    def __post_init__(self):
        """Validate ticket on initialization."""
        if self.ticket_type not in VALID_TICKET_TYPES:
            raise ValueError(f"Unknown ticket type: {self.ticket_type}")
        if self.severity not in VALID_SEVERITIES:
            raise ValueError(f"Unknown severity: {self.severity}")
        if self.status not in STATUS_ORDER:
            raise ValueError(f"Unknown status: {self.status}")
        if self.priority not in VALID_PRIORITIES:
            raise ValueError(f"Priority must be one of {VALID_PRIORITIES}")
        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be before created_at")

    @property
    def is_active(self) -> bool:
        """Anything short of resolved counts as active."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_resolved(self) -> bool:
        return self.status == TicketStatus.RESOLVED

    @property
    def status_rank(self) -> int:
        """Position of the current status in the lifecycle order."""
        return STATUS_ORDER.index(self.status)

    @property
    def is_capacity_violation(self) -> bool:
        return self.ticket_type == TicketType.CAPACITY_VIOLATION

    def dequeue(self, now: datetime) -> bool:
        """queued -> processing."""
        if self.status != TicketStatus.QUEUED:
            return False
        self.status = TicketStatus.PROCESSING
        self.updated_at = now
        return True

    def triage(self, assignee: str, now: datetime) -> bool:
        """processing -> assigned, recording the technician."""
        if self.status != TicketStatus.PROCESSING:
            return False
        self.status = TicketStatus.ASSIGNED
        self.assigned_to = assignee
        self.assigned_at = now
        self.updated_at = now
        return True

    def close(self, resolution_notes: str, now: datetime) -> bool:
        """assigned -> resolved."""
        if self.status != TicketStatus.ASSIGNED:
            return False
        self._mark_resolved(resolution_notes, now)
        return True

    def resolve_manually(self, resolution_notes: str, now: datetime) -> bool:
        """
        Fast-forward any active ticket straight to resolved.

        Skips the processing/assigned steps, so ``assigned_to`` stays
        whatever it was (usually None).
        """
        if self.is_resolved:
            return False
        self._mark_resolved(resolution_notes, now)
        return True

    def schedule_next_transition(self, due_at: Optional[datetime]) -> None:
        self.next_transition_at = None if self.is_resolved else due_at

    def _mark_resolved(self, resolution_notes: str, now: datetime) -> None:
        self.status = TicketStatus.RESOLVED
        self.resolution_notes = resolution_notes
        self.resolved_at = now
        self.updated_at = now
        self.next_transition_at = None

    def copy(self) -> "ServiceTicket":
        """Detached copy; the snapshot is frozen so sharing it is safe."""
        return replace(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "room_id": self.room_id,
            "ticket_type": self.ticket_type,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "status": self.status,
            "priority": self.priority,
            "trigger_reading_id": self.trigger_reading_id,
            "violation_data": self.violation_data.to_dict() if self.violation_data else None,
            "assigned_to": self.assigned_to,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_notes": self.resolution_notes,
            "external_ticket_id": self.external_ticket_id,
            "external_system": self.external_system,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "next_transition_at": (
                self.next_transition_at.isoformat() if self.next_transition_at else None
            ),
        }
