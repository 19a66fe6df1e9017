"""
Ticket Application DTOs
=======================

Data Transfer Objects for the ticket API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from src.tickets.domain import ServiceTicket, SLAStatus


# ========== Type Aliases for Literals ==========
TicketTypeStr = Literal["capacity_violation", "maintenance", "environmental"]
SeverityStr = Literal["low", "medium", "high", "critical"]
TicketStatusStr = Literal["queued", "processing", "assigned", "resolved"]
SLAHealthStr = Literal["on-track", "at-risk", "overdue"]


# ========== Request DTOs ==========

class ResolveTicketRequest(BaseModel):
    """Request model for manual ticket resolution."""
    resolution_notes: str = Field(..., min_length=1, max_length=2000, description="What was done")

    @field_validator("resolution_notes")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("resolution_notes must not be blank")
        return v


# ========== Response DTOs ==========

class EnvironmentalDataResponse(BaseModel):
    temperature: Optional[float] = None
    air_quality: Optional[int] = None
    noise_level: Optional[float] = None


class RoomDetailsResponse(BaseModel):
    name: Optional[str] = None
    floor: Optional[int] = None
    building: Optional[str] = None


class ViolationDataResponse(BaseModel):
    """Frozen snapshot captured when the ticket was raised."""
    occupancy: int
    capacity: int
    violation_percentage: int
    environmental_data: EnvironmentalDataResponse
    room_details: RoomDetailsResponse


class SLAStatusResponse(BaseModel):
    """SLA health of a ticket at read time."""
    health: SLAHealthStr
    age_hours: float
    threshold_hours: float
    deadline: datetime
    is_overdue: bool
    age_text: str
    priority_label: str

    @classmethod
    def from_domain(cls, sla: SLAStatus) -> "SLAStatusResponse":
        return cls(
            health=sla.health,
            age_hours=round(sla.age_hours, 2),
            threshold_hours=sla.threshold_hours,
            deadline=sla.deadline,
            is_overdue=sla.is_overdue,
            age_text=sla.age_text,
            priority_label=sla.priority_label,
        )


class TicketResponse(BaseModel):
    """Response model for a service ticket."""
    id: str
    room_id: str
    ticket_type: TicketTypeStr
    title: str
    description: str
    severity: SeverityStr
    status: TicketStatusStr
    priority: int = Field(..., ge=1, le=4)
    trigger_reading_id: Optional[str] = None
    violation_data: Optional[ViolationDataResponse] = None
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    external_ticket_id: Optional[str] = None
    external_system: str
    created_at: datetime
    updated_at: datetime
    next_transition_at: Optional[datetime] = None
    sla: Optional[SLAStatusResponse] = None

    @classmethod
    def from_domain(
        cls,
        ticket: ServiceTicket,
        sla: Optional[SLAStatus] = None
    ) -> "TicketResponse":
        return cls(
            id=ticket.id,
            room_id=ticket.room_id,
            ticket_type=ticket.ticket_type,
            title=ticket.title,
            description=ticket.description,
            severity=ticket.severity,
            status=ticket.status,
            priority=ticket.priority,
            trigger_reading_id=ticket.trigger_reading_id,
            violation_data=(
                ViolationDataResponse(**ticket.violation_data.to_dict())
                if ticket.violation_data else None
            ),
            assigned_to=ticket.assigned_to,
            assigned_at=ticket.assigned_at,
            resolved_at=ticket.resolved_at,
            resolution_notes=ticket.resolution_notes,
            external_ticket_id=ticket.external_ticket_id,
            external_system=ticket.external_system,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            next_transition_at=ticket.next_transition_at,
            sla=SLAStatusResponse.from_domain(sla) if sla else None,
        )


class TicketListResponse(BaseModel):
    tickets: List[TicketResponse] = Field(..., description="Matching tickets")
    total_count: int = Field(..., description="Number of tickets returned")


class StatusCountsResponse(BaseModel):
    counts: Dict[str, int] = Field(..., description="Ticket count per status")
    total: int


class LifecycleRunResponse(BaseModel):
    """Result of one lifecycle poll."""
    due: int
    applied: int
    skipped: int
    failed: int
