"""
Ticket Infrastructure Models
============================

SQLAlchemy ORM models for the service-ticket module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base
from src.config import TicketSeverity, TicketStatus, ExternalSystem

ACTIVE_TICKET_PREDICATE = text("status <> 'resolved'")
ACTIVE_TICKET_INDEX = "uq_service_tickets_active_room_type"


class ServiceTicketModel(Base):
    """
    Database model for ServiceTicket entity.

    Maps to the 'service_tickets' table.
    """
    __tablename__ = "service_tickets"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Classification
    room_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ticket_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketSeverity.MEDIUM)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketStatus.QUEUED)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    # Violation details
    trigger_reading_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    violation_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Assignment and resolution
    assigned_to: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # External system label
    external_ticket_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    external_system: Mapped[str] = mapped_column(String(20), nullable=False, default=ExternalSystem.SERVICENOW)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    # Durable lifecycle timer
    next_transition_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # At most one active ticket per (room, type); enforced by the store
        Index(
            ACTIVE_TICKET_INDEX,
            "room_id", "ticket_type",
            unique=True,
            postgresql_where=ACTIVE_TICKET_PREDICATE,
            sqlite_where=ACTIVE_TICKET_PREDICATE,
        ),
        Index("idx_service_tickets_status_created", "status", "created_at"),
        Index("idx_service_tickets_priority_created", "priority", "created_at"),
        Index("idx_service_tickets_next_transition", "next_transition_at"),
    )
