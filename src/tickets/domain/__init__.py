"""
Ticket Domain Layer
===================

Domain layer for the service-ticket workflow.

Contains:
- Entities: ServiceTicket and its frozen ViolationSnapshot
- Value Objects: LifecycleConfig, SLAStatus
- Domain Services: SLACalculator, TicketQueries, selection strategies

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.tickets.domain.entities import (
    ServiceTicket,
    ViolationSnapshot,
    EnvironmentalData,
    RoomDetails,
)
from src.tickets.domain.value_objects import (
    DEFAULT_FACILITIES_ROSTER,
    DEFAULT_RESOLUTION_NOTES,
    SLACalculator,
    SLAStatus,
    LifecycleConfig,
    TransitionDelayConfig,
    ISelectionStrategy,
    RandomSelectionStrategy,
    RoundRobinSelectionStrategy,
    TicketQueries,
)

__all__ = [
    # Entities
    "ServiceTicket",
    "ViolationSnapshot",
    "EnvironmentalData",
    "RoomDetails",
    # Value Objects & Services
    "DEFAULT_FACILITIES_ROSTER",
    "DEFAULT_RESOLUTION_NOTES",
    "SLACalculator",
    "SLAStatus",
    "LifecycleConfig",
    "TransitionDelayConfig",
    "ISelectionStrategy",
    "RandomSelectionStrategy",
    "RoundRobinSelectionStrategy",
    "TicketQueries",
]
