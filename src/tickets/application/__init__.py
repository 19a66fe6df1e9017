"""
Ticket Application Layer
========================

Application layer for the service-ticket workflow.

Contains:
- Services: lifecycle transitions, manual resolution, queries, SLA
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.tickets.application.dto import (
    ResolveTicketRequest,
    TicketResponse,
    TicketListResponse,
    StatusCountsResponse,
    SLAStatusResponse,
    ViolationDataResponse,
    LifecycleRunResponse,
)
from src.tickets.application.services import (
    TicketLifecycleService,
    TicketResolutionService,
    TicketQueryService,
    SLAEvaluator,
    TicketLockRegistry,
    TransitionResult,
    ITicketRepository,
    ILifecycleConfigProvider,
    utc_now,
)

__all__ = [
    # DTOs
    "ResolveTicketRequest",
    "TicketResponse",
    "TicketListResponse",
    "StatusCountsResponse",
    "SLAStatusResponse",
    "ViolationDataResponse",
    "LifecycleRunResponse",
    # Services
    "TicketLifecycleService",
    "TicketResolutionService",
    "TicketQueryService",
    "SLAEvaluator",
    "TicketLockRegistry",
    "TransitionResult",
    # Interfaces
    "ITicketRepository",
    "ILifecycleConfigProvider",
    "utc_now",
]
