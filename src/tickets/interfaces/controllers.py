"""
Ticket Controllers (API Routes)
===============================

FastAPI routes for the service-ticket dashboard and manual resolution.

Controllers are thin - they delegate to application services.
"""

import time
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database import get_session
from src.tickets.application import (
    TicketQueryService, TicketResolutionService, TicketLifecycleService,
    SLAEvaluator, ILifecycleConfigProvider,
    ResolveTicketRequest, TicketResponse, TicketListResponse,
    StatusCountsResponse, LifecycleRunResponse
)
from src.tickets.infrastructure import (
    SQLAlchemyTicketRepository,
    YAMLLifecycleConfigProvider
)
from src.config import settings

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Service Tickets"])


# ========== Example payloads for Swagger ==========

TICKET_RESPONSE_EXAMPLE = {
    "id": "123e4567-e89b-12d3-a456-426614174000",
    "room_id": "room-101",
    "ticket_type": "capacity_violation",
    "title": "Capacity Violation - Conference Room A",
    "description": "Automated detection: Room Conference Room A (Floor 3, HQ) has 16 occupants exceeding capacity of 10. ...",
    "severity": "critical",
    "status": "assigned",
    "priority": 1,
    "trigger_reading_id": "reading-42",
    "violation_data": {
        "occupancy": 16,
        "capacity": 10,
        "violation_percentage": 160,
        "environmental_data": {"temperature": 74.5, "air_quality": 62, "noise_level": 58.0},
        "room_details": {"name": "Conference Room A", "floor": 3, "building": "HQ"}
    },
    "assigned_to": "Mike Chen - Facilities",
    "assigned_at": "2024-01-15T10:00:13Z",
    "resolved_at": None,
    "resolution_notes": None,
    "external_ticket_id": "INC5300000",
    "external_system": "servicenow",
    "created_at": "2024-01-15T10:00:00Z",
    "updated_at": "2024-01-15T10:00:13Z",
    "next_transition_at": "2024-01-15T10:00:30Z",
    "sla": {
        "health": "on-track",
        "age_hours": 0.01,
        "threshold_hours": 2.0,
        "deadline": "2024-01-15T12:00:00Z",
        "is_overdue": False,
        "age_text": "Just created",
        "priority_label": "P1 - Critical"
    }
}

STATUS_COUNTS_EXAMPLE = {
    "counts": {"queued": 1, "processing": 0, "assigned": 2, "resolved": 7},
    "total": 10
}


# ========== Dependencies ==========

def get_lifecycle_config_provider(request: Request) -> ILifecycleConfigProvider:
    """Hot-reloading manager from app state, or a static YAML load."""
    manager = getattr(request.app.state, "lifecycle_config_manager", None)
    if manager is not None:
        return manager
    return YAMLLifecycleConfigProvider(settings.lifecycle_config_path)


async def get_ticket_repository(
    session: AsyncSession = Depends(get_session)
) -> SQLAlchemyTicketRepository:
    return SQLAlchemyTicketRepository(session)


async def get_query_service(
    ticket_repo: SQLAlchemyTicketRepository = Depends(get_ticket_repository)
) -> TicketQueryService:
    """Get ticket query service instance."""
    return TicketQueryService(ticket_repo)


async def get_sla_evaluator(
    config_provider: ILifecycleConfigProvider = Depends(get_lifecycle_config_provider)
) -> SLAEvaluator:
    return SLAEvaluator(config_provider)


def _to_list_response(tickets, evaluator: SLAEvaluator) -> TicketListResponse:
    sla_by_id = evaluator.evaluate_many(tickets)
    return TicketListResponse(
        tickets=[TicketResponse.from_domain(t, sla_by_id[t.id]) for t in tickets],
        total_count=len(tickets)
    )


# ========== Route Handlers ==========

@router.get(
    "",
    response_model=TicketListResponse,
    summary="List service tickets",
    description="""
    List every service ticket, newest first, each with its current SLA health.

    **Query Parameters:**
    - `status`: Only tickets in this lifecycle status
      (`queued`, `processing`, `assigned`, `resolved`)
    """
)
async def list_tickets(
    status: Optional[str] = Query(None, description="Filter by lifecycle status"),
    query_service: TicketQueryService = Depends(get_query_service),
    evaluator: SLAEvaluator = Depends(get_sla_evaluator)
):
    if status:
        tickets = await query_service.filter_by_status(status)
    else:
        tickets = await query_service.list_tickets()
    return _to_list_response(tickets, evaluator)


@router.get(
    "/counts",
    response_model=StatusCountsResponse,
    summary="Ticket counts per status",
    responses={
        200: {
            "description": "Count for every lifecycle status",
            "content": {"application/json": {"example": STATUS_COUNTS_EXAMPLE}}
        }
    }
)
async def get_status_counts(
    query_service: TicketQueryService = Depends(get_query_service)
):
    counts = await query_service.counts_by_status()
    return StatusCountsResponse(counts=counts, total=sum(counts.values()))


@router.get(
    "/high-priority",
    response_model=TicketListResponse,
    summary="Open high-priority tickets",
    description="""
    Non-resolved tickets with `priority <= max_priority`, most urgent first.
    """
)
async def get_high_priority_tickets(
    max_priority: int = Query(1, ge=1, le=4, description="Highest priority number to include"),
    query_service: TicketQueryService = Depends(get_query_service),
    evaluator: SLAEvaluator = Depends(get_sla_evaluator)
):
    tickets = await query_service.high_priority_open_tickets(max_priority)
    return _to_list_response(tickets, evaluator)


@router.get(
    "/recent",
    response_model=TicketListResponse,
    summary="Recent ticket activity",
    description="""
    Tickets created, assigned or resolved within the last `hours_back` hours,
    most recently updated first.
    """
)
async def get_recent_activity(
    hours_back: float = Query(24, gt=0, le=24 * 30, description="Look-back window in hours"),
    query_service: TicketQueryService = Depends(get_query_service),
    evaluator: SLAEvaluator = Depends(get_sla_evaluator)
):
    tickets = await query_service.recent_activity(hours_back)
    return _to_list_response(tickets, evaluator)


@router.post(
    "/lifecycle/run",
    response_model=LifecycleRunResponse,
    summary="Run one lifecycle poll",
    description="""
    Advance every ticket whose `next_transition_at` has passed by one step.

    The background scheduler calls the same logic on an interval; this
    endpoint lets an external cron drive it instead.
    """
)
async def run_lifecycle(
    session: AsyncSession = Depends(get_session),
    config_provider: ILifecycleConfigProvider = Depends(get_lifecycle_config_provider)
):
    start_time = time.perf_counter()

    service = TicketLifecycleService(SQLAlchemyTicketRepository(session), config_provider)
    summary = await service.process_due_transitions(limit=settings.lifecycle_batch_size)
    await session.commit()

    logger.info(
        "Lifecycle run via API complete",
        extra={**summary, "processing_time_ms": int((time.perf_counter() - start_time) * 1000)}
    )
    return LifecycleRunResponse(**summary)


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get ticket",
    description="Get a single ticket with its frozen violation snapshot and SLA health.",
    responses={
        200: {
            "description": "Ticket details",
            "content": {"application/json": {"example": TICKET_RESPONSE_EXAMPLE}}
        },
        404: {"description": "Ticket not found"}
    }
)
async def get_ticket(
    ticket_id: str,
    query_service: TicketQueryService = Depends(get_query_service),
    evaluator: SLAEvaluator = Depends(get_sla_evaluator)
):
    ticket = await query_service.get_ticket(ticket_id)
    return TicketResponse.from_domain(ticket, evaluator.evaluate(ticket))


@router.post(
    "/{ticket_id}/resolve",
    response_model=TicketResponse,
    summary="Resolve ticket manually",
    description="""
    Fast-forward an active ticket straight to `resolved` with the given notes.

    Resolving an already resolved ticket returns it unchanged.
    """,
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Ticket kept changing during resolution"},
        422: {"description": "Blank resolution notes"}
    }
)
async def resolve_ticket(
    ticket_id: str,
    request: ResolveTicketRequest,
    session: AsyncSession = Depends(get_session),
    evaluator: SLAEvaluator = Depends(get_sla_evaluator)
):
    service = TicketResolutionService(SQLAlchemyTicketRepository(session))
    ticket = await service.resolve(ticket_id, request.resolution_notes)
    await session.commit()

    return TicketResponse.from_domain(ticket, evaluator.evaluate(ticket))


# Export router for inclusion in main app
tickets_router = router
