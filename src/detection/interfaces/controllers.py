"""
Detection Controllers (API Routes)
==================================

FastAPI routes for triggering capacity-violation scans.

Controllers are thin - they delegate to application services.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database import get_session
from src.detection.application import (
    ViolationScanService, TicketFactory, ScanResponse
)
from src.detection.infrastructure import SQLAlchemyTelemetrySource
from src.tickets.application import ILifecycleConfigProvider
from src.tickets.infrastructure import SQLAlchemyTicketRepository
from src.tickets.interfaces.controllers import get_lifecycle_config_provider

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/detection", tags=["Violation Detection"])


SCAN_RESPONSE_EXAMPLE = {
    "success": True,
    "message": "Analyzed 12 readings: 2 violations, 1 ticket created, 1 duplicate suppressed",
    "stats": {
        "readings_analyzed": 12,
        "violations_detected": 2,
        "tickets_created": 1,
        "duplicates_suppressed": 1,
        "readings_skipped": 0,
        "tickets_failed": 0,
        "timestamp": "2024-01-15T10:00:00Z"
    }
}


# ========== Dependencies ==========

async def get_scan_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ILifecycleConfigProvider = Depends(get_lifecycle_config_provider)
) -> ViolationScanService:
    """Get violation scan service instance."""
    return ViolationScanService(
        telemetry_source=SQLAlchemyTelemetrySource(session),
        ticket_repository=SQLAlchemyTicketRepository(session),
        ticket_factory=TicketFactory(config_provider)
    )


# ========== Route Handlers ==========

@router.post(
    "/scan",
    response_model=ScanResponse,
    summary="Scan recent telemetry for capacity violations",
    description="""
    Analyse sensor readings from the trailing window and raise a queued
    capacity-violation ticket for every violating room without an active one.

    **Violation rules:**
    - occupancy above room capacity
    - occupancy at 90% of capacity or more with air quality below 70

    **Severity:** `critical`/P1 at 150% of capacity or more, `high`/P2 at 125%,
    otherwise `medium`/P3.
    """,
    responses={
        200: {
            "description": "Scan finished",
            "content": {"application/json": {"example": SCAN_RESPONSE_EXAMPLE}}
        }
    }
)
async def scan_for_violations(
    window_minutes: Optional[int] = Query(None, ge=1, le=1440, description="Trailing window in minutes"),
    session: AsyncSession = Depends(get_session),
    scan_service: ViolationScanService = Depends(get_scan_service)
):
    result = await scan_service.scan(window_minutes)
    await session.commit()

    return ScanResponse(
        success=True,
        message=(
            f"Analyzed {result.readings_analyzed} readings: "
            f"{result.violations_detected} violations, "
            f"{result.tickets_created} tickets created, "
            f"{result.duplicates_suppressed} duplicates suppressed"
        ),
        stats=result.to_response()
    )


# Export router for inclusion in main app
detection_router = router
