"""
RoomWatch Ticketing - Main Application
======================================

Capacity-violation detection and facilities service-ticket lifecycle.

Modules:
- Detection: turn room telemetry into capacity-violation tickets
- Service Tickets: timed lifecycle, manual resolution, SLA health, dashboard queries

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, config watcher, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from src.config import settings
from src.core import ApplicationException

# Infrastructure
from src.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context
)

# Ticket Module - External services
from src.tickets.infrastructure.external import LifecycleConfigManager, LifecycleScheduler
from src.tickets.infrastructure import SQLAlchemyTicketRepository
from src.tickets.application import TicketLifecycleService

# Detection Module
from src.detection.application import ViolationScanService, TicketFactory
from src.detection.infrastructure import SQLAlchemyTelemetrySource

# Module Routers
from src.detection.interfaces import detection_router
from src.tickets.interfaces import tickets_router

# Shared API
from src.shared.api import (
    CorrelationIDMiddleware,
    MetricsMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)

# Logging
from src.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)

# Global service instances
lifecycle_config_manager = None
lifecycle_scheduler = None


async def lifecycle_poll_job() -> None:
    """Background job: advance every ticket whose timer has expired."""
    async with get_session_context() as session:
        service = TicketLifecycleService(
            SQLAlchemyTicketRepository(session), lifecycle_config_manager
        )
        await service.process_due_transitions(limit=settings.lifecycle_batch_size)


async def violation_scan_job() -> None:
    """Background job: scan the trailing telemetry window."""
    async with get_session_context() as session:
        service = ViolationScanService(
            telemetry_source=SQLAlchemyTelemetrySource(session),
            ticket_repository=SQLAlchemyTicketRepository(session),
            ticket_factory=TicketFactory(lifecycle_config_manager)
        )
        await service.scan()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database
    3. Create database tables
    4. Load lifecycle policy and watch it for changes
    5. Start lifecycle poller and periodic scan

    SHUTDOWN:
    1. Stop scheduler
    2. Stop config watcher
    3. Close database connections
    """
    global lifecycle_config_manager, lifecycle_scheduler

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting RoomWatch Ticketing", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    logger.info("Creating database tables")
    try:
        await create_tables()
    except (OSError, SQLAlchemyError) as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    logger.info("Loading lifecycle configuration")
    lifecycle_config_manager = LifecycleConfigManager()
    lifecycle_config_manager.load(settings.lifecycle_config_path)
    lifecycle_config_manager.start_watching()
    app.state.lifecycle_config_manager = lifecycle_config_manager
    app.state.settings = settings

    # Ticket timers live in the database, so a restart resumes where it stopped
    lifecycle_scheduler = LifecycleScheduler(
        poll_interval_seconds=settings.lifecycle_poll_interval,
        scan_interval_seconds=settings.detection_scan_interval
    )
    await lifecycle_scheduler.start(lifecycle_poll_job, violation_scan_job)

    logger.info("RoomWatch Ticketing started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down RoomWatch Ticketing")

    if lifecycle_scheduler:
        await lifecycle_scheduler.stop()

    if lifecycle_config_manager:
        lifecycle_config_manager.stop_watching()

    await close_database()

    logger.info("RoomWatch Ticketing shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="RoomWatch Ticketing API",
    description="""
    ## Room Capacity Violation Detection & Service Tickets

    ---

    ### Detection Module

    - `POST /detection/scan` - Scan recent sensor readings and raise tickets

    A reading is a violation when occupancy exceeds room capacity, or when
    occupancy is at 90% of capacity or more while air quality is below 70.
    A room never has more than one active capacity-violation ticket.

    ---

    ### Service Ticket Module

    - `GET /tickets` - List tickets (optionally by `status`)
    - `GET /tickets/counts` - Ticket count per status
    - `GET /tickets/high-priority` - Open tickets at or above a priority
    - `GET /tickets/recent` - Tickets created, assigned or resolved recently
    - `GET /tickets/{id}` - Ticket with SLA health
    - `POST /tickets/{id}/resolve` - Manual resolution
    - `POST /tickets/lifecycle/run` - Apply due lifecycle transitions now

    **Lifecycle:** `queued` -> `processing` -> `assigned` -> `resolved`,
    each step after a configurable delay.

    **SLA thresholds (hours):** P1 2, P2 8, P3 24, P4 72; at risk from 80%.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(detection_router)
app.include_router(tickets_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "lifecycle_config": "loaded",
                        "scheduler": "running"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """Health check endpoint for load balancers and orchestrators."""
    manager = getattr(request.app.state, "lifecycle_config_manager", None)
    checks = {
        "lifecycle_config": "loaded" if manager is not None else "not_loaded",
        "scheduler": (
            "running" if lifecycle_scheduler and lifecycle_scheduler.is_running else "stopped"
        )
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "detection": {
                "prefix": "/detection",
                "endpoints": [
                    "POST /detection/scan - Scan telemetry for capacity violations"
                ]
            },
            "tickets": {
                "prefix": "/tickets",
                "endpoints": [
                    "GET /tickets - List tickets",
                    "GET /tickets/counts - Counts per status",
                    "GET /tickets/high-priority - Open high-priority tickets",
                    "GET /tickets/recent - Recent activity",
                    "GET /tickets/{id} - Ticket with SLA health",
                    "POST /tickets/{id}/resolve - Resolve manually",
                    "POST /tickets/lifecycle/run - Apply due transitions"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
