"""
Detection Application Layer
===========================

Application layer for capacity-violation detection.

Contains:
- Services: scan entry point, dedup guard, ticket factory
- DTOs: telemetry validation and scan result serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.detection.application.dto import (
    SensorReadingDTO,
    RoomDTO,
    ScanStatsResponse,
    ScanResponse,
)
from src.detection.application.services import (
    ITelemetrySource,
    DeduplicationGuard,
    TicketFactory,
    ViolationScanService,
    ScanResult,
    ReadingOutcome,
)

__all__ = [
    # DTOs
    "SensorReadingDTO",
    "RoomDTO",
    "ScanStatsResponse",
    "ScanResponse",
    # Services
    "DeduplicationGuard",
    "TicketFactory",
    "ViolationScanService",
    "ScanResult",
    "ReadingOutcome",
    # Interfaces
    "ITelemetrySource",
]
