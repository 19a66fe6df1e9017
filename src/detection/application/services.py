"""
Detection Application Services
==============================

Turns recent telemetry into capacity-violation tickets.

Pipeline per reading:
validate -> room lookup -> detector -> dedup guard -> factory -> insert

The guard is a read-then-decide check. Two concurrent detections for the
same room can both pass it; the ticket store rejects the second insert
through its active-ticket uniqueness rule, and that reading is counted as
suppressed.
"""

import random
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, List, Optional

from pydantic import ValidationError

from src.detection.application.dto import (
    SensorReadingDTO, RoomDTO, ScanStatsResponse
)
from src.detection.domain import (
    Room, SensorReading, ViolationAssessment, ViolationDetector,
    SeverityPolicy, build_external_ticket_id
)
from src.tickets.application import ITicketRepository, ILifecycleConfigProvider, utc_now
from src.tickets.domain import (
    ServiceTicket, ViolationSnapshot, EnvironmentalData, RoomDetails
)
from src.config import settings, TicketType, TicketStatus, ExternalSystem
from src.core import (
    DuplicateActiveTicketException, RepositoryException, ValidationException
)
from src.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)


# ========== Telemetry Interface ==========

class ITelemetrySource(ABC):
    """
    Read access to rooms and sensor readings.

    Records may be dicts or ORM rows; they are validated before use.
    """

    @abstractmethod
    async def get_recent_readings(self, since: datetime) -> List[Any]:
        """Readings with ``timestamp >= since``, newest first."""

    @abstractmethod
    async def get_room(self, room_id: str) -> Optional[Any]:
        """Room record, or None when unknown."""


# ========== Outcomes ==========

class ReadingOutcome(str):
    """What happened to one reading."""
    SKIPPED_INVALID = "skipped_invalid"
    SKIPPED_MISSING_ROOM = "skipped_missing_room"
    NO_VIOLATION = "no_violation"
    SUPPRESSED_DUPLICATE = "suppressed_duplicate"
    TICKET_CREATED = "ticket_created"
    CREATION_FAILED = "creation_failed"


VIOLATION_OUTCOMES = {
    ReadingOutcome.SUPPRESSED_DUPLICATE,
    ReadingOutcome.TICKET_CREATED,
    ReadingOutcome.CREATION_FAILED,
}
SKIPPED_OUTCOMES = {
    ReadingOutcome.SKIPPED_INVALID,
    ReadingOutcome.SKIPPED_MISSING_ROOM,
}


@dataclass
class ScanResult:
    """Counters for one scan."""
    readings_analyzed: int = 0
    violations_detected: int = 0
    tickets_created: int = 0
    duplicates_suppressed: int = 0
    readings_skipped: int = 0
    tickets_failed: int = 0
    timestamp: Optional[datetime] = None

    def record(self, outcome: str) -> None:
        self.readings_analyzed += 1
        if outcome in VIOLATION_OUTCOMES:
            self.violations_detected += 1
        if outcome in SKIPPED_OUTCOMES:
            self.readings_skipped += 1
        if outcome == ReadingOutcome.TICKET_CREATED:
            self.tickets_created += 1
        elif outcome == ReadingOutcome.SUPPRESSED_DUPLICATE:
            self.duplicates_suppressed += 1
        elif outcome == ReadingOutcome.CREATION_FAILED:
            self.tickets_failed += 1

    def to_dict(self) -> dict:
        return asdict(self)

    def to_response(self) -> ScanStatsResponse:
        return ScanStatsResponse(**self.to_dict())


# ========== Domain Services ==========

class DeduplicationGuard:
    """Answers whether a room already has an active ticket of a given type."""

    def __init__(self, ticket_repository: ITicketRepository):
        self._ticket_repo = ticket_repository

    async def has_active_ticket(self, room_id: str, ticket_type: str) -> bool:
        active = await self._ticket_repo.list_active(room_id, ticket_type)
        return len(active) > 0


class TicketFactory:
    """
    Builds a fully populated, queued capacity-violation ticket.

    The violation snapshot is copied out of the reading and room here and
    never recomputed.
    """

    def __init__(
        self,
        config_provider: ILifecycleConfigProvider,
        rng: Optional[random.Random] = None,
        clock=None
    ):
        self._config_provider = config_provider
        self._rng = rng or random.Random()
        self._clock = clock or utc_now

    def create(
        self,
        reading: SensorReading,
        room: Room,
        assessment: ViolationAssessment
    ) -> ServiceTicket:
        now = self._clock()
        severity, priority = SeverityPolicy.classify(assessment.violation_percentage)
        delay = self._config_provider.get_config().delay_after(TicketStatus.QUEUED, self._rng)

        return ServiceTicket(
            id=str(uuid.uuid4()),
            room_id=room.id,
            ticket_type=TicketType.CAPACITY_VIOLATION,
            title=f"Capacity Violation - {room.name}",
            description=self.describe(reading, room),
            severity=severity,
            status=TicketStatus.QUEUED,
            priority=priority,
            created_at=now,
            updated_at=now,
            trigger_reading_id=reading.id,
            violation_data=ViolationSnapshot(
                occupancy=reading.occupancy,
                capacity=room.capacity,
                violation_percentage=assessment.rounded_percentage,
                environmental_data=EnvironmentalData(
                    temperature=reading.temperature,
                    air_quality=reading.air_quality,
                    noise_level=reading.noise_level,
                ),
                room_details=RoomDetails(
                    name=room.name,
                    floor=room.floor,
                    building=room.building,
                ),
            ),
            external_ticket_id=build_external_ticket_id(now),
            external_system=ExternalSystem.SERVICENOW,
            next_transition_at=now + delay if delay is not None else None,
        )

    @staticmethod
    def describe(reading: SensorReading, room: Room) -> str:
        return (
            f"Automated detection: Room {room.name} (Floor {room.floor}, {room.building}) "
            f"has {reading.occupancy} occupants exceeding capacity of {room.capacity}. "
            f"Violation detected at {reading.timestamp.isoformat()}. "
            f"Environmental conditions: {reading.temperature}°F, {reading.air_quality}/100 air quality, "
            f"{reading.noise_level}dB noise level. Immediate facilities intervention required."
        )


# ========== Application Services ==========

class ViolationScanService:
    """
    Scan entry point.

    Each reading is handled independently; a failure on one reading is
    logged and never stops the scan or undoes tickets already created.
    """

    def __init__(
        self,
        telemetry_source: ITelemetrySource,
        ticket_repository: ITicketRepository,
        ticket_factory: TicketFactory,
        detector: Optional[ViolationDetector] = None,
        guard: Optional[DeduplicationGuard] = None,
        clock=None,
        default_window_minutes: Optional[int] = None
    ):
        self._telemetry = telemetry_source
        self._ticket_repo = ticket_repository
        self._factory = ticket_factory
        self._detector = detector or ViolationDetector()
        self._guard = guard or DeduplicationGuard(ticket_repository)
        self._clock = clock or utc_now
        self._default_window = default_window_minutes or settings.detection_window_minutes

    async def scan(self, window_minutes: Optional[int] = None) -> ScanResult:
        """
        Analyse readings from the trailing window, newest first.

        Raises:
            RepositoryException: the readings themselves could not be fetched
        """
        now = self._clock()
        window = window_minutes or self._default_window
        since = now - timedelta(minutes=window)

        result = ScanResult(timestamp=now)
        with log_latency(logger, "Violation scan", window_minutes=window):
            raw_readings = await self._telemetry.get_recent_readings(since)
            for raw in raw_readings:
                result.record(await self.process_reading(raw))

        logger.info("Violation scan complete", extra=result.to_dict())
        return result

    async def process_reading(self, raw: Any) -> str:
        """
        Run one reading through the pipeline and report its outcome.

        Concurrent calls are only safe when each one has its own service
        instance. An ``AsyncSession`` must never be shared between tasks,
        so build each caller's telemetry source and ticket repository on its
        own session. The shared in-memory store has no such limit.
        """
        try:
            reading = SensorReadingDTO.model_validate(raw).to_domain()
        except ValidationError as e:
            logger.warning(
                "Skipping malformed sensor reading",
                extra={"error_count": e.error_count(), "error": str(e)}
            )
            return ReadingOutcome.SKIPPED_INVALID

        try:
            raw_room = await self._telemetry.get_room(reading.room_id)
        except RepositoryException as e:
            logger.error(
                "Room lookup failed",
                extra={"reading_id": reading.id, "room_id": reading.room_id, "error": e.message}
            )
            return ReadingOutcome.SKIPPED_MISSING_ROOM

        if raw_room is None:
            logger.warning(
                "Room not found for reading",
                extra={"reading_id": reading.id, "room_id": reading.room_id}
            )
            return ReadingOutcome.SKIPPED_MISSING_ROOM

        try:
            room = RoomDTO.model_validate(raw_room).to_domain()
            assessment = self._detector.evaluate(reading, room)
        except (ValidationError, ValidationException) as e:
            logger.warning(
                "Skipping reading for malformed room",
                extra={"reading_id": reading.id, "room_id": reading.room_id, "error": str(e)}
            )
            return ReadingOutcome.SKIPPED_INVALID

        if not assessment.is_violation:
            return ReadingOutcome.NO_VIOLATION

        logger.info(
            "Capacity violation detected",
            extra={
                "room_id": room.id,
                "room_name": room.name,
                "occupancy": reading.occupancy,
                "capacity": room.capacity,
                "reasons": list(assessment.reasons)
            }
        )

        return await self._raise_ticket(reading, room, assessment)

    async def _raise_ticket(
        self,
        reading: SensorReading,
        room: Room,
        assessment: ViolationAssessment
    ) -> str:
        try:
            if await self._guard.has_active_ticket(room.id, TicketType.CAPACITY_VIOLATION):
                logger.info(
                    "Active ticket already exists, skipping duplicate",
                    extra={"room_id": room.id, "reading_id": reading.id}
                )
                return ReadingOutcome.SUPPRESSED_DUPLICATE

            ticket = self._factory.create(reading, room, assessment)
            await self._ticket_repo.create(ticket)
        except DuplicateActiveTicketException:
            logger.info(
                "Concurrent detection lost the insert race, ticket discarded",
                extra={"room_id": room.id, "reading_id": reading.id}
            )
            return ReadingOutcome.SUPPRESSED_DUPLICATE
        except RepositoryException as e:
            logger.error(
                "Failed to create service ticket",
                extra={"room_id": room.id, "reading_id": reading.id, "error": e.message}
            )
            return ReadingOutcome.CREATION_FAILED

        logger.info(
            "Service ticket created",
            extra={
                "ticket_id": ticket.id,
                "external_ticket_id": ticket.external_ticket_id,
                "room_id": room.id,
                "severity": ticket.severity,
                "priority": ticket.priority
            }
        )
        return ReadingOutcome.TICKET_CREATED
