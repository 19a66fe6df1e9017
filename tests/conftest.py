"""Shared fixtures: a controllable clock, in-memory stores and builders."""

import random
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from src.config import TicketSeverity, TicketStatus, TicketType
from src.detection.application import ITelemetrySource, TicketFactory, ViolationScanService
from src.tickets.application import (
    ILifecycleConfigProvider, TicketLifecycleService, TicketLockRegistry,
    TicketResolutionService, TicketQueryService
)
from src.tickets.domain import (
    LifecycleConfig, RoundRobinSelectionStrategy, ServiceTicket
)
from src.tickets.infrastructure import InMemoryTicketRepository

NOW = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StaticConfigProvider(ILifecycleConfigProvider):
    def __init__(self, config: LifecycleConfig | None = None):
        self.config = config or LifecycleConfig()

    def get_config(self) -> LifecycleConfig:
        return self.config


class FakeTelemetrySource(ITelemetrySource):
    """Rooms and readings held as plain dicts, like rows from an API."""

    def __init__(self):
        self.rooms = {}
        self.readings = []

    def add_room(self, room_id="room-101", name="Conference Room A", capacity=10,
                 floor=3, building="HQ"):
        self.rooms[room_id] = {
            "id": room_id, "name": name, "capacity": capacity,
            "floor": floor, "building": building,
        }
        return self.rooms[room_id]

    def add_reading(self, room_id="room-101", occupancy=5, air_quality=90,
                    temperature=72.5, noise_level=55.0, timestamp=None, reading_id=None):
        reading = {
            "id": reading_id or f"reading-{len(self.readings) + 1}",
            "room_id": room_id,
            "occupancy": occupancy,
            "temperature": temperature,
            "noise_level": noise_level,
            "air_quality": air_quality,
            "timestamp": timestamp or NOW - timedelta(minutes=1),
        }
        self.readings.append(reading)
        return reading

    async def get_recent_readings(self, since):
        recent = [r for r in self.readings if r["timestamp"] >= since]
        return sorted(recent, key=lambda r: r["timestamp"], reverse=True)

    async def get_room(self, room_id):
        return self.rooms.get(room_id)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def config_provider():
    return StaticConfigProvider()


@pytest.fixture
def ticket_repo():
    return InMemoryTicketRepository()


@pytest.fixture
def telemetry():
    return FakeTelemetrySource()


@pytest.fixture
def locks():
    return TicketLockRegistry()


@pytest.fixture
def factory(config_provider, clock):
    return TicketFactory(config_provider, rng=random.Random(7), clock=clock)


@pytest.fixture
def scan_service(telemetry, ticket_repo, factory, clock):
    return ViolationScanService(
        telemetry_source=telemetry,
        ticket_repository=ticket_repo,
        ticket_factory=factory,
        clock=clock,
        default_window_minutes=5,
    )


@pytest.fixture
def lifecycle_service(ticket_repo, config_provider, clock, locks):
    return TicketLifecycleService(
        ticket_repo,
        config_provider,
        selector=RoundRobinSelectionStrategy(),
        rng=random.Random(7),
        clock=clock,
        locks=locks,
    )


@pytest.fixture
def resolution_service(ticket_repo, clock, locks):
    return TicketResolutionService(ticket_repo, clock=clock, locks=locks)


@pytest.fixture
def query_service(ticket_repo, clock):
    return TicketQueryService(ticket_repo, clock=clock)


@pytest.fixture
def make_ticket():
    """Builder for tickets with sensible defaults."""

    def _make(**overrides) -> ServiceTicket:
        created_at = overrides.pop("created_at", NOW)
        fields = {
            "id": str(uuid.uuid4()),
            "room_id": "room-101",
            "ticket_type": TicketType.CAPACITY_VIOLATION,
            "title": "Capacity Violation - Conference Room A",
            "description": "Automated detection",
            "severity": TicketSeverity.MEDIUM,
            "status": TicketStatus.QUEUED,
            "priority": 3,
            "created_at": created_at,
            "updated_at": overrides.pop("updated_at", created_at),
            "next_transition_at": created_at + timedelta(seconds=5),
        }
        fields.update(overrides)
        return ServiceTicket(**fields)

    return _make
