import dataclasses
from datetime import datetime, timedelta, timezone

import pytest

from src.config import TicketSeverity, TicketStatus, TicketType, ViolationReason
from src.core import ValidationException
from src.detection.application import DeduplicationGuard
from src.detection.domain import (
    Room, SensorReading, SeverityPolicy, ViolationDetector,
    build_external_ticket_id, round_half_up
)

from tests.conftest import NOW


def room(capacity=10):
    return Room(id="room-101", name="Conference Room A", capacity=capacity, floor=3, building="HQ")


def reading(occupancy, air_quality=90):
    return SensorReading(
        id="reading-1",
        room_id="room-101",
        occupancy=occupancy,
        temperature=72.5,
        noise_level=55.0,
        air_quality=air_quality,
        timestamp=NOW - timedelta(minutes=1),
    )


class TestViolationDetector:
    def test_over_capacity(self):
        result = ViolationDetector().evaluate(reading(11), room())

        assert result.is_violation
        assert result.reasons == (ViolationReason.OVER_CAPACITY,)
        assert result.violation_percentage == pytest.approx(110.0)

    def test_high_occupancy_with_poor_air(self):
        result = ViolationDetector().evaluate(reading(9, air_quality=60), room())

        assert result.is_violation
        assert result.reasons == (ViolationReason.HIGH_OCCUPANCY_POOR_AIR,)
        assert result.violation_percentage == pytest.approx(90.0)

    def test_both_rules_are_reported(self):
        result = ViolationDetector().evaluate(reading(16, air_quality=50), room())

        assert result.reasons == (
            ViolationReason.OVER_CAPACITY,
            ViolationReason.HIGH_OCCUPANCY_POOR_AIR,
        )

    @pytest.mark.parametrize("occupancy,air_quality", [
        (10, 90),  # at capacity is not over it
        (9, 70),   # air quality 70 is acceptable
        (8, 10),   # below 90% occupancy
        (0, 0),
    ])
    def test_no_violation(self, occupancy, air_quality):
        result = ViolationDetector().evaluate(reading(occupancy, air_quality), room())

        assert not result.is_violation
        assert result.reasons == ()

    def test_zero_capacity_is_rejected(self):
        with pytest.raises(ValidationException):
            ViolationDetector().evaluate(reading(3), room(capacity=0))


class TestSeverityPolicy:
    @pytest.mark.parametrize("percentage,expected", [
        (200, (TicketSeverity.CRITICAL, 1)),
        (150, (TicketSeverity.CRITICAL, 1)),
        (149.9, (TicketSeverity.HIGH, 2)),
        (125, (TicketSeverity.HIGH, 2)),
        (124.9, (TicketSeverity.MEDIUM, 3)),
        (90, (TicketSeverity.MEDIUM, 3)),
    ])
    def test_thresholds(self, percentage, expected):
        assert SeverityPolicy.classify(percentage) == expected


def test_round_half_up():
    assert round_half_up(112.5) == 113
    assert round_half_up(2 / 3 * 100) == 67
    assert round_half_up(160.0) == 160


def test_external_ticket_id_uses_last_seven_millisecond_digits():
    # 2024-01-15T10:00:00Z is 1705312800000 ms since the epoch
    assert build_external_ticket_id(NOW) == "INC2800000"
    later = datetime(2024, 1, 15, 10, 0, 0, 123000, tzinfo=timezone.utc)
    assert build_external_ticket_id(later) == "INC2800123"


class TestTicketFactory:
    def test_builds_queued_critical_ticket(self, factory):
        r = reading(16, air_quality=65)
        assessment = ViolationDetector().evaluate(r, room())

        ticket = factory.create(r, room(), assessment)

        assert ticket.ticket_type == TicketType.CAPACITY_VIOLATION
        assert ticket.status == TicketStatus.QUEUED
        assert ticket.severity == TicketSeverity.CRITICAL
        assert ticket.priority == 1
        assert ticket.title == "Capacity Violation - Conference Room A"
        assert ticket.trigger_reading_id == "reading-1"
        assert ticket.external_ticket_id == "INC2800000"
        assert ticket.external_system == "servicenow"
        assert ticket.created_at == NOW
        assert ticket.updated_at == NOW
        assert ticket.next_transition_at == NOW + timedelta(seconds=5)
        assert ticket.assigned_to is None
        assert ticket.resolved_at is None

    def test_snapshot_captures_reading_and_room(self, factory):
        r = reading(16, air_quality=65)
        ticket = factory.create(r, room(), ViolationDetector().evaluate(r, room()))

        snapshot = ticket.violation_data
        assert snapshot.occupancy == 16
        assert snapshot.capacity == 10
        assert snapshot.violation_percentage == 160
        assert snapshot.environmental_data.temperature == 72.5
        assert snapshot.environmental_data.air_quality == 65
        assert snapshot.environmental_data.noise_level == 55.0
        assert snapshot.room_details.name == "Conference Room A"
        assert snapshot.room_details.floor == 3
        assert snapshot.room_details.building == "HQ"

        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.occupancy = 1

    def test_snapshot_percentage_is_rounded_half_up(self, factory):
        r = reading(9, air_quality=60)
        ticket = factory.create(r, room(capacity=8), ViolationDetector().evaluate(r, room(capacity=8)))

        # 9 / 8 = 112.5%
        assert ticket.violation_data.violation_percentage == 113
        assert ticket.severity == TicketSeverity.MEDIUM

    def test_description_narrative(self, factory):
        r = reading(16, air_quality=65)
        ticket = factory.create(r, room(), ViolationDetector().evaluate(r, room()))

        assert ticket.description == (
            "Automated detection: Room Conference Room A (Floor 3, HQ) "
            "has 16 occupants exceeding capacity of 10. "
            f"Violation detected at {r.timestamp.isoformat()}. "
            "Environmental conditions: 72.5°F, 65/100 air quality, "
            "55.0dB noise level. Immediate facilities intervention required."
        )


class TestDeduplicationGuard:
    async def test_no_tickets(self, ticket_repo):
        guard = DeduplicationGuard(ticket_repo)
        assert not await guard.has_active_ticket("room-101", TicketType.CAPACITY_VIOLATION)

    @pytest.mark.parametrize("status", [
        TicketStatus.QUEUED, TicketStatus.PROCESSING, TicketStatus.ASSIGNED
    ])
    async def test_active_ticket_blocks(self, ticket_repo, make_ticket, status):
        await ticket_repo.create(make_ticket(status=status))

        guard = DeduplicationGuard(ticket_repo)
        assert await guard.has_active_ticket("room-101", TicketType.CAPACITY_VIOLATION)

    async def test_resolved_ticket_does_not_block(self, ticket_repo, make_ticket):
        await ticket_repo.create(make_ticket(status=TicketStatus.RESOLVED, next_transition_at=None))

        guard = DeduplicationGuard(ticket_repo)
        assert not await guard.has_active_ticket("room-101", TicketType.CAPACITY_VIOLATION)

    async def test_other_room_or_type_does_not_block(self, ticket_repo, make_ticket):
        await ticket_repo.create(make_ticket(room_id="room-202"))
        await ticket_repo.create(make_ticket(ticket_type=TicketType.MAINTENANCE))

        guard = DeduplicationGuard(ticket_repo)
        assert not await guard.has_active_ticket("room-101", TicketType.CAPACITY_VIOLATION)
