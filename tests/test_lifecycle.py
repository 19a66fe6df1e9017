from datetime import timedelta

import pytest

from src.config import TicketStatus
from src.core import RepositoryException, ResourceNotFoundException, ValidationException
from src.tickets.domain import DEFAULT_FACILITIES_ROSTER, DEFAULT_RESOLUTION_NOTES
from src.tickets.infrastructure import InMemoryTicketRepository
from src.tickets.application import TicketLifecycleService, TicketResolutionService

from tests.conftest import NOW, StaticConfigProvider


class FlakySaveRepository(InMemoryTicketRepository):
    """Fails the next ``failures`` transition writes."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    async def save_transition(self, ticket, expected_status):
        if self.failures > 0:
            self.failures -= 1
            raise RepositoryException("write timed out")
        return await super().save_transition(ticket, expected_status)


class RacingResolveRepository(InMemoryTicketRepository):
    """Loses the first compare-and-set as if another writer moved the ticket."""

    def __init__(self):
        super().__init__()
        self.raced = False

    async def save_transition(self, ticket, expected_status):
        if not self.raced:
            self.raced = True
            stored = self._tickets[ticket.id]
            stored.dequeue(ticket.updated_at)
            return False
        return await super().save_transition(ticket, expected_status)


class TestEntityTransitions:
    def test_transitions_move_forward_only(self, make_ticket):
        ticket = make_ticket()

        assert not ticket.triage("Mike", NOW)
        assert not ticket.close("done", NOW)
        assert ticket.status == TicketStatus.QUEUED
        assert ticket.assigned_to is None

        assert ticket.dequeue(NOW)
        assert not ticket.dequeue(NOW)
        assert ticket.status == TicketStatus.PROCESSING

    def test_resolved_is_terminal(self, make_ticket):
        ticket = make_ticket()
        assert ticket.resolve_manually("Fixed", NOW)

        assert not ticket.dequeue(NOW)
        assert not ticket.resolve_manually("Again", NOW + timedelta(hours=1))
        assert ticket.resolution_notes == "Fixed"
        assert ticket.resolved_at == NOW


def assigned_ticket(make_ticket):
    return make_ticket(
        status=TicketStatus.ASSIGNED, assigned_to="Mike Chen - Facilities",
        assigned_at=NOW + timedelta(seconds=13), updated_at=NOW + timedelta(seconds=13),
        next_transition_at=NOW + timedelta(seconds=30),
    )


def resolved_ticket(make_ticket):
    return make_ticket(
        status=TicketStatus.RESOLVED, assigned_to="Mike Chen - Facilities",
        assigned_at=NOW + timedelta(seconds=13), resolved_at=NOW + timedelta(seconds=30),
        resolution_notes="Room cleared", updated_at=NOW + timedelta(seconds=30),
        next_transition_at=None,
    )


OUT_OF_ORDER_STEPS = [
    ("triage", assigned_ticket),
    ("triage", resolved_ticket),
    ("close", resolved_ticket),
    ("dequeue", resolved_ticket),
]


class TestOutOfOrderStepsChangeNothing:
    @pytest.mark.parametrize("step,build", OUT_OF_ORDER_STEPS)
    def test_entity(self, make_ticket, step, build):
        ticket = build(make_ticket)
        before = ticket.copy()
        later = NOW + timedelta(hours=1)

        applied = {
            "dequeue": lambda: ticket.dequeue(later),
            "triage": lambda: ticket.triage("Sarah Johnson - Maintenance", later),
            "close": lambda: ticket.close("Overridden", later),
        }[step]()

        assert not applied
        assert ticket == before
        assert ticket.next_transition_at == before.next_transition_at

    @pytest.mark.parametrize("step,build", OUT_OF_ORDER_STEPS)
    async def test_service(self, lifecycle_service, ticket_repo, make_ticket, clock, step, build):
        ticket = await ticket_repo.create(build(make_ticket))
        before = await ticket_repo.get_by_id(ticket.id)
        clock.advance(hours=1)

        assert not await getattr(lifecycle_service, step)(ticket.id)

        after = await ticket_repo.get_by_id(ticket.id)
        assert after == before
        assert after.assigned_to == "Mike Chen - Facilities"
        assert after.resolved_at == before.resolved_at
        assert after.next_transition_at == before.next_transition_at


class TestLifecycleService:
    async def test_full_chain(self, lifecycle_service, ticket_repo, make_ticket, clock):
        ticket = await ticket_repo.create(make_ticket())

        clock.advance(seconds=5)
        assert await lifecycle_service.dequeue(ticket.id)
        stored = await ticket_repo.get_by_id(ticket.id)
        assert stored.status == TicketStatus.PROCESSING
        assert stored.updated_at == clock.now
        assert stored.next_transition_at == clock.now + timedelta(seconds=8)

        clock.advance(seconds=8)
        assert await lifecycle_service.triage(ticket.id)
        stored = await ticket_repo.get_by_id(ticket.id)
        assert stored.status == TicketStatus.ASSIGNED
        assert stored.assigned_to == DEFAULT_FACILITIES_ROSTER[0]
        assert stored.assigned_at == clock.now
        assert clock.now + timedelta(seconds=10) <= stored.next_transition_at
        assert stored.next_transition_at <= clock.now + timedelta(seconds=25)

        clock.advance(seconds=25)
        assert await lifecycle_service.close(ticket.id)
        stored = await ticket_repo.get_by_id(ticket.id)
        assert stored.status == TicketStatus.RESOLVED
        assert stored.resolution_notes in DEFAULT_RESOLUTION_NOTES
        assert stored.resolved_at == clock.now
        assert stored.next_transition_at is None

    async def test_steps_are_idempotent(self, lifecycle_service, ticket_repo, make_ticket):
        ticket = await ticket_repo.create(make_ticket())

        assert await lifecycle_service.dequeue(ticket.id)
        before = await ticket_repo.get_by_id(ticket.id)
        assert not await lifecycle_service.dequeue(ticket.id)
        after = await ticket_repo.get_by_id(ticket.id)

        assert after == before

    async def test_steps_cannot_be_skipped(self, lifecycle_service, ticket_repo, make_ticket):
        ticket = await ticket_repo.create(make_ticket())

        assert not await lifecycle_service.triage(ticket.id)
        assert not await lifecycle_service.close(ticket.id)
        stored = await ticket_repo.get_by_id(ticket.id)
        assert stored.status == TicketStatus.QUEUED

    async def test_advance_applies_the_next_step(self, lifecycle_service, ticket_repo, make_ticket):
        ticket = await ticket_repo.create(make_ticket())

        for expected in (TicketStatus.PROCESSING, TicketStatus.ASSIGNED, TicketStatus.RESOLVED):
            assert await lifecycle_service.advance(ticket.id)
            assert (await ticket_repo.get_by_id(ticket.id)).status == expected

        assert not await lifecycle_service.advance(ticket.id)

    async def test_unknown_ticket(self, lifecycle_service):
        with pytest.raises(ResourceNotFoundException):
            await lifecycle_service.dequeue("missing")

    async def test_round_robin_assignment(self, lifecycle_service, ticket_repo, make_ticket):
        assignees = []
        for room in ("room-1", "room-2", "room-3"):
            ticket = await ticket_repo.create(make_ticket(room_id=room))
            await lifecycle_service.dequeue(ticket.id)
            await lifecycle_service.triage(ticket.id)
            assignees.append((await ticket_repo.get_by_id(ticket.id)).assigned_to)

        assert assignees == DEFAULT_FACILITIES_ROSTER[:3]


class TestDuePolling:
    async def test_nothing_due_before_timer(self, lifecycle_service, ticket_repo, make_ticket, clock):
        await ticket_repo.create(make_ticket())

        summary = await lifecycle_service.process_due_transitions(clock.advance(seconds=4))

        assert summary == {"due": 0, "applied": 0, "skipped": 0, "failed": 0}

    async def test_polling_drives_ticket_to_resolved(
        self, lifecycle_service, ticket_repo, make_ticket, clock
    ):
        ticket = await ticket_repo.create(make_ticket())

        for seconds, expected in ((5, TicketStatus.PROCESSING),
                                  (8, TicketStatus.ASSIGNED),
                                  (25, TicketStatus.RESOLVED)):
            summary = await lifecycle_service.process_due_transitions(clock.advance(seconds=seconds))
            assert summary["applied"] == 1
            assert (await ticket_repo.get_by_id(ticket.id)).status == expected

        summary = await lifecycle_service.process_due_transitions(clock.advance(hours=1))
        assert summary["due"] == 0

    async def test_each_poll_advances_one_step(
        self, lifecycle_service, ticket_repo, make_ticket, clock
    ):
        ticket = await ticket_repo.create(make_ticket())

        await lifecycle_service.process_due_transitions(clock.advance(hours=1))

        assert (await ticket_repo.get_by_id(ticket.id)).status == TicketStatus.PROCESSING

    async def test_failed_write_leaves_prior_status_and_stays_due(self, make_ticket, clock, locks):
        repo = FlakySaveRepository(failures=1)
        service = TicketLifecycleService(repo, StaticConfigProvider(), clock=clock, locks=locks)
        ticket = await repo.create(make_ticket())

        summary = await service.process_due_transitions(clock.advance(seconds=5))
        assert summary["failed"] == 1
        stored = await repo.get_by_id(ticket.id)
        assert stored.status == TicketStatus.QUEUED
        assert stored.updated_at == NOW

        summary = await service.process_due_transitions(clock.advance(seconds=5))
        assert summary["applied"] == 1
        assert (await repo.get_by_id(ticket.id)).status == TicketStatus.PROCESSING

    async def test_late_timer_after_manual_resolution_is_noop(
        self, lifecycle_service, resolution_service, ticket_repo, make_ticket, clock
    ):
        ticket = await ticket_repo.create(make_ticket())
        await resolution_service.resolve(ticket.id, "Fixed")

        summary = await lifecycle_service.process_due_transitions(clock.advance(seconds=30))

        assert summary["due"] == 0
        assert not await lifecycle_service.close(ticket.id)
        stored = await ticket_repo.get_by_id(ticket.id)
        assert stored.resolution_notes == "Fixed"


class TestManualResolution:
    async def test_resolve_queued_ticket(self, resolution_service, ticket_repo, make_ticket, clock):
        ticket = await ticket_repo.create(make_ticket())
        clock.advance(minutes=3)

        resolved = await resolution_service.resolve(ticket.id, "Fixed")

        assert resolved.status == TicketStatus.RESOLVED
        assert resolved.assigned_to is None
        assert resolved.resolution_notes == "Fixed"
        assert resolved.resolved_at == clock.now
        assert resolved.next_transition_at is None
        assert (await ticket_repo.get_by_id(ticket.id)).status == TicketStatus.RESOLVED

    async def test_resolve_assigned_keeps_assignee(
        self, resolution_service, lifecycle_service, ticket_repo, make_ticket
    ):
        ticket = await ticket_repo.create(make_ticket())
        await lifecycle_service.dequeue(ticket.id)
        await lifecycle_service.triage(ticket.id)

        resolved = await resolution_service.resolve(ticket.id, "Room cleared")

        assert resolved.assigned_to == DEFAULT_FACILITIES_ROSTER[0]

    async def test_already_resolved_is_returned_unchanged(
        self, resolution_service, ticket_repo, make_ticket, clock
    ):
        ticket = await ticket_repo.create(make_ticket())
        await resolution_service.resolve(ticket.id, "Fixed")
        clock.advance(hours=1)

        again = await resolution_service.resolve(ticket.id, "Something else")

        assert again.resolution_notes == "Fixed"
        assert again.resolved_at == NOW

    @pytest.mark.parametrize("notes", ["", "   "])
    async def test_blank_notes_rejected(self, resolution_service, ticket_repo, make_ticket, notes):
        ticket = await ticket_repo.create(make_ticket())

        with pytest.raises(ValidationException):
            await resolution_service.resolve(ticket.id, notes)

    async def test_unknown_ticket(self, resolution_service):
        with pytest.raises(ResourceNotFoundException):
            await resolution_service.resolve("missing", "Fixed")

    async def test_retries_after_losing_race(self, make_ticket, clock, locks):
        repo = RacingResolveRepository()
        service = TicketResolutionService(repo, clock=clock, locks=locks)
        ticket = await repo.create(make_ticket())

        resolved = await service.resolve(ticket.id, "Fixed")

        assert resolved.status == TicketStatus.RESOLVED
        stored = await repo.get_by_id(ticket.id)
        assert stored.status == TicketStatus.RESOLVED
        assert stored.resolution_notes == "Fixed"
