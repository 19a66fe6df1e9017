"""Repository behaviour against a real SQLite database (aiosqlite)."""

import random
from datetime import timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine

from src.config import TicketStatus, TicketType
from src.core import DuplicateActiveTicketException, RepositoryException
from src.detection.application import TicketFactory, ViolationScanService
from src.detection.infrastructure import RoomModel, SensorReadingModel, SQLAlchemyTelemetrySource
from src.infrastructure.database import build_session_maker, create_tables, enable_sqlite_savepoints
from src.tickets.application import TicketLifecycleService, TicketLockRegistry
from src.tickets.domain import EnvironmentalData, RoomDetails, ViolationSnapshot
from src.tickets.infrastructure import SQLAlchemyTicketRepository
from src.tickets.infrastructure.models import ACTIVE_TICKET_INDEX
from src.tickets.infrastructure.repositories import _violates_active_ticket_index

from tests.conftest import NOW, FixedClock, StaticConfigProvider


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'roomwatch.db'}")
    enable_sqlite_savepoints(engine)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


def snapshot():
    return ViolationSnapshot(
        occupancy=16,
        capacity=10,
        violation_percentage=160,
        environmental_data=EnvironmentalData(temperature=72.5, air_quality=65, noise_level=55.0),
        room_details=RoomDetails(name="Conference Room A", floor=3, building="HQ"),
    )


async def test_create_and_read_back(session_maker, make_ticket):
    ticket = make_ticket(violation_data=snapshot(), external_ticket_id="INC2800000")

    async with session_maker() as session:
        await SQLAlchemyTicketRepository(session).create(ticket)
        await session.commit()

    async with session_maker() as session:
        stored = await SQLAlchemyTicketRepository(session).get_by_id(ticket.id)

    assert stored == ticket
    assert stored.created_at.tzinfo == timezone.utc
    assert stored.next_transition_at == NOW + timedelta(seconds=5)
    assert stored.violation_data == snapshot()


async def test_unknown_or_malformed_id(session_maker):
    async with session_maker() as session:
        repo = SQLAlchemyTicketRepository(session)
        assert await repo.get_by_id("not-a-uuid") is None
        assert await repo.get_by_id("00000000-0000-0000-0000-000000000000") is None


async def test_second_active_ticket_is_rejected(session_maker, make_ticket):
    async with session_maker() as session:
        repo = SQLAlchemyTicketRepository(session)
        await repo.create(make_ticket())

        with pytest.raises(DuplicateActiveTicketException):
            await repo.create(make_ticket(status=TicketStatus.ASSIGNED))

        # The rejected insert must not poison the session
        await repo.create(make_ticket(room_id="room-202"))
        await session.commit()

    async with session_maker() as session:
        tickets = await SQLAlchemyTicketRepository(session).list_all()

    assert sorted(t.room_id for t in tickets) == ["room-101", "room-202"]


async def test_resolved_ticket_frees_the_room(session_maker, make_ticket):
    first = make_ticket()
    async with session_maker() as session:
        repo = SQLAlchemyTicketRepository(session)
        await repo.create(first)

        first.resolve_manually("Fixed", NOW + timedelta(minutes=1))
        assert await repo.save_transition(first, expected_status=TicketStatus.QUEUED)

        await repo.create(make_ticket())
        await session.commit()

        active = await repo.list_active("room-101", TicketType.CAPACITY_VIOLATION)
        assert len(active) == 1
        assert active[0].id != first.id


async def test_other_ticket_types_do_not_collide(session_maker, make_ticket):
    async with session_maker() as session:
        repo = SQLAlchemyTicketRepository(session)
        await repo.create(make_ticket())
        await repo.create(make_ticket(ticket_type=TicketType.ENVIRONMENTAL))
        await session.commit()

        assert len(await repo.list_all()) == 2


async def test_save_transition_is_compare_and_set(session_maker, make_ticket):
    ticket = make_ticket()
    async with session_maker() as session:
        repo = SQLAlchemyTicketRepository(session)
        await repo.create(ticket)

        ticket.dequeue(NOW + timedelta(seconds=5))
        assert not await repo.save_transition(ticket, expected_status=TicketStatus.ASSIGNED)
        assert (await repo.get_by_id(ticket.id)).status == TicketStatus.QUEUED

        assert await repo.save_transition(ticket, expected_status=TicketStatus.QUEUED)
        stored = await repo.get_by_id(ticket.id)
        assert stored.status == TicketStatus.PROCESSING
        assert stored.updated_at == NOW + timedelta(seconds=5)

        # A second writer still expecting "queued" loses
        assert not await repo.save_transition(ticket, expected_status=TicketStatus.QUEUED)


async def test_list_due(session_maker, make_ticket):
    soon = make_ticket(room_id="a", next_transition_at=NOW + timedelta(seconds=5))
    later = make_ticket(room_id="b", next_transition_at=NOW + timedelta(seconds=30))
    earliest = make_ticket(room_id="c", next_transition_at=NOW + timedelta(seconds=1))
    done = make_ticket(room_id="d", status=TicketStatus.RESOLVED, next_transition_at=None)

    async with session_maker() as session:
        repo = SQLAlchemyTicketRepository(session)
        for ticket in (soon, later, earliest, done):
            await repo.create(ticket)

        due = await repo.list_due(NOW + timedelta(seconds=10))
        assert [t.room_id for t in due] == ["c", "a"]

        assert [t.room_id for t in await repo.list_due(NOW + timedelta(minutes=1), limit=1)] == ["c"]


async def seed_telemetry(session):
    session.add(RoomModel(id="room-101", name="Conference Room A", capacity=10, floor=3, building="HQ"))
    session.add_all([
        SensorReadingModel(id="r-old", room_id="room-101", occupancy=3, temperature=70.0,
                           noise_level=40.0, air_quality=95, timestamp=NOW - timedelta(hours=1)),
        SensorReadingModel(id="r-1", room_id="room-101", occupancy=12, temperature=73.0,
                           noise_level=58.0, air_quality=80, timestamp=NOW - timedelta(minutes=3)),
        SensorReadingModel(id="r-2", room_id="room-101", occupancy=16, temperature=74.0,
                           noise_level=61.0, air_quality=62, timestamp=NOW - timedelta(minutes=1)),
    ])
    await session.commit()


async def test_telemetry_source(session_maker):
    async with session_maker() as session:
        await seed_telemetry(session)

    async with session_maker() as session:
        source = SQLAlchemyTelemetrySource(session)
        readings = await source.get_recent_readings(NOW - timedelta(minutes=5))
        room = await source.get_room("room-101")
        missing = await source.get_room("room-999")

    assert [r.id for r in readings] == ["r-2", "r-1"]
    assert room.capacity == 10
    assert missing is None


async def test_scan_and_lifecycle_end_to_end(session_maker):
    async with session_maker() as session:
        await seed_telemetry(session)

    clock = FixedClock()
    config_provider = StaticConfigProvider()

    async with session_maker() as session:
        repo = SQLAlchemyTicketRepository(session)
        scan = ViolationScanService(
            telemetry_source=SQLAlchemyTelemetrySource(session),
            ticket_repository=repo,
            ticket_factory=TicketFactory(config_provider, rng=random.Random(3), clock=clock),
            clock=clock,
        )
        result = await scan.scan(window_minutes=5)
        await session.commit()

    assert result.readings_analyzed == 2
    assert result.violations_detected == 2
    assert result.tickets_created == 1
    assert result.duplicates_suppressed == 1

    async with session_maker() as session:
        [ticket] = await SQLAlchemyTicketRepository(session).list_all()
    assert ticket.trigger_reading_id == "r-2"
    assert ticket.priority == 1
    assert ticket.violation_data.violation_percentage == 160

    rng = random.Random(3)
    locks = TicketLockRegistry()
    for seconds in (5, 8, 25):
        async with session_maker() as session:
            lifecycle = TicketLifecycleService(
                SQLAlchemyTicketRepository(session), config_provider,
                rng=rng, clock=clock, locks=locks
            )
            summary = await lifecycle.process_due_transitions(clock.advance(seconds=seconds))
            await session.commit()
        assert summary["applied"] == 1

    async with session_maker() as session:
        stored = await SQLAlchemyTicketRepository(session).get_by_id(ticket.id)

    assert stored.status == TicketStatus.RESOLVED
    assert stored.assigned_to is not None
    assert stored.resolution_notes
    assert stored.next_transition_at is None


async def test_primary_key_collision_is_a_storage_failure(session_maker, make_ticket):
    ticket = make_ticket(status=TicketStatus.RESOLVED, next_transition_at=None)
    async with session_maker() as session:
        await SQLAlchemyTicketRepository(session).create(ticket)
        await session.commit()

    async with session_maker() as session:
        repo = SQLAlchemyTicketRepository(session)
        with pytest.raises(RepositoryException) as excinfo:
            await repo.create(ticket)

        assert not isinstance(excinfo.value, DuplicateActiveTicketException)
        # The room's active-ticket slot is still free
        await repo.create(make_ticket())
        await session.commit()


class DriverError(Exception):
    pass


def integrity_error(message, constraint_name=None):
    orig = DriverError(message)
    if constraint_name is not None:
        cause = DriverError(message)
        cause.constraint_name = constraint_name
        orig.__cause__ = cause
    return IntegrityError("INSERT INTO service_tickets ...", {}, orig)


@pytest.mark.parametrize("error,expected", [
    (integrity_error(f'duplicate key value violates unique constraint "{ACTIVE_TICKET_INDEX}"'), True),
    (integrity_error("unique violation", constraint_name=ACTIVE_TICKET_INDEX), True),
    (integrity_error("UNIQUE constraint failed: service_tickets.room_id, service_tickets.ticket_type"), True),
    (integrity_error('duplicate key value violates unique constraint "service_tickets_pkey"',
                     constraint_name="service_tickets_pkey"), False),
    (integrity_error("UNIQUE constraint failed: service_tickets.id"), False),
    (integrity_error("NOT NULL constraint failed: service_tickets.title"), False),
])
def test_active_index_violation_detection(error, expected):
    assert _violates_active_ticket_index(error) is expected


async def add_trigger(engine, ddl):
    async with engine.begin() as conn:
        await conn.exec_driver_sql(ddl)


async def test_failed_transition_does_not_undo_the_rest_of_the_batch(
    engine, session_maker, make_ticket
):
    tickets = [make_ticket(room_id=room) for room in ("a", "b", "c")]
    async with session_maker() as session:
        repo = SQLAlchemyTicketRepository(session)
        for ticket in tickets:
            await repo.create(ticket)
        await session.commit()

    await add_trigger(engine, (
        "CREATE TRIGGER reject_room_b BEFORE UPDATE ON service_tickets "
        "WHEN NEW.room_id = 'b' BEGIN SELECT RAISE(ABORT, 'ticket locked'); END"
    ))

    clock = FixedClock()
    async with session_maker() as session:
        lifecycle = TicketLifecycleService(
            SQLAlchemyTicketRepository(session), StaticConfigProvider(),
            clock=clock, locks=TicketLockRegistry()
        )
        summary = await lifecycle.process_due_transitions(clock.advance(seconds=5))
        await session.commit()

    assert summary == {"due": 3, "applied": 2, "skipped": 0, "failed": 1}

    async with session_maker() as session:
        stored = {t.room_id: t.status for t in await SQLAlchemyTicketRepository(session).list_all()}

    assert stored == {
        "a": TicketStatus.PROCESSING,
        "b": TicketStatus.QUEUED,
        "c": TicketStatus.PROCESSING,
    }


async def test_failed_insert_keeps_other_tickets_from_the_scan(engine, session_maker):
    async with session_maker() as session:
        session.add_all([
            RoomModel(id="room-101", name="Conference Room A", capacity=10, floor=3, building="HQ"),
            RoomModel(id="room-202", name="Huddle Room B", capacity=4, floor=2, building="HQ"),
            RoomModel(id="room-303", name="Board Room", capacity=12, floor=5, building="HQ"),
        ])
        session.add_all([
            SensorReadingModel(id=f"r-{room}", room_id=f"room-{room}", occupancy=occupancy,
                               temperature=73.0, noise_level=58.0, air_quality=80,
                               timestamp=NOW - timedelta(minutes=minutes))
            for room, occupancy, minutes in (("101", 16, 1), ("202", 9, 2), ("303", 20, 3))
        ])
        await session.commit()

    await add_trigger(engine, (
        "CREATE TRIGGER reject_room_202 BEFORE INSERT ON service_tickets "
        "WHEN NEW.room_id = 'room-202' BEGIN SELECT RAISE(ABORT, 'rejected by store'); END"
    ))

    clock = FixedClock()
    async with session_maker() as session:
        scan = ViolationScanService(
            telemetry_source=SQLAlchemyTelemetrySource(session),
            ticket_repository=SQLAlchemyTicketRepository(session),
            ticket_factory=TicketFactory(StaticConfigProvider(), rng=random.Random(3), clock=clock),
            clock=clock,
        )
        result = await scan.scan(window_minutes=5)
        await session.commit()

    # The rejected insert is a failure, not a suppressed duplicate
    assert result.tickets_created == 2
    assert result.tickets_failed == 1
    assert result.duplicates_suppressed == 0

    async with session_maker() as session:
        tickets = await SQLAlchemyTicketRepository(session).list_all()

    assert sorted(t.room_id for t in tickets) == ["room-101", "room-303"]
