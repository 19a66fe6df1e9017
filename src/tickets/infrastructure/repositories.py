"""
Ticket Infrastructure Repositories
==================================

Concrete implementations of the ticket repository interface.

- SQLAlchemyTicketRepository: async SQLAlchemy, the production store
- InMemoryTicketRepository: process-local store for local runs and tests
- YAMLLifecycleConfigProvider: static lifecycle policy from a YAML file
"""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional
from uuid import UUID

import yaml
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.tickets.application import ITicketRepository, ILifecycleConfigProvider
from src.tickets.domain import ServiceTicket, ViolationSnapshot, LifecycleConfig
from src.tickets.infrastructure.models import ACTIVE_TICKET_INDEX, ServiceTicketModel
from src.config import TicketStatus
from src.core import (
    ConfigurationException, DuplicateActiveTicketException, RepositoryException
)

SQLITE_ACTIVE_INDEX_COLUMNS = "service_tickets.room_id, service_tickets.ticket_type"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Store and return every timestamp as aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _violates_active_ticket_index(error: IntegrityError) -> bool:
    """
    True when the rejected insert hit the one-active-ticket index.

    PostgreSQL names the index in the error (asyncpg also exposes it as
    ``constraint_name``); SQLite only lists the indexed columns.
    """
    driver_error = error.orig
    cause = getattr(driver_error, "__cause__", None)
    if getattr(cause, "constraint_name", None) == ACTIVE_TICKET_INDEX:
        return True

    message = str(driver_error)
    return ACTIVE_TICKET_INDEX in message or SQLITE_ACTIVE_INDEX_COLUMNS in message


def _parse_uuid(ticket_id: str) -> Optional[UUID]:
    try:
        return UUID(str(ticket_id))
    except ValueError:
        return None


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    The partial unique index on (room_id, ticket_type) for active rows
    makes a second active ticket fail atomically at insert time.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, ticket_id: str) -> Optional[ServiceTicket]:
        """Get ticket by internal ID."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        stmt = (
            select(ServiceTicketModel)
            .where(ServiceTicketModel.id == ticket_uuid)
            .execution_options(populate_existing=True)
        )
        model = await self._scalar_one_or_none(stmt)
        return self._to_domain(model) if model else None

    async def create(self, ticket: ServiceTicket) -> ServiceTicket:
        """Insert a ticket inside a savepoint so a rejected row leaves the session usable."""
        model = ServiceTicketModel(
            id=UUID(ticket.id),
            room_id=ticket.room_id,
            ticket_type=ticket.ticket_type,
            title=ticket.title,
            description=ticket.description,
            severity=ticket.severity,
            status=ticket.status,
            priority=ticket.priority,
            trigger_reading_id=ticket.trigger_reading_id,
            violation_data=ticket.violation_data.to_dict() if ticket.violation_data else None,
            assigned_to=ticket.assigned_to,
            assigned_at=_as_utc(ticket.assigned_at),
            resolved_at=_as_utc(ticket.resolved_at),
            resolution_notes=ticket.resolution_notes,
            external_ticket_id=ticket.external_ticket_id,
            external_system=ticket.external_system,
            created_at=_as_utc(ticket.created_at),
            updated_at=_as_utc(ticket.updated_at),
            next_transition_at=_as_utc(ticket.next_transition_at),
        )

        try:
            async with self._session.begin_nested():
                self._session.add(model)
                await self._session.flush()
        except IntegrityError as e:
            if _violates_active_ticket_index(e):
                raise DuplicateActiveTicketException(ticket.room_id, ticket.ticket_type) from e
            raise RepositoryException(
                f"Failed to create ticket for room {ticket.room_id}: {e}",
                {"room_id": ticket.room_id}
            ) from e
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to create ticket for room {ticket.room_id}: {e}",
                {"room_id": ticket.room_id}
            ) from e

        return ticket

    async def list_active(self, room_id: str, ticket_type: str) -> List[ServiceTicket]:
        stmt = (
            select(ServiceTicketModel)
            .where(
                ServiceTicketModel.room_id == room_id,
                ServiceTicketModel.ticket_type == ticket_type,
                ServiceTicketModel.status != TicketStatus.RESOLVED,
            )
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(m) for m in await self._scalars(stmt)]

    async def list_all(self) -> List[ServiceTicket]:
        stmt = (
            select(ServiceTicketModel)
            .order_by(ServiceTicketModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(m) for m in await self._scalars(stmt)]

    async def list_due(self, now: datetime, limit: int = 100) -> List[ServiceTicket]:
        stmt = (
            select(ServiceTicketModel)
            .where(
                ServiceTicketModel.status != TicketStatus.RESOLVED,
                ServiceTicketModel.next_transition_at.is_not(None),
                ServiceTicketModel.next_transition_at <= _as_utc(now),
            )
            .order_by(ServiceTicketModel.next_transition_at.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(m) for m in await self._scalars(stmt)]

    async def save_transition(self, ticket: ServiceTicket, expected_status: str) -> bool:
        """Conditional UPDATE ... WHERE status = expected_status."""
        ticket_uuid = _parse_uuid(ticket.id)
        if ticket_uuid is None:
            raise RepositoryException(f"Invalid ticket ID: {ticket.id}")

        stmt = (
            update(ServiceTicketModel)
            .where(
                ServiceTicketModel.id == ticket_uuid,
                ServiceTicketModel.status == expected_status,
            )
            .values(
                status=ticket.status,
                assigned_to=ticket.assigned_to,
                assigned_at=_as_utc(ticket.assigned_at),
                resolved_at=_as_utc(ticket.resolved_at),
                resolution_notes=ticket.resolution_notes,
                updated_at=_as_utc(ticket.updated_at),
                next_transition_at=_as_utc(ticket.next_transition_at),
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._execute(
            stmt, f"Failed to update ticket {ticket.id}", {"ticket_id": ticket.id}
        )
        return result.rowcount == 1

    async def _execute(self, stmt, failure: str, details: Optional[dict] = None):
        """
        Run one statement inside its own savepoint.

        Callers batch many tickets into one transaction. On PostgreSQL a
        failed statement aborts the whole transaction, so each statement is
        rolled back alone and the rest of the batch still commits.
        """
        try:
            async with self._session.begin_nested():
                return await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException(f"{failure}: {e}", details) from e

    async def _scalars(self, stmt) -> list:
        result = await self._execute(stmt, "Ticket query failed")
        return list(result.scalars().all())

    async def _scalar_one_or_none(self, stmt):
        result = await self._execute(stmt, "Ticket query failed")
        return result.scalar_one_or_none()

    @staticmethod
    def _to_domain(model: ServiceTicketModel) -> ServiceTicket:
        return ServiceTicket(
            id=str(model.id),
            room_id=model.room_id,
            ticket_type=model.ticket_type,
            title=model.title,
            description=model.description,
            severity=model.severity,
            status=model.status,
            priority=model.priority,
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
            trigger_reading_id=model.trigger_reading_id,
            violation_data=(
                ViolationSnapshot.from_dict(model.violation_data)
                if model.violation_data else None
            ),
            assigned_to=model.assigned_to,
            assigned_at=_as_utc(model.assigned_at),
            resolved_at=_as_utc(model.resolved_at),
            resolution_notes=model.resolution_notes,
            external_ticket_id=model.external_ticket_id,
            external_system=model.external_system,
            next_transition_at=_as_utc(model.next_transition_at),
        )


class InMemoryTicketRepository(ITicketRepository):
    """
    Process-local ticket store.

    Hands out copies so callers never mutate stored state directly.
    The active-ticket check and the insert run under one lock.
    """

    def __init__(self):
        self._tickets: Dict[str, ServiceTicket] = {}
        self._lock = asyncio.Lock()

    async def get_by_id(self, ticket_id: str) -> Optional[ServiceTicket]:
        ticket = self._tickets.get(ticket_id)
        return ticket.copy() if ticket else None

    async def create(self, ticket: ServiceTicket) -> ServiceTicket:
        async with self._lock:
            if ticket.is_active and self._find_active(ticket.room_id, ticket.ticket_type):
                raise DuplicateActiveTicketException(ticket.room_id, ticket.ticket_type)
            if ticket.id in self._tickets:
                raise RepositoryException(f"Ticket {ticket.id} already exists")
            self._tickets[ticket.id] = ticket.copy()
        return ticket

    async def list_active(self, room_id: str, ticket_type: str) -> List[ServiceTicket]:
        return [t.copy() for t in self._find_active(room_id, ticket_type)]

    async def list_all(self) -> List[ServiceTicket]:
        tickets = sorted(self._tickets.values(), key=lambda t: t.created_at, reverse=True)
        return [t.copy() for t in tickets]

    async def list_due(self, now: datetime, limit: int = 100) -> List[ServiceTicket]:
        due = [
            t for t in self._tickets.values()
            if t.is_active and t.next_transition_at is not None and t.next_transition_at <= now
        ]
        due.sort(key=lambda t: t.next_transition_at)
        return [t.copy() for t in due[:limit]]

    async def save_transition(self, ticket: ServiceTicket, expected_status: str) -> bool:
        async with self._lock:
            stored = self._tickets.get(ticket.id)
            if stored is None:
                raise RepositoryException(f"Ticket {ticket.id} not found")
            if stored.status != expected_status:
                return False
            self._tickets[ticket.id] = ticket.copy()
        return True

    def _find_active(self, room_id: str, ticket_type: str) -> List[ServiceTicket]:
        return [
            t for t in self._tickets.values()
            if t.room_id == room_id and t.ticket_type == ticket_type and t.is_active
        ]


class YAMLLifecycleConfigProvider(ILifecycleConfigProvider):
    """
    Lifecycle policy loaded once from YAML.

    A missing file yields the default policy.
    """

    def __init__(self, config_path: str | Path):
        self._config_path = Path(config_path)
        self._config = load_lifecycle_config(self._config_path)

    def get_config(self) -> LifecycleConfig:
        return self._config

    def reload(self) -> None:
        self._config = load_lifecycle_config(self._config_path)


def load_lifecycle_config(path: Path) -> LifecycleConfig:
    """
    Parse a lifecycle policy file.

    Raises:
        ConfigurationException: unreadable YAML or invalid policy values
    """
    if not path.exists():
        return LifecycleConfig()

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        return LifecycleConfig(**data)
    except (yaml.YAMLError, ValidationError, TypeError) as e:
        raise ConfigurationException(
            f"Invalid lifecycle config {path}: {e}",
            {"path": str(path)}
        ) from e
