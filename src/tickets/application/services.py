"""
Ticket Application Services
===========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Writers:
- TicketLifecycleService: timed queued -> processing -> assigned -> resolved
- TicketResolutionService: manual fast-forward to resolved

Readers:
- TicketQueryService: dashboard queries over one snapshot
- SLAEvaluator: SLA health on read

Both writers persist through a compare-and-set on the prior status and
treat ``resolved`` as terminal, so a late timer and a manual resolution
can race without corrupting the ticket.
"""

import asyncio
import random
import weakref
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from src.tickets.domain import (
    ServiceTicket, SLACalculator, SLAStatus, LifecycleConfig,
    ISelectionStrategy, RandomSelectionStrategy, TicketQueries
)
from src.config import TicketStatus, STATUS_ORDER
from src.core import (
    RepositoryException, ResourceNotFoundException,
    StaleTicketException, ValidationException
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for service-ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[ServiceTicket]:
        """Get ticket by internal ID."""

    @abstractmethod
    async def create(self, ticket: ServiceTicket) -> ServiceTicket:
        """
        Insert a new ticket.

        Raises:
            DuplicateActiveTicketException: the room already has an active
                ticket of the same type (checked atomically by the store)
            RepositoryException: any other persistence failure
        """

    @abstractmethod
    async def list_active(self, room_id: str, ticket_type: str) -> List[ServiceTicket]:
        """Active (non-resolved) tickets of one type for one room."""

    @abstractmethod
    async def list_all(self) -> List[ServiceTicket]:
        """Snapshot of every ticket, newest first."""

    @abstractmethod
    async def list_due(self, now: datetime, limit: int = 100) -> List[ServiceTicket]:
        """Active tickets whose next transition is due at ``now``."""

    @abstractmethod
    async def save_transition(self, ticket: ServiceTicket, expected_status: str) -> bool:
        """
        Persist a transition only if the stored status is still ``expected_status``.

        Returns:
            False when another writer moved the ticket first
        """


class ILifecycleConfigProvider(ABC):
    """Interface for lifecycle policy access."""

    @abstractmethod
    def get_config(self) -> LifecycleConfig:
        """Get current lifecycle configuration."""


class TicketLockRegistry:
    """
    Per-ticket asyncio locks.

    Serialises one ticket's transition chain inside this process without
    any lock shared between tickets. Entries vanish once nobody holds them.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, ticket_id: str) -> asyncio.Lock:
        lock = self._locks.get(ticket_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ticket_id] = lock
        return lock


ticket_locks = TicketLockRegistry()


class TransitionResult(str):
    """Outcome of one attempted lifecycle step."""
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


# ========== Application Services ==========

class TicketLifecycleService:
    """
    Drives tickets through queued -> processing -> assigned -> resolved.

    Every step is idempotent: a step whose source status no longer matches
    is a no-op. A failed write is logged and leaves the ticket in its prior
    status; it stays due, so the next poll attempts it again.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        config_provider: ILifecycleConfigProvider,
        selector: Optional[ISelectionStrategy] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
        locks: Optional[TicketLockRegistry] = None
    ):
        self._ticket_repo = ticket_repository
        self._config_provider = config_provider
        self._rng = rng or random.Random()
        self._selector = selector or RandomSelectionStrategy(self._rng)
        self._clock = clock or utc_now
        self._locks = locks or ticket_locks

    async def dequeue(self, ticket_id: str) -> bool:
        """queued -> processing."""
        result = await self._transition(ticket_id, TicketStatus.QUEUED)
        return result == TransitionResult.APPLIED

    async def triage(self, ticket_id: str) -> bool:
        """processing -> assigned, picking a technician from the roster."""
        result = await self._transition(ticket_id, TicketStatus.PROCESSING)
        return result == TransitionResult.APPLIED

    async def close(self, ticket_id: str) -> bool:
        """assigned -> resolved, picking a canned resolution narrative."""
        result = await self._transition(ticket_id, TicketStatus.ASSIGNED)
        return result == TransitionResult.APPLIED

    async def advance(self, ticket_id: str) -> bool:
        """Apply whichever step the ticket's current status calls for."""
        result = await self._transition(ticket_id, None)
        return result == TransitionResult.APPLIED

    async def process_due_transitions(
        self,
        now: Optional[datetime] = None,
        limit: int = 100
    ) -> Dict[str, int]:
        """
        Advance every ticket whose timer has expired by exactly one step.

        Returns:
            Summary with due/applied/skipped/failed counts
        """
        now = now or self._clock()
        due = await self._ticket_repo.list_due(now, limit)

        summary = {"due": len(due), "applied": 0, "skipped": 0, "failed": 0}
        for ticket in due:
            result = await self._transition(ticket.id, ticket.status)
            summary[result] += 1

        if due:
            logger.info("Lifecycle poll complete", extra=summary)
        return summary

    async def _transition(self, ticket_id: str, source_status: Optional[str]) -> str:
        async with self._locks.lock_for(ticket_id):
            try:
                ticket = await self._ticket_repo.get_by_id(ticket_id)
            except RepositoryException as e:
                logger.error(
                    "Failed to load ticket for transition",
                    extra={"ticket_id": ticket_id, "error": str(e)}
                )
                return TransitionResult.FAILED

            if ticket is None:
                raise ResourceNotFoundException("ServiceTicket", ticket_id)

            if source_status is not None and ticket.status != source_status:
                logger.debug(
                    "Transition skipped, ticket already moved on",
                    extra={
                        "ticket_id": ticket_id,
                        "expected_status": source_status,
                        "status": ticket.status
                    }
                )
                return TransitionResult.SKIPPED

            return await self._apply_next_step(ticket)

    async def _apply_next_step(self, ticket: ServiceTicket) -> str:
        config = self._config_provider.get_config()
        now = self._clock()
        prior_status = ticket.status

        if prior_status == TicketStatus.QUEUED:
            changed = ticket.dequeue(now)
        elif prior_status == TicketStatus.PROCESSING:
            changed = ticket.triage(self._selector.pick(config.facilities_roster), now)
        elif prior_status == TicketStatus.ASSIGNED:
            changed = ticket.close(self._selector.pick(config.resolution_notes), now)
        else:
            changed = False

        if not changed:
            return TransitionResult.SKIPPED

        delay = config.delay_after(ticket.status, self._rng)
        ticket.schedule_next_transition(now + delay if delay is not None else None)

        try:
            saved = await self._ticket_repo.save_transition(ticket, expected_status=prior_status)
        except RepositoryException as e:
            logger.error(
                "Ticket transition failed, leaving prior status",
                extra={
                    "ticket_id": ticket.id,
                    "from_status": prior_status,
                    "to_status": ticket.status,
                    "error": str(e)
                }
            )
            return TransitionResult.FAILED

        if not saved:
            logger.info(
                "Ticket changed concurrently, transition dropped",
                extra={"ticket_id": ticket.id, "expected_status": prior_status}
            )
            return TransitionResult.SKIPPED

        logger.info(
            "Ticket transitioned",
            extra={
                "ticket_id": ticket.id,
                "external_ticket_id": ticket.external_ticket_id,
                "from_status": prior_status,
                "to_status": ticket.status,
                "assigned_to": ticket.assigned_to,
            }
        )
        return TransitionResult.APPLIED


class TicketResolutionService:
    """
    Manual resolution entry point.

    Jumps any active ticket straight to resolved, bypassing the timed
    processing/assigned steps.
    """

    MAX_ATTEMPTS = 5

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        clock: Optional[Clock] = None,
        locks: Optional[TicketLockRegistry] = None
    ):
        self._ticket_repo = ticket_repository
        self._clock = clock or utc_now
        self._locks = locks or ticket_locks

    async def resolve(self, ticket_id: str, resolution_notes: str) -> ServiceTicket:
        """
        Resolve a ticket now.

        Raises:
            ValidationException: blank resolution notes
            ResourceNotFoundException: unknown ticket
        """
        if not resolution_notes or not resolution_notes.strip():
            raise ValidationException("resolution_notes must not be empty")

        async with self._locks.lock_for(ticket_id):
            expected_status = None
            for _ in range(self.MAX_ATTEMPTS):
                ticket = await self._ticket_repo.get_by_id(ticket_id)
                if ticket is None:
                    raise ResourceNotFoundException("ServiceTicket", ticket_id)

                if ticket.is_resolved:
                    logger.info(
                        "Ticket already resolved, manual resolution ignored",
                        extra={"ticket_id": ticket_id}
                    )
                    return ticket

                expected_status = ticket.status
                ticket.resolve_manually(resolution_notes, self._clock())
                if await self._ticket_repo.save_transition(ticket, expected_status=expected_status):
                    logger.info(
                        "Ticket resolved manually",
                        extra={
                            "ticket_id": ticket_id,
                            "from_status": expected_status,
                            "external_ticket_id": ticket.external_ticket_id
                        }
                    )
                    return ticket

                # Another writer moved the ticket; re-read and try again
                logger.info(
                    "Ticket changed during manual resolution, retrying",
                    extra={"ticket_id": ticket_id, "expected_status": expected_status}
                )

        raise StaleTicketException(ticket_id, expected_status or "unknown")


class TicketQueryService:
    """
    Read-only dashboard queries.

    Each call reads one snapshot of the collection and runs the pure
    functions in ``TicketQueries`` over it.
    """

    def __init__(self, ticket_repository: ITicketRepository, clock: Optional[Clock] = None):
        self._ticket_repo = ticket_repository
        self._clock = clock or utc_now

    async def get_ticket(self, ticket_id: str) -> ServiceTicket:
        ticket = await self._ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("ServiceTicket", ticket_id)
        return ticket

    async def list_tickets(self) -> List[ServiceTicket]:
        return await self._ticket_repo.list_all()

    async def filter_by_status(self, status: str) -> List[ServiceTicket]:
        if status not in STATUS_ORDER:
            raise ValidationException(
                f"Unknown status '{status}'",
                {"allowed": list(STATUS_ORDER)}
            )
        return TicketQueries.filter_by_status(await self._ticket_repo.list_all(), status)

    async def counts_by_status(self) -> Dict[str, int]:
        return TicketQueries.counts_by_status(await self._ticket_repo.list_all())

    async def high_priority_open_tickets(self, max_priority: int = 1) -> List[ServiceTicket]:
        return TicketQueries.high_priority_open(await self._ticket_repo.list_all(), max_priority)

    async def recent_activity(self, hours_back: float = 24) -> List[ServiceTicket]:
        return TicketQueries.recent_activity(
            await self._ticket_repo.list_all(),
            hours_back=hours_back,
            current_time=self._clock()
        )


class SLAEvaluator:
    """Computes SLA health for tickets using the current lifecycle policy."""

    def __init__(self, config_provider: ILifecycleConfigProvider, clock: Optional[Clock] = None):
        self._config_provider = config_provider
        self._clock = clock or utc_now

    def evaluate(self, ticket: ServiceTicket, current_time: Optional[datetime] = None) -> SLAStatus:
        config = self._config_provider.get_config()
        now = current_time or self._clock()
        threshold = config.get_sla_threshold(ticket.priority)

        return SLAStatus(
            ticket_id=ticket.id,
            health=SLACalculator.calculate_health(
                ticket.priority, ticket.created_at, ticket.status,
                now, threshold, config.at_risk_ratio
            ),
            age_hours=SLACalculator.age_hours(ticket.created_at, now),
            threshold_hours=threshold,
            deadline=ticket.created_at + timedelta(hours=threshold),
            age_text=SLACalculator.age_text(ticket.created_at, now),
            priority_label=SLACalculator.priority_label(ticket.priority),
        )

    def evaluate_many(
        self,
        tickets: List[ServiceTicket],
        current_time: Optional[datetime] = None
    ) -> Dict[str, SLAStatus]:
        now = current_time or self._clock()
        return {ticket.id: self.evaluate(ticket, now) for ticket in tickets}
