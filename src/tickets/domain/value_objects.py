"""
Ticket Value Objects
====================

Immutable value objects and stateless domain services for the ticket
workflow: SLA health calculation, lifecycle policy, assignee/notes
selection strategies and the read-side query functions.
"""

import itertools
import random
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

from src.config import TicketStatus, SLAHealth, STATUS_ORDER, ACTIVE_STATUSES
from src.tickets.domain.entities import ServiceTicket

T = TypeVar("T")

DEFAULT_SLA_THRESHOLDS_HOURS = {1: 2.0, 2: 8.0, 3: 24.0, 4: 72.0}
FALLBACK_SLA_THRESHOLD_HOURS = 72.0

DEFAULT_FACILITIES_ROSTER = [
    "Sarah Johnson (Facilities Manager)",
    "Mike Chen (HVAC Technician)",
    "Lisa Rodriguez (Safety Coordinator)",
    "David Kim (Building Operations)",
]

DEFAULT_RESOLUTION_NOTES = [
    "Facility manager contacted organizer. Meeting moved to larger conference room. "
    "Capacity compliance restored.",
    "HVAC system adjusted to improve air circulation. Occupancy reduced through "
    "voluntary relocation to breakout spaces.",
    "Emergency protocol activated. Excess occupants relocated to adjacent available "
    "rooms. Safety standards maintained.",
    "Building operations coordinated room reassignment. Meeting split between two "
    "rooms to ensure fire safety compliance.",
]


# ========== SLA ==========

@dataclass(frozen=True)
class SLAStatus:
    """SLA health of one ticket at one instant."""
    ticket_id: str
    health: str
    age_hours: float
    threshold_hours: float
    deadline: datetime
    age_text: str
    priority_label: str

    @property
    def is_overdue(self) -> bool:
        return self.health == SLAHealth.OVERDUE

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "health": self.health,
            "age_hours": round(self.age_hours, 2),
            "threshold_hours": self.threshold_hours,
            "deadline": self.deadline.isoformat(),
            "is_overdue": self.is_overdue,
            "age_text": self.age_text,
            "priority_label": self.priority_label,
        }


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA arithmetic lives here.
    """

    @staticmethod
    def age_hours(created_at: datetime, current_time: datetime) -> float:
        """Ticket age in fractional hours."""
        return (current_time - created_at).total_seconds() / 3600

    @staticmethod
    def calculate_health(
        priority: int,
        created_at: datetime,
        status: str,
        current_time: datetime,
        threshold_hours: float,
        at_risk_ratio: float = 0.8
    ) -> str:
        """
        Classify a ticket as on-track, at-risk or overdue.

        Resolved tickets are always on-track, whatever their age.

        Example:
            Priority 1 (2h threshold), created 1h50m ago, queued
            -> 1.83h > 1.6h -> at-risk
        """
        if status == TicketStatus.RESOLVED:
            return SLAHealth.ON_TRACK

        age = SLACalculator.age_hours(created_at, current_time)
        if age > threshold_hours:
            return SLAHealth.OVERDUE
        if age > threshold_hours * at_risk_ratio:
            return SLAHealth.AT_RISK
        return SLAHealth.ON_TRACK

    @staticmethod
    def age_text(created_at: datetime, current_time: datetime) -> str:
        """Human readable age, whole hours/days."""
        hours = int(SLACalculator.age_hours(created_at, current_time))
        if hours < 1:
            return "Just created"
        if hours == 1:
            return "1 hour ago"
        if hours < 24:
            return f"{hours} hours ago"
        days = hours // 24
        return "1 day ago" if days == 1 else f"{days} days ago"

    @staticmethod
    def priority_label(priority: int) -> str:
        if priority == 1:
            return "P1 - Critical"
        if priority == 2:
            return "P2 - High"
        if priority == 3:
            return "P3 - Medium"
        return f"P{priority} - Low"


# ========== Lifecycle policy ==========

class TransitionDelayConfig(BaseModel):
    """Delay window before the transition out of one status fires."""
    min_seconds: float = Field(ge=0)
    max_seconds: float = Field(ge=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "TransitionDelayConfig":
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds cannot be below min_seconds")
        return self

    def sample(self, rng: random.Random) -> timedelta:
        if self.max_seconds == self.min_seconds:
            return timedelta(seconds=self.min_seconds)
        return timedelta(seconds=rng.uniform(self.min_seconds, self.max_seconds))


def _default_delays() -> Dict[str, TransitionDelayConfig]:
    return {
        TicketStatus.QUEUED: TransitionDelayConfig(min_seconds=5, max_seconds=5),
        TicketStatus.PROCESSING: TransitionDelayConfig(min_seconds=8, max_seconds=8),
        TicketStatus.ASSIGNED: TransitionDelayConfig(min_seconds=10, max_seconds=25),
    }


class LifecycleConfig(BaseModel):
    """
    Lifecycle policy loaded from YAML.

    Delays are keyed by the status a ticket is leaving, so
    ``transition_delays["queued"]`` is the wait before dequeue.

    This is a value object - immutable and defined by its attributes.
    """
    sla_thresholds_hours: Dict[int, float] = Field(
        default_factory=lambda: dict(DEFAULT_SLA_THRESHOLDS_HOURS),
        description="SLA threshold in hours by priority"
    )
    at_risk_ratio: float = Field(
        default=0.8, gt=0, le=1,
        description="Share of the threshold after which a ticket is at-risk"
    )
    transition_delays: Dict[str, TransitionDelayConfig] = Field(
        default_factory=_default_delays,
        description="Delay before leaving each active status"
    )
    facilities_roster: List[str] = Field(
        default_factory=lambda: list(DEFAULT_FACILITIES_ROSTER),
        min_length=1,
        description="Technicians eligible for assignment"
    )
    resolution_notes: List[str] = Field(
        default_factory=lambda: list(DEFAULT_RESOLUTION_NOTES),
        min_length=1,
        description="Canned remediation narratives"
    )

    model_config = {"frozen": True}

    @field_validator("sla_thresholds_hours")
    @classmethod
    def fill_thresholds(cls, v: Dict[int, float]) -> Dict[int, float]:
        """Missing priorities fall back to the default table."""
        merged = dict(DEFAULT_SLA_THRESHOLDS_HOURS)
        merged.update(v)
        for priority, hours in merged.items():
            if hours <= 0:
                raise ValueError(f"SLA threshold for priority {priority} must be positive")
        return merged

    @field_validator("transition_delays")
    @classmethod
    def fill_delays(cls, v: Dict[str, TransitionDelayConfig]) -> Dict[str, TransitionDelayConfig]:
        unknown = set(v) - set(ACTIVE_STATUSES)
        if unknown:
            raise ValueError(f"Delays only apply to active statuses, got {sorted(unknown)}")
        merged = _default_delays()
        merged.update(v)
        return merged

    def get_sla_threshold(self, priority: int) -> float:
        return self.sla_thresholds_hours.get(priority, FALLBACK_SLA_THRESHOLD_HOURS)

    def delay_after(self, status: str, rng: random.Random) -> Optional[timedelta]:
        """Delay before the next transition out of ``status``; None once resolved."""
        delay = self.transition_delays.get(status)
        if delay is None:
            return None
        return delay.sample(rng)


# ========== Selection strategies ==========

class ISelectionStrategy(ABC):
    """Chooses one value out of a fixed candidate list."""

    @abstractmethod
    def pick(self, candidates: Sequence[T]) -> T:
        """Pick one candidate."""


class RandomSelectionStrategy(ISelectionStrategy):
    """Uniform random choice (production default)."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def pick(self, candidates: Sequence[T]) -> T:
        if not candidates:
            raise ValueError("Cannot pick from an empty candidate list")
        return self._rng.choice(list(candidates))


class RoundRobinSelectionStrategy(ISelectionStrategy):
    """Deterministic rotation through the candidates."""

    def __init__(self):
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def pick(self, candidates: Sequence[T]) -> T:
        if not candidates:
            raise ValueError("Cannot pick from an empty candidate list")
        with self._lock:
            index = next(self._counter)
        return candidates[index % len(candidates)]


# ========== Read-side queries ==========

class TicketQueries:
    """
    Pure read-only operations over one snapshot of the ticket collection.
    """

    @staticmethod
    def filter_by_status(tickets: Iterable[ServiceTicket], status: str) -> List[ServiceTicket]:
        return [t for t in tickets if t.status == status]

    @staticmethod
    def counts_by_status(tickets: Iterable[ServiceTicket]) -> Dict[str, int]:
        counts = {status: 0 for status in STATUS_ORDER}
        for ticket in tickets:
            counts[ticket.status] = counts.get(ticket.status, 0) + 1
        return counts

    @staticmethod
    def high_priority_open(
        tickets: Iterable[ServiceTicket],
        max_priority: int = 1
    ) -> List[ServiceTicket]:
        """Open tickets at or above ``max_priority``, most urgent first."""
        selected = [
            t for t in tickets
            if t.priority <= max_priority and t.status != TicketStatus.RESOLVED
        ]
        return sorted(selected, key=lambda t: t.priority)

    @staticmethod
    def recent_activity(
        tickets: Iterable[ServiceTicket],
        hours_back: float = 24,
        current_time: Optional[datetime] = None
    ) -> List[ServiceTicket]:
        """Tickets created, assigned or resolved within the window, newest update first."""
        now = current_time or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=hours_back)

        def touched(ticket: ServiceTicket) -> bool:
            return any(
                ts is not None and ts >= cutoff
                for ts in (ticket.created_at, ticket.assigned_at, ticket.resolved_at)
            )

        selected = [t for t in tickets if touched(t)]
        return sorted(selected, key=lambda t: t.updated_at, reverse=True)
