"""
Ticket Infrastructure Layer
===========================

Infrastructure implementations for the service-ticket workflow:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer (SQLAlchemy and in-memory)
- External: config watcher and background job scheduler
"""

from src.tickets.infrastructure.models import ServiceTicketModel
from src.tickets.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    InMemoryTicketRepository,
    YAMLLifecycleConfigProvider,
    load_lifecycle_config,
)

__all__ = [
    "ServiceTicketModel",
    "SQLAlchemyTicketRepository",
    "InMemoryTicketRepository",
    "YAMLLifecycleConfigProvider",
    "load_lifecycle_config",
]
