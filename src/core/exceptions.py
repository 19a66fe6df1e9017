"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class DuplicateActiveTicketException(DomainException):
    """Raised when a room already has an open ticket of the same type."""

    def __init__(
        self,
        room_id: str,
        ticket_type: str,
        details: Optional[dict] = None
    ):
        self.room_id = room_id
        self.ticket_type = ticket_type
        super().__init__(
            f"Active {ticket_type} ticket already exists for room {room_id}",
            details or {"room_id": room_id, "ticket_type": ticket_type}
        )


class StaleTicketException(RepositoryException):
    """Raised when a ticket changed status underneath a pending write."""

    def __init__(
        self,
        ticket_id: str,
        expected_status: str,
        details: Optional[dict] = None
    ):
        self.ticket_id = ticket_id
        self.expected_status = expected_status
        super().__init__(
            f"Ticket {ticket_id} is no longer in status '{expected_status}'",
            details or {"ticket_id": ticket_id, "expected_status": expected_status}
        )
