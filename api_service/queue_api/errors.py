"""Exceptions raised by the ticket workflows.

Each error carries the HTTP status it maps to; the handlers registered in
`queue_api.main` turn them into the standard response envelope.
"""

from typing import Dict, List, Optional


class TicketingError(Exception):
    """Base class for every error surfaced to API clients."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class NotFoundError(TicketingError):
    """Hospital, counter, ticket or user does not exist."""

    status_code = 404

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class InactiveResourceError(TicketingError):
    """Hospital or counter has been deactivated."""

    def __init__(self, resource: str):
        super().__init__(f"{resource} is currently inactive")
        self.resource = resource


class InvalidIdentifierError(TicketingError):
    """Path or body identifier is not a valid ObjectId."""

    def __init__(self, resource: str):
        super().__init__(f"Invalid {resource.lower()} ID")


class InvalidTimeWindowError(TicketingError):
    pass


class OutsideWorkingHoursError(TicketingError):
    pass


class ConflictingAppointmentError(TicketingError):
    pass


class InvalidTransitionError(TicketingError):
    """Requested status change is not in the transition table."""

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Cannot change status from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class CancellationNotAllowedError(TicketingError):
    def __init__(self):
        super().__init__("This ticket cannot be cancelled")


class CheckInNotAllowedError(TicketingError):
    pass


class RatingNotAllowedError(TicketingError):
    def __init__(self):
        super().__init__("Can only rate completed appointments")


class ForbiddenError(TicketingError):
    status_code = 403


class AuthenticationError(TicketingError):
    status_code = 401


class ConcurrentModificationError(TicketingError):
    """Optimistic version check failed while saving a counter."""

    status_code = 409


class OracleError(Exception):
    """Wait-time oracle could not produce a prediction."""
