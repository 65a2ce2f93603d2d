# app/core/exceptions.py
"""
Domain exceptions for the complaint lifecycle.

Services raise these; a single handler in app.main turns them into
JSON responses with the status code carried by the class.
"""
from typing import Any, Dict, Optional

from fastapi import status


class ComplaintError(Exception):
    """Base class for every error raised by the complaint services."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = self.__class__.__name__
        self.details = details or {}
        super().__init__(message)


class ValidationError(ComplaintError):
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidAttachmentCount(ValidationError):
    pass


class NotAnEngineer(ValidationError):
    pass


class InvalidOtp(ValidationError):
    pass


class NotFound(ComplaintError):
    status_code = status.HTTP_404_NOT_FOUND


class Forbidden(ComplaintError):
    status_code = status.HTTP_403_FORBIDDEN


class Conflict(ComplaintError):
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(Conflict):
    pass


class AlreadyResolved(Conflict):
    pass


class AlreadyVerified(Conflict):
    pass


class AlreadyAssigned(Conflict):
    pass


class NotReassignable(Conflict):
    pass


class StaleComplaint(Conflict):
    """The complaint changed between read and write."""


class TicketCodeExhausted(ComplaintError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
