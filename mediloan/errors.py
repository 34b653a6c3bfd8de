"""
Error taxonomy for the MediLoan service.

Each exception carries the HTTP status it maps to; the API layer converts
them to `{"error": message}` responses.
"""

from typing import Any, Optional


class MediLoanError(Exception):
    """Base class for every error surfaced to a caller."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(MediLoanError):
    """Malformed or missing input. No side effects have happened."""
    status_code = 400


class NotFoundError(MediLoanError):
    """Referenced loan or hospital does not exist."""
    status_code = 404


class RequestTimeout(MediLoanError):
    """Processing exceeded the request budget."""
    status_code = 408


class ConflictError(MediLoanError):
    """Loan is already in a terminal state."""
    status_code = 409


class AttemptsExhausted(MediLoanError):
    """Lifetime attempt cap for a loan has been reached."""
    status_code = 423


class RateLimitExceeded(MediLoanError):
    status_code = 429


class InternalError(MediLoanError):
    status_code = 500


class DependencyUnavailable(MediLoanError):
    """An external service failed during a critical step."""
    status_code = 503
