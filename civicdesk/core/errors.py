"""
Domain errors.

Every error carries a message meant for the person who triggered it.
The API layer maps each class to an HTTP status; nothing is retried.
"""


class CivicDeskError(Exception):
    """Base exception for domain errors."""
    pass


class ValidationError(CivicDeskError):
    """Raised when input breaks a domain rule."""
    pass


class NotFoundError(CivicDeskError):
    """Raised when a report or identity does not exist."""
    pass


class PermissionDeniedError(CivicDeskError):
    """Raised when the actor lacks the capability for an action."""
    pass


class AuthenticationError(CivicDeskError):
    """Raised when credentials are wrong or no one is logged in."""
    pass


class ConflictError(CivicDeskError):
    """Raised when creating something that already exists."""
    pass
