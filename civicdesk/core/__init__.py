# Core civic desk services
from .errors import (
    CivicDeskError,
    ValidationError,
    NotFoundError,
    PermissionDeniedError,
    AuthenticationError,
    ConflictError,
)
from .permissions import (
    Capability,
    ROLE_CAPABILITIES,
    has_capability,
    require_capability,
)
from .reports import ReportService, PROBLEM_NOT_FOUND
from .accounts import AccountService, AccountSession, MIN_PASSWORD_LENGTH
from .session import SessionStore, SESSION_KEY
from .feed import filter_reports, sort_feed, status_counts

__all__ = [
    "CivicDeskError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "AuthenticationError",
    "ConflictError",
    "Capability",
    "ROLE_CAPABILITIES",
    "has_capability",
    "require_capability",
    "ReportService",
    "PROBLEM_NOT_FOUND",
    "AccountService",
    "AccountSession",
    "MIN_PASSWORD_LENGTH",
    "SessionStore",
    "SESSION_KEY",
    "filter_reports",
    "sort_feed",
    "status_counts",
]
