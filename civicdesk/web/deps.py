"""
Dependency injection for API routes.

Services come from app state; the current identity comes from the
session cookie and is re-validated against the identity store, so a
deleted account or a changed role takes effect on the next request.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, Response

from ..core import (
    AccountService,
    AccountSession,
    AuthenticationError,
    Capability,
    CivicDeskError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ReportService,
    require_capability,
)
from ..schemas import Identity
from .auth import CSRF_COOKIE, CSRF_HEADER, csrf_required, session_store, validate_csrf_token


ERROR_STATUS = {
    NotFoundError: 404,
    PermissionDeniedError: 403,
    AuthenticationError: 401,
    ConflictError: 409,
}


def to_http(e: CivicDeskError) -> HTTPException:
    """Translate a domain error to an HTTPException; anything unmapped is a 400."""
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def get_reports(request: Request) -> ReportService:
    """Get the report service from app state."""
    return request.app.state.reports


def get_accounts(request: Request) -> AccountService:
    """Get the account service from app state."""
    return request.app.state.accounts


def get_account_session(
    request: Request,
    response: Response,
    accounts: AccountService = Depends(get_accounts),
) -> AccountSession:
    return AccountSession(accounts, session_store(request, response))


def current_identity(
    account: AccountSession = Depends(get_account_session),
) -> Optional[Identity]:
    """The logged-in identity, or None for anonymous requests."""
    return account.current()


def require_identity(
    identity: Optional[Identity] = Depends(current_identity),
) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return identity


def verify_csrf(request: Request) -> None:
    """Double-submit check for state-changing requests when CSRF is enforced."""
    if request.method in ("GET", "HEAD", "OPTIONS"):
        return
    if not csrf_required():
        return
    if not validate_csrf_token(request.cookies.get(CSRF_COOKIE), request.headers.get(CSRF_HEADER)):
        raise HTTPException(status_code=403, detail="CSRF token missing or invalid")


def require_agent(identity: Identity = Depends(require_identity)) -> Identity:
    """Require the dashboard capability (role from the store, not the cookie)."""
    try:
        return require_capability(identity, Capability.VIEW_DASHBOARD)
    except CivicDeskError as e:
        raise to_http(e)
