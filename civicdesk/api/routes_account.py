"""
Account API Routes

Registration, login and self-service account management.

Security Features:
- Argon2 password hashing
- Rate limiting on login (5 attempts per 15 minutes)
- Signed session cookies
- Time-limited password reset tokens
- CSRF protection on authenticated writes (when enforced)
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr

from ..core import AccountService, AccountSession, AuthenticationError, CivicDeskError
from ..observability import get_logger, is_production
from ..schemas import Identity
from ..web.auth import (
    check_rate_limit,
    clear_rate_limit,
    create_reset_token,
    get_client_ip,
    read_reset_token,
    record_login_attempt,
)
from ..web.deps import get_account_session, get_accounts, to_http, verify_csrf


logger = get_logger(__name__)

router = APIRouter(prefix="/api/account", tags=["Account API"])


# ============================================================
# Request/Response Models
# ============================================================

class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileRequest(BaseModel):
    name: Optional[str] = None
    avatar: Optional[str] = None
    email: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class ResetRequest(BaseModel):
    email: str


class ResetConfirmRequest(BaseModel):
    token: str
    new_password: str


class SuccessResponse(BaseModel):
    success: bool
    message: str


# ============================================================
# Auth Endpoints
# ============================================================

@router.post("/register", response_model=Identity, status_code=201)
def register(
    body: RegisterRequest,
    account: AccountSession = Depends(get_account_session),
):
    """Create a citizen account and log it in."""
    try:
        return account.register(body.email, body.password, body.name)
    except CivicDeskError as e:
        raise to_http(e)


@router.post("/login", response_model=Identity)
def login(
    request: Request,
    body: LoginRequest,
    account: AccountSession = Depends(get_account_session),
):
    """
    Login and get a session cookie.

    Security:
    - Rate limited: 5 attempts per 15 minutes per IP
    - Passwords verified with Argon2
    """
    client_ip = get_client_ip(request)
    is_allowed, retry_after = check_rate_limit(client_ip)
    if not is_allowed:
        logger.warning("Rate limited login", client_ip=client_ip)
        raise HTTPException(
            status_code=429,
            detail=f"Too many login attempts. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )

    # Record attempt before verification
    record_login_attempt(client_ip)

    try:
        identity = account.login(body.email, body.password)
    except CivicDeskError as e:
        logger.warning("Failed login", client_ip=client_ip)
        raise to_http(e)

    clear_rate_limit(client_ip)
    return identity


@router.post("/logout", response_model=SuccessResponse)
def logout(account: AccountSession = Depends(get_account_session)):
    """Clear the session cookie."""
    account.logout()
    return SuccessResponse(success=True, message="You have been logged out successfully")


@router.get("/me", response_model=Identity)
def me(account: AccountSession = Depends(get_account_session)):
    """Get the logged-in identity."""
    try:
        return account.require()
    except CivicDeskError as e:
        raise to_http(e)


# ============================================================
# Self-service Endpoints
# ============================================================

@router.patch("/profile", response_model=Identity, dependencies=[Depends(verify_csrf)])
def update_profile(
    body: ProfileRequest,
    account: AccountSession = Depends(get_account_session),
):
    """Change name and/or avatar. Email cannot be changed."""
    try:
        return account.update_profile(body.model_dump(exclude_unset=True))
    except CivicDeskError as e:
        raise to_http(e)


@router.post("/password", response_model=SuccessResponse, dependencies=[Depends(verify_csrf)])
def change_password(
    body: ChangePasswordRequest,
    account: AccountSession = Depends(get_account_session),
):
    try:
        account.change_password(body.current_password, body.new_password)
    except CivicDeskError as e:
        raise to_http(e)
    return SuccessResponse(success=True, message="Your password has been changed successfully")


@router.post("/password-reset", response_model=SuccessResponse)
def request_password_reset(
    body: ResetRequest,
    accounts: AccountService = Depends(get_accounts),
):
    """
    Issue a password reset token.

    No mail is sent; the token is written to the log.
    """
    try:
        identity = accounts.request_password_reset(body.email)
    except CivicDeskError as e:
        raise to_http(e)

    token = create_reset_token(identity, accounts.password_fingerprint(identity.id))
    if is_production():
        logger.info("Password reset token issued", identity_id=str(identity.id))
    else:
        logger.info("Password reset token issued", identity_id=str(identity.id), token=token)
    return SuccessResponse(success=True, message="Check your email for instructions")


@router.post("/password-reset/confirm", response_model=SuccessResponse)
def confirm_password_reset(
    body: ResetConfirmRequest,
    accounts: AccountService = Depends(get_accounts),
):
    parsed = read_reset_token(body.token)
    if parsed is None:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    identity_id, fingerprint = parsed
    try:
        accounts.reset_password(identity_id, fingerprint, body.new_password)
    except AuthenticationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CivicDeskError as e:
        raise to_http(e)
    return SuccessResponse(success=True, message="Your password has been reset")


@router.delete("", response_model=SuccessResponse, dependencies=[Depends(verify_csrf)])
def delete_account(account: AccountSession = Depends(get_account_session)):
    """Delete the logged-in account. Reports and comments it wrote remain."""
    try:
        account.delete_account()
    except CivicDeskError as e:
        raise to_http(e)
    return SuccessResponse(success=True, message="Your account has been deleted successfully")
